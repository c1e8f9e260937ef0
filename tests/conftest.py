"""
Shared fixtures: a session bound to a fake token whose services are mocks,
and a sleep function that records the requested delays.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from stackman.config import StackmanSettings
from stackman.models import Token
from stackman.providers.openstack.session import OpenStackSession

HOST = 'cloud.example.com'

ENDPOINTS = {
    'compute': f'https://{HOST}:8774/v2.1',
    'volumev3': f'https://{HOST}:8776/v3/p-123',
    'network': f'https://{HOST}:9696',
    'image': f'https://{HOST}:9292',
}


def make_token(expires_in: int = 3600, endpoints=None, project: str = 'demo') -> Token:
    return Token(
        value='tok-123',
        host=HOST,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        endpoints=dict(ENDPOINTS if endpoints is None else endpoints),
        project=project)


def make_session(token: Token, settings: StackmanSettings) -> OpenStackSession:
    session = OpenStackSession(token, settings, client=MagicMock(name='client'))
    session.compute = MagicMock(name='compute')
    session.volumes = MagicMock(name='volumes')
    session.network = MagicMock(name='network')
    session.images = MagicMock(name='images')
    return session


@pytest.fixture
def settings():
    return StackmanSettings(host=HOST, project='demo')


@pytest.fixture
def token():
    return make_token()


@pytest.fixture
def session(token, settings):
    return make_session(token, settings)


@pytest.fixture
def sleeps():
    """The list of delays passed to the injected sleep function."""
    return []


@pytest.fixture
def sleep(sleeps):
    return sleeps.append
