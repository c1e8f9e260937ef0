import json
import os
import stat
from datetime import datetime, timedelta, timezone

import pytest

from stackman.exceptions import TokenExpiredError, TokenNotFoundError
from stackman.models import Token
from stackman.token_cache import TokenCache


def token(host='cloud.example.com', expires_in=3600, project='demo'):
    return Token(
        value='tok-abc',
        host=host,
        expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        endpoints={'compute': 'https://c'},
        project=project)


@pytest.fixture
def cache(tmp_path):
    return TokenCache(str(tmp_path / 'stackman'))


class TestTokenCache:

    def test_saved_token_is_loaded_back(self, cache):
        saved = token()
        cache.save_token(saved)

        loaded = cache.load_token('cloud.example.com')

        assert loaded == saved

    def test_file_layout_and_mode(self, cache):
        cache.save_token(token())

        with open(cache.tokens_file) as fobj:
            data = json.load(fobj)
        assert list(data['tokens']) == ['cloud.example.com']
        assert data['tokens']['cloud.example.com']['project'] == 'demo'
        assert stat.S_IMODE(os.stat(cache.tokens_file).st_mode) == 0o600

    def test_tokens_are_kept_per_host(self, cache):
        cache.save_token(token(host='a.example.com', project='p1'))
        cache.save_token(token(host='b.example.com', project='p2'))

        assert cache.load_token('a.example.com').project == 'p1'
        assert cache.load_token('b.example.com').project == 'p2'

    def test_missing_token(self, cache):
        with pytest.raises(TokenNotFoundError, match="no token cached"):
            cache.load_token('cloud.example.com')

    def test_expired_token(self, cache):
        cache.save_token(token(expires_in=-1))

        with pytest.raises(TokenExpiredError, match="expired"):
            cache.load_token('cloud.example.com')

    def test_remove_token(self, cache):
        cache.save_token(token())

        assert cache.remove_token('cloud.example.com') is True
        assert cache.remove_token('cloud.example.com') is False
        with pytest.raises(TokenNotFoundError):
            cache.load_token('cloud.example.com')

    def test_reads_utc_timestamps(self, cache):
        os.makedirs(cache.cache_dir)
        with open(cache.tokens_file, 'w') as fobj:
            json.dump({'tokens': {'h': {
                'value': 'v', 'host': 'h', 'expires_at': '2099-01-01T00:00:00.000000Z',
                'endpoints': {}, 'project': 'demo'}}}, fobj)

        loaded = cache.load_token('h')

        assert loaded.expires_at == datetime(2099, 1, 1, tzinfo=timezone.utc)
