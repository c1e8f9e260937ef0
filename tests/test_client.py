import json
from unittest.mock import MagicMock

import pytest
import requests

from stackman.exceptions import ApiError, PreconditionError
from stackman.providers.openstack.base import ServiceBase, is_uuid
from stackman.providers.openstack.client import (
    RestClient,
    clean_error_message,
    format_error_response,
)
from stackman.providers.openstack.compute import ComputeService


def http_response(status_code=200, body=None, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.content = json.dumps(body).encode() if body is not None else b''
    return response


class TestErrorFormatting:

    def test_unwraps_known_faults(self):
        body = json.dumps({'itemNotFound': {'code': 404, 'message': 'Flavor small could not be found.'}})
        assert format_error_response(body.encode()) == 'Flavor small could not be found.'

    def test_neutron_fault(self):
        body = json.dumps({'NeutronError': {'type': 'MacAddressInUse', 'Message': 'MAC in use'}})
        assert format_error_response(body.encode()) == 'MAC in use'

    def test_top_level_message(self):
        assert format_error_response(b'{"error": "bad token"}') == 'bad token'

    def test_html_body(self):
        body = b'<html><body><h1>413 Request Entity Too Large</h1>\n\n&quot;too big&quot;</body></html>'
        assert format_error_response(body) == '413 Request Entity Too Large "too big"'

    def test_clean_error_message(self):
        assert clean_error_message('a  &lt;b&gt;\n c') == 'a <b> c'


class TestRestClient:

    def test_sends_the_standard_headers(self):
        session = MagicMock()
        session.request.return_value = http_response(202, {'server': {'id': 'vm-1'}})
        client = RestClient(session=session, timeout=5.0)

        response = client.call('POST', 'https://c/servers', token='tok', body={'server': {}})

        _, kwargs = session.request.call_args
        assert kwargs['headers']['X-Auth-Token'] == 'tok'
        assert kwargs['headers']['Content-Type'] == 'application/json'
        assert kwargs['headers']['X-OpenStack-Nova-API-Version'] == '2.72'
        assert kwargs['headers']['User-Agent'].startswith('stackman/')
        assert kwargs['timeout'] == 5.0
        assert json.loads(kwargs['data']) == {'server': {}}
        assert response.json() == {'server': {'id': 'vm-1'}}

    def test_get_has_no_body(self):
        session = MagicMock()
        session.request.return_value = http_response(200, {})
        RestClient(session=session).call('GET', 'https://c/servers/1')

        _, kwargs = session.request.call_args
        assert kwargs['data'] is None
        assert 'Content-Type' not in kwargs['headers']

    def test_unexpected_status(self):
        session = MagicMock()
        session.request.return_value = http_response(
            400, {'badRequest': {'message': 'Invalid flavorRef'}})
        client = RestClient(session=session)

        with pytest.raises(ApiError, match=r"create server 'web1' failed: \[400\] Invalid flavorRef") as exc_info:
            client.expect('POST', 'https://c/servers', (202,), body={}, what="create server 'web1'")

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == 'Invalid flavorRef'

    def test_transport_error(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(ApiError, match="refused") as exc_info:
            RestClient(session=session).call('GET', 'https://c/servers')

        assert exc_info.value.status_code is None


class TestServices:

    def test_urls_are_joined_on_the_endpoint(self):
        client = MagicMock()
        compute = ComputeService(client, 'https://c:8774/v2.1/', 'tok')

        compute.stop_server('vm-1')

        client.expect.assert_called_once_with(
            'POST', 'https://c:8774/v2.1/servers/vm-1/action', (202,),
            token='tok', body={'os-stop': {}}, what="stop server 'vm-1'")

    def test_delete_server(self):
        client = MagicMock()
        compute = ComputeService(client, 'https://c:8774/v2.1', 'tok')

        compute.delete_server('vm-1')

        client.expect.assert_called_once_with(
            'DELETE', 'https://c:8774/v2.1/servers/vm-1', (204,),
            token='tok', body=None, what="delete server 'vm-1'")

    def test_attach_interface_payload(self):
        client = MagicMock()
        client.expect.return_value.json.return_value = {
            'interfaceAttachment': {'mac_addr': 'fa:16:3e:00:00:01'}}
        compute = ComputeService(client, 'https://c', 'tok')

        result = compute.attach_interface('vm-1', net_id='net-1', fixed_ip='10.0.0.5')

        body = client.expect.call_args[1]['body']
        assert body == {'interfaceAttachment': {
            'net_id': 'net-1', 'fixed_ips': [{'ip_address': '10.0.0.5'}]}}
        assert result == {'mac_addr': 'fa:16:3e:00:00:01'}


class TestResolveId:

    items = [
        {'id': 'n1', 'name': 'prod-net'},
        {'id': 'n2', 'name': 'prod-net-2'},
        {'id': 'n3', 'name': 'backup'},
    ]

    @pytest.fixture
    def service(self):
        return ServiceBase(MagicMock(), 'https://n', 'tok')

    def test_uuid_passes_through(self, service):
        uuid = '0b6f4c8e-1d2a-4e5f-9a0b-1c2d3e4f5a6b'
        lister = MagicMock()
        assert is_uuid(uuid)
        assert service.resolve_id(uuid, lister, 'network') == uuid
        lister.assert_not_called()

    def test_exact_name_wins(self, service):
        assert service.resolve_id('prod-net', lambda: self.items, 'network') == 'n1'

    def test_unique_substring(self, service):
        assert service.resolve_id('back', lambda: self.items, 'network') == 'n3'

    def test_ambiguous(self, service):
        with pytest.raises(PreconditionError, match="ambiguous"):
            service.resolve_id('prod', lambda: self.items, 'network')

    def test_not_found(self, service):
        with pytest.raises(PreconditionError, match="no network found matching 'dmz'"):
            service.resolve_id('dmz', lambda: self.items, 'network')
