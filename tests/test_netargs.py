import pytest

from stackman.exceptions import PreconditionError
from stackman.utils.netargs import parse_network_requests, split_csv, validate_mac


class TestSplitCsv:

    def test_empty(self):
        assert split_csv(None) == []
        assert split_csv('  ') == []

    def test_strips_items(self):
        assert split_csv('a, b ,c') == ['a', 'b', 'c']


class TestValidateMac:

    @pytest.mark.parametrize('mac', [
        None, '', 'auto', 'AUTO', 'bb:bb:bb:bb:bb:bb', 'FA-16-3E-00-00-01', 'fa16.3e00.0001'])
    def test_valid(self, mac):
        validate_mac(mac)

    @pytest.mark.parametrize('mac', ['bb:bb:bb', 'zz:zz:zz:zz:zz:zz', 'bb:bb-bb:bb:bb:bb'])
    def test_invalid(self, mac):
        with pytest.raises(PreconditionError, match="invalid MAC"):
            validate_mac(mac)


class TestParseNetworkRequests:

    def test_networks_ips_and_macs(self):
        requests = parse_network_requests(
            'netA,netB,netC', ips='10.0.0.5,auto,', macs='auto,,bb:bb:bb:bb:bb:bb')

        assert [r.network for r in requests] == ['netA', 'netB', 'netC']
        assert [r.ip for r in requests] == ['10.0.0.5', None, None]
        assert [r.mac for r in requests] == [None, None, 'bb:bb:bb:bb:bb:bb']
        assert [r.uses_port for r in requests] == [False, False, True]

    def test_default_networks(self):
        requests = parse_network_requests(None, default_networks=('prod-net',))
        assert [r.network for r in requests] == ['prod-net']

    def test_no_networks(self):
        with pytest.raises(PreconditionError, match="no networks specified"):
            parse_network_requests(None)

    def test_ip_count_mismatch(self):
        with pytest.raises(PreconditionError, match="number of ips"):
            parse_network_requests('netA,netB', ips='10.0.0.5')

    def test_required_macs(self):
        with pytest.raises(PreconditionError, match="number of MAC addresses"):
            parse_network_requests('netA,netB', macs='auto', require_macs=True)

    def test_via_port(self):
        [request] = parse_network_requests('netA', macs='auto', via_port=True)
        assert request.uses_port
        assert request.mac is None
