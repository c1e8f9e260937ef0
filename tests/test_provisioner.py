from unittest.mock import MagicMock, call

import pytest

from stackman.exceptions import (
    PreconditionError,
    ResourceErrorState,
    TokenExpiredError,
)
from stackman.models import NetworkRequest, ProvisionRequest, VMResource, VolumeResource
from stackman.provisioner import (
    ProvisioningOrchestrator,
    ProvisionState,
    reboot_vm,
    stop_vm,
)
from conftest import ENDPOINTS, make_session, make_token


def web1_request(**kwargs):
    values = dict(
        name='web1',
        flavor='small',
        image='ubuntu-22.04',
        networks=(NetworkRequest('netA', ip='10.0.0.5'), NetworkRequest('netB', ip='auto')))
    values.update(kwargs)
    return ProvisionRequest(**values)


@pytest.fixture
def cloud(session):
    """A session whose services answer like a healthy cloud."""
    session.compute.resolve_flavor_id.return_value = 'flavor-1'
    session.images.resolve_image_id.return_value = 'img-1'
    session.network.resolve_network_id.side_effect = lambda ref: f'id-{ref}'
    session.compute.create_server.return_value = VMResource(id='vm-1', name='web1', status='BUILD')
    session.compute.get_server.side_effect = [
        VMResource(id='vm-1', name='web1', status='BUILD'),
        VMResource(id='vm-1', name='web1', status='ACTIVE', power_state=1),
    ]
    session.compute.attach_interface.return_value = {
        'fixed_ips': [{'ip_address': '10.0.0.5'}],
        'mac_addr': 'fa:16:3e:aa:bb:cc',
        'port_id': 'port-1',
        'net_id': 'id-netA',
    }
    return session


class TestProvision:

    def test_web1_from_image(self, cloud, sleeps, sleep):
        orchestrator = ProvisioningOrchestrator(cloud, sleep=sleep)

        summary = orchestrator.provision(web1_request())

        cloud.compute.create_server.assert_called_once_with(
            'web1',
            'flavor-1',
            {
                'boot_index': 0,
                'uuid': 'img-1',
                'source_type': 'image',
                'destination_type': 'volume',
                'delete_on_termination': True,
                'volume_size': 10,
                'disk_bus': 'scsi',
            },
            user_data=None,
            metadata={})
        assert cloud.compute.attach_interface.call_args_list == [
            call('vm-1', net_id='id-netA', fixed_ip='10.0.0.5'),
            call('vm-1', net_id='id-netB'),
        ]
        cloud.volumes.create_volume.assert_not_called()

        assert summary.vm.status == 'ACTIVE'
        assert [a.network for a in summary.networks] == ['netA', 'netB']
        assert summary.networks[0].mac == 'FA:16:3E:AA:BB:CC'
        assert summary.networks[0].ip == '10.0.0.5'
        assert summary.networks[1].requested_ip is None
        assert summary.to_dict()['power_state'] == '1 (RUNNING)'
        assert orchestrator.state is ProvisionState.DONE
        # one poll interval and one settle delay per network
        assert sleeps == [10.0, 10.0, 10.0]

    def test_blank_volume_boot(self, cloud, sleep):
        cloud.volumes.create_volume.return_value = VolumeResource(id='vol-1', status='creating')
        cloud.volumes.get_volume.return_value = VolumeResource(id='vol-1', status='available')

        ProvisioningOrchestrator(cloud, sleep=sleep).provision(
            web1_request(image=None, volume_size=40))

        cloud.volumes.set_bootable.assert_called_once_with('vol-1', True)
        mapping = cloud.compute.create_server.call_args[0][2]
        assert mapping['source_type'] == 'volume'
        assert mapping['uuid'] == 'vol-1'
        cloud.images.resolve_image_id.assert_not_called()

    def test_error_while_polling_attaches_nothing(self, cloud, sleep):
        cloud.compute.get_server.side_effect = [
            VMResource(id='vm-1', status='BUILD'),
            VMResource(id='vm-1', status='ERROR'),
        ]
        orchestrator = ProvisioningOrchestrator(cloud, sleep=sleep)

        with pytest.raises(ResourceErrorState):
            orchestrator.provision(web1_request())

        cloud.compute.attach_interface.assert_not_called()
        assert orchestrator.state is ProvisionState.POLLING_ACTIVE
        assert orchestrator.vm.id == 'vm-1'

    def test_unresolved_flavor_is_passed_as_is(self, cloud, sleep):
        cloud.compute.resolve_flavor_id.side_effect = PreconditionError("no flavor found")

        ProvisioningOrchestrator(cloud, sleep=sleep).provision(web1_request())

        assert cloud.compute.create_server.call_args[0][1] == 'small'

    def test_power_off_is_not_awaited(self, cloud, sleep):
        summary = ProvisioningOrchestrator(cloud, sleep=sleep).provision(
            web1_request(power_off=True))

        cloud.compute.stop_server.assert_called_once_with('vm-1')
        assert cloud.compute.get_server.call_count == 2
        assert summary.powered_off is True

    def test_power_off_can_be_awaited(self, cloud, sleep):
        cloud.compute.get_server.side_effect = [
            VMResource(id='vm-1', status='ACTIVE', power_state=1),
            VMResource(id='vm-1', status='SHUTOFF', power_state=4),
        ]

        summary = ProvisioningOrchestrator(cloud, sleep=sleep).provision(
            web1_request(power_off=True, wait_for_power_off=True))

        assert summary.vm.status == 'SHUTOFF'
        assert summary.to_dict()['power_state'] == '4 (SHUTDOWN)'

    def test_netboot(self, cloud, sleep):
        cloud.volumes.create_volume.return_value = VolumeResource(id='vol-1', status='available')
        cloud.volumes.get_volume.return_value = VolumeResource(id='vol-1', status='available')

        summary = ProvisioningOrchestrator(cloud, sleep=sleep).provision(
            web1_request(netboot=True))

        cloud.images.resolve_image_id.assert_not_called()
        assert cloud.compute.create_server.call_args[1]['metadata'] == {'network_install': 'true'}
        assert summary.console_url == (
            'cloud.example.com:8800/compute/servers/instances/vm-1/console')


class TestPreconditions:

    def test_missing_endpoint_makes_no_calls(self, settings, sleep):
        endpoints = {k: v for k, v in ENDPOINTS.items() if k != 'volumev3'}
        session = make_session(make_token(endpoints=endpoints), settings)

        with pytest.raises(PreconditionError, match="no 'volumev3' endpoint found in token"):
            ProvisioningOrchestrator(session, sleep=sleep).provision(web1_request(image=None))

        session.volumes.create_volume.assert_not_called()
        session.compute.create_server.assert_not_called()
        session.compute.resolve_flavor_id.assert_not_called()

    def test_expired_token_makes_no_calls(self, settings, sleep):
        session = make_session(make_token(expires_in=-60), settings)

        with pytest.raises(TokenExpiredError):
            ProvisioningOrchestrator(session, sleep=sleep).provision(web1_request())

        session.compute.create_server.assert_not_called()


class TestPowerOperations:

    def test_stop_without_wait(self, session, sleep):
        session.compute.resolve_server_id.return_value = 'vm-1'
        session.compute.get_server.return_value = VMResource(id='vm-1', status='ACTIVE')

        stop_vm(session, 'web1', sleep=sleep)

        session.compute.stop_server.assert_called_once_with('vm-1')
        session.compute.get_server.assert_called_once_with('vm-1')

    def test_hard_reboot_waits_for_active(self, session, sleeps, sleep):
        session.compute.resolve_server_id.return_value = 'vm-1'
        session.compute.get_server.side_effect = [
            VMResource(id='vm-1', status='HARD_REBOOT'),
            VMResource(id='vm-1', status='ACTIVE'),
        ]

        vm = reboot_vm(session, 'web1', hard=True, sleep=sleep)

        session.compute.reboot_server.assert_called_once_with('vm-1', hard=True)
        assert vm.status == 'ACTIVE'
        assert sleeps == [10.0]
