from typing import Any, Dict, List, Mapping, Optional

from stackman.models import VMResource
from .base import ServiceBase


class ComputeService(ServiceBase):
    """
    Wrapper of the compute api (servers, flavors, interface attachments).
    """

    service_type = 'compute'

    def create_server(self,
                      name: str,
                      flavor_ref: str,
                      block_device_mapping: Dict[str, Any],
                      user_data: Optional[str] = None,
                      metadata: Optional[Mapping[str, str]] = None) -> VMResource:
        """
        Create a server without any network interface.

        Interfaces are added afterwards by attaching them one by one.

        Args:
            name: the server name
            flavor_ref: the flavor id
            block_device_mapping: the ``block_device_mapping_v2`` entry of
              the boot disk
            user_data: the base64 encoded cloud-init payload
            metadata: the server metadata

        Returns:
            the created server (usually in BUILD state)
        """
        server: Dict[str, Any] = {
            'name': name,
            'flavorRef': flavor_ref,
            'networks': 'none',
            'block_device_mapping_v2': [block_device_mapping],
        }
        if user_data:
            server['user_data'] = user_data
        if metadata:
            server['metadata'] = dict(metadata)

        response = self.request(
            'POST', 'servers', (202,),
            body={'server': server},
            what=f"create server '{name}'")

        created = response.json().get('server', {})
        return VMResource(
            id=created.get('id', ''),
            name=name,
            status=created.get('status', 'BUILD'),
            metadata=dict(metadata or {}))

    def get_server(self, vm_id: str) -> VMResource:
        response = self.request('GET', f'servers/{vm_id}', (200,), what=f"get server '{vm_id}'")
        return VMResource.from_api(response.json().get('server', {}))

    def list_servers(self) -> List[Dict[str, Any]]:
        response = self.request('GET', 'servers', (200,), what='list servers')
        return response.json().get('servers', [])

    def delete_server(self, vm_id: str):
        self.request('DELETE', f'servers/{vm_id}', (204,), what=f"delete server '{vm_id}'")

    def stop_server(self, vm_id: str):
        """
        Request a graceful power off (``os-stop``) of a server.
        """
        self.request(
            'POST', f'servers/{vm_id}/action', (202,),
            body={'os-stop': {}},
            what=f"stop server '{vm_id}'")

    def reboot_server(self, vm_id: str, hard: bool = False):
        """
        Request a reboot of a server.

        Args:
            vm_id: the server id
            hard: a hard reboot (power cycle) instead of a soft one
        """
        self.request(
            'POST', f'servers/{vm_id}/action', (202,),
            body={'reboot': {'type': 'HARD' if hard else 'SOFT'}},
            what=f"reboot server '{vm_id}'")

    def attach_interface(self,
                         vm_id: str,
                         net_id: Optional[str] = None,
                         port_id: Optional[str] = None,
                         fixed_ip: Optional[str] = None) -> Dict[str, Any]:
        """
        Attach a network interface to a server.

        Exactly one of *net_id* or *port_id* is expected.

        Returns:
            the ``interfaceAttachment`` of the response
            (``fixed_ips``, ``mac_addr``, ``net_id``, ``port_id``)
        """
        attachment: Dict[str, Any] = {}
        if port_id:
            attachment['port_id'] = port_id
        else:
            attachment['net_id'] = net_id
        if fixed_ip:
            attachment['fixed_ips'] = [{'ip_address': fixed_ip}]

        response = self.request(
            'POST', f'servers/{vm_id}/os-interface', (200,),
            body={'interfaceAttachment': attachment},
            what=f"attach interface to server '{vm_id}'")
        return response.json().get('interfaceAttachment', {})

    def list_flavors(self) -> List[Dict[str, Any]]:
        response = self.request('GET', 'flavors', (200,), what='list flavors')
        return response.json().get('flavors', [])

    def resolve_flavor_id(self, ref: str) -> str:
        return self.resolve_id(ref, self.list_flavors, 'flavor')

    def resolve_server_id(self, ref: str) -> str:
        return self.resolve_id(ref, self.list_servers, 'server')
