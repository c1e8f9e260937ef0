from typing import Any, Dict, List, Optional

from .base import ServiceBase


class NetworkService(ServiceBase):
    """
    Wrapper of the network api (networks and ports).
    """

    service_type = 'network'

    def list_networks(self) -> List[Dict[str, Any]]:
        response = self.request('GET', 'v2.0/networks', (200,), what='list networks')
        return response.json().get('networks', [])

    def resolve_network_id(self, ref: str) -> str:
        return self.resolve_id(ref, self.list_networks, 'network')

    def create_port(self,
                    network_id: str,
                    mac_address: Optional[str] = None,
                    fixed_ip: Optional[str] = None,
                    name: Optional[str] = None) -> Dict[str, Any]:
        """
        Create a port on a network.

        Args:
            network_id: the network id
            mac_address: the mac of the port, assigned by the backend when None
            fixed_ip: the ip of the port, assigned by the backend when None
            name: an optional port name

        Returns:
            the created ``port``
        """
        port: Dict[str, Any] = {'network_id': network_id}
        if mac_address:
            port['mac_address'] = mac_address
        if fixed_ip:
            port['fixed_ips'] = [{'ip_address': fixed_ip}]
        if name:
            port['name'] = name

        response = self.request(
            'POST', 'v2.0/ports', (201,),
            body={'port': port},
            what=f"create port on network '{network_id}'")
        return response.json().get('port', {})

    def delete_port(self, port_id: str):
        self.request('DELETE', f'v2.0/ports/{port_id}', (204,), what=f"delete port '{port_id}'")
