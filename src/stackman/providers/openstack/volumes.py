from typing import Any, Dict, List, Optional

from stackman.models import VolumeResource
from .base import ServiceBase


class VolumeService(ServiceBase):
    """
    Wrapper of the block storage api (volumev3).
    """

    service_type = 'volumev3'

    def create_volume(self,
                      name: str,
                      size: int,
                      description: str = '',
                      volume_type: Optional[str] = None) -> VolumeResource:
        """
        Create a blank volume.

        Args:
            name: the volume name
            size: the size in GiB
            description: free text description
            volume_type: the backend volume type, the default type when None
        """
        volume: Dict[str, Any] = {
            'name': name,
            'size': size,
            'description': description,
        }
        if volume_type:
            volume['volume_type'] = volume_type

        response = self.request(
            'POST', 'volumes', (202,),
            body={'volume': volume},
            what=f"create volume '{name}'")
        return VolumeResource.from_api(response.json().get('volume', {}))

    def get_volume(self, volume_id: str) -> VolumeResource:
        response = self.request(
            'GET', f'volumes/{volume_id}', (200,), what=f"get volume '{volume_id}'")
        return VolumeResource.from_api(response.json().get('volume', {}))

    def list_volumes(self) -> List[Dict[str, Any]]:
        response = self.request('GET', 'volumes', (200,), what='list volumes')
        return response.json().get('volumes', [])

    def set_bootable(self, volume_id: str, bootable: bool = True):
        self.request(
            'POST', f'volumes/{volume_id}/action', (200,),
            body={'os-set_bootable': {'bootable': bootable}},
            what=f"set bootable={str(bootable).lower()} on volume '{volume_id}'")

    def delete_volume(self, volume_id: str):
        self.request(
            'DELETE', f'volumes/{volume_id}', (202, 204),
            what=f"delete volume '{volume_id}'")

    def resolve_volume_id(self, ref: str) -> str:
        return self.resolve_id(ref, self.list_volumes, 'volume')
