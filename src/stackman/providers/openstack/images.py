from typing import Any, Dict, List

from stackman.models import ImageResource
from .base import ServiceBase


class ImageService(ServiceBase):
    """
    Wrapper of the image api (v2).
    """

    service_type = 'image'

    def create_image(self,
                     name: str,
                     disk_format: str = 'vmdk',
                     container_format: str = 'bare',
                     visibility: str = 'shared') -> ImageResource:
        """
        Create an image record without data, the data is uploaded to
        :meth:`file_url` afterwards.
        """
        response = self.request(
            'POST', 'v2/images', (201,),
            body={
                'name': name,
                'container_format': container_format,
                'disk_format': disk_format,
                'visibility': visibility,
            },
            what=f"create image '{name}'")
        return ImageResource.from_api(response.json())

    def get_image(self, image_id: str) -> ImageResource:
        response = self.request(
            'GET', f'v2/images/{image_id}', (200,), what=f"get image '{image_id}'")
        return ImageResource.from_api(response.json())

    def list_images(self) -> List[Dict[str, Any]]:
        response = self.request('GET', 'v2/images', (200,), what='list images')
        return response.json().get('images', [])

    def resolve_image_id(self, ref: str) -> str:
        return self.resolve_id(ref, self.list_images, 'image')

    def delete_image(self, image_id: str):
        self.request(
            'DELETE', f'v2/images/{image_id}', (204,), what=f"delete image '{image_id}'")

    def file_url(self, image_id: str) -> str:
        """Return the url the image data is uploaded to."""
        return self.url(f'v2/images/{image_id}/file')
