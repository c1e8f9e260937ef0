import time
from typing import Callable, Optional

from stackman import log
from stackman.config import StackmanSettings
from stackman.models import BlockDeviceMapping, ProvisionRequest
from stackman.poller import status_classifier, wait_for_state
from stackman.providers.openstack.volumes import VolumeService


class BootSourceResolver:
    """
    Decides how a server boots and prepares what is needed for it.

    Image backed requests boot from a volume created from the image by the
    compute service. Requests without an image get a blank bootable volume
    that is created and made bootable here.
    """
    def __init__(self,
                 volumes: Optional[VolumeService],
                 settings: Optional[StackmanSettings] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            volumes: the block storage service, only used for blank volumes
            settings: the run settings
            sleep: the sleep function used while polling
        """
        #: VolumeService: the block storage service
        self.volumes = volumes

        #: StackmanSettings: the run settings
        self.settings = settings or StackmanSettings()

        #: callable: the sleep function used while polling
        self.sleep = sleep

    def resolve(self, request: ProvisionRequest) -> BlockDeviceMapping:
        """
        Return the boot disk mapping of a request.

        Args:
            request: the provisioning request, its image (if any) is
              expected to be an image id

        Raises:
            ApiError: when the blank volume cannot be created or made bootable
            ResourceErrorState: when the blank volume enters the error state
            ResourceTimeoutError: when the blank volume never becomes available
        """
        if request.image:
            return self.from_image(request, request.image)
        return self.blank_volume(request)

    def from_image(self, request: ProvisionRequest, image_id: str) -> BlockDeviceMapping:
        return BlockDeviceMapping(
            source_type='image',
            uuid=image_id,
            destination_type='volume',
            volume_size=request.volume_size or self.settings.default_volume_size,
            disk_bus=request.disk_bus or self.settings.default_disk_bus,
            volume_type=self.settings.volume_type,
            delete_on_termination=True)

    def blank_volume(self, request: ProvisionRequest) -> BlockDeviceMapping:
        """
        Create ``<name>-boot``, wait for it to be available and mark it
        bootable.
        """
        name = f"{request.name}-boot"
        size = request.volume_size or self.settings.default_volume_size

        log.info(f"creating blank boot volume '{name}' ({size} GiB)")
        volume = self.volumes.create_volume(
            name=name,
            size=size,
            description=f"Boot volume for {request.name}",
            volume_type=self.settings.volume_type)

        wait_for_state(
            lambda: self.volumes.get_volume(volume.id),
            status_classifier(success=('available',), failure=('error',)),
            interval=self.settings.poll_interval,
            max_attempts=self.settings.poll_max_attempts,
            label=f"volume '{name}' ({volume.id})",
            sleep=self.sleep)

        self.volumes.set_bootable(volume.id, True)
        log.info(f"boot volume '{name}' ({volume.id}) is available and bootable")

        return BlockDeviceMapping(
            source_type='volume',
            uuid=volume.id,
            destination_type='volume',
            disk_bus=request.disk_bus,
            delete_on_termination=True)
