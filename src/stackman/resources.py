"""
Operations on single resources: image upload, volume creation and the
deletion of servers, images, volumes and ports.
"""

import os
import time
from typing import Callable, Optional

from stackman import log
from stackman.config import StackmanSettings
from stackman.exceptions import (
    CleanupError,
    EmptySourceError,
    PreconditionError,
    StackmanError,
)
from stackman.models import ImageResource, VolumeResource
from stackman.poller import status_classifier, wait_for_state
from stackman.provisioner import resolve_or_keep
from stackman.providers.openstack.images import ImageService
from stackman.providers.openstack.session import OpenStackSession
from stackman.upload import UploadChannel

#: the disk formats an image file can be uploaded as
DISK_FORMATS = ('qcow2', 'raw', 'vmdk', 'iso')


def guess_disk_format(path: str, disk_format: Optional[str] = None) -> str:
    """
    Return *disk_format*, or the format matching the extension of *path*
    when it is not given.

    Raises:
        PreconditionError: when the format is not supported
    """
    if not disk_format:
        extension = os.path.splitext(path)[1].lower()
        disk_format = extension.lstrip('.')
        if disk_format not in DISK_FORMATS:
            raise PreconditionError(
                f"unsupported image format '{extension}', must specify --format")

    if disk_format not in DISK_FORMATS:
        raise PreconditionError(
            f"unsupported format '{disk_format}', must be one of: {', '.join(DISK_FORMATS)}")
    return disk_format


def wait_for_image_queued(images: ImageService,
                          image_id: str,
                          settings: StackmanSettings,
                          sleep: Callable[[float], None] = time.sleep) -> ImageResource:
    """
    Wait for a new image record to accept its data.
    """
    return wait_for_state(
        lambda: images.get_image(image_id),
        status_classifier(success=('queued',), failure=('error', 'killed', 'deleted')),
        interval=settings.image_ready_interval,
        max_attempts=settings.image_ready_max_attempts,
        label=f"image {image_id}",
        sleep=sleep)


def upload_image(session: OpenStackSession,
                 name: str,
                 path: str,
                 disk_format: Optional[str] = None,
                 upload_channel: Optional[UploadChannel] = None,
                 sleep: Callable[[float], None] = time.sleep) -> ImageResource:
    """
    Create an image and stream the data of *path* into it.

    The image record is deleted again when the data never made it.

    Args:
        session: the services of the control plane
        name: the image name
        path: the local image file
        disk_format: the disk format, guessed from the file extension
          when None
        upload_channel: the channel the data is streamed through
        sleep: the sleep function used while waiting for the image

    Returns:
        the image after the upload

    Raises:
        PreconditionError: on a missing file or an unsupported format
        EmptySourceError: when the file is empty
        CleanupError: when the image record of a failed upload could not
          be deleted
    """
    if not os.path.isfile(path):
        raise PreconditionError(f"image file '{path}' does not exist")
    disk_format = guess_disk_format(path, disk_format)
    size = os.path.getsize(path)
    if size == 0:
        raise EmptySourceError(f"refusing to upload empty image file '{path}'")

    settings = session.settings
    session.ensure_token_valid()
    session.require_endpoints('image')
    images = session.images
    channel = upload_channel or UploadChannel(
        progress_interval=settings.upload_progress_interval,
        smoothing=settings.upload_smoothing,
        verify=settings.verify_tls)

    image = images.create_image(
        name, disk_format=disk_format, container_format='bare', visibility='shared')
    log.info(f"created image '{name}' ({image.id}), uploading {path}")

    try:
        wait_for_image_queued(images, image.id, settings, sleep=sleep)
        with open(path, 'rb') as fobj:
            channel.upload(images.file_url(image.id), session.token.value, fobj, size)
    except StackmanError as exc:
        log.warning(f"upload of image '{name}' failed, deleting image {image.id}")
        try:
            images.delete_image(image.id)
        except StackmanError as cleanup_exc:
            raise CleanupError(
                f"failed to delete image {image.id}: {cleanup_exc} (after: {exc})",
                primary_error=exc) from cleanup_exc
        raise

    return images.get_image(image.id)


def create_volume(session: OpenStackSession,
                  name: str,
                  size: int,
                  description: str = '',
                  volume_type: Optional[str] = None) -> VolumeResource:
    """
    Create a blank volume of *size* GiB, the configured volume type is used
    when *volume_type* is None.
    """
    if size is None or size < 1:
        raise PreconditionError(f"volume size must be at least 1 GiB (got {size})")

    session.ensure_token_valid()
    session.require_endpoints('volumev3')
    volume = session.volumes.create_volume(
        name=name,
        size=size,
        description=description,
        volume_type=volume_type or session.settings.volume_type)
    log.info(f"created volume '{name}' ({volume.id}, {size} GiB)")
    return volume


def delete_vm(session: OpenStackSession, ref: str) -> str:
    session.ensure_token_valid()
    compute = session.compute
    vm_id = resolve_or_keep(compute.resolve_server_id, ref, 'server')
    compute.delete_server(vm_id)
    log.info(f"deleted server {vm_id}")
    return vm_id


def delete_image(session: OpenStackSession, ref: str) -> str:
    """
    Delete an image. Unlike the other resources the name has to resolve,
    a wrong name never reaches the image service.
    """
    session.ensure_token_valid()
    images = session.images
    image_id = images.resolve_image_id(ref)
    images.delete_image(image_id)
    log.info(f"deleted image {image_id}")
    return image_id


def delete_volume(session: OpenStackSession, ref: str) -> str:
    session.ensure_token_valid()
    volumes = session.volumes
    volume_id = resolve_or_keep(volumes.resolve_volume_id, ref, 'volume')
    volumes.delete_volume(volume_id)
    log.info(f"deleted volume {volume_id}")
    return volume_id


def delete_port(session: OpenStackSession, port_id: str) -> str:
    session.ensure_token_valid()
    session.network.delete_port(port_id)
    log.info(f"deleted port {port_id}")
    return port_id
