"""
Migration of a VMDK disk into a new server.

The disk is uploaded as a temporary image, a server is provisioned from
that image and the temporary image is deleted again, whatever happened
after it was created:

    validating -> (warming-source) -> uploading-disk -> temporary-image-ready
               -> provisioning -> deleting-temporary-image -> done
"""

import enum
import os
import shlex
import time
from typing import Callable, Optional

import invoke

from stackman import log
from stackman.config import StackmanSettings
from stackman.exceptions import (
    CleanupError,
    EmptySourceError,
    PreconditionError,
    StackmanError,
)
from stackman.models import (
    MigrationJob,
    MigrationRequest,
    MigrationSummary,
    ProvisionRequest,
)
from stackman.provisioner import ProvisioningOrchestrator
from stackman.providers.openstack.session import OpenStackSession
from stackman.resources import wait_for_image_queued
from stackman.upload import UploadChannel
from stackman.utils.netargs import validate_mac

#: the disk buses a migrated boot volume can be attached with
DISK_BUSES = ('sata', 'scsi', 'virtio')

GIB = 1024 ** 3


class MigrationState(enum.Enum):
    VALIDATING = 'validating'
    WARMING_SOURCE = 'warming-source'
    UPLOADING_DISK = 'uploading-disk'
    TEMPORARY_IMAGE_READY = 'temporary-image-ready'
    PROVISIONING = 'provisioning'
    DELETING_TEMPORARY_IMAGE = 'deleting-temporary-image'
    DONE = 'done'


def size_in_gib(size: int) -> int:
    """Round a size in bytes up to whole GiB (at least 1)."""
    return max(1, -(-size // GIB))


def warm_source(path: str, timeout: int = 10):
    """
    Read the first MiB of *path* so that a sleeping network mount wakes up
    before the upload starts.

    The read is retried once when it hangs. A failed warm up is only
    logged, the upload will report a real read error.
    """
    command = f"dd if={shlex.quote(path)} of=/dev/null bs=1M count=1"
    for attempt in (1, 2):
        try:
            result = invoke.run(command, hide=True, warn=True, timeout=timeout)
        except invoke.exceptions.CommandTimedOut:
            log.warning(f"warm up read of {path} hung (attempt {attempt}), killed it")
            continue

        if result.ok:
            log.debug(f"warm up read of {path} done")
        else:
            log.warning(f"warm up read of {path} failed: {result.stderr.strip()}")
        return

    log.warning(f"warm up read of {path} hung twice, continuing anyway")


class MigrationOrchestrator:
    """
    Drives a migration from a :class:`MigrationRequest`.

    The temporary image belongs to the job: it is deleted exactly once,
    after a successful provisioning as well as after any failure that
    happened once the image existed.
    """
    def __init__(self,
                 session: OpenStackSession,
                 settings: Optional[StackmanSettings] = None,
                 provisioner: Optional[ProvisioningOrchestrator] = None,
                 upload_channel: Optional[UploadChannel] = None,
                 warmup: Optional[Callable[[str], None]] = warm_source,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            session: the services of the control plane
            settings: the run settings, the session settings by default
            provisioner: the provisioning orchestrator the server creation
              is delegated to
            upload_channel: the channel the disk is streamed through
            warmup: called with the source path before the upload when the
              path is under one of the warm up prefixes, None disables it
            sleep: the sleep function used by every wait
        """
        #: OpenStackSession: the services of the control plane
        self.session = session

        #: StackmanSettings: the run settings
        self.settings = settings or session.settings

        #: callable: the sleep function used by every wait
        self.sleep = sleep

        #: ProvisioningOrchestrator: creates the server from the temporary image
        self.provisioner = provisioner or ProvisioningOrchestrator(
            session, self.settings, sleep=sleep)

        #: UploadChannel: streams the disk to the image service
        self.upload_channel = upload_channel or UploadChannel(
            progress_interval=self.settings.upload_progress_interval,
            smoothing=self.settings.upload_smoothing,
            verify=self.settings.verify_tls)

        #: callable: the source warm up function
        self.warmup = warmup

        #: MigrationState: the state of the current (or last) run
        self.state = MigrationState.VALIDATING

        #: Optional[MigrationJob]: the current (or last) job
        self.job: Optional[MigrationJob] = None

        #: logging.Logger: the logger instance
        self.logger = log

    def _enter(self, state: MigrationState):
        self.state = state
        self.logger.debug(f"migration state: {state.value}")

    def validate(self, request: MigrationRequest) -> int:
        """
        Check a request without any network call.

        Returns:
            the size in bytes of the source disk

        Raises:
            PreconditionError: on a bad disk bus, network list, mac or path
            EmptySourceError: when the source disk is empty
        """
        if not request.name:
            raise PreconditionError("must provide a name for the VM")
        if request.disk_bus not in DISK_BUSES:
            raise PreconditionError(
                f"disk bus must be one of: {', '.join(DISK_BUSES)} (got '{request.disk_bus}')")
        if not request.networks:
            raise PreconditionError("no networks specified for the migrated VM")
        for network in request.networks:
            validate_mac(network.mac)

        if not os.path.isfile(request.vmdk_path):
            raise PreconditionError(f"VMDK file '{request.vmdk_path}' does not exist")
        size = os.path.getsize(request.vmdk_path)
        if size == 0:
            raise EmptySourceError(f"refusing to migrate empty VMDK file '{request.vmdk_path}'")
        return size

    def migrate(self, request: MigrationRequest) -> MigrationSummary:
        """
        Upload the disk, provision the server and delete the temporary image.

        Returns:
            the summary of the migrated server

        Raises:
            StackmanError: the first error of the run
            CleanupError: when the temporary image could not be deleted,
              ``primary_error`` holds the error that aborted the run if any
        """
        self._enter(MigrationState.VALIDATING)
        self.job = job = MigrationJob(local_path=request.vmdk_path)
        local_size = self.validate(request)

        self.session.ensure_token_valid()
        self.session.require_endpoints('compute', 'image', 'network')

        if self.warmup and request.vmdk_path.startswith(tuple(self.settings.warmup_prefixes)):
            self._enter(MigrationState.WARMING_SOURCE)
            self.warmup(request.vmdk_path)

        self._enter(MigrationState.UPLOADING_DISK)
        images = self.session.images
        self.logger.info(f"creating temporary image for VM '{request.name}'")
        image = images.create_image(
            f"Migrated-{request.name}",
            disk_format=request.disk_format,
            container_format=request.container_format,
            visibility=request.visibility)
        job.temporary_image_id = image.id

        primary_error = None
        try:
            volume_size = self._upload_and_provision(request, job, local_size)
        except BaseException as exc:
            primary_error = exc
            raise
        finally:
            self._enter(MigrationState.DELETING_TEMPORARY_IMAGE)
            self._delete_temporary_image(job, primary_error)

        self._enter(MigrationState.DONE)
        return MigrationSummary(
            provision=job.summary,
            temporary_image_id=job.temporary_image_id,
            volume_size=volume_size)

    def _upload_and_provision(self,
                              request: MigrationRequest,
                              job: MigrationJob,
                              local_size: int) -> int:
        images = self.session.images
        image_id = job.temporary_image_id

        wait_for_image_queued(images, image_id, self.settings, sleep=self.sleep)

        self.logger.info(
            f"starting upload of {job.local_path} ({local_size // (1024 * 1024)} MB)")
        with open(job.local_path, 'rb') as fobj:
            self.upload_channel.upload(
                images.file_url(image_id), self.session.token.value, fobj, local_size)

        self._enter(MigrationState.TEMPORARY_IMAGE_READY)
        image = images.get_image(image_id)
        job.image_size = image.size or local_size
        volume_size = request.volume_size or size_in_gib(job.image_size)
        self.logger.info(f"image {image_id} uploaded, boot volume size {volume_size} GiB")

        self._enter(MigrationState.PROVISIONING)
        job.summary = self.provisioner.provision(ProvisionRequest(
            name=request.name,
            flavor=request.flavor,
            networks=request.networks,
            image=image_id,
            volume_size=volume_size,
            disk_bus=request.disk_bus,
            power_off=request.power_off))
        return volume_size

    def _delete_temporary_image(self, job: MigrationJob, primary_error: Optional[BaseException]):
        image_id = job.temporary_image_id
        self.logger.info(f"deleting temporary image {image_id}")
        try:
            self.session.images.delete_image(image_id)
        except StackmanError as exc:
            message = f"failed to delete temporary image {image_id}: {exc}"
            if primary_error is None:
                raise CleanupError(message) from exc
            if not isinstance(primary_error, Exception):
                # interrupted: report and let the interruption propagate
                self.logger.error(message)
                return
            raise CleanupError(
                f"{message} (after: {primary_error})", primary_error=primary_error) from exc

        job.temporary_image_deleted = True
