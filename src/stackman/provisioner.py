"""
Provisioning of a single server.

A run goes through the following states:

    init -> resolving-boot-source -> creating-vm -> polling-active
         -> attaching-networks -> (powering-down) -> done

Every failure is fatal to the run and nothing is rolled back: a server
that failed to get its networks is left in place for inspection.
"""

import dataclasses
import enum
import time
from typing import Callable, List, Optional

from stackman import log
from stackman.attach import NetworkAttacher, resolve_network
from stackman.boot_source import BootSourceResolver
from stackman.config import StackmanSettings
from stackman.exceptions import ApiError, PreconditionError
from stackman.models import ProvisionRequest, ProvisionSummary, VMResource
from stackman.poller import status_classifier, wait_for_state
from stackman.providers.openstack.session import OpenStackSession

#: int: the port of the web console of netboot servers
CONSOLE_PORT = 8800


class ProvisionState(enum.Enum):
    INIT = 'init'
    RESOLVING_BOOT_SOURCE = 'resolving-boot-source'
    CREATING_VM = 'creating-vm'
    POLLING_ACTIVE = 'polling-active'
    ATTACHING_NETWORKS = 'attaching-networks'
    POWERING_DOWN = 'powering-down'
    DONE = 'done'


def resolve_or_keep(resolver: Callable[[str], str], ref: str, kind: str) -> str:
    """
    Resolve a name with *resolver*, the reference is kept as is when it
    cannot be resolved.
    """
    try:
        return resolver(ref)
    except (PreconditionError, ApiError) as exc:
        log.warning(f"could not resolve {kind} '{ref}', using it as is: {exc}")
        return ref


def console_url(host: str, vm_id: str) -> str:
    return f"{host}:{CONSOLE_PORT}/compute/servers/instances/{vm_id}/console"


class ProvisioningOrchestrator:
    """
    Drives the creation of a server from a :class:`ProvisionRequest`.
    """
    def __init__(self,
                 session: OpenStackSession,
                 settings: Optional[StackmanSettings] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            session: the services of the control plane
            settings: the run settings, the session settings by default
            sleep: the sleep function used by every wait
        """
        #: OpenStackSession: the services of the control plane
        self.session = session

        #: StackmanSettings: the run settings
        self.settings = settings or session.settings

        #: callable: the sleep function used by every wait
        self.sleep = sleep

        #: ProvisionState: the state of the current (or last) run
        self.state = ProvisionState.INIT

        #: Optional[VMResource]: the server of the current (or last) run
        self.vm: Optional[VMResource] = None

        #: logging.Logger: the logger instance
        self.logger = log

    def _enter(self, state: ProvisionState):
        self.state = state
        self.logger.debug(f"provisioning state: {state.value}")

    def required_endpoints(self, request: ProvisionRequest) -> List[str]:
        endpoints = ['compute', 'network']
        if request.image and not request.netboot:
            endpoints.append('image')
        else:
            endpoints.append('volumev3')
        return endpoints

    def provision(self, request: ProvisionRequest) -> ProvisionSummary:
        """
        Create the server, attach its networks and optionally power it off.

        Args:
            request: the provisioning request

        Returns:
            the summary of the created server

        Raises:
            StackmanError: the first error of the run, see the states above
        """
        self.vm = None
        self._enter(ProvisionState.INIT)
        self.session.ensure_token_valid()
        self.session.require_endpoints(*self.required_endpoints(request))

        compute = self.session.compute
        flavor_id = resolve_or_keep(compute.resolve_flavor_id, request.flavor, 'flavor')

        image_id = None
        if request.image and not request.netboot:
            image_id = resolve_or_keep(
                self.session.images.resolve_image_id, request.image, 'image')
        elif request.netboot and request.image:
            self.logger.info(f"netboot requested, ignoring image '{request.image}'")

        network_ids = [
            resolve_network(self.session.network, r.network) for r in request.networks]

        metadata = dict(request.metadata)
        if request.netboot:
            metadata['network_install'] = 'true'

        self._enter(ProvisionState.RESOLVING_BOOT_SOURCE)
        boot_request = dataclasses.replace(request, image=image_id, metadata=metadata)
        volumes = self.session.volumes if image_id is None else None
        resolver = BootSourceResolver(volumes, self.settings, sleep=self.sleep)
        mapping = resolver.resolve(boot_request)

        self._enter(ProvisionState.CREATING_VM)
        self.logger.info(f"creating server '{request.name}'")
        self.vm = compute.create_server(
            request.name,
            flavor_id,
            mapping.to_api(),
            user_data=request.user_data,
            metadata=metadata)

        self._enter(ProvisionState.POLLING_ACTIVE)
        self.logger.info(f"waiting for server '{request.name}' ({self.vm.id}) to become ACTIVE")
        vm_id = self.vm.id
        self.vm = wait_for_state(
            lambda: compute.get_server(vm_id),
            status_classifier(success=('ACTIVE',), failure=('ERROR',)),
            interval=self.settings.poll_interval,
            max_attempts=self.settings.poll_max_attempts,
            label=f"server '{request.name}' ({vm_id})",
            sleep=self.sleep)

        self._enter(ProvisionState.ATTACHING_NETWORKS)
        attacher = NetworkAttacher(
            compute, self.session.network, self.settings, sleep=self.sleep)
        attachments = attacher.attach(vm_id, request.networks, network_ids)

        summary = ProvisionSummary(vm=self.vm, networks=attachments)
        if request.netboot:
            summary.console_url = console_url(self.session.host, vm_id)

        if request.power_off:
            self._enter(ProvisionState.POWERING_DOWN)
            self.logger.info(f"powering off server '{request.name}' ({vm_id})")
            compute.stop_server(vm_id)
            summary.powered_off = True
            if request.wait_for_power_off:
                summary.vm = self.vm = wait_for_shutoff(
                    compute, vm_id, self.settings, sleep=self.sleep)

        self._enter(ProvisionState.DONE)
        self.logger.info(f"server '{request.name}' ({vm_id}) is ready")
        return summary


def wait_for_shutoff(compute,
                     vm_id: str,
                     settings: StackmanSettings,
                     sleep: Callable[[float], None] = time.sleep) -> VMResource:
    return wait_for_state(
        lambda: compute.get_server(vm_id),
        status_classifier(success=('SHUTOFF',), failure=('ERROR',)),
        interval=settings.poll_interval,
        max_attempts=settings.poll_max_attempts,
        label=f"server {vm_id} power off",
        sleep=sleep)


def stop_vm(session: OpenStackSession,
            ref: str,
            wait: bool = False,
            sleep: Callable[[float], None] = time.sleep) -> VMResource:
    """
    Gracefully power off a server, optionally waiting for SHUTOFF.

    Args:
        session: the services of the control plane
        ref: the server name or id
        wait: wait for the server to reach SHUTOFF
        sleep: the sleep function used while waiting
    """
    session.ensure_token_valid()
    compute = session.compute
    vm_id = resolve_or_keep(compute.resolve_server_id, ref, 'server')

    log.info(f"stopping server {vm_id}")
    compute.stop_server(vm_id)
    if wait:
        return wait_for_shutoff(compute, vm_id, session.settings, sleep=sleep)
    return compute.get_server(vm_id)


def reboot_vm(session: OpenStackSession,
              ref: str,
              hard: bool = False,
              sleep: Callable[[float], None] = time.sleep) -> VMResource:
    """
    Reboot a server and wait for it to be ACTIVE again.
    """
    session.ensure_token_valid()
    compute = session.compute
    vm_id = resolve_or_keep(compute.resolve_server_id, ref, 'server')

    log.info(f"{'hard' if hard else 'soft'} rebooting server {vm_id}")
    compute.reboot_server(vm_id, hard=hard)
    return wait_for_state(
        lambda: compute.get_server(vm_id),
        status_classifier(success=('ACTIVE',), failure=('ERROR',)),
        interval=session.settings.poll_interval,
        max_attempts=session.settings.poll_max_attempts,
        label=f"server {vm_id} reboot",
        sleep=sleep)


def set_volume_bootable(session: OpenStackSession, ref: str, bootable: bool = True) -> str:
    """
    Set or clear the bootable flag of a volume, returns the volume id.
    """
    session.ensure_token_valid()
    volumes = session.volumes
    volume_id = resolve_or_keep(volumes.resolve_volume_id, ref, 'volume')
    volumes.set_bootable(volume_id, bootable)
    log.info(f"volume {volume_id} bootable={str(bootable).lower()}")
    return volume_id
