import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from stackman import log
from stackman.config import StackmanSettings
from stackman.exceptions import (
    ApiError,
    AttachmentError,
    PreconditionError,
    TransientBackendError,
)
from stackman.models import NetworkAttachment, NetworkRequest
from stackman.providers.openstack.compute import ComputeService
from stackman.providers.openstack.network import NetworkService


def resolve_network(network: NetworkService, ref: str) -> str:
    """
    Resolve a network name to its id, unresolved references are returned
    unchanged and left to the backend to judge.
    """
    try:
        return network.resolve_network_id(ref)
    except (PreconditionError, ApiError) as exc:
        log.warning(f"could not resolve network '{ref}', using it as is: {exc}")
        return ref


class NetworkAttacher:
    """
    Attaches the requested networks to a server, one at a time and in the
    order they were requested.

    - with a mac (or when a port is forced) a port is created first and the
      port is attached
    - with a fixed ip the network is attached with that ip, on failure the
      attach is retried once without the ip (unmanaged interface)
    - otherwise the network is attached and the backend picks everything
    """
    def __init__(self,
                 compute: ComputeService,
                 network: NetworkService,
                 settings: Optional[StackmanSettings] = None,
                 sleep: Callable[[float], None] = time.sleep):
        #: ComputeService: the compute service
        self.compute = compute

        #: NetworkService: the network service
        self.network = network

        #: StackmanSettings: the run settings
        self.settings = settings or StackmanSettings()

        #: callable: the sleep function used for the settle delay
        self.sleep = sleep

        #: logging.Logger: Logger instance
        self.logger = log

    def attach(self,
               vm_id: str,
               requests: Sequence[NetworkRequest],
               network_ids: Optional[Sequence[str]] = None) -> List[NetworkAttachment]:
        """
        Attach every request to the server.

        Args:
            vm_id: the server id, the server must be ACTIVE
            requests: the requested interfaces
            network_ids: the resolved network ids, one per request, the
              references are resolved here when None

        Returns:
            one attachment per request, in request order

        Raises:
            AttachmentError: when an interface cannot be attached, the
              remaining requests are not attempted
            TransientBackendError: when the attach without a fixed ip failed
              too
        """
        if network_ids is None:
            network_ids = [resolve_network(self.network, r.network) for r in requests]
        if len(network_ids) != len(requests):
            raise PreconditionError(
                f"got {len(network_ids)} network ids for {len(requests)} networks")

        attachments = []
        for request, network_id in zip(requests, network_ids):
            attachment = self.attach_one(vm_id, request, network_id)
            attachments.append(attachment)
            self.sleep(self.settings.settle_delay)
        return attachments

    def attach_one(self, vm_id: str, request: NetworkRequest, network_id: str) -> NetworkAttachment:
        attachment = NetworkAttachment(
            network=request.network,
            network_id=network_id,
            requested_ip=request.ip,
            requested_mac=request.mac)

        self.logger.info(f"attaching network '{request.network}' to server {vm_id}")
        if request.uses_port:
            response = self._attach_port(vm_id, request, network_id, attachment)
        elif request.ip:
            response = self._attach_fixed_ip(vm_id, request, network_id, attachment)
        else:
            response = self._attach_network(vm_id, request, network_id)

        attachment.port_id = response.get('port_id') or attachment.port_id
        mac = (response.get('mac_addr') or '').upper()
        attachment.mac = mac or None

        fixed_ips = response.get('fixed_ips') or []
        if fixed_ips and fixed_ips[0].get('ip_address'):
            attachment.ip = fixed_ips[0]['ip_address']
        else:
            attachment.ip = request.ip

        self.logger.info(
            f"attached network '{request.network}' to server {vm_id} "
            f"(mac {attachment.mac or 'UNKNOWN'}, ip {attachment.ip})")
        return attachment

    def _attach_port(self,
                     vm_id: str,
                     request: NetworkRequest,
                     network_id: str,
                     attachment: NetworkAttachment) -> Dict[str, Any]:
        if request.mac:
            self.logger.info(f"using mac address {request.mac} for network '{request.network}'")
        try:
            port = self.network.create_port(
                network_id, mac_address=request.mac, fixed_ip=request.ip)
        except ApiError as exc:
            raise AttachmentError(
                f"failed to create port for network '{request.network}': {exc}",
                network=request.network, vm_id=vm_id) from exc

        attachment.port_id = port.get('id')
        try:
            return self.compute.attach_interface(vm_id, port_id=attachment.port_id)
        except ApiError as exc:
            raise AttachmentError(
                f"failed to attach port {attachment.port_id} of network "
                f"'{request.network}' to server {vm_id}: {exc}",
                network=request.network, vm_id=vm_id) from exc

    def _attach_fixed_ip(self,
                         vm_id: str,
                         request: NetworkRequest,
                         network_id: str,
                         attachment: NetworkAttachment) -> Dict[str, Any]:
        try:
            return self.compute.attach_interface(
                vm_id, net_id=network_id, fixed_ip=request.ip)
        except ApiError as exc:
            self.logger.warning(
                f"failed to attach network '{request.network}' with ip {request.ip}, "
                f"retrying as unmanaged interface: {exc}")

        try:
            response = self.compute.attach_interface(vm_id, net_id=network_id)
        except ApiError as exc:
            raise TransientBackendError(
                f"failed to attach network '{request.network}' to server {vm_id} "
                f"even without fixed ip: {exc}",
                network=request.network, vm_id=vm_id) from exc

        attachment.unmanaged = True
        return response

    def _attach_network(self,
                        vm_id: str,
                        request: NetworkRequest,
                        network_id: str) -> Dict[str, Any]:
        try:
            return self.compute.attach_interface(vm_id, net_id=network_id)
        except ApiError as exc:
            raise AttachmentError(
                f"failed to attach network '{request.network}' to server {vm_id}: {exc}",
                network=request.network, vm_id=vm_id) from exc
