from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple


#: power states reported by the compute service (OS-EXT-STS:power_state)
POWER_STATES = {
    0: "NOSTATE",
    1: "RUNNING",
    3: "PAUSED",
    4: "SHUTDOWN",
    6: "CRASHED",
    7: "SUSPENDED",
}


def power_state_label(state: Optional[int]) -> str:
    """Return the human readable label of a numeric power state."""
    return POWER_STATES.get(state, "UNKNOWN")


def parse_timestamp(value: str) -> datetime:
    """
    Parse an api timestamp such as ``2024-05-01T10:00:00.000000Z``.

    Naive timestamps are assumed to be in UTC.
    """
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_auto(value: Optional[str]) -> bool:
    return value is None or not value.strip() or value.strip().lower() == "auto"


@dataclass(frozen=True, slots=True)
class Token:
    """An identity token and the service catalog that came with it."""

    value: str
    host: str
    expires_at: datetime
    endpoints: Mapping[str, str] = field(default_factory=dict)
    project: Optional[str] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "host": self.host,
            "expires_at": self.expires_at.isoformat(),
            "endpoints": dict(self.endpoints),
            "project": self.project,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Token":
        return cls(
            value=raw["value"],
            host=raw["host"],
            expires_at=parse_timestamp(raw["expires_at"]),
            endpoints=dict(raw.get("endpoints") or {}),
            project=raw.get("project"),
        )


@dataclass(frozen=True, slots=True)
class NetworkRequest:
    """
    One requested interface.

    ``ip`` and ``mac`` are None when the backend should choose. With
    ``via_port`` a port is always pre-created, even without a mac.
    """

    network: str
    ip: Optional[str] = None
    mac: Optional[str] = None
    via_port: bool = False

    def __post_init__(self):
        # "auto" and blanks are normalized to None
        object.__setattr__(self, "network", self.network.strip())
        object.__setattr__(self, "ip", None if _is_auto(self.ip) else self.ip.strip())
        object.__setattr__(self, "mac", None if _is_auto(self.mac) else self.mac.strip())

    @property
    def uses_port(self) -> bool:
        return self.via_port or self.mac is not None


@dataclass(frozen=True, slots=True)
class ProvisionRequest:
    """Everything needed to create one server. Never mutated."""

    name: str
    flavor: str
    networks: Tuple[NetworkRequest, ...]
    image: Optional[str] = None
    volume_size: Optional[int] = None
    user_data: Optional[str] = None
    disk_bus: Optional[str] = None
    metadata: Mapping[str, str] = field(default_factory=dict)
    netboot: bool = False
    power_off: bool = False
    wait_for_power_off: bool = False

    def __post_init__(self):
        object.__setattr__(self, "networks", tuple(self.networks))
        object.__setattr__(self, "metadata", dict(self.metadata))


@dataclass(frozen=True, slots=True)
class MigrationRequest:
    """A request to turn a local VMDK disk into a running server."""

    name: str
    vmdk_path: str
    flavor: str
    networks: Tuple[NetworkRequest, ...]
    volume_size: Optional[int] = None
    disk_bus: str = "scsi"
    power_off: bool = False
    disk_format: str = "vmdk"
    container_format: str = "bare"
    visibility: str = "shared"

    def __post_init__(self):
        # migrated interfaces always go through pre-created ports
        object.__setattr__(
            self,
            "networks",
            tuple(
                NetworkRequest(n.network, ip=n.ip, mac=n.mac, via_port=True)
                for n in self.networks
            ),
        )


@dataclass(frozen=True, slots=True)
class BlockDeviceMapping:
    """The boot disk description consumed by server creation."""

    source_type: str
    uuid: str
    destination_type: str = "volume"
    volume_size: Optional[int] = None
    disk_bus: Optional[str] = None
    volume_type: Optional[str] = None
    delete_on_termination: bool = True
    boot_index: int = 0

    def to_api(self) -> Dict[str, Any]:
        """Return the ``block_device_mapping_v2`` entry for this mapping."""
        mapping: Dict[str, Any] = {
            "boot_index": self.boot_index,
            "uuid": self.uuid,
            "source_type": self.source_type,
            "destination_type": self.destination_type,
            "delete_on_termination": self.delete_on_termination,
        }
        if self.volume_size is not None:
            mapping["volume_size"] = self.volume_size
        if self.disk_bus:
            mapping["disk_bus"] = self.disk_bus
        if self.volume_type:
            mapping["volume_type"] = self.volume_type
        return mapping


@dataclass(frozen=True, slots=True)
class VMResource:
    """A snapshot of a server as returned by the compute service."""

    id: str
    name: str = ""
    status: str = ""
    power_state: Optional[int] = None
    task_state: Optional[str] = None
    metadata: Mapping[str, str] = field(default_factory=dict)

    @property
    def power_state_label(self) -> str:
        return power_state_label(self.power_state)

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> "VMResource":
        return cls(
            id=raw.get("id", ""),
            name=raw.get("name", ""),
            status=raw.get("status", ""),
            power_state=raw.get("OS-EXT-STS:power_state"),
            task_state=raw.get("OS-EXT-STS:task_state"),
            metadata=dict(raw.get("metadata") or {}),
        )


@dataclass(frozen=True, slots=True)
class VolumeResource:
    id: str
    name: str = ""
    status: str = ""
    size: Optional[int] = None
    bootable: bool = False

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> "VolumeResource":
        return cls(
            id=raw.get("id", ""),
            name=raw.get("name") or "",
            status=raw.get("status", ""),
            size=raw.get("size"),
            bootable=str(raw.get("bootable", "false")).lower() == "true",
        )


@dataclass(frozen=True, slots=True)
class ImageResource:
    id: str
    name: str = ""
    status: str = ""
    size: Optional[int] = None

    @classmethod
    def from_api(cls, raw: Mapping[str, Any]) -> "ImageResource":
        return cls(
            id=raw.get("id", ""),
            name=raw.get("name") or "",
            status=raw.get("status", ""),
            size=raw.get("size"),
        )


@dataclass(slots=True)
class NetworkAttachment:
    """The outcome of attaching one requested network."""

    network: str
    network_id: str
    requested_ip: Optional[str] = None
    requested_mac: Optional[str] = None
    port_id: Optional[str] = None
    mac: Optional[str] = None
    ip: Optional[str] = None
    unmanaged: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network": self.network,
            "network_id": self.network_id,
            "mac_address": self.mac or "UNKNOWN",
            "ip_address": self.ip,
            "port_id": self.port_id,
            "unmanaged": self.unmanaged,
        }


@dataclass(slots=True)
class ProvisionSummary:
    """The structured result of a provisioning run."""

    vm: VMResource
    networks: List[NetworkAttachment] = field(default_factory=list)
    powered_off: bool = False
    console_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {
            "id": self.vm.id,
            "name": self.vm.name,
            "power_state": f"{self.vm.power_state} ({self.vm.power_state_label})",
            "networks": [attachment.to_dict() for attachment in self.networks],
        }
        if self.vm.metadata:
            summary["metadata"] = dict(self.vm.metadata)
        if self.powered_off:
            summary["shutdown_requested"] = True
        if self.console_url:
            summary["console_url"] = self.console_url
        return summary


@dataclass(slots=True)
class MigrationJob:
    """
    The mutable state of one migration. The temporary image belongs to
    this job alone.
    """

    local_path: str
    temporary_image_id: Optional[str] = None
    image_size: Optional[int] = None
    summary: Optional[ProvisionSummary] = None
    temporary_image_deleted: bool = False


@dataclass(slots=True)
class MigrationSummary:
    provision: ProvisionSummary
    temporary_image_id: str
    volume_size: int

    def to_dict(self) -> Dict[str, Any]:
        summary = self.provision.to_dict()
        summary["temporary_image_id"] = self.temporary_image_id
        summary["volume_size"] = self.volume_size
        return summary
