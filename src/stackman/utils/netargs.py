"""
Parsing of the comma separated network flags of the cli, e.g.

    --networks netA,netB,netC --ips 10.0.0.5,auto,auto --macs auto,auto,bb:bb:bb:bb:bb:bb
"""

import re
from typing import List, Optional, Sequence

from stackman.exceptions import PreconditionError
from stackman.models import NetworkRequest

_MAC_RE = re.compile(r'^[0-9a-fA-F]{2}([:-])[0-9a-fA-F]{2}(\1[0-9a-fA-F]{2}){4}$')
_DOTTED_MAC_RE = re.compile(r'^[0-9a-fA-F]{4}\.[0-9a-fA-F]{4}\.[0-9a-fA-F]{4}$')


def split_csv(value: Optional[str]) -> List[str]:
    """Split a comma separated flag, an empty flag gives an empty list."""
    if value is None or not value.strip():
        return []
    return [item.strip() for item in value.split(',')]


def validate_mac(mac: Optional[str]):
    """
    Raise :class:`PreconditionError` unless *mac* is empty, ``auto`` or a
    48 bit mac address (``aa:bb:cc:dd:ee:ff``, ``aa-bb-...`` or
    ``aabb.ccdd.eeff``).
    """
    if mac is None or mac.strip() == '' or mac.strip().lower() == 'auto':
        return
    mac = mac.strip()
    if not (_MAC_RE.match(mac) or _DOTTED_MAC_RE.match(mac)):
        raise PreconditionError(f"invalid MAC address: '{mac}'")


def _per_network(values: List[str], count: int, flag: str) -> List[Optional[str]]:
    if not values:
        return [None] * count
    if len(values) != count:
        raise PreconditionError(
            f"the number of {flag} ({len(values)}) must match "
            f"the number of networks ({count})")
    return values


def parse_network_requests(networks: Optional[str] = None,
                           ips: Optional[str] = None,
                           macs: Optional[str] = None,
                           via_port: bool = False,
                           default_networks: Sequence[str] = (),
                           require_macs: bool = False) -> List[NetworkRequest]:
    """
    Build the network requests from the csv flags.

    Args:
        networks: the comma separated network names or ids
        ips: the comma separated fixed ips (``auto`` or empty for none)
        macs: the comma separated macs (``auto`` or empty for none)
        via_port: force the port path for every network
        default_networks: used when *networks* is empty
        require_macs: the mac list must be given, one per network

    Raises:
        PreconditionError: when there are no networks, the list lengths do
          not match or a mac is invalid
    """
    names = split_csv(networks) or list(default_networks)
    if not names or any(not name for name in names):
        raise PreconditionError(
            "no networks specified; provide --networks or set 'networks' in the settings")

    mac_values = split_csv(macs)
    if require_macs and len(mac_values) != len(names):
        raise PreconditionError(
            "the number of networks must match the number of MAC addresses")

    ip_list = _per_network(split_csv(ips), len(names), 'ips')
    mac_list = _per_network(mac_values, len(names), 'MAC addresses')
    for mac in mac_list:
        validate_mac(mac)

    return [
        NetworkRequest(name, ip=ip, mac=mac, via_port=via_port)
        for name, ip, mac in zip(names, ip_list, mac_list)
    ]
