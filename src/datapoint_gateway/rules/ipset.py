"""Address sets referenced by ``IPSetReference`` statements."""

from __future__ import annotations

import ipaddress
from typing import Any, Protocol

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


class AddressSet(Protocol):
    """Membership provider.  Anything with ``contains(ip) -> bool`` will do."""

    name: str

    def contains(self, ip: str) -> bool: ...


class StaticAddressSet:
    """A fixed list of addresses and CIDR ranges.

    Bare addresses are treated as single-host networks (``/32`` or ``/128``).
    Addresses that fail to parse at lookup time are never members.

    Raises:
        ValueError: If any configured entry is not a valid address or network.
    """

    def __init__(self, name: str, addresses: list[str], *, version: str = "IPV4") -> None:
        self.name = name
        self.version = version
        self._networks: list[IPNetwork] = [
            ipaddress.ip_network(a.strip(), strict=False) for a in addresses
        ]
        expected = 4 if version == "IPV4" else 6
        for net in self._networks:
            if net.version != expected:
                raise ValueError(f"Address {net} does not match set version {version}")

    def contains(self, ip: str) -> bool:
        try:
            addr = ipaddress.ip_address(ip.strip())
        except ValueError:
            return False
        return any(addr.version == net.version and addr in net for net in self._networks)

    def export(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "addresses": [str(n) for n in self._networks],
        }
