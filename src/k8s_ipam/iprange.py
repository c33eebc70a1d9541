"""CIDR range value used as the allocation block of an IP pool."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Union

from .exceptions import ValidationError

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def parse_address(value: object) -> IPAddress:
    """Return ``value`` as an address object, raising :class:`ValidationError`."""

    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    try:
        return ipaddress.ip_address(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"invalid ip address {value!r}: {exc}") from exc


def network_contains(network: IPNetwork, address: IPAddress) -> bool:
    """Family-aware containment test."""

    if network.version != address.version:
        return False
    return address in network


@dataclass(frozen=True)
class IPRange:
    """Immutable wrapper around a CIDR literal.

    The literal is kept verbatim so that a pool resource round-trips without
    rewriting what the operator typed.  Host bits set in the literal are
    tolerated and masked off, e.g. ``10.0.0.5/24`` describes ``10.0.0.0/24``.
    """

    cidr: str

    @classmethod
    def parse(cls, cidr: str) -> "IPRange":
        value = cls(str(cidr).strip())
        value.validate()
        return value

    def validate(self) -> None:
        self._parse()

    @property
    def network(self) -> IPNetwork:
        return self._parse()

    def _parse(self) -> IPNetwork:
        if "/" not in self.cidr:
            raise ValidationError(f"ip range {self.cidr!r} is not in CIDR notation")
        try:
            return ipaddress.ip_network(self.cidr, strict=False)
        except ValueError as exc:
            raise ValidationError(f"invalid ip range {self.cidr!r}: {exc}") from exc

    def address_family_bits(self) -> int:
        return self.network.max_prefixlen

    def prefix_length(self) -> int:
        return self.network.prefixlen

    def host_bits(self) -> int:
        return self.address_family_bits() - self.prefix_length()

    def contains_address(self, address: IPAddress) -> bool:
        return network_contains(self.network, address)

    def __str__(self) -> str:
        return self.network.with_prefixlen
