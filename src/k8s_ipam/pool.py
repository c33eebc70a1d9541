"""IP pool model and its Kubernetes resource representation.

An :class:`IPPool` combines the allocation range, the subnet mask actually
configured on pod interfaces, an optional gateway and two reservation tables:

* ``static_reservations`` authored by the operator in the resource ``spec``.
  They win over dynamic reservations and are trusted even when the address
  lies outside the pool's CIDR.
* ``dynamic_reservations`` maintained by the allocator in the resource
  ``status``.  This is the only part of the pool this package ever mutates.

Pools are never cached between plugin invocations; every operation starts
from a fresh snapshot obtained from the store.
"""

from __future__ import annotations

import ipaddress
import random
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from .exceptions import ValidationError
from .iprange import IPAddress, IPNetwork, IPRange, network_contains, parse_address
from .reservations import PodKey, ReservationTable

API_GROUP = "k8s.pgc.umn.edu"
API_VERSION = "v1alpha1"
KIND = "IPPool"

STATUS_KEY = "dynamicReservations"
# Key read and written by earlier releases of the plugin, which decode it
# case-sensitively. Status is written under both keys.
LEGACY_STATUS_KEY = "DynamicReservations"


@dataclass
class IPPool:
    name: str
    range: IPRange
    netmask_bits: int
    gateway: Optional[IPAddress] = None
    static_reservations: ReservationTable = field(default_factory=ReservationTable)
    dynamic_reservations: Optional[ReservationTable] = None

    # ------------------------------------------------------------------
    # Resource conversion
    # ------------------------------------------------------------------
    @classmethod
    def from_resource(cls, resource: Mapping[str, Any]) -> "IPPool":
        if not isinstance(resource, Mapping):
            raise ValidationError("ip pool resource must be a mapping")

        metadata = resource.get("metadata") or {}
        spec = resource.get("spec")
        if not isinstance(spec, Mapping):
            raise ValidationError("ip pool resource is missing its 'spec' section")

        try:
            netmask_bits = int(spec.get("netmaskBits", 0))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"invalid netmaskBits {spec.get('netmaskBits')!r}") from exc

        gateway_raw = spec.get("gateway")
        gateway = parse_address(gateway_raw) if gateway_raw else None

        status = resource.get("status") or {}
        if not isinstance(status, Mapping):
            raise ValidationError("ip pool resource 'status' must be a mapping")
        dynamic_raw = status.get(STATUS_KEY, status.get(LEGACY_STATUS_KEY))

        return cls(
            name=str(metadata.get("name", "")),
            range=IPRange(str(spec.get("range", ""))),
            netmask_bits=netmask_bits,
            gateway=gateway,
            static_reservations=ReservationTable.from_dict(spec.get("staticReservations")),
            dynamic_reservations=(
                ReservationTable.from_dict(dynamic_raw) if dynamic_raw is not None else None
            ),
        )

    def to_resource(self, version: Optional[str] = None) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"name": self.name}
        if version is not None:
            metadata["resourceVersion"] = str(version)

        return {
            "apiVersion": f"{API_GROUP}/{API_VERSION}",
            "kind": KIND,
            "metadata": metadata,
            "spec": {
                "range": self.range.cidr,
                "netmaskBits": self.netmask_bits,
                "gateway": str(self.gateway) if self.gateway is not None else "",
                "staticReservations": self.static_reservations.to_dict(),
            },
            "status": self.status(),
        }

    def status(self) -> Dict[str, Any]:
        """Return the ``status`` section, the only part written back."""

        if self.dynamic_reservations is None:
            return {}
        table = self.dynamic_reservations
        return {STATUS_KEY: table.to_dict(), LEGACY_STATUS_KEY: table.to_dict()}

    # ------------------------------------------------------------------
    # Validation / geometry
    # ------------------------------------------------------------------
    def effective_network(self) -> IPNetwork:
        """The range's base address masked to ``netmask_bits``."""

        base = self.range.network.network_address
        return ipaddress.ip_network(f"{base}/{self.netmask_bits}", strict=False)

    def validate(self) -> None:
        """Raise :class:`ValidationError` for obviously broken pool definitions."""

        try:
            self.range.validate()
        except ValidationError as exc:
            raise ValidationError(
                f"ip pool '{self.name}' range is invalid, please check your syntax: {exc}"
            ) from exc

        if self.netmask_bits < 0 or self.netmask_bits > self.range.address_family_bits():
            raise ValidationError(
                f"ip pool '{self.name}' netmask /{self.netmask_bits} is invalid"
            )

        if self.netmask_bits > self.range.prefix_length():
            raise ValidationError(
                f"ip pool '{self.name}' netmask /{self.netmask_bits} does not completely "
                f"contain range {self.range.cidr}"
            )

        if self.gateway is not None and not self.contains(self.gateway):
            raise ValidationError(
                f"ip pool '{self.name}' gateway {self.gateway} must be on the subnet "
                f"{self.effective_network()} that includes the range"
            )

    def contains(self, address: IPAddress) -> bool:
        return network_contains(self.effective_network(), address)

    # ------------------------------------------------------------------
    # Reservation queries
    # ------------------------------------------------------------------
    def existing_reservation(self, namespace: str, pod: str) -> Optional[IPAddress]:
        # Static entries are returned without a containment check.
        address = self.static_reservations.lookup(namespace, pod)
        if address is not None:
            return address
        if self.dynamic_reservations is None:
            return None
        return self.dynamic_reservations.lookup(namespace, pod)

    def holder_of(self, address: IPAddress) -> Optional[PodKey]:
        """Return the pod holding ``address``; ``None`` outside the pool or for the gateway."""

        if not self.contains(address) or self.is_gateway(address):
            return None

        holder = self.static_reservations.lookup_by_address(address)
        if holder is not None:
            return holder
        if self.dynamic_reservations is None:
            return None
        return self.dynamic_reservations.lookup_by_address(address)

    def is_static(self, address: IPAddress) -> bool:
        return self.static_reservations.is_reserved(address)

    def is_gateway(self, address: IPAddress) -> bool:
        return self.gateway is not None and self.gateway == address

    def is_reserved(self, address: IPAddress) -> bool:
        """True when ``address`` is inside the pool and taken.

        Addresses outside the pool are reported as not reserved.
        """

        if not self.contains(address):
            return False
        if self.is_gateway(address):
            return True
        return self.holder_of(address) is not None

    # ------------------------------------------------------------------
    # Random draws
    # ------------------------------------------------------------------
    def random_address(
        self,
        rng: Optional[random.Random] = None,
        random_bits: Optional[int] = None,
    ) -> IPAddress:
        """Draw an address from the host-bit space of :attr:`range`.

        ``random_bits`` caps how many low-order host bits are randomized.
        Passing 64 reproduces the historical behaviour where only a 64-bit
        random value was overlaid, leaving the upper host bits of wide IPv6
        ranges at zero.
        """

        rng = rng or random
        network = self.range.network
        host_bits = network.max_prefixlen - network.prefixlen
        if random_bits is not None:
            host_bits = min(host_bits, random_bits)

        value = rng.getrandbits(host_bits) if host_bits > 0 else 0
        base = network.network_address
        return type(base)(int(base) | value)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def reserve_dynamic(self, namespace: str, pod: str, address: IPAddress) -> None:
        if self.dynamic_reservations is None:
            self.dynamic_reservations = ReservationTable()
        self.dynamic_reservations.reserve(namespace, pod, address)

    def release_dynamic(self, namespace: str, pod: str) -> bool:
        if self.dynamic_reservations is None:
            return False
        return self.dynamic_reservations.release(namespace, pod)
