"""(namespace, pod) -> address reservation table."""

from __future__ import annotations

from typing import Dict, Iterator, Mapping, Optional, Set, Tuple

from .exceptions import ValidationError
from .iprange import IPAddress, parse_address

PodKey = Tuple[str, str]


class ReservationTable:
    """Map ``(namespace, pod)`` pairs to addresses.

    The table is keyed by the composite pair, so a namespace "bucket" only
    exists while at least one pod in it holds a reservation and the nested
    form produced by :meth:`to_dict` never contains empty namespaces.

    Reserving an existing key overwrites it.  Address uniqueness is *not*
    enforced: two keys may hold the same address, in which case
    :meth:`lookup_by_address` returns one of them without any guarantee about
    which.  Keeping addresses unique is the allocator's job.
    """

    def __init__(self, entries: Optional[Mapping[PodKey, IPAddress]] = None) -> None:
        self._entries: Dict[PodKey, IPAddress] = {}
        for (namespace, pod), address in (entries or {}).items():
            self.reserve(namespace, pod, address)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Mapping[str, str]]]) -> "ReservationTable":
        """Build a table from the nested ``namespace -> pod -> address`` form."""

        table = cls()
        if not data:
            return table
        if not isinstance(data, Mapping):
            raise ValidationError("reservations must be a mapping of namespaces")
        for namespace, pods in data.items():
            if not pods:
                continue
            if not isinstance(pods, Mapping):
                raise ValidationError(
                    f"reservations for namespace '{namespace}' must be a mapping"
                )
            for pod, address in pods.items():
                table.reserve(str(namespace), str(pod), address)
        return table

    def to_dict(self) -> Dict[str, Dict[str, str]]:
        nested: Dict[str, Dict[str, str]] = {}
        for (namespace, pod), address in self._entries.items():
            nested.setdefault(namespace, {})[pod] = str(address)
        return nested

    def reserve(self, namespace: str, pod: str, address: object) -> None:
        self._entries[(namespace, pod)] = parse_address(address)

    def lookup(self, namespace: str, pod: str) -> Optional[IPAddress]:
        return self._entries.get((namespace, pod))

    def lookup_by_address(self, address: IPAddress) -> Optional[PodKey]:
        for key, held in self._entries.items():
            if held == address:
                return key
        return None

    def is_reserved(self, address: IPAddress) -> bool:
        return self.lookup_by_address(address) is not None

    def release(self, namespace: str, pod: str) -> bool:
        """Drop the reservation for ``(namespace, pod)``; report whether one existed."""

        return self._entries.pop((namespace, pod), None) is not None

    def namespaces(self) -> Set[str]:
        return {namespace for namespace, _ in self._entries}

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[Tuple[str, str, IPAddress]]:
        for (namespace, pod), address in self._entries.items():
            yield namespace, pod, address

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ReservationTable):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"ReservationTable({self.to_dict()!r})"
