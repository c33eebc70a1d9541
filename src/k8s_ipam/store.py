"""Collaborator contracts used by the allocator.

The allocator never talks to a datastore directly.  It fetches a
:class:`VersionedPool` from a :class:`PoolStore`, asks a :class:`PodLiveness`
whether the holder of an address is still around, and hands the pool back
together with the version it was fetched at.  Stores must reject writes made
with a stale version by raising :class:`~k8s_ipam.exceptions.ConflictError`.

The in-memory implementations below honour that contract and back the unit
tests and local experiments.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Set, Tuple

from .exceptions import ConflictError, StoreError
from .pool import IPPool

LOG = logging.getLogger(__name__)


@dataclass
class VersionedPool:
    """A pool snapshot and the opaque version token it was read at."""

    pool: IPPool
    version: Any


class PoolStore(ABC):
    """Read and conditionally write a named IP pool."""

    @abstractmethod
    def fetch(self, pool_name: str) -> VersionedPool:
        """Return the current snapshot of ``pool_name``."""

    @abstractmethod
    def write_status(self, pool: IPPool, version: Any) -> None:
        """Persist ``pool.status()`` if ``version`` is still current."""


class PodLiveness(ABC):
    """Answer whether a pod still exists."""

    @abstractmethod
    def exists(self, namespace: str, name: str) -> bool:
        """Return ``True`` while ``namespace/name`` exists."""


class InMemoryPoolStore(PoolStore):
    """Versioned pool store kept in a dictionary.

    Resources are stored in their serialized form so every fetch hands out an
    independent copy, the same way a remote store would.
    """

    def __init__(self) -> None:
        self._resources: Dict[str, Dict[str, Any]] = {}
        self._versions: Dict[str, int] = {}
        self.writes = 0

    def put(self, resource: Mapping[str, Any]) -> int:
        """Create or replace a pool resource, returning its new version."""

        name = str((resource.get("metadata") or {}).get("name", ""))
        if not name:
            raise StoreError("ip pool resource has no metadata.name")
        self._resources[name] = copy.deepcopy(dict(resource))
        self._versions[name] = self._versions.get(name, 0) + 1
        return self._versions[name]

    def add_pool(self, pool: IPPool) -> int:
        return self.put(pool.to_resource())

    def resource(self, pool_name: str) -> Dict[str, Any]:
        return copy.deepcopy(self._get(pool_name))

    def version(self, pool_name: str) -> int:
        self._get(pool_name)
        return self._versions[pool_name]

    def fetch(self, pool_name: str) -> VersionedPool:
        resource = self._get(pool_name)
        return VersionedPool(
            pool=IPPool.from_resource(copy.deepcopy(resource)),
            version=self._versions[pool_name],
        )

    def write_status(self, pool: IPPool, version: Any) -> None:
        current = self._get(pool.name)
        if self._versions[pool.name] != version:
            raise ConflictError(pool.name, version)
        current["status"] = copy.deepcopy(pool.status())
        self._versions[pool.name] += 1
        self.writes += 1
        LOG.debug("ip pool %s stored at version %s", pool.name, self._versions[pool.name])

    def _get(self, pool_name: str) -> Dict[str, Any]:
        try:
            return self._resources[pool_name]
        except KeyError:
            raise StoreError(f"ip pool '{pool_name}' not found") from None


class InMemoryPodLiveness(PodLiveness):
    """Liveness oracle backed by a set of ``(namespace, name)`` pairs."""

    def __init__(self, pods: Iterable[Tuple[str, str]] = ()) -> None:
        self.pods: Set[Tuple[str, str]] = set(pods)
        self.queries: list[Tuple[str, str]] = []

    def add(self, namespace: str, name: str) -> None:
        self.pods.add((namespace, name))

    def remove(self, namespace: str, name: str) -> None:
        self.pods.discard((namespace, name))

    def exists(self, namespace: str, name: str) -> bool:
        self.queries.append((namespace, name))
        return (namespace, name) in self.pods
