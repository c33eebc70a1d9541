"""Pod address allocation against a versioned pool store.

Every call is a self-contained read-modify-write cycle:

1. fetch the pool snapshot and its version;
2. reuse the pod's existing reservation or probe random candidates,
   reclaiming addresses whose holder no longer exists;
3. write the pool status back conditioned on the version from step 1.

A stale version surfaces as :class:`~k8s_ipam.exceptions.ConflictError`.
The allocator never retries internally; the caller re-runs the whole call.
"""

from __future__ import annotations

import ipaddress
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .exceptions import PoolExhausted
from .iprange import IPAddress
from .pool import IPPool
from .store import PodLiveness, PoolStore

LOG = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 1024


class ReclaimMode(Enum):
    """How a candidate reclaimed from a departed pod is finalised."""

    IMMEDIATE = "immediate"
    SECOND_PASS = "second-pass"


@dataclass(frozen=True)
class AllocatorOptions:
    """Tuning knobs for the probe loop.

    Attributes
    ----------
    max_attempts:
        Number of random draws before giving up with
        :class:`~k8s_ipam.exceptions.PoolExhausted`.  ``None`` probes forever.
    reclaim_mode:
        ``IMMEDIATE`` accepts a reclaimed address straight away.
        ``SECOND_PASS`` re-evaluates the same candidate, which is then found
        to be held by the caller and accepted.
    random_bits:
        Cap on the number of randomized host bits.  ``64`` matches the
        historical plugin, which never reached the upper host bits of IPv6
        ranges wider than /64.
    """

    max_attempts: Optional[int] = DEFAULT_MAX_ATTEMPTS
    reclaim_mode: ReclaimMode = ReclaimMode.IMMEDIATE
    random_bits: Optional[int] = None


@dataclass(frozen=True)
class Allocation:
    """Address handed to a pod along with the subnet and gateway to use."""

    address: IPAddress
    prefix_length: int
    gateway: Optional[IPAddress] = None

    @property
    def interface(self) -> ipaddress.IPv4Interface | ipaddress.IPv6Interface:
        return ipaddress.ip_interface(f"{self.address}/{self.prefix_length}")

    @property
    def version(self) -> int:
        return self.address.version


class Allocator:
    """Allocate and free pod addresses in a single named pool."""

    def __init__(
        self,
        store: PoolStore,
        liveness: PodLiveness,
        pool_name: str,
        options: Optional[AllocatorOptions] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._store = store
        self._liveness = liveness
        self._pool_name = pool_name
        self._options = options or AllocatorOptions()
        self._rng = rng or random.SystemRandom()

    @property
    def pool_name(self) -> str:
        return self._pool_name

    def allocate(self, namespace: str, name: str) -> Allocation:
        snapshot = self._store.fetch(self._pool_name)
        pool = snapshot.pool
        pool.validate()

        existing = pool.existing_reservation(namespace, name)
        if existing is not None:
            LOG.debug("reusing %s for pod %s/%s", existing, namespace, name)
            return self._allocation(pool, existing)

        address = self._probe(pool, namespace, name)
        pool.reserve_dynamic(namespace, name, address)
        self._store.write_status(pool, snapshot.version)
        LOG.info(
            "allocated %s from ip pool %s to pod %s/%s",
            address,
            self._pool_name,
            namespace,
            name,
        )
        return self._allocation(pool, address)

    def free(self, namespace: str, name: str) -> bool:
        """Release the dynamic reservation of ``namespace/name``.

        Returns ``False`` when there was nothing to release, in which case
        the pool is not written.
        """

        snapshot = self._store.fetch(self._pool_name)
        pool = snapshot.pool
        if not pool.release_dynamic(namespace, name):
            LOG.debug("no dynamic reservation for pod %s/%s", namespace, name)
            return False

        self._store.write_status(pool, snapshot.version)
        LOG.info("released address of pod %s/%s in ip pool %s", namespace, name, self._pool_name)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _probe(self, pool: IPPool, namespace: str, name: str) -> IPAddress:
        max_attempts = self._options.max_attempts
        attempts = 0
        candidate: Optional[IPAddress] = None

        while True:
            if candidate is None:
                if max_attempts is not None and attempts >= max_attempts:
                    raise PoolExhausted(self._pool_name, attempts)
                candidate = pool.random_address(self._rng, self._options.random_bits)
                attempts += 1

            holder = pool.holder_of(candidate)
            if holder == (namespace, name):
                return candidate

            if holder is not None:
                if pool.is_static(candidate) or self._liveness.exists(*holder):
                    candidate = None
                    continue

                LOG.info(
                    "reclaiming %s from departed pod %s/%s for %s/%s",
                    candidate,
                    holder[0],
                    holder[1],
                    namespace,
                    name,
                )
                pool.release_dynamic(*holder)
                pool.reserve_dynamic(namespace, name, candidate)
                if self._options.reclaim_mode is ReclaimMode.IMMEDIATE:
                    return candidate
                continue

            if not pool.is_reserved(candidate):
                return candidate
            candidate = None

    def _allocation(self, pool: IPPool, address: IPAddress) -> Allocation:
        return Allocation(
            address=address,
            prefix_length=pool.netmask_bits,
            gateway=pool.gateway,
        )
