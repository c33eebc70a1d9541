"""Kubernetes-backed IP address management for CNI plugins.

Addresses are drawn at random from a pool stored as a cluster-scoped custom
resource.  The pool records which pod (namespace and name) holds each address,
so a pod that is recreated under the same name gets its address back, while
addresses held by pods that no longer exist are reclaimed when a random draw
lands on them.

The package is split into:

* :mod:`k8s_ipam.iprange`, :mod:`k8s_ipam.reservations` and
  :mod:`k8s_ipam.pool` holding the pool model;
* :mod:`k8s_ipam.allocator` implementing allocate/free as a single
  read-modify-write cycle guarded by the pool's resource version; and
* :mod:`k8s_ipam.store` / :mod:`k8s_ipam.kube` providing the collaborators
  the allocator reads from and writes to.

Concurrent allocations are not coordinated in-process.  A write made with a
stale resource version fails with :class:`ConflictError` and the caller runs
the whole operation again.
"""

from .allocator import Allocation, Allocator, AllocatorOptions, ReclaimMode  # noqa: F401
from .exceptions import (  # noqa: F401
    ConfigError,
    ConflictError,
    IPAMError,
    LivenessQueryError,
    PoolExhausted,
    StoreError,
    ValidationError,
)
from .iprange import IPRange  # noqa: F401
from .pool import IPPool  # noqa: F401
from .reservations import ReservationTable  # noqa: F401

__all__ = [
    "Allocation",
    "Allocator",
    "AllocatorOptions",
    "ConfigError",
    "ConflictError",
    "IPAMError",
    "IPPool",
    "IPRange",
    "LivenessQueryError",
    "PoolExhausted",
    "ReclaimMode",
    "ReservationTable",
    "StoreError",
    "ValidationError",
]
