"""Error taxonomy shared by the allocator core and the CNI entrypoint."""

from __future__ import annotations


class IPAMError(Exception):
    """Base class for every failure raised by this package."""


class ConfigError(IPAMError, ValueError):
    """Required plugin configuration is missing or malformed."""


class ValidationError(IPAMError, ValueError):
    """An IP pool definition is self-inconsistent."""


class ConflictError(IPAMError):
    """A pool write lost the optimistic-concurrency race.

    Callers are expected to re-fetch the pool and run the whole operation
    again.
    """

    def __init__(self, pool_name: str, version: object = None) -> None:
        super().__init__(
            f"failed to update ip pool '{pool_name}', resource version "
            f"{version!r} is stale; retry"
        )
        self.pool_name = pool_name
        self.version = version


class StoreError(IPAMError):
    """Reading or writing the pool resource failed."""


class LivenessQueryError(StoreError):
    """Checking whether a pod still exists failed."""


class PoolExhausted(IPAMError):
    """No free address was found within the configured number of draws."""

    def __init__(self, pool_name: str, attempts: int) -> None:
        super().__init__(
            f"no free address found in ip pool '{pool_name}' after {attempts} attempts"
        )
        self.pool_name = pool_name
        self.attempts = attempts
