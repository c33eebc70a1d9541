"""CNI result, error and version documents."""

from __future__ import annotations

from typing import Any, Dict, Optional

from k8s_ipam.allocator import Allocation
from k8s_ipam.exceptions import (
    ConfigError,
    ConflictError,
    IPAMError,
    LivenessQueryError,
    PoolExhausted,
    StoreError,
    ValidationError,
)

IMPLEMENTED_VERSION = "0.4.0"
# 0.1.0 and 0.2.0 results carry one "ip4" / "ip6" block instead of an "ips" list.
LEGACY_VERSIONS = ("0.1.0", "0.2.0")
RESULT_VERSIONS = ("0.3.0", "0.3.1", "0.4.0")
SUPPORTED_VERSIONS = LEGACY_VERSIONS + RESULT_VERSIONS

# Well-known CNI error codes plus plugin specific ones (>= 100).
ERR_INCOMPATIBLE_VERSION = 1
ERR_INVALID_ENVIRONMENT = 4
ERR_INVALID_CONFIG = 7
ERR_TRY_AGAIN_LATER = 11
ERR_POOL_EXHAUSTED = 100
ERR_STORE = 101
ERR_LIVENESS = 102


class UnknownCommand(IPAMError):
    def __init__(self, command: str) -> None:
        super().__init__(f"unsupported CNI_COMMAND {command!r}")
        self.command = command


class UnsupportedVersion(IPAMError):
    def __init__(self, version: str) -> None:
        super().__init__(f"cannot convert result to cniVersion {version!r}")
        self.version = version


def result_version(requested: str) -> str:
    if not requested:
        return IMPLEMENTED_VERSION
    if requested not in SUPPORTED_VERSIONS:
        raise UnsupportedVersion(requested)
    return requested


def build_result(cni_version: str, allocation: Optional[Allocation] = None) -> Dict[str, Any]:
    version = result_version(cni_version)
    if version in LEGACY_VERSIONS:
        return _build_legacy_result(version, allocation)

    result: Dict[str, Any] = {
        "cniVersion": version,
        "ips": [],
        "routes": [],
        "dns": {},
    }
    if allocation is None:
        return result

    entry: Dict[str, Any] = {
        "version": str(allocation.version),
        "address": str(allocation.interface),
    }
    if allocation.gateway is not None:
        entry["gateway"] = str(allocation.gateway)
        default_route = "0.0.0.0/0" if allocation.version == 4 else "::/0"
        result["routes"].append({"dst": default_route, "gw": str(allocation.gateway)})
    result["ips"].append(entry)
    return result


def _build_legacy_result(version: str, allocation: Optional[Allocation]) -> Dict[str, Any]:
    result: Dict[str, Any] = {"cniVersion": version, "dns": {}}
    if allocation is None:
        return result

    block: Dict[str, Any] = {"ip": str(allocation.interface)}
    if allocation.gateway is not None:
        default_route = "0.0.0.0/0" if allocation.version == 4 else "::/0"
        block["gateway"] = str(allocation.gateway)
        block["routes"] = [{"dst": default_route, "gw": str(allocation.gateway)}]
    result[f"ip{allocation.version}"] = block
    return result


def error_code(exc: Exception) -> int:
    if isinstance(exc, UnsupportedVersion):
        return ERR_INCOMPATIBLE_VERSION
    if isinstance(exc, UnknownCommand):
        return ERR_INVALID_ENVIRONMENT
    if isinstance(exc, (ConfigError, ValidationError)):
        return ERR_INVALID_CONFIG
    if isinstance(exc, ConflictError):
        return ERR_TRY_AGAIN_LATER
    if isinstance(exc, PoolExhausted):
        return ERR_POOL_EXHAUSTED
    if isinstance(exc, LivenessQueryError):
        return ERR_LIVENESS
    if isinstance(exc, StoreError):
        return ERR_STORE
    return ERR_INVALID_CONFIG


def build_error(cni_version: str, exc: Exception, code: Optional[int] = None) -> Dict[str, Any]:
    return {
        "cniVersion": cni_version or IMPLEMENTED_VERSION,
        "code": code if code is not None else error_code(exc),
        "msg": str(exc),
    }


def build_version_info() -> Dict[str, Any]:
    return {
        "cniVersion": IMPLEMENTED_VERSION,
        "supportedVersions": list(SUPPORTED_VERSIONS),
    }
