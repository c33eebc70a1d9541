"""Network configuration, CNI_ARGS and YAML settings parsing."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from k8s_ipam.allocator import DEFAULT_MAX_ATTEMPTS, AllocatorOptions, ReclaimMode
from k8s_ipam.exceptions import ConfigError
from k8s_ipam.kube import DEFAULT_TIMEOUT

POD_NAMESPACE_ARG = "K8S_POD_NAMESPACE"
POD_NAME_ARG = "K8S_POD_NAME"


@dataclass
class AllocatorSettings:
    max_attempts: Optional[int] = DEFAULT_MAX_ATTEMPTS
    reclaim_mode: ReclaimMode = ReclaimMode.IMMEDIATE
    random_bits: Optional[int] = None

    def to_options(self) -> AllocatorOptions:
        return AllocatorOptions(
            max_attempts=self.max_attempts,
            reclaim_mode=self.reclaim_mode,
            random_bits=self.random_bits,
        )


@dataclass
class PluginConfig:
    kubeconfig: Path
    pool_name: str
    allocator: AllocatorSettings = field(default_factory=AllocatorSettings)
    timeout: float = DEFAULT_TIMEOUT
    conflict_retries: int = 16
    retry_backoff: float = 0.05
    log_level: str = "INFO"
    log_file: Optional[Path] = None


@dataclass
class NetworkConfig:
    name: str
    cni_version: str
    ipam: PluginConfig


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"'{key}' section must be a mapping")
    return value


def _optional_int(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"'{name}' must be an integer, got {value!r}") from exc


def _reclaim_mode(value: Any) -> ReclaimMode:
    try:
        return ReclaimMode(str(value).lower())
    except ValueError:
        choices = ", ".join(mode.value for mode in ReclaimMode)
        raise ConfigError(f"unsupported reclaim mode '{value}' (expected one of {choices})") from None


def load_config(path: Path) -> Dict[str, Any]:
    """Read the YAML settings file and flatten it to ``ipam`` stanza keys."""

    try:
        data = yaml.safe_load(Path(path).read_text())
    except OSError as exc:
        raise ConfigError(f"unable to read settings file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"unable to parse settings file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError("settings file must be a mapping")

    kubernetes = _section(data, "kubernetes")
    allocator = _section(data, "allocator")
    retry = _section(data, "retry")
    logging_section = _section(data, "logging")

    flat = {
        "kubeConfig": kubernetes.get("kubeconfig"),
        "ipPoolName": kubernetes.get("pool"),
        "timeout": kubernetes.get("timeout"),
        "maxAttempts": allocator.get("max_attempts"),
        "reclaimMode": allocator.get("reclaim_mode"),
        "randomBits": allocator.get("random_bits"),
        "conflictRetries": retry.get("conflict_retries"),
        "retryBackoff": retry.get("backoff"),
        "logLevel": logging_section.get("level"),
        "logFile": logging_section.get("file"),
    }
    # ``max_attempts: null`` explicitly asks for an unbounded probe loop.
    if "max_attempts" in allocator and allocator["max_attempts"] is None:
        flat["maxAttempts"] = "unbounded"
    return {key: value for key, value in flat.items() if value is not None}


def parse_ipam(section: Mapping[str, Any]) -> PluginConfig:
    if not isinstance(section, Mapping):
        raise ConfigError("'ipam' section must be a mapping")

    merged: Dict[str, Any] = {}
    if section.get("configFile"):
        merged.update(load_config(Path(section["configFile"])))
    merged.update({key: value for key, value in section.items() if value is not None})

    kubeconfig = merged.get("kubeConfig")
    if not kubeconfig:
        raise ConfigError("a kubeconfig is required for this ip allocator")
    pool_name = merged.get("ipPoolName")
    if not pool_name:
        raise ConfigError("an ip pool name is required for this ip allocator")

    max_attempts_raw = merged.get("maxAttempts", DEFAULT_MAX_ATTEMPTS)
    if max_attempts_raw == "unbounded":
        max_attempts = None
    else:
        max_attempts = _optional_int(max_attempts_raw, "maxAttempts")
        if max_attempts is not None and max_attempts < 1:
            raise ConfigError("'maxAttempts' must be at least 1")

    random_bits = _optional_int(merged.get("randomBits"), "randomBits")
    if random_bits is not None and random_bits < 0:
        raise ConfigError("'randomBits' must not be negative")

    conflict_retries = _optional_int(merged.get("conflictRetries", 16), "conflictRetries")
    if conflict_retries is None or conflict_retries < 0:
        raise ConfigError("'conflictRetries' must not be negative")

    try:
        timeout = float(merged.get("timeout", DEFAULT_TIMEOUT))
        retry_backoff = float(merged.get("retryBackoff", 0.05))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid numeric setting: {exc}") from exc

    log_file = merged.get("logFile")
    return PluginConfig(
        kubeconfig=Path(kubeconfig),
        pool_name=str(pool_name),
        allocator=AllocatorSettings(
            max_attempts=max_attempts,
            reclaim_mode=_reclaim_mode(merged.get("reclaimMode", ReclaimMode.IMMEDIATE.value)),
            random_bits=random_bits,
        ),
        timeout=timeout,
        conflict_retries=conflict_retries,
        retry_backoff=retry_backoff,
        log_level=str(merged.get("logLevel", "INFO")).upper(),
        log_file=Path(log_file) if log_file else None,
    )


def parse_network_config(stdin: bytes | str) -> NetworkConfig:
    """Parse the network configuration handed to the plugin on stdin."""

    try:
        data = json.loads(stdin)
    except ValueError as exc:
        raise ConfigError(f"failed to parse network configuration: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("network configuration must be a JSON object")

    ipam = data.get("ipam")
    if ipam is None:
        raise ConfigError("network configuration missing 'ipam' section")

    return NetworkConfig(
        name=str(data.get("name", "")),
        cni_version=str(data.get("cniVersion", "")),
        ipam=parse_ipam(ipam),
    )


def parse_cni_args(args: str) -> Dict[str, str]:
    """Split ``KEY=VALUE;KEY=VALUE`` pairs, ignoring malformed entries."""

    parsed: Dict[str, str] = {}
    for item in (args or "").split(";"):
        parts = item.split("=")
        if len(parts) == 2:
            parsed[parts[0]] = parts[1]
    return parsed


def pod_from_args(args: str) -> Tuple[str, str]:
    parsed = parse_cni_args(args)
    namespace = parsed.get(POD_NAMESPACE_ARG)
    if not namespace:
        raise ConfigError(f"no {POD_NAMESPACE_ARG} provided in CNI_ARGS")
    name = parsed.get(POD_NAME_ARG)
    if not name:
        raise ConfigError(f"no {POD_NAME_ARG} provided in CNI_ARGS")
    return namespace, name
