"""CNI plugin runtime for k8s-ipam."""

from .config import NetworkConfig, PluginConfig, parse_network_config  # noqa: F401

__all__ = [
    "NetworkConfig",
    "PluginConfig",
    "parse_network_config",
]
