"""Core."""

from .config import (
    DNSConfig,
    DomainsConfig,
    RoutingConfig,
    ServerConfig,
    TianggeConfig,
    clear_config,
    get_config,
    load_config_from_file,
)

__all__ = [
    "DNSConfig",
    "DomainsConfig",
    "RoutingConfig",
    "ServerConfig",
    "TianggeConfig",
    "clear_config",
    "get_config",
    "load_config_from_file",
]
