"""Configuration types with environment variable support.

All settings can be configured via environment variables with the TIANGGE_ prefix.
Example: TIANGGE_DNS_TIMEOUT=10 sets the verification lookup timeout to 10 seconds.
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PLATFORM_DOMAIN = "tiangge.shop"

DEFAULT_PLATFORM_PREFIXES = [
    "/api",
    "/static",
    "/favicon.ico",
    "/default-avatar.webp",
    "/auth",
    "/dashboard",
    "/health",
    "/metrics",
]


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            return yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            return tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


class ServerConfig(BaseModel):
    """Storefront server configuration."""

    bind: str = "0.0.0.0:8080"
    platform_domain: str = DEFAULT_PLATFORM_DOMAIN
    platform_scheme: str = Field(
        default="https",
        description="Scheme used when redirecting unknown hosts to the platform root.",
    )
    local_hosts: list[str] = Field(
        default_factory=lambda: ["localhost", "127.0.0.1", "::1"],
        description="Local development hosts that are always passed through.",
    )
    serving_ip: str = Field(
        default="75.2.60.5",
        description="IP address tenants point their apex A record at once verified.",
    )
    cname_target: str | None = Field(
        default=None,
        description="Hostname for the www CNAME record. Defaults to platform_domain.",
    )
    storage_path: str = Field(
        default="domains.json",
        description="Path to the JSON file storing domain bindings.",
    )
    entitlement_backend: str = Field(
        default="static",
        description="Where tenant identity and premium status come from: 'static' or 'http'.",
    )
    tenants_file: str | None = Field(
        default=None,
        description="YAML/JSON file mapping bearer tokens to tenants (static backend).",
    )
    entitlement_url: str | None = Field(
        default=None,
        description="Base URL of the identity service (http backend).",
    )
    entitlement_timeout: float = Field(
        default=5.0,
        description="Timeout in seconds for identity service calls.",
    )
    metrics_enabled: bool = Field(
        default=True,
        description="Expose Prometheus metrics at /metrics.",
    )

    @field_validator("platform_domain")
    @classmethod
    def _lower_domain(cls, value: str) -> str:
        return value.strip().lower().rstrip(".")

    @property
    def canonical_hostname(self) -> str:
        return self.cname_target or self.platform_domain


class DomainsConfig(BaseSettings):
    """Custom domain binding and verification settings.

    All settings can be overridden via environment variables:
    - TIANGGE_MAX_VERIFICATION_ATTEMPTS: Attempts before a binding locks
    - TIANGGE_COUNT_TRANSIENT_FAILURES: Whether DNS timeouts use up an attempt
    - TIANGGE_REQUIRE_PREMIUM_FOR_VERIFY: Re-check entitlement on verify
    """

    model_config = SettingsConfigDict(
        env_prefix="TIANGGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_verification_attempts: int = Field(
        default=10,
        ge=1,
        description="Verification attempts allowed before the binding is locked.",
    )
    token_bytes: int = Field(
        default=20,
        ge=20,
        description="Bytes of entropy in a verification token.",
    )
    txt_record_prefix: str = Field(
        default="_bolt-verify",
        description="Label prepended to the domain for the TXT challenge record.",
    )
    count_transient_failures: bool = Field(
        default=True,
        description="Count DNS timeouts and resolver failures as verification attempts.",
    )
    require_premium_for_verify: bool = Field(
        default=False,
        description="Require premium entitlement for the verify operation.",
    )


class DNSConfig(BaseSettings):
    """DNS lookup settings for verification checks."""

    model_config = SettingsConfigDict(
        env_prefix="TIANGGE_DNS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    timeout: float = Field(
        default=5.0,
        gt=0,
        description="Per-lookup timeout (seconds).",
    )
    retries: int = Field(
        default=1,
        ge=0,
        le=1,
        description="Retries after a timed-out lookup.",
    )
    nameservers: list[str] = Field(
        default_factory=list,
        description="Nameservers to query. Empty uses the system resolvers.",
    )


class RoutingConfig(BaseSettings):
    """Request routing settings."""

    model_config = SettingsConfigDict(
        env_prefix="TIANGGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    cache_ttl: float = Field(
        default=30.0,
        ge=0,
        description="Seconds a binding lookup stays cached. 0 disables caching.",
    )
    cache_max_entries: int = Field(
        default=10000,
        ge=1,
        description="Maximum cached domains before LRU eviction.",
    )
    platform_prefixes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_PLATFORM_PREFIXES),
        description="Path prefixes that always bypass tenant resolution.",
    )


class TianggeConfig(BaseSettings):
    """Master configuration combining all settings.

    Use get_config() to get a cached instance.

    Example:
        config = get_config()
        print(config.dns.timeout)
        print(config.domains.max_verification_attempts)
    """

    model_config = SettingsConfigDict(
        env_prefix="TIANGGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def domains(self) -> DomainsConfig:
        """Get domain binding configuration."""
        return DomainsConfig()

    @property
    def dns(self) -> DNSConfig:
        """Get DNS lookup configuration."""
        return DNSConfig()

    @property
    def routing(self) -> RoutingConfig:
        """Get routing configuration."""
        return RoutingConfig()

    def to_display_dict(self) -> dict[str, Any]:
        """Export current configuration as a nested dictionary for display."""
        return {
            "domains": self.domains.model_dump(),
            "dns": self.dns.model_dump(),
            "routing": self.routing.model_dump(),
        }


_config: TianggeConfig | None = None


def get_config() -> TianggeConfig:
    """Get the global configuration instance.

    Returns a cached instance of TianggeConfig that reads from environment variables.
    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = TianggeConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration.

    Call this to force reloading of environment variables on next get_config() call.
    """
    global _config
    _config = None
