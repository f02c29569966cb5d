"""Tests for configuration loading from environment variables and files."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from tiangge.core.config import (
    DEFAULT_PLATFORM_PREFIXES,
    DNSConfig,
    DomainsConfig,
    RoutingConfig,
    ServerConfig,
    TianggeConfig,
    clear_config,
    get_config,
    load_config_from_file,
)


class TestServerConfig:
    """Test ServerConfig settings."""

    def test_default_values(self) -> None:
        config = ServerConfig()
        assert config.bind == "0.0.0.0:8080"
        assert config.platform_domain == "tiangge.shop"
        assert config.platform_scheme == "https"
        assert config.serving_ip == "75.2.60.5"
        assert config.entitlement_backend == "static"
        assert config.metrics_enabled is True

    def test_platform_domain_normalized(self) -> None:
        config = ServerConfig(platform_domain=" Tiangge.Shop. ")
        assert config.platform_domain == "tiangge.shop"

    def test_canonical_hostname_defaults_to_platform(self) -> None:
        assert ServerConfig().canonical_hostname == "tiangge.shop"
        assert ServerConfig(cname_target="edge.tiangge.shop").canonical_hostname == "edge.tiangge.shop"


class TestDomainsConfig:
    """Test DomainsConfig settings."""

    def test_default_values(self) -> None:
        config = DomainsConfig()
        assert config.max_verification_attempts == 10
        assert config.token_bytes == 20
        assert config.txt_record_prefix == "_bolt-verify"
        assert config.count_transient_failures is True
        assert config.require_premium_for_verify is False

    def test_env_override_max_attempts(self) -> None:
        """Test TIANGGE_MAX_VERIFICATION_ATTEMPTS env var."""
        with patch.dict(os.environ, {"TIANGGE_MAX_VERIFICATION_ATTEMPTS": "5"}):
            config = DomainsConfig()
            assert config.max_verification_attempts == 5

    def test_env_override_require_premium(self) -> None:
        """Test TIANGGE_REQUIRE_PREMIUM_FOR_VERIFY env var."""
        with patch.dict(os.environ, {"TIANGGE_REQUIRE_PREMIUM_FOR_VERIFY": "true"}):
            config = DomainsConfig()
            assert config.require_premium_for_verify is True

    def test_token_bytes_minimum(self) -> None:
        with pytest.raises(ValidationError):
            DomainsConfig(token_bytes=8)


class TestDNSConfig:
    """Test DNSConfig settings."""

    def test_default_values(self) -> None:
        config = DNSConfig()
        assert config.timeout == 5.0
        assert config.retries == 1
        assert config.nameservers == []

    def test_env_override_timeout(self) -> None:
        """Test TIANGGE_DNS_TIMEOUT env var."""
        with patch.dict(os.environ, {"TIANGGE_DNS_TIMEOUT": "2.5"}):
            config = DNSConfig()
            assert config.timeout == 2.5

    def test_retries_bounded(self) -> None:
        with pytest.raises(ValidationError):
            DNSConfig(retries=3)


class TestRoutingConfig:
    """Test RoutingConfig settings."""

    def test_default_values(self) -> None:
        config = RoutingConfig()
        assert config.cache_ttl == 30.0
        assert config.cache_max_entries == 10000
        assert config.platform_prefixes == DEFAULT_PLATFORM_PREFIXES

    def test_env_override_cache_ttl(self) -> None:
        """Test TIANGGE_CACHE_TTL env var."""
        with patch.dict(os.environ, {"TIANGGE_CACHE_TTL": "0"}):
            config = RoutingConfig()
            assert config.cache_ttl == 0


class TestTianggeConfig:
    """Test the aggregate config and its cache."""

    def test_sections(self) -> None:
        config = TianggeConfig()
        display = config.to_display_dict()

        assert set(display) == {"domains", "dns", "routing"}
        assert display["domains"]["max_verification_attempts"] == 10

    def test_get_config_cached(self) -> None:
        clear_config()
        assert get_config() is get_config()

    def test_clear_config_reloads(self) -> None:
        clear_config()
        first = get_config()
        clear_config()
        assert get_config() is not first


class TestLoadConfigFromFile:
    """Test YAML and TOML config files."""

    def test_yaml(self, tmp_path) -> None:
        path = tmp_path / "tiangge.yaml"
        path.write_text("server:\n  platform_domain: shop.test\n  bind: 127.0.0.1:9000\n")

        data = load_config_from_file(path)

        assert data["server"]["platform_domain"] == "shop.test"
        assert ServerConfig(**data["server"]).bind == "127.0.0.1:9000"

    def test_toml(self, tmp_path) -> None:
        path = tmp_path / "tiangge.toml"
        path.write_text('[server]\nplatform_domain = "shop.test"\n')

        assert load_config_from_file(path)["server"]["platform_domain"] == "shop.test"

    def test_empty_yaml(self, tmp_path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_config_from_file(path) == {}

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config_from_file(tmp_path / "missing.yaml")

    def test_unsupported_format(self, tmp_path) -> None:
        path = tmp_path / "config.ini"
        path.write_text("[server]\n")

        with pytest.raises(ValueError, match="Unsupported config format"):
            load_config_from_file(path)

    def test_invalid_yaml(self, tmp_path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("server: [unclosed\n")

        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config_from_file(path)
