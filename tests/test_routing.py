"""Tests for route classification and tenant resolution."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from tiangge.domains import BindingState, DomainBinding, DomainRegistry, MemoryBindingStore
from tiangge.routing import (
    PathPrefixRule,
    RouteClass,
    RouteTable,
    RoutingAction,
    TenantResolver,
    build_rewrite_path,
    normalize_host,
)


def _binding(state: BindingState = BindingState.VERIFIED, enabled: bool = True) -> DomainBinding:
    return DomainBinding(
        tenant_id="tenant-1",
        tenant_slug="acme",
        domain="shop.example.com",
        verification_token="a" * 40,
        state=state,
        enabled=enabled,
    )


def _resolver(binding: DomainBinding | None = None, **kwargs) -> TenantResolver:
    registry = MagicMock()
    registry.lookup_by_domain = AsyncMock(return_value=binding)
    return TenantResolver(registry, platform_domain="tiangge.shop", **kwargs)


class TestPathPrefixRule:
    """Tests for PathPrefixRule."""

    def test_matches_exact_and_below(self):
        rule = PathPrefixRule(prefix="/api")

        assert rule.matches("/api")
        assert rule.matches("/api/custom-domain/add")
        assert not rule.matches("/apiary")
        assert not rule.matches("/shop/api")

    def test_prefix_normalized(self):
        rule = PathPrefixRule(prefix="static/")

        assert rule.prefix == "/static"
        assert rule.matches("/static/app.js")

    def test_case_insensitive_by_default(self):
        assert PathPrefixRule(prefix="/API").matches("/api/x")
        assert not PathPrefixRule(prefix="/API", case_sensitive=True).matches("/api/x")

    def test_file_prefix(self):
        rule = PathPrefixRule(prefix="/favicon.ico")

        assert rule.matches("/favicon.ico")
        assert not rule.matches("/favicon.icon")

    def test_to_dict(self):
        assert PathPrefixRule(prefix="/api").to_dict() == {
            "prefix": "/api",
            "route_class": "platform",
            "case_sensitive": False,
        }


class TestRouteTable:
    """Tests for RouteTable."""

    @pytest.mark.parametrize(
        "path",
        [
            "/api/custom-domain/status",
            "/static/logo.png",
            "/favicon.ico",
            "/default-avatar.webp",
            "/auth",
            "/auth/verify",
            "/dashboard/products",
        ],
    )
    def test_platform_paths(self, path):
        assert RouteTable.default_table().classify(path) is RouteClass.PLATFORM

    @pytest.mark.parametrize("path", ["/", "", "/products/1", "/apiary", "/about"])
    def test_tenant_paths(self, path):
        assert RouteTable.default_table().classify(path) is RouteClass.TENANT

    def test_from_prefixes_skips_blank(self):
        table = RouteTable.from_prefixes(["/api", " ", ""])

        assert len(table.rules) == 1

    def test_to_list(self):
        table = RouteTable.from_prefixes(["/api"])

        assert table.to_list() == [PathPrefixRule(prefix="/api").to_dict()]


class TestHelpers:
    """Tests for host normalization and rewrite paths."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("Shop.Example.com", "shop.example.com"),
            ("shop.example.com:8443", "shop.example.com"),
            ("shop.example.com.", "shop.example.com"),
            ("[::1]:8080", "::1"),
            ("::1", "::1"),
            ("", ""),
            (None, ""),
        ],
    )
    def test_normalize_host(self, raw, expected):
        assert normalize_host(raw) == expected

    def test_rewrite_root(self):
        assert build_rewrite_path("acme", "/") == "/acme"
        assert build_rewrite_path("acme", "") == "/acme"

    def test_rewrite_subpath_and_query(self):
        assert build_rewrite_path("acme", "/products/1") == "/acme/products/1"
        assert build_rewrite_path("acme", "/products/1", "ref=ad&x=1") == "/acme/products/1?ref=ad&x=1"
        assert build_rewrite_path("acme", "/", "ref=ad") == "/acme?ref=ad"


class TestTenantResolver:
    """Tests for TenantResolver.resolve()."""

    @pytest.mark.asyncio
    async def test_platform_domain_passes_through(self):
        resolver = _resolver()

        decision = await resolver.resolve("tiangge.shop", "/acme")

        assert decision.action is RoutingAction.PASS_THROUGH
        resolver.registry.lookup_by_domain.assert_not_called()

    @pytest.mark.asyncio
    async def test_platform_domain_with_port_passes_through(self):
        resolver = _resolver()

        decision = await resolver.resolve("TIANGGE.shop:443", "/")

        assert decision.action is RoutingAction.PASS_THROUGH

    @pytest.mark.asyncio
    @pytest.mark.parametrize("host", ["localhost:3000", "127.0.0.1", "[::1]:8080"])
    async def test_local_hosts_pass_through(self, host):
        resolver = _resolver()

        decision = await resolver.resolve(host, "/")

        assert decision.action is RoutingAction.PASS_THROUGH

    @pytest.mark.asyncio
    async def test_platform_paths_pass_through_on_custom_domain(self):
        resolver = _resolver(_binding())

        decision = await resolver.resolve("shop.example.com", "/api/custom-domain/status")

        assert decision.action is RoutingAction.PASS_THROUGH
        resolver.registry.lookup_by_domain.assert_not_called()

    @pytest.mark.asyncio
    async def test_verified_enabled_domain_rewrites(self):
        resolver = _resolver(_binding())

        decision = await resolver.resolve("shop.example.com", "/", "")

        assert decision.action is RoutingAction.REWRITE
        assert decision.target == "/acme"
        assert decision.tenant_slug == "acme"
        assert decision.tenant_id == "tenant-1"

    @pytest.mark.asyncio
    async def test_rewrite_preserves_subpath_and_query(self):
        resolver = _resolver(_binding())

        decision = await resolver.resolve("shop.example.com", "/products/42", "color=red")

        assert decision.target == "/acme/products/42?color=red"

    @pytest.mark.asyncio
    async def test_rewrite_uses_encoded_path(self):
        resolver = _resolver(_binding())

        decision = await resolver.resolve(
            "shop.example.com", "/p/what?x", "", raw_path="/p/what%3Fx"
        )

        assert decision.target == "/acme/p/what%3Fx"

    @pytest.mark.asyncio
    async def test_platform_path_classified_on_decoded_path(self):
        resolver = _resolver(_binding())

        decision = await resolver.resolve("shop.example.com", "/api/x", raw_path="/%61pi/x")

        assert decision.action is RoutingAction.PASS_THROUGH

    @pytest.mark.asyncio
    async def test_unknown_domain_redirects(self):
        resolver = _resolver(None)

        decision = await resolver.resolve("unknown.example.com", "/products")

        assert decision.action is RoutingAction.REDIRECT
        assert decision.target == "https://tiangge.shop/"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "state,enabled",
        [
            (BindingState.PENDING, False),
            (BindingState.LOCKED, False),
            (BindingState.VERIFIED, False),
        ],
    )
    async def test_non_routable_binding_redirects(self, state, enabled):
        resolver = _resolver(_binding(state=state, enabled=enabled))

        decision = await resolver.resolve("shop.example.com", "/")

        assert decision.action is RoutingAction.REDIRECT

    @pytest.mark.asyncio
    async def test_lookup_error_redirects(self):
        registry = MagicMock()
        registry.lookup_by_domain = AsyncMock(side_effect=RuntimeError("storage down"))
        resolver = TenantResolver(registry, platform_domain="tiangge.shop")

        decision = await resolver.resolve("shop.example.com", "/")

        assert decision.action is RoutingAction.REDIRECT
        assert decision.reason == "lookup_error"

    @pytest.mark.asyncio
    async def test_missing_host_redirects(self):
        resolver = _resolver()

        decision = await resolver.resolve(None, "/")

        assert decision.action is RoutingAction.REDIRECT

    @pytest.mark.asyncio
    async def test_custom_scheme_for_redirect(self):
        resolver = _resolver(None, platform_scheme="http")

        decision = await resolver.resolve("unknown.example.com", "/")

        assert decision.target == "http://tiangge.shop/"

    @pytest.mark.asyncio
    async def test_with_real_registry(self):
        """Registered but unverified domains redirect until verified and enabled."""
        registry = DomainRegistry(MemoryBindingStore())
        resolver = TenantResolver(registry, platform_domain="tiangge.shop")
        await registry.register("tenant-1", "shop.example.com", tenant_slug="acme")

        decision = await resolver.resolve("shop.example.com", "/")

        assert decision.action is RoutingAction.REDIRECT
