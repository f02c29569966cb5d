"""Tests for tenant authentication and entitlements."""

from __future__ import annotations

import json

import httpx
import pytest

from tiangge.errors import AuthError, AuthorizationError, InternalError
from tiangge.security import (
    HttpEntitlementGate,
    StaticEntitlementGate,
    TenantIdentity,
    create_entitlement_gate,
    parse_bearer_token,
)


class TestParseBearerToken:
    """Tests for Authorization header parsing."""

    def test_valid(self):
        assert parse_bearer_token("Bearer abc123") == "abc123"
        assert parse_bearer_token("bearer abc123") == "abc123"

    @pytest.mark.parametrize("header", [None, "", "Bearer ", "Basic dXNlcjpwYXNz", "abc123"])
    def test_invalid(self, header):
        with pytest.raises(AuthError):
            parse_bearer_token(header)


class TestTenantIdentity:
    """Tests for TenantIdentity."""

    def test_require_premium(self):
        TenantIdentity("tenant-1", "acme", premium=True).require_premium()

        with pytest.raises(AuthorizationError, match="Premium subscription required"):
            TenantIdentity("tenant-1", "acme").require_premium()


class TestStaticEntitlementGate:
    """Tests for the tenants-file gate."""

    @pytest.fixture
    def gate(self):
        return StaticEntitlementGate.from_mapping(
            {
                "tokens": {
                    "premium-token": {"tenant_id": "tenant-1", "slug": "acme", "premium": True},
                    "free-token": {"tenant_id": "tenant-2"},
                }
            }
        )

    @pytest.mark.asyncio
    async def test_authenticate(self, gate):
        identity = await gate.authenticate("Bearer premium-token")

        assert identity == TenantIdentity("tenant-1", "acme", premium=True)

    @pytest.mark.asyncio
    async def test_defaults(self, gate):
        identity = await gate.authenticate("Bearer free-token")

        assert identity.slug == "tenant-2"
        assert identity.premium is False

    @pytest.mark.asyncio
    async def test_unknown_token(self, gate):
        with pytest.raises(AuthError):
            await gate.authenticate("Bearer nope")

    @pytest.mark.asyncio
    async def test_missing_header(self, gate):
        with pytest.raises(AuthError):
            await gate.authenticate(None)

    @pytest.mark.asyncio
    async def test_empty_gate_rejects_everything(self):
        with pytest.raises(AuthError):
            await StaticEntitlementGate().authenticate("Bearer anything")

    @pytest.mark.asyncio
    async def test_from_yaml_file(self, tmp_path):
        path = tmp_path / "tenants.yaml"
        path.write_text(
            "tokens:\n"
            "  s3cret:\n"
            "    tenant_id: tenant-9\n"
            "    slug: nine\n"
            "    premium: true\n"
        )

        gate = StaticEntitlementGate.from_file(path)
        identity = await gate.authenticate("Bearer s3cret")

        assert len(gate) == 1
        assert identity.tenant_id == "tenant-9"
        assert identity.premium is True

    @pytest.mark.asyncio
    async def test_from_json_file(self, tmp_path):
        path = tmp_path / "tenants.json"
        path.write_text(json.dumps({"tokens": {"tok": {"tenantId": "t-1", "isPremium": True}}}))

        identity = await StaticEntitlementGate.from_file(path).authenticate("Bearer tok")

        assert identity.tenant_id == "t-1"
        assert identity.premium is True

    def test_entry_without_tenant_id(self):
        with pytest.raises(ValueError):
            StaticEntitlementGate.from_mapping({"tokens": {"tok": {"slug": "x"}}})


class TestHttpEntitlementGate:
    """Tests for the identity service gate."""

    def _gate(self, handler) -> HttpEntitlementGate:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpEntitlementGate("https://id.example.com/", client=client)

    @pytest.mark.asyncio
    async def test_authenticate(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            return httpx.Response(200, json={"tenant_id": "tenant-1", "slug": "acme", "premium": True})

        identity = await self._gate(handler).authenticate("Bearer tok")

        assert identity == TenantIdentity("tenant-1", "acme", premium=True)
        assert seen["url"] == "https://id.example.com/me"
        assert seen["auth"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_rejected_token(self):
        gate = self._gate(lambda request: httpx.Response(401))

        with pytest.raises(AuthError):
            await gate.authenticate("Bearer tok")

    @pytest.mark.asyncio
    async def test_service_error(self):
        gate = self._gate(lambda request: httpx.Response(502))

        with pytest.raises(InternalError):
            await gate.authenticate("Bearer tok")

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(InternalError):
            await self._gate(handler).authenticate("Bearer tok")

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        gate = self._gate(lambda request: httpx.Response(200, json={"slug": "acme"}))

        with pytest.raises(InternalError):
            await gate.authenticate("Bearer tok")

    @pytest.mark.asyncio
    async def test_missing_header_skips_request(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={})

        with pytest.raises(AuthError):
            await self._gate(handler).authenticate(None)

        assert calls == []


class TestCreateEntitlementGate:
    """Tests for the gate factory."""

    def test_static_without_file(self):
        assert isinstance(create_entitlement_gate("static"), StaticEntitlementGate)

    def test_http(self):
        gate = create_entitlement_gate("http", entitlement_url="https://id.example.com")

        assert isinstance(gate, HttpEntitlementGate)

    def test_http_requires_url(self):
        with pytest.raises(ValueError):
            create_entitlement_gate("http")

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_entitlement_gate("ldap")
