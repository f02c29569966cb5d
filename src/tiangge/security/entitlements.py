"""Tenant authentication and subscription entitlements.

Identity and billing live outside this service. An EntitlementGate turns
the Authorization header of an API request into a TenantIdentity: who the
caller is, which storefront slug they own and whether their plan includes
custom domains.

Two backends:
- StaticEntitlementGate: a YAML/JSON tenants file, for self-hosting and tests
- HttpEntitlementGate: asks an external identity service via httpx
"""

from __future__ import annotations

import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
import structlog
import yaml

from tiangge.errors import AuthError, AuthorizationError, InternalError

logger = structlog.get_logger()

BEARER_PREFIX = "bearer "


@dataclass(frozen=True)
class TenantIdentity:
    """An authenticated store owner."""

    tenant_id: str
    slug: str
    premium: bool = False

    def require_premium(self) -> None:
        if not self.premium:
            raise AuthorizationError(
                "Premium subscription required for custom domains.",
                tenant_id=self.tenant_id,
            )


def parse_bearer_token(authorization: str | None) -> str:
    """Extract the token from an "Authorization: Bearer <token>" header.

    Raises:
        AuthError: If the header is missing or uses another scheme.
    """
    if not authorization:
        raise AuthError("Authentication required.")
    if not authorization.lower().startswith(BEARER_PREFIX):
        raise AuthError("Invalid authorization scheme.")
    token = authorization[len(BEARER_PREFIX) :].strip()
    if not token:
        raise AuthError("Authentication required.")
    return token


def _identity_from_dict(data: dict[str, Any]) -> TenantIdentity:
    tenant_id = data.get("tenant_id") or data.get("tenantId") or data.get("id")
    if not tenant_id:
        raise ValueError("Tenant entry is missing tenant_id")
    tenant_id = str(tenant_id)
    slug = data.get("slug") or data.get("store_slug") or tenant_id
    premium = data.get("premium", data.get("isPremium", False))
    return TenantIdentity(tenant_id=tenant_id, slug=str(slug), premium=bool(premium))


class EntitlementGate(ABC):
    """Resolves a request's credentials to a tenant."""

    @abstractmethod
    async def authenticate(self, authorization: str | None) -> TenantIdentity:
        """Return the caller's identity.

        Raises:
            AuthError: If the credential is missing or unknown.
        """

    async def close(self) -> None:
        return None


class StaticEntitlementGate(EntitlementGate):
    """Tokens and tenants declared up front.

    File format (YAML or JSON):

        tokens:
          s3cret-token:
            tenant_id: tenant-123
            slug: acme
            premium: true
    """

    def __init__(self, tokens: dict[str, TenantIdentity] | None = None) -> None:
        self._tokens: dict[str, TenantIdentity] = dict(tokens or {})

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> StaticEntitlementGate:
        entries = data.get("tokens", data) or {}
        if not isinstance(entries, dict):
            raise ValueError("Tenants file must map tokens to tenant entries")
        return cls({str(token): _identity_from_dict(entry) for token, entry in entries.items()})

    @classmethod
    def from_file(cls, path: str | Path) -> StaticEntitlementGate:
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        gate = cls.from_mapping(data)
        logger.info("Loaded tenants file", path=str(path), tenants=len(gate))
        return gate

    def __len__(self) -> int:
        return len(self._tokens)

    async def authenticate(self, authorization: str | None) -> TenantIdentity:
        token = parse_bearer_token(authorization)

        match: TenantIdentity | None = None
        for known, identity in self._tokens.items():
            if secrets.compare_digest(token.encode(), known.encode()):
                match = identity
        if match is None:
            raise AuthError("Invalid credentials.")
        return match


class HttpEntitlementGate(EntitlementGate):
    """Asks an identity service who owns a bearer token.

    Calls ``GET <base_url>/me`` with the caller's Authorization header and
    expects ``{"tenant_id": ..., "slug": ..., "premium": ...}`` back.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def authenticate(self, authorization: str | None) -> TenantIdentity:
        token = parse_bearer_token(authorization)

        try:
            response = await self._get_client().get(
                f"{self.base_url}/me",
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.error("Entitlement service request failed", error=str(e))
            raise InternalError("Entitlement service unavailable.") from e

        if response.status_code in (401, 403, 404):
            raise AuthError("Invalid credentials.")
        if response.status_code != 200:
            logger.error("Entitlement service error", status=response.status_code)
            raise InternalError("Entitlement service unavailable.")

        try:
            return _identity_from_dict(response.json())
        except ValueError as e:
            logger.error("Malformed entitlement response", error=str(e))
            raise InternalError("Entitlement service unavailable.") from e

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def create_entitlement_gate(
    backend: str,
    tenants_file: str | None = None,
    entitlement_url: str | None = None,
    timeout: float = 5.0,
) -> EntitlementGate:
    """Build the gate named by ServerConfig.entitlement_backend."""
    if backend == "static":
        if not tenants_file:
            logger.warning("No tenants file configured, all API requests will be rejected")
            return StaticEntitlementGate()
        return StaticEntitlementGate.from_file(tenants_file)
    if backend == "http":
        if not entitlement_url:
            raise ValueError("entitlement_url is required for the http entitlement backend")
        return HttpEntitlementGate(entitlement_url, timeout=timeout)
    raise ValueError(f"Unknown entitlement backend: {backend}")
