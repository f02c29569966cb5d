"""Request-time tenant resolution by hostname.

Routing priority:
1. Platform-internal paths (API, static assets, auth, dashboard) -> pass through
2. Platform domain or a local development host -> pass through
3. Custom domain with a verified, enabled binding -> rewrite to /<slug><path>
4. Anything else, including lookup errors -> redirect to the platform root

The resolver never raises: any unexpected error becomes the redirect
outcome, so a visitor on a stale or misconfigured domain never sees an
error page.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from tiangge.core.config import DEFAULT_PLATFORM_DOMAIN
from tiangge.observability.metrics import ROUTING_DECISIONS
from tiangge.routing.rules import RouteTable

if TYPE_CHECKING:
    from tiangge.domains.registry import DomainRegistry

logger = structlog.get_logger()


class RoutingAction(Enum):
    """What the server should do with a request."""

    PASS_THROUGH = "pass_through"
    REWRITE = "rewrite"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class RoutingDecision:
    """Outcome of resolving one request.

    For REWRITE, `target` is the internal path (with query string) to
    dispatch. For REDIRECT, it is the absolute platform root URL.
    """

    action: RoutingAction
    target: str | None = None
    tenant_id: str | None = None
    tenant_slug: str | None = None
    reason: str = ""


def normalize_host(host: str | None) -> str:
    """Lower-case a Host header value and strip the port and trailing dot."""
    if not host:
        return ""
    host = host.strip().lower()
    if host.startswith("["):
        end = host.find("]")
        host = host[1:end] if end != -1 else host[1:]
    elif host.count(":") == 1:
        host = host.split(":", 1)[0]
    return host.rstrip(".")


def build_rewrite_path(slug: str, path: str, query: str = "") -> str:
    """Map a custom-domain path onto the tenant's storefront path.

    "/" maps to "/<slug>"; deeper paths and the query string are kept.
    """
    if not path or path == "/":
        target = f"/{slug}"
    else:
        target = f"/{slug}{path if path.startswith('/') else '/' + path}"
    if query:
        target = f"{target}?{query}"
    return target


class TenantResolver:
    """Decides pass-through, rewrite or redirect for a request."""

    def __init__(
        self,
        registry: DomainRegistry,
        platform_domain: str = DEFAULT_PLATFORM_DOMAIN,
        local_hosts: Iterable[str] = ("localhost", "127.0.0.1", "::1"),
        route_table: RouteTable | None = None,
        platform_scheme: str = "https",
    ) -> None:
        self.registry = registry
        self.platform_domain = normalize_host(platform_domain)
        self.platform_hosts = {self.platform_domain} | {normalize_host(h) for h in local_hosts}
        self.route_table = route_table or RouteTable.default_table()
        self.platform_root_url = f"{platform_scheme}://{self.platform_domain}/"

    def _redirect(self, reason: str) -> RoutingDecision:
        return RoutingDecision(
            action=RoutingAction.REDIRECT,
            target=self.platform_root_url,
            reason=reason,
        )

    async def resolve(
        self,
        host: str | None,
        path: str,
        query: str = "",
        raw_path: str | None = None,
    ) -> RoutingDecision:
        """Resolve a request. Never raises.

        `path` is the decoded path used for classification. When given,
        `raw_path` (still percent-encoded) is what the rewrite target is
        built from, so encoded "?" or "#" stay part of the path.
        """
        try:
            decision = await self._resolve(host, path, query, raw_path)
        except Exception:
            logger.exception("Tenant resolution failed", host=host, path=path)
            decision = self._redirect("lookup_error")

        ROUTING_DECISIONS.labels(action=decision.action.value).inc()
        return decision

    async def _resolve(
        self, host: str | None, path: str, query: str, raw_path: str | None
    ) -> RoutingDecision:
        if self.route_table.is_platform_path(path):
            return RoutingDecision(action=RoutingAction.PASS_THROUGH, reason="platform_path")

        hostname = normalize_host(host)
        if hostname in self.platform_hosts:
            return RoutingDecision(action=RoutingAction.PASS_THROUGH, reason="platform_host")

        if not hostname:
            return self._redirect("missing_host")

        binding = await self.registry.lookup_by_domain(hostname)
        if binding is None:
            logger.debug("Unknown custom domain", host=hostname)
            return self._redirect("unknown_domain")

        if not binding.is_routable:
            logger.debug(
                "Custom domain not routable",
                host=hostname,
                state=binding.state.value,
                enabled=binding.enabled,
            )
            return self._redirect("not_routable")

        return RoutingDecision(
            action=RoutingAction.REWRITE,
            target=build_rewrite_path(binding.tenant_slug, raw_path or path, query),
            tenant_id=binding.tenant_id,
            tenant_slug=binding.tenant_slug,
            reason="custom_domain",
        )
