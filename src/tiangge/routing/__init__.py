"""Tiangge request routing.

Decides, for every inbound request, whether the host is the platform
itself or a tenant's custom domain, and where the request should go.

Usage:
    from tiangge.routing import TenantResolver

    resolver = TenantResolver(registry, platform_domain="tiangge.shop")
    decision = await resolver.resolve("shop.example.com", "/products/1", "ref=ad")
    # RoutingDecision(action=REWRITE, target="/acme/products/1?ref=ad", ...)
"""

from tiangge.routing.resolver import (
    RoutingAction,
    RoutingDecision,
    TenantResolver,
    build_rewrite_path,
    normalize_host,
)
from tiangge.routing.rules import PathPrefixRule, RouteClass, RouteTable

__all__ = [
    "TenantResolver",
    "RoutingAction",
    "RoutingDecision",
    "build_rewrite_path",
    "normalize_host",
    "RouteTable",
    "RouteClass",
    "PathPrefixRule",
]
