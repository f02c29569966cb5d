"""Security module for Tiangge.

Authenticates store owners calling the custom domain API and checks
their subscription entitlements.
"""

from tiangge.security.entitlements import (
    EntitlementGate,
    HttpEntitlementGate,
    StaticEntitlementGate,
    TenantIdentity,
    create_entitlement_gate,
    parse_bearer_token,
)

__all__ = [
    "EntitlementGate",
    "HttpEntitlementGate",
    "StaticEntitlementGate",
    "TenantIdentity",
    "create_entitlement_gate",
    "parse_bearer_token",
]
