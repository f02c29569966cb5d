"""Tiangge Custom Domain Management.

This module lets a store owner bind a domain they own to their storefront
(e.g., shop.mycompany.com instead of tiangge.shop/acme).

Features:
- DNS TXT verification for domain ownership
- Hard cap on verification attempts, locking the binding when exceeded
- One custom domain per store, each domain bound to at most one store
- JSON file storage for domain bindings
- Cache-backed lookup for request-time routing

Usage:
    from tiangge.domains import DomainRegistry, JsonBindingStore

    registry = DomainRegistry(JsonBindingStore("domains.json"))

    binding = await registry.register("tenant-123", "example.com", tenant_slug="acme")
    # tenant publishes: _bolt-verify.example.com TXT <binding.verification_token>
    outcome = await registry.verify("tenant-123", "example.com")
    await registry.set_enabled("tenant-123", True)
"""

from tiangge.domains.storage import (
    BindingState,
    BindingStore,
    DomainBinding,
    JsonBindingStore,
    MemoryBindingStore,
    SslStatus,
)
from tiangge.domains.challenge import (
    dns_instructions,
    generate_verification_token,
    normalize_domain,
    txt_record_name,
    validate_domain,
)
from tiangge.domains.verification import CheckOutcome, DNSVerifier, VerificationResult
from tiangge.domains.limiter import AttemptLimiter
from tiangge.domains.cache import BindingCache
from tiangge.domains.registry import BindingSummary, DomainRegistry, VerifyOutcome

__all__ = [
    "DomainRegistry",
    "VerifyOutcome",
    "BindingSummary",
    "DomainBinding",
    "BindingState",
    "SslStatus",
    "BindingStore",
    "MemoryBindingStore",
    "JsonBindingStore",
    "BindingCache",
    "DNSVerifier",
    "CheckOutcome",
    "VerificationResult",
    "AttemptLimiter",
    "normalize_domain",
    "validate_domain",
    "generate_verification_token",
    "txt_record_name",
    "dns_instructions",
]
