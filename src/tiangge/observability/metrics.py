from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

ROUTING_DECISIONS = Counter(
    "tiangge_routing_decisions_total",
    "Tenant resolver outcomes",
    ["action"],  # pass_through, rewrite, redirect
)

VERIFICATION_ATTEMPTS = Counter(
    "tiangge_verification_attempts_total",
    "Domain verification checks",
    ["outcome"],  # verified, not_found, transient_error, rate_limited
)

BINDING_CACHE_LOOKUPS = Counter(
    "tiangge_binding_cache_lookups_total",
    "Binding lookups on the request path",
    ["result"],  # hit, miss
)

DOMAIN_OPERATIONS = Counter(
    "tiangge_domain_operations_total",
    "Tenant domain API operations",
    ["operation", "status"],
)


def generate_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
