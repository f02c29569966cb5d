from tiangge.observability.metrics import (
    BINDING_CACHE_LOOKUPS,
    DOMAIN_OPERATIONS,
    ROUTING_DECISIONS,
    VERIFICATION_ATTEMPTS,
    generate_metrics,
    get_content_type,
)

__all__ = [
    "BINDING_CACHE_LOOKUPS",
    "DOMAIN_OPERATIONS",
    "ROUTING_DECISIONS",
    "VERIFICATION_ATTEMPTS",
    "generate_metrics",
    "get_content_type",
]
