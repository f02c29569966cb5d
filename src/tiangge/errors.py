"""Error taxonomy for custom domain operations.

Every failure the domain core can report to a tenant is one of these
kinds. Each carries the HTTP status the API answers with and a small
context dict, so callers branch on the type instead of the message.

Example:
    try:
        await registry.register(tenant_id, "Example.com")
    except ConflictError as e:
        return web.json_response(e.to_dict(), status=e.status)
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base class for all custom domain errors."""

    kind: str = "internal_error"
    status: int = 500

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Render the error as an API response body."""
        data: dict[str, Any] = {
            "success": False,
            "error": self.kind,
            "message": self.message,
        }
        data.update(self.context)
        return data


class ValidationError(DomainError):
    """Malformed domain or request body."""

    kind = "validation_error"
    status = 400


class AuthError(DomainError):
    """Missing or invalid bearer credential."""

    kind = "unauthorized"
    status = 401


class AuthorizationError(DomainError):
    """Tenant lacks premium entitlement."""

    kind = "forbidden"
    status = 403


class NotFoundError(DomainError):
    """No binding exists for the tenant (or for the requested domain)."""

    kind = "not_found"
    status = 404


class ConflictError(DomainError):
    """Domain already bound to another tenant, or tenant already has a binding."""

    kind = "conflict"
    status = 409


class PreconditionError(DomainError):
    """Operation not valid in the binding's current state."""

    kind = "precondition_failed"
    status = 409


class RateLimitError(DomainError):
    """Verification attempt cap reached."""

    kind = "rate_limited"
    status = 429


class TransientDNSError(DomainError):
    """DNS lookup timed out or the resolver failed."""

    kind = "dns_unavailable"
    status = 503


class InternalError(DomainError):
    """Anything unanticipated."""

    kind = "internal_error"
    status = 500
