"""Domain registry for the custom domain lifecycle.

The registry is the only write path for binding state:
- Registration with a freshly generated verification token
- DNS verification gated by the attempt limiter
- Enable/disable of verified bindings
- Removal, which frees the domain for anyone to claim again

Usage:
    registry = DomainRegistry(JsonBindingStore("domains.json"))

    binding = await registry.register("tenant-123", "example.com", tenant_slug="acme")
    outcome = await registry.verify("tenant-123", "example.com")
    await registry.set_enabled("tenant-123", True)

    # Request path (cache-backed)
    binding = await registry.lookup_by_domain("example.com")
"""

from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

import structlog

from tiangge.domains.cache import MISSING, BindingCache
from tiangge.domains.challenge import (
    DEFAULT_TXT_PREFIX,
    MIN_TOKEN_BYTES,
    dns_instructions,
    generate_verification_token,
    normalize_domain,
    txt_record_name,
    validate_domain,
)
from tiangge.domains.limiter import AttemptLimiter
from tiangge.domains.storage import BindingState, BindingStore, DomainBinding, SslStatus
from tiangge.domains.verification import CheckOutcome, DNSVerifier, VerificationResult
from tiangge.errors import (
    NotFoundError,
    PreconditionError,
    RateLimitError,
    TransientDNSError,
    ValidationError,
)
from tiangge.observability.metrics import BINDING_CACHE_LOOKUPS, VERIFICATION_ATTEMPTS

logger = structlog.get_logger()


@dataclass
class VerifyOutcome:
    """What a verify call did to the binding."""

    binding: DomainBinding
    result: VerificationResult | None
    attempts_remaining: int
    dns_instructions: list[dict[str, Any]] = field(default_factory=list)

    @property
    def is_verified(self) -> bool:
        return self.binding.is_verified


@dataclass
class BindingSummary:
    """Tenant-facing view of a binding."""

    domain: str
    verification_token: str
    txt_record_name: str
    state: BindingState
    enabled: bool
    ssl_status: SslStatus
    attempt_count: int
    attempts_remaining: int
    created_at: datetime
    verified_at: datetime | None
    dns_instructions: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "customDomain": self.domain,
            "domainVerificationCode": self.verification_token,
            "txtRecordName": self.txt_record_name,
            "state": self.state.value,
            "domainVerified": self.state is BindingState.VERIFIED,
            "customDomainEnabled": self.enabled,
            "sslStatus": self.ssl_status.value,
            "attemptCount": self.attempt_count,
            "attemptsRemaining": self.attempts_remaining,
            "createdAt": self.created_at.isoformat(),
            "verifiedAt": self.verified_at.isoformat() if self.verified_at else None,
            "dnsInstructions": self.dns_instructions,
        }


class DomainRegistry:
    """Owns domain bindings and their state machine.

    Writes for a tenant are serialized by a per-tenant lock. Every write
    invalidates the routing cache entry for the affected domain before
    returning.
    """

    def __init__(
        self,
        store: BindingStore,
        verifier: DNSVerifier | None = None,
        limiter: AttemptLimiter | None = None,
        cache: BindingCache | None = None,
        serving_ip: str = "75.2.60.5",
        canonical_hostname: str = "tiangge.shop",
        token_bytes: int = MIN_TOKEN_BYTES,
        record_prefix: str = DEFAULT_TXT_PREFIX,
    ) -> None:
        """Initialize domain registry.

        Args:
            store: Persistence backend for bindings.
            verifier: DNS checker; defaults to a DNSVerifier with a 5s timeout.
            limiter: Attempt limiter; defaults to 10 attempts.
            cache: Read-through cache used by lookup_by_domain().
            serving_ip: Target of the apex A record shown after verification.
            canonical_hostname: Target of the www CNAME shown after verification.
            token_bytes: Entropy of generated verification tokens.
            record_prefix: Label of the TXT challenge record.
        """
        self.store = store
        self.verifier = verifier or DNSVerifier(record_prefix=record_prefix)
        self.limiter = limiter or AttemptLimiter()
        self.cache = cache or BindingCache()
        self.serving_ip = serving_ip
        self.canonical_hostname = canonical_hostname
        self.token_bytes = token_bytes
        self.record_prefix = record_prefix
        self._tenant_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, tenant_id: str) -> asyncio.Lock:
        lock = self._tenant_locks.get(tenant_id)
        if lock is None:
            lock = asyncio.Lock()
            self._tenant_locks[tenant_id] = lock
        return lock

    def dns_instructions(self) -> list[dict[str, Any]]:
        return dns_instructions(self.serving_ip, self.canonical_hostname)

    async def _require_binding(self, tenant_id: str) -> DomainBinding:
        binding = await self.store.get_by_tenant(tenant_id)
        if binding is None:
            raise NotFoundError("No custom domain configured.")
        return binding

    async def _write(self, binding: DomainBinding) -> DomainBinding:
        await self.store.update(binding)
        self.cache.invalidate(binding.domain)
        return binding

    async def register(
        self,
        tenant_id: str,
        domain: str,
        tenant_slug: str | None = None,
    ) -> DomainBinding:
        """Claim a domain for a tenant.

        Creates a Pending binding with a new verification token. The tenant
        must then publish the TXT record and call verify().

        Raises:
            ValidationError: If the domain is malformed.
            ConflictError: If the domain is bound to another tenant, or the
                tenant already has a binding.
        """
        if not tenant_id:
            raise ValidationError("Tenant id is required.")
        normalized = validate_domain(domain)

        async with self._lock_for(tenant_id):
            binding = DomainBinding(
                tenant_id=tenant_id,
                tenant_slug=tenant_slug or tenant_id,
                domain=normalized,
                verification_token=generate_verification_token(self.token_bytes),
            )
            await self.store.create(binding)
            self.cache.invalidate(normalized)

        logger.info("Custom domain registered", tenant_id=tenant_id, domain=normalized)
        return binding

    async def unregister(self, tenant_id: str) -> DomainBinding | None:
        """Delete the tenant's binding. A no-op if there is none.

        Returns:
            The removed binding, or None.
        """
        async with self._lock_for(tenant_id):
            removed = await self.store.delete(tenant_id)
            if removed is not None:
                self.cache.invalidate(removed.domain)

        if removed is not None:
            logger.info("Custom domain removed", tenant_id=tenant_id, domain=removed.domain)
        return removed

    async def lookup_by_domain(self, domain: str) -> DomainBinding | None:
        """Find the binding for a domain. Used on every visitor request."""
        normalized = normalize_domain(domain)

        cached = self.cache.get(normalized)
        if cached is not MISSING:
            BINDING_CACHE_LOOKUPS.labels(result="hit").inc()
            return cached  # type: ignore[return-value]

        BINDING_CACHE_LOOKUPS.labels(result="miss").inc()
        generation = self.cache.generation(normalized)
        binding = await self.store.get_by_domain(normalized)
        self.cache.put(normalized, binding, generation=generation)
        return binding

    async def set_enabled(self, tenant_id: str, enabled: bool) -> DomainBinding:
        """Turn routing for a verified domain on or off.

        Raises:
            NotFoundError: If the tenant has no binding.
            PreconditionError: If the binding is not Verified.
        """
        async with self._lock_for(tenant_id):
            binding = await self._require_binding(tenant_id)
            if not binding.is_verified:
                raise PreconditionError(
                    "Custom domain must be verified before it can be enabled or disabled.",
                    state=binding.state.value,
                )
            if binding.enabled == enabled:
                return binding
            updated = await self._write(replace(binding, enabled=enabled))

        logger.info(
            "Custom domain routing toggled",
            tenant_id=tenant_id,
            domain=updated.domain,
            enabled=enabled,
        )
        return updated

    async def verify(self, tenant_id: str, domain: str) -> VerifyOutcome:
        """Check the tenant's TXT challenge against live DNS.

        The attempt is recorded before returning, whatever the outcome.

        Raises:
            NotFoundError: If the tenant has no binding for this domain.
            RateLimitError: If the attempt cap has been reached.
            TransientDNSError: If the lookup timed out or the resolver failed.
        """
        normalized = normalize_domain(domain or "")

        async with self._lock_for(tenant_id):
            binding = await self.store.get_by_tenant(tenant_id)
            if binding is None or binding.domain != normalized:
                raise NotFoundError(
                    "Custom domain not configured or verification code missing."
                )

            if binding.is_verified:
                return VerifyOutcome(
                    binding=binding,
                    result=None,
                    attempts_remaining=self.limiter.remaining(binding),
                    dns_instructions=self.dns_instructions(),
                )

            try:
                self.limiter.check(binding)
            except RateLimitError:
                if binding.state is not BindingState.LOCKED:
                    await self._write(self.limiter.lock(binding))
                VERIFICATION_ATTEMPTS.labels(outcome="rate_limited").inc()
                logger.warning(
                    "Verification attempt rejected, binding locked",
                    tenant_id=tenant_id,
                    domain=binding.domain,
                    attempts=binding.attempt_count,
                )
                raise

            result = await self.verifier.check(binding.domain, binding.verification_token)
            updated = self.limiter.record(binding, result.outcome)
            if updated is not binding:
                await self._write(updated)

        VERIFICATION_ATTEMPTS.labels(outcome=result.outcome.value).inc()
        remaining = self.limiter.remaining(updated)
        log = logger.info if result.is_verified else logger.warning
        log(
            "Domain verification checked",
            tenant_id=tenant_id,
            domain=binding.domain,
            outcome=result.outcome.value,
            attempts=updated.attempt_count,
            state=updated.state.value,
        )

        if result.outcome is CheckOutcome.TRANSIENT_ERROR:
            raise TransientDNSError(
                "Verification failed because DNS could not be reached. Please try again.",
                attemptsRemaining=remaining,
            )

        return VerifyOutcome(
            binding=updated,
            result=result,
            attempts_remaining=remaining,
            dns_instructions=self.dns_instructions() if updated.is_verified else [],
        )

    async def status(self, tenant_id: str) -> BindingSummary | None:
        """Summarize the tenant's binding, or None if there is none."""
        binding = await self.store.get_by_tenant(tenant_id)
        if binding is None:
            return None

        return BindingSummary(
            domain=binding.domain,
            verification_token=binding.verification_token,
            txt_record_name=txt_record_name(binding.domain, self.record_prefix),
            state=binding.state,
            enabled=binding.enabled,
            ssl_status=binding.ssl_status,
            attempt_count=binding.attempt_count,
            attempts_remaining=self.limiter.remaining(binding),
            created_at=binding.created_at,
            verified_at=binding.verified_at,
            dns_instructions=self.dns_instructions() if binding.is_verified else [],
        )

    async def set_ssl_status(self, tenant_id: str, ssl_status: SslStatus) -> DomainBinding:
        """Record the certificate status reported by the hosting platform."""
        async with self._lock_for(tenant_id):
            binding = await self._require_binding(tenant_id)
            if binding.ssl_status is ssl_status:
                return binding
            return await self._write(replace(binding, ssl_status=ssl_status))

    async def reset_attempts(self, tenant_id: str) -> DomainBinding:
        """Unlock a binding that ran out of verification attempts.

        Support-only: this is never exposed to tenants.

        Raises:
            NotFoundError: If the tenant has no binding.
            PreconditionError: If the binding is already Verified.
        """
        async with self._lock_for(tenant_id):
            binding = await self._require_binding(tenant_id)
            if binding.is_verified:
                raise PreconditionError("Custom domain is already verified.")
            updated = await self._write(
                replace(binding, state=BindingState.PENDING, attempt_count=0)
            )

        logger.info("Verification attempts reset", tenant_id=tenant_id, domain=updated.domain)
        return updated

    async def list_bindings(self) -> list[DomainBinding]:
        return await self.store.list_all()
