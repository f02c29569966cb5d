"""Verification attempt limiting.

Each binding may be checked against DNS a fixed number of times while
Pending. Reaching the cap locks the binding; only support can unlock it
(see DomainRegistry.reset_attempts).

The limiter works on immutable snapshots and never touches storage. The
registry serializes check -> DNS lookup -> record per tenant, so two
concurrent verify calls cannot both pass the check.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime

from tiangge.domains.storage import BindingState, DomainBinding
from tiangge.domains.verification import CheckOutcome
from tiangge.errors import RateLimitError

DEFAULT_MAX_ATTEMPTS = 10


class AttemptLimiter:
    """Hard cap on verification attempts per binding."""

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        count_transient_failures: bool = True,
    ) -> None:
        self.max_attempts = max_attempts
        self.count_transient_failures = count_transient_failures

    def remaining(self, binding: DomainBinding) -> int:
        if binding.state is BindingState.LOCKED:
            return 0
        return max(0, self.max_attempts - binding.attempt_count)

    def is_exhausted(self, binding: DomainBinding) -> bool:
        return (
            binding.state is BindingState.LOCKED
            or binding.attempt_count >= self.max_attempts
        )

    def check(self, binding: DomainBinding) -> None:
        """Gate an attempt before the DNS lookup runs.

        Raises:
            RateLimitError: If the binding is locked or out of attempts.
        """
        if self.is_exhausted(binding):
            raise RateLimitError(
                "Too many verification attempts. Please contact support.",
                attempts=binding.attempt_count,
                max_attempts=self.max_attempts,
            )

    def lock(self, binding: DomainBinding) -> DomainBinding:
        return replace(binding, state=BindingState.LOCKED, enabled=False)

    def record(
        self,
        binding: DomainBinding,
        outcome: CheckOutcome,
        now: datetime | None = None,
    ) -> DomainBinding:
        """Apply a finished check to the binding.

        A verified check resets the count and moves the binding to Verified.
        Any other outcome adds one attempt (transient errors only when
        configured to), locking the binding once the cap is reached.
        """
        if outcome is CheckOutcome.VERIFIED:
            return replace(
                binding,
                state=BindingState.VERIFIED,
                attempt_count=0,
                verified_at=now or datetime.now(UTC),
            )

        if outcome is CheckOutcome.TRANSIENT_ERROR and not self.count_transient_failures:
            return binding

        updated = replace(binding, attempt_count=binding.attempt_count + 1)
        if updated.attempt_count >= self.max_attempts:
            updated = self.lock(updated)
        return updated
