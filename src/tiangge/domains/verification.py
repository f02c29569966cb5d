"""DNS verification for custom domain ownership.

Ownership is proven by a TXT record carrying the issued token:

    _bolt-verify.example.com  TXT  "3f9c2a...e41b"

A TXT lookup can return several strings. The check succeeds only if the
token is an exact member of that set; substrings, superstrings and the
concatenation of all strings do not count.
"""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass, field
from enum import Enum

import aiodns
import structlog

from tiangge.domains.challenge import DEFAULT_TXT_PREFIX, txt_record_name

logger = structlog.get_logger()

_NOT_FOUND_CODES = frozenset({aiodns.error.ARES_ENOTFOUND, aiodns.error.ARES_ENODATA})


class CheckOutcome(Enum):
    """Outcome of one verification check."""

    VERIFIED = "verified"
    NOT_FOUND = "not_found"
    TRANSIENT_ERROR = "transient_error"


@dataclass
class VerificationResult:
    """Result of a domain verification check."""

    domain: str
    record_name: str
    outcome: CheckOutcome
    txt_values: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def is_verified(self) -> bool:
        return self.outcome is CheckOutcome.VERIFIED


def _decode(text: str | bytes) -> str:
    if isinstance(text, bytes):
        return text.decode("utf-8", errors="replace")
    return text


class DNSVerifier:
    """Checks a domain's TXT challenge record against an expected token.

    Each lookup is bounded by `timeout` seconds and retried at most
    `retries` times, and only when it timed out.
    """

    def __init__(
        self,
        timeout: float = 5.0,
        retries: int = 1,
        nameservers: list[str] | None = None,
        record_prefix: str = DEFAULT_TXT_PREFIX,
    ) -> None:
        """Initialize DNS verifier.

        Args:
            timeout: Seconds to wait for a single lookup.
            retries: Extra attempts after a timeout (0 or 1).
            nameservers: Resolvers to query; system resolvers when empty.
            record_prefix: Label prepended to the domain for the TXT record.
        """
        self.timeout = timeout
        self.retries = max(0, min(retries, 1))
        self.nameservers = list(nameservers or [])
        self.record_prefix = record_prefix
        self._resolver: aiodns.DNSResolver | None = None

    def _get_resolver(self) -> aiodns.DNSResolver:
        """Get or create DNS resolver with proper event loop handling."""
        if self._resolver is None:
            kwargs: dict = {"timeout": self.timeout, "tries": 1}
            if self.nameservers:
                kwargs["nameservers"] = self.nameservers
            if sys.platform == "win32":
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError:
                    loop = asyncio.new_event_loop()
                self._resolver = aiodns.DNSResolver(loop=loop, **kwargs)
            else:
                self._resolver = aiodns.DNSResolver(**kwargs)
        return self._resolver

    async def lookup_txt(self, record_name: str) -> list[str]:
        """Resolve TXT strings for a record name.

        Raises:
            aiodns.error.DNSError: On NXDOMAIN, no data or resolver failure.
            TimeoutError: If every attempt timed out.
        """
        resolver = self._get_resolver()
        attempts = 1 + self.retries

        for attempt in range(1, attempts + 1):
            try:
                result = await asyncio.wait_for(
                    resolver.query(record_name, "TXT"), timeout=self.timeout
                )
                return [_decode(record.text) for record in result or []]
            except TimeoutError:
                pass
            except aiodns.error.DNSError as e:
                if not e.args or e.args[0] != aiodns.error.ARES_ETIMEOUT:
                    raise

            if attempt < attempts:
                logger.debug("TXT lookup timed out, retrying", record=record_name)

        raise TimeoutError(f"TXT lookup for {record_name} timed out")

    async def check(self, domain: str, expected_token: str) -> VerificationResult:
        """Check whether the domain publishes the expected token.

        Args:
            domain: The normalized custom domain.
            expected_token: The token issued at registration.

        Returns:
            VerificationResult with VERIFIED, NOT_FOUND or TRANSIENT_ERROR.
        """
        record_name = txt_record_name(domain, self.record_prefix)

        try:
            values = await self.lookup_txt(record_name)
        except TimeoutError:
            return VerificationResult(
                domain=domain,
                record_name=record_name,
                outcome=CheckOutcome.TRANSIENT_ERROR,
                error=f"DNS lookup for {record_name} timed out",
            )
        except aiodns.error.DNSError as e:
            code = e.args[0] if e.args else None
            if code in _NOT_FOUND_CODES:
                return VerificationResult(
                    domain=domain,
                    record_name=record_name,
                    outcome=CheckOutcome.NOT_FOUND,
                    error=f"No TXT record found at {record_name}",
                )
            return VerificationResult(
                domain=domain,
                record_name=record_name,
                outcome=CheckOutcome.TRANSIENT_ERROR,
                error=f"DNS resolver failure: {e}",
            )

        if expected_token in set(values):
            return VerificationResult(
                domain=domain,
                record_name=record_name,
                outcome=CheckOutcome.VERIFIED,
                txt_values=values,
            )

        return VerificationResult(
            domain=domain,
            record_name=record_name,
            outcome=CheckOutcome.NOT_FOUND,
            txt_values=values,
            error=f"TXT record at {record_name} does not contain the verification code",
        )
