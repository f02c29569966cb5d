"""Verification challenge generation and domain syntax checks.

A tenant proves ownership of a domain by publishing a TXT record:

    _bolt-verify.example.com  TXT  "3f9c2a...e41b"

Once verified, the tenant points the domain at the platform:

    example.com      A      75.2.60.5
    www.example.com  CNAME  tiangge.shop
"""

from __future__ import annotations

import re
import secrets
from typing import Any

from tiangge.errors import ValidationError

DEFAULT_TXT_PREFIX = "_bolt-verify"
MIN_TOKEN_BYTES = 20
MAX_DOMAIN_LENGTH = 253

_LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
_TLD_RE = re.compile(r"^[a-z]{2,63}$")


def normalize_domain(domain: str) -> str:
    """Lower-case a domain and strip whitespace and a trailing root dot."""
    return domain.strip().lower().rstrip(".")


def is_valid_domain(domain: str) -> bool:
    """Check a normalized domain against label(.label)+ syntax.

    Labels are ASCII letters, digits and hyphens, 1-63 characters, not
    starting or ending with a hyphen. The final label (TLD) is alphabetic
    and at least 2 characters.
    """
    if not domain or len(domain) > MAX_DOMAIN_LENGTH:
        return False

    labels = domain.split(".")
    if len(labels) < 2:
        return False

    if not all(_LABEL_RE.match(label) for label in labels[:-1]):
        return False
    return bool(_TLD_RE.match(labels[-1]))


def validate_domain(domain: str | None) -> str:
    """Normalize and validate a domain supplied by a tenant.

    Returns:
        The normalized domain.

    Raises:
        ValidationError: If the domain is missing or malformed.
    """
    if not domain or not isinstance(domain, str):
        raise ValidationError("Domain is required.")

    normalized = normalize_domain(domain)
    if not is_valid_domain(normalized):
        raise ValidationError(
            "Invalid domain format. Please enter a valid domain (e.g., example.com).",
            domain=domain,
        )
    return normalized


def generate_verification_token(num_bytes: int = MIN_TOKEN_BYTES) -> str:
    """Generate a hex-encoded random verification token.

    Args:
        num_bytes: Bytes of entropy; anything below 20 is raised to 20.
    """
    return secrets.token_hex(max(num_bytes, MIN_TOKEN_BYTES))


def txt_record_name(domain: str, prefix: str = DEFAULT_TXT_PREFIX) -> str:
    """Name of the TXT record that must carry the verification token."""
    return f"{prefix}.{normalize_domain(domain)}"


def dns_instructions(serving_ip: str, canonical_hostname: str) -> list[dict[str, Any]]:
    """Records a verified tenant must publish to route traffic to the platform."""
    return [
        {"type": "A", "name": "@", "value": serving_ip},
        {"type": "CNAME", "name": "www", "value": canonical_hostname},
    ]
