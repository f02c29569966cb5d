"""Storage for custom domain bindings.

A binding ties one tenant to one custom domain. Bindings are immutable
snapshots: every change produces a new DomainBinding via
dataclasses.replace(), so a reader holding a snapshot never sees a
half-applied update.

Storage file format (domains.json):
    {
        "bindings": {
            "tenant-123": {
                "tenant_id": "tenant-123",
                "tenant_slug": "acme",
                "domain": "example.com",
                "verification_token": "3f9c2a...",
                "state": "verified",
                "enabled": true,
                "attempt_count": 0,
                "ssl_status": "active",
                "created_at": "2024-01-15T10:00:00+00:00",
                "verified_at": "2024-01-15T10:30:00+00:00"
            }
        }
    }
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from tiangge.errors import ConflictError, NotFoundError

logger = structlog.get_logger()


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


class BindingState(Enum):
    """Verification state of a binding.

    Unbound is not stored: it is the absence of a binding.
    """

    PENDING = "pending"
    VERIFIED = "verified"
    LOCKED = "locked"


class SslStatus(Enum):
    """Certificate status reported by the hosting platform."""

    NONE = "none"
    PROVISIONING = "provisioning"
    ACTIVE = "active"


@dataclass(frozen=True)
class DomainBinding:
    """A tenant's claim on a custom domain."""

    tenant_id: str
    domain: str
    verification_token: str
    tenant_slug: str = ""
    state: BindingState = BindingState.PENDING
    enabled: bool = False
    attempt_count: int = 0
    ssl_status: SslStatus = SslStatus.NONE
    created_at: datetime = field(default_factory=_utc_now)
    verified_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.tenant_slug:
            object.__setattr__(self, "tenant_slug", self.tenant_id)
        if self.enabled and self.state is not BindingState.VERIFIED:
            raise ValueError("Only a verified binding can be enabled")
        if self.attempt_count < 0:
            raise ValueError("attempt_count cannot be negative")

    @property
    def is_verified(self) -> bool:
        return self.state is BindingState.VERIFIED

    @property
    def is_routable(self) -> bool:
        """True if visitor traffic on this domain should reach the tenant."""
        return self.state is BindingState.VERIFIED and self.enabled

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "tenant_id": self.tenant_id,
            "tenant_slug": self.tenant_slug,
            "domain": self.domain,
            "verification_token": self.verification_token,
            "state": self.state.value,
            "enabled": self.enabled,
            "attempt_count": self.attempt_count,
            "ssl_status": self.ssl_status.value,
            "created_at": self.created_at.isoformat(),
            "verified_at": self.verified_at.isoformat() if self.verified_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DomainBinding:
        """Create from dictionary (JSON deserialization)."""
        return cls(
            tenant_id=data["tenant_id"],
            tenant_slug=data.get("tenant_slug") or "",
            domain=data["domain"],
            verification_token=data["verification_token"],
            state=BindingState(data.get("state", BindingState.PENDING.value)),
            enabled=data.get("enabled", False),
            attempt_count=data.get("attempt_count", 0),
            ssl_status=SslStatus(data.get("ssl_status", SslStatus.NONE.value)),
            created_at=datetime.fromisoformat(data["created_at"])
            if data.get("created_at")
            else _utc_now(),
            verified_at=datetime.fromisoformat(data["verified_at"])
            if data.get("verified_at")
            else None,
        )


class BindingStore(ABC):
    """Persistence for domain bindings, keyed by tenant.

    Enforces global domain uniqueness and one binding per tenant inside
    create(), under the store lock, so two concurrent claims cannot both
    succeed. Subclasses provide _read() and _write(); a database-backed
    store can override the public methods instead.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._cache: dict[str, DomainBinding] | None = None
        self._domains: dict[str, str] = {}

    @abstractmethod
    async def _read(self) -> dict[str, DomainBinding]:
        """Read all bindings from the backing medium."""

    @abstractmethod
    async def _write(self, bindings: dict[str, DomainBinding]) -> None:
        """Persist all bindings to the backing medium."""

    async def _load(self) -> dict[str, DomainBinding]:
        if self._cache is None:
            self._cache = await self._read()
            self._domains = {b.domain: b.tenant_id for b in self._cache.values()}
        return self._cache

    async def _save(self, bindings: dict[str, DomainBinding]) -> None:
        await self._write(bindings)
        self._cache = bindings
        self._domains = {b.domain: b.tenant_id for b in bindings.values()}

    async def create(self, binding: DomainBinding) -> DomainBinding:
        """Insert a new binding.

        Raises:
            ConflictError: If the domain is bound to another tenant, or the
                tenant already holds a binding.
        """
        async with self._lock:
            bindings = await self._load()
            owner = self._domains.get(binding.domain)
            if owner is not None and owner != binding.tenant_id:
                raise ConflictError(
                    f"Domain {binding.domain} is already in use by another store.",
                    domain=binding.domain,
                )
            if binding.tenant_id in bindings:
                raise ConflictError(
                    "A custom domain is already configured. Remove it before adding a new one.",
                    domain=bindings[binding.tenant_id].domain,
                )
            updated = dict(bindings)
            updated[binding.tenant_id] = binding
            await self._save(updated)
            return binding

    async def update(self, binding: DomainBinding) -> DomainBinding:
        """Replace the tenant's existing binding with a new snapshot.

        Raises:
            NotFoundError: If the tenant has no binding.
            ConflictError: If the snapshot changes the bound domain.
        """
        async with self._lock:
            bindings = await self._load()
            current = bindings.get(binding.tenant_id)
            if current is None:
                raise NotFoundError("No custom domain configured.")
            if current.domain != binding.domain:
                raise ConflictError("The bound domain cannot be changed; remove it first.")
            updated = dict(bindings)
            updated[binding.tenant_id] = binding
            await self._save(updated)
            return binding

    async def delete(self, tenant_id: str) -> DomainBinding | None:
        """Delete the tenant's binding.

        Returns:
            The deleted binding, or None if the tenant had none.
        """
        async with self._lock:
            bindings = await self._load()
            if tenant_id not in bindings:
                return None
            updated = dict(bindings)
            removed = updated.pop(tenant_id)
            await self._save(updated)
            return removed

    async def get_by_tenant(self, tenant_id: str) -> DomainBinding | None:
        async with self._lock:
            bindings = await self._load()
            return bindings.get(tenant_id)

    async def get_by_domain(self, domain: str) -> DomainBinding | None:
        """Look up a binding by its normalized domain."""
        async with self._lock:
            bindings = await self._load()
            tenant_id = self._domains.get(domain)
            return bindings.get(tenant_id) if tenant_id is not None else None

    async def list_all(self) -> list[DomainBinding]:
        async with self._lock:
            bindings = await self._load()
            return list(bindings.values())

    def invalidate_cache(self) -> None:
        """Invalidate the in-memory copy.

        Call this after external modifications to the backing medium.
        """
        self._cache = None
        self._domains = {}


class MemoryBindingStore(BindingStore):
    """Process-local store. Nothing survives a restart."""

    def __init__(self) -> None:
        super().__init__()
        self._data: dict[str, DomainBinding] = {}

    async def _read(self) -> dict[str, DomainBinding]:
        return dict(self._data)

    async def _write(self, bindings: dict[str, DomainBinding]) -> None:
        self._data = dict(bindings)


class JsonBindingStore(BindingStore):
    """JSON file-based storage for domain bindings.

    Suitable for self-hosted deployments with moderate binding counts.
    """

    def __init__(self, storage_path: str | Path = "domains.json") -> None:
        """Initialize binding store.

        Args:
            storage_path: Path to the JSON storage file.
        """
        super().__init__()
        self.storage_path = Path(storage_path)

    async def _read(self) -> dict[str, DomainBinding]:
        if not self.storage_path.exists():
            return {}

        try:
            content = await asyncio.to_thread(self.storage_path.read_text)
            data = json.loads(content)
            return {
                tenant_id: DomainBinding.from_dict(binding_data)
                for tenant_id, binding_data in data.get("bindings", {}).items()
            }
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.error(
                "Unreadable binding storage, starting empty",
                path=str(self.storage_path),
                error=str(e),
            )
            return {}

    async def _write(self, bindings: dict[str, DomainBinding]) -> None:
        data = {"bindings": {tenant_id: b.to_dict() for tenant_id, b in bindings.items()}}
        content = json.dumps(data, indent=2)
        await asyncio.to_thread(self.storage_path.write_text, content)
