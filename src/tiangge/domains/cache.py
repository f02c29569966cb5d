"""Read-through cache of domain bindings for the request path.

Entries are (snapshot, expires_at) tuples keyed by normalized domain. A
snapshot is an immutable DomainBinding, or None for "no binding", so an
entry is replaced in one assignment and readers never see a partial
update. LRU eviction keeps memory bounded.

Every invalidation bumps the domain's generation. A reader takes the
generation before going to storage and passes it back to put(); if a
write happened in between, the (now stale) snapshot is dropped.
"""

from __future__ import annotations

from collections import OrderedDict
from time import monotonic

from tiangge.domains.storage import DomainBinding

MISSING = object()


class BindingCache:
    """TTL + LRU cache of binding lookups, including negative results."""

    def __init__(self, ttl: float = 30.0, max_entries: int = 10000) -> None:
        self.ttl = ttl
        self.max_entries = max_entries
        self._entries: OrderedDict[str, tuple[DomainBinding | None, float]] = OrderedDict()
        self._generations: dict[str, int] = {}

    def get(self, domain: str, now: float | None = None) -> DomainBinding | None | object:
        """Return the cached snapshot, or MISSING when absent or expired."""
        entry = self._entries.get(domain)
        if entry is None:
            return MISSING

        snapshot, expires_at = entry
        if (now if now is not None else monotonic()) >= expires_at:
            self._entries.pop(domain, None)
            return MISSING

        self._entries.move_to_end(domain)
        return snapshot

    def generation(self, domain: str) -> int:
        return self._generations.get(domain, 0)

    def put(
        self,
        domain: str,
        snapshot: DomainBinding | None,
        generation: int | None = None,
        now: float | None = None,
    ) -> bool:
        """Cache a snapshot read from storage.

        Returns:
            False if caching is disabled or the domain was invalidated
            since `generation` was taken.
        """
        if self.ttl <= 0:
            return False
        if generation is not None and generation != self.generation(domain):
            return False

        expires_at = (now if now is not None else monotonic()) + self.ttl
        self._entries[domain] = (snapshot, expires_at)
        self._entries.move_to_end(domain)

        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
        return True

    def invalidate(self, domain: str) -> None:
        self._generations[domain] = self._generations.get(domain, 0) + 1
        self._entries.pop(domain, None)

    def clear(self) -> None:
        for domain in list(self._entries):
            self.invalidate(domain)

    def __contains__(self, domain: str) -> bool:
        return domain in self._entries

    def __len__(self) -> int:
        return len(self._entries)
