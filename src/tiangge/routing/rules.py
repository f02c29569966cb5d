"""Route classification for the tenant resolver.

Platform-internal paths (API routes, static assets, auth pages, the
dashboard) must never be rewritten to a tenant, whatever host they arrive
on. They are listed once in a RouteTable which the resolver consults
first on every request.

Example:
    >>> table = RouteTable.from_prefixes(["/api", "/favicon.ico"])
    >>> table.classify("/api/custom-domain/status")
    <RouteClass.PLATFORM: 'platform'>
    >>> table.classify("/apiary")
    <RouteClass.TENANT: 'tenant'>
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from tiangge.core.config import DEFAULT_PLATFORM_PREFIXES


class RouteClass(Enum):
    """Who owns a request path."""

    PLATFORM = "platform"
    TENANT = "tenant"


@dataclass(frozen=True)
class PathPrefixRule:
    """Match a path equal to the prefix or below it.

    The match is on whole path segments: "/api" matches "/api" and
    "/api/users" but not "/apiary".

    Example:
        >>> rule = PathPrefixRule(prefix="/api")
        >>> rule.matches("/api/users")
        True
        >>> rule.matches("/web/page")
        False
    """

    prefix: str
    route_class: RouteClass = RouteClass.PLATFORM
    case_sensitive: bool = False

    def __post_init__(self) -> None:
        prefix = "/" + self.prefix.strip().strip("/")
        object.__setattr__(self, "prefix", prefix)

    def matches(self, path: str) -> bool:
        prefix = self.prefix
        if not self.case_sensitive:
            path = path.lower()
            prefix = prefix.lower()
        if prefix == "/":
            return True
        return path == prefix or path.startswith(prefix + "/")

    def to_dict(self) -> dict[str, Any]:
        return {
            "prefix": self.prefix,
            "route_class": self.route_class.value,
            "case_sensitive": self.case_sensitive,
        }


@dataclass
class RouteTable:
    """Ordered list of path rules; the first match wins."""

    rules: list[PathPrefixRule] = field(default_factory=list)
    default: RouteClass = RouteClass.TENANT

    @classmethod
    def from_prefixes(cls, prefixes: Iterable[str]) -> RouteTable:
        """Build a table where every prefix is platform-owned."""
        return cls(rules=[PathPrefixRule(prefix=p) for p in prefixes if p.strip()])

    @classmethod
    def default_table(cls) -> RouteTable:
        return cls.from_prefixes(DEFAULT_PLATFORM_PREFIXES)

    def classify(self, path: str) -> RouteClass:
        path = path or "/"
        for rule in self.rules:
            if rule.matches(path):
                return rule.route_class
        return self.default

    def is_platform_path(self, path: str) -> bool:
        return self.classify(path) is RouteClass.PLATFORM

    def to_list(self) -> list[dict[str, Any]]:
        return [rule.to_dict() for rule in self.rules]
