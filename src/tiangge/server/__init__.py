"""Tiangge storefront server."""

from tiangge.server.app import FORWARDED_HOST_HEADER, TENANT_SLUG_KEY, StorefrontServer

__all__ = ["FORWARDED_HOST_HEADER", "TENANT_SLUG_KEY", "StorefrontServer"]
