"""Tiangge - custom domains for storefronts."""

__version__ = "0.1.0"
