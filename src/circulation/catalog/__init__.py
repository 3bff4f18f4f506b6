"""Lookups into the external catalog and member services."""

from .directory import CatalogDirectory, MemberDirectory

__all__ = ["CatalogDirectory", "MemberDirectory"]
