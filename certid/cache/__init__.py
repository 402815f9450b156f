"""Ownership cache package."""

from .ownership import OwnershipCache

__all__ = ["OwnershipCache"]
