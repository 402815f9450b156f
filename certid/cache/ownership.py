"""
Read-through / write-through cache of ownership and identity records.

The store stays the source of truth: absent results are never cached, so a
key registered by another process becomes visible on the next lookup, and
clearing the cache never changes an answer.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from typing import Dict, Optional

from ..monitoring.metrics_exporter import get_registry
from ..store.base import IdentityRecord, IdentityStore, OwnershipRecord

logger = logging.getLogger(__name__)


class _LRU:
    def __init__(self, max_entries: int):
        self.max_entries = max_entries
        self._data: "OrderedDict[str, object]" = OrderedDict()

    def get(self, key: str):
        value = self._data.get(key)
        if value is not None:
            self._data.move_to_end(key)
        return value

    def put(self, key: str, value) -> None:
        self._data[key] = value
        self._data.move_to_end(key)
        while len(self._data) > self.max_entries:
            self._data.popitem(last=False)

    def pop(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class OwnershipCache:
    """Bounded LRU in front of an :class:`IdentityStore`."""

    def __init__(self, store: IdentityStore, max_entries: int = 10_000):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.store = store
        self._lock = threading.Lock()
        self._ownership = _LRU(max_entries)
        self._identities = _LRU(max_entries)
        self._hits = 0
        self._misses = 0
        self._metrics = get_registry()

    def _count(self, hit: bool) -> None:
        with self._lock:
            if hit:
                self._hits += 1
            else:
                self._misses += 1
        self._metrics.observe_cache(hit)

    async def get_ownership(self, key_id: str) -> Optional[OwnershipRecord]:
        with self._lock:
            cached = self._ownership.get(key_id)
        if cached is not None:
            self._count(True)
            return cached
        self._count(False)
        record = await self.store.get_ownership(key_id)
        if record is not None:
            with self._lock:
                self._ownership.put(key_id, record)
        return record

    async def get_identity(self, key_id: str) -> Optional[IdentityRecord]:
        with self._lock:
            cached = self._identities.get(key_id)
        if cached is not None:
            self._count(True)
            return cached
        self._count(False)
        record = await self.store.get_identity(key_id)
        if record is not None:
            with self._lock:
                self._identities.put(key_id, record)
        return record

    def put(self, ownership: OwnershipRecord, identity: Optional[IdentityRecord] = None) -> None:
        """Record state the store has just committed."""
        with self._lock:
            self._ownership.put(ownership.key_id, ownership)
            if identity is not None:
                self._identities.put(identity.key_id, identity)

    async def warm(self, limit: Optional[int] = None) -> int:
        """Pre-load identities and their ownership records; returns the number loaded."""
        loaded = 0
        async for identity in self.store.iter_identities():
            if limit is not None and loaded >= limit:
                break
            ownership = await self.store.get_ownership(identity.key_id)
            if ownership is not None:
                self.put(ownership, identity)
                loaded += 1
        logger.debug("Warmed ownership cache with %d identities", loaded)
        return loaded

    def invalidate(self, key_id: str) -> None:
        with self._lock:
            self._ownership.pop(key_id)
            self._identities.pop(key_id)

    def clear(self) -> None:
        with self._lock:
            self._ownership.clear()
            self._identities.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "ownership_entries": len(self._ownership),
                "identity_entries": len(self._identities),
            }


__all__ = ["OwnershipCache"]
