"""In-process identity store for tests and single-process deployments."""

from __future__ import annotations

import copy
import logging
import threading
from typing import AsyncIterator, Dict, List, Optional, Set
from uuid import UUID

from .base import IdentityKind, IdentityRecord, IdentityStore, OwnershipRecord

logger = logging.getLogger(__name__)


class MemoryIdentityStore(IdentityStore):
    """Dictionary-backed store; every compound write happens under one lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ownership: Dict[str, OwnershipRecord] = {}
        self._identities: Dict[str, IdentityRecord] = {}
        # Insertion-ordered dicts double as ordered sets.
        self._names: Dict[str, Dict[str, None]] = {}
        self._external_ids: Dict[str, UUID] = {}
        self._accounts: Dict[UUID, Set[str]] = {}

    async def get_ownership(self, key_id: str) -> Optional[OwnershipRecord]:
        with self._lock:
            record = self._ownership.get(key_id)
            return copy.copy(record) if record else None

    async def get_identity(self, key_id: str) -> Optional[IdentityRecord]:
        with self._lock:
            record = self._identities.get(key_id)
            return copy.deepcopy(record) if record else None

    async def add_ownership(
        self,
        ownership: OwnershipRecord,
        identity: Optional[IdentityRecord] = None,
    ) -> OwnershipRecord:
        with self._lock:
            existing = self._ownership.get(ownership.key_id)
            if existing is not None and existing.owner_key_id != ownership.owner_key_id:
                return copy.copy(existing)
            if existing is None:
                self._ownership[ownership.key_id] = copy.copy(ownership)
                existing = ownership
            if identity is not None and identity.key_id not in self._identities:
                self._identities[identity.key_id] = copy.deepcopy(identity)
                if identity.kind == IdentityKind.WELL_KNOWN:
                    self._names.setdefault(identity.name, {})[identity.key_id] = None
                logger.debug("Stored identity %s", identity.key_id)
            return copy.copy(existing)

    async def get_by_name(self, name: str) -> List[IdentityRecord]:
        with self._lock:
            return [copy.deepcopy(self._identities[k]) for k in self._names.get(name, {})]

    async def search_names(self, query: str) -> List[IdentityRecord]:
        needle = query.lower()
        with self._lock:
            return [
                copy.deepcopy(self._identities[k])
                for name, keys in self._names.items()
                if needle in name.lower()
                for k in keys
            ]

    async def iter_identities(self) -> AsyncIterator[IdentityRecord]:
        with self._lock:
            snapshot = [copy.deepcopy(r) for r in self._identities.values()]
        for record in snapshot:
            yield record

    async def set_external_id(self, key_id: str, external_id: UUID) -> None:
        with self._lock:
            previous = self._external_ids.get(key_id)
            if previous is not None and previous != external_id:
                self._accounts.get(previous, set()).discard(key_id)
            self._external_ids[key_id] = external_id
            self._accounts.setdefault(external_id, set()).add(key_id)

    async def get_external_id(self, key_id: str) -> Optional[UUID]:
        with self._lock:
            return self._external_ids.get(key_id)

    async def key_ids_for_external_id(self, external_id: UUID) -> List[str]:
        with self._lock:
            return sorted(self._accounts.get(external_id, set()))


def create_memory_store() -> MemoryIdentityStore:
    return MemoryIdentityStore()


__all__ = ["MemoryIdentityStore", "create_memory_store"]
