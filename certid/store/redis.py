"""Redis-backed identity store.

Layout (all keys under ``prefix``):
- ``{prefix}:owner:{key_id}`` ownership record JSON
- ``{prefix}:identity:{key_id}`` identity record JSON
- ``{prefix}:identities`` list of identity key ids in registration order
- ``{prefix}:name:{name}`` list of well-known key ids registered under ``name``
- ``{prefix}:names`` set of all well-known names (substring search scans it)
- ``{prefix}:ext:{key_id}`` external account id, ``{prefix}:account:{uuid}`` set of key ids

Design Notes:
- ``add_ownership`` is an optimistic transaction: WATCH the owner and identity
  keys, read, then MULTI/EXEC. A concurrent writer aborts the EXEC with
  ``WatchError`` and the attempt is retried; the re-read then observes the
  competing record, so two different owners can never both be committed.
- Records are never deleted or given a TTL; the registry is append-only.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import AsyncIterator, Iterator, List, Optional
from uuid import UUID

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from ..errors import StoreError
from .base import IdentityKind, IdentityRecord, IdentityStore, OwnershipRecord

logger = logging.getLogger(__name__)


class RedisIdentityStore(IdentityStore):
    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        prefix: str = "certid",
        max_retries: int = 16,
        page_size: int = 500,
    ):
        self.url = url
        self.prefix = prefix.rstrip(":")
        self.max_retries = max_retries
        self.page_size = page_size
        self._client = None

    async def _get_client(self):
        if self._client is None:
            self._client = redis.from_url(self.url, decode_responses=True)
        return self._client

    @contextmanager
    def _translate_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except WatchError:
            raise
        except RedisError as e:
            logger.error("Redis %s failed: %s", action, e)
            raise StoreError(f"redis {action} failed: {e}") from e

    # Key helpers
    def _owner_key(self, key_id: str) -> str:
        return f"{self.prefix}:owner:{key_id}"

    def _identity_key(self, key_id: str) -> str:
        return f"{self.prefix}:identity:{key_id}"

    def _identities_key(self) -> str:
        return f"{self.prefix}:identities"

    def _name_key(self, name: str) -> str:
        return f"{self.prefix}:name:{name}"

    def _names_key(self) -> str:
        return f"{self.prefix}:names"

    def _ext_key(self, key_id: str) -> str:
        return f"{self.prefix}:ext:{key_id}"

    def _account_key(self, external_id: UUID) -> str:
        return f"{self.prefix}:account:{external_id}"

    async def get_ownership(self, key_id: str) -> Optional[OwnershipRecord]:
        client = await self._get_client()
        with self._translate_errors("read"):
            raw = await client.get(self._owner_key(key_id))
        return OwnershipRecord.from_json(raw) if raw else None

    async def get_identity(self, key_id: str) -> Optional[IdentityRecord]:
        client = await self._get_client()
        with self._translate_errors("read"):
            raw = await client.get(self._identity_key(key_id))
        return IdentityRecord.from_json(raw) if raw else None

    async def add_ownership(
        self,
        ownership: OwnershipRecord,
        identity: Optional[IdentityRecord] = None,
    ) -> OwnershipRecord:
        client = await self._get_client()
        owner_key = self._owner_key(ownership.key_id)
        identity_key = self._identity_key(ownership.key_id)
        for attempt in range(1, self.max_retries + 1):
            try:
                with self._translate_errors("write"):
                    async with client.pipeline(transaction=True) as pipe:
                        await pipe.watch(owner_key, identity_key)
                        raw = await pipe.get(owner_key)
                        current = OwnershipRecord.from_json(raw) if raw else None
                        if current is not None and current.owner_key_id != ownership.owner_key_id:
                            return current
                        write_identity = identity is not None and not await pipe.exists(identity_key)
                        if current is not None and not write_identity:
                            return current
                        pipe.multi()
                        if current is None:
                            pipe.set(owner_key, ownership.to_json())
                        if write_identity:
                            pipe.set(identity_key, identity.to_json())
                            pipe.rpush(self._identities_key(), identity.key_id)
                            if identity.kind == IdentityKind.WELL_KNOWN:
                                pipe.rpush(self._name_key(identity.name), identity.key_id)
                                pipe.sadd(self._names_key(), identity.name)
                        await pipe.execute()
                        logger.debug("Stored ownership %s -> %s", ownership.key_id, ownership.owner_key_id)
                        return current or ownership
            except WatchError:
                logger.debug("Concurrent write on %s, retrying (attempt %d)", ownership.key_id, attempt)
        raise StoreError(f"gave up writing ownership of {ownership.key_id} after {self.max_retries} attempts")

    async def _multi_get(self, key_ids: List[str]) -> List[IdentityRecord]:
        if not key_ids:
            return []
        client = await self._get_client()
        with self._translate_errors("read"):
            raws = await client.mget([self._identity_key(k) for k in key_ids])
        return [IdentityRecord.from_json(raw) for raw in raws if raw]

    async def get_by_name(self, name: str) -> List[IdentityRecord]:
        client = await self._get_client()
        with self._translate_errors("read"):
            key_ids = await client.lrange(self._name_key(name), 0, -1)
        return await self._multi_get(key_ids)

    async def search_names(self, query: str) -> List[IdentityRecord]:
        client = await self._get_client()
        needle = query.lower()
        with self._translate_errors("read"):
            names = await client.smembers(self._names_key())
        out: List[IdentityRecord] = []
        for name in sorted(n for n in names if needle in n.lower()):
            out.extend(await self.get_by_name(name))
        return out

    async def iter_identities(self) -> AsyncIterator[IdentityRecord]:
        client = await self._get_client()
        start = 0
        while True:
            with self._translate_errors("read"):
                key_ids = await client.lrange(self._identities_key(), start, start + self.page_size - 1)
            if not key_ids:
                break
            for record in await self._multi_get(key_ids):
                yield record
            start += len(key_ids)

    async def set_external_id(self, key_id: str, external_id: UUID) -> None:
        client = await self._get_client()
        ext_key = self._ext_key(key_id)
        for attempt in range(1, self.max_retries + 1):
            try:
                with self._translate_errors("write"):
                    async with client.pipeline(transaction=True) as pipe:
                        await pipe.watch(ext_key)
                        previous = await pipe.get(ext_key)
                        pipe.multi()
                        if previous and previous != str(external_id):
                            pipe.srem(self._account_key(UUID(previous)), key_id)
                        pipe.set(ext_key, str(external_id))
                        pipe.sadd(self._account_key(external_id), key_id)
                        await pipe.execute()
                        return
            except WatchError:
                logger.debug("Concurrent external id update on %s, retrying (attempt %d)", key_id, attempt)
        raise StoreError(f"gave up mapping {key_id} to an external id after {self.max_retries} attempts")

    async def get_external_id(self, key_id: str) -> Optional[UUID]:
        client = await self._get_client()
        with self._translate_errors("read"):
            raw = await client.get(self._ext_key(key_id))
        return UUID(raw) if raw else None

    async def key_ids_for_external_id(self, external_id: UUID) -> List[str]:
        client = await self._get_client()
        with self._translate_errors("read"):
            members = await client.smembers(self._account_key(external_id))
        return sorted(members)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def create_redis_store(url: str = "redis://localhost:6379/0", prefix: str = "certid") -> RedisIdentityStore:
    return RedisIdentityStore(url=url, prefix=prefix)


__all__ = ["RedisIdentityStore", "create_redis_store"]
