"""
SQLite-backed identity store.

The ``ownership`` table's primary key is the uniqueness constraint for the
one-owner-per-key rule; compound writes run inside ``BEGIN IMMEDIATE`` so
concurrent writers on the same file serialise at the database.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import AsyncIterator, Iterator, List, Optional
from uuid import UUID

from ..errors import StoreError
from .base import IdentityKind, IdentityRecord, IdentityStore, OwnershipRecord

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS ownership (
    key_id        TEXT PRIMARY KEY,
    public_key    BLOB NOT NULL,
    owner_key_id  TEXT NOT NULL,
    owner_key     BLOB NOT NULL
);
CREATE TABLE IF NOT EXISTS identities (
    seq        INTEGER PRIMARY KEY AUTOINCREMENT,
    key_id     TEXT NOT NULL UNIQUE REFERENCES ownership(key_id),
    kind       TEXT NOT NULL,
    name       TEXT NOT NULL,
    cert_path  TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS name_index (
    seq     INTEGER PRIMARY KEY AUTOINCREMENT,
    name    TEXT NOT NULL,
    key_id  TEXT NOT NULL REFERENCES identities(key_id),
    UNIQUE (name, key_id)
);
CREATE INDEX IF NOT EXISTS name_index_name_idx ON name_index(name);
CREATE TABLE IF NOT EXISTS external_ids (
    key_id       TEXT PRIMARY KEY,
    external_id  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS external_id_idx ON external_ids(external_id);
"""


def open_identity_db(path: str) -> sqlite3.Connection:
    """Open/create the database with the PRAGMAs the store relies on."""
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, timeout=5.0, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.create_function("py_lower", 1, str.lower, deterministic=True)
    conn.execute("PRAGMA foreign_keys = ON")
    if path != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    conn.executescript(_SCHEMA)
    return conn


def _ownership_from_row(row: sqlite3.Row) -> OwnershipRecord:
    return OwnershipRecord(
        key_id=row["key_id"],
        public_key=bytes(row["public_key"]),
        owner_key_id=row["owner_key_id"],
        owner_key=bytes(row["owner_key"]),
    )


def _identity_from_row(row: sqlite3.Row) -> IdentityRecord:
    return IdentityRecord.from_dict({
        "key_id": row["key_id"],
        "kind": row["kind"],
        "name": row["name"],
        "cert_path": json.loads(row["cert_path"]),
    })


class SqliteIdentityStore(IdentityStore):
    """Every database call runs in a worker thread under one connection lock."""

    def __init__(self, path: str = ":memory:", page_size: int = 500):
        self.path = path
        self.page_size = page_size
        self._conn = open_identity_db(path)
        self._lock = threading.RLock()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StoreError(f"could not begin transaction: {e}") from e
            try:
                yield self._conn
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._conn.execute("ROLLBACK")
                logger.error("Identity store transaction rolled back: %s", e)
                raise StoreError(f"transaction failed: {e}") from e
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise

    def _fetchone_sync(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchone()
            except sqlite3.Error as e:
                raise StoreError(f"query failed: {e}") from e

    def _fetchall_sync(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise StoreError(f"query failed: {e}") from e

    async def _fetchone(self, sql: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        return await asyncio.to_thread(self._fetchone_sync, sql, params)

    async def _fetchall(self, sql: str, params: tuple = ()) -> List[sqlite3.Row]:
        return await asyncio.to_thread(self._fetchall_sync, sql, params)

    async def get_ownership(self, key_id: str) -> Optional[OwnershipRecord]:
        row = await self._fetchone("SELECT * FROM ownership WHERE key_id = ?", (key_id,))
        return _ownership_from_row(row) if row else None

    async def get_identity(self, key_id: str) -> Optional[IdentityRecord]:
        row = await self._fetchone("SELECT * FROM identities WHERE key_id = ?", (key_id,))
        return _identity_from_row(row) if row else None

    def _add_ownership_sync(self, ownership: OwnershipRecord, identity: Optional[IdentityRecord]) -> OwnershipRecord:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO ownership (key_id, public_key, owner_key_id, owner_key) VALUES (?, ?, ?, ?)",
                (ownership.key_id, ownership.public_key, ownership.owner_key_id, ownership.owner_key),
            )
            current = _ownership_from_row(
                conn.execute("SELECT * FROM ownership WHERE key_id = ?", (ownership.key_id,)).fetchone()
            )
            if current.owner_key_id != ownership.owner_key_id:
                return current
            if identity is not None:
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO identities (key_id, kind, name, cert_path) VALUES (?, ?, ?, ?)",
                    (
                        identity.key_id,
                        identity.kind.value,
                        identity.name,
                        json.dumps(identity.to_dict()["cert_path"]),
                    ),
                )
                if cursor.rowcount and identity.kind == IdentityKind.WELL_KNOWN:
                    conn.execute(
                        "INSERT OR IGNORE INTO name_index (name, key_id) VALUES (?, ?)",
                        (identity.name, identity.key_id),
                    )
            return current

    async def add_ownership(
        self,
        ownership: OwnershipRecord,
        identity: Optional[IdentityRecord] = None,
    ) -> OwnershipRecord:
        return await asyncio.to_thread(self._add_ownership_sync, ownership, identity)

    async def get_by_name(self, name: str) -> List[IdentityRecord]:
        rows = await self._fetchall(
            "SELECT i.* FROM name_index n JOIN identities i ON i.key_id = n.key_id "
            "WHERE n.name = ? ORDER BY n.seq",
            (name,),
        )
        return [_identity_from_row(r) for r in rows]

    async def search_names(self, query: str) -> List[IdentityRecord]:
        # SQLite's own lower() only folds ASCII.
        rows = await self._fetchall(
            "SELECT i.* FROM name_index n JOIN identities i ON i.key_id = n.key_id "
            "WHERE instr(py_lower(n.name), ?) > 0 ORDER BY n.seq",
            (query.lower(),),
        )
        return [_identity_from_row(r) for r in rows]

    async def iter_identities(self) -> AsyncIterator[IdentityRecord]:
        last_seq = 0
        while True:
            rows = await self._fetchall(
                "SELECT * FROM identities WHERE seq > ? ORDER BY seq LIMIT ?",
                (last_seq, self.page_size),
            )
            if not rows:
                break
            for row in rows:
                yield _identity_from_row(row)
            last_seq = rows[-1]["seq"]

    def _set_external_id_sync(self, key_id: str, external_id: UUID) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO external_ids (key_id, external_id) VALUES (?, ?) "
                "ON CONFLICT(key_id) DO UPDATE SET external_id = excluded.external_id",
                (key_id, str(external_id)),
            )

    async def set_external_id(self, key_id: str, external_id: UUID) -> None:
        await asyncio.to_thread(self._set_external_id_sync, key_id, external_id)

    async def get_external_id(self, key_id: str) -> Optional[UUID]:
        row = await self._fetchone("SELECT external_id FROM external_ids WHERE key_id = ?", (key_id,))
        return UUID(row["external_id"]) if row else None

    async def key_ids_for_external_id(self, external_id: UUID) -> List[str]:
        rows = await self._fetchall(
            "SELECT key_id FROM external_ids WHERE external_id = ? ORDER BY key_id",
            (str(external_id),),
        )
        return [r["key_id"] for r in rows]

    def _close_sync(self) -> None:
        with self._lock:
            self._conn.close()

    async def close(self) -> None:
        await asyncio.to_thread(self._close_sync)


def create_sqlite_store(path: str = ":memory:") -> SqliteIdentityStore:
    return SqliteIdentityStore(path)
