"""
Identity store package.

Provides the transactional key space behind the identity service with
in-memory, SQLite and Redis implementations. All of them enforce the
one-owner-per-key rule inside a single atomic ``add_ownership`` call.
"""

from .base import (
    IdentityKind,
    OwnershipRecord,
    IdentityRecord,
    IdentityStore,
)

from .memory import (
    MemoryIdentityStore,
    create_memory_store,
)

from .sqlite import (
    SqliteIdentityStore,
    create_sqlite_store,
)

from .redis import (
    RedisIdentityStore,
    create_redis_store,
)

__all__ = [
    "IdentityKind",
    "OwnershipRecord",
    "IdentityRecord",
    "IdentityStore",
    "MemoryIdentityStore",
    "create_memory_store",
    "SqliteIdentityStore",
    "create_sqlite_store",
    "RedisIdentityStore",
    "create_redis_store",
]
