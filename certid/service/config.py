"""
Configuration for the identity service and its store.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet, Iterable, Optional, Union

from cryptography import x509

from ..identity.types import DistinguishedName
from ..pki.validation import ValidationOptions
from ..store.base import IdentityStore
from ..store.memory import MemoryIdentityStore
from ..store.redis import RedisIdentityStore
from ..store.sqlite import SqliteIdentityStore

logger = logging.getLogger(__name__)

STORE_BACKENDS = ("memory", "sqlite", "redis")


def _as_name(name: Union[str, DistinguishedName]) -> DistinguishedName:
    if isinstance(name, DistinguishedName):
        return name
    if isinstance(name, str):
        return DistinguishedName.parse(name)
    raise TypeError(f"our_names entries must be DistinguishedName or str, got {type(name).__name__}")


@dataclass(frozen=True)
class IdentityServiceConfig:
    """Immutable, process-wide settings fixed when the service is built."""
    trust_root: x509.Certificate
    our_names: FrozenSet[DistinguishedName] = frozenset()
    validation: ValidationOptions = field(default_factory=ValidationOptions)
    lock_stripes: int = 64
    cache_max_entries: int = 10_000
    warm_cache: bool = False

    def __post_init__(self):
        object.__setattr__(self, "our_names", frozenset(_as_name(n) for n in self.our_names))
        if self.lock_stripes <= 0:
            raise ValueError("lock_stripes must be positive")

    @classmethod
    def from_pem(
        cls,
        path: Union[str, Path],
        our_names: Iterable[Union[str, DistinguishedName]] = (),
        **kwargs,
    ) -> "IdentityServiceConfig":
        """Load the trust root from a PEM file; names may be given in string form."""
        trust_root = x509.load_pem_x509_certificate(Path(path).read_bytes())
        return cls(trust_root=trust_root, our_names=frozenset(our_names), **kwargs)


@dataclass
class StoreConfig:
    backend: str = "memory"
    sqlite_path: str = "certid.sqlite3"
    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = "certid"
    redis_max_retries: int = 16

    def __post_init__(self):
        if self.backend not in STORE_BACKENDS:
            raise ValueError(f"unknown store backend {self.backend!r}, expected one of {', '.join(STORE_BACKENDS)}")

    @classmethod
    def from_env(cls) -> "StoreConfig":
        """Build from ``CERTID_*`` environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            backend=os.getenv("CERTID_STORE_BACKEND", defaults.backend).lower(),
            sqlite_path=os.getenv("CERTID_SQLITE_PATH", defaults.sqlite_path),
            redis_url=os.getenv("CERTID_REDIS_URL", defaults.redis_url),
            redis_prefix=os.getenv("CERTID_REDIS_PREFIX", defaults.redis_prefix),
            redis_max_retries=int(os.getenv("CERTID_REDIS_MAX_RETRIES", str(defaults.redis_max_retries))),
        )


def create_store(config: Optional[StoreConfig] = None) -> IdentityStore:
    """Factory function to create the configured identity store."""
    config = config or StoreConfig()
    logger.info("Creating %s identity store", config.backend)
    if config.backend == "sqlite":
        return SqliteIdentityStore(config.sqlite_path)
    if config.backend == "redis":
        return RedisIdentityStore(
            url=config.redis_url,
            prefix=config.redis_prefix,
            max_retries=config.redis_max_retries,
        )
    return MemoryIdentityStore()


__all__ = [
    "STORE_BACKENDS",
    "IdentityServiceConfig",
    "StoreConfig",
    "create_store",
]
