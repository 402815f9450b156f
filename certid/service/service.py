"""
Identity resolution service.

This module provides the service that registers identities from verified
certificate paths, records which legal identity owns each key, and resolves
anonymous keys back to their well-known owner.
"""

import asyncio
import logging
import warnings
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Set
from uuid import UUID

from cryptography import x509

from ..cache.ownership import OwnershipCache
from ..errors import (
    ConflictingIdentityError,
    ConflictingKeyRegistrationError,
    InvalidChainError,
    OwnershipMismatchError,
    ServiceNotStartedError,
    UnknownAnonymousPartyError,
)
from ..identity.roles import CertificateRole
from ..identity.types import (
    DistinguishedName,
    KeyOrParty,
    Party,
    PartyAndCertificate,
    PublicKey,
    decode_public_key,
    encode_public_key,
    key_id,
    owning_key_of,
)
from ..monitoring.metrics_exporter import get_registry
from ..pki.validation import validate_path
from ..store.base import IdentityKind, IdentityRecord, IdentityStore, OwnershipRecord
from .config import IdentityServiceConfig, StoreConfig, create_store

logger = logging.getLogger(__name__)


def _party_from_record(record: IdentityRecord) -> Party:
    return PartyAndCertificate.from_der(record.cert_path).party


class IdentityService:
    """
    Registers and resolves identities over an :class:`IdentityStore`.

    Every key has at most one owner. Mutations are serialised per key with
    striped in-process locks on top of the store's own atomic
    ``add_ownership``; lookups go through the ownership cache without locking.
    """

    def __init__(
        self,
        config: IdentityServiceConfig,
        store: IdentityStore,
        cache: Optional[OwnershipCache] = None,
    ):
        """Initialize the identity service. Call :meth:`start` before use."""
        self.config = config
        self.store = store
        self.cache = cache or OwnershipCache(store, max_entries=config.cache_max_entries)
        self._locks = [asyncio.Lock() for _ in range(config.lock_stripes)]
        self._started = False
        self._start_time: Optional[datetime] = None
        self._metrics = get_registry()

    @property
    def trust_root(self) -> x509.Certificate:
        return self.config.trust_root

    @property
    def our_names(self) -> frozenset:
        return self.config.our_names

    @property
    def is_started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start the service. Must be called exactly once."""
        if self._started:
            raise RuntimeError("identity service already started")
        try:
            constraints = self.trust_root.extensions.get_extension_for_class(x509.BasicConstraints).value
        except x509.ExtensionNotFound:
            constraints = None
        if constraints is None or not constraints.ca:
            raise ValueError("trust root must be a CA certificate")
        if self.config.warm_cache:
            await self.cache.warm()
        self._started = True
        self._start_time = datetime.now()
        logger.info(
            "Identity service started (trust root %s, %d local names)",
            self.trust_root.subject.rfc4514_string(),
            len(self.our_names),
        )

    def _require_started(self) -> None:
        if not self._started:
            raise ServiceNotStartedError("identity service used before start()")

    def _lock_for(self, kid: str) -> asyncio.Lock:
        return self._locks[int(kid[:8], 16) % len(self._locks)]

    async def verify_and_register_identity(self, identity: PartyAndCertificate) -> PartyAndCertificate:
        """
        Validate an identity's certificate path and register it.

        Args:
            identity: Certificate path whose leaf is a legal or confidential identity

        Returns:
            The identity as stored; an identical re-registration returns the existing record

        Raises:
            InvalidChainError: If the path does not validate to the trust root, or the leaf
                subject is not a well-formed name
            ConflictingIdentityError: If the key is already owned by someone else
        """
        self._require_started()
        validated = validate_path(identity.cert_path, self.trust_root, self.config.validation)

        leaf_key = identity.owning_key
        if validated.leaf_role == CertificateRole.LEGAL_IDENTITY:
            kind = IdentityKind.WELL_KNOWN
            owner_key = leaf_key
        elif validated.leaf_role == CertificateRole.CONFIDENTIAL_LEGAL_IDENTITY:
            # Only a legal identity may issue a confidential certificate, so
            # the issuer is the well-known owner.
            kind = IdentityKind.CONFIDENTIAL
            owner_key = validated.certificates[1].public_key()
        else:
            raise InvalidChainError(f"{validated.leaf_role.name} certificates cannot be registered as identities", 0)

        try:
            name = identity.name
        except ValueError as e:
            raise InvalidChainError(f"invalid subject name: {e}", 0) from e

        kid = validated.leaf_key_id
        ownership = OwnershipRecord(
            key_id=kid,
            public_key=encode_public_key(leaf_key),
            owner_key_id=key_id(owner_key),
            owner_key=encode_public_key(owner_key),
        )
        record = IdentityRecord(key_id=kid, kind=kind, name=str(name), cert_path=identity.encoded())

        async with self._lock_for(kid):
            existing = await self.cache.get_identity(kid)
            if existing is not None:
                current = await self.cache.get_ownership(kid)
                if current is not None and current.owner_key_id == ownership.owner_key_id:
                    logger.debug("Identity %s already registered", kid)
                    return PartyAndCertificate.from_der(existing.cert_path)

            current = await self.store.add_ownership(ownership, record)
            if current.owner_key_id != ownership.owner_key_id:
                self._metrics.observe_conflict("verify_and_register_identity")
                error = ConflictingIdentityError(kid, current.owner_key_id, ownership.owner_key_id)
                logger.warning("Rejected identity registration: %s", error.to_dict())
                raise error
            stored = await self.store.get_identity(kid) or record
            self.cache.put(current, stored)

        self._metrics.observe_registration(kind.value)
        logger.info("Registered %s identity %s (%s)", kind.value, name, kid[:16])
        return PartyAndCertificate.from_der(stored.cert_path)

    async def register_key(self, key: PublicKey, owner: KeyOrParty, external_id: Optional[UUID] = None) -> None:
        """
        Record that ``owner`` owns ``key`` without a certificate path.

        Idempotent for the same owner. A different owner raises
        ConflictingKeyRegistrationError and leaves the existing record unchanged.
        """
        self._require_started()
        owner_key = owning_key_of(owner)
        kid = key_id(key)
        ownership = OwnershipRecord(
            key_id=kid,
            public_key=encode_public_key(key),
            owner_key_id=key_id(owner_key),
            owner_key=encode_public_key(owner_key),
        )

        async with self._lock_for(kid):
            current = await self.cache.get_ownership(kid)
            created = current is None
            if created:
                current = await self.store.add_ownership(ownership)
            if current.owner_key_id != ownership.owner_key_id:
                self._metrics.observe_conflict("register_key")
                error = ConflictingKeyRegistrationError(kid, current.owner_key_id, ownership.owner_key_id)
                logger.warning("Refusing to overwrite existing key mapping: %s", error.to_dict())
                raise error
            self.cache.put(current)

        if created:
            self._metrics.observe_registration("key")
            logger.info("Registered key %s owned by %s", kid[:16], ownership.owner_key_id[:16])
        else:
            logger.debug("Key %s already registered to the same owner", kid[:16])

        if external_id is not None:
            await self.register_external_id(key, external_id)

    async def well_known_party_from_x500_name(self, name: DistinguishedName) -> Optional[Party]:
        """Exact-name lookup; with duplicate names the earliest registration wins."""
        self._require_started()
        for record in await self.store.get_by_name(str(name)):
            return _party_from_record(record)
        return None

    async def parties_from_name(self, query: str, exact_match: bool) -> Set[Party]:
        """Well-known parties with a name attribute equal to (or containing) ``query``."""
        self._require_started()
        results: Set[Party] = set()
        for record in await self.store.search_names(query):
            if DistinguishedName.parse(record.name).matches(query, exact_match):
                results.add(_party_from_record(record))
        return results

    async def party_from_key(self, key: PublicKey) -> Optional[Party]:
        """The well-known party whose identity key is ``key``."""
        self._require_started()
        record = await self.cache.get_identity(key_id(key))
        if record is None or record.kind != IdentityKind.WELL_KNOWN:
            return None
        return _party_from_record(record)

    async def well_known_party_from_anonymous(self, party: KeyOrParty) -> Optional[Party]:
        """
        Resolve a key (or any party) to the well-known party that owns it.

        Only stored ownership records are trusted; a name carried by ``party``
        is ignored. Returns None for unknown keys and for owners that are not
        registered well-known identities.
        """
        self._require_started()
        ownership = await self.cache.get_ownership(key_id(owning_key_of(party)))
        if ownership is None:
            return None
        owner = await self.cache.get_identity(ownership.owner_key_id)
        if owner is None or owner.kind != IdentityKind.WELL_KNOWN:
            return None
        return _party_from_record(owner)

    async def require_well_known_party_from_anonymous(self, party: KeyOrParty) -> Party:
        resolved = await self.well_known_party_from_anonymous(party)
        if resolved is None:
            raise UnknownAnonymousPartyError(f"no well-known owner for key {key_id(owning_key_of(party))}")
        return resolved

    async def assert_ownership(self, party: Party, anonymous_party: KeyOrParty) -> None:
        """
        Check that ``anonymous_party`` is owned by ``party``.

        Raises:
            UnknownAnonymousPartyError: If the anonymous key has no ownership record
            OwnershipMismatchError: If its owner key differs from ``party``'s key
        """
        self._require_started()
        kid = key_id(owning_key_of(anonymous_party))
        ownership = await self.cache.get_ownership(kid)
        if ownership is None:
            self._metrics.observe_assertion("unknown")
            logger.warning("Ownership assertion for unknown key %s claimed by %s", kid[:16], party)
            raise UnknownAnonymousPartyError(f"unknown anonymous party {kid}")
        if ownership.owner_key_id != party.key_id:
            self._metrics.observe_assertion("mismatch")
            logger.warning(
                "Ownership mismatch: key %s is owned by %s, not %s (%s)",
                kid[:16], ownership.owner_key_id[:16], party.key_id[:16], party,
            )
            raise OwnershipMismatchError(f"key {kid} is not owned by {party}")
        self._metrics.observe_assertion("ok")

    async def certificate_from_key(self, key: PublicKey) -> Optional[PartyAndCertificate]:
        """Deprecated: certificate path of an identity registered with one."""
        warnings.warn(
            "certificate_from_key is deprecated; resolve parties instead",
            DeprecationWarning,
            stacklevel=2,
        )
        self._require_started()
        record = await self.cache.get_identity(key_id(key))
        if record is None:
            return None
        return PartyAndCertificate.from_der(record.cert_path)

    async def strip_not_our_keys(self, keys: Iterable[PublicKey]) -> List[PublicKey]:
        """Keep keys owned by one of our names, preserving input order."""
        self._require_started()
        ours: List[PublicKey] = []
        for key in keys:
            party = await self.well_known_party_from_anonymous(key)
            if party is not None and party.name in self.our_names:
                ours.append(key)
        return ours

    async def get_all_identities(self) -> AsyncIterator[PartyAndCertificate]:
        """Every registered identity; each call iterates a fresh view of the store."""
        self._require_started()
        async for record in self.store.iter_identities():
            yield PartyAndCertificate.from_der(record.cert_path)

    async def register_external_id(self, key: PublicKey, external_id: UUID) -> None:
        self._require_started()
        await self.store.set_external_id(key_id(key), external_id)
        logger.debug("Mapped key %s to external id %s", key_id(key)[:16], external_id)

    async def external_id_for_key(self, key: PublicKey) -> Optional[UUID]:
        self._require_started()
        return await self.store.get_external_id(key_id(key))

    async def keys_for_external_id(self, external_id: UUID) -> List[PublicKey]:
        """Keys mapped to ``external_id`` that also have an ownership record."""
        self._require_started()
        keys: List[PublicKey] = []
        for kid in await self.store.key_ids_for_external_id(external_id):
            ownership = await self.cache.get_ownership(kid)
            if ownership is not None:
                keys.append(decode_public_key(ownership.public_key))
        return keys

    async def health_check(self) -> Dict[str, Any]:
        """Summarise service state."""
        health = {
            "status": "healthy" if self._started else "not_started",
            "timestamp": datetime.now().isoformat(),
            "uptime_seconds": 0,
            "store": type(self.store).__name__,
            "cache": self.cache.stats(),
        }
        if self._start_time:
            health["uptime_seconds"] = int((datetime.now() - self._start_time).total_seconds())
        return health


def create_service(
    config: IdentityServiceConfig,
    store: Optional[IdentityStore] = None,
    store_config: Optional[StoreConfig] = None,
) -> IdentityService:
    """
    Factory function to create an identity service.

    Args:
        config: Service configuration
        store: Store to use; built from ``store_config`` (or the environment) when omitted
        store_config: Backend settings used only when ``store`` is omitted; defaults to
            ``StoreConfig.from_env()``

    Returns:
        An identity service that still needs ``await service.start()``
    """
    if store is None:
        store = create_store(store_config or StoreConfig.from_env())
    return IdentityService(config, store)


__all__ = ["IdentityService", "create_service"]
