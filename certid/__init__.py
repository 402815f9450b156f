"""
certid Python Package

Certificate-chain identity resolution and key ownership.
"""

__version__ = "0.1.0"

from .errors import (
    IdentityServiceError,
    InvalidChainError,
    ConflictingRegistrationError,
    ConflictingIdentityError,
    ConflictingKeyRegistrationError,
    OwnershipMismatchError,
    UnknownAnonymousPartyError,
    ServiceNotStartedError,
    StoreError,
)
from .identity import (
    CertificateRole,
    DistinguishedName,
    AnonymousParty,
    Party,
    PartyAndCertificate,
    key_id,
)
from .service import (
    IdentityService,
    IdentityServiceConfig,
    StoreConfig,
    create_service,
    create_store,
)

__all__ = [
    "IdentityServiceError",
    "InvalidChainError",
    "ConflictingRegistrationError",
    "ConflictingIdentityError",
    "ConflictingKeyRegistrationError",
    "OwnershipMismatchError",
    "UnknownAnonymousPartyError",
    "ServiceNotStartedError",
    "StoreError",
    "CertificateRole",
    "DistinguishedName",
    "AnonymousParty",
    "Party",
    "PartyAndCertificate",
    "key_id",
    "IdentityService",
    "IdentityServiceConfig",
    "StoreConfig",
    "create_service",
    "create_store",
]
