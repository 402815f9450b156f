"""
Package identity defines the value types shared by every layer: public keys
and their key ids, distinguished names, parties and certificate roles.
"""

from .roles import (
    ROLE_EXTENSION_OID,
    CertificateRole,
    role_extension,
    certificate_role,
)

from .types import (
    PublicKey,
    encode_public_key,
    decode_public_key,
    key_id,
    DistinguishedName,
    AnonymousParty,
    Party,
    PartyAndCertificate,
    AbstractParty,
    KeyOrParty,
    owning_key_of,
)

__all__ = [
    'ROLE_EXTENSION_OID',
    'CertificateRole',
    'role_extension',
    'certificate_role',
    'PublicKey',
    'encode_public_key',
    'decode_public_key',
    'key_id',
    'DistinguishedName',
    'AnonymousParty',
    'Party',
    'PartyAndCertificate',
    'AbstractParty',
    'KeyOrParty',
    'owning_key_of',
]
