"""
Core identity types: public keys, distinguished names and parties.

Public keys are plain ``cryptography`` key objects. Everything that needs a
stable map key uses :func:`key_id`, the hex SHA-256 of the key's DER
SubjectPublicKeyInfo encoding.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePublicKey
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey
from cryptography.x509.oid import NameOID

from .roles import CertificateRole, certificate_role

PublicKey = Union[Ed25519PublicKey, EllipticCurvePublicKey, RSAPublicKey]


def encode_public_key(key: PublicKey) -> bytes:
    """DER SubjectPublicKeyInfo encoding of ``key``."""
    return key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def decode_public_key(data: bytes) -> PublicKey:
    return serialization.load_der_public_key(data)


def key_id(key: PublicKey) -> str:
    """Stable short identifier of a public key."""
    return hashlib.sha256(encode_public_key(key)).hexdigest()


# Attribute order used by the canonical string form.
_ATTRIBUTES: Tuple[Tuple[str, str, x509.ObjectIdentifier], ...] = (
    ("CN", "common_name", NameOID.COMMON_NAME),
    ("OU", "organisation_unit", NameOID.ORGANIZATIONAL_UNIT_NAME),
    ("O", "organisation", NameOID.ORGANIZATION_NAME),
    ("L", "locality", NameOID.LOCALITY_NAME),
    ("ST", "state", NameOID.STATE_OR_PROVINCE_NAME),
    ("C", "country", NameOID.COUNTRY_NAME),
)
_REQUIRED = frozenset({"organisation", "locality", "country"})


@dataclass(frozen=True)
class DistinguishedName:
    """Structured legal name of an identity.

    Names are not unique: several identities may share a name or parts of it.
    """
    organisation: str
    locality: str
    country: str
    common_name: Optional[str] = None
    organisation_unit: Optional[str] = None
    state: Optional[str] = None

    def __post_init__(self):
        if not self.organisation:
            raise ValueError("organisation must not be empty")
        if not self.locality:
            raise ValueError("locality must not be empty")
        if len(self.country) != 2 or not self.country.isalpha() or not self.country.isupper():
            raise ValueError(f"invalid country code: {self.country!r}")
        for _, attr, _ in _ATTRIBUTES:
            value = getattr(self, attr)
            if value is not None and ("=" in value or "," in value):
                raise ValueError(f"{attr} must not contain '=' or ','")

    def components(self) -> List[str]:
        """Present attribute values in canonical order."""
        return [getattr(self, attr) for _, attr, _ in _ATTRIBUTES if getattr(self, attr) is not None]

    def matches(self, query: str, exact_match: bool) -> bool:
        """Component-wise name search.

        Exact matching compares each attribute for equality with ``query``;
        otherwise any attribute containing ``query`` (case-insensitive) matches.
        """
        if exact_match:
            return any(c == query for c in self.components())
        needle = query.lower()
        return any(needle in c.lower() for c in self.components())

    def __str__(self) -> str:
        parts = []
        for label, attr, _ in _ATTRIBUTES:
            value = getattr(self, attr)
            if value is not None:
                parts.append(f"{label}={value}")
        return ", ".join(parts)

    @classmethod
    def parse(cls, text: str) -> "DistinguishedName":
        """Parse the canonical ``O=..., L=..., C=...`` form (any attribute order)."""
        by_label = {label: attr for label, attr, _ in _ATTRIBUTES}
        values: Dict[str, str] = {}
        for part in text.split(","):
            part = part.strip()
            if not part:
                continue
            label, sep, value = part.partition("=")
            label = label.strip().upper()
            if not sep or label not in by_label:
                raise ValueError(f"unrecognised name attribute: {part!r}")
            if by_label[label] in values:
                raise ValueError(f"duplicate name attribute: {label}")
            values[by_label[label]] = value.strip()
        missing = [a for a in ("organisation", "locality", "country") if a not in values]
        if missing:
            raise ValueError(f"missing name attributes: {', '.join(missing)}")
        return cls(**values)

    def to_x509_name(self) -> x509.Name:
        attributes = []
        for _, attr, oid in reversed(_ATTRIBUTES):
            value = getattr(self, attr)
            if value is not None:
                attributes.append(x509.NameAttribute(oid, value))
        return x509.Name(attributes)

    @classmethod
    def from_x509_name(cls, name: x509.Name) -> "DistinguishedName":
        values: Dict[str, str] = {}
        for _, attr, oid in _ATTRIBUTES:
            found = name.get_attributes_for_oid(oid)
            if len(found) > 1:
                raise ValueError(f"name has more than one {attr} attribute")
            if found:
                values[attr] = str(found[0].value)
        missing = [key for key, attr, _ in _ATTRIBUTES if attr in _REQUIRED and attr not in values]
        if missing:
            raise ValueError(f"name is missing required attributes: {', '.join(missing)}")
        return cls(**values)


@dataclass(frozen=True, eq=False)
class AnonymousParty:
    """A key with no name attached."""
    owning_key: PublicKey

    @property
    def key_id(self) -> str:
        return key_id(self.owning_key)

    def __eq__(self, other):
        if not isinstance(other, AnonymousParty):
            return NotImplemented
        return self.key_id == other.key_id

    def __hash__(self):
        return hash(self.key_id)

    def __str__(self) -> str:
        return f"Anonymous({self.key_id[:16]})"


@dataclass(frozen=True, eq=False)
class Party:
    """A well-known party: a legal name together with its identity key."""
    name: DistinguishedName
    owning_key: PublicKey

    @property
    def key_id(self) -> str:
        return key_id(self.owning_key)

    def anonymise(self) -> AnonymousParty:
        return AnonymousParty(self.owning_key)

    def __eq__(self, other):
        if not isinstance(other, Party):
            return NotImplemented
        return self.name == other.name and self.key_id == other.key_id

    def __hash__(self):
        return hash((self.name, self.key_id))

    def __str__(self) -> str:
        return str(self.name)


@dataclass(frozen=True, eq=False)
class PartyAndCertificate:
    """An identity presented as a certificate path, leaf first."""
    cert_path: Tuple[x509.Certificate, ...]

    def __post_init__(self):
        if not self.cert_path:
            raise ValueError("certificate path must not be empty")
        # Accept any sequence but store an immutable tuple.
        object.__setattr__(self, "cert_path", tuple(self.cert_path))

    @property
    def certificate(self) -> x509.Certificate:
        return self.cert_path[0]

    @property
    def name(self) -> DistinguishedName:
        return DistinguishedName.from_x509_name(self.certificate.subject)

    @property
    def owning_key(self) -> PublicKey:
        return self.certificate.public_key()

    @property
    def key_id(self) -> str:
        return key_id(self.owning_key)

    @property
    def party(self) -> Party:
        return Party(self.name, self.owning_key)

    @property
    def role(self) -> Optional[CertificateRole]:
        return certificate_role(self.certificate)

    def encoded(self) -> List[bytes]:
        """DER encoding of each certificate in the path."""
        return [c.public_bytes(serialization.Encoding.DER) for c in self.cert_path]

    @classmethod
    def from_der(cls, encoded: Sequence[bytes]) -> "PartyAndCertificate":
        return cls(tuple(x509.load_der_x509_certificate(b) for b in encoded))

    def __eq__(self, other):
        if not isinstance(other, PartyAndCertificate):
            return NotImplemented
        return self.encoded() == other.encoded()

    def __hash__(self):
        return hash(tuple(self.encoded()))

    def __str__(self) -> str:
        return f"{self.name} ({self.key_id[:16]})"


AbstractParty = Union[Party, AnonymousParty]
KeyOrParty = Union[PublicKey, Party, AnonymousParty, PartyAndCertificate]


def owning_key_of(value: KeyOrParty) -> PublicKey:
    """Extract the public key from a key or any party-like value."""
    if isinstance(value, (Party, AnonymousParty, PartyAndCertificate)):
        return value.owning_key
    return value


__all__ = [
    "PublicKey",
    "encode_public_key",
    "decode_public_key",
    "key_id",
    "DistinguishedName",
    "AnonymousParty",
    "Party",
    "PartyAndCertificate",
    "AbstractParty",
    "KeyOrParty",
    "owning_key_of",
]
