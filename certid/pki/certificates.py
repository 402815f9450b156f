"""
Key generation and certificate construction.

This is the thin layer over ``cryptography`` used to mint development
hierarchies (root CA -> intermediate CA -> node CA -> legal identity ->
confidential identity) for tests, demos and tooling.
"""

import datetime
import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from ..identity.roles import CertificateRole, role_extension
from ..identity.types import DistinguishedName, PartyAndCertificate, PublicKey, key_id

PrivateKey = Union[Ed25519PrivateKey, ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey]

DEFAULT_VALIDITY = datetime.timedelta(days=3650)
DEFAULT_CRL_VALIDITY = datetime.timedelta(days=7)


class SignatureScheme(Enum):
    """Key types supported for identity and CA keys."""
    ED25519 = "ed25519"
    ECDSA_SECP256R1_SHA256 = "ecdsa-secp256r1-sha256"
    RSA_SHA256 = "rsa-sha256"


@dataclass
class KeyPair:
    """Wraps a private key with its public half and key id."""
    public: PublicKey
    private: PrivateKey
    key_id: str


def new_key_pair(scheme: SignatureScheme = SignatureScheme.ED25519) -> KeyPair:
    """Generate a new key pair for ``scheme``."""
    if scheme is SignatureScheme.ED25519:
        private_key = Ed25519PrivateKey.generate()
    elif scheme is SignatureScheme.ECDSA_SECP256R1_SHA256:
        private_key = ec.generate_private_key(ec.SECP256R1())
    else:
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    public_key = private_key.public_key()
    return KeyPair(public=public_key, private=private_key, key_id=key_id(public_key))


def _signing_hash(private_key: PrivateKey) -> Optional[hashes.HashAlgorithm]:
    # Ed25519 signs the message directly and takes no separate hash.
    if isinstance(private_key, Ed25519PrivateKey):
        return None
    return hashes.SHA256()


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def create_certificate(
    role: CertificateRole,
    issuer_certificate: x509.Certificate,
    issuer_key: KeyPair,
    subject: DistinguishedName,
    subject_public_key: PublicKey,
    validity: datetime.timedelta = DEFAULT_VALIDITY,
    not_before: Optional[datetime.datetime] = None,
) -> x509.Certificate:
    """Issue a certificate for ``subject_public_key`` signed by ``issuer_key``."""
    start = not_before or (_now() - datetime.timedelta(minutes=5))
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject.to_x509_name())
        .issuer_name(issuer_certificate.subject)
        .public_key(subject_public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(start)
        .not_valid_after(start + validity)
        .add_extension(x509.BasicConstraints(ca=role.is_ca, path_length=None), critical=True)
        .add_extension(role_extension(role), critical=False)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(subject_public_key), critical=False)
    )
    return builder.sign(issuer_key.private, _signing_hash(issuer_key.private))


def create_self_signed_ca(
    subject: DistinguishedName,
    key_pair: KeyPair,
    validity: datetime.timedelta = DEFAULT_VALIDITY,
) -> x509.Certificate:
    """Create a self-signed root certificate carrying the ``ROOT_CA`` role."""
    start = _now() - datetime.timedelta(minutes=5)
    name = subject.to_x509_name()
    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key_pair.public)
        .serial_number(x509.random_serial_number())
        .not_valid_before(start)
        .not_valid_after(start + validity)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(role_extension(CertificateRole.ROOT_CA), critical=False)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(key_pair.public), critical=False)
    )
    return builder.sign(key_pair.private, _signing_hash(key_pair.private))


def create_crl(
    issuer_certificate: x509.Certificate,
    issuer_key: KeyPair,
    revoked_serials: Iterable[int] = (),
    validity: datetime.timedelta = DEFAULT_CRL_VALIDITY,
    last_update: Optional[datetime.datetime] = None,
) -> x509.CertificateRevocationList:
    """Issue a CRL listing ``revoked_serials`` of certificates signed by ``issuer_key``."""
    start = last_update or _now()
    builder = (
        x509.CertificateRevocationListBuilder()
        .issuer_name(issuer_certificate.subject)
        .last_update(start)
        .next_update(start + validity)
    )
    for serial in revoked_serials:
        builder = builder.add_revoked_certificate(
            x509.RevokedCertificateBuilder().serial_number(serial).revocation_date(start).build()
        )
    return builder.sign(issuer_key.private, _signing_hash(issuer_key.private))


def build_cert_path(leaf: x509.Certificate, issuers: Sequence[x509.Certificate]) -> PartyAndCertificate:
    """Prepend ``leaf`` to an existing issuer path (leaf first)."""
    return PartyAndCertificate((leaf, *issuers))


def certificate_fingerprint(certificate: x509.Certificate) -> str:
    return hashlib.sha256(certificate.public_bytes(serialization.Encoding.DER)).hexdigest()


def load_pem_certificates(data: bytes) -> List[x509.Certificate]:
    return x509.load_pem_x509_certificates(data)


def to_pem(certificates: Sequence[x509.Certificate]) -> bytes:
    return b"".join(c.public_bytes(serialization.Encoding.PEM) for c in certificates)


__all__ = [
    "PrivateKey",
    "DEFAULT_VALIDITY",
    "SignatureScheme",
    "KeyPair",
    "new_key_pair",
    "create_certificate",
    "create_self_signed_ca",
    "create_crl",
    "build_cert_path",
    "certificate_fingerprint",
    "load_pem_certificates",
    "to_pem",
]
