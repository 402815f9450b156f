"""Certificate roles carried in a private X.509 extension."""

from enum import Enum
from typing import Optional

from cryptography import x509

# Private enterprise arc; the extension value is a DER INTEGER holding the role.
ROLE_EXTENSION_OID = x509.ObjectIdentifier("1.3.6.1.4.1.58521.1.1")


class CertificateRole(Enum):
    """Purpose of a certificate within the identity hierarchy."""
    ROOT_CA = 1
    INTERMEDIATE_CA = 2
    NODE_CA = 3
    TLS = 4
    LEGAL_IDENTITY = 5
    CONFIDENTIAL_LEGAL_IDENTITY = 6
    SERVICE_IDENTITY = 7

    @property
    def is_ca(self) -> bool:
        """Whether certificates of this role may issue other certificates."""
        return self in _ISSUABLE

    def can_issue(self, child: "CertificateRole") -> bool:
        return child in _ISSUABLE.get(self, frozenset())


_ISSUABLE = {
    CertificateRole.ROOT_CA: frozenset({CertificateRole.INTERMEDIATE_CA, CertificateRole.NODE_CA}),
    CertificateRole.INTERMEDIATE_CA: frozenset({CertificateRole.INTERMEDIATE_CA, CertificateRole.NODE_CA}),
    CertificateRole.NODE_CA: frozenset({
        CertificateRole.LEGAL_IDENTITY,
        CertificateRole.TLS,
        CertificateRole.SERVICE_IDENTITY,
    }),
    # A legal identity signs the certificates of its own confidential keys.
    CertificateRole.LEGAL_IDENTITY: frozenset({CertificateRole.CONFIDENTIAL_LEGAL_IDENTITY}),
}


def role_extension(role: CertificateRole) -> x509.UnrecognizedExtension:
    """Build the extension value marking a certificate with ``role``."""
    return x509.UnrecognizedExtension(ROLE_EXTENSION_OID, bytes([0x02, 0x01, role.value]))


def certificate_role(certificate: x509.Certificate) -> Optional[CertificateRole]:
    """Return the role encoded in ``certificate`` or None when absent or malformed."""
    try:
        ext = certificate.extensions.get_extension_for_oid(ROLE_EXTENSION_OID)
    except x509.ExtensionNotFound:
        return None
    raw = ext.value.value
    if len(raw) != 3 or raw[0] != 0x02 or raw[1] != 0x01:
        return None
    try:
        return CertificateRole(raw[2])
    except ValueError:
        return None


__all__ = [
    "ROLE_EXTENSION_OID",
    "CertificateRole",
    "role_extension",
    "certificate_role",
]
