"""
Package pki provides the certificate side of identity handling: key pair and
certificate construction for role-tagged X.509 hierarchies, revocation
providers, and validation of certificate paths against a single trust root.
"""

from .certificates import (
    SignatureScheme,
    KeyPair,
    new_key_pair,
    create_certificate,
    create_self_signed_ca,
    create_crl,
    build_cert_path,
    certificate_fingerprint,
    load_pem_certificates,
    to_pem,
)

from .revocation import (
    RevocationStatus,
    RevocationCheckTarget,
    RevocationProvider,
    NoopRevocationProvider,
    InMemoryRevocationProvider,
    CrlRevocationProvider,
)

from .validation import (
    ValidationOptions,
    ValidatedPath,
    validate_path,
    snapshot_metrics,
)

__all__ = [
    'SignatureScheme',
    'KeyPair',
    'new_key_pair',
    'create_certificate',
    'create_self_signed_ca',
    'create_crl',
    'build_cert_path',
    'certificate_fingerprint',
    'load_pem_certificates',
    'to_pem',
    'RevocationStatus',
    'RevocationCheckTarget',
    'RevocationProvider',
    'NoopRevocationProvider',
    'InMemoryRevocationProvider',
    'CrlRevocationProvider',
    'ValidationOptions',
    'ValidatedPath',
    'validate_path',
    'snapshot_metrics',
]
