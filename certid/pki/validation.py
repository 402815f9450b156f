"""
Certificate path validation against the configured trust root.
"""

import datetime
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.x509.oid import SignatureAlgorithmOID

from ..errors import InvalidChainError
from ..identity.roles import CertificateRole, certificate_role
from ..identity.types import key_id
from .revocation import RevocationCheckTarget, RevocationProvider, RevocationStatus

logger = logging.getLogger(__name__)

ALLOWED_SIGNATURE_ALGORITHMS = frozenset({
    SignatureAlgorithmOID.ED25519,
    SignatureAlgorithmOID.ECDSA_WITH_SHA256,
    SignatureAlgorithmOID.ECDSA_WITH_SHA384,
    SignatureAlgorithmOID.RSA_WITH_SHA256,
    SignatureAlgorithmOID.RSA_WITH_SHA384,
    SignatureAlgorithmOID.RSA_WITH_SHA512,
})


@dataclass
class ValidationOptions:
    """Holds configurable behaviors for path validation."""
    now_func: Callable[[], float] = field(default_factory=lambda: time.time)
    revocation_provider: Optional[RevocationProvider] = None
    fail_on_revocation_unknown: bool = False
    max_depth: int = 0  # 0 means no limit


@dataclass
class ValidatedPath:
    """Outcome of a successful validation.

    ``certificates`` always ends with the trust root, even when the caller
    supplied a path without it.
    """
    certificates: Tuple[x509.Certificate, ...]
    leaf_role: CertificateRole
    leaf_key_id: str
    validated_at: int

    @property
    def leaf(self) -> x509.Certificate:
        return self.certificates[0]


# Metrics counters (thread-safe)
_metrics_lock = threading.Lock()
_metric_validated = 0
_metric_failures = 0
_metric_revoked = 0


def _der(certificate: x509.Certificate) -> bytes:
    return certificate.public_bytes(serialization.Encoding.DER)


def _fail(reason: str, index: Optional[int] = None, revoked: bool = False) -> InvalidChainError:
    global _metric_failures, _metric_revoked
    with _metrics_lock:
        _metric_failures += 1
        if revoked:
            _metric_revoked += 1
    logger.debug("certificate path rejected: %s (index=%s)", reason, index)
    return InvalidChainError(reason, index)


def validate_path(
    path: Sequence[x509.Certificate],
    trust_root: x509.Certificate,
    options: Optional[ValidationOptions] = None,
) -> ValidatedPath:
    """Validate that ``path`` (leaf first) chains to ``trust_root``.

    Raises InvalidChainError describing the first failed check.
    """
    global _metric_validated

    if not path:
        raise _fail("empty certificate path")
    if options is None:
        options = ValidationOptions()

    root_der = _der(trust_root)
    chain: List[x509.Certificate] = list(path)
    presented_depth = len(chain) - 1 if _der(chain[-1]) == root_der else len(chain)
    if options.max_depth > 0 and presented_depth > options.max_depth:
        raise _fail("max depth exceeded")
    if _der(chain[-1]) != root_der:
        chain.append(trust_root)

    for i, certificate in enumerate(chain[:-1]):
        if _der(certificate) == root_der:
            raise _fail("trust root may only appear at the end of the path", i)

    now = datetime.datetime.fromtimestamp(options.now_func(), tz=datetime.timezone.utc)

    for i, certificate in enumerate(chain):
        if certificate.signature_algorithm_oid not in ALLOWED_SIGNATURE_ALGORITHMS:
            raise _fail(f"signature algorithm {certificate.signature_algorithm_oid.dotted_string} not allowed", i)
        if not (certificate.not_valid_before_utc <= now <= certificate.not_valid_after_utc):
            raise _fail("certificate outside validity period", i)

        if i == len(chain) - 1:
            break
        issuer = chain[i + 1]
        try:
            certificate.verify_directly_issued_by(issuer)
        except (ValueError, TypeError, InvalidSignature) as e:
            raise _fail(f"not issued by next certificate: {str(e) or type(e).__name__}", i)

        try:
            constraints = issuer.extensions.get_extension_for_class(x509.BasicConstraints).value
        except x509.ExtensionNotFound:
            raise _fail("issuer lacks basic constraints", i + 1)
        if not constraints.ca:
            raise _fail("issuer is not a certificate authority", i + 1)

        role = certificate_role(certificate)
        if role is None:
            raise _fail("missing certificate role", i)
        # The trust anchor is a root CA by configuration, whatever it claims.
        issuer_role = CertificateRole.ROOT_CA if i + 1 == len(chain) - 1 else certificate_role(issuer)
        if issuer_role is None:
            raise _fail("missing certificate role", i + 1)
        if not issuer_role.can_issue(role):
            raise _fail(f"{issuer_role.name} may not issue {role.name}", i)

    if options.revocation_provider:
        for i, certificate in enumerate(chain[:-1]):
            target = RevocationCheckTarget.for_certificate(certificate, chain[i + 1])
            status, err = options.revocation_provider.check(target)
            if err:
                raise err
            if status == RevocationStatus.REVOKED:
                raise _fail("certificate revoked", i, revoked=True)
            elif status == RevocationStatus.UNKNOWN and options.fail_on_revocation_unknown:
                raise _fail("revocation status unknown", i)

    leaf_role = certificate_role(chain[0])
    if leaf_role is None:
        # Only reachable when the path is the bare trust root.
        raise _fail("missing certificate role", 0)

    with _metrics_lock:
        _metric_validated += 1

    return ValidatedPath(
        certificates=tuple(chain),
        leaf_role=leaf_role,
        leaf_key_id=key_id(chain[0].public_key()),
        validated_at=int(now.timestamp()),
    )


def snapshot_metrics() -> Dict[str, int]:
    """Return current validation metric counters."""
    with _metrics_lock:
        return {
            "paths_validated_total": _metric_validated,
            "path_validation_failures_total": _metric_failures,
            "path_revoked_total": _metric_revoked,
        }


__all__ = [
    "ALLOWED_SIGNATURE_ALGORITHMS",
    "ValidationOptions",
    "ValidatedPath",
    "validate_path",
    "snapshot_metrics",
]
