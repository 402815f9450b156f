"""
Revocation sources consulted during certificate path validation.

Serial numbers are only unique per issuer, so a revoked certificate is
identified by its issuer's key id together with its serial. Revoking a key
covers every certificate ever issued for it.
"""

import datetime
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Set, Tuple

from cryptography import x509

from ..identity.types import PublicKey, key_id

logger = logging.getLogger(__name__)


class RevocationStatus(Enum):
    """Revocation status of one certificate."""
    UNKNOWN = 0  # No authoritative answer, e.g. no CRL for the issuer
    ACTIVE = 1
    REVOKED = 2


@dataclass(frozen=True)
class RevocationCheckTarget:
    """A certificate identified the way CRLs identify it."""
    issuer_key_id: str
    serial_number: int
    key_id: str

    @classmethod
    def for_certificate(cls, certificate: x509.Certificate, issuer: x509.Certificate) -> "RevocationCheckTarget":
        return cls(
            issuer_key_id=key_id(issuer.public_key()),
            serial_number=certificate.serial_number,
            key_id=key_id(certificate.public_key()),
        )


class RevocationProvider(ABC):
    """Interface for revocation backends."""

    @abstractmethod
    def check(self, target: RevocationCheckTarget) -> Tuple[RevocationStatus, Optional[Exception]]:
        """Status of ``target``; a backend failure is returned as the second element."""


class NoopRevocationProvider(RevocationProvider):
    """Always reports ACTIVE."""

    def check(self, target: RevocationCheckTarget) -> Tuple[RevocationStatus, Optional[Exception]]:
        return RevocationStatus.ACTIVE, None


class InMemoryRevocationProvider(RevocationProvider):
    """Revoked certificates and compromised keys held in process memory.

    Anything not revoked is ACTIVE; this provider never answers UNKNOWN.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._certificates: Set[Tuple[str, int]] = set()
        self._keys: Set[str] = set()

    def revoke_certificate(self, certificate: x509.Certificate, issuer: x509.Certificate) -> None:
        with self._lock:
            self._certificates.add((key_id(issuer.public_key()), certificate.serial_number))

    def revoke_key(self, public_key: PublicKey) -> None:
        with self._lock:
            self._keys.add(key_id(public_key))

    def check(self, target: RevocationCheckTarget) -> Tuple[RevocationStatus, Optional[Exception]]:
        with self._lock:
            if (target.issuer_key_id, target.serial_number) in self._certificates or target.key_id in self._keys:
                return RevocationStatus.REVOKED, None
        return RevocationStatus.ACTIVE, None


class CrlRevocationProvider(RevocationProvider):
    """Answers from X.509 CRLs, at most one per issuing key.

    Certificates whose issuer has no CRL loaded, or whose CRL is past its
    next update, are UNKNOWN.
    """

    def __init__(self, now_func: Callable[[], float] = time.time):
        self._lock = threading.Lock()
        self._crls: Dict[str, x509.CertificateRevocationList] = {}
        self._now_func = now_func

    def add_crl(self, crl: x509.CertificateRevocationList, issuer: x509.Certificate) -> bool:
        """Load ``crl`` after checking it was signed by ``issuer``.

        Returns False when an equally recent or newer CRL is already loaded.
        """
        if crl.issuer != issuer.subject:
            raise ValueError("CRL issuer does not match the issuer certificate subject")
        if not crl.is_signature_valid(issuer.public_key()):
            raise ValueError("CRL signature does not verify against the issuer key")
        issuer_key_id = key_id(issuer.public_key())
        with self._lock:
            current = self._crls.get(issuer_key_id)
            if current is not None and current.last_update_utc >= crl.last_update_utc:
                return False
            self._crls[issuer_key_id] = crl
        logger.debug("Loaded CRL for %s with %d entries", issuer.subject.rfc4514_string(), len(crl))
        return True

    def check(self, target: RevocationCheckTarget) -> Tuple[RevocationStatus, Optional[Exception]]:
        with self._lock:
            crl = self._crls.get(target.issuer_key_id)
        if crl is None:
            return RevocationStatus.UNKNOWN, None
        now = datetime.datetime.fromtimestamp(self._now_func(), tz=datetime.timezone.utc)
        if crl.next_update_utc is not None and now > crl.next_update_utc:
            return RevocationStatus.UNKNOWN, None
        if crl.get_revoked_certificate_by_serial_number(target.serial_number) is not None:
            return RevocationStatus.REVOKED, None
        return RevocationStatus.ACTIVE, None


__all__ = [
    "RevocationStatus",
    "RevocationCheckTarget",
    "RevocationProvider",
    "NoopRevocationProvider",
    "InMemoryRevocationProvider",
    "CrlRevocationProvider",
]
