"""
Error taxonomy for the identity service.

Lookups report "not found" as ``None``; the exceptions below are reserved for
rejected registrations, failed ownership assertions, invalid certificate
paths and store failures.
"""

from typing import Any, Dict, Optional


class IdentityServiceError(Exception):
    """Base class for all identity service errors."""


class InvalidChainError(IdentityServiceError, ValueError):
    """Certificate path failed cryptographic or trust-root validation."""

    def __init__(self, reason: str, index: Optional[int] = None):
        self.reason = reason
        self.index = index
        if index is None:
            super().__init__(reason)
        else:
            super().__init__(f"{reason} (certificate {index})")


class ConflictingRegistrationError(IdentityServiceError):
    """A registration contradicts an existing ownership record.

    The existing record is left untouched.
    """

    def __init__(self, key_id: str, existing_owner: str, requested_owner: str, message: str = ""):
        self.key_id = key_id
        self.existing_owner = existing_owner
        self.requested_owner = requested_owner
        super().__init__(
            message
            or f"key {key_id} is already owned by {existing_owner}, refusing to assign it to {requested_owner}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "key_id": self.key_id,
            "existing_owner": self.existing_owner,
            "requested_owner": self.requested_owner,
        }


class ConflictingIdentityError(ConflictingRegistrationError):
    """Raised by ``verify_and_register_identity`` on an ownership conflict."""


class ConflictingKeyRegistrationError(ConflictingRegistrationError):
    """Raised by ``register_key`` on an ownership conflict."""


class OwnershipMismatchError(IdentityServiceError):
    """Anonymous key does not resolve to the claimed owner."""


class UnknownAnonymousPartyError(OwnershipMismatchError):
    """Anonymous key has no ownership record at all."""


class ServiceNotStartedError(IdentityServiceError, RuntimeError):
    """An operation was invoked before ``IdentityService.start()``."""


class StoreError(IdentityServiceError):
    """The backing store failed to read or commit."""


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
]
