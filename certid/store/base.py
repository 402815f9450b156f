"""
Identity store interface and the records it persists.

Stores deal only in encoded forms (key ids, DER bytes, canonical name
strings); converting to and from ``cryptography`` objects is the service's
job.
"""

from __future__ import annotations

import base64
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional
from uuid import UUID


class IdentityKind(str, Enum):
    WELL_KNOWN = "well_known"
    CONFIDENTIAL = "confidential"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"))


@dataclass
class OwnershipRecord:
    """The persisted fact that ``key_id`` is owned by ``owner_key_id``."""
    key_id: str
    public_key: bytes
    owner_key_id: str
    owner_key: bytes

    @property
    def is_self_owned(self) -> bool:
        return self.key_id == self.owner_key_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key_id": self.key_id,
            "public_key": _b64(self.public_key),
            "owner_key_id": self.owner_key_id,
            "owner_key": _b64(self.owner_key),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OwnershipRecord":
        return cls(
            key_id=data["key_id"],
            public_key=_unb64(data["public_key"]),
            owner_key_id=data["owner_key_id"],
            owner_key=_unb64(data["owner_key"]),
        )

    @classmethod
    def from_json(cls, raw: str) -> "OwnershipRecord":
        return cls.from_dict(json.loads(raw))


@dataclass
class IdentityRecord:
    """A registered identity together with its full certificate path."""
    key_id: str
    kind: IdentityKind
    name: str
    cert_path: List[bytes] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key_id": self.key_id,
            "kind": self.kind.value,
            "name": self.name,
            "cert_path": [_b64(c) for c in self.cert_path],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IdentityRecord":
        return cls(
            key_id=data["key_id"],
            kind=IdentityKind(data["kind"]),
            name=data["name"],
            cert_path=[_unb64(c) for c in data.get("cert_path", [])],
        )

    @classmethod
    def from_json(cls, raw: str) -> "IdentityRecord":
        return cls.from_dict(json.loads(raw))


class IdentityStore(ABC):
    """Durable, transactional identity key space.

    Four mappings: key id -> identity, name -> key ids, key id -> owner,
    key id -> external account id.
    """

    @abstractmethod
    async def get_ownership(self, key_id: str) -> Optional[OwnershipRecord]:
        ...

    @abstractmethod
    async def get_identity(self, key_id: str) -> Optional[IdentityRecord]:
        ...

    @abstractmethod
    async def add_ownership(
        self,
        ownership: OwnershipRecord,
        identity: Optional[IdentityRecord] = None,
    ) -> OwnershipRecord:
        """Atomically record ``ownership`` (and ``identity``) unless a different owner exists.

        Returns the ownership record in force after the call. When it names a
        different owner than ``ownership`` nothing was written. When the owner
        matches, ``identity`` is stored if the key has no identity record yet.
        """

    @abstractmethod
    async def get_by_name(self, name: str) -> List[IdentityRecord]:
        """Well-known identities whose canonical name equals ``name``, in registration order."""

    @abstractmethod
    async def search_names(self, query: str) -> List[IdentityRecord]:
        """Well-known identities whose canonical name contains ``query``, ignoring case."""

    @abstractmethod
    def iter_identities(self) -> AsyncIterator[IdentityRecord]:
        """Iterate every identity record; each call starts a fresh iteration."""

    @abstractmethod
    async def set_external_id(self, key_id: str, external_id: UUID) -> None:
        ...

    @abstractmethod
    async def get_external_id(self, key_id: str) -> Optional[UUID]:
        ...

    @abstractmethod
    async def key_ids_for_external_id(self, external_id: UUID) -> List[str]:
        ...

    async def close(self) -> None:
        return None


__all__ = [
    "IdentityKind",
    "OwnershipRecord",
    "IdentityRecord",
    "IdentityStore",
]
