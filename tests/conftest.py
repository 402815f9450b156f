"""
Shared fixtures: a development PKI (root CA -> intermediate CA -> node CA ->
legal identity -> confidential identity) and started identity services.
"""

import dataclasses
from dataclasses import dataclass
from typing import Optional, Tuple

import pytest
from cryptography import x509

from certid.identity import CertificateRole, DistinguishedName, PartyAndCertificate
from certid.pki import (
    KeyPair,
    build_cert_path,
    create_certificate,
    create_self_signed_ca,
    new_key_pair,
)
from certid.service import IdentityService, IdentityServiceConfig
from certid.store import IdentityStore, MemoryIdentityStore

ROOT_NAME = DistinguishedName("Root CA", "London", "GB", common_name="Dev Root")
INTERMEDIATE_NAME = DistinguishedName("Intermediate CA", "London", "GB", common_name="Dev Intermediate")

ALICE_NAME = DistinguishedName("Alice Corp", "Madrid", "ES")
BOB_NAME = DistinguishedName("Bob Plc", "Rome", "IT")
CHARLIE_NAME = DistinguishedName("Charlie Ltd", "Athens", "GR")


@dataclass
class DevIdentity:
    """A registered-ready identity together with the key that signs for it."""
    identity: PartyAndCertificate
    key: KeyPair

    @property
    def party(self):
        return self.identity.party

    @property
    def public_key(self):
        return self.key.public


class DevPki:
    """Mints identities under a throwaway root."""

    def __init__(self, root_name: DistinguishedName = ROOT_NAME):
        self.root_key = new_key_pair()
        self.root = create_self_signed_ca(root_name, self.root_key)
        self.intermediate_key = new_key_pair()
        self.intermediate = create_certificate(
            CertificateRole.INTERMEDIATE_CA,
            self.root,
            self.root_key,
            INTERMEDIATE_NAME,
            self.intermediate_key.public,
        )

    def create_node_ca(self, name: DistinguishedName) -> Tuple[x509.Certificate, KeyPair]:
        node_key = new_key_pair()
        node_ca = create_certificate(
            CertificateRole.NODE_CA, self.intermediate, self.intermediate_key, name, node_key.public
        )
        return node_ca, node_key

    def create_identity(self, name: DistinguishedName, **cert_kwargs) -> DevIdentity:
        node_ca, node_key = self.create_node_ca(name)
        legal_key = new_key_pair()
        legal = create_certificate(
            CertificateRole.LEGAL_IDENTITY, node_ca, node_key, name, legal_key.public, **cert_kwargs
        )
        return DevIdentity(build_cert_path(legal, (node_ca, self.intermediate, self.root)), legal_key)

    def create_confidential_identity(self, owner: DevIdentity, **cert_kwargs) -> DevIdentity:
        key = new_key_pair()
        certificate = create_certificate(
            CertificateRole.CONFIDENTIAL_LEGAL_IDENTITY,
            owner.identity.certificate,
            owner.key,
            owner.identity.name,
            key.public,
            **cert_kwargs,
        )
        return DevIdentity(build_cert_path(certificate, owner.identity.cert_path), key)


@pytest.fixture
def pki() -> DevPki:
    return DevPki()


@pytest.fixture
def alice(pki) -> DevIdentity:
    return pki.create_identity(ALICE_NAME)


@pytest.fixture
def bob(pki) -> DevIdentity:
    return pki.create_identity(BOB_NAME)


@pytest.fixture
def charlie(pki) -> DevIdentity:
    return pki.create_identity(CHARLIE_NAME)


@pytest.fixture
def config(pki) -> IdentityServiceConfig:
    return IdentityServiceConfig(trust_root=pki.root, our_names=frozenset({ALICE_NAME}))


@pytest.fixture
def make_service(config):
    """Returns a coroutine function building a started service."""

    async def _make(store: Optional[IdentityStore] = None, **overrides) -> IdentityService:
        cfg = dataclasses.replace(config, **overrides) if overrides else config
        service = IdentityService(cfg, store if store is not None else MemoryIdentityStore())
        await service.start()
        return service

    return _make
