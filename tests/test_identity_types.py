import pytest
from cryptography import x509
from cryptography.x509.oid import NameOID

from certid.identity import (
    AnonymousParty,
    CertificateRole,
    DistinguishedName,
    Party,
    PartyAndCertificate,
    certificate_role,
    decode_public_key,
    encode_public_key,
    key_id,
    owning_key_of,
)
from certid.pki import new_key_pair

from conftest import ALICE_NAME


class TestDistinguishedName:
    def test_canonical_string(self):
        name = DistinguishedName("Alice Corp", "Madrid", "ES", common_name="Alice", organisation_unit="Ops")
        assert str(name) == "CN=Alice, OU=Ops, O=Alice Corp, L=Madrid, C=ES"

    def test_parse_round_trip_any_order(self):
        parsed = DistinguishedName.parse("C=ES, O=Alice Corp, L=Madrid, ST=Madrid")
        assert parsed == DistinguishedName("Alice Corp", "Madrid", "ES", state="Madrid")
        assert DistinguishedName.parse(str(parsed)) == parsed

    @pytest.mark.parametrize("text", [
        "O=Alice Corp, L=Madrid",
        "O=Alice Corp, L=Madrid, C=ES, O=Other",
        "O=Alice Corp, L=Madrid, C=ES, X=1",
        "O=Alice Corp, L=Madrid, C=es",
    ])
    def test_parse_rejects(self, text):
        with pytest.raises(ValueError):
            DistinguishedName.parse(text)

    def test_rejects_empty_and_separators(self):
        with pytest.raises(ValueError):
            DistinguishedName("", "Madrid", "ES")
        with pytest.raises(ValueError):
            DistinguishedName("Alice, Corp", "Madrid", "ES")

    def test_x509_round_trip(self):
        name = DistinguishedName("Alice Corp", "Madrid", "ES", common_name="Alice")
        assert DistinguishedName.from_x509_name(name.to_x509_name()) == name

    @pytest.mark.parametrize("attributes, match", [
        ([(NameOID.ORGANIZATION_NAME, "Alice, Corp"), (NameOID.LOCALITY_NAME, "Madrid"), (NameOID.COUNTRY_NAME, "ES")],
         "must not contain"),
        ([(NameOID.ORGANIZATION_NAME, "Alice Corp"), (NameOID.COUNTRY_NAME, "ES")], "missing required attributes: L"),
        ([(NameOID.COMMON_NAME, "Alice")], "missing required attributes: O, L, C"),
    ])
    def test_from_x509_name_rejects(self, attributes, match):
        name = x509.Name([x509.NameAttribute(oid, value) for oid, value in attributes])
        with pytest.raises(ValueError, match=match):
            DistinguishedName.from_x509_name(name)

    def test_component_matching(self):
        name = DistinguishedName("Alice Corp", "Madrid", "ES")
        assert name.matches("Alice Corp", exact_match=True)
        assert not name.matches("Alice", exact_match=True)
        assert name.matches("alice", exact_match=False)
        assert name.matches("MAD", exact_match=False)
        assert not name.matches("Bob", exact_match=False)


class TestParties:
    def test_key_id_is_stable(self):
        kp = new_key_pair()
        decoded = decode_public_key(encode_public_key(kp.public))
        assert key_id(decoded) == key_id(kp.public) == kp.key_id

    def test_party_equality(self):
        kp = new_key_pair()
        assert Party(ALICE_NAME, kp.public) == Party(ALICE_NAME, decode_public_key(encode_public_key(kp.public)))
        assert Party(ALICE_NAME, kp.public) != Party(ALICE_NAME, new_key_pair().public)
        assert len({Party(ALICE_NAME, kp.public), Party(ALICE_NAME, kp.public)}) == 1

    def test_anonymise(self):
        kp = new_key_pair()
        anonymous = Party(ALICE_NAME, kp.public).anonymise()
        assert anonymous == AnonymousParty(kp.public)
        assert anonymous.key_id == kp.key_id

    def test_owning_key_of(self, alice):
        assert owning_key_of(alice.public_key) is alice.public_key
        assert key_id(owning_key_of(alice.party)) == alice.key.key_id
        assert key_id(owning_key_of(alice.party.anonymise())) == alice.key.key_id
        assert key_id(owning_key_of(alice.identity)) == alice.key.key_id


class TestPartyAndCertificate:
    def test_properties(self, alice):
        identity = alice.identity
        assert identity.name == ALICE_NAME
        assert identity.key_id == alice.key.key_id
        assert identity.role == CertificateRole.LEGAL_IDENTITY
        assert identity.party == alice.party
        assert len(identity.cert_path) == 4

    def test_der_round_trip(self, alice):
        restored = PartyAndCertificate.from_der(alice.identity.encoded())
        assert restored == alice.identity
        assert hash(restored) == hash(alice.identity)

    def test_empty_path_rejected(self):
        with pytest.raises(ValueError):
            PartyAndCertificate(())

    def test_roles_of_path(self, pki, alice):
        confidential = pki.create_confidential_identity(alice)
        roles = [certificate_role(c) for c in confidential.identity.cert_path]
        assert roles == [
            CertificateRole.CONFIDENTIAL_LEGAL_IDENTITY,
            CertificateRole.LEGAL_IDENTITY,
            CertificateRole.NODE_CA,
            CertificateRole.INTERMEDIATE_CA,
            CertificateRole.ROOT_CA,
        ]


class TestRoles:
    def test_issuance_policy(self):
        assert CertificateRole.ROOT_CA.can_issue(CertificateRole.INTERMEDIATE_CA)
        assert CertificateRole.NODE_CA.can_issue(CertificateRole.LEGAL_IDENTITY)
        assert CertificateRole.LEGAL_IDENTITY.can_issue(CertificateRole.CONFIDENTIAL_LEGAL_IDENTITY)
        assert not CertificateRole.NODE_CA.can_issue(CertificateRole.CONFIDENTIAL_LEGAL_IDENTITY)
        assert not CertificateRole.CONFIDENTIAL_LEGAL_IDENTITY.is_ca
        assert not CertificateRole.TLS.is_ca
