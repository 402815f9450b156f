"""
Example: Certificate-Chain Identity Resolution

This example demonstrates the identity service:
- Building a development PKI under a throwaway root
- Registering well-known and confidential identities
- Resolving anonymous keys back to their owner
- Rejecting conflicting registrations and foreign ownership claims
"""

import asyncio
import logging
import os
import sys

# Add parent directory to path so we can import certid
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from certid import (
    ConflictingKeyRegistrationError,
    DistinguishedName,
    IdentityServiceConfig,
    OwnershipMismatchError,
    create_service,
)
from certid.identity import CertificateRole
from certid.pki import build_cert_path, create_certificate, create_self_signed_ca, new_key_pair, snapshot_metrics
from certid.store import MemoryIdentityStore

ROOT = DistinguishedName("Demo Root CA", "London", "GB")
INTERMEDIATE = DistinguishedName("Demo Intermediate CA", "London", "GB")


def issue_identity(name, root, root_key, intermediate, intermediate_key):
    """Mint node CA -> legal identity for ``name``; returns the path and legal key."""
    node_key = new_key_pair()
    node = create_certificate(CertificateRole.NODE_CA, intermediate, intermediate_key, name, node_key.public)
    legal_key = new_key_pair()
    legal = create_certificate(CertificateRole.LEGAL_IDENTITY, node, node_key, name, legal_key.public)
    return build_cert_path(legal, (node, intermediate, root)), legal_key


async def main():
    print("🪪 certid Identity Resolution Demo")
    print("=" * 50)

    print("\n1. Building development PKI...")
    root_key = new_key_pair()
    root = create_self_signed_ca(ROOT, root_key)
    intermediate_key = new_key_pair()
    intermediate = create_certificate(
        CertificateRole.INTERMEDIATE_CA, root, root_key, INTERMEDIATE, intermediate_key.public
    )
    alice_name = DistinguishedName("Alice Corp", "Madrid", "ES")
    bob_name = DistinguishedName("Bob Plc", "Rome", "IT")
    alice, alice_key = issue_identity(alice_name, root, root_key, intermediate, intermediate_key)
    bob, _ = issue_identity(bob_name, root, root_key, intermediate, intermediate_key)
    print(f"   Root: {ROOT}")
    print(f"   Alice key id: {alice.key_id}")
    print(f"   Bob key id: {bob.key_id}")

    config = IdentityServiceConfig(trust_root=root, our_names={alice_name})
    service = create_service(config, store=MemoryIdentityStore())
    await service.start()

    print("\n2. Registering well-known identities...")
    await service.verify_and_register_identity(alice)
    await service.verify_and_register_identity(bob)
    resolved = await service.well_known_party_from_anonymous(alice.owning_key)
    print(f"   Alice's key resolves to: {resolved}")

    print("\n3. Registering a confidential identity issued by Alice...")
    confidential_key = new_key_pair()
    confidential_cert = create_certificate(
        CertificateRole.CONFIDENTIAL_LEGAL_IDENTITY, alice.certificate, alice_key, alice_name, confidential_key.public
    )
    confidential = build_cert_path(confidential_cert, alice.cert_path)
    await service.verify_and_register_identity(confidential)
    owner = await service.well_known_party_from_anonymous(confidential_key.public)
    print(f"   Confidential key {confidential_key.key_id[:16]}... is owned by: {owner}")

    print("\n4. Checking ownership claims...")
    await service.assert_ownership(alice.party, confidential_key.public)
    print("   ✅ Alice owns the confidential key")
    try:
        await service.assert_ownership(bob.party, confidential_key.public)
        print("   ❌ Bob's claim should have been rejected!")
    except OwnershipMismatchError as e:
        print(f"   ✅ Bob's claim rejected: {e}")

    print("\n5. Registering a bare key twice with different owners...")
    fresh = new_key_pair()
    await service.register_key(fresh.public, alice.party)
    try:
        await service.register_key(fresh.public, bob.party)
        print("   ❌ Conflicting registration should have failed!")
    except ConflictingKeyRegistrationError as e:
        print(f"   ✅ Conflict detected: {e.to_dict()}")

    print("\n6. Name search and key filtering...")
    matches = await service.parties_from_name("corp", exact_match=False)
    print(f"   Parties matching 'corp': {sorted(str(p) for p in matches)}")
    ours = await service.strip_not_our_keys([bob.owning_key, confidential_key.public, fresh.public])
    print(f"   Keys owned by our names: {len(ours)} of 3")

    print("\n7. Validation Metrics:")
    for name, value in snapshot_metrics().items():
        print(f"   {name}: {value}")
    print(f"   cache: {(await service.health_check())['cache']}")

    print("\n🎉 Identity demo completed successfully!")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(main())
