import asyncio

import pytest

from certid.errors import ConflictingKeyRegistrationError
from certid.identity import DistinguishedName
from certid.pki import new_key_pair
from certid.store import SqliteIdentityStore


def _names(count):
    return [DistinguishedName(f"Owner {i}", "Oslo", "NO") for i in range(count)]


async def register_all(service, key, owners):
    results = await asyncio.gather(
        *(service.register_key(key.public, owner.party) for owner in owners),
        return_exceptions=True,
    )
    return [r for r in results if r is None], [r for r in results if isinstance(r, Exception)]


@pytest.mark.asyncio
async def test_concurrent_conflicting_register_key(make_service, pki):
    service = await make_service()
    owners = [pki.create_identity(name) for name in _names(6)]
    key = new_key_pair()

    succeeded, failed = await register_all(service, key, owners)
    assert len(succeeded) == 1
    assert len(failed) == len(owners) - 1
    assert all(isinstance(e, ConflictingKeyRegistrationError) for e in failed)


@pytest.mark.asyncio
async def test_two_services_share_one_database(tmp_path, pki, make_service):
    path = str(tmp_path / "shared.sqlite3")
    first = await make_service(SqliteIdentityStore(path))
    second = await make_service(SqliteIdentityStore(path))
    alice, bob = (pki.create_identity(name) for name in _names(2))
    key = new_key_pair()

    results = await asyncio.gather(
        first.register_key(key.public, alice.party),
        second.register_key(key.public, bob.party),
        return_exceptions=True,
    )
    assert sum(1 for r in results if r is None) == 1
    assert sum(1 for r in results if isinstance(r, ConflictingKeyRegistrationError)) == 1

    await first.verify_and_register_identity(alice.identity)
    await first.verify_and_register_identity(bob.identity)
    owner_first = await first.well_known_party_from_anonymous(key.public)
    owner_second = await second.well_known_party_from_anonymous(key.public)
    assert owner_first == owner_second
    assert owner_first in (alice.party, bob.party)


@pytest.mark.asyncio
async def test_concurrent_identical_registrations(make_service, alice):
    service = await make_service()
    results = await asyncio.gather(*(service.verify_and_register_identity(alice.identity) for _ in range(5)))
    assert all(r == alice.identity for r in results)
    assert [i async for i in service.get_all_identities()] == [alice.identity]


