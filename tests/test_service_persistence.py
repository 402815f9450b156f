"""
A fresh service over the same database answers every lookup the same way.
"""

import dataclasses
import uuid

import pytest

from certid.pki import new_key_pair
from certid.service import IdentityService
from certid.store import SqliteIdentityStore

from conftest import ALICE_NAME


async def snapshot(service, alice, bob, confidential, bare, account):
    return {
        "all": [i async for i in service.get_all_identities()],
        "by_name": await service.well_known_party_from_x500_name(ALICE_NAME),
        "search": await service.parties_from_name("Corp", exact_match=False),
        "alice_key": await service.party_from_key(alice.public_key),
        "confidential": await service.well_known_party_from_anonymous(confidential.public_key),
        "bare": await service.well_known_party_from_anonymous(bare.public),
        "strip": await service.strip_not_our_keys([bob.public_key, confidential.public_key]),
        "external": await service.external_id_for_key(bare.public),
        "account_keys": len(await service.keys_for_external_id(account)),
    }


@pytest.mark.asyncio
async def test_restart_over_same_store(tmp_path, config, pki, alice, bob):
    path = str(tmp_path / "identities.sqlite3")
    confidential = pki.create_confidential_identity(alice)
    bare = new_key_pair()
    account = uuid.uuid4()

    store = SqliteIdentityStore(path)
    first = IdentityService(config, store)
    await first.start()
    await first.verify_and_register_identity(alice.identity)
    await first.verify_and_register_identity(bob.identity)
    await first.verify_and_register_identity(confidential.identity)
    await first.register_key(bare.public, bob.party, external_id=account)
    before = await snapshot(first, alice, bob, confidential, bare, account)
    await store.close()

    reopened = SqliteIdentityStore(path)
    second = IdentityService(config, reopened)
    await second.start()
    after = await snapshot(second, alice, bob, confidential, bare, account)
    await reopened.close()

    assert after == before
    assert before["confidential"] == alice.party
    assert before["bare"] == bob.party
    assert before["external"] == account


@pytest.mark.asyncio
async def test_warm_cache_on_start(tmp_path, config, alice):
    path = str(tmp_path / "warm.sqlite3")
    store = SqliteIdentityStore(path)
    service = IdentityService(config, store)
    await service.start()
    await service.verify_and_register_identity(alice.identity)
    await store.close()

    reopened = SqliteIdentityStore(path)
    warmed = IdentityService(dataclasses.replace(config, warm_cache=True), reopened)
    await warmed.start()
    assert warmed.cache.stats()["identity_entries"] == 1
    assert await warmed.party_from_key(alice.public_key) == alice.party
    assert warmed.cache.stats()["misses"] == 0
    await reopened.close()
