import pytest

from certid.identity import DistinguishedName
from certid.pki import ValidationOptions, to_pem
from certid.service import IdentityService, IdentityServiceConfig, StoreConfig, create_service, create_store
from certid.store import MemoryIdentityStore, RedisIdentityStore, SqliteIdentityStore

from conftest import ALICE_NAME


class TestIdentityServiceConfig:
    def test_defaults(self, pki):
        config = IdentityServiceConfig(trust_root=pki.root)
        assert config.our_names == frozenset()
        assert isinstance(config.validation, ValidationOptions)
        assert config.lock_stripes == 64
        assert not config.warm_cache

    def test_names_frozen(self, pki):
        config = IdentityServiceConfig(trust_root=pki.root, our_names=[ALICE_NAME, ALICE_NAME])
        assert config.our_names == frozenset({ALICE_NAME})
        with pytest.raises(AttributeError):
            config.lock_stripes = 1

    def test_string_names_are_parsed(self, pki):
        config = IdentityServiceConfig(trust_root=pki.root, our_names=["O=Alice Corp, L=Madrid, C=ES", ALICE_NAME])
        assert config.our_names == frozenset({ALICE_NAME})
        assert all(isinstance(name, DistinguishedName) for name in config.our_names)

    @pytest.mark.parametrize("names, error", [
        ([123], TypeError),
        ([b"O=Alice Corp, L=Madrid, C=ES"], TypeError),
        (["Alice Corp"], ValueError),
    ])
    def test_rejects_bad_names(self, pki, names, error):
        with pytest.raises(error):
            IdentityServiceConfig(trust_root=pki.root, our_names=names)

    @pytest.mark.asyncio
    async def test_string_names_filter_keys(self, pki, alice, bob):
        config = IdentityServiceConfig(trust_root=pki.root, our_names=[str(ALICE_NAME)])
        service = IdentityService(config, MemoryIdentityStore())
        await service.start()
        await service.verify_and_register_identity(alice.identity)
        await service.verify_and_register_identity(bob.identity)
        ours = await service.strip_not_our_keys([alice.public_key, bob.public_key])
        assert len(ours) == 1 and ours[0] is alice.public_key

    def test_rejects_bad_stripes(self, pki):
        with pytest.raises(ValueError):
            IdentityServiceConfig(trust_root=pki.root, lock_stripes=0)

    def test_from_pem(self, tmp_path, pki):
        path = tmp_path / "root.pem"
        path.write_bytes(to_pem([pki.root]))
        config = IdentityServiceConfig.from_pem(path, our_names=["O=Alice Corp, L=Madrid, C=ES"], warm_cache=True)
        assert config.trust_root == pki.root
        assert config.our_names == frozenset({DistinguishedName("Alice Corp", "Madrid", "ES")})
        assert config.warm_cache


class TestStoreConfig:
    def test_from_env_defaults(self, monkeypatch):
        for var in ("CERTID_STORE_BACKEND", "CERTID_SQLITE_PATH", "CERTID_REDIS_URL",
                    "CERTID_REDIS_PREFIX", "CERTID_REDIS_MAX_RETRIES"):
            monkeypatch.delenv(var, raising=False)
        assert StoreConfig.from_env() == StoreConfig()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CERTID_STORE_BACKEND", "Redis")
        monkeypatch.setenv("CERTID_REDIS_URL", "redis://cache:6380/2")
        monkeypatch.setenv("CERTID_REDIS_PREFIX", "ids")
        monkeypatch.setenv("CERTID_REDIS_MAX_RETRIES", "4")
        config = StoreConfig.from_env()
        assert config.backend == "redis"
        assert config.redis_url == "redis://cache:6380/2"
        assert config.redis_prefix == "ids"
        assert config.redis_max_retries == 4

    def test_unknown_backend(self, monkeypatch):
        with pytest.raises(ValueError, match="unknown store backend"):
            StoreConfig(backend="etcd")
        monkeypatch.setenv("CERTID_STORE_BACKEND", "etcd")
        with pytest.raises(ValueError):
            StoreConfig.from_env()


class TestFactories:
    def test_create_store(self, tmp_path):
        assert isinstance(create_store(), MemoryIdentityStore)
        sqlite_store = create_store(StoreConfig(backend="sqlite", sqlite_path=str(tmp_path / "db" / "ids.sqlite3")))
        assert isinstance(sqlite_store, SqliteIdentityStore)
        assert (tmp_path / "db" / "ids.sqlite3").exists()
        # The Redis client connects lazily.
        redis_store = create_store(StoreConfig(backend="redis", redis_prefix="x"))
        assert isinstance(redis_store, RedisIdentityStore)
        assert redis_store.prefix == "x"

    @pytest.mark.asyncio
    async def test_create_service_from_env(self, monkeypatch, tmp_path, config, alice):
        monkeypatch.setenv("CERTID_STORE_BACKEND", "sqlite")
        monkeypatch.setenv("CERTID_SQLITE_PATH", str(tmp_path / "env.sqlite3"))
        service = create_service(config)
        assert isinstance(service, IdentityService)
        assert isinstance(service.store, SqliteIdentityStore)
        await service.start()
        await service.verify_and_register_identity(alice.identity)
        assert await service.party_from_key(alice.public_key) == alice.party
        await service.store.close()

    @pytest.mark.asyncio
    async def test_create_service_with_store_config(self, tmp_path, config):
        service = create_service(config, store_config=StoreConfig(backend="sqlite", sqlite_path=str(tmp_path / "ids.sqlite3")))
        assert isinstance(service.store, SqliteIdentityStore)
        await service.store.close()
