"""
StealthPay - Storage Tests
============================
Unit tests for encrypted secure storage backends.
"""

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from stealth_pay.domain.keypairs import KeyPair
from stealth_pay.errors import StorageError, StorageKeyNotFoundError
from stealth_pay.storage.secure_storage import (
    InMemorySecureStorage,
    STORAGE_KEY_INFO,
    SqliteSecureStorage,
    derive_storage_key,
)


DEVICE_KEY = b"device-key-for-tests-0123456789"


@pytest.fixture
def sqlite_storage(tmp_path):
    """SQLite secure storage su directory temporanea"""
    storage = SqliteSecureStorage(tmp_path / "secure.db", DEVICE_KEY)
    yield storage
    storage.close()


class TestInMemorySecureStorage:
    """Test InMemorySecureStorage"""
    
    @pytest.mark.asyncio
    async def test_store_and_load(self, storage):
        await storage.store_data("payment_queue", b"payload")
        
        assert await storage.load_data("payment_queue") == b"payload"
    
    @pytest.mark.asyncio
    async def test_missing_key(self, storage):
        with pytest.raises(StorageKeyNotFoundError):
            await storage.load_data("missing")
    
    @pytest.mark.asyncio
    async def test_values_encrypted_at_rest(self):
        storage = InMemorySecureStorage(device_key=DEVICE_KEY)
        await storage.store_data("secret", b"plaintext-marker")
        
        assert all(b"plaintext-marker" not in blob for blob in storage._items.values())
    
    @pytest.mark.asyncio
    async def test_delete(self, storage):
        await storage.store_data("key", b"value")
        
        assert await storage.delete_data("key")
        assert not await storage.delete_data("key")
    
    @pytest.mark.asyncio
    async def test_keypair_roundtrip(self, storage):
        keypair = KeyPair.generate()
        await storage.store_keypair("default", keypair)
        
        restored = await storage.load_keypair("default")
        
        assert restored == keypair
        assert restored.spending_secret_key() == keypair.spending_secret_key()
        assert await storage.list_keypairs() == ["default"]
        assert await storage.delete_keypair("default")
        with pytest.raises(StorageKeyNotFoundError):
            await storage.load_keypair("default")


class TestSqliteSecureStorage:
    """Test SqliteSecureStorage"""
    
    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        path = tmp_path / "secure.db"
        keypair = KeyPair.generate()
        
        first = SqliteSecureStorage(path, DEVICE_KEY)
        await first.store_data("payment_queue", b"queue-bytes")
        await first.store_keypair("main", keypair)
        first.close()
        
        second = SqliteSecureStorage(path, DEVICE_KEY)
        try:
            assert await second.load_data("payment_queue") == b"queue-bytes"
            assert (await second.load_keypair("main")).to_meta_address() == keypair.to_meta_address()
        finally:
            second.close()
    
    @pytest.mark.asyncio
    async def test_wrong_device_key(self, tmp_path):
        path = tmp_path / "secure.db"
        first = SqliteSecureStorage(path, DEVICE_KEY)
        await first.store_data("key", b"value")
        first.close()
        
        other = SqliteSecureStorage(path, b"another-device-key-0123456789ab")
        try:
            with pytest.raises(StorageError):
                await other.load_data("key")
        finally:
            other.close()
    
    @pytest.mark.asyncio
    async def test_overwrite(self, sqlite_storage):
        await sqlite_storage.store_data("key", b"v1")
        await sqlite_storage.store_data("key", b"v2")
        
        assert await sqlite_storage.load_data("key") == b"v2"
    
    @pytest.mark.asyncio
    async def test_delete_missing(self, sqlite_storage):
        assert not await sqlite_storage.delete_data("missing")


class TestStorageKeyDerivation:
    """Test derivazione chiave di storage dalla device key"""
    
    def test_deterministic(self):
        assert derive_storage_key(DEVICE_KEY) == derive_storage_key(DEVICE_KEY)
        assert len(derive_storage_key(DEVICE_KEY)) == 32
    
    def test_matches_hkdf_sha256(self):
        expected = HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=None,
            info=STORAGE_KEY_INFO,
        ).derive(DEVICE_KEY)
        
        assert derive_storage_key(DEVICE_KEY) == expected
    
    def test_distinct_device_keys(self):
        assert derive_storage_key(DEVICE_KEY) != derive_storage_key(DEVICE_KEY[::-1])
    
    def test_short_device_key_rejected(self):
        with pytest.raises(StorageError) as exc_info:
            derive_storage_key(b"short")
        
        assert exc_info.value.code == "DEVICE_KEY_TOO_SHORT"
