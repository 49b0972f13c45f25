"""
StealthPay - Secure Storage
=============================
Storage chiave-valore cifrato a riposo per coda pagamenti, cursore di
scansione e identita' stealth.

Security Level: CRITICAL
Last Updated: 2026-10-18
Version: 1.0.0

Features:
- Interfaccia async (load_data / store_data + keypair store)
- AES-256-GCM con chiave derivata dalla device key
- Associated data = namespace/chiave (un blob non e' spostabile su un'altra chiave)
- Backend in memoria e SQLite
"""

from __future__ import annotations

import asyncio
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from stealth_pay.constants import SECRET_SCALAR_SIZE
from stealth_pay.domain.crypto_core import (
    decrypt_data_aes_gcm,
    derive_key_hkdf,
    encrypt_data_aes_gcm,
    generate_random_bytes,
    wipe,
)
from stealth_pay.domain.keypairs import KeyPair
from stealth_pay.errors import (
    DecryptionError,
    StorageError,
    StorageKeyNotFoundError,
)
from stealth_pay.logging_setup import get_logger


# ============================================================================
# MODULE LOGGER
# ============================================================================

logger = get_logger("storage")

DATA_NAMESPACE = "data"
KEYPAIR_NAMESPACE = "keypair"

_NONCE_SIZE = 12
_KEYPAIR_RECORD_SIZE = 1 + 2 * SECRET_SCALAR_SIZE
STORAGE_KEY_INFO = b"stealthpay/storage-key/v1"


def derive_storage_key(device_key: bytes) -> bytes:
    """Chiave AES-256 di storage derivata dalla device key"""
    if len(device_key) < 16:
        raise StorageError("Device key must be at least 16 bytes", code="DEVICE_KEY_TOO_SHORT")
    return derive_key_hkdf(bytes(device_key), info=STORAGE_KEY_INFO)


# ============================================================================
# ABSTRACT INTERFACE
# ============================================================================

class SecureStorage(ABC):
    """
    Storage sicuro usato da coda pagamenti, scanner e wallet manager.
    
    I valori sono cifrati prima di raggiungere il backend.
    
    Args:
        device_key: Segreto del dispositivo (min 16 bytes); se None ne
            viene generato uno casuale (storage utilizzabile solo in questo
            processo)
    """
    
    def __init__(self, device_key: Optional[bytes] = None):
        self._key = derive_storage_key(device_key if device_key is not None else generate_random_bytes(32))
    
    # ========================================================================
    # BACKEND PRIMITIVES
    # ========================================================================
    
    @abstractmethod
    async def _put(self, namespace: str, key: str, blob: bytes) -> None:
        ...
    
    @abstractmethod
    async def _get(self, namespace: str, key: str) -> Optional[bytes]:
        ...
    
    @abstractmethod
    async def _delete(self, namespace: str, key: str) -> bool:
        ...
    
    @abstractmethod
    async def _keys(self, namespace: str) -> List[str]:
        ...
    
    # ========================================================================
    # ENCRYPTION
    # ========================================================================
    
    @staticmethod
    def _aad(namespace: str, key: str) -> bytes:
        return f"{namespace}/{key}".encode("utf-8")
    
    def _seal(self, namespace: str, key: str, plaintext: bytes) -> bytes:
        ciphertext, nonce = encrypt_data_aes_gcm(bytes(plaintext), self._key, self._aad(namespace, key))
        return nonce + ciphertext
    
    def _open(self, namespace: str, key: str, blob: bytes) -> bytes:
        try:
            return decrypt_data_aes_gcm(
                blob[_NONCE_SIZE:], self._key, blob[:_NONCE_SIZE], self._aad(namespace, key)
            )
        except DecryptionError as e:
            raise StorageError(
                f"Stored value for {key!r} cannot be decrypted (wrong device key or corruption)",
                code="STORAGE_DECRYPT_FAILED"
            ) from e
    
    # ========================================================================
    # DATA API
    # ========================================================================
    
    async def store_data(self, key: str, data: bytes) -> None:
        await self._put(DATA_NAMESPACE, key, self._seal(DATA_NAMESPACE, key, data))
        logger.debug("Data stored", extra_data={"key": key, "size": len(data)})
    
    async def load_data(self, key: str) -> bytes:
        """
        Raises:
            StorageKeyNotFoundError: Chiave assente
            StorageError: Backend o decifratura falliti
        """
        blob = await self._get(DATA_NAMESPACE, key)
        if blob is None:
            raise StorageKeyNotFoundError(f"No data stored under {key!r}", details={"key": key})
        return self._open(DATA_NAMESPACE, key, blob)
    
    async def delete_data(self, key: str) -> bool:
        return await self._delete(DATA_NAMESPACE, key)
    
    # ========================================================================
    # KEYPAIR API
    # ========================================================================
    
    async def store_keypair(self, keypair_id: str, keypair: KeyPair) -> None:
        """Salva un'identita' stealth (solo segreti + versione, cifrati)"""
        spending = keypair.spending_secret_key()
        viewing = keypair.viewing_secret_key()
        record = bytearray([keypair.version]) + spending + viewing
        try:
            blob = self._seal(KEYPAIR_NAMESPACE, keypair_id, record)
        finally:
            wipe(record)
            wipe(spending)
            wipe(viewing)
        
        await self._put(KEYPAIR_NAMESPACE, keypair_id, blob)
        logger.info("Keypair stored", extra_data={"keypair_id": keypair_id})
    
    async def load_keypair(self, keypair_id: str) -> KeyPair:
        """
        Raises:
            StorageKeyNotFoundError: Identita' assente
            StorageError: Record corrotto
        """
        blob = await self._get(KEYPAIR_NAMESPACE, keypair_id)
        if blob is None:
            raise StorageKeyNotFoundError(
                f"No keypair stored under {keypair_id!r}",
                details={"keypair_id": keypair_id}
            )
        
        record = bytearray(self._open(KEYPAIR_NAMESPACE, keypair_id, blob))
        try:
            if len(record) != _KEYPAIR_RECORD_SIZE:
                raise StorageError(
                    f"Corrupted keypair record for {keypair_id!r}",
                    code="KEYPAIR_RECORD_INVALID"
                )
            return KeyPair(
                spending_secret=bytes(record[1:1 + SECRET_SCALAR_SIZE]),
                viewing_secret=bytes(record[1 + SECRET_SCALAR_SIZE:]),
                version=record[0],
            )
        finally:
            wipe(record)
    
    async def delete_keypair(self, keypair_id: str) -> bool:
        deleted = await self._delete(KEYPAIR_NAMESPACE, keypair_id)
        if deleted:
            logger.info("Keypair deleted", extra_data={"keypair_id": keypair_id})
        return deleted
    
    async def list_keypairs(self) -> List[str]:
        return sorted(await self._keys(KEYPAIR_NAMESPACE))


# ============================================================================
# IN-MEMORY BACKEND
# ============================================================================

class InMemorySecureStorage(SecureStorage):
    """
    Backend in memoria (test, sessioni effimere).
    
    Examples:
        >>> storage = InMemorySecureStorage(device_key=b"0" * 32)
        >>> await storage.store_data("payment_queue", b"[]")
        >>> await storage.load_data("payment_queue")
        b'[]'
    """
    
    def __init__(self, device_key: Optional[bytes] = None):
        super().__init__(device_key)
        self._items: Dict[Tuple[str, str], bytes] = {}
    
    async def _put(self, namespace: str, key: str, blob: bytes) -> None:
        self._items[(namespace, key)] = blob
    
    async def _get(self, namespace: str, key: str) -> Optional[bytes]:
        return self._items.get((namespace, key))
    
    async def _delete(self, namespace: str, key: str) -> bool:
        return self._items.pop((namespace, key), None) is not None
    
    async def _keys(self, namespace: str) -> List[str]:
        return [key for ns, key in self._items if ns == namespace]


# ============================================================================
# SQLITE BACKEND
# ============================================================================

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS secure_items (
    namespace TEXT NOT NULL,
    key TEXT NOT NULL,
    value BLOB NOT NULL,
    updated_at INTEGER NOT NULL,
    PRIMARY KEY (namespace, key)
);
"""


class SqliteSecureStorage(SecureStorage):
    """
    Backend SQLite persistente.
    
    Le query girano in un worker thread (``asyncio.to_thread``) serializzate
    da un lock: l'event loop non viene bloccato dall'I/O su disco.
    
    Examples:
        >>> storage = SqliteSecureStorage(Path("data/stealthpay.db"), device_key)
        >>> await storage.store_keypair("default", keypair)
    """
    
    def __init__(self, db_path: Path, device_key: bytes):
        super().__init__(device_key)
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                timeout=30.0
            )
            self._connection.execute("PRAGMA journal_mode = WAL")
            self._connection.executescript(CREATE_TABLES_SQL)
            self._connection.commit()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(
                f"Failed to open secure storage: {e}",
                code="STORAGE_OPEN_FAILED"
            ) from e
        
        logger.info("Secure storage opened", extra_data={"db_path": str(self.db_path)})
    
    def _execute(self, sql: str, params: tuple = ()) -> List[tuple]:
        with self._lock:
            try:
                cursor = self._connection.execute(sql, params)
                rows = cursor.fetchall()
                self._connection.commit()
                return rows
            except sqlite3.Error as e:
                self._connection.rollback()
                raise StorageError(f"Secure storage query failed: {e}", code="STORAGE_QUERY_FAILED") from e
    
    async def _run(self, sql: str, params: tuple = ()) -> List[tuple]:
        return await asyncio.to_thread(self._execute, sql, params)
    
    async def _put(self, namespace: str, key: str, blob: bytes) -> None:
        await self._run(
            "INSERT OR REPLACE INTO secure_items (namespace, key, value, updated_at) VALUES (?, ?, ?, ?)",
            (namespace, key, blob, int(time.time()))
        )
    
    async def _get(self, namespace: str, key: str) -> Optional[bytes]:
        rows = await self._run(
            "SELECT value FROM secure_items WHERE namespace = ? AND key = ?",
            (namespace, key)
        )
        return bytes(rows[0][0]) if rows else None
    
    async def _delete(self, namespace: str, key: str) -> bool:
        existing = await self._get(namespace, key)
        if existing is None:
            return False
        await self._run(
            "DELETE FROM secure_items WHERE namespace = ? AND key = ?",
            (namespace, key)
        )
        return True
    
    async def _keys(self, namespace: str) -> List[str]:
        rows = await self._run(
            "SELECT key FROM secure_items WHERE namespace = ?",
            (namespace,)
        )
        return [row[0] for row in rows]
    
    def close(self) -> None:
        with self._lock:
            self._connection.close()
        logger.debug("Secure storage closed", extra_data={"db_path": str(self.db_path)})


__all__ = [
    "SecureStorage",
    "InMemorySecureStorage",
    "SqliteSecureStorage",
    "derive_storage_key",
    "STORAGE_KEY_INFO",
]
