"""
StealthPay - Storage
======================
Secure storage cifrato (memoria e SQLite).
"""

from stealth_pay.storage.secure_storage import (
    SecureStorage,
    InMemorySecureStorage,
    SqliteSecureStorage,
    derive_storage_key,
)

__all__ = [
    "SecureStorage",
    "InMemorySecureStorage",
    "SqliteSecureStorage",
    "derive_storage_key",
]
