"""
StealthPay - Transaction Signers
==================================
Capacita' di firma usate per finanziare e spendere transazioni.

Security Level: CRITICAL
Last Updated: 2026-10-18
Version: 1.0.0

- Ed25519Signer: account regolare (seed Ed25519, indirizzo linkabile)
- StealthSigner: chiave one-time derivata (scalare grezzo s + h mod L)
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

import nacl.signing

from stealth_pay.domain.crypto_core import (
    constant_time_equals,
    scalarmult_base,
    sign_with_scalar,
    wipe,
)
from stealth_pay.errors import CryptoError, InvalidKeyFormatError, KeyDerivationError
from stealth_pay.utils.base58 import encode_public_key


# ============================================================================
# SIGNER PROTOCOL
# ============================================================================

@runtime_checkable
class Signer(Protocol):
    """Qualsiasi oggetto capace di firmare per un indirizzo"""
    
    @property
    def public_key(self) -> bytes:
        ...
    
    @property
    def address(self) -> str:
        ...
    
    def sign(self, message: bytes) -> bytes:
        ...


# ============================================================================
# REGULAR ACCOUNT SIGNER
# ============================================================================

class Ed25519Signer:
    """
    Signer di un account regolare basato su seed Ed25519 (PyNaCl).
    
    Examples:
        >>> payer = Ed25519Signer.generate()
        >>> len(payer.sign(b"message"))
        64
    """
    
    def __init__(self, signing_key: nacl.signing.SigningKey):
        self._signing_key = signing_key
        self._public_key = bytes(signing_key.verify_key)
    
    @classmethod
    def generate(cls) -> Ed25519Signer:
        return cls(nacl.signing.SigningKey.generate())
    
    @classmethod
    def from_seed(cls, seed: bytes) -> Ed25519Signer:
        if len(seed) != 32:
            raise InvalidKeyFormatError(f"Ed25519 seed must be 32 bytes, got {len(seed)}")
        return cls(nacl.signing.SigningKey(bytes(seed)))
    
    @property
    def public_key(self) -> bytes:
        return self._public_key
    
    @property
    def address(self) -> str:
        return encode_public_key(self._public_key)
    
    def sign(self, message: bytes) -> bytes:
        return self._signing_key.sign(message).signature
    
    def __repr__(self) -> str:
        return f"Ed25519Signer(address={self.address})"


# ============================================================================
# STEALTH ONE-TIME SIGNER
# ============================================================================

class StealthSigner:
    """
    Signer per uno stealth address, costruito dalla chiave one-time
    ricostruita dallo scanner.
    
    Verifica alla costruzione che ``secret * B`` coincida con lo stealth
    address atteso: su mismatch non si firma nulla.
    Lo scalare viene azzerato da :meth:`zeroize` o all'uscita dal ``with``.
    
    Raises:
        KeyDerivationError: La chiave derivata non corrisponde all'indirizzo
    """
    
    def __init__(self, secret_scalar: bytearray, expected_address: Optional[bytes] = None):
        self._secret = bytearray(secret_scalar)
        try:
            self._public_key = scalarmult_base(self._secret)
        except InvalidKeyFormatError as e:
            wipe(self._secret)
            raise KeyDerivationError("Derived one-time key is not a usable scalar") from e
        
        if expected_address is not None and not constant_time_equals(self._public_key, expected_address):
            wipe(self._secret)
            raise KeyDerivationError(
                "Derived one-time public key does not match the stealth address",
                details={
                    "expected": encode_public_key(bytes(expected_address)),
                    "derived": encode_public_key(self._public_key),
                }
            )
        self._wiped = False
    
    @property
    def public_key(self) -> bytes:
        return self._public_key
    
    @property
    def address(self) -> str:
        return encode_public_key(self._public_key)
    
    def sign(self, message: bytes) -> bytes:
        if self._wiped:
            raise CryptoError("Stealth signer has been wiped", code="SIGNER_WIPED")
        return sign_with_scalar(self._secret, message, public_key=self._public_key)
    
    def zeroize(self) -> None:
        wipe(self._secret)
        self._wiped = True
    
    def __enter__(self) -> StealthSigner:
        return self
    
    def __exit__(self, exc_type, exc_val, exc_tb):
        self.zeroize()
    
    def __repr__(self) -> str:
        return f"StealthSigner(address={self.address})"


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "Signer",
    "Ed25519Signer",
    "StealthSigner",
]
