"""
StealthPay - Domain Models
============================
Strutture dati del flusso stealth: derivazione, pagamento preparato,
metadata on-chain e pagamento rilevato.

Security Level: HIGH
Last Updated: 2026-10-18
Version: 1.0.0
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from stealth_pay.constants import (
    STEALTH_VERSION,
    STEALTH_METADATA_SIZE,
    VIEWING_TAG_SIZE,
    PUBLIC_KEY_SIZE,
)
from stealth_pay.errors import SerializationError, InvalidKeyFormatError
from stealth_pay.utils.base58 import encode_public_key, decode_public_key


def _check_tag(tag: bytes) -> None:
    if len(tag) != VIEWING_TAG_SIZE:
        raise SerializationError(
            f"Viewing tag must be {VIEWING_TAG_SIZE} bytes, got {len(tag)}"
        )


# ============================================================================
# STEALTH DERIVATION OUTPUT
# ============================================================================

@dataclass(frozen=True)
class StealthAddressOutput:
    """
    Output del generatore (lato sender), uno per pagamento.
    
    Attributes:
        stealth_address (bytes): Chiave pubblica one-time (32 bytes)
        ephemeral_public_key (bytes): Chiave effimera pubblicata on-chain
        viewing_tag (bytes): Pre-filtro di 4 bytes
    """
    
    stealth_address: bytes
    ephemeral_public_key: bytes
    viewing_tag: bytes
    
    def __post_init__(self):
        _check_tag(self.viewing_tag)
    
    @property
    def stealth_address_b58(self) -> str:
        return encode_public_key(self.stealth_address)


# ============================================================================
# PREPARED PAYMENT
# ============================================================================

@dataclass(frozen=True)
class PreparedPayment:
    """
    Intenzione di pagamento non firmata, indipendente da settlement
    immediato o accodato.
    
    Attributes:
        stealth_address (bytes): Destinazione one-time
        amount (int): Importo in lamports
        ephemeral_public_key (bytes): Chiave effimera da pubblicare
        viewing_tag (bytes): Viewing tag (4 bytes)
    """
    
    stealth_address: bytes
    amount: int
    ephemeral_public_key: bytes
    viewing_tag: bytes
    
    def __post_init__(self):
        if not isinstance(self.amount, int) or isinstance(self.amount, bool) or self.amount <= 0:
            raise SerializationError(
                f"Payment amount must be a positive integer, got {self.amount!r}",
                code="INVALID_AMOUNT"
            )
        _check_tag(self.viewing_tag)
    
    @classmethod
    def from_output(cls, output: StealthAddressOutput, amount: int) -> PreparedPayment:
        return cls(
            stealth_address=output.stealth_address,
            amount=amount,
            ephemeral_public_key=output.ephemeral_public_key,
            viewing_tag=output.viewing_tag,
        )
    
    @property
    def stealth_address_b58(self) -> str:
        return encode_public_key(self.stealth_address)
    
    def metadata(self, version: int = STEALTH_VERSION) -> StealthMetadata:
        return StealthMetadata(
            version=version,
            viewing_tag=self.viewing_tag,
            ephemeral_public_key=self.ephemeral_public_key,
        )
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "stealth_address": encode_public_key(self.stealth_address),
            "amount": self.amount,
            "ephemeral_public_key": encode_public_key(self.ephemeral_public_key),
            "viewing_tag": self.viewing_tag.hex(),
        }
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PreparedPayment:
        """
        Raises:
            SerializationError: Campi mancanti o malformati
        """
        try:
            return cls(
                stealth_address=decode_public_key(data["stealth_address"]),
                amount=data["amount"],
                ephemeral_public_key=decode_public_key(data["ephemeral_public_key"]),
                viewing_tag=bytes.fromhex(data["viewing_tag"]),
            )
        except SerializationError:
            raise
        except (InvalidKeyFormatError, KeyError, TypeError, ValueError, AttributeError) as e:
            raise SerializationError(f"Invalid prepared payment record: {e}") from e


# ============================================================================
# ON-CHAIN METADATA
# ============================================================================

@dataclass(frozen=True)
class StealthMetadata:
    """
    Payload memo di 37 bytes: ``version(1) || viewing_tag(4) || ephemeral_pk(32)``.
    
    Examples:
        >>> meta = StealthMetadata(1, tag, eph_pk)
        >>> StealthMetadata.decode(meta.encode()) == meta
        True
    """
    
    version: int
    viewing_tag: bytes
    ephemeral_public_key: bytes
    
    def encode(self) -> bytes:
        _check_tag(self.viewing_tag)
        if len(self.ephemeral_public_key) != PUBLIC_KEY_SIZE:
            raise SerializationError("Ephemeral public key must be 32 bytes")
        if not 0 <= self.version <= 255:
            raise SerializationError(f"Metadata version out of range: {self.version}")
        return bytes([self.version]) + self.viewing_tag + self.ephemeral_public_key
    
    @classmethod
    def decode(cls, data: bytes) -> StealthMetadata:
        if len(data) != STEALTH_METADATA_SIZE:
            raise SerializationError(
                f"Stealth metadata must be {STEALTH_METADATA_SIZE} bytes, got {len(data)}"
            )
        return cls(
            version=data[0],
            viewing_tag=bytes(data[1:1 + VIEWING_TAG_SIZE]),
            ephemeral_public_key=bytes(data[1 + VIEWING_TAG_SIZE:]),
        )
    
    @classmethod
    def try_decode(cls, data: bytes) -> Optional[StealthMetadata]:
        """Decode tollerante per lo scanner: None se non e' metadata stealth"""
        if len(data) != STEALTH_METADATA_SIZE:
            return None
        return cls.decode(data)


# ============================================================================
# DETECTED PAYMENT
# ============================================================================

@dataclass(frozen=True)
class DetectedPayment:
    """
    Pagamento in ingresso verificato dallo scanner (sola lettura).
    
    Attributes:
        stealth_address (bytes): Indirizzo one-time posseduto
        amount (int): Importo trasferito
        ephemeral_public_key (bytes): Chiave effimera del sender
        viewing_tag (bytes): Viewing tag pubblicato
        slot (int): Slot della transazione
        signature (str): Firma (id) della transazione
    """
    
    stealth_address: bytes
    amount: int
    ephemeral_public_key: bytes
    viewing_tag: bytes
    slot: int
    signature: str
    
    @property
    def stealth_address_b58(self) -> str:
        return encode_public_key(self.stealth_address)
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "stealth_address": encode_public_key(self.stealth_address),
            "amount": self.amount,
            "ephemeral_public_key": encode_public_key(self.ephemeral_public_key),
            "viewing_tag": self.viewing_tag.hex(),
            "slot": self.slot,
            "signature": self.signature,
        }


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "StealthAddressOutput",
    "PreparedPayment",
    "StealthMetadata",
    "DetectedPayment",
]
