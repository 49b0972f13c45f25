"""
StealthPay - Transaction Model
================================
Istruzioni e transazioni del ledger (modello account-based Ed25519).

Security Level: HIGH
Last Updated: 2026-10-18
Version: 1.0.0

Una transazione stealth contiene due istruzioni:
1. transfer del system program verso lo stealth address
2. memo con i 37 bytes di StealthMetadata
"""

from __future__ import annotations

import json
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from stealth_pay.constants import (
    MEMO_PROGRAM_ID,
    SYSTEM_PROGRAM_ID,
    SYSTEM_TRANSFER_INDEX,
)
from stealth_pay.domain.crypto_core import verify_signature
from stealth_pay.domain.models import PreparedPayment, StealthMetadata
from stealth_pay.domain.signers import Signer
from stealth_pay.errors import (
    InvalidKeyFormatError,
    InvalidSignatureError,
    SerializationError,
)
from stealth_pay.utils.base58 import base58_encode, base58_decode, decode_public_key


_TRANSFER_LAYOUT = struct.Struct("<IQ")


# ============================================================================
# INSTRUCTION
# ============================================================================

@dataclass(frozen=True)
class Instruction:
    """
    Istruzione di programma.
    
    Attributes:
        program_id (str): Programma invocato (base58)
        accounts (tuple): Account coinvolti (base58)
        data (bytes): Payload dell'istruzione
    """
    
    program_id: str
    accounts: Tuple[str, ...]
    data: bytes
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "program_id": self.program_id,
            "accounts": list(self.accounts),
            "data": self.data.hex(),
        }
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Instruction:
        try:
            return cls(
                program_id=data["program_id"],
                accounts=tuple(data["accounts"]),
                data=bytes.fromhex(data["data"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise SerializationError(f"Invalid instruction: {e}") from e


def transfer_instruction(source: str, destination: str, lamports: int) -> Instruction:
    """Transfer del system program ``source -> destination``"""
    if lamports <= 0:
        raise SerializationError(f"Transfer amount must be positive, got {lamports}")
    return Instruction(
        program_id=SYSTEM_PROGRAM_ID,
        accounts=(source, destination),
        data=_TRANSFER_LAYOUT.pack(SYSTEM_TRANSFER_INDEX, lamports),
    )


def decode_transfer(instruction: Instruction) -> Optional[Tuple[str, str, int]]:
    """
    Decodifica un transfer del system program.
    
    Returns:
        tuple: (source, destination, lamports) oppure None se non e' un transfer
    """
    if instruction.program_id != SYSTEM_PROGRAM_ID:
        return None
    if len(instruction.data) != _TRANSFER_LAYOUT.size or len(instruction.accounts) != 2:
        return None
    index, lamports = _TRANSFER_LAYOUT.unpack(instruction.data)
    if index != SYSTEM_TRANSFER_INDEX:
        return None
    source, destination = instruction.accounts
    return source, destination, lamports


def stealth_memo_instruction(metadata: StealthMetadata) -> Instruction:
    """Memo con il payload StealthMetadata (37 bytes)"""
    return Instruction(
        program_id=MEMO_PROGRAM_ID,
        accounts=(),
        data=metadata.encode(),
    )


def reference_memo_instruction(reference: str) -> Instruction:
    """Memo UTF-8 che distingue transazioni altrimenti identiche"""
    return Instruction(
        program_id=MEMO_PROGRAM_ID,
        accounts=(),
        data=reference.encode("utf-8"),
    )


def decode_stealth_memo(instruction: Instruction) -> Optional[StealthMetadata]:
    if instruction.program_id != MEMO_PROGRAM_ID:
        return None
    return StealthMetadata.try_decode(instruction.data)


# ============================================================================
# TRANSACTION
# ============================================================================

@dataclass
class Transaction:
    """
    Transazione firmata.
    
    L'identificativo (``signature``) e' la firma del fee payer in base58:
    essendo Ed25519 deterministica, e' nota prima dell'invio.
    
    Attributes:
        fee_payer (str): Account che paga la fee (primo firmatario)
        recent_blockhash (str): Riferimento recente del ledger
        instructions (list): Istruzioni in ordine
        signatures (dict): ``address -> firma`` (64 bytes)
    """
    
    fee_payer: str
    recent_blockhash: str
    instructions: List[Instruction]
    signatures: Dict[str, bytes] = field(default_factory=dict)
    
    def message_bytes(self) -> bytes:
        """Serializzazione deterministica del messaggio firmato"""
        message = {
            "fee_payer": self.fee_payer,
            "recent_blockhash": self.recent_blockhash,
            "instructions": [ix.to_dict() for ix in self.instructions],
        }
        return json.dumps(message, sort_keys=True, separators=(",", ":")).encode("utf-8")
    
    def required_signers(self) -> List[str]:
        """Fee payer seguito dalle sorgenti dei transfer (senza duplicati)"""
        signers = [self.fee_payer]
        for instruction in self.instructions:
            transfer = decode_transfer(instruction)
            if transfer and transfer[0] not in signers:
                signers.append(transfer[0])
        return signers
    
    def sign(self, *signers: Signer) -> Transaction:
        """
        Firma il messaggio con ciascun signer richiesto.
        
        Raises:
            InvalidSignatureError: Signer non richiesto dalla transazione
        """
        required = self.required_signers()
        message = self.message_bytes()
        for signer in signers:
            if signer.address not in required:
                raise InvalidSignatureError(
                    f"Signer {signer.address} is not required by this transaction"
                )
            self.signatures[signer.address] = signer.sign(message)
        return self
    
    @property
    def signature(self) -> Optional[str]:
        raw = self.signatures.get(self.fee_payer)
        return base58_encode(raw) if raw is not None else None
    
    def is_fully_signed(self) -> bool:
        return all(address in self.signatures for address in self.required_signers())
    
    def verify_signatures(self) -> bool:
        if not self.is_fully_signed():
            return False
        message = self.message_bytes()
        for address in self.required_signers():
            try:
                public_key = decode_public_key(address)
            except InvalidKeyFormatError:
                return False
            if not verify_signature(public_key, message, self.signatures[address]):
                return False
        return True
    
    def transfers(self) -> List[Tuple[str, str, int]]:
        return [t for t in (decode_transfer(ix) for ix in self.instructions) if t]
    
    def stealth_metadata(self) -> List[StealthMetadata]:
        return [m for m in (decode_stealth_memo(ix) for ix in self.instructions) if m]
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "fee_payer": self.fee_payer,
            "recent_blockhash": self.recent_blockhash,
            "instructions": [ix.to_dict() for ix in self.instructions],
            "signatures": {k: base58_encode(v) for k, v in self.signatures.items()},
        }
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Transaction:
        try:
            return cls(
                fee_payer=data["fee_payer"],
                recent_blockhash=data["recent_blockhash"],
                instructions=[Instruction.from_dict(ix) for ix in data["instructions"]],
                signatures={k: base58_decode(v) for k, v in data.get("signatures", {}).items()},
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise SerializationError(f"Invalid transaction: {e}") from e


# ============================================================================
# BUILDERS
# ============================================================================

def build_stealth_transfer(
    payer: Signer,
    payment: PreparedPayment,
    recent_blockhash: str,
    reference: Optional[str] = None,
) -> Transaction:
    """
    Transazione firmata: transfer verso lo stealth address + memo metadata.
    
    Args:
        payer: Signer che finanzia il pagamento e paga la fee
        payment: Pagamento preparato
        recent_blockhash: Riferimento recente del ledger
        reference: Memo aggiuntivo opzionale (es. id in coda), rende unica
            la transazione anche per pagamenti con contenuto identico
    """
    instructions = [
        transfer_instruction(payer.address, payment.stealth_address_b58, payment.amount),
        stealth_memo_instruction(payment.metadata()),
    ]
    if reference is not None:
        instructions.append(reference_memo_instruction(reference))
    tx = Transaction(
        fee_payer=payer.address,
        recent_blockhash=recent_blockhash,
        instructions=instructions,
    )
    return tx.sign(payer)


def build_transfer(
    source: Signer,
    destination: str,
    lamports: int,
    recent_blockhash: str,
    extra_instructions: Iterable[Instruction] = (),
) -> Transaction:
    """Transfer semplice firmato dalla sorgente (usato da unshield)"""
    tx = Transaction(
        fee_payer=source.address,
        recent_blockhash=recent_blockhash,
        instructions=[
            transfer_instruction(source.address, destination, lamports),
            *extra_instructions,
        ],
    )
    return tx.sign(source)


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "Instruction",
    "Transaction",
    "transfer_instruction",
    "decode_transfer",
    "stealth_memo_instruction",
    "reference_memo_instruction",
    "decode_stealth_memo",
    "build_stealth_transfer",
    "build_transfer",
]
