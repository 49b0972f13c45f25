"""
StealthPay - Ledger
=====================
Modello transazioni, interfaccia ledger async e implementazione in memoria.
"""

from stealth_pay.ledger.base import ConfirmedTransaction, Ledger, ThreadedLedger
from stealth_pay.ledger.memory import InMemoryLedger
from stealth_pay.ledger.transactions import (
    Instruction,
    Transaction,
    transfer_instruction,
    decode_transfer,
    stealth_memo_instruction,
    reference_memo_instruction,
    decode_stealth_memo,
    build_stealth_transfer,
    build_transfer,
)

__all__ = [
    "ConfirmedTransaction",
    "Ledger",
    "ThreadedLedger",
    "InMemoryLedger",
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
