"""
StealthPay - In-Memory Ledger
===============================
Ledger locale deterministico per test, demo e sviluppo offline.

Security Level: LOW (non per produzione)
Last Updated: 2026-10-18
Version: 1.0.0

Semantica:
- Ogni transazione confermata produce un nuovo slot (un blocco)
- Blockhash valido per BLOCKHASH_VALIDITY_SLOTS slot
- Fee = FEE_PER_SIGNATURE_LAMPORTS per firma, addebitata al fee payer
- Applicazione atomica: saldo insufficiente -> nessun effetto
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from stealth_pay.constants import BLOCKHASH_VALIDITY_SLOTS, FEE_PER_SIGNATURE_LAMPORTS
from stealth_pay.domain.crypto_core import compute_sha256
from stealth_pay.errors import (
    BlockchainError,
    BlockhashNotFoundError,
    TransactionRejectedError,
)
from stealth_pay.ledger.base import ConfirmedTransaction
from stealth_pay.ledger.transactions import Transaction
from stealth_pay.logging_setup import get_logger
from stealth_pay.utils.base58 import base58_encode


logger = get_logger("ledger.memory")


class InMemoryLedger:
    """
    Implementazione in memoria di :class:`stealth_pay.ledger.base.Ledger`.
    
    Args:
        fee_per_signature: Fee per firma (lamports)
        blockhash_validity: Slot di validita' di un blockhash
        latency: Ritardo simulato di conferma (secondi)
    
    Example:
        >>> ledger = InMemoryLedger()
        >>> ledger.airdrop(payer.address, 10_000_000)
        >>> sig = await ledger.send_and_confirm_transaction(tx)
    """
    
    def __init__(
        self,
        fee_per_signature: int = FEE_PER_SIGNATURE_LAMPORTS,
        blockhash_validity: int = BLOCKHASH_VALIDITY_SLOTS,
        latency: float = 0.0,
    ):
        self.fee_per_signature = fee_per_signature
        self.blockhash_validity = blockhash_validity
        self.latency = latency
        
        self._balances: Dict[str, int] = {}
        self._slot = 0
        self._blocks: Dict[int, List[ConfirmedTransaction]] = {}
        self._blockhashes: Dict[str, int] = {}
        self._transactions: Dict[str, ConfirmedTransaction] = {}
        self._available = True
        self._latest_blockhash = ""
        
        self.submitted_count = 0
        self._register_blockhash()
    
    # ========================================================================
    # TEST CONTROLS
    # ========================================================================
    
    def airdrop(self, address: str, lamports: int) -> None:
        """Accredita lamports a un indirizzo (fuori da qualsiasi blocco)"""
        if lamports <= 0:
            raise ValueError("Airdrop amount must be positive")
        self._balances[address] = self._balances.get(address, 0) + lamports
    
    def advance_slots(self, count: int = 1) -> int:
        """Avanza la head di ``count`` slot vuoti"""
        for _ in range(count):
            self._slot += 1
            self._register_blockhash()
        return self._slot
    
    def set_available(self, available: bool) -> None:
        """Simula un ledger irraggiungibile: ogni RPC solleva BlockchainError"""
        self._available = available
    
    @property
    def is_available(self) -> bool:
        return self._available
    
    # ========================================================================
    # INTERNALS
    # ========================================================================
    
    def _register_blockhash(self) -> str:
        blockhash = base58_encode(compute_sha256(b"stealthpay-memory-ledger:%d" % self._slot))
        self._blockhashes[blockhash] = self._slot
        self._latest_blockhash = blockhash
        return blockhash
    
    def _ensure_available(self, method: str) -> None:
        if not self._available:
            raise BlockchainError(
                f"Ledger unreachable ({method})",
                code="LEDGER_UNAVAILABLE"
            )
    
    def _check_blockhash(self, blockhash: str) -> None:
        issued = self._blockhashes.get(blockhash)
        if issued is None or self._slot - issued > self.blockhash_validity:
            raise BlockhashNotFoundError(
                "Blockhash not found or expired",
                details={"blockhash": blockhash}
            )
    
    # ========================================================================
    # LEDGER INTERFACE
    # ========================================================================
    
    async def get_latest_blockhash(self) -> str:
        self._ensure_available("get_latest_blockhash")
        return self._latest_blockhash
    
    async def send_and_confirm_transaction(self, transaction: Transaction) -> str:
        self._ensure_available("send_and_confirm_transaction")
        if self.latency:
            await asyncio.sleep(self.latency)
        # Il ledger puo' cadere durante l'attesa
        self._ensure_available("send_and_confirm_transaction")
        
        self.submitted_count += 1
        signature = transaction.signature
        
        if signature is None or not transaction.verify_signatures():
            raise TransactionRejectedError("Missing or invalid transaction signatures")
        
        if signature in self._transactions:
            raise TransactionRejectedError(
                "Transaction already processed",
                details={"signature": signature}
            )
        
        self._check_blockhash(transaction.recent_blockhash)
        
        fee = self.fee_per_signature * len(transaction.signatures)
        balances = dict(self._balances)
        
        def debit(address: str, amount: int) -> None:
            available = balances.get(address, 0)
            if available < amount:
                raise TransactionRejectedError(
                    "Insufficient funds for transaction",
                    details={"address": address, "balance": available, "required": amount}
                )
            balances[address] = available - amount
        
        debit(transaction.fee_payer, fee)
        for source, destination, lamports in transaction.transfers():
            debit(source, lamports)
            balances[destination] = balances.get(destination, 0) + lamports
        
        # Commit atomico in un nuovo slot
        self._balances = {address: amount for address, amount in balances.items() if amount > 0}
        self.advance_slots(1)
        
        confirmed = ConfirmedTransaction(
            signature=signature,
            slot=self._slot,
            transaction=transaction,
            fee=fee,
        )
        self._blocks.setdefault(self._slot, []).append(confirmed)
        self._transactions[signature] = confirmed
        
        logger.debug(
            "Transaction confirmed",
            extra_data={"signature": signature, "slot": self._slot, "fee": fee}
        )
        return signature
    
    async def get_balance(self, address: str) -> int:
        self._ensure_available("get_balance")
        return self._balances.get(address, 0)
    
    async def account_exists(self, address: str) -> bool:
        self._ensure_available("account_exists")
        return address in self._balances
    
    async def get_slot(self) -> int:
        self._ensure_available("get_slot")
        return self._slot
    
    async def get_transaction(self, signature: str) -> Optional[ConfirmedTransaction]:
        self._ensure_available("get_transaction")
        return self._transactions.get(signature)
    
    async def get_block_transactions(self, slot: int) -> List[ConfirmedTransaction]:
        self._ensure_available("get_block_transactions")
        return list(self._blocks.get(slot, []))


__all__ = ["InMemoryLedger"]
