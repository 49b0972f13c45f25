"""
StealthPay - Ledger Interface
===============================
Collaboratore ledger asincrono usato da coda, scanner e wallet manager.

Security Level: HIGH
Last Updated: 2026-10-18
Version: 1.0.0

Tutte le chiamate sono ``async``: un client RPC bloccante va avvolto in
:class:`ThreadedLedger`, che esegue ogni chiamata in un worker thread.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from stealth_pay.errors import BlockchainError, StealthPayException
from stealth_pay.ledger.transactions import Transaction
from stealth_pay.logging_setup import get_logger


logger = get_logger("ledger")


# ============================================================================
# CONFIRMED TRANSACTION
# ============================================================================

@dataclass(frozen=True)
class ConfirmedTransaction:
    """Transazione confermata in uno slot"""
    
    signature: str
    slot: int
    transaction: Transaction
    fee: int = 0
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "slot": self.slot,
            "fee": self.fee,
            "transaction": self.transaction.to_dict(),
        }


# ============================================================================
# LEDGER PROTOCOL
# ============================================================================

@runtime_checkable
class Ledger(Protocol):
    """
    Interfaccia minima del ledger esterno.
    
    Ogni errore di I/O o rifiuto deve emergere come BlockchainError.
    """
    
    async def get_latest_blockhash(self) -> str:
        """Riferimento recente per la costruzione di transazioni"""
        ...
    
    async def send_and_confirm_transaction(self, transaction: Transaction) -> str:
        """Invia e attende conferma; ritorna la firma della transazione"""
        ...
    
    async def get_balance(self, address: str) -> int:
        ...
    
    async def account_exists(self, address: str) -> bool:
        ...
    
    async def get_slot(self) -> int:
        """Slot corrente (head)"""
        ...
    
    async def get_transaction(self, signature: str) -> Optional[ConfirmedTransaction]:
        ...
    
    async def get_block_transactions(self, slot: int) -> List[ConfirmedTransaction]:
        """Transazioni confermate nello slot (vuoto se slot saltato)"""
        ...


# ============================================================================
# BLOCKING CLIENT ADAPTER
# ============================================================================

class ThreadedLedger:
    """
    Adatta un client ledger sincrono (bloccante) all'interfaccia async.
    
    Ogni chiamata gira in ``asyncio.to_thread`` con timeout opzionale, cosi'
    una RPC lenta non blocca l'event loop ne' il task di auto-settlement.
    Errori di rete e timeout vengono convertiti in BlockchainError.
    
    Args:
        client: Oggetto con gli stessi metodi di :class:`Ledger`, sincroni
        timeout: Timeout per chiamata (secondi), None = nessuno
    
    Example:
        >>> ledger = ThreadedLedger(MyRpcClient(url), timeout=30)
        >>> slot = await ledger.get_slot()
    """
    
    def __init__(self, client: Any, timeout: Optional[float] = None):
        self._client = client
        self._timeout = timeout
    
    async def _call(self, method: str, *args):
        func = getattr(self._client, method)
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), self._timeout)
        except StealthPayException:
            raise
        except asyncio.TimeoutError as e:
            logger.warning(
                "Ledger call timed out",
                extra_data={"method": method, "timeout": self._timeout}
            )
            raise BlockchainError(
                f"Ledger call {method} timed out after {self._timeout}s",
                code="LEDGER_TIMEOUT"
            ) from e
        except (OSError, ConnectionError) as e:
            raise BlockchainError(
                f"Ledger call {method} failed: {e}",
                code="LEDGER_IO_ERROR"
            ) from e
    
    async def get_latest_blockhash(self) -> str:
        return await self._call("get_latest_blockhash")
    
    async def send_and_confirm_transaction(self, transaction: Transaction) -> str:
        return await self._call("send_and_confirm_transaction", transaction)
    
    async def get_balance(self, address: str) -> int:
        return await self._call("get_balance", address)
    
    async def account_exists(self, address: str) -> bool:
        return await self._call("account_exists", address)
    
    async def get_slot(self) -> int:
        return await self._call("get_slot")
    
    async def get_transaction(self, signature: str) -> Optional[ConfirmedTransaction]:
        return await self._call("get_transaction", signature)
    
    async def get_block_transactions(self, slot: int) -> List[ConfirmedTransaction]:
        return await self._call("get_block_transactions", slot)


__all__ = [
    "ConfirmedTransaction",
    "Ledger",
    "ThreadedLedger",
]
