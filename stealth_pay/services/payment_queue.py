"""
StealthPay - Payment Queue
============================
Coda FIFO persistente di pagamenti stealth con settlement asincrono.

Security Level: HIGH
Last Updated: 2026-10-18
Version: 1.0.0

Features:
- Capacita' limitata (QueueFullError prima di qualsiasi modifica)
- Stato: Queued -> Settling -> Settled | Queued (retry) | Failed (dopo il cap)
- Batching per stealth address oltre la soglia (un blockhash per gruppo,
  ma transazione, firma e retry counter per singolo pagamento)
- Persistenza su SecureStorage sotto una chiave fissa
- Auto-settlement in background quando la rete e' raggiungibile

Idempotenza: la firma della transazione (deterministica) viene salvata
prima dell'invio. Al tentativo successivo il ledger viene interrogato con
quella firma: un transfer gia' confermato non viene mai reinviato.
Settling non viene mai persistito (serializzato come Queued).
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

from stealth_pay.constants import (
    AUTO_SETTLE_INTERVAL_SECONDS,
    BATCH_THRESHOLD,
    FAILED_RETENTION_HOURS,
    MAX_QUEUE_SIZE,
    MAX_RETRY_ATTEMPTS,
    QUEUE_FORMAT_VERSION,
    QUEUE_STORAGE_KEY,
    PaymentState,
    TERMINAL_STATES,
)
from stealth_pay.domain.models import PreparedPayment
from stealth_pay.domain.signers import Signer
from stealth_pay.errors import (
    BlockchainError,
    PaymentNotFoundError,
    QueueError,
    QueueFullError,
    SerializationError,
    StealthPayException,
    StorageError,
    StorageKeyNotFoundError,
)
from stealth_pay.ledger.base import Ledger
from stealth_pay.ledger.transactions import build_stealth_transfer
from stealth_pay.logging_setup import AuditLogger, PerformanceLogger, get_logger
from stealth_pay.network.monitor import NetworkStatus
from stealth_pay.storage.secure_storage import SecureStorage


# ============================================================================
# MODULE LOGGER
# ============================================================================

logger = get_logger("queue")


# ============================================================================
# PAYMENT STATUS
# ============================================================================

@dataclass(frozen=True)
class PaymentStatus:
    """
    Stato di un pagamento in coda.
    
    Attributes:
        state (PaymentState): Queued, Settling, Settled, Failed
        signature (str): Firma della transazione (solo Settled)
        reason (str): Ultimo errore (solo Failed)
    """
    
    state: PaymentState
    signature: Optional[str] = None
    reason: Optional[str] = None
    
    @classmethod
    def queued(cls) -> PaymentStatus:
        return cls(PaymentState.QUEUED)
    
    @classmethod
    def settling(cls) -> PaymentStatus:
        return cls(PaymentState.SETTLING)
    
    @classmethod
    def settled(cls, signature: str) -> PaymentStatus:
        return cls(PaymentState.SETTLED, signature=signature)
    
    @classmethod
    def failed(cls, reason: str) -> PaymentStatus:
        return cls(PaymentState.FAILED, reason=reason)
    
    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
    
    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"state": self.state.value}
        if self.signature is not None:
            data["signature"] = self.signature
        if self.reason is not None:
            data["reason"] = self.reason
        return data
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PaymentStatus:
        try:
            state = PaymentState(data["state"])
        except (KeyError, ValueError, TypeError) as e:
            raise SerializationError(f"Invalid payment status: {data!r}") from e
        
        status = cls(state, signature=data.get("signature"), reason=data.get("reason"))
        if state is PaymentState.SETTLED and not isinstance(status.signature, str):
            raise SerializationError("Settled status requires a signature")
        if state is PaymentState.FAILED and not isinstance(status.reason, str):
            raise SerializationError("Failed status requires a reason")
        return status
    
    def __str__(self) -> str:
        if self.state is PaymentState.SETTLED:
            return f"Settled({self.signature})"
        if self.state is PaymentState.FAILED:
            return f"Failed({self.reason})"
        return self.state.value.capitalize()


# ============================================================================
# QUEUED PAYMENT
# ============================================================================

@dataclass
class QueuedPayment:
    """
    Voce della coda, di proprieta' esclusiva di PaymentQueue.
    
    Attributes:
        id (str): Identificativo opaco (UUID4)
        payment (PreparedPayment): Pagamento preparato
        status (PaymentStatus): Stato corrente
        created_at (float): Timestamp di inserimento
        retry_count (int): Tentativi di settlement falliti
        updated_at (float): Ultimo cambio di stato
        pending_signature (str): Firma dell'ultima transazione inviata
    """
    
    id: str
    payment: PreparedPayment
    status: PaymentStatus
    created_at: float
    retry_count: int = 0
    updated_at: float = 0.0
    pending_signature: Optional[str] = None
    _payment_record: Optional[Dict[str, Any]] = field(default=None, init=False, repr=False, compare=False)
    
    def to_dict(self) -> Dict[str, Any]:
        # Settling e' transitorio: su disco resta Queued
        status = self.status
        if status.state is PaymentState.SETTLING:
            status = PaymentStatus.queued()
        if self._payment_record is None:
            self._payment_record = self.payment.to_dict()
        return {
            "id": self.id,
            "payment": self._payment_record,
            "status": status.to_dict(),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "retry_count": self.retry_count,
            "pending_signature": self.pending_signature,
        }
    
    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> QueuedPayment:
        if not isinstance(data, dict):
            raise SerializationError("Queued payment record must be an object")
        try:
            entry = cls(
                id=str(uuid.UUID(data["id"])),
                payment=PreparedPayment.from_dict(data["payment"]),
                status=PaymentStatus.from_dict(data["status"]),
                created_at=float(data["created_at"]),
                retry_count=int(data.get("retry_count", 0)),
                updated_at=float(data.get("updated_at", data["created_at"])),
                pending_signature=data.get("pending_signature"),
            )
        except SerializationError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise SerializationError(f"Invalid queued payment record: {e}") from e
        
        if entry.retry_count < 0:
            raise SerializationError("retry_count must be non-negative")
        if entry.status.state is PaymentState.SETTLING:
            entry.status = PaymentStatus.queued()
        return entry


@dataclass(frozen=True)
class SettlementOutcome:
    """Esito di un tentativo di settlement per un singolo pagamento"""
    
    payment_id: str
    status: PaymentStatus
    retry_count: int
    reconciled: bool = False


# ============================================================================
# PAYMENT QUEUE
# ============================================================================

class PaymentQueue:
    """
    Coda pagamenti offline-capable.
    
    Istanza di servizio esplicita (nessun singleton): va passata per
    riferimento a chi deve accodare o processare pagamenti.
    
    Concorrenza:
    - ``_lock`` serializza mutazioni e persistenza (sezioni brevi)
    - ``_pass_lock`` garantisce un solo processing pass alla volta;
      l'attesa della conferma sul ledger avviene fuori da ``_lock``,
      quindi ``enqueue`` resta disponibile durante un pass
    
    Args:
        ledger: Ledger async
        storage: SecureStorage per la persistenza
        network_status: Check di raggiungibilita' per l'auto-settlement
        payer: Signer che finanzia i pagamenti accodati
        max_size: Capacita' massima
        batch_threshold: Pendenti oltre i quali si raggruppa per destinatario
        max_retries: Tentativi prima di Failed
        poll_interval: Intervallo auto-settlement (secondi)
        failed_retention_seconds: Permanenza in coda dei pagamenti Failed
        audit: AuditLogger opzionale
        clock: Sorgente del tempo (test)
    
    Examples:
        >>> queue = PaymentQueue(ledger, storage, network, payer)
        >>> await queue.load_from_storage()
        >>> payment_id = await queue.enqueue(prepared)
        >>> outcomes = await queue.process_queue()
    """
    
    def __init__(
        self,
        ledger: Ledger,
        storage: SecureStorage,
        network_status: NetworkStatus,
        payer: Signer,
        max_size: int = MAX_QUEUE_SIZE,
        batch_threshold: int = BATCH_THRESHOLD,
        max_retries: int = MAX_RETRY_ATTEMPTS,
        poll_interval: float = AUTO_SETTLE_INTERVAL_SECONDS,
        failed_retention_seconds: float = FAILED_RETENTION_HOURS * 3600,
        audit: Optional[AuditLogger] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._ledger = ledger
        self._storage = storage
        self._network = network_status
        self._payer = payer
        
        self.max_size = max_size
        self.batch_threshold = batch_threshold
        self.max_retries = max_retries
        self.poll_interval = poll_interval
        self.failed_retention_seconds = failed_retention_seconds
        
        self._audit = audit
        self._clock = clock
        
        self._payments: "OrderedDict[str, QueuedPayment]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._pass_lock = asyncio.Lock()
        self._auto_task: Optional[asyncio.Task] = None
    
    @classmethod
    def from_settings(
        cls,
        settings,
        ledger: Ledger,
        storage: SecureStorage,
        network_status: NetworkStatus,
        payer: Signer,
        audit: Optional[AuditLogger] = None,
    ) -> PaymentQueue:
        return cls(
            ledger=ledger,
            storage=storage,
            network_status=network_status,
            payer=payer,
            max_size=settings.max_queue_size,
            batch_threshold=settings.batch_threshold,
            max_retries=settings.max_retry_attempts,
            poll_interval=settings.auto_settle_interval,
            failed_retention_seconds=settings.failed_retention_hours * 3600,
            audit=audit,
        )
    
    # ========================================================================
    # QUERIES
    # ========================================================================
    
    def __len__(self) -> int:
        return len(self._payments)
    
    def __contains__(self, payment_id: str) -> bool:
        return payment_id in self._payments
    
    def get_status(self, payment_id: str) -> Optional[PaymentStatus]:
        """Stato corrente, o None se il pagamento non e' in coda"""
        entry = self._payments.get(payment_id)
        return entry.status if entry is not None else None
    
    def get_payment(self, payment_id: str) -> Optional[QueuedPayment]:
        entry = self._payments.get(payment_id)
        return replace(entry) if entry is not None else None
    
    def payments(self) -> List[QueuedPayment]:
        """Snapshot ordinato (FIFO) delle voci"""
        return [replace(entry) for entry in self._payments.values()]
    
    def pending_count(self) -> int:
        return sum(1 for entry in self._payments.values() if not entry.status.is_terminal)
    
    # ========================================================================
    # MUTATIONS
    # ========================================================================
    
    async def enqueue(self, payment: PreparedPayment, pending_signature: Optional[str] = None) -> str:
        """
        Accoda un pagamento preparato.
        
        Args:
            payment: Pagamento preparato
            pending_signature: Firma di una transazione gia' inviata con esito
                incerto; il primo tentativo la verifica prima di reinviare
        
        Returns:
            str: Identificativo del pagamento
        
        Raises:
            QueueFullError: Coda alla capacita' massima (nessuna modifica)
            StorageError: Persistenza fallita (inserimento annullato)
        """
        async with self._lock:
            if len(self._payments) >= self.max_size:
                logger.warning(
                    "Payment queue full",
                    extra_data={"capacity": self.max_size}
                )
                raise QueueFullError(self.max_size)
            
            now = self._clock()
            entry = QueuedPayment(
                id=str(uuid.uuid4()),
                payment=payment,
                status=PaymentStatus.queued(),
                created_at=now,
                updated_at=now,
                pending_signature=pending_signature,
            )
            self._payments[entry.id] = entry
            
            try:
                await self._save_locked()
            except StorageError:
                del self._payments[entry.id]
                raise
        
        logger.info(
            "Payment queued",
            extra_data={
                "payment_id": entry.id,
                "stealth_address": payment.stealth_address_b58,
                "amount": payment.amount,
                "queue_size": len(self._payments),
            }
        )
        return entry.id
    
    async def remove(self, payment_id: str) -> None:
        """
        Rimuove un pagamento Queued o Failed.

        Un pagamento rimosso durante un pass non viene inviato.

        Raises:
            PaymentNotFoundError: Id sconosciuto
            QueueError: Pagamento in settlement
        """
        async with self._lock:
            entry = self._payments.get(payment_id)
            if entry is None:
                raise PaymentNotFoundError(
                    f"Payment {payment_id} not found",
                    details={"payment_id": payment_id}
                )
            if entry.status.state is PaymentState.SETTLING:
                raise QueueError(
                    f"Payment {payment_id} is settling and cannot be removed",
                    code="PAYMENT_SETTLING"
                )
            del self._payments[payment_id]
            await self._save_locked()
        
        logger.info("Payment removed", extra_data={"payment_id": payment_id})
    
    async def purge_failed(self) -> int:
        """Rimuove subito tutti i pagamenti Failed; ritorna quanti"""
        async with self._lock:
            failed = [pid for pid, e in self._payments.items() if e.status.state is PaymentState.FAILED]
            for payment_id in failed:
                del self._payments[payment_id]
            if failed:
                await self._save_locked()
        return len(failed)
    
    def _prune_expired_failed_locked(self) -> int:
        cutoff = self._clock() - self.failed_retention_seconds
        expired = [
            pid for pid, e in self._payments.items()
            if e.status.state is PaymentState.FAILED and e.updated_at <= cutoff
        ]
        for payment_id in expired:
            del self._payments[payment_id]
        if expired:
            logger.info("Expired failed payments pruned", extra_data={"count": len(expired)})
        return len(expired)
    
    # ========================================================================
    # PROCESSING
    # ========================================================================
    
    async def process_queue(self) -> List[SettlementOutcome]:
        """
        Processing pass su tutte le voci non terminali.
        
        Oltre ``batch_threshold`` pendenti le voci vengono raggruppate per
        stealth address: un solo blockhash per gruppo, ma ogni pagamento ha
        la propria transazione e il proprio retry counter.
        Dopo il pass i Settled vengono rimossi, i Failed restano
        interrogabili fino alla scadenza della retention.
        
        Returns:
            list: SettlementOutcome per ogni pagamento tentato
        
        Raises:
            StorageError: Persistenza fallita (lo stato in memoria resta coerente)
        """
        async with self._pass_lock:
            async with self._lock:
                pruned = self._prune_expired_failed_locked()
                pending = [e for e in self._payments.values() if not e.status.is_terminal]
                if not pending:
                    if pruned:
                        await self._save_locked()
                    return []
            
            outcomes: List[SettlementOutcome] = []
            try:
                with PerformanceLogger(logger, "process_queue", threshold_ms=30_000):
                    if len(pending) > self.batch_threshold:
                        outcomes = await self._settle_batched(pending)
                    else:
                        for entry in pending:
                            outcome = await self._settle_one(entry)
                            if outcome is not None:
                                outcomes.append(outcome)
            finally:
                async with self._lock:
                    for entry in pending:
                        if entry.status.state is PaymentState.SETTLING:
                            entry.status = PaymentStatus.queued()
                    settled = [
                        pid for pid, e in self._payments.items()
                        if e.status.state is PaymentState.SETTLED
                    ]
                    for payment_id in settled:
                        del self._payments[payment_id]
                    await self._save_locked()
            
            logger.info(
                "Queue processing pass completed",
                extra_data={
                    "attempted": len(outcomes),
                    "settled": sum(1 for o in outcomes if o.status.state is PaymentState.SETTLED),
                    "failed": sum(1 for o in outcomes if o.status.state is PaymentState.FAILED),
                    "remaining": len(self._payments),
                }
            )
            return outcomes
    
    async def _settle_batched(self, pending: List[QueuedPayment]) -> List[SettlementOutcome]:
        groups: "OrderedDict[bytes, List[QueuedPayment]]" = OrderedDict()
        for entry in pending:
            groups.setdefault(entry.payment.stealth_address, []).append(entry)
        
        logger.info(
            "Batched settlement",
            extra_data={"payments": len(pending), "groups": len(groups)}
        )
        
        outcomes: List[SettlementOutcome] = []
        for members in groups.values():
            async with self._lock:
                members = [e for e in members if self._is_current_locked(e)]
                for entry in members:
                    self._set_status(entry, PaymentStatus.settling())
            if not members:
                continue
            
            try:
                blockhash = await self._ledger.get_latest_blockhash()
            except BlockchainError as e:
                # Nessun riferimento: tentativo fallito per ogni membro
                outcomes.extend(self._record_failure(entry, e) for entry in members)
                continue
            
            for entry in members:
                outcome = await self._settle_one(entry, blockhash)
                if outcome is not None:
                    outcomes.append(outcome)
        return outcomes
    
    async def _settle_one(
        self,
        entry: QueuedPayment,
        blockhash: Optional[str] = None,
    ) -> Optional[SettlementOutcome]:
        async with self._lock:
            if not self._is_current_locked(entry):
                # Rimosso durante il pass: nessun invio
                logger.info(
                    "Removed payment skipped",
                    extra_data={"payment_id": entry.id}
                )
                return None
            self._set_status(entry, PaymentStatus.settling())
        
        try:
            if entry.pending_signature is not None:
                confirmed = await self._ledger.get_transaction(entry.pending_signature)
                if confirmed is not None:
                    return self._record_success(entry, confirmed.signature, reconciled=True)
            
            if blockhash is None:
                blockhash = await self._ledger.get_latest_blockhash()
            
            tx = build_stealth_transfer(self._payer, entry.payment, blockhash, reference=entry.id)
            
            # Marker durevole prima dell'invio
            async with self._lock:
                entry.pending_signature = tx.signature
                await self._save_locked()
            
            signature = await self._ledger.send_and_confirm_transaction(tx)
        
        except BlockchainError as e:
            return self._record_failure(entry, e)
        except StorageError:
            self._set_status(entry, PaymentStatus.queued())
            raise
        except StealthPayException as e:
            # Errore non transitorio: ritentare non cambia l'esito
            return self._record_failure(entry, e, permanent=True)
        
        return self._record_success(entry, signature)
    
    def _is_current_locked(self, entry: QueuedPayment) -> bool:
        return self._payments.get(entry.id) is entry
    
    def _set_status(self, entry: QueuedPayment, status: PaymentStatus) -> None:
        entry.status = status
        entry.updated_at = self._clock()
    
    def _record_success(self, entry: QueuedPayment, signature: str, reconciled: bool = False) -> SettlementOutcome:
        self._set_status(entry, PaymentStatus.settled(signature))
        entry.pending_signature = None
        
        logger.info(
            "Payment settled",
            extra_data={
                "payment_id": entry.id,
                "signature": signature,
                "reconciled": reconciled,
            }
        )
        if self._audit is not None:
            self._audit.log_settlement(
                entry.id, entry.payment.stealth_address_b58, entry.payment.amount, signature
            )
        return SettlementOutcome(entry.id, entry.status, entry.retry_count, reconciled)
    
    def _record_failure(
        self,
        entry: QueuedPayment,
        error: StealthPayException,
        permanent: bool = False,
    ) -> SettlementOutcome:
        entry.retry_count += 1
        reason = error.message
        
        if permanent or entry.retry_count >= self.max_retries:
            self._set_status(entry, PaymentStatus.failed(reason))
            logger.error(
                "Payment settlement failed permanently",
                extra_data={
                    "payment_id": entry.id,
                    "retry_count": entry.retry_count,
                    "reason": reason,
                }
            )
        else:
            self._set_status(entry, PaymentStatus.queued())
            logger.warning(
                "Payment settlement attempt failed, will retry",
                extra_data={
                    "payment_id": entry.id,
                    "retry_count": entry.retry_count,
                    "max_retries": self.max_retries,
                    "reason": reason,
                }
            )
        return SettlementOutcome(entry.id, entry.status, entry.retry_count)
    
    # ========================================================================
    # PERSISTENCE
    # ========================================================================
    
    def _serialize(self) -> bytes:
        snapshot = {
            "version": QUEUE_FORMAT_VERSION,
            "payments": [entry.to_dict() for entry in self._payments.values()],
        }
        return json.dumps(snapshot, separators=(",", ":")).encode("utf-8")
    
    async def _save_locked(self) -> None:
        await self._storage.store_data(QUEUE_STORAGE_KEY, self._serialize())
    
    async def save_to_storage(self) -> None:
        async with self._lock:
            await self._save_locked()
    
    async def load_from_storage(self) -> int:
        """
        Ripristina la coda dallo storage.
        
        Chiave assente = coda vuota. Lo stato in memoria viene sostituito
        solo se l'intero snapshot e' valido.
        
        Returns:
            int: Numero di voci caricate
        
        Raises:
            SerializationError: Dati salvati strutturalmente invalidi
            StorageError: Lettura fallita
        """
        async with self._lock:
            try:
                raw = await self._storage.load_data(QUEUE_STORAGE_KEY)
            except StorageKeyNotFoundError:
                self._payments = OrderedDict()
                logger.info("No persisted payment queue, starting empty")
                return 0
            
            try:
                snapshot = json.loads(raw.decode("utf-8"))
            except (UnicodeDecodeError, ValueError) as e:
                raise SerializationError(f"Persisted queue is not valid JSON: {e}") from e
            
            if not isinstance(snapshot, dict) or not isinstance(snapshot.get("payments"), list):
                raise SerializationError("Persisted queue has an invalid structure")
            if snapshot.get("version") != QUEUE_FORMAT_VERSION:
                raise SerializationError(
                    f"Unsupported queue format version: {snapshot.get('version')!r}"
                )
            
            loaded: "OrderedDict[str, QueuedPayment]" = OrderedDict()
            for record in snapshot["payments"]:
                entry = QueuedPayment.from_dict(record)
                if entry.id in loaded:
                    raise SerializationError(f"Duplicate payment id in persisted queue: {entry.id}")
                loaded[entry.id] = entry
            
            if len(loaded) > self.max_size:
                logger.warning(
                    "Persisted queue exceeds configured capacity",
                    extra_data={"entries": len(loaded), "capacity": self.max_size}
                )
            
            self._payments = loaded
        
        logger.info(
            "Payment queue loaded",
            extra_data={"entries": len(loaded), "pending": self.pending_count()}
        )
        return len(loaded)
    
    # ========================================================================
    # AUTO-SETTLEMENT
    # ========================================================================
    
    def start_auto_settlement(self) -> asyncio.Task:
        """Avvia il loop di auto-settlement (idempotente)"""
        if self._auto_task is None or self._auto_task.done():
            self._auto_task = asyncio.create_task(self._auto_settlement_loop())
            logger.info(
                "Auto-settlement started",
                extra_data={"poll_interval": self.poll_interval}
            )
        return self._auto_task
    
    async def stop_auto_settlement(self) -> None:
        if self._auto_task is None:
            return
        self._auto_task.cancel()
        await asyncio.gather(self._auto_task, return_exceptions=True)
        self._auto_task = None
        logger.info("Auto-settlement stopped")
    
    @property
    def auto_settlement_running(self) -> bool:
        return self._auto_task is not None and not self._auto_task.done()
    
    async def _auto_settlement_loop(self):
        while True:
            try:
                if self._network.is_online() and self.pending_count() > 0:
                    await self.process_queue()
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Auto-settlement error: {e}", exc_info=True)
                await asyncio.sleep(self.poll_interval)


__all__ = [
    "PaymentStatus",
    "QueuedPayment",
    "SettlementOutcome",
    "PaymentQueue",
]
