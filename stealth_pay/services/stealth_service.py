"""
StealthPay - Stealth Wallet Service
=====================================
Service layer che compone keypair, generator, scanner e coda pagamenti.

Security Level: HIGH
Last Updated: 2026-10-18
Version: 1.0.0

Operazioni esposte:
- Meta-address pubblicabile
- Preparazione e invio pagamenti (settlement immediato o coda)
- Scansione pagamenti in arrivo
- Shield / unshield tra indirizzi regolari e stealth address
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Union

from stealth_pay.config import StealthSettings, get_settings
from stealth_pay.domain.crypto_core import secret_scope
from stealth_pay.domain.keypairs import KeyPair, PublicIdentity
from stealth_pay.domain.models import DetectedPayment, PreparedPayment
from stealth_pay.domain.signers import Signer, StealthSigner
from stealth_pay.errors import (
    BlockchainError,
    InsufficientBalanceError,
    QueueError,
    TransactionRejectedError,
)
from stealth_pay.ledger.base import Ledger
from stealth_pay.ledger.transactions import build_stealth_transfer, build_transfer
from stealth_pay.logging_setup import AuditLogger, get_logger
from stealth_pay.network.monitor import NetworkStatus, StaticNetworkStatus
from stealth_pay.services.payment_queue import PaymentQueue, PaymentStatus
from stealth_pay.storage.secure_storage import SecureStorage
from stealth_pay.utils.base58 import decode_public_key
from stealth_pay.wallet.generator import StealthAddressGenerator
from stealth_pay.wallet.scanner import StealthScanner


# ============================================================================
# MODULE LOGGER
# ============================================================================

logger = get_logger("services.stealth")


# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True)
class SendResult:
    """
    Esito di send_payment.

    ``Queued`` e' un esito normale: il pagamento verra' regolato dalla coda.
    """

    status: PaymentStatus
    payment_id: Optional[str] = None

    @property
    def settled(self) -> bool:
        return self.status.signature is not None

    @property
    def signature(self) -> Optional[str]:
        return self.status.signature


@dataclass(frozen=True)
class ShieldResult:
    """Transazione di shield e stealth address di destinazione"""

    signature: str
    payment: PreparedPayment


# ============================================================================
# STEALTH WALLET MANAGER
# ============================================================================

class StealthWalletManager:
    """
    Service per wallet stealth: unico punto di accesso per i chiamanti.

    Features:
    - Meta-address e preparazione pagamenti (solo chiavi pubbliche)
    - Invio con fallback sulla coda offline
    - Scansione incrementale dei pagamenti ricevuti
    - Shield/unshield con chiave one-time verificata prima di firmare

    Attributes:
        keypair: KeyPair locale (proprietario dei segreti)
        ledger: Ledger async
        queue: PaymentQueue opzionale
        payer: Signer per il settlement immediato (opzionale)
        config: Settings

    Examples:
        >>> manager = StealthWalletManager(keypair, ledger, queue=queue, payer=payer)
        >>> prepared = manager.prepare_payment(receiver_meta, 1_000_000)
        >>> result = await manager.send_payment(prepared)
        >>> incoming = await manager.scan_incoming()
    """

    def __init__(
        self,
        keypair: KeyPair,
        ledger: Ledger,
        storage: Optional[SecureStorage] = None,
        queue: Optional[PaymentQueue] = None,
        payer: Optional[Signer] = None,
        network_status: Optional[NetworkStatus] = None,
        config: Optional[StealthSettings] = None,
        audit: Optional[AuditLogger] = None,
    ):
        """
        Initialize wallet manager.

        Args:
            keypair: KeyPair del wallet
            ledger: Ledger async
            storage: SecureStorage per cursore di scansione
            queue: Coda pagamenti per invii differiti
            payer: Signer che finanzia i pagamenti immediati
            network_status: Stato rete (default: sempre online)
            config: Settings (default: get_settings())
            audit: AuditLogger per shield/unshield/settlement
        """
        self.keypair = keypair
        self.ledger = ledger
        self.storage = storage
        self.queue = queue
        self.payer = payer
        self.network = network_status or StaticNetworkStatus(online=True)
        self.config = config or get_settings()
        self.audit = audit

        self.generator = StealthAddressGenerator(cache_size=self.config.generator_cache_size)
        self.scanner = StealthScanner.from_keypair(keypair, ledger=ledger, storage=storage)

        logger.info(
            "Stealth wallet manager initialized",
            extra_data={
                "meta_address": keypair.to_meta_address(),
                "queue": queue is not None,
                "payer": payer.address if payer is not None else None,
            }
        )

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def start(self) -> None:
        """Ripristina cursore e coda dallo storage, avvia l'auto-settlement"""
        await self.scanner.load_scan_index()
        if self.queue is not None:
            await self.queue.load_from_storage()
            self.queue.start_auto_settlement()

    async def stop(self) -> None:
        if self.queue is not None:
            await self.queue.stop_auto_settlement()
            await self.queue.save_to_storage()
        await self.scanner.save_scan_index()

    def close(self) -> None:
        """Azzera i segreti detenuti dal manager"""
        self.scanner.zeroize()

    # ========================================================================
    # SENDER FLOW
    # ========================================================================

    def get_meta_address(self) -> str:
        return self.keypair.to_meta_address()

    def prepare_payment(
        self,
        receiver: Union[str, PublicIdentity],
        amount: int,
    ) -> PreparedPayment:
        """
        Prepara un pagamento verso un meta-address.

        Raises:
            InvalidMetaAddressError: Meta-address invalido
            InvalidKeyFormatError: Chiavi del destinatario invalide
            SerializationError: Importo non positivo
        """
        return self.generator.prepare_payment(receiver, amount)

    async def send_payment(self, prepared: PreparedPayment) -> SendResult:
        """
        Invia un pagamento preparato.

        Con payer e rete disponibili tenta il settlement immediato; in caso
        di errore del ledger (o senza payer) il pagamento passa alla coda.

        Returns:
            SendResult: Settled(signature) oppure Queued con id in coda

        Raises:
            BlockchainError: Settlement fallito e nessuna coda configurata
            QueueError: Nessun percorso di settlement disponibile
            QueueFullError: Coda piena
        """
        pending_signature = None

        if self.payer is not None and self.network.is_online():
            tx = None
            try:
                blockhash = await self.ledger.get_latest_blockhash()
                tx = build_stealth_transfer(self.payer, prepared, blockhash)
                signature = await self.ledger.send_and_confirm_transaction(tx)
            except BlockchainError as e:
                if self.queue is None:
                    raise
                # Esito incerto: la coda verifica questa firma prima di reinviare
                if tx is not None and not isinstance(e, TransactionRejectedError):
                    pending_signature = tx.signature
                logger.warning(
                    "Immediate settlement failed, queueing payment",
                    extra_data={
                        "stealth_address": prepared.stealth_address_b58,
                        "error": e.message,
                    }
                )
            else:
                logger.info(
                    "Payment settled",
                    extra_data={
                        "stealth_address": prepared.stealth_address_b58,
                        "amount": prepared.amount,
                        "signature": signature,
                    }
                )
                if self.audit is not None:
                    self.audit.log_settlement(
                        None, prepared.stealth_address_b58, prepared.amount, signature
                    )
                return SendResult(PaymentStatus.settled(signature))

        if self.queue is None:
            raise QueueError(
                "No payer available and no payment queue configured",
                code="NO_SETTLEMENT_PATH"
            )

        payment_id = await self.queue.enqueue(prepared, pending_signature=pending_signature)
        return SendResult(PaymentStatus.queued(), payment_id)

    # ========================================================================
    # RECEIVER FLOW
    # ========================================================================

    async def scan_incoming(self) -> List[DetectedPayment]:
        """Pagamenti confermati dall'ultimo checkpoint"""
        return await self.scanner.scan_for_payments()

    async def get_balance(self, address: Optional[str] = None) -> int:
        """Saldo di un indirizzo (default: payer)"""
        if address is None:
            if self.payer is None:
                raise ValueError("No address given and no payer configured")
            address = self.payer.address
        return await self.ledger.get_balance(address)

    # ========================================================================
    # SHIELD / UNSHIELD
    # ========================================================================

    async def shield(self, amount: int, source: Signer) -> ShieldResult:
        """
        Sposta fondi da un indirizzo regolare a un nuovo stealth address
        del wallet stesso.

        Args:
            amount: Importo (lamports)
            source: Signer dell'indirizzo sorgente (paga anche la fee)

        Raises:
            BlockchainError: Transazione fallita
        """
        prepared = self.generator.prepare_payment(self.keypair.public_identity(), amount)

        blockhash = await self.ledger.get_latest_blockhash()
        tx = build_stealth_transfer(source, prepared, blockhash)
        signature = await self.ledger.send_and_confirm_transaction(tx)

        logger.info(
            "Funds shielded",
            extra_data={
                "stealth_address": prepared.stealth_address_b58,
                "amount": amount,
                "signature": signature,
            }
        )
        if self.audit is not None:
            self.audit.log_shield(source.address, prepared.stealth_address_b58, amount, signature)

        return ShieldResult(signature=signature, payment=prepared)

    async def unshield(self, detected: DetectedPayment, destination: str) -> str:
        """
        Trasferisce l'intero saldo di uno stealth address (meno la fee)
        verso un indirizzo regolare.

        La chiave one-time viene verificata contro lo stealth address prima
        di qualsiasi firma e azzerata all'uscita.

        Returns:
            str: Firma della transazione

        Raises:
            InvalidKeyFormatError: Destinazione invalida
            KeyDerivationError: Chiave derivata non corrispondente
            InsufficientBalanceError: Saldo che non copre la fee
            BlockchainError: Transazione fallita
        """
        decode_public_key(destination)
        fee = self.config.estimated_fee

        with secret_scope(self.keypair.spending_secret_key()) as spending_secret:
            one_time = self.scanner.derive_spending_key(
                detected.ephemeral_public_key, spending_secret
            )

        with secret_scope(one_time) as one_time_secret:
            signer = StealthSigner(one_time_secret, expected_address=detected.stealth_address)

        with signer:
            balance = await self.ledger.get_balance(signer.address)
            if balance <= fee:
                raise InsufficientBalanceError(balance, fee + 1, address=signer.address)

            amount = balance - fee
            blockhash = await self.ledger.get_latest_blockhash()
            tx = build_transfer(signer, destination, amount, blockhash)

        signature = await self.ledger.send_and_confirm_transaction(tx)

        logger.info(
            "Funds unshielded",
            extra_data={
                "stealth_address": signer.address,
                "amount": amount,
                "signature": signature,
            }
        )
        if self.audit is not None:
            self.audit.log_unshield(signer.address, destination, amount, signature)

        return signature


__all__ = [
    "SendResult",
    "ShieldResult",
    "StealthWalletManager",
]
