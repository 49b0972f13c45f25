"""
StealthPay - Stealth Payment Scanner
======================================
Lato receiver: pre-filtro viewing tag, verifica ownership, ricostruzione
della chiave one-time e scansione incrementale del ledger.

Security Level: CRITICAL
Last Updated: 2026-10-18
Version: 1.0.0

La scansione richiede solo la chiave di visione; lo scalare di spesa
serve esclusivamente a derive_spending_key.
"""

from __future__ import annotations

import json
from typing import List, Optional

from stealth_pay.constants import SCAN_INDEX_STORAGE_KEY, SUPPORTED_VERSIONS
from stealth_pay.domain.crypto_core import (
    constant_time_equals,
    ecdh_shared_secret,
    is_valid_point,
    scalarmult_base,
    secret_scope,
    validate_point,
    wipe,
)
from stealth_pay.domain.keypairs import KeyPair
from stealth_pay.domain.models import DetectedPayment
from stealth_pay.errors import (
    BlockchainError,
    InvalidKeyFormatError,
    KeyDerivationError,
    SerializationError,
    StorageKeyNotFoundError,
)
from stealth_pay.ledger.base import ConfirmedTransaction, Ledger
from stealth_pay.logging_setup import get_logger, PerformanceLogger
from stealth_pay.utils.base58 import decode_public_key, encode_public_key
from stealth_pay.wallet.stealth_address import (
    derive_one_time_secret,
    derive_stealth_public_key,
    derive_viewing_tag,
)


logger = get_logger("scanner")


class StealthScanner:
    """
    Scanner dei pagamenti stealth in ingresso.
    
    Possiede una copia della chiave segreta di visione (azzerata da
    :meth:`zeroize`) e la chiave pubblica di spesa.
    
    Args:
        viewing_secret: Scalare segreto di visione
        spending_public_key: Chiave pubblica di spesa
        ledger: Ledger da scansionare (opzionale per le sole verifiche)
        storage: SecureStorage per persistere il cursore di scansione
        scan_index: Primo slot da scansionare
    
    Examples:
        >>> scanner = StealthScanner.from_keypair(keypair, ledger=ledger)
        >>> scanner.check_viewing_tag(eph_pk, tag)
        True
        >>> payments = await scanner.scan_for_payments()
    """
    
    def __init__(
        self,
        viewing_secret: bytes,
        spending_public_key: bytes,
        ledger: Optional[Ledger] = None,
        storage=None,
        scan_index: int = 0,
    ):
        self._viewing_secret = bytearray(viewing_secret)
        self.viewing_public_key = scalarmult_base(self._viewing_secret)
        self.spending_public_key = validate_point(spending_public_key, "Spending public key")
        self._ledger = ledger
        self._storage = storage
        self._scan_index = scan_index
    
    @classmethod
    def from_keypair(
        cls,
        keypair: KeyPair,
        ledger: Optional[Ledger] = None,
        storage=None,
        scan_index: int = 0,
    ) -> StealthScanner:
        with secret_scope(keypair.viewing_secret_key()) as viewing_secret:
            return cls(
                viewing_secret=viewing_secret,
                spending_public_key=keypair.spending_public_key(),
                ledger=ledger,
                storage=storage,
                scan_index=scan_index,
            )
    
    # ========================================================================
    # CRYPTOGRAPHIC CHECKS
    # ========================================================================
    
    def _shared_secret(self, ephemeral_public_key: bytes) -> bytearray:
        return bytearray(ecdh_shared_secret(self._viewing_secret, ephemeral_public_key))
    
    def check_viewing_tag(self, ephemeral_public_key: bytes, candidate_tag: bytes) -> bool:
        """
        Pre-filtro economico: confronta il viewing tag atteso con quello
        pubblicato. Una chiave effimera non valida non e' mai un match.
        """
        if not is_valid_point(ephemeral_public_key):
            return False
        with secret_scope(self._shared_secret(ephemeral_public_key)) as shared:
            expected = derive_viewing_tag(shared)
        return constant_time_equals(expected, candidate_tag)
    
    def verify_ownership(self, ephemeral_public_key: bytes, candidate_stealth_address: bytes) -> bool:
        """Ricalcola S + h*B e lo confronta con lo stealth address candidato"""
        if not is_valid_point(ephemeral_public_key):
            return False
        with secret_scope(self._shared_secret(ephemeral_public_key)) as shared:
            expected = derive_stealth_public_key(self.spending_public_key, shared)
        return constant_time_equals(expected, candidate_stealth_address)
    
    def derive_spending_key(self, ephemeral_public_key: bytes, spending_secret_key: bytes) -> bytearray:
        """
        Ricostruisce la chiave one-time ``s + h mod L``.
        
        Il chiamante deve verificare che ``s' * B`` coincida con lo stealth
        address prima di firmare (vedi StealthSigner) e azzerare il risultato.
        
        Raises:
            KeyDerivationError: Chiave effimera o scalare di spesa invalidi
        """
        try:
            shared = self._shared_secret(ephemeral_public_key)
        except InvalidKeyFormatError as e:
            raise KeyDerivationError(f"Cannot derive one-time key: {e.message}") from e
        
        with secret_scope(shared) as shared_secret:
            try:
                return bytearray(derive_one_time_secret(spending_secret_key, shared_secret))
            except (TypeError, ValueError) as e:
                raise KeyDerivationError("Invalid spending secret scalar") from e
    
    # ========================================================================
    # LEDGER SCANNING
    # ========================================================================
    
    def _scan_transaction(self, confirmed: ConfirmedTransaction) -> List[DetectedPayment]:
        tx = confirmed.transaction
        metadata_items = tx.stealth_metadata()
        if not metadata_items:
            return []
        
        transfers = tx.transfers()
        detected = []
        
        for metadata in metadata_items:
            if metadata.version not in SUPPORTED_VERSIONS:
                continue
            
            # Pre-filtro prima della verifica completa
            if not self.check_viewing_tag(metadata.ephemeral_public_key, metadata.viewing_tag):
                continue
            
            for _source, destination, amount in transfers:
                try:
                    destination_key = decode_public_key(destination)
                except InvalidKeyFormatError:
                    continue
                
                if self.verify_ownership(metadata.ephemeral_public_key, destination_key):
                    detected.append(DetectedPayment(
                        stealth_address=destination_key,
                        amount=amount,
                        ephemeral_public_key=metadata.ephemeral_public_key,
                        viewing_tag=metadata.viewing_tag,
                        slot=confirmed.slot,
                        signature=confirmed.signature,
                    ))
        
        return detected
    
    async def scan_for_payments(
        self,
        from_slot: Optional[int] = None,
        to_slot: Optional[int] = None,
    ) -> List[DetectedPayment]:
        """
        Scansiona gli slot ``[from_slot, to_slot]`` del ledger.
        
        Default: dal cursore salvato fino alla head corrente. Il cursore
        avanza oltre l'intervallo scansionato anche senza pagamenti trovati,
        e viene persistito se e' presente uno storage.
        
        Returns:
            list: DetectedPayment confermati
        
        Raises:
            BlockchainError: Ledger assente o irraggiungibile
            StorageError: Persistenza del cursore fallita
        """
        if self._ledger is None:
            raise BlockchainError("Scanner has no ledger attached", code="NO_LEDGER")
        
        start = self._scan_index if from_slot is None else from_slot
        end = await self._ledger.get_slot() if to_slot is None else to_slot
        
        if start > end:
            return []
        
        detected: List[DetectedPayment] = []
        scanned_txs = 0
        
        with PerformanceLogger(logger, "scan_for_payments", threshold_ms=5000):
            for slot in range(start, end + 1):
                for confirmed in await self._ledger.get_block_transactions(slot):
                    scanned_txs += 1
                    detected.extend(self._scan_transaction(confirmed))
        
        if end + 1 > self._scan_index:
            self._scan_index = end + 1
            await self.save_scan_index()
        
        logger.info(
            "Scan completed",
            extra_data={
                "from_slot": start,
                "to_slot": end,
                "transactions": scanned_txs,
                "detected": len(detected),
            }
        )
        for payment in detected:
            logger.debug(
                "Stealth payment detected",
                extra_data={
                    "stealth_address": encode_public_key(payment.stealth_address),
                    "slot": payment.slot,
                    "amount": payment.amount,
                }
            )
        
        return detected
    
    # ========================================================================
    # SCAN CURSOR
    # ========================================================================
    
    def get_scan_index(self) -> int:
        return self._scan_index
    
    def set_scan_index(self, index: int) -> None:
        """Override del cursore (checkpoint o replay)"""
        if index < 0:
            raise ValueError(f"Scan index must be non-negative, got {index}")
        self._scan_index = index
    
    async def save_scan_index(self) -> None:
        if self._storage is None:
            return
        payload = json.dumps({"scan_index": self._scan_index}).encode("utf-8")
        await self._storage.store_data(SCAN_INDEX_STORAGE_KEY, payload)
    
    async def load_scan_index(self) -> int:
        """
        Ripristina il cursore dallo storage (assente = invariato).
        
        Raises:
            SerializationError: Dato salvato malformato
        """
        if self._storage is None:
            return self._scan_index
        try:
            raw = await self._storage.load_data(SCAN_INDEX_STORAGE_KEY)
        except StorageKeyNotFoundError:
            return self._scan_index
        
        try:
            index = json.loads(raw.decode("utf-8"))["scan_index"]
        except (ValueError, KeyError, TypeError, UnicodeDecodeError) as e:
            raise SerializationError(f"Invalid stored scan index: {e}") from e
        if not isinstance(index, int) or index < 0:
            raise SerializationError(f"Invalid stored scan index: {index!r}")
        
        self._scan_index = index
        return index
    
    # ========================================================================
    # ZEROIZATION
    # ========================================================================
    
    def zeroize(self) -> None:
        wipe(self._viewing_secret)
    
    def __enter__(self) -> StealthScanner:
        return self
    
    def __exit__(self, exc_type, exc_val, exc_tb):
        self.zeroize()


__all__ = ["StealthScanner"]
