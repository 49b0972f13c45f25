"""
StealthPay - Custom Exceptions
================================
Gerarchia di eccezioni per chiavi stealth, coda pagamenti e ledger.

Security Level: HIGH
Last Updated: 2026-10-18
Version: 1.0.0

Parsing and cryptographic validation errors are final: retrying cannot fix
a malformed input. Only BlockchainError consumes the settlement retry budget.
"""

from typing import Optional


# ============================================================================
# BASE EXCEPTION
# ============================================================================

class StealthPayException(Exception):
    """
    Eccezione base per tutte le eccezioni StealthPay.
    
    Attributes:
        message (str): Messaggio errore
        code (str): Codice errore (default: nome classe)
        details (dict): Dettagli aggiuntivi (mai materiale segreto)
    """
    
    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        
        super().__init__(self.message)
    
    def to_dict(self) -> dict:
        """Serializza eccezione per logging / stato coda"""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }
    
    def __str__(self) -> str:
        if self.details:
            return f"[{self.code}] {self.message} | Details: {self.details}"
        return f"[{self.code}] {self.message}"


# ============================================================================
# CONFIGURATION ERRORS
# ============================================================================

class ConfigError(StealthPayException):
    """Errore configurazione"""
    pass


# ============================================================================
# KEY & META-ADDRESS ERRORS
# ============================================================================

class InvalidMetaAddressError(StealthPayException):
    """Meta-address malformato o versione non supportata"""
    pass


class InvalidKeyFormatError(StealthPayException):
    """Chiave non decodificabile o non un punto valido della curva"""
    pass


class KeyDerivationError(StealthPayException):
    """Derivazione chiave one-time incoerente con lo stealth address"""
    pass


# ============================================================================
# CRYPTO ERRORS
# ============================================================================

class CryptoError(StealthPayException):
    """Errore crittografico generico"""
    pass


class EncryptionError(CryptoError):
    """Cifratura fallita"""
    pass


class DecryptionError(CryptoError):
    """Decifratura fallita (password errata, dati alterati o troncati)"""
    pass


class InvalidSignatureError(CryptoError):
    """Firma non valida"""
    pass


# ============================================================================
# PAYMENT QUEUE ERRORS
# ============================================================================

class QueueError(StealthPayException):
    """Errore coda pagamenti"""
    pass


class QueueFullError(QueueError):
    """Coda piena: nessun inserimento parziale"""
    
    def __init__(self, capacity: int):
        self.capacity = capacity
        super().__init__(
            f"Payment queue is full (capacity {capacity})",
            code="QUEUE_FULL",
            details={"capacity": capacity}
        )


class PaymentNotFoundError(QueueError):
    """Pagamento non presente in coda"""
    pass


# ============================================================================
# LEDGER ERRORS
# ============================================================================

class BlockchainError(StealthPayException):
    """I/O verso il ledger fallito o transazione rifiutata"""
    pass


class TransactionRejectedError(BlockchainError):
    """Transazione rifiutata dal ledger"""
    pass


class BlockhashNotFoundError(TransactionRejectedError):
    """Blockhash di riferimento scaduto o sconosciuto"""
    pass


class InsufficientBalanceError(StealthPayException):
    """Saldo insufficiente a coprire importo e fee"""
    
    def __init__(self, balance: int, required: int, address: Optional[str] = None):
        self.balance = balance
        self.required = required
        details = {"balance": balance, "required": required}
        if address:
            details["address"] = address
        super().__init__(
            f"Insufficient balance: {balance} available, {required} required",
            code="INSUFFICIENT_BALANCE",
            details=details
        )


# ============================================================================
# STORAGE ERRORS
# ============================================================================

class StorageError(StealthPayException):
    """Errore secure storage"""
    pass


class StorageKeyNotFoundError(StorageError):
    """Chiave assente nello storage"""
    pass


class SerializationError(StealthPayException):
    """Dati serializzati strutturalmente invalidi"""
    pass


# ============================================================================
# NETWORK ERRORS
# ============================================================================

class NetworkError(StealthPayException):
    """Errore monitor connettivita'"""
    pass


# ============================================================================
# QR CODE ERRORS
# ============================================================================

class QRCodeError(StealthPayException):
    """Errore QR code"""
    pass


class InvalidQRDataError(QRCodeError):
    """Payload QR non valido"""
    pass


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "StealthPayException",
    "ConfigError",
    "InvalidMetaAddressError",
    "InvalidKeyFormatError",
    "KeyDerivationError",
    "CryptoError",
    "EncryptionError",
    "DecryptionError",
    "InvalidSignatureError",
    "QueueError",
    "QueueFullError",
    "PaymentNotFoundError",
    "BlockchainError",
    "TransactionRejectedError",
    "BlockhashNotFoundError",
    "InsufficientBalanceError",
    "StorageError",
    "StorageKeyNotFoundError",
    "SerializationError",
    "NetworkError",
    "QRCodeError",
    "InvalidQRDataError",
]
