"""
StealthPay - Core Constants
=============================
Costanti del protocollo stealth address e della coda di settlement.

Security Level: CRITICAL
Last Updated: 2026-10-18
Version: 1.0.0

IMPORTANTE: formati wire (meta-address, metadata on-chain, backup cifrato)
sono condivisi tra sender e receiver indipendenti. Cambiarli rompe la
compatibilita' con gli indirizzi gia' pubblicati.
"""

from enum import Enum
from typing import Final

# ============================================================================
# IDENTIFICAZIONE PROGETTO
# ============================================================================

PROJECT_NAME: Final[str] = "StealthPay"
SOFTWARE_VERSION: Final[str] = "1.0.0"

# ============================================================================
# UNITA' MONETARIA
# ============================================================================

# Unita' base del ledger: lamport
LAMPORTS_PER_SOL: Final[int] = 1_000_000_000
COIN_DECIMALS: Final[int] = 9


def sol_to_lamports(amount_sol: float) -> int:
    """
    Converte SOL in lamports.
    
    Examples:
        >>> sol_to_lamports(0.001)
        1000000
    """
    return int(round(amount_sol * LAMPORTS_PER_SOL))


def lamports_to_sol(amount_lamports: int) -> float:
    """
    Converte lamports in SOL.
    
    Examples:
        >>> lamports_to_sol(1_000_000)
        0.001
    """
    return amount_lamports / LAMPORTS_PER_SOL


def format_amount(amount_lamports: int, unit: str = "SOL") -> str:
    """
    Formatta un importo per display.
    
    Examples:
        >>> format_amount(1_500_000_000)
        '1.500000000 SOL'
        >>> format_amount(5000, unit="lamports")
        '5,000 lamports'
    """
    if unit == "lamports":
        return f"{amount_lamports:,} lamports"
    return f"{lamports_to_sol(amount_lamports):.{COIN_DECIMALS}f} {unit}"


# ============================================================================
# META-ADDRESS
# ============================================================================

META_ADDRESS_PREFIX: Final[str] = "stealth"
META_ADDRESS_SEPARATOR: Final[str] = ":"
META_ADDRESS_FIELDS: Final[int] = 4

# Versione 1: schema standard dual-key Ed25519
STEALTH_VERSION: Final[int] = 1
SUPPORTED_VERSIONS: Final[tuple] = (STEALTH_VERSION,)

# ============================================================================
# CHIAVI ED25519
# ============================================================================

PUBLIC_KEY_SIZE: Final[int] = 32
SECRET_SCALAR_SIZE: Final[int] = 32
SIGNATURE_SIZE: Final[int] = 64
VIEWING_TAG_SIZE: Final[int] = 4

# Domain separation tra derivazione scalare e viewing tag
STEALTH_SCALAR_DOMAIN: Final[bytes] = b"stealthpay/v1/stealth-scalar"
VIEWING_TAG_DOMAIN: Final[bytes] = b"stealthpay/v1/viewing-tag"
SIGNING_NONCE_DOMAIN: Final[bytes] = b"stealthpay/v1/signing-nonce"

# ============================================================================
# METADATA ON-CHAIN
# ============================================================================

# version(1) || viewing_tag(4) || ephemeral_public_key(32)
STEALTH_METADATA_SIZE: Final[int] = 1 + VIEWING_TAG_SIZE + PUBLIC_KEY_SIZE

MEMO_PROGRAM_ID: Final[str] = "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr"
SYSTEM_PROGRAM_ID: Final[str] = "11111111111111111111111111111111"

# Indice istruzione "transfer" del system program
SYSTEM_TRANSFER_INDEX: Final[int] = 2

# ============================================================================
# BACKUP CIFRATO
# ============================================================================

BACKUP_SALT_SIZE: Final[int] = 32
BACKUP_NONCE_SIZE: Final[int] = 24
BACKUP_HEADER_SIZE: Final[int] = BACKUP_SALT_SIZE + BACKUP_NONCE_SIZE

# spend_sk(32) || spend_pk(32) || view_sk(32) || view_pk(32) || version(1)
BACKUP_PLAINTEXT_SIZE: Final[int] = 4 * 32 + 1

# scrypt: N=2^15, r=8, p=1 (~32 MiB)
BACKUP_KDF_N: Final[int] = 2 ** 15
BACKUP_KDF_R: Final[int] = 8
BACKUP_KDF_P: Final[int] = 1

# ============================================================================
# PAYMENT QUEUE
# ============================================================================

MAX_QUEUE_SIZE: Final[int] = 1000
BATCH_THRESHOLD: Final[int] = 100
MAX_RETRY_ATTEMPTS: Final[int] = 5
AUTO_SETTLE_INTERVAL_SECONDS: Final[int] = 30
FAILED_RETENTION_HOURS: Final[int] = 168

QUEUE_STORAGE_KEY: Final[str] = "payment_queue"
SCAN_INDEX_STORAGE_KEY: Final[str] = "scan_index"
QUEUE_FORMAT_VERSION: Final[int] = 1


class PaymentState(Enum):
    """Stati di un pagamento in coda"""
    QUEUED = "queued"
    SETTLING = "settling"
    SETTLED = "settled"
    FAILED = "failed"


TERMINAL_STATES: Final[frozenset] = frozenset({PaymentState.SETTLED, PaymentState.FAILED})

# ============================================================================
# LEDGER
# ============================================================================

# Fee stimata per una transazione a firma singola
ESTIMATED_FEE_LAMPORTS: Final[int] = 5000
FEE_PER_SIGNATURE_LAMPORTS: Final[int] = 5000

# Blockhash valido per N slot dopo l'emissione
BLOCKHASH_VALIDITY_SLOTS: Final[int] = 150

# ============================================================================
# NETWORK MONITOR
# ============================================================================

CONNECTIVITY_CHECK_INTERVAL_SECONDS: Final[int] = 5
CONNECTIVITY_PROBE_HOST: Final[str] = "8.8.8.8"
CONNECTIVITY_PROBE_PORT: Final[int] = 53
CONNECTIVITY_TIMEOUT_SECONDS: Final[float] = 3.0

# ============================================================================
# ADDRESS GENERATOR
# ============================================================================

GENERATOR_CACHE_SIZE: Final[int] = 1000


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "PROJECT_NAME",
    "SOFTWARE_VERSION",
    "LAMPORTS_PER_SOL",
    "sol_to_lamports",
    "lamports_to_sol",
    "format_amount",
    "META_ADDRESS_PREFIX",
    "STEALTH_VERSION",
    "SUPPORTED_VERSIONS",
    "PUBLIC_KEY_SIZE",
    "VIEWING_TAG_SIZE",
    "STEALTH_METADATA_SIZE",
    "MEMO_PROGRAM_ID",
    "SYSTEM_PROGRAM_ID",
    "BACKUP_PLAINTEXT_SIZE",
    "MAX_QUEUE_SIZE",
    "BATCH_THRESHOLD",
    "MAX_RETRY_ATTEMPTS",
    "QUEUE_STORAGE_KEY",
    "PaymentState",
    "TERMINAL_STATES",
    "ESTIMATED_FEE_LAMPORTS",
]
