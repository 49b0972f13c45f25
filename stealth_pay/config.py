"""
StealthPay - Configuration Management
=======================================
Configurazione centralizzata con Pydantic Settings.
Supporta environment variables, file .env, override runtime.

Security Level: HIGH
Last Updated: 2026-10-18
Version: 1.0.0

Features:
- Validazione automatica tipi
- Environment variables con prefisso STEALTHPAY_
- File .env support
- Preset development / test
"""

from pathlib import Path
from typing import Optional
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stealth_pay.constants import (
    MAX_QUEUE_SIZE,
    BATCH_THRESHOLD,
    MAX_RETRY_ATTEMPTS,
    AUTO_SETTLE_INTERVAL_SECONDS,
    FAILED_RETENTION_HOURS,
    ESTIMATED_FEE_LAMPORTS,
    CONNECTIVITY_CHECK_INTERVAL_SECONDS,
    CONNECTIVITY_PROBE_HOST,
    CONNECTIVITY_PROBE_PORT,
    CONNECTIVITY_TIMEOUT_SECONDS,
    GENERATOR_CACHE_SIZE,
    BACKUP_KDF_N,
)


DEFAULT_RPC_URLS = {
    "mainnet": "https://api.mainnet-beta.solana.com",
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "localnet": "http://127.0.0.1:8899",
}


# ============================================================================
# MAIN CONFIGURATION CLASS
# ============================================================================

class StealthSettings(BaseSettings):
    """
    Configurazione principale StealthPay.
    
    Example:
        # Da environment
        export STEALTHPAY_NETWORK=devnet
        export STEALTHPAY_BATCH_THRESHOLD=50
        
        # Da codice
        config = StealthSettings(network="localnet")
    """
    
    model_config = SettingsConfigDict(
        env_prefix='STEALTHPAY_',
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )
    
    # ========================================================================
    # NETWORK
    # ========================================================================
    
    network: str = Field(
        default="devnet",
        description="Network: mainnet, devnet, testnet, localnet"
    )
    
    rpc_url: Optional[str] = Field(
        default=None,
        description="Endpoint RPC del ledger (auto da network se None)"
    )
    
    # ========================================================================
    # STORAGE
    # ========================================================================
    
    data_dir: Path = Field(
        default=Path("./data"),
        description="Directory dati wallet"
    )
    
    storage_path: Optional[Path] = Field(
        default=None,
        description="Database secure storage (auto: data_dir/stealthpay.db)"
    )
    
    # ========================================================================
    # PAYMENT QUEUE
    # ========================================================================
    
    max_queue_size: int = Field(
        default=MAX_QUEUE_SIZE,
        ge=1,
        le=100_000,
        description="Capacita' massima coda pagamenti"
    )
    
    batch_threshold: int = Field(
        default=BATCH_THRESHOLD,
        ge=1,
        description="Pagamenti pendenti oltre i quali si raggruppa per destinatario"
    )
    
    max_retry_attempts: int = Field(
        default=MAX_RETRY_ATTEMPTS,
        ge=1,
        le=100,
        description="Tentativi di settlement prima di Failed"
    )
    
    auto_settle_interval: float = Field(
        default=AUTO_SETTLE_INTERVAL_SECONDS,
        gt=0,
        le=3600,
        description="Intervallo polling auto-settlement (secondi)"
    )
    
    failed_retention_hours: float = Field(
        default=FAILED_RETENTION_HOURS,
        ge=0,
        description="Ore di permanenza in coda dei pagamenti Failed"
    )
    
    # ========================================================================
    # LEDGER
    # ========================================================================
    
    estimated_fee: int = Field(
        default=ESTIMATED_FEE_LAMPORTS,
        ge=0,
        description="Fee stimata per unshield (lamports)"
    )
    
    # ========================================================================
    # CONNECTIVITY
    # ========================================================================
    
    connectivity_check_interval: float = Field(
        default=CONNECTIVITY_CHECK_INTERVAL_SECONDS,
        gt=0,
        description="Intervallo check connettivita' (secondi)"
    )
    
    connectivity_probe_host: str = Field(
        default=CONNECTIVITY_PROBE_HOST,
        description="Host TCP usato come sonda di raggiungibilita'"
    )
    
    connectivity_probe_port: int = Field(
        default=CONNECTIVITY_PROBE_PORT,
        ge=1,
        le=65535,
        description="Porta TCP sonda"
    )
    
    connectivity_timeout: float = Field(
        default=CONNECTIVITY_TIMEOUT_SECONDS,
        gt=0,
        le=60,
        description="Timeout connessione sonda (secondi)"
    )
    
    # ========================================================================
    # CRYPTOGRAPHY
    # ========================================================================
    
    generator_cache_size: int = Field(
        default=GENERATOR_CACHE_SIZE,
        ge=0,
        description="Voci cache derivazioni con chiave effimera fornita"
    )
    
    backup_kdf_n: int = Field(
        default=BACKUP_KDF_N,
        ge=2 ** 10,
        description="Costo scrypt (N) per il backup cifrato"
    )
    
    # ========================================================================
    # LOGGING
    # ========================================================================
    
    log_level: str = Field(
        default="INFO",
        description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )
    
    log_to_file: bool = Field(
        default=False,
        description="Salva log su file"
    )
    
    log_dir: Path = Field(
        default=Path("./logs"),
        description="Directory log files"
    )
    
    log_format: str = Field(
        default="json",
        description="Formato log: json, text"
    )
    
    # ========================================================================
    # VALIDATORS
    # ========================================================================
    
    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log_level: {v}. Must be one of {valid_levels}")
        return v_upper
    
    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in ('json', 'text'):
            raise ValueError(f"Invalid log_format: {v}. Must be json or text")
        return v_lower
    
    @field_validator('network')
    @classmethod
    def validate_network(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in DEFAULT_RPC_URLS:
            raise ValueError(
                f"Invalid network: {v}. Must be one of {sorted(DEFAULT_RPC_URLS)}"
            )
        return v_lower
    
    @field_validator('rpc_url')
    @classmethod
    def validate_rpc_url(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid rpc_url: {v}. Expected http(s) URL")
        return v
    
    # ========================================================================
    # POST-INIT PROCESSING
    # ========================================================================
    
    def model_post_init(self, __context) -> None:
        if self.rpc_url is None:
            self.rpc_url = DEFAULT_RPC_URLS[self.network]
        
        if self.storage_path is None:
            self.storage_path = self.data_dir / "stealthpay.db"
    
    # ========================================================================
    # HELPER METHODS
    # ========================================================================
    
    def is_mainnet(self) -> bool:
        return self.network == "mainnet"
    
    def to_dict(self) -> dict:
        return self.model_dump()
    
    def to_json(self) -> str:
        return self.model_dump_json(indent=2)
    
    def __repr__(self) -> str:
        return (
            f"StealthSettings("
            f"network={self.network}, "
            f"max_queue_size={self.max_queue_size}, "
            f"batch_threshold={self.batch_threshold}, "
            f"max_retry_attempts={self.max_retry_attempts})"
        )


# ============================================================================
# CACHED INSTANCE
# ============================================================================

@lru_cache(maxsize=1)
def get_settings() -> StealthSettings:
    """
    Ottieni l'istanza di StealthSettings (cached).
    
    Example:
        >>> config = get_settings()
        >>> config.max_queue_size
        1000
    """
    return StealthSettings()


def reload_settings() -> StealthSettings:
    """Ricarica settings dopo modifiche alle environment variables"""
    get_settings.cache_clear()
    return get_settings()


def override_settings(**kwargs) -> StealthSettings:
    """
    Crea settings con valori custom (utile per testing).
    
    Example:
        >>> cfg = override_settings(batch_threshold=10, max_retry_attempts=2)
    """
    return StealthSettings(**kwargs)


# ============================================================================
# PROFILE PRESETS
# ============================================================================

def get_development_config() -> StealthSettings:
    """Preset development: localnet, log DEBUG, polling rapido"""
    return StealthSettings(
        network="localnet",
        log_level="DEBUG",
        log_format="text",
        auto_settle_interval=5,
    )


def get_test_config() -> StealthSettings:
    """Preset test: KDF leggera, niente file di log, intervalli brevi"""
    return StealthSettings(
        network="localnet",
        log_level="DEBUG",
        log_to_file=False,
        backup_kdf_n=2 ** 10,
        auto_settle_interval=0.05,
        connectivity_check_interval=0.05,
    )


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "StealthSettings",
    "get_settings",
    "reload_settings",
    "override_settings",
    "get_development_config",
    "get_test_config",
]
