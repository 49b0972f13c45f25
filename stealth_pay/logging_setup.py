"""
StealthPay - Logging System
=============================
Logging strutturato JSON per wallet, scanner e coda pagamenti.

Security Level: HIGH
Last Updated: 2026-10-18
Version: 1.0.0

Features:
- Logging JSON strutturato
- Rotation automatica
- Console colorata
- Context enrichment
- Performance tracking
- Audit trail (keys, shield/unshield, settlement)

Secret material must never reach a log record: only public keys,
payment ids, amounts and signatures are logged.
"""

import logging
import logging.handlers
import json
import sys
import time
from pathlib import Path
from typing import Optional, Dict, Any
from datetime import datetime, timezone
import traceback


ROOT_LOGGER_NAME = "stealthpay"


def _utc(created: float) -> datetime:
    return datetime.fromtimestamp(created, tz=timezone.utc)


# ============================================================================
# JSON FORMATTER
# ============================================================================

class JSONFormatter(logging.Formatter):
    """
    Formatter per log in formato JSON.
    
    Output structure:
    {
        "timestamp": "2026-10-18T10:00:00.000000Z",
        "level": "INFO",
        "logger": "stealthpay.queue",
        "message": "Payment settled",
        "extra_data": {...},
        "exception": {...}
    }
    """
    
    def __init__(
        self,
        include_extra: bool = True,
        include_stack: bool = True
    ):
        super().__init__()
        self.include_extra = include_extra
        self.include_stack = include_stack
    
    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": _utc(record.created).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        
        if record.process:
            log_data["process_id"] = record.process
        
        # Task asyncio (Python 3.12+)
        task_name = getattr(record, "taskName", None)
        if task_name:
            log_data["task"] = task_name
        
        if self.include_extra and hasattr(record, 'extra_data'):
            log_data["extra_data"] = record.extra_data
        
        if record.exc_info and self.include_stack:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info)
            }
        
        return json.dumps(log_data, default=str)


# ============================================================================
# TEXT FORMATTER (Human-Readable)
# ============================================================================

class ColoredTextFormatter(logging.Formatter):
    """
    Formatter colorato per console.
    
    Colors:
    - DEBUG: Gray
    - INFO: Green
    - WARNING: Yellow
    - ERROR: Red
    - CRITICAL: Bold Red
    """
    
    COLORS = {
        'DEBUG': '\033[90m',
        'INFO': '\033[92m',
        'WARNING': '\033[93m',
        'ERROR': '\033[91m',
        'CRITICAL': '\033[1;91m',
        'RESET': '\033[0m'
    }
    
    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        color = self.COLORS.get(levelname)
        label = f"{color}{levelname}{self.COLORS['RESET']}" if color else levelname
        
        timestamp = _utc(record.created).strftime('%Y-%m-%d %H:%M:%S')
        message = f"{timestamp} [{label}] {record.name}: {record.getMessage()}"
        
        if hasattr(record, 'extra_data'):
            message += f" | {record.extra_data}"
        
        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"
        
        return message


# ============================================================================
# LOGGER CLASS
# ============================================================================

class StealthPayLogger:
    """
    Wrapper logger con context e dati strutturati.
    
    Example:
        >>> logger = get_logger("queue")
        >>> logger.set_context(network="devnet")
        >>> logger.info("Payment queued", extra_data={"payment_id": "..."})
    """
    
    def __init__(self, logger: logging.Logger):
        self._logger = logger
        self._context: Dict[str, Any] = {}
    
    @property
    def name(self) -> str:
        return self._logger.name
    
    def set_context(self, **kwargs):
        """Imposta context aggiunto a tutti i log di questo logger"""
        self._context.update(kwargs)
    
    def clear_context(self):
        self._context.clear()
    
    def _log(
        self,
        level: int,
        message: str,
        extra_data: Optional[Dict[str, Any]] = None,
        exc_info=None
    ):
        merged_extra = {**self._context}
        if extra_data:
            merged_extra.update(extra_data)
        
        self._logger.log(
            level,
            message,
            exc_info=exc_info,
            extra={'extra_data': merged_extra} if merged_extra else {}
        )
    
    def debug(self, message: str, extra_data: Optional[Dict] = None):
        self._log(logging.DEBUG, message, extra_data)
    
    def info(self, message: str, extra_data: Optional[Dict] = None):
        self._log(logging.INFO, message, extra_data)
    
    def warning(self, message: str, extra_data: Optional[Dict] = None):
        self._log(logging.WARNING, message, extra_data)
    
    def error(self, message: str, extra_data: Optional[Dict] = None, exc_info=None):
        self._log(logging.ERROR, message, extra_data, exc_info)
    
    def critical(self, message: str, extra_data: Optional[Dict] = None, exc_info=None):
        self._log(logging.CRITICAL, message, extra_data, exc_info)
    
    def exception(self, message: str, extra_data: Optional[Dict] = None):
        """Log ERROR con traceback dell'eccezione corrente"""
        self._log(logging.ERROR, message, extra_data, exc_info=sys.exc_info())


# ============================================================================
# SETUP FUNCTION
# ============================================================================

def setup_logging(
    log_level: str = "INFO",
    log_to_file: bool = False,
    log_dir: Path = Path("./logs"),
    log_format: str = "json",
    log_rotation_mb: int = 50,
    log_retention_days: int = 14,
    enable_console: bool = True,
) -> StealthPayLogger:
    """
    Configura il logger root ``stealthpay``.
    
    Args:
        log_level: Level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_to_file: Salva su file
        log_dir: Directory log files
        log_format: Formato file (json, text)
        log_rotation_mb: MB prima della rotation
        log_retention_days: Numero file di backup mantenuti
        enable_console: Log anche su console (stderr)
    
    Returns:
        StealthPayLogger: Logger root configurato
    
    Example:
        >>> logger = setup_logging(log_level="DEBUG", log_to_file=False)
        >>> logger.info("Wallet opened", extra_data={"network": "devnet"})
    """
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(getattr(logging, log_level.upper()))
    
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    
    if log_to_file:
        log_dir.mkdir(parents=True, exist_ok=True)
        
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_dir / "stealthpay.log",
            maxBytes=log_rotation_mb * 1024 * 1024,
            backupCount=log_retention_days,
            encoding='utf-8'
        )
        
        if log_format == "json":
            file_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(
                logging.Formatter(
                    '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
                )
            )
        
        root_logger.addHandler(file_handler)
        
        # Log errori separato
        error_handler = logging.handlers.RotatingFileHandler(
            filename=log_dir / "stealthpay_errors.log",
            maxBytes=log_rotation_mb * 1024 * 1024,
            backupCount=log_retention_days,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(JSONFormatter(include_stack=True))
        root_logger.addHandler(error_handler)
    
    if enable_console:
        # stderr: stdout resta libero per l'output della CLI
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(ColoredTextFormatter())
        root_logger.addHandler(console_handler)
    
    return StealthPayLogger(root_logger)


# ============================================================================
# CATEGORY LOGGERS
# ============================================================================

def get_logger(category: str) -> StealthPayLogger:
    """
    Ottieni logger per categoria specifica.
    
    Args:
        category: Categoria (keypairs, generator, scanner, queue, ledger, ...)
    
    Returns:
        StealthPayLogger: Logger ``stealthpay.<category>``
    """
    return StealthPayLogger(logging.getLogger(f"{ROOT_LOGGER_NAME}.{category}"))


# ============================================================================
# PERFORMANCE TRACKING
# ============================================================================

class PerformanceLogger:
    """
    Context manager per tracking performance.
    
    Example:
        >>> logger = get_logger("scanner")
        >>> with PerformanceLogger(logger, "scan_for_payments", threshold_ms=2000):
        ...     ...
    """
    
    def __init__(
        self,
        logger: StealthPayLogger,
        operation: str,
        threshold_ms: Optional[int] = None
    ):
        self.logger = logger
        self.operation = operation
        self.threshold_ms = threshold_ms
        self.start_time: Optional[float] = None
        self.elapsed_ms: float = 0.0
    
    def __enter__(self):
        self.start_time = time.perf_counter()
        return self
    
    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed_ms = (time.perf_counter() - self.start_time) * 1000
        
        extra = {
            "operation": self.operation,
            "duration_ms": round(self.elapsed_ms, 2)
        }
        
        if self.threshold_ms and self.elapsed_ms > self.threshold_ms:
            self.logger.warning(
                f"{self.operation} took {self.elapsed_ms:.2f}ms (threshold: {self.threshold_ms}ms)",
                extra_data=extra
            )
        else:
            self.logger.debug(
                f"{self.operation} completed in {self.elapsed_ms:.2f}ms",
                extra_data=extra
            )


# ============================================================================
# AUDIT LOGGER
# ============================================================================

class AuditLogger:
    """
    Logger specializzato per audit trail.
    
    Use for:
    - Key generation / backup export / import
    - Shield and unshield
    - Settlement outcomes
    
    Se ``log_dir`` e' indicato gli eventi vengono anche scritti in
    ``audit.log`` (JSON, senza rotation).
    """
    
    def __init__(self, log_dir: Optional[Path] = None):
        self.logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.audit")
        self.logger.setLevel(logging.INFO)
        self.log_dir = log_dir
        
        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            audit_file = (log_dir / "audit.log").resolve()
            already_attached = any(
                isinstance(h, logging.FileHandler)
                and Path(h.baseFilename) == audit_file
                for h in self.logger.handlers
            )
            if not already_attached:
                handler = logging.FileHandler(audit_file, encoding='utf-8')
                handler.setFormatter(JSONFormatter(include_extra=True))
                self.logger.addHandler(handler)
    
    def _record(self, message: str, action: str, **fields):
        self.logger.info(
            message,
            extra={
                'extra_data': {
                    "action": action,
                    **fields,
                    "timestamp": datetime.now(timezone.utc).isoformat()
                }
            }
        )
    
    def log_keypair_generated(self, meta_address: str):
        self._record("Stealth keypair generated", "keypair_generated",
                     meta_address=meta_address)
    
    def log_backup_exported(self, meta_address: str):
        self._record("Encrypted backup exported", "backup_exported",
                     meta_address=meta_address)
    
    def log_backup_imported(self, meta_address: str):
        self._record("Encrypted backup imported", "backup_imported",
                     meta_address=meta_address)
    
    def log_shield(self, source: str, stealth_address: str, amount: int, signature: str):
        self._record(
            "Funds shielded", "shield",
            source=source,
            stealth_address=stealth_address,
            amount=amount,
            signature=signature,
        )
    
    def log_unshield(self, stealth_address: str, destination: str, amount: int, signature: str):
        self._record(
            "Funds unshielded", "unshield",
            stealth_address=stealth_address,
            destination=destination,
            amount=amount,
            signature=signature,
        )
    
    def log_settlement(self, payment_id: Optional[str], stealth_address: str, amount: int, signature: str):
        self._record(
            "Stealth payment settled", "settlement",
            payment_id=payment_id,
            stealth_address=stealth_address,
            amount=amount,
            signature=signature,
        )


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "setup_logging",
    "get_logger",
    "StealthPayLogger",
    "PerformanceLogger",
    "AuditLogger",
    "JSONFormatter",
    "ColoredTextFormatter",
]
