"""
StealthPay - Services
=======================
Coda pagamenti e wallet manager.
"""

from stealth_pay.services.payment_queue import (
    PaymentQueue,
    PaymentStatus,
    QueuedPayment,
    SettlementOutcome,
)
from stealth_pay.services.stealth_service import (
    SendResult,
    ShieldResult,
    StealthWalletManager,
)

__all__ = [
    "PaymentQueue",
    "PaymentStatus",
    "QueuedPayment",
    "SettlementOutcome",
    "SendResult",
    "ShieldResult",
    "StealthWalletManager",
]
