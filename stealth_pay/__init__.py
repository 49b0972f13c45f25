"""
StealthPay - Stealth Address Wallet
=====================================
Pagamenti non collegabili on-chain tramite stealth address Ed25519.

Version: 1.0.0
Author: StealthPay Team
License: MIT
"""

__version__ = "1.0.0"
__author__ = "StealthPay Team"
__license__ = "MIT"

# Core imports
from stealth_pay.domain.keypairs import KeyPair, PublicIdentity
from stealth_pay.domain.models import DetectedPayment, PreparedPayment
from stealth_pay.wallet.generator import StealthAddressGenerator
from stealth_pay.wallet.scanner import StealthScanner
from stealth_pay.config import StealthSettings, get_settings

# Services
from stealth_pay.services.payment_queue import PaymentQueue, PaymentStatus
from stealth_pay.services.stealth_service import StealthWalletManager

# Constants
from stealth_pay.constants import (
    PaymentState,
    sol_to_lamports,
    lamports_to_sol,
)

__all__ = [
    # Version
    "__version__",
    
    # Core
    "KeyPair",
    "PublicIdentity",
    "PreparedPayment",
    "DetectedPayment",
    "StealthAddressGenerator",
    "StealthScanner",
    "StealthSettings",
    "get_settings",
    
    # Services
    "PaymentQueue",
    "PaymentStatus",
    "StealthWalletManager",
    
    # Constants
    "PaymentState",
    "sol_to_lamports",
    "lamports_to_sol",
]
