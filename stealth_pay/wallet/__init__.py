"""
StealthPay - Wallet
=====================
Derivazione stealth address (sender) e scanner (receiver).
"""

from stealth_pay.wallet.generator import StealthAddressGenerator
from stealth_pay.wallet.scanner import StealthScanner
from stealth_pay.wallet.stealth_address import (
    derive_stealth_scalar,
    derive_viewing_tag,
    derive_stealth_public_key,
    derive_one_time_secret,
)

__all__ = [
    "StealthAddressGenerator",
    "StealthScanner",
    "derive_stealth_scalar",
    "derive_viewing_tag",
    "derive_stealth_public_key",
    "derive_one_time_secret",
]
