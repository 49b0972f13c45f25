"""
StealthPay - QR Code Generation
=================================
QR code per meta-address.
"""

from stealth_pay.qr.generator import (
    MetaAddressQRGenerator,
    parse_qr_payload,
    SUPPORTED_FORMATS,
)

__all__ = [
    "MetaAddressQRGenerator",
    "parse_qr_payload",
    "SUPPORTED_FORMATS",
]
