"""
StealthPay - Domain Layer
===========================
Chiavi, primitive crittografiche, modelli e signer.
"""

from stealth_pay.domain.keypairs import KeyPair, PublicIdentity
from stealth_pay.domain.models import (
    StealthAddressOutput,
    PreparedPayment,
    StealthMetadata,
    DetectedPayment,
)
from stealth_pay.domain.signers import Signer, Ed25519Signer, StealthSigner

__all__ = [
    "KeyPair",
    "PublicIdentity",
    "StealthAddressOutput",
    "PreparedPayment",
    "StealthMetadata",
    "DetectedPayment",
    "Signer",
    "Ed25519Signer",
    "StealthSigner",
]
