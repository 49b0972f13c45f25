"""StealthPay - Utilities"""

from stealth_pay.utils.base58 import (
    base58_encode,
    base58_decode,
    encode_public_key,
    decode_public_key,
)

__all__ = [
    "base58_encode",
    "base58_decode",
    "encode_public_key",
    "decode_public_key",
]
