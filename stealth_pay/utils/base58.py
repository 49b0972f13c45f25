"""
StealthPay - Base58 Encoding
==============================
Base58 encoding (Bitcoin alphabet) for public keys, addresses and
transaction signatures.
"""

from stealth_pay.constants import PUBLIC_KEY_SIZE
from stealth_pay.errors import SerializationError, InvalidKeyFormatError


# ============================================================================
# BASE58 ALPHABET
# ============================================================================

# No 0, O, I, l to avoid confusion
BASE58_ALPHABET = '123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz'
_BASE58_INDEX = {char: index for index, char in enumerate(BASE58_ALPHABET)}


# ============================================================================
# BASE58 ENCODING
# ============================================================================

def base58_encode(data: bytes) -> str:
    """
    Encode bytes to Base58 string.
    
    Args:
        data: Bytes to encode
    
    Returns:
        str: Base58 string
    
    Examples:
        >>> base58_encode(b"hello")
        'Cn8eVZg'
    """
    num = int.from_bytes(data, byteorder='big')
    
    encoded = ''
    while num > 0:
        num, remainder = divmod(num, 58)
        encoded = BASE58_ALPHABET[remainder] + encoded
    
    # Preserve leading zeros
    leading_zeros = len(data) - len(data.lstrip(b'\x00'))
    return '1' * leading_zeros + encoded


def base58_decode(encoded: str) -> bytes:
    """
    Decode Base58 string to bytes.
    
    Args:
        encoded: Base58 string
    
    Returns:
        bytes: Decoded bytes
    
    Raises:
        SerializationError: If the string is empty or has non-Base58 characters
    
    Examples:
        >>> base58_decode('Cn8eVZg')
        b'hello'
    """
    if not encoded:
        raise SerializationError("Empty Base58 string", code="BASE58_EMPTY")
    
    num = 0
    for char in encoded:
        index = _BASE58_INDEX.get(char)
        if index is None:
            raise SerializationError(
                f"Invalid Base58 character: {char!r}",
                code="BASE58_INVALID_CHAR"
            )
        num = num * 58 + index
    
    decoded = num.to_bytes((num.bit_length() + 7) // 8, byteorder='big') if num else b''
    
    num_leading_zeros = len(encoded) - len(encoded.lstrip('1'))
    return b'\x00' * num_leading_zeros + decoded


# ============================================================================
# PUBLIC KEYS / ADDRESSES
# ============================================================================

def encode_public_key(public_key: bytes) -> str:
    """Encode a 32-byte public key (address) to Base58"""
    if len(public_key) != PUBLIC_KEY_SIZE:
        raise InvalidKeyFormatError(
            f"Public key must be {PUBLIC_KEY_SIZE} bytes, got {len(public_key)}"
        )
    return base58_encode(public_key)


def decode_public_key(encoded: str) -> bytes:
    """
    Decode a Base58 public key (address) and check its length.
    
    Raises:
        InvalidKeyFormatError: If not Base58 or not 32 bytes
    """
    try:
        raw = base58_decode(encoded)
    except SerializationError as e:
        raise InvalidKeyFormatError(
            f"Public key is not valid Base58: {e.message}",
            details={"value": encoded}
        ) from e
    
    if len(raw) != PUBLIC_KEY_SIZE:
        raise InvalidKeyFormatError(
            f"Public key must decode to {PUBLIC_KEY_SIZE} bytes, got {len(raw)}",
            details={"value": encoded}
        )
    return raw


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "BASE58_ALPHABET",
    "base58_encode",
    "base58_decode",
    "encode_public_key",
    "decode_public_key",
]
