"""
StealthPay - Stealth Address Derivation
=========================================
Derivazioni simmetriche condivise da sender (generator) e receiver (scanner).

Schema dual-key su Ed25519:
- Shared secret:   P = e * V = v * E   (ECDH)
- Scalare offset:  h = H_s(P) mod L
- Stealth address: S' = S + h * B
- Viewing tag:     t = H_t(P)[:4]
- Chiave one-time: s' = s + h mod L    (solo receiver)

H_s e H_t sono hash con domain separation distinta: il tag non rivela
nulla dello scalare usato per l'indirizzo.
"""

from stealth_pay.constants import (
    STEALTH_SCALAR_DOMAIN,
    VIEWING_TAG_DOMAIN,
    VIEWING_TAG_SIZE,
)
from stealth_pay.domain.crypto_core import (
    compute_sha256,
    hash_to_scalar,
    point_add,
    scalar_add,
    scalarmult_base,
)


def derive_stealth_scalar(shared_secret: bytes) -> bytes:
    """Scalare offset h = SHA-512(domain || P) mod L"""
    return hash_to_scalar(STEALTH_SCALAR_DOMAIN, bytes(shared_secret))


def derive_viewing_tag(shared_secret: bytes) -> bytes:
    """Viewing tag: primi 4 bytes di SHA-256(domain || P)"""
    return compute_sha256(VIEWING_TAG_DOMAIN + bytes(shared_secret))[:VIEWING_TAG_SIZE]


def derive_stealth_public_key(spending_public_key: bytes, shared_secret: bytes) -> bytes:
    """Stealth address S' = S + h * B"""
    offset_point = scalarmult_base(derive_stealth_scalar(shared_secret))
    return point_add(spending_public_key, offset_point)


def derive_one_time_secret(spending_secret: bytes, shared_secret: bytes) -> bytes:
    """Chiave one-time s' = s + h mod L"""
    return scalar_add(spending_secret, derive_stealth_scalar(shared_secret))


__all__ = [
    "derive_stealth_scalar",
    "derive_viewing_tag",
    "derive_stealth_public_key",
    "derive_one_time_secret",
]
