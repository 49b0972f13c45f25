"""
StealthPay - Cryptographic Core Layer
=======================================
Primitive crittografiche di basso livello per lo schema stealth address.

Security Level: CRITICAL
Last Updated: 2026-10-18
Version: 1.0.0

SECURITY NOTICE:
Questo modulo implementa primitive crittografiche critiche.
Ogni modifica deve essere sottoposta a security audit.

Algorithms:
- Group: Ed25519 (prime-order subgroup, libsodium via PyNaCl)
- Hash: SHA-256, SHA-512
- Signature: Ed25519 (seed keys and raw scalars)
- KDF: scrypt (password), HKDF-SHA256 (device key)
- Encryption: XChaCha20-Poly1305 (backup), AES-256-GCM (storage at rest)

Secrets are raw little-endian scalars reduced mod L. libsodium only accepts
immutable ``bytes``, so callers keep their long-lived copy in a ``bytearray``
and wipe it with :func:`wipe` / :func:`secret_scope`.
"""

import hashlib
import hmac
import secrets
from contextlib import contextmanager
from typing import Iterator, Optional, Tuple, Union

import nacl.bindings
import nacl.exceptions
import nacl.signing

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from stealth_pay.constants import (
    PUBLIC_KEY_SIZE,
    SECRET_SCALAR_SIZE,
    SIGNATURE_SIZE,
    SIGNING_NONCE_DOMAIN,
    BACKUP_NONCE_SIZE,
    BACKUP_KDF_N,
    BACKUP_KDF_R,
    BACKUP_KDF_P,
)
from stealth_pay.errors import (
    CryptoError,
    InvalidKeyFormatError,
    EncryptionError,
    DecryptionError,
)
from stealth_pay.logging_setup import get_logger


# ============================================================================
# MODULE LOGGER
# ============================================================================

logger = get_logger("crypto")

BytesLike = Union[bytes, bytearray, memoryview]


# ============================================================================
# HASH FUNCTIONS
# ============================================================================

def compute_sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def compute_sha512(data: bytes) -> bytes:
    return hashlib.sha512(data).digest()


def constant_time_equals(a: bytes, b: bytes) -> bool:
    """Confronto in tempo costante (viewing tag, indirizzi, MAC)"""
    return hmac.compare_digest(bytes(a), bytes(b))


def generate_random_bytes(length: int) -> bytes:
    """
    Genera bytes casuali crittograficamente sicuri (CSPRNG di sistema).
    
    Examples:
        >>> len(generate_random_bytes(32))
        32
    """
    if length <= 0:
        raise CryptoError("Length must be positive")
    return secrets.token_bytes(length)


# ============================================================================
# SECRET ZEROIZATION
# ============================================================================

def wipe(buffer: Optional[bytearray]) -> None:
    """Sovrascrive con zeri un buffer mutabile"""
    if buffer is None:
        return
    for i in range(len(buffer)):
        buffer[i] = 0


@contextmanager
def secret_scope(secret: BytesLike) -> Iterator[bytearray]:
    """
    Scope per materiale segreto: il buffer viene azzerato all'uscita,
    anche in caso di eccezione.
    
    Example:
        >>> with secret_scope(keypair.spending_secret_key()) as spend_sk:
        ...     one_time = scanner.derive_spending_key(eph_pk, spend_sk)
    """
    buffer = secret if isinstance(secret, bytearray) else bytearray(secret)
    try:
        yield buffer
    finally:
        wipe(buffer)


# ============================================================================
# ED25519 GROUP ARITHMETIC
# ============================================================================

def _require_length(value: BytesLike, size: int, what: str) -> bytes:
    if len(value) != size:
        raise InvalidKeyFormatError(
            f"{what} must be {size} bytes, got {len(value)}",
            details={"expected": size, "actual": len(value)}
        )
    return bytes(value)


def is_valid_point(point: BytesLike) -> bool:
    """
    True se ``point`` e' una codifica canonica di un punto del sottogruppo
    di ordine primo (esclusi punti di ordine piccolo).
    """
    if len(point) != PUBLIC_KEY_SIZE:
        return False
    return nacl.bindings.crypto_core_ed25519_is_valid_point(bytes(point))


def validate_point(point: BytesLike, what: str = "Public key") -> bytes:
    """Ritorna ``point`` come bytes o solleva InvalidKeyFormatError"""
    raw = _require_length(point, PUBLIC_KEY_SIZE, what)
    if not nacl.bindings.crypto_core_ed25519_is_valid_point(raw):
        raise InvalidKeyFormatError(f"{what} is not a valid Ed25519 point")
    return raw


def scalar_random() -> bytes:
    """Scalare uniforme in [1, L) (64 bytes casuali ridotti mod L)"""
    while True:
        scalar = scalar_reduce(secrets.token_bytes(64))
        if any(scalar):
            return scalar


def scalar_reduce(wide: bytes) -> bytes:
    """Riduce 64 bytes mod L"""
    return nacl.bindings.crypto_core_ed25519_scalar_reduce(wide)


def scalar_add(a: BytesLike, b: BytesLike) -> bytes:
    return nacl.bindings.crypto_core_ed25519_scalar_add(bytes(a), bytes(b))


def scalar_mul(a: BytesLike, b: BytesLike) -> bytes:
    return nacl.bindings.crypto_core_ed25519_scalar_mul(bytes(a), bytes(b))


def point_add(p: BytesLike, q: BytesLike) -> bytes:
    return nacl.bindings.crypto_core_ed25519_add(bytes(p), bytes(q))


def hash_to_scalar(domain: bytes, *parts: bytes) -> bytes:
    """SHA-512(domain || parts...) ridotto mod L"""
    digest = hashlib.sha512(domain)
    for part in parts:
        digest.update(part)
    return scalar_reduce(digest.digest())


def scalarmult_base(scalar: BytesLike) -> bytes:
    """
    Moltiplica il base point per uno scalare (senza clamping).
    
    Raises:
        InvalidKeyFormatError: Scalare nullo o di lunghezza errata
    """
    raw = _require_length(scalar, SECRET_SCALAR_SIZE, "Secret scalar")
    try:
        return nacl.bindings.crypto_scalarmult_ed25519_base_noclamp(raw)
    except nacl.exceptions.CryptoError as e:
        raise InvalidKeyFormatError("Secret scalar is not usable (zero scalar)") from e


def ecdh_shared_secret(secret_scalar: BytesLike, public_key: BytesLike) -> bytes:
    """
    Shared secret ECDH: ``secret * PublicKey`` (punto compresso, 32 bytes).
    
    Sender (ephemeral_sk * viewing_pk) e receiver (viewing_sk * ephemeral_pk)
    ottengono lo stesso punto.
    
    Raises:
        InvalidKeyFormatError: Chiave pubblica non valida o risultato identita'
    """
    raw_secret = _require_length(secret_scalar, SECRET_SCALAR_SIZE, "Secret scalar")
    raw_public = validate_point(public_key)
    try:
        return nacl.bindings.crypto_scalarmult_ed25519_noclamp(raw_secret, raw_public)
    except nacl.exceptions.CryptoError as e:
        raise InvalidKeyFormatError("ECDH failed: degenerate shared point") from e


# ============================================================================
# SIGNATURES
# ============================================================================

def sign_with_scalar(
    secret_scalar: BytesLike,
    message: bytes,
    public_key: Optional[bytes] = None
) -> bytes:
    """
    Firma Ed25519 con uno scalare grezzo (chiavi one-time stealth).
    
    Le chiavi stealth sono ``s + h mod L``: non esiste un seed da cui
    derivarle, quindi la firma viene calcolata direttamente dallo scalare.
    Il risultato verifica con qualunque verificatore Ed25519 standard.
    
    Args:
        secret_scalar: Scalare segreto (32 bytes, ridotto mod L)
        message: Messaggio da firmare
        public_key: ``secret_scalar * B`` se gia' noto
    
    Returns:
        bytes: Firma R || S (64 bytes)
    """
    a = _require_length(secret_scalar, SECRET_SCALAR_SIZE, "Secret scalar")
    A = public_key if public_key is not None else scalarmult_base(a)
    
    # Nonce deterministico (RFC 8032 style)
    prefix = bytearray(compute_sha512(SIGNING_NONCE_DOMAIN + a)[:32])
    try:
        r = scalar_reduce(compute_sha512(bytes(prefix) + message))
    finally:
        wipe(prefix)
    
    R = scalarmult_base(r)
    k = scalar_reduce(compute_sha512(R + A + message))
    S = scalar_add(r, scalar_mul(k, a))
    
    return R + S


def verify_signature(public_key: bytes, message: bytes, signature: bytes) -> bool:
    """Verifica firma Ed25519 (seed o scalare grezzo)"""
    if len(public_key) != PUBLIC_KEY_SIZE or len(signature) != SIGNATURE_SIZE:
        return False
    try:
        nacl.signing.VerifyKey(bytes(public_key)).verify(message, bytes(signature))
        return True
    except nacl.exceptions.BadSignatureError:
        return False


# ============================================================================
# KEY DERIVATION
# ============================================================================

def derive_key_scrypt(
    password: bytes,
    salt: bytes,
    n: int = BACKUP_KDF_N,
    r: int = BACKUP_KDF_R,
    p: int = BACKUP_KDF_P,
    key_length: int = 32
) -> bytes:
    """
    Deriva chiave da password usando scrypt (memory-hard, SHA-256 based).
    
    Args:
        password: Password
        salt: Salt casuale (min 16 bytes)
        n: CPU/memory cost parameter
        r: Block size
        p: Parallelization
        key_length: Output key length
    
    Returns:
        bytes: Derived key
    """
    if len(salt) < 16:
        raise CryptoError("Salt must be at least 16 bytes", code="SALT_TOO_SHORT")
    
    try:
        kdf = Scrypt(salt=salt, length=key_length, n=n, r=r, p=p)
        return kdf.derive(password)
    except (ValueError, TypeError) as e:
        raise CryptoError(f"Scrypt derivation failed: {e}", code="KDF_ERROR") from e


def derive_key_hkdf(
    key_material: bytes,
    info: bytes,
    salt: Optional[bytes] = None,
    key_length: int = 32
) -> bytes:
    """
    Deriva una sottochiave da materiale ad alta entropia (HKDF-SHA256).

    Da usare solo per segreti casuali (device key), non per password.

    Args:
        key_material: Input keying material
        info: Etichetta di contesto (separa gli usi della stessa chiave)
        salt: Salt opzionale
        key_length: Output key length

    Returns:
        bytes: Derived key
    """
    try:
        kdf = HKDF(algorithm=hashes.SHA256(), length=key_length, salt=salt, info=info)
        return kdf.derive(bytes(key_material))
    except (ValueError, TypeError) as e:
        raise CryptoError(f"HKDF derivation failed: {e}", code="KDF_ERROR") from e


# ============================================================================
# AUTHENTICATED ENCRYPTION: XChaCha20-Poly1305
# ============================================================================

def encrypt_xchacha20(
    plaintext: BytesLike,
    key: BytesLike,
    nonce: Optional[bytes] = None,
    associated_data: Optional[bytes] = None
) -> Tuple[bytes, bytes]:
    """
    Cifra con XChaCha20-Poly1305 (nonce 24 bytes casuale).
    
    Returns:
        tuple: (ciphertext con tag, nonce)
    """
    if len(key) != 32:
        raise EncryptionError(
            f"XChaCha20-Poly1305 requires 32-byte key, got {len(key)}",
            code="INVALID_KEY_LENGTH"
        )
    
    nonce = nonce if nonce is not None else generate_random_bytes(BACKUP_NONCE_SIZE)
    try:
        ciphertext = nacl.bindings.crypto_aead_xchacha20poly1305_ietf_encrypt(
            bytes(plaintext), associated_data, nonce, bytes(key)
        )
    except nacl.exceptions.CryptoError as e:
        raise EncryptionError(f"XChaCha20-Poly1305 encryption failed: {e}", code="ENCRYPT_ERROR") from e
    
    return ciphertext, nonce


def decrypt_xchacha20(
    ciphertext: bytes,
    key: BytesLike,
    nonce: bytes,
    associated_data: Optional[bytes] = None
) -> bytes:
    """
    Decifra XChaCha20-Poly1305 verificando il tag.
    
    Raises:
        DecryptionError: Tag invalido (password errata o dati alterati)
    """
    if len(key) != 32 or len(nonce) != BACKUP_NONCE_SIZE:
        raise DecryptionError("Invalid key or nonce length", code="DECRYPT_ERROR")
    
    try:
        return nacl.bindings.crypto_aead_xchacha20poly1305_ietf_decrypt(
            ciphertext, associated_data, nonce, bytes(key)
        )
    except nacl.exceptions.CryptoError as e:
        logger.debug(
            "XChaCha20-Poly1305 authentication failed",
            extra_data={"ciphertext_size": len(ciphertext)}
        )
        raise DecryptionError(
            "Authentication failed: wrong password or corrupted data",
            code="AUTH_TAG_INVALID"
        ) from e


# ============================================================================
# AUTHENTICATED ENCRYPTION: AES-256-GCM
# ============================================================================

def encrypt_data_aes_gcm(
    plaintext: bytes,
    key: bytes,
    associated_data: Optional[bytes] = None
) -> Tuple[bytes, bytes]:
    """
    Cifra con AES-256-GCM (storage at rest).
    
    Returns:
        tuple: (ciphertext con tag 16 bytes, nonce 12 bytes)
    """
    if len(key) != 32:
        raise EncryptionError(
            f"AES-256 requires 32-byte key, got {len(key)}",
            code="INVALID_KEY_LENGTH"
        )
    
    nonce = secrets.token_bytes(12)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, associated_data)
    return ciphertext, nonce


def decrypt_data_aes_gcm(
    ciphertext: bytes,
    key: bytes,
    nonce: bytes,
    associated_data: Optional[bytes] = None
) -> bytes:
    """
    Decifra AES-256-GCM.
    
    Raises:
        DecryptionError: Tag invalido o parametri errati
    """
    if len(key) != 32:
        raise DecryptionError(f"AES-256 requires 32-byte key, got {len(key)}")
    
    if len(nonce) != 12:
        raise DecryptionError(f"GCM requires 12-byte nonce, got {len(nonce)}")
    
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, associated_data)
    except InvalidTag as e:
        raise DecryptionError(
            "Authentication tag verification failed. Data may be corrupted or tampered.",
            code="AUTH_TAG_INVALID"
        ) from e


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "compute_sha256",
    "compute_sha512",
    "constant_time_equals",
    "generate_random_bytes",
    "wipe",
    "secret_scope",
    "is_valid_point",
    "validate_point",
    "scalar_random",
    "scalar_reduce",
    "scalar_add",
    "scalar_mul",
    "point_add",
    "hash_to_scalar",
    "scalarmult_base",
    "ecdh_shared_secret",
    "sign_with_scalar",
    "verify_signature",
    "derive_key_scrypt",
    "derive_key_hkdf",
    "encrypt_xchacha20",
    "decrypt_xchacha20",
    "encrypt_data_aes_gcm",
    "decrypt_data_aes_gcm",
]
