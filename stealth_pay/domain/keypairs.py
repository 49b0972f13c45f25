"""
StealthPay - Stealth KeyPair Management
=========================================
Coppie di chiavi dual-key (spending + viewing) e meta-address pubblico.

Security Level: CRITICAL
Last Updated: 2026-10-18
Version: 1.0.0

Features:
- Generazione di due coppie Ed25519 indipendenti
- Meta-address ``stealth:<version>:<spend_pk>:<view_pk>``
- PublicIdentity senza campi segreti per il lato sender
- Backup cifrato XChaCha20-Poly1305 (salt || nonce || ciphertext)
- Zeroization dei segreti
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from stealth_pay.constants import (
    META_ADDRESS_PREFIX,
    META_ADDRESS_SEPARATOR,
    META_ADDRESS_FIELDS,
    STEALTH_VERSION,
    SUPPORTED_VERSIONS,
    SECRET_SCALAR_SIZE,
    PUBLIC_KEY_SIZE,
    BACKUP_SALT_SIZE,
    BACKUP_NONCE_SIZE,
    BACKUP_HEADER_SIZE,
    BACKUP_PLAINTEXT_SIZE,
    BACKUP_KDF_N,
)
from stealth_pay.domain.crypto_core import (
    scalar_random,
    scalar_reduce,
    scalarmult_base,
    validate_point,
    constant_time_equals,
    generate_random_bytes,
    derive_key_scrypt,
    encrypt_xchacha20,
    decrypt_xchacha20,
    wipe,
)
from stealth_pay.errors import (
    CryptoError,
    InvalidMetaAddressError,
    InvalidKeyFormatError,
    EncryptionError,
    DecryptionError,
    StealthPayException,
)
from stealth_pay.logging_setup import get_logger
from stealth_pay.utils.base58 import encode_public_key, decode_public_key


# ============================================================================
# MODULE LOGGER
# ============================================================================

logger = get_logger("keypairs")

Password = Union[str, bytes]


def _password_bytes(password: Password) -> bytes:
    if isinstance(password, str):
        return password.encode("utf-8")
    return bytes(password)


def _is_canonical_scalar(scalar: bytes) -> bool:
    if len(scalar) != SECRET_SCALAR_SIZE:
        return False
    reduced = scalar_reduce(bytes(scalar) + b"\x00" * 32)
    return constant_time_equals(reduced, scalar) and any(scalar)


# ============================================================================
# PUBLIC IDENTITY
# ============================================================================

@dataclass(frozen=True)
class PublicIdentity:
    """
    Chiavi pubbliche di un destinatario (risultato del parsing di un
    meta-address). Non contiene segreti: non puo' firmare ne' scansionare.
    
    Attributes:
        spending_pk (bytes): Chiave pubblica di spesa (32 bytes)
        viewing_pk (bytes): Chiave pubblica di visione (32 bytes)
        version (int): Versione schema
    
    Examples:
        >>> identity = PublicIdentity.from_meta_address(meta)
        >>> identity.to_meta_address() == meta
        True
    """
    
    spending_pk: bytes
    viewing_pk: bytes
    version: int = STEALTH_VERSION
    
    def __post_init__(self):
        validate_point(self.spending_pk, "Spending public key")
        validate_point(self.viewing_pk, "Viewing public key")
        if self.version not in SUPPORTED_VERSIONS:
            raise InvalidMetaAddressError(
                f"Unsupported stealth version: {self.version}",
                details={"version": self.version}
            )
    
    def spending_public_key(self) -> bytes:
        return self.spending_pk
    
    def viewing_public_key(self) -> bytes:
        return self.viewing_pk
    
    def to_meta_address(self) -> str:
        """Meta-address pubblicabile (funzione pura delle chiavi pubbliche)"""
        return META_ADDRESS_SEPARATOR.join((
            META_ADDRESS_PREFIX,
            str(self.version),
            encode_public_key(self.spending_pk),
            encode_public_key(self.viewing_pk),
        ))
    
    @classmethod
    def from_meta_address(cls, meta_address: str) -> PublicIdentity:
        """
        Parsing e validazione di un meta-address.
        
        Args:
            meta_address: ``stealth:1:<b58 spend pk>:<b58 view pk>``
        
        Returns:
            PublicIdentity: Chiavi pubbliche del destinatario
        
        Raises:
            InvalidMetaAddressError: Struttura, prefisso o versione invalidi
            InvalidKeyFormatError: Chiave non decodificabile o punto invalido
        """
        if not isinstance(meta_address, str):
            raise InvalidMetaAddressError("Meta-address must be a string")
        
        parts = meta_address.split(META_ADDRESS_SEPARATOR)
        if len(parts) != META_ADDRESS_FIELDS:
            raise InvalidMetaAddressError(
                f"Meta-address must have {META_ADDRESS_FIELDS} fields, got {len(parts)}",
                details={"fields": len(parts)}
            )
        
        prefix, version_str, spend_b58, view_b58 = parts
        
        if prefix != META_ADDRESS_PREFIX:
            raise InvalidMetaAddressError(
                f"Invalid meta-address prefix: {prefix!r}",
                details={"prefix": prefix}
            )
        
        if not version_str.isdigit():
            raise InvalidMetaAddressError(
                f"Invalid meta-address version: {version_str!r}"
            )
        
        version = int(version_str)
        if version not in SUPPORTED_VERSIONS:
            raise InvalidMetaAddressError(
                f"Unsupported stealth version: {version}",
                details={"version": version, "supported": list(SUPPORTED_VERSIONS)}
            )
        
        return cls(
            spending_pk=decode_public_key(spend_b58),
            viewing_pk=decode_public_key(view_b58),
            version=version,
        )
    
    def __str__(self) -> str:
        return self.to_meta_address()


# ============================================================================
# STEALTH KEYPAIR
# ============================================================================

class KeyPair:
    """
    Identita' di ricezione: coppia spending + coppia viewing indipendenti.
    
    Costruita solo da generazione, import del backup o secure storage.
    E' l'unica proprietaria dei propri segreti: gli accessor restituiscono
    copie ``bytearray`` che il chiamante deve azzerare (vedi
    :func:`stealth_pay.domain.crypto_core.secret_scope`).
    
    Examples:
        >>> with KeyPair.generate() as keypair:
        ...     meta = keypair.to_meta_address()
        >>> meta.startswith("stealth:1:")
        True
    """
    
    __slots__ = (
        "_spending_secret",
        "_viewing_secret",
        "_spending_public",
        "_viewing_public",
        "version",
        "_wiped",
    )
    
    def __init__(
        self,
        spending_secret: bytes,
        viewing_secret: bytes,
        version: int = STEALTH_VERSION,
        spending_public: Optional[bytes] = None,
        viewing_public: Optional[bytes] = None,
    ):
        if version not in SUPPORTED_VERSIONS:
            raise InvalidKeyFormatError(
                f"Unsupported stealth version: {version}",
                details={"version": version}
            )
        
        for name, secret in (("spending", spending_secret), ("viewing", viewing_secret)):
            if not _is_canonical_scalar(secret):
                raise InvalidKeyFormatError(f"Invalid {name} secret scalar")
        
        self._spending_secret = bytearray(spending_secret)
        self._viewing_secret = bytearray(viewing_secret)
        self._spending_public = scalarmult_base(self._spending_secret)
        self._viewing_public = scalarmult_base(self._viewing_secret)
        self.version = version
        self._wiped = False
        
        # Chiavi pubbliche dichiarate (backup/storage) devono combaciare
        for name, declared, derived in (
            ("spending", spending_public, self._spending_public),
            ("viewing", viewing_public, self._viewing_public),
        ):
            if declared is not None and not constant_time_equals(declared, derived):
                self.zeroize()
                raise InvalidKeyFormatError(
                    f"Declared {name} public key does not match its secret"
                )
    
    # ========================================================================
    # GENERATION
    # ========================================================================
    
    @classmethod
    def generate(cls) -> KeyPair:
        """
        Genera una nuova identita' (versione 1).
        
        Spending e viewing provengono da estrazioni CSPRNG separate:
        nessuna delle due e' derivata dall'altra.
        """
        spending_secret = bytearray(scalar_random())
        viewing_secret = bytearray(scalar_random())
        try:
            keypair = cls(bytes(spending_secret), bytes(viewing_secret))
        finally:
            wipe(spending_secret)
            wipe(viewing_secret)
        
        logger.info(
            "Stealth keypair generated",
            extra_data={"spending_pk": encode_public_key(keypair.spending_public_key())}
        )
        return keypair
    
    # ========================================================================
    # PUBLIC ACCESSORS
    # ========================================================================
    
    def spending_public_key(self) -> bytes:
        return self._spending_public
    
    def viewing_public_key(self) -> bytes:
        return self._viewing_public
    
    def public_identity(self) -> PublicIdentity:
        return PublicIdentity(
            spending_pk=self._spending_public,
            viewing_pk=self._viewing_public,
            version=self.version,
        )
    
    def to_meta_address(self) -> str:
        return self.public_identity().to_meta_address()
    
    @staticmethod
    def from_meta_address(meta_address: str) -> PublicIdentity:
        """Parsing di un meta-address: restituisce solo chiavi pubbliche"""
        return PublicIdentity.from_meta_address(meta_address)
    
    # ========================================================================
    # SECRET ACCESSORS
    # ========================================================================
    
    def _require_secrets(self):
        if self._wiped:
            raise CryptoError(
                "KeyPair secrets have been wiped",
                code="KEYPAIR_WIPED"
            )
    
    def spending_secret_key(self) -> bytearray:
        """
        Copia dello scalare segreto di spesa.
        
        Warning:
            Il chiamante deve azzerare la copia dopo l'uso.
        """
        self._require_secrets()
        return bytearray(self._spending_secret)
    
    def viewing_secret_key(self) -> bytearray:
        """Copia dello scalare segreto di visione (da azzerare dopo l'uso)"""
        self._require_secrets()
        return bytearray(self._viewing_secret)
    
    # ========================================================================
    # ENCRYPTED BACKUP
    # ========================================================================
    
    def export_encrypted(self, password: Password, kdf_n: int = BACKUP_KDF_N) -> bytes:
        """
        Backup cifrato autenticato dell'intera identita'.
        
        Layout: ``salt(32) || nonce(24) || ciphertext``; il plaintext
        (129 bytes) e' ``spend_sk || spend_pk || view_sk || view_pk || version``.
        Salt e nonce sono freschi ad ogni chiamata.
        
        Args:
            password: Password del backup
            kdf_n: Costo scrypt (deve coincidere in import)
        
        Returns:
            bytes: Blob cifrato
        
        Raises:
            EncryptionError: Se la cifratura fallisce
        """
        self._require_secrets()
        
        salt = generate_random_bytes(BACKUP_SALT_SIZE)
        key = bytearray()
        plaintext = bytearray()
        try:
            key = bytearray(derive_key_scrypt(_password_bytes(password), salt, n=kdf_n))
            plaintext = (
                self._spending_secret
                + bytearray(self._spending_public)
                + self._viewing_secret
                + bytearray(self._viewing_public)
                + bytearray([self.version])
            )
            ciphertext, nonce = encrypt_xchacha20(plaintext, key)
        except StealthPayException as e:
            raise EncryptionError(f"Backup encryption failed: {e.message}") from e
        finally:
            wipe(plaintext)
            wipe(key)
        
        logger.info(
            "Encrypted backup exported",
            extra_data={"spending_pk": encode_public_key(self._spending_public)}
        )
        return salt + nonce + ciphertext
    
    @classmethod
    def import_encrypted(
        cls,
        data: bytes,
        password: Password,
        kdf_n: int = BACKUP_KDF_N
    ) -> KeyPair:
        """
        Ricostruisce una KeyPair completa da un backup cifrato.
        
        All-or-nothing: nessuno stato viene creato se l'autenticazione fallisce.
        
        Raises:
            DecryptionError: Dati troppo corti, tag AEAD invalido (password
                errata o manomissione), plaintext di lunghezza inattesa o
                chiavi incoerenti nel plaintext (pk != sk*B)
        """
        if len(data) < BACKUP_HEADER_SIZE:
            raise DecryptionError(
                f"Backup too short: {len(data)} bytes (minimum {BACKUP_HEADER_SIZE})",
                code="BACKUP_TOO_SHORT"
            )
        
        salt = bytes(data[:BACKUP_SALT_SIZE])
        nonce = bytes(data[BACKUP_SALT_SIZE:BACKUP_HEADER_SIZE])
        ciphertext = bytes(data[BACKUP_HEADER_SIZE:])
        
        key = bytearray(derive_key_scrypt(_password_bytes(password), salt, n=kdf_n))
        plaintext = bytearray()
        try:
            plaintext = bytearray(decrypt_xchacha20(ciphertext, key, nonce))
            
            if len(plaintext) != BACKUP_PLAINTEXT_SIZE:
                raise DecryptionError(
                    f"Invalid backup payload size: {len(plaintext)} "
                    f"(expected {BACKUP_PLAINTEXT_SIZE})",
                    code="BACKUP_SIZE_MISMATCH"
                )
            
            view = memoryview(plaintext)
            offset = 0
            fields = []
            for size in (SECRET_SCALAR_SIZE, PUBLIC_KEY_SIZE, SECRET_SCALAR_SIZE, PUBLIC_KEY_SIZE):
                fields.append(bytes(view[offset:offset + size]))
                offset += size
            version = plaintext[offset]
            view.release()
            
            spend_sk, spend_pk, view_sk, view_pk = fields
            try:
                keypair = cls(
                    spending_secret=spend_sk,
                    viewing_secret=view_sk,
                    version=version,
                    spending_public=spend_pk,
                    viewing_public=view_pk,
                )
            except InvalidKeyFormatError as e:
                raise DecryptionError(
                    f"Backup holds inconsistent keys: {e.message}",
                    code="BACKUP_INCONSISTENT_KEYS"
                ) from e
        finally:
            wipe(plaintext)
            wipe(key)
        
        logger.info(
            "Encrypted backup imported",
            extra_data={"spending_pk": encode_public_key(keypair.spending_public_key())}
        )
        return keypair
    
    # ========================================================================
    # ZEROIZATION
    # ========================================================================
    
    def zeroize(self) -> None:
        """Azzera i segreti; la KeyPair resta utilizzabile solo per le chiavi pubbliche"""
        wipe(self._spending_secret)
        wipe(self._viewing_secret)
        self._wiped = True
    
    @property
    def is_wiped(self) -> bool:
        return self._wiped
    
    def __enter__(self) -> KeyPair:
        return self
    
    def __exit__(self, exc_type, exc_val, exc_tb):
        self.zeroize()
    
    def __del__(self):
        # __init__ puo' fallire prima di assegnare i buffer
        if hasattr(self, "_wiped"):
            self.zeroize()
    
    def __eq__(self, other) -> bool:
        if not isinstance(other, KeyPair):
            return NotImplemented
        return (
            self._spending_public == other._spending_public
            and self._viewing_public == other._viewing_public
            and self.version == other.version
        )
    
    def __hash__(self) -> int:
        return hash((self._spending_public, self._viewing_public, self.version))
    
    def __repr__(self) -> str:
        """Safe repr (non espone segreti)"""
        return f"KeyPair(meta_address={self.to_meta_address()!r})"


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "PublicIdentity",
    "KeyPair",
]
