"""
StealthPay - KeyPair Tests
============================
Unit tests for stealth keypairs, meta-addresses and encrypted backups.
"""

import pytest

from stealth_pay.constants import BACKUP_HEADER_SIZE, BACKUP_SALT_SIZE
from stealth_pay.domain.crypto_core import (
    derive_key_scrypt,
    encrypt_xchacha20,
    generate_random_bytes,
    scalar_random,
    scalarmult_base,
)
from stealth_pay.domain.keypairs import KeyPair, PublicIdentity
from stealth_pay.errors import (
    CryptoError,
    DecryptionError,
    InvalidKeyFormatError,
    InvalidMetaAddressError,
)
from stealth_pay.utils.base58 import encode_public_key


KDF_N = 2 ** 10


class TestKeyPairGeneration:
    """Test KeyPair generation"""
    
    def test_generate_independent_keys(self):
        keypair = KeyPair.generate()
        
        assert keypair.version == 1
        assert keypair.spending_public_key() != keypair.viewing_public_key()
        assert len(keypair.spending_public_key()) == 32
    
    def test_generate_is_random(self):
        assert KeyPair.generate().to_meta_address() != KeyPair.generate().to_meta_address()
    
    def test_public_keys_match_secrets(self):
        keypair = KeyPair.generate()
        
        assert scalarmult_base(keypair.spending_secret_key()) == keypair.spending_public_key()
        assert scalarmult_base(keypair.viewing_secret_key()) == keypair.viewing_public_key()
    
    def test_rejects_zero_secret(self):
        with pytest.raises(InvalidKeyFormatError):
            KeyPair(b"\x00" * 32, scalar_random())
    
    def test_rejects_mismatched_declared_public(self):
        with pytest.raises(InvalidKeyFormatError):
            KeyPair(
                scalar_random(),
                scalar_random(),
                spending_public=scalarmult_base(scalar_random()),
            )
    
    def test_zeroize(self):
        keypair = KeyPair.generate()
        meta = keypair.to_meta_address()
        
        keypair.zeroize()
        
        assert keypair.is_wiped
        assert keypair.to_meta_address() == meta
        with pytest.raises(CryptoError):
            keypair.spending_secret_key()
    
    def test_secret_accessor_returns_copy(self):
        keypair = KeyPair.generate()
        secret = keypair.spending_secret_key()
        secret[0] ^= 0xFF
        
        assert keypair.spending_secret_key() != secret
    
    def test_repr_hides_secrets(self):
        keypair = KeyPair.generate()
        assert keypair.spending_secret_key().hex() not in repr(keypair)


class TestMetaAddress:
    """Test meta-address encoding/parsing"""
    
    def test_format(self):
        keypair = KeyPair.generate()
        fields = keypair.to_meta_address().split(":")
        
        assert fields[0] == "stealth"
        assert fields[1] == "1"
        assert fields[2] == encode_public_key(keypair.spending_public_key())
        assert fields[3] == encode_public_key(keypair.viewing_public_key())
    
    def test_roundtrip_exposes_only_public_keys(self):
        keypair = KeyPair.generate()
        
        identity = KeyPair.from_meta_address(keypair.to_meta_address())
        
        assert isinstance(identity, PublicIdentity)
        assert identity.spending_public_key() == keypair.spending_public_key()
        assert identity.viewing_public_key() == keypair.viewing_public_key()
        assert not hasattr(identity, "spending_secret_key")
    
    @pytest.mark.parametrize("meta_address", [
        "",
        "stealth:1:abc",
        "stealth:1:a:b:c",
        "hidden:1:{spend}:{view}",
        "stealth:2:{spend}:{view}",
        "stealth:x:{spend}:{view}",
    ])
    def test_invalid_structure(self, meta_address):
        keypair = KeyPair.generate()
        text = meta_address.format(
            spend=encode_public_key(keypair.spending_public_key()),
            view=encode_public_key(keypair.viewing_public_key()),
        )
        
        with pytest.raises(InvalidMetaAddressError):
            PublicIdentity.from_meta_address(text)
    
    def test_invalid_key_field(self):
        keypair = KeyPair.generate()
        view = encode_public_key(keypair.viewing_public_key())
        small_order = encode_public_key(bytes(32))
        
        with pytest.raises(InvalidKeyFormatError):
            PublicIdentity.from_meta_address(f"stealth:1:0OIl:{view}")
        
        with pytest.raises(InvalidKeyFormatError):
            PublicIdentity.from_meta_address(f"stealth:1:{small_order}:{view}")


class TestEncryptedBackup:
    """Test encrypted export/import"""
    
    def test_roundtrip(self):
        keypair = KeyPair.generate()
        
        blob = keypair.export_encrypted("correct horse", kdf_n=KDF_N)
        restored = KeyPair.import_encrypted(blob, "correct horse", kdf_n=KDF_N)
        
        assert restored.to_meta_address() == keypair.to_meta_address()
        assert restored.spending_secret_key() == keypair.spending_secret_key()
        assert restored.viewing_secret_key() == keypair.viewing_secret_key()
    
    def test_layout_size(self):
        blob = KeyPair.generate().export_encrypted("pw", kdf_n=KDF_N)
        
        # salt(32) || nonce(24) || plaintext(129) + tag(16)
        assert len(blob) == BACKUP_HEADER_SIZE + 129 + 16
    
    def test_fresh_salt_and_nonce(self):
        keypair = KeyPair.generate()
        
        assert keypair.export_encrypted("pw", kdf_n=KDF_N) != keypair.export_encrypted("pw", kdf_n=KDF_N)
    
    def test_wrong_password(self):
        blob = KeyPair.generate().export_encrypted("right", kdf_n=KDF_N)
        
        with pytest.raises(DecryptionError):
            KeyPair.import_encrypted(blob, "wrong", kdf_n=KDF_N)
    
    def test_flipped_byte(self):
        blob = bytearray(KeyPair.generate().export_encrypted("pw", kdf_n=KDF_N))
        blob[-1] ^= 0x01
        
        with pytest.raises(DecryptionError):
            KeyPair.import_encrypted(bytes(blob), "pw", kdf_n=KDF_N)
    
    def test_too_short(self):
        with pytest.raises(DecryptionError) as exc_info:
            KeyPair.import_encrypted(b"\x00" * 55, "pw", kdf_n=KDF_N)
        
        assert exc_info.value.code == "BACKUP_TOO_SHORT"

    @pytest.mark.parametrize("size", [128, 130])
    def test_authenticated_payload_of_wrong_size(self, size):
        salt = generate_random_bytes(BACKUP_SALT_SIZE)
        key = derive_key_scrypt(b"pw", salt, n=KDF_N)
        ciphertext, nonce = encrypt_xchacha20(b"\x01" * size, key)

        with pytest.raises(DecryptionError) as exc_info:
            KeyPair.import_encrypted(salt + nonce + ciphertext, "pw", kdf_n=KDF_N)

        assert exc_info.value.code == "BACKUP_SIZE_MISMATCH"

    def test_inconsistent_keys_fail_as_decryption_error(self):
        spend_sk = scalar_random()
        view_sk = scalar_random()
        payload = (
            spend_sk
            + scalarmult_base(scalar_random())
            + view_sk
            + scalarmult_base(view_sk)
            + bytes([1])
        )
        salt = generate_random_bytes(BACKUP_SALT_SIZE)
        key = derive_key_scrypt(b"pw", salt, n=KDF_N)
        ciphertext, nonce = encrypt_xchacha20(payload, key)

        with pytest.raises(DecryptionError) as exc_info:
            KeyPair.import_encrypted(salt + nonce + ciphertext, "pw", kdf_n=KDF_N)

        assert exc_info.value.code == "BACKUP_INCONSISTENT_KEYS"
    
    def test_export_after_zeroize_fails(self):
        keypair = KeyPair.generate()
        keypair.zeroize()
        
        with pytest.raises(CryptoError):
            keypair.export_encrypted("pw", kdf_n=KDF_N)
