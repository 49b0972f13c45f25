"""
StealthPay - CLI Tests
========================
Comandi typer eseguiti con CliRunner.
"""

import pytest
from typer.testing import CliRunner

from stealth_pay.cli.main import app
from stealth_pay.config import get_settings
from stealth_pay.domain.keypairs import KeyPair
from stealth_pay.utils.base58 import encode_public_key
from stealth_pay.version import __version__, is_meta_address_version_supported


KDF_N = 2 ** 10
PASSWORD = "correct horse battery staple"

runner = CliRunner()


@pytest.fixture(autouse=True)
def light_kdf(monkeypatch):
    """KDF leggera per i backup creati dalla CLI"""
    monkeypatch.setenv("STEALTHPAY_BACKUP_KDF_N", str(KDF_N))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def backup_file(receiver, tmp_path):
    path = tmp_path / "wallet.key"
    path.write_bytes(receiver.export_encrypted(PASSWORD, kdf_n=KDF_N))
    return path


class TestKeysCommands:
    """Test keys generate/show"""
    
    def test_generate(self, tmp_path):
        output = tmp_path / "new.key"
        
        result = runner.invoke(app, ["keys", "generate", "-o", str(output), "-p", PASSWORD])
        
        assert result.exit_code == 0
        restored = KeyPair.import_encrypted(output.read_bytes(), PASSWORD, kdf_n=KDF_N)
        assert restored.to_meta_address().startswith("stealth:1:")
    
    def test_generate_refuses_overwrite(self, backup_file):
        original = backup_file.read_bytes()
        
        result = runner.invoke(app, ["keys", "generate", "-o", str(backup_file), "-p", PASSWORD])
        
        assert result.exit_code == 1
        assert backup_file.read_bytes() == original
    
    def test_show(self, backup_file, receiver):
        result = runner.invoke(app, ["keys", "show", str(backup_file), "-p", PASSWORD])
        
        assert result.exit_code == 0
        assert encode_public_key(receiver.spending_public_key()) in result.output
    
    def test_show_wrong_password(self, backup_file):
        result = runner.invoke(app, ["keys", "show", str(backup_file), "-p", "wrong"])
        
        assert result.exit_code == 1


class TestAddressCommands:
    """Test address derive/check"""
    
    def test_derive(self, receiver):
        result = runner.invoke(app, ["address", "derive", receiver.to_meta_address(), "--amount", "0.5"])
        
        assert result.exit_code == 0
        assert "Memo payload" in result.output
    
    def test_derive_invalid_meta_address(self):
        result = runner.invoke(app, ["address", "derive", "stealth:9:x:y"])
        
        assert result.exit_code == 1
    
    def test_check_owned(self, backup_file, receiver, generator):
        output = generator.generate_stealth_address(receiver.to_meta_address())
        
        result = runner.invoke(app, [
            "address", "check", str(backup_file),
            "--ephemeral", encode_public_key(output.ephemeral_public_key),
            "--address", encode_public_key(output.stealth_address),
            "--tag", output.viewing_tag.hex(),
            "-p", PASSWORD,
        ])
        
        assert result.exit_code == 0
        assert "owned" in result.output
    
    def test_check_not_owned(self, backup_file, other_receiver, generator):
        output = generator.generate_stealth_address(other_receiver.to_meta_address())
        
        result = runner.invoke(app, [
            "address", "check", str(backup_file),
            "--ephemeral", encode_public_key(output.ephemeral_public_key),
            "--address", encode_public_key(output.stealth_address),
            "-p", PASSWORD,
        ])
        
        assert result.exit_code == 1


class TestQRCommand:
    """Test qr command"""
    
    def test_ascii(self, receiver):
        result = runner.invoke(app, ["qr", receiver.to_meta_address()])
        
        assert result.exit_code == 0
    
    def test_save(self, receiver, tmp_path):
        output = tmp_path / "meta.svg"
        
        result = runner.invoke(app, ["qr", receiver.to_meta_address(), "-o", str(output)])
        
        assert result.exit_code == 0
        assert output.exists()


class TestVersionCommand:
    """Test version reporting"""
    
    def test_version(self):
        result = runner.invoke(app, ["version"])
        
        assert result.exit_code == 0
        assert __version__ in result.output
    
    def test_meta_address_versions(self):
        assert is_meta_address_version_supported(1)
        assert not is_meta_address_version_supported(2)
