"""
StealthPay - Pytest Configuration
===================================
Fixtures e configurazione per testing.

Last Updated: 2026-10-18
Version: 1.0.0
"""

import pytest

# Internal imports
from stealth_pay.config import get_test_config
from stealth_pay.domain.keypairs import KeyPair
from stealth_pay.domain.signers import Ed25519Signer
from stealth_pay.ledger.memory import InMemoryLedger
from stealth_pay.network.monitor import StaticNetworkStatus
from stealth_pay.storage.secure_storage import InMemorySecureStorage
from stealth_pay.wallet.generator import StealthAddressGenerator


# ============================================================================
# CONFIGURATION FIXTURES
# ============================================================================

@pytest.fixture
def test_config():
    """Test configuration (KDF leggera, intervalli brevi)"""
    return get_test_config()


# ============================================================================
# KEY FIXTURES
# ============================================================================

@pytest.fixture
def receiver():
    """KeyPair del destinatario"""
    return KeyPair.generate()


@pytest.fixture
def other_receiver():
    """KeyPair non correlata"""
    return KeyPair.generate()


@pytest.fixture
def generator():
    return StealthAddressGenerator()


@pytest.fixture
def prepared_payment(receiver, generator):
    """Pagamento preparato da 1_000_000 lamports verso receiver"""
    return generator.prepare_payment(receiver.to_meta_address(), 1_000_000)


# ============================================================================
# LEDGER FIXTURES
# ============================================================================

@pytest.fixture
def ledger():
    """Ledger in memoria"""
    return InMemoryLedger()


@pytest.fixture
def payer(ledger):
    """Signer finanziato con 10 SOL"""
    signer = Ed25519Signer.generate()
    ledger.airdrop(signer.address, 10_000_000_000)
    return signer


# ============================================================================
# ENVIRONMENT FIXTURES
# ============================================================================

@pytest.fixture
def storage():
    """Secure storage in memoria"""
    return InMemorySecureStorage()


@pytest.fixture
def network():
    """Stato rete controllabile dai test"""
    return StaticNetworkStatus(online=True)
