"""
StealthPay - Stealth Address Tests
====================================
Unit tests for sender-side derivation and receiver-side scanning.
"""

import pytest

from stealth_pay.domain.crypto_core import scalar_random, scalarmult_base, secret_scope
from stealth_pay.domain.keypairs import KeyPair
from stealth_pay.domain.models import PreparedPayment, StealthMetadata
from stealth_pay.errors import (
    BlockchainError,
    InvalidMetaAddressError,
    KeyDerivationError,
    SerializationError,
)
from stealth_pay.ledger.transactions import build_stealth_transfer
from stealth_pay.wallet.generator import StealthAddressGenerator
from stealth_pay.wallet.scanner import StealthScanner


class TestStealthAddressGenerator:
    """Test sender-side derivation"""
    
    def test_output_shape(self, receiver, generator):
        output = generator.generate_stealth_address(receiver.to_meta_address())
        
        assert len(output.stealth_address) == 32
        assert len(output.ephemeral_public_key) == 32
        assert len(output.viewing_tag) == 4
        assert output.stealth_address != receiver.spending_public_key()
    
    def test_independent_invocations(self, receiver, generator):
        """Due pagamenti allo stesso destinatario non sono collegabili"""
        meta = receiver.to_meta_address()
        
        first = generator.prepare_payment(meta, 1_000_000)
        second = generator.prepare_payment(meta, 1_000_000)
        
        assert first.stealth_address != second.stealth_address
        assert first.ephemeral_public_key != second.ephemeral_public_key
        assert first.viewing_tag != second.viewing_tag
    
    def test_deterministic_with_supplied_ephemeral(self, receiver):
        generator = StealthAddressGenerator(cache_size=10)
        ephemeral = scalar_random()
        
        first = generator.generate_stealth_address(receiver.to_meta_address(), ephemeral)
        second = generator.generate_stealth_address(receiver.public_identity(), ephemeral)
        
        assert first == second
        assert first.ephemeral_public_key == scalarmult_base(ephemeral)
        assert generator.cache_len == 1
    
    def test_cache_is_bounded(self, receiver):
        generator = StealthAddressGenerator(cache_size=2)
        
        for _ in range(5):
            generator.generate_stealth_address(receiver.to_meta_address(), scalar_random())
        
        assert generator.cache_len == 2
        generator.clear_cache()
        assert generator.cache_len == 0
    
    def test_invalid_meta_address(self, generator):
        with pytest.raises(InvalidMetaAddressError):
            generator.generate_stealth_address("stealth:1:only-three")
    
    @pytest.mark.parametrize("amount", [0, -5, 1.5])
    def test_invalid_amount(self, receiver, generator, amount):
        with pytest.raises(SerializationError):
            generator.prepare_payment(receiver.to_meta_address(), amount)


class TestStealthScanner:
    """Test receiver-side checks"""
    
    def test_receiver_scenario(self, receiver, other_receiver, generator):
        """K1 pubblica M1, il sender paga 1_000_000: solo K1 riconosce il pagamento"""
        payment = generator.prepare_payment(receiver.to_meta_address(), 1_000_000)
        
        scanner = StealthScanner.from_keypair(receiver)
        other = StealthScanner.from_keypair(other_receiver)
        
        assert scanner.check_viewing_tag(payment.ephemeral_public_key, payment.viewing_tag)
        assert scanner.verify_ownership(payment.ephemeral_public_key, payment.stealth_address)
        assert not other.verify_ownership(payment.ephemeral_public_key, payment.stealth_address)
    
    def test_unrelated_tag_rejected(self, receiver, generator):
        payment = generator.prepare_payment(receiver.to_meta_address(), 1)
        scanner = StealthScanner.from_keypair(receiver)
        
        wrong_tag = bytes(b ^ 0xFF for b in payment.viewing_tag)
        
        assert not scanner.check_viewing_tag(payment.ephemeral_public_key, wrong_tag)
    
    def test_invalid_ephemeral_is_not_a_match(self, receiver):
        scanner = StealthScanner.from_keypair(receiver)
        
        assert not scanner.check_viewing_tag(bytes(32), b"\x00" * 4)
        assert not scanner.verify_ownership(b"\x01" * 5, bytes(32))
    
    def test_derive_spending_key(self, receiver, generator):
        """s' * B coincide con lo stealth address"""
        payment = generator.prepare_payment(receiver.to_meta_address(), 1)
        scanner = StealthScanner.from_keypair(receiver)
        
        with secret_scope(receiver.spending_secret_key()) as spending_secret:
            one_time = scanner.derive_spending_key(payment.ephemeral_public_key, spending_secret)
        
        assert scalarmult_base(one_time) == payment.stealth_address
    
    def test_derive_spending_key_invalid_ephemeral(self, receiver):
        scanner = StealthScanner.from_keypair(receiver)
        
        with pytest.raises(KeyDerivationError):
            scanner.derive_spending_key(bytes(32), receiver.spending_secret_key())


class TestLedgerScanning:
    """Test incremental scanning over the in-memory ledger"""
    
    @pytest.mark.asyncio
    async def test_detects_own_payment(self, receiver, other_receiver, generator, ledger, payer):
        own = generator.prepare_payment(receiver.to_meta_address(), 1_000_000)
        foreign = generator.prepare_payment(other_receiver.to_meta_address(), 2_000_000)
        
        for payment in (own, foreign):
            blockhash = await ledger.get_latest_blockhash()
            await ledger.send_and_confirm_transaction(build_stealth_transfer(payer, payment, blockhash))
        
        scanner = StealthScanner.from_keypair(receiver, ledger=ledger)
        detected = await scanner.scan_for_payments()
        
        assert len(detected) == 1
        assert detected[0].stealth_address == own.stealth_address
        assert detected[0].amount == 1_000_000
        assert detected[0].slot == 1
        assert scanner.get_scan_index() == await ledger.get_slot() + 1
    
    @pytest.mark.asyncio
    async def test_cursor_advances_without_payments(self, receiver, ledger, storage):
        ledger.advance_slots(10)
        scanner = StealthScanner.from_keypair(receiver, ledger=ledger, storage=storage)
        
        assert await scanner.scan_for_payments() == []
        assert scanner.get_scan_index() == 11
        
        restored = StealthScanner.from_keypair(receiver, ledger=ledger, storage=storage)
        assert await restored.load_scan_index() == 11
    
    @pytest.mark.asyncio
    async def test_rescan_is_incremental(self, receiver, generator, ledger, payer):
        scanner = StealthScanner.from_keypair(receiver, ledger=ledger)
        payment = generator.prepare_payment(receiver.to_meta_address(), 5_000)
        blockhash = await ledger.get_latest_blockhash()
        await ledger.send_and_confirm_transaction(build_stealth_transfer(payer, payment, blockhash))
        
        assert len(await scanner.scan_for_payments()) == 1
        assert await scanner.scan_for_payments() == []
        
        scanner.set_scan_index(0)
        assert len(await scanner.scan_for_payments()) == 1
    
    @pytest.mark.asyncio
    async def test_reference_memo_does_not_hide_payment(self, receiver, generator, ledger, payer):
        payment = generator.prepare_payment(receiver.to_meta_address(), 7_000)
        blockhash = await ledger.get_latest_blockhash()
        tx = build_stealth_transfer(payer, payment, blockhash, reference="queue-entry-id")
        await ledger.send_and_confirm_transaction(tx)
        
        scanner = StealthScanner.from_keypair(receiver, ledger=ledger)
        detected = await scanner.scan_for_payments()
        
        assert [d.amount for d in detected] == [7_000]
    
    @pytest.mark.asyncio
    async def test_scan_without_ledger(self, receiver):
        scanner = StealthScanner.from_keypair(receiver)
        
        with pytest.raises(BlockchainError):
            await scanner.scan_for_payments()
    
    def test_negative_scan_index(self, receiver):
        with pytest.raises(ValueError):
            StealthScanner.from_keypair(receiver).set_scan_index(-1)


class TestStealthMetadata:
    """Test the 37-byte on-chain payload"""
    
    def test_layout(self, prepared_payment):
        encoded = prepared_payment.metadata().encode()
        
        assert len(encoded) == 37
        assert encoded[0] == 1
        assert encoded[1:5] == prepared_payment.viewing_tag
        assert encoded[5:] == prepared_payment.ephemeral_public_key
        assert StealthMetadata.decode(encoded) == prepared_payment.metadata()
    
    def test_wrong_size(self):
        assert StealthMetadata.try_decode(b"\x01" * 36) is None
        with pytest.raises(SerializationError):
            StealthMetadata.decode(b"\x01" * 38)
    
    def test_prepared_payment_dict(self, prepared_payment):
        restored = PreparedPayment.from_dict(prepared_payment.to_dict())
        
        assert restored == prepared_payment
        with pytest.raises(SerializationError):
            PreparedPayment.from_dict({"amount": 1})
