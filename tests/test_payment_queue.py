"""
StealthPay - Payment Queue Tests
==================================
Unit tests for the persistent payment queue and its settlement passes.
"""

import asyncio
import json

import pytest

from stealth_pay.constants import QUEUE_STORAGE_KEY, PaymentState
from stealth_pay.domain.models import PreparedPayment
from stealth_pay.errors import (
    BlockchainError,
    PaymentNotFoundError,
    QueueFullError,
    SerializationError,
    StorageError,
)
from stealth_pay.ledger.memory import InMemoryLedger
from stealth_pay.services.payment_queue import PaymentQueue, PaymentStatus
from stealth_pay.storage.secure_storage import InMemorySecureStorage


# ============================================================================
# HELPERS
# ============================================================================

class ObservingLedger(InMemoryLedger):
    """InMemoryLedger con hook sulle chiamate della coda"""
    
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.blockhash_calls = 0
        self.on_blockhash = None
        self.on_send = None
        self.lose_confirmation = False
    
    async def get_latest_blockhash(self) -> str:
        self.blockhash_calls += 1
        if self.on_blockhash is not None:
            self.on_blockhash()
        return await super().get_latest_blockhash()
    
    async def send_and_confirm_transaction(self, transaction) -> str:
        if self.on_send is not None:
            await self.on_send(transaction)
        signature = await super().send_and_confirm_transaction(transaction)
        if self.lose_confirmation:
            # Transazione confermata ma risposta persa
            self.lose_confirmation = False
            raise BlockchainError("Confirmation timed out", code="LEDGER_TIMEOUT")
        return signature


class FailingStorage(InMemorySecureStorage):
    """Storage che rifiuta le scritture"""
    
    async def _put(self, namespace, key, blob):
        raise StorageError("disk full")


def make_queue(ledger, storage, network, payer, **kwargs):
    return PaymentQueue(ledger, storage, network, payer, **kwargs)


@pytest.fixture
def observing_ledger(payer):
    ledger = ObservingLedger()
    ledger.airdrop(payer.address, 10_000_000_000)
    return ledger


# ============================================================================
# ENQUEUE / CAPACITY
# ============================================================================

class TestEnqueue:
    """Test enqueue and capacity"""
    
    @pytest.mark.asyncio
    async def test_enqueue_returns_id(self, ledger, storage, network, payer, prepared_payment):
        queue = make_queue(ledger, storage, network, payer)
        
        payment_id = await queue.enqueue(prepared_payment)
        
        assert payment_id in queue
        assert queue.get_status(payment_id) == PaymentStatus.queued()
        assert queue.get_payment(payment_id).retry_count == 0
        assert len(queue) == 1
    
    @pytest.mark.asyncio
    async def test_enqueue_persists(self, ledger, storage, network, payer, prepared_payment):
        queue = make_queue(ledger, storage, network, payer)
        payment_id = await queue.enqueue(prepared_payment)
        
        snapshot = json.loads(await storage.load_data(QUEUE_STORAGE_KEY))
        
        assert [p["id"] for p in snapshot["payments"]] == [payment_id]
    
    @pytest.mark.asyncio
    async def test_unknown_id(self, ledger, storage, network, payer):
        queue = make_queue(ledger, storage, network, payer)
        
        assert queue.get_status("missing") is None
    
    @pytest.mark.asyncio
    async def test_capacity(self, ledger, storage, network, payer, prepared_payment):
        """1000 inserimenti riescono, il 1001-esimo no"""
        queue = make_queue(ledger, storage, network, payer)
        
        for _ in range(1000):
            await queue.enqueue(prepared_payment)
        
        with pytest.raises(QueueFullError) as exc_info:
            await queue.enqueue(prepared_payment)
        
        assert exc_info.value.capacity == 1000
        assert len(queue) == 1000
    
    @pytest.mark.asyncio
    async def test_storage_failure_rolls_back(self, ledger, network, payer, prepared_payment):
        queue = make_queue(ledger, FailingStorage(), network, payer)
        
        with pytest.raises(StorageError):
            await queue.enqueue(prepared_payment)
        
        assert len(queue) == 0


# ============================================================================
# PROCESSING
# ============================================================================

class TestProcessQueue:
    """Test settlement passes"""
    
    @pytest.mark.asyncio
    async def test_settles_and_removes(self, ledger, storage, network, payer, prepared_payment):
        queue = make_queue(ledger, storage, network, payer)
        payment_id = await queue.enqueue(prepared_payment)
        
        outcomes = await queue.process_queue()
        
        assert len(outcomes) == 1
        assert outcomes[0].payment_id == payment_id
        assert outcomes[0].status.state is PaymentState.SETTLED
        assert await ledger.get_transaction(outcomes[0].status.signature) is not None
        assert await ledger.get_balance(prepared_payment.stealth_address_b58) == 1_000_000
        assert queue.get_status(payment_id) is None
        assert len(queue) == 0
    
    @pytest.mark.asyncio
    async def test_empty_queue(self, ledger, storage, network, payer):
        queue = make_queue(ledger, storage, network, payer)
        
        assert await queue.process_queue() == []
    
    @pytest.mark.asyncio
    async def test_retry_transitions(self, observing_ledger, storage, network, payer, prepared_payment):
        """Queued -> Settling -> Queued quattro volte, poi Failed con retry_count 5"""
        queue = make_queue(observing_ledger, storage, network, payer)
        payment_id = await queue.enqueue(prepared_payment)
        seen = []
        
        def fail_while_settling():
            seen.append(queue.get_status(payment_id).state)
            raise BlockchainError("RPC unreachable")
        
        observing_ledger.on_blockhash = fail_while_settling
        
        for attempt in range(1, 5):
            outcomes = await queue.process_queue()
            assert outcomes[0].status == PaymentStatus.queued()
            assert queue.get_payment(payment_id).retry_count == attempt
        
        outcomes = await queue.process_queue()
        
        assert seen == [PaymentState.SETTLING] * 5
        assert outcomes[0].status.state is PaymentState.FAILED
        assert outcomes[0].status.reason == "RPC unreachable"
        assert queue.get_payment(payment_id).retry_count == 5
        
        # Failed resta interrogabile e non viene ritentato
        assert queue.get_status(payment_id).state is PaymentState.FAILED
        assert await queue.process_queue() == []
    
    @pytest.mark.asyncio
    async def test_settling_is_never_persisted(self, observing_ledger, storage, network, payer, prepared_payment):
        queue = make_queue(observing_ledger, storage, network, payer)
        payment_id = await queue.enqueue(prepared_payment)
        persisted = []
        
        async def inspect_storage(transaction):
            snapshot = json.loads(await storage.load_data(QUEUE_STORAGE_KEY))
            persisted.append(snapshot["payments"][0])
            assert queue.get_status(payment_id).state is PaymentState.SETTLING
        
        observing_ledger.on_send = inspect_storage
        await queue.process_queue()
        
        assert persisted[0]["status"]["state"] == "queued"
        assert persisted[0]["pending_signature"] is not None
    
    @pytest.mark.asyncio
    async def test_lost_confirmation_is_not_resubmitted(self, observing_ledger, storage, network, payer, prepared_payment):
        """Una transazione gia' confermata viene riconciliata, non reinviata"""
        queue = make_queue(observing_ledger, storage, network, payer)
        payment_id = await queue.enqueue(prepared_payment)
        observing_ledger.lose_confirmation = True
        
        first = await queue.process_queue()
        assert first[0].status == PaymentStatus.queued()
        assert first[0].retry_count == 1
        
        # Riavvio: nuova istanza dallo storage
        restarted = make_queue(observing_ledger, storage, network, payer)
        await restarted.load_from_storage()
        second = await restarted.process_queue()
        
        assert second[0].payment_id == payment_id
        assert second[0].status.state is PaymentState.SETTLED
        assert second[0].reconciled
        assert observing_ledger.submitted_count == 1
        assert await observing_ledger.get_balance(prepared_payment.stealth_address_b58) == 1_000_000
    
    @pytest.mark.asyncio
    async def test_identical_payments_settle_separately(self, ledger, storage, network, payer, prepared_payment):
        queue = make_queue(ledger, storage, network, payer)
        await queue.enqueue(prepared_payment)
        await queue.enqueue(prepared_payment)
        
        outcomes = await queue.process_queue()
        
        assert [o.status.state for o in outcomes] == [PaymentState.SETTLED] * 2
        assert outcomes[0].status.signature != outcomes[1].status.signature
        assert await ledger.get_balance(prepared_payment.stealth_address_b58) == 2_000_000
    
    @pytest.mark.asyncio
    async def test_enqueue_during_pass(self, storage, network, payer, prepared_payment):
        ledger = InMemoryLedger(latency=0.1)
        ledger.airdrop(payer.address, 10_000_000_000)
        queue = make_queue(ledger, storage, network, payer)
        await queue.enqueue(prepared_payment)
        
        pass_task = asyncio.create_task(queue.process_queue())
        await asyncio.sleep(0.02)
        late_id = await asyncio.wait_for(queue.enqueue(prepared_payment), timeout=0.05)
        outcomes = await pass_task
        
        assert len(outcomes) == 1
        assert queue.get_status(late_id) == PaymentStatus.queued()
    
    @pytest.mark.asyncio
    async def test_passes_do_not_overlap(self, storage, network, payer, prepared_payment):
        ledger = InMemoryLedger(latency=0.05)
        ledger.airdrop(payer.address, 10_000_000_000)
        queue = make_queue(ledger, storage, network, payer)
        await queue.enqueue(prepared_payment)
        
        first, second = await asyncio.gather(queue.process_queue(), queue.process_queue())
        
        assert len(first) + len(second) == 1
        assert ledger.submitted_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("batch_threshold", [100, 1])
    async def test_removed_during_pass_is_not_sent(
        self, observing_ledger, storage, network, payer, receiver, generator, batch_threshold
    ):
        """Un pagamento rimosso mentre il pass e' in corso non muove fondi"""
        queue = make_queue(observing_ledger, storage, network, payer, batch_threshold=batch_threshold)
        first = generator.prepare_payment(receiver.to_meta_address(), 1_000_000)
        second = generator.prepare_payment(receiver.to_meta_address(), 2_000_000)
        first_id = await queue.enqueue(first)
        second_id = await queue.enqueue(second)

        async def remove_second(transaction):
            observing_ledger.on_send = None
            await queue.remove(second_id)

        observing_ledger.on_send = remove_second
        outcomes = await queue.process_queue()

        assert [o.payment_id for o in outcomes] == [first_id]
        assert observing_ledger.submitted_count == 1
        assert await observing_ledger.get_balance(second.stealth_address_b58) == 0
        assert second_id not in queue
        assert len(queue) == 0


class TestBatching:
    """Test grouped settlement above the batch threshold"""
    
    @pytest.mark.asyncio
    async def test_one_blockhash_per_group(self, observing_ledger, storage, network, payer, receiver, generator):
        queue = make_queue(observing_ledger, storage, network, payer, batch_threshold=3)
        shared = generator.prepare_payment(receiver.to_meta_address(), 1_000)
        await queue.enqueue(shared)
        await queue.enqueue(shared)
        for _ in range(3):
            await queue.enqueue(generator.prepare_payment(receiver.to_meta_address(), 1_000))
        
        outcomes = await queue.process_queue()
        
        assert len(outcomes) == 5
        assert all(o.status.state is PaymentState.SETTLED for o in outcomes)
        assert observing_ledger.blockhash_calls == 4
        assert len({o.status.signature for o in outcomes}) == 5
    
    @pytest.mark.asyncio
    async def test_failure_is_per_payment(self, observing_ledger, storage, network, payer, receiver, generator):
        """Un pagamento rifiutato non fa fallire gli altri del gruppo"""
        queue = make_queue(observing_ledger, storage, network, payer, batch_threshold=1)
        affordable = generator.prepare_payment(receiver.to_meta_address(), 1_000)
        too_large = PreparedPayment(
            stealth_address=affordable.stealth_address,
            amount=10 ** 15,
            ephemeral_public_key=affordable.ephemeral_public_key,
            viewing_tag=affordable.viewing_tag,
        )
        ok_id = await queue.enqueue(affordable)
        bad_id = await queue.enqueue(too_large)
        
        outcomes = {o.payment_id: o for o in await queue.process_queue()}
        
        assert outcomes[ok_id].status.state is PaymentState.SETTLED
        assert outcomes[bad_id].status == PaymentStatus.queued()
        assert outcomes[bad_id].retry_count == 1
        assert observing_ledger.blockhash_calls == 1
    
    @pytest.mark.asyncio
    async def test_group_blockhash_failure(self, observing_ledger, storage, network, payer, prepared_payment):
        queue = make_queue(observing_ledger, storage, network, payer, batch_threshold=1)
        await queue.enqueue(prepared_payment)
        await queue.enqueue(prepared_payment)
        observing_ledger.set_available(False)
        
        outcomes = await queue.process_queue()
        
        assert [o.retry_count for o in outcomes] == [1, 1]
        assert all(o.status == PaymentStatus.queued() for o in outcomes)


# ============================================================================
# PERSISTENCE
# ============================================================================

class TestPersistence:
    """Test save/load through secure storage"""
    
    @pytest.mark.asyncio
    async def test_reload_preserves_order_and_status(self, storage, network, payer, receiver, generator):
        ledger = InMemoryLedger()
        ledger.set_available(False)
        queue = make_queue(ledger, storage, network, payer, max_retries=1)
        
        first_id = await queue.enqueue(generator.prepare_payment(receiver.to_meta_address(), 1))
        await queue.process_queue()
        second_id = await queue.enqueue(generator.prepare_payment(receiver.to_meta_address(), 2))
        third_id = await queue.enqueue(generator.prepare_payment(receiver.to_meta_address(), 3))
        
        restored = make_queue(ledger, storage, network, payer)
        assert await restored.load_from_storage() == 3
        
        original = queue.payments()
        reloaded = restored.payments()
        assert [p.id for p in reloaded] == [first_id, second_id, third_id]
        assert [p.status for p in reloaded] == [p.status for p in original]
        assert [p.retry_count for p in reloaded] == [1, 0, 0]
        assert [p.payment for p in reloaded] == [p.payment for p in original]
        assert reloaded[0].status.state is PaymentState.FAILED
    
    @pytest.mark.asyncio
    async def test_missing_key_is_empty_queue(self, ledger, storage, network, payer):
        queue = make_queue(ledger, storage, network, payer)
        
        assert await queue.load_from_storage() == 0
        assert len(queue) == 0
    
    @pytest.mark.asyncio
    @pytest.mark.parametrize("stored", [
        b"not json",
        b"[]",
        b'{"version": 1}',
        b'{"version": 99, "payments": []}',
        b'{"version": 1, "payments": [{"id": "x"}]}',
        b'{"version": 1, "payments": [42]}',
    ])
    async def test_rejects_invalid_data(self, ledger, storage, network, payer, stored):
        await storage.store_data(QUEUE_STORAGE_KEY, stored)
        queue = make_queue(ledger, storage, network, payer)
        
        with pytest.raises(SerializationError):
            await queue.load_from_storage()
    
    @pytest.mark.asyncio
    async def test_invalid_data_keeps_state(self, ledger, storage, network, payer, prepared_payment):
        queue = make_queue(ledger, storage, network, payer)
        await queue.enqueue(prepared_payment)
        await storage.store_data(QUEUE_STORAGE_KEY, b"garbage")
        
        with pytest.raises(SerializationError):
            await queue.load_from_storage()
        
        assert len(queue) == 1


# ============================================================================
# FAILED RETENTION / REMOVAL
# ============================================================================

class TestFailedRetention:
    """Test failed-entry retention and manual removal"""
    
    @pytest.mark.asyncio
    async def test_failed_pruned_after_retention(self, storage, network, payer, prepared_payment):
        now = [1_000.0]
        ledger = InMemoryLedger()
        ledger.set_available(False)
        queue = make_queue(
            ledger, storage, network, payer,
            max_retries=1,
            failed_retention_seconds=60,
            clock=lambda: now[0],
        )
        payment_id = await queue.enqueue(prepared_payment)
        await queue.process_queue()
        
        now[0] += 30
        await queue.process_queue()
        assert queue.get_status(payment_id).state is PaymentState.FAILED
        
        now[0] += 31
        await queue.process_queue()
        assert queue.get_status(payment_id) is None
    
    @pytest.mark.asyncio
    async def test_purge_failed(self, storage, network, payer, prepared_payment):
        ledger = InMemoryLedger()
        ledger.set_available(False)
        queue = make_queue(ledger, storage, network, payer, max_retries=1)
        await queue.enqueue(prepared_payment)
        await queue.process_queue()
        
        assert await queue.purge_failed() == 1
        assert len(queue) == 0
    
    @pytest.mark.asyncio
    async def test_remove(self, ledger, storage, network, payer, prepared_payment):
        queue = make_queue(ledger, storage, network, payer)
        payment_id = await queue.enqueue(prepared_payment)
        
        await queue.remove(payment_id)
        
        assert payment_id not in queue
        with pytest.raises(PaymentNotFoundError):
            await queue.remove(payment_id)


# ============================================================================
# AUTO-SETTLEMENT
# ============================================================================

class TestAutoSettlement:
    """Test background settlement loop"""
    
    @pytest.mark.asyncio
    async def test_waits_for_network(self, ledger, storage, network, payer, prepared_payment):
        network.set_online(False)
        queue = make_queue(ledger, storage, network, payer, poll_interval=0.01)
        payment_id = await queue.enqueue(prepared_payment)
        
        queue.start_auto_settlement()
        try:
            await asyncio.sleep(0.05)
            assert queue.get_status(payment_id) == PaymentStatus.queued()
            
            network.set_online(True)
            for _ in range(100):
                if len(queue) == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            await queue.stop_auto_settlement()
        
        assert len(queue) == 0
        assert await ledger.get_balance(prepared_payment.stealth_address_b58) == 1_000_000
        assert not queue.auto_settlement_running
    
    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, ledger, storage, network, payer):
        queue = make_queue(ledger, storage, network, payer, poll_interval=0.01)
        
        task = queue.start_auto_settlement()
        assert queue.start_auto_settlement() is task
        
        await queue.stop_auto_settlement()
    
    @pytest.mark.asyncio
    async def test_from_settings(self, test_config, ledger, storage, network, payer):
        queue = PaymentQueue.from_settings(test_config, ledger, storage, network, payer)
        
        assert queue.max_size == 1000
        assert queue.batch_threshold == 100
        assert queue.max_retries == 5
        assert queue.poll_interval == test_config.auto_settle_interval
