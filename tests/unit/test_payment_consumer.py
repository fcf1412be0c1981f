"""Unit tests for the payment event consumer."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from src.consumers.payment_consumer import PAYMENT_COMPLETED, PaymentConsumer
from src.jobs.queue import InMemoryJobQueue


@pytest.fixture
def queue():
    return InMemoryJobQueue()


@pytest.fixture
def consumer(queue):
    return PaymentConsumer(queue=queue, bootstrap_servers="localhost:9092")


class TestPaymentConsumer:
    def test_subscribes_to_payment_topic(self, consumer):
        assert consumer.topics == ["donation.payment.events"]
        assert PAYMENT_COMPLETED in consumer.handlers

    @pytest.mark.asyncio
    async def test_completed_payment_enqueued(self, consumer, queue, sample_payment_completed_event):
        await consumer.dispatch(sample_payment_completed_event)
        job = await queue.get_job("evt:550e8400-e29b-41d4-a716-446655440000")
        assert job is not None
        assert job.payment_id == "pay-1"

    @pytest.mark.asyncio
    async def test_redelivered_event_enqueued_once(
        self, consumer, queue, sample_payment_completed_event
    ):
        await consumer.dispatch(sample_payment_completed_event)
        await consumer.dispatch(sample_payment_completed_event)
        assert (await queue.stats()).waiting == 1

    @pytest.mark.asyncio
    async def test_missing_payment_id_ignored(self, consumer, queue):
        await consumer.dispatch({"event_id": "e1", "event_type": PAYMENT_COMPLETED, "payload": {}})
        assert (await queue.stats()).waiting == 0

    @pytest.mark.asyncio
    async def test_other_events_ignored(self, consumer, queue):
        await consumer.dispatch(
            {"event_id": "e2", "event_type": "payment-initiated", "payload": {"payment_id": "p"}}
        )
        assert (await queue.stats()).waiting == 0

    @pytest.mark.asyncio
    async def test_handler_errors_do_not_escape(self, queue, sample_payment_completed_event):
        queue.enqueue = AsyncMock(side_effect=ConnectionError("redis down"))
        consumer = PaymentConsumer(queue=queue, bootstrap_servers="localhost:9092")
        msg = SimpleNamespace(value=sample_payment_completed_event, topic="t", offset=3)
        await consumer._process_message(msg)
        queue.enqueue.assert_awaited_once()
