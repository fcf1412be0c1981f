"""Consumer for payment events: completed payments become AML analysis jobs."""

from typing import Any

import structlog

from src.jobs.queue import JobQueue

from .base import BaseConsumer

logger = structlog.get_logger()

PAYMENT_COMPLETED = "payment-completed"


class PaymentConsumer(BaseConsumer):
    def __init__(
        self,
        queue: JobQueue,
        bootstrap_servers: str,
        group_id: str = "aml-engine",
        topic: str = "donation.payment.events",
        **kwargs,
    ) -> None:
        super().__init__(
            topics=[topic],
            bootstrap_servers=bootstrap_servers,
            group_id=group_id,
            **kwargs,
        )
        self._queue = queue
        self.register_handler(PAYMENT_COMPLETED, self._handle_payment_completed)

    async def _handle_payment_completed(self, event: dict[str, Any]) -> None:
        payload = event.get("payload", {})
        payment_id = payload.get("payment_id")
        event_id = event.get("event_id")
        if not payment_id:
            logger.warning("payment_event_missing_payment_id", event_id=event_id)
            return

        # Redelivered events map to the same job id and are not enqueued twice
        job_id = f"evt:{event_id}" if event_id else None
        job = await self._queue.enqueue(payment_id, job_id=job_id)
        logger.info(
            "payment_completed_received",
            event_id=event_id,
            payment_id=payment_id,
            job_id=job.job_id,
        )
