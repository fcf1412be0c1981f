"""Worker pool that pulls analysis jobs and runs the AML scorer on them."""

import asyncio
import contextlib
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

import structlog

from src.domains.aml.models import AnalysisResult
from src.domains.aml.repository import AMLRepository
from src.domains.aml.scorer import AMLScorer

from .models import Job, JobState
from .queue import JobQueue

logger = structlog.get_logger()

RepositoryFactory = Callable[[], AbstractAsyncContextManager[AMLRepository]]


class PaymentNotFoundError(LookupError):
    """The job's payment does not exist; the attempt fails and is retried."""

    def __init__(self, payment_id: str) -> None:
        super().__init__(f"Payment not found: {payment_id}")
        self.payment_id = payment_id


class AMLWorker:
    """Runs ``concurrency`` independent loops over one shared queue.

    Each job scores exactly one payment end-to-end. A job that raises is handed
    back to the queue, which retries it with backoff or marks it failed.
    """

    def __init__(
        self,
        queue: JobQueue,
        scorer: AMLScorer,
        repository_factory: RepositoryFactory,
        concurrency: int = 5,
        poll_timeout: float = 1.0,
        stalled_check_interval: float = 30.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue = queue
        self._scorer = scorer
        self._repository_factory = repository_factory
        self._concurrency = concurrency
        self._poll_timeout = poll_timeout
        self._stalled_check_interval = stalled_check_interval
        self._tasks: list[asyncio.Task] = []
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True
        self._tasks = [
            asyncio.create_task(self._run_loop(slot), name=f"aml-worker-{slot}")
            for slot in range(self._concurrency)
        ]
        self._tasks.append(asyncio.create_task(self._stalled_loop(), name="aml-worker-stalled"))
        logger.info("aml_worker_started", concurrency=self._concurrency)

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        logger.info("aml_worker_stopped")

    async def _run_loop(self, slot: int) -> None:
        while self._running:
            try:
                job = await self._queue.dequeue(timeout=self._poll_timeout)
            except Exception:
                logger.exception("job_dequeue_failed", worker_slot=slot)
                await asyncio.sleep(self._poll_timeout)
                continue
            if job is None:
                continue
            try:
                await self.process_job(job)
            except Exception:
                # Queue bookkeeping failed; the lease expiry will requeue the job
                logger.exception(
                    "job_bookkeeping_failed",
                    job_id=job.job_id,
                    payment_id=job.payment_id,
                )

    async def _stalled_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._stalled_check_interval)
            try:
                recovered = await self._queue.recover_stalled()
                if recovered:
                    logger.warning("stalled_jobs_recovered", count=recovered)
            except Exception:
                logger.exception("stalled_job_check_failed")

    async def process_job(self, job: Job) -> Job:
        """Run one attempt of ``job`` and record its outcome on the queue."""
        log = logger.bind(job_id=job.job_id, payment_id=job.payment_id, attempt=job.attempts_made)
        log.info("aml_job_started")

        try:
            result = await self.analyze_payment(job.payment_id)
        except Exception as exc:
            updated = await self._queue.fail(job, f"{type(exc).__name__}: {exc}")
            if updated.state == JobState.FAILED:
                log.error(
                    "aml_job_failed",
                    error=str(exc),
                    attempts_made=updated.attempts_made,
                    exc_info=True,
                )
            else:
                log.warning(
                    "aml_job_retry_scheduled",
                    error=str(exc),
                    attempts_made=updated.attempts_made,
                    max_attempts=updated.max_attempts,
                )
            return updated

        updated = await self._queue.complete(job, result.model_dump(mode="json"))
        log.info(
            "aml_job_completed",
            risk_score=result.verdict.risk_score,
            status=result.verdict.status.value,
            indicators=[i.value for i in result.verdict.indicators],
            alert_id=result.alert_id,
        )
        return updated

    async def analyze_payment(self, payment_id: str) -> AnalysisResult:
        async with self._repository_factory() as repository:
            payment = await repository.get_payment(payment_id)
            if payment is None:
                raise PaymentNotFoundError(payment_id)

            actor = None
            if payment.user_id is not None:
                actor = await repository.get_actor(payment.user_id)
                if actor is None:
                    logger.warning(
                        "payment_actor_missing",
                        payment_id=payment_id,
                        user_id=payment.user_id,
                    )

            return await self._scorer.evaluate(payment, actor, repository)
