"""Job queue for payment analysis: a Redis implementation and an in-process one.

Jobs move ``waiting -> active -> completed``; a failed attempt goes to
``delayed`` until its backoff elapses and back to ``waiting``, or to ``failed``
once the attempt budget is spent. Active jobs hold a lease; a job whose lease
expires (its worker died) is put back on the waiting list by
``recover_stalled``, or marked failed if it has no attempts left.
"""

import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from datetime import UTC, datetime

import structlog

from .models import Job, JobState, QueueStats, RetryPolicy

logger = structlog.get_logger()

# KEYS[1] = wait list, KEYS[2] = active zset, ARGV[1] = lease deadline
_POP_AND_LEASE = """
local job_id = redis.call('RPOP', KEYS[1])
if job_id then
    redis.call('ZADD', KEYS[2], ARGV[1], job_id)
end
return job_id
"""

# KEYS[1] = source zset, KEYS[2] = wait list, ARGV[1] = job id
_MOVE_TO_WAIT = """
if redis.call('ZREM', KEYS[1], ARGV[1]) == 1 then
    redis.call('LPUSH', KEYS[2], ARGV[1])
    return 1
end
return 0
"""


def _now() -> datetime:
    return datetime.now(UTC)


def _decode(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


class JobQueue(ABC):
    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        keep_completed: int = 1000,
        keep_failed: int = 1000,
        lease_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.retry_policy = retry_policy or RetryPolicy()
        self._keep_completed = keep_completed
        self._keep_failed = keep_failed
        self._lease_seconds = lease_seconds
        self._clock = clock

    def _new_job(self, payment_id: str, job_id: str | None) -> Job:
        return Job(
            job_id=job_id or str(uuid.uuid4()),
            payment_id=payment_id,
            max_attempts=self.retry_policy.attempts,
            created_at=_now(),
        )

    def _activated(self, job: Job) -> Job:
        job.state = JobState.ACTIVE
        job.attempts_made += 1
        job.processed_at = _now()
        return job

    def _completed(self, job: Job, result: dict) -> Job:
        job.state = JobState.COMPLETED
        job.result = result
        job.failed_reason = None
        job.finished_at = _now()
        return job

    def _failed(self, job: Job, error: str) -> tuple[Job, float | None]:
        """Apply a failed attempt; returns the job and the retry delay, if any."""
        job.failed_reason = error
        if self.retry_policy.should_retry(job):
            job.state = JobState.DELAYED
            return job, self.retry_policy.delay_for(job.attempts_made)
        job.state = JobState.FAILED
        job.finished_at = _now()
        return job, None

    def _lease_expired(self, job: Job) -> bool:
        """Apply a lease expiry; returns True if the job goes back to waiting."""
        if job.attempts_made >= job.max_attempts:
            job.state = JobState.FAILED
            job.failed_reason = "stalled"
            job.finished_at = _now()
            return False
        job.state = JobState.WAITING
        return True

    @abstractmethod
    async def enqueue(self, payment_id: str, job_id: str | None = None) -> Job:
        """Add a job; an existing job with the same ``job_id`` is returned as is."""
        ...

    @abstractmethod
    async def dequeue(self, timeout: float = 1.0) -> Job | None:
        """Take the next waiting job and mark it active, or None after ``timeout``."""
        ...

    @abstractmethod
    async def complete(self, job: Job, result: dict) -> Job: ...

    @abstractmethod
    async def fail(self, job: Job, error: str) -> Job:
        """Record a failed attempt: schedule a retry or mark the job failed."""
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Job | None: ...

    @abstractmethod
    async def stats(self) -> QueueStats: ...

    @abstractmethod
    async def recover_stalled(self) -> int:
        """Requeue expired active jobs, or fail them once out of attempts.

        Returns how many expired leases were handled.
        """
        ...

    async def close(self) -> None:
        return None


class InMemoryJobQueue(JobQueue):
    """Single-process queue with the same state machine as RedisJobQueue."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._jobs: dict[str, Job] = {}
        self._waiting: deque[str] = deque()
        self._delayed: dict[str, float] = {}
        self._active: dict[str, float] = {}
        self._completed_ids: deque[str] = deque()
        self._failed_ids: deque[str] = deque()
        self._wakeup = asyncio.Event()

    async def enqueue(self, payment_id: str, job_id: str | None = None) -> Job:
        if job_id and job_id in self._jobs:
            logger.info("job_deduplicated", job_id=job_id, payment_id=payment_id)
            return self._jobs[job_id].model_copy()
        job = self._new_job(payment_id, job_id)
        self._jobs[job.job_id] = job
        self._waiting.append(job.job_id)
        self._wakeup.set()
        logger.info("job_enqueued", job_id=job.job_id, payment_id=payment_id)
        return job.model_copy()

    def _promote_delayed(self) -> None:
        now = self._clock()
        for job_id, ready_at in list(self._delayed.items()):
            if ready_at <= now:
                del self._delayed[job_id]
                self._jobs[job_id].state = JobState.WAITING
                self._waiting.append(job_id)

    async def dequeue(self, timeout: float = 1.0) -> Job | None:
        self._promote_delayed()
        if not self._waiting:
            self._wakeup.clear()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout)
            except TimeoutError:
                pass
            self._promote_delayed()
            if not self._waiting:
                return None
        job_id = self._waiting.popleft()
        job = self._activated(self._jobs[job_id])
        self._active[job_id] = self._clock() + self._lease_seconds
        return job.model_copy()

    async def complete(self, job: Job, result: dict) -> Job:
        stored = self._stored(job)
        self._completed(stored, result)
        self._active.pop(job.job_id, None)
        self._remember(self._completed_ids, job.job_id, self._keep_completed)
        return stored.model_copy()

    async def fail(self, job: Job, error: str) -> Job:
        stored = self._stored(job)
        stored, delay = self._failed(stored, error)
        self._active.pop(job.job_id, None)
        if delay is not None:
            self._delayed[job.job_id] = self._clock() + delay
        else:
            self._remember(self._failed_ids, job.job_id, self._keep_failed)
        return stored.model_copy()

    def _stored(self, job: Job) -> Job:
        stored = self._jobs.get(job.job_id)
        if stored is None:
            raise LookupError(f"Unknown job: {job.job_id}")
        return stored

    def _remember(self, bucket: deque[str], job_id: str, keep: int) -> None:
        bucket.appendleft(job_id)
        while len(bucket) > keep:
            self._jobs.pop(bucket.pop(), None)

    async def get_job(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy() if job else None

    async def stats(self) -> QueueStats:
        return QueueStats(
            waiting=len(self._waiting),
            active=len(self._active),
            delayed=len(self._delayed),
            completed=len(self._completed_ids),
            failed=len(self._failed_ids),
        )

    async def recover_stalled(self) -> int:
        now = self._clock()
        stalled = [job_id for job_id, deadline in self._active.items() if deadline <= now]
        for job_id in stalled:
            del self._active[job_id]
            job = self._jobs[job_id]
            if self._lease_expired(job):
                self._waiting.append(job_id)
                logger.warning("job_stalled", job_id=job_id, payment_id=job.payment_id)
            else:
                self._remember(self._failed_ids, job_id, self._keep_failed)
                logger.error(
                    "job_stalled_attempts_exhausted",
                    job_id=job_id,
                    payment_id=job.payment_id,
                    attempts_made=job.attempts_made,
                )
        if stalled:
            self._wakeup.set()
        return len(stalled)


class RedisJobQueue(JobQueue):
    """Queue over ``redis.asyncio``.

    Layout under ``<prefix>:<name>``: ``wait`` (list), ``active`` (zset of lease
    deadlines), ``delayed`` (zset of ready times), ``completed``/``failed``
    (lists of recent ids) and ``job:<id>`` (JSON job record).

    A job leaves ``wait`` and enters ``active`` in one Lua call, so a worker
    that dies mid-dequeue leaves a lease behind for ``recover_stalled``.
    Dequeue polls every ``poll_interval`` seconds while the list is empty.
    """

    def __init__(
        self,
        client,
        name: str = "aml-analysis",
        prefix: str = "aml",
        poll_interval: float = 0.2,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self._client = client
        self._base = f"{prefix}:{name}"
        self._poll_interval = poll_interval

    def _key(self, suffix: str) -> str:
        return f"{self._base}:{suffix}"

    def _job_key(self, job_id: str) -> str:
        return self._key(f"job:{job_id}")

    async def _save(self, job: Job) -> None:
        await self._client.set(self._job_key(job.job_id), job.model_dump_json())

    async def enqueue(self, payment_id: str, job_id: str | None = None) -> Job:
        job = self._new_job(payment_id, job_id)
        created = await self._client.set(self._job_key(job.job_id), job.model_dump_json(), nx=True)
        if not created:
            logger.info("job_deduplicated", job_id=job.job_id, payment_id=payment_id)
            existing = await self.get_job(job.job_id)
            return existing or job
        await self._client.lpush(self._key("wait"), job.job_id)
        logger.info("job_enqueued", job_id=job.job_id, payment_id=payment_id)
        return job

    async def _promote_delayed(self) -> None:
        due = await self._client.zrangebyscore(self._key("delayed"), "-inf", self._clock())
        for raw in due:
            job_id = _decode(raw)
            if not await self._move_to_wait(self._key("delayed"), job_id):
                continue
            job = await self.get_job(job_id)
            if job is None:
                continue
            job.state = JobState.WAITING
            await self._save(job)

    async def _move_to_wait(self, source: str, job_id: str) -> bool:
        """Move ``job_id`` from a zset to the wait list; only one caller wins."""
        moved = await self._client.eval(_MOVE_TO_WAIT, 2, source, self._key("wait"), job_id)
        return bool(moved)

    async def _pop_and_lease(self) -> str | None:
        popped = await self._client.eval(
            _POP_AND_LEASE,
            2,
            self._key("wait"),
            self._key("active"),
            self._clock() + self._lease_seconds,
        )
        return _decode(popped) if popped is not None else None

    async def dequeue(self, timeout: float = 1.0) -> Job | None:
        loop = asyncio.get_running_loop()
        give_up_at = loop.time() + timeout
        while True:
            await self._promote_delayed()
            job_id = await self._pop_and_lease()
            if job_id is not None:
                break
            remaining = give_up_at - loop.time()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self._poll_interval, remaining))

        job = await self.get_job(job_id)
        if job is None:
            await self._client.zrem(self._key("active"), job_id)
            logger.warning("job_record_missing", job_id=job_id)
            return None

        # The lease is already held; if this save is lost the record still reads
        # waiting and recover_stalled requeues it
        job = self._activated(job)
        await self._save(job)
        return job

    async def complete(self, job: Job, result: dict) -> Job:
        job = self._completed(job, result)
        pipe = self._client.pipeline(transaction=True)
        pipe.set(self._job_key(job.job_id), job.model_dump_json())
        pipe.zrem(self._key("active"), job.job_id)
        pipe.lpush(self._key("completed"), job.job_id)
        await pipe.execute()
        await self._trim(self._key("completed"), self._keep_completed)
        return job

    async def fail(self, job: Job, error: str) -> Job:
        job, delay = self._failed(job, error)
        pipe = self._client.pipeline(transaction=True)
        pipe.set(self._job_key(job.job_id), job.model_dump_json())
        pipe.zrem(self._key("active"), job.job_id)
        if delay is not None:
            pipe.zadd(self._key("delayed"), {job.job_id: self._clock() + delay})
        else:
            pipe.lpush(self._key("failed"), job.job_id)
        await pipe.execute()
        if delay is None:
            await self._trim(self._key("failed"), self._keep_failed)
        return job

    async def _trim(self, key: str, keep: int) -> None:
        evicted = await self._client.lrange(key, keep, -1)
        if not evicted:
            return
        await self._client.delete(*[self._job_key(_decode(raw)) for raw in evicted])
        await self._client.ltrim(key, 0, keep - 1)

    async def get_job(self, job_id: str) -> Job | None:
        raw = await self._client.get(self._job_key(job_id))
        if raw is None:
            return None
        return Job.model_validate_json(raw)

    async def stats(self) -> QueueStats:
        pipe = self._client.pipeline(transaction=False)
        pipe.llen(self._key("wait"))
        pipe.zcard(self._key("active"))
        pipe.zcard(self._key("delayed"))
        pipe.llen(self._key("completed"))
        pipe.llen(self._key("failed"))
        waiting, active, delayed, completed, failed = await pipe.execute()
        return QueueStats(
            waiting=waiting,
            active=active,
            delayed=delayed,
            completed=completed,
            failed=failed,
        )

    async def recover_stalled(self) -> int:
        expired = await self._client.zrangebyscore(self._key("active"), "-inf", self._clock())
        recovered = 0
        for raw in expired:
            job_id = _decode(raw)
            job = await self.get_job(job_id)
            if job is None:
                await self._client.zrem(self._key("active"), job_id)
                continue
            if self._lease_expired(job):
                if not await self._move_to_wait(self._key("active"), job_id):
                    continue
                await self._save(job)
                recovered += 1
                logger.warning("job_stalled", job_id=job_id, payment_id=job.payment_id)
                continue
            if not await self._client.zrem(self._key("active"), job_id):
                continue
            recovered += 1
            pipe = self._client.pipeline(transaction=True)
            pipe.set(self._job_key(job_id), job.model_dump_json())
            pipe.lpush(self._key("failed"), job_id)
            await pipe.execute()
            await self._trim(self._key("failed"), self._keep_failed)
            logger.error(
                "job_stalled_attempts_exhausted",
                job_id=job_id,
                payment_id=job.payment_id,
                attempts_made=job.attempts_made,
            )
        return recovered

    async def close(self) -> None:
        await self._client.aclose()
