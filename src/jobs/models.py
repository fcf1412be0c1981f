"""Job records and retry policy for the AML analysis queue."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel

ANALYZE_PAYMENT = "analyze-payment"


class JobState(StrEnum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"  # waiting for a retry after backoff
    COMPLETED = "completed"
    FAILED = "failed"


class Job(BaseModel):
    job_id: str
    name: str = ANALYZE_PAYMENT
    payment_id: str
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    max_attempts: int = 3
    created_at: datetime
    processed_at: datetime | None = None
    finished_at: datetime | None = None
    failed_reason: str | None = None
    result: dict | None = None

    @property
    def is_final(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.FAILED)


class QueueStats(BaseModel):
    waiting: int = 0
    active: int = 0
    delayed: int = 0
    completed: int = 0
    failed: int = 0


@dataclass
class RetryPolicy:
    """Fixed attempt budget with exponential backoff between attempts."""

    attempts: int = 3
    backoff_delay_seconds: float = 60.0

    def delay_for(self, attempts_made: int) -> float:
        """Delay before the next attempt, after ``attempts_made`` attempts."""
        return self.backoff_delay_seconds * (2 ** max(attempts_made - 1, 0))

    def should_retry(self, job: Job) -> bool:
        return job.attempts_made < job.max_attempts
