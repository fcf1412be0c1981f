"""Asynchronous payment analysis jobs."""

from .models import ANALYZE_PAYMENT, Job, JobState, QueueStats, RetryPolicy
from .queue import InMemoryJobQueue, JobQueue, RedisJobQueue
from .worker import AMLWorker, PaymentNotFoundError

__all__ = [
    "ANALYZE_PAYMENT",
    "AMLWorker",
    "InMemoryJobQueue",
    "Job",
    "JobQueue",
    "JobState",
    "PaymentNotFoundError",
    "QueueStats",
    "RedisJobQueue",
    "RetryPolicy",
]
