"""FastAPI application entry point for the AML engine."""

import asyncio
import contextlib
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.middleware.error_handler import global_exception_handler
from src.api.middleware.logging import StructuredLoggingMiddleware
from src.api.routes.aml import router as aml_router
from src.api.routes.health import router as health_router
from src.config import Settings, settings
from src.domains.aml.config import AMLConfig
from src.domains.aml.counters import RedisCounterStore
from src.domains.aml.repository import session_repository_factory
from src.domains.aml.scorer import AMLScorer
from src.jobs.models import RetryPolicy
from src.jobs.queue import InMemoryJobQueue, JobQueue, RedisJobQueue
from src.jobs.worker import AMLWorker
from src.shared.logging import setup_logging

logger = structlog.get_logger()

# Track app start time for uptime calculation
APP_START_TIME: float = 0.0


def build_job_queue(config: Settings, redis_client=None) -> JobQueue:
    """Create the queue selected by ``aml_queue_backend``."""
    options = {
        "retry_policy": RetryPolicy(
            attempts=config.aml_job_attempts,
            backoff_delay_seconds=config.aml_job_backoff_seconds,
        ),
        "keep_completed": config.aml_keep_completed_jobs,
        "keep_failed": config.aml_keep_failed_jobs,
        "lease_seconds": config.aml_job_lease_seconds,
    }
    backend = config.aml_queue_backend.lower()
    if backend == "memory":
        return InMemoryJobQueue(**options)
    if backend == "redis":
        if redis_client is None:
            raise ValueError("redis queue backend needs a redis client")
        return RedisJobQueue(redis_client, name=config.aml_queue_name, **options)
    raise ValueError(f"Unknown AML queue backend: {config.aml_queue_backend}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown logic."""
    global APP_START_TIME
    APP_START_TIME = time.time()
    setup_logging(settings.log_level)

    logger.info(
        "aml_engine_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        queue_backend=settings.aml_queue_backend,
        worker_concurrency=settings.aml_worker_concurrency,
    )

    from src.db.database import async_session_factory, dispose_db, init_db

    await init_db()

    redis_client = aioredis.from_url(settings.redis_url)
    # The job queue owns its own connection so closing it leaves the counters usable
    queue_client = None
    if settings.aml_queue_backend.lower() == "redis":
        queue_client = aioredis.from_url(settings.redis_url)
    job_queue = build_job_queue(settings, queue_client)
    app.state.redis = redis_client
    app.state.job_queue = job_queue

    kafka_producer = None
    if settings.kafka_enabled:
        try:
            from src.shared.kafka_utils import create_producer

            kafka_producer = await create_producer(settings.kafka_bootstrap_servers)
        except Exception:
            logger.warning("kafka_producer_failed_to_start", exc_info=True)

    scorer = AMLScorer(
        counter_store=RedisCounterStore(redis_client),
        config=AMLConfig.from_env(),
        kafka_producer=kafka_producer,
        alert_topic=settings.aml_alert_topic,
    )

    worker: AMLWorker | None = None
    if settings.aml_worker_enabled:
        worker = AMLWorker(
            queue=job_queue,
            scorer=scorer,
            repository_factory=session_repository_factory(async_session_factory),
            concurrency=settings.aml_worker_concurrency,
            stalled_check_interval=settings.aml_stalled_check_interval_seconds,
        )
        await worker.start()

    # Start the payment consumer as a background task
    consumer_tasks: list[asyncio.Task] = []
    consumers = []
    if settings.kafka_enabled:
        try:
            from src.consumers.payment_consumer import PaymentConsumer

            consumers = [
                PaymentConsumer(
                    queue=job_queue,
                    bootstrap_servers=settings.kafka_bootstrap_servers,
                    group_id=settings.kafka_consumer_group,
                    topic=settings.payment_events_topic,
                    auto_offset_reset=settings.kafka_auto_offset_reset,
                ),
            ]
            for consumer in consumers:
                consumer_tasks.append(asyncio.create_task(consumer.start()))
            logger.info("kafka_consumers_started", count=len(consumers))
        except Exception:
            logger.warning("kafka_consumers_failed_to_start", exc_info=True)

    yield

    logger.info("aml_engine_shutting_down")
    for consumer in consumers:
        with contextlib.suppress(Exception):
            await consumer.stop()
    for task in consumer_tasks:
        task.cancel()
    if worker is not None:
        await worker.stop()
    if kafka_producer is not None:
        with contextlib.suppress(Exception):
            await kafka_producer.stop()
    await job_queue.close()
    await redis_client.aclose()
    await dispose_db()


app = FastAPI(
    title="AML Engine",
    description="Anti-money-laundering risk scoring for donation payments",
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Structured logging middleware
app.add_middleware(StructuredLoggingMiddleware)

# Global exception handler
app.add_exception_handler(Exception, global_exception_handler)

# Register routers
app.include_router(health_router)
app.include_router(aml_router)


def get_uptime() -> int:
    """Get application uptime in seconds."""
    if APP_START_TIME == 0.0:
        return 0
    return int(time.time() - APP_START_TIME)
