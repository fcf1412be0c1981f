"""AML operations endpoints: manual re-analysis, job lookup and queue stats."""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from src.jobs.models import Job, QueueStats
from src.jobs.queue import JobQueue

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/aml", tags=["aml"])


def get_job_queue(request: Request) -> JobQueue:
    queue = getattr(request.app.state, "job_queue", None)
    if queue is None:
        raise HTTPException(status_code=503, detail="Job queue not initialized")
    return queue


@router.post("/payments/{payment_id}/analyze", status_code=202)
async def analyze_payment(
    payment_id: str,
    queue: JobQueue = Depends(get_job_queue),  # noqa: B008
) -> Job:
    """Queue a (re-)analysis of one payment. Scoring the same payment again is safe."""
    if not payment_id.strip():
        raise ValueError("payment_id must not be blank")
    job = await queue.enqueue(payment_id)
    logger.info("aml_analysis_requested", payment_id=payment_id, job_id=job.job_id)
    return job


@router.get("/jobs/{job_id}")
async def get_job(
    job_id: str,
    queue: JobQueue = Depends(get_job_queue),  # noqa: B008
) -> Job:
    job = await queue.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job


@router.get("/queue/stats")
async def queue_stats(queue: JobQueue = Depends(get_job_queue)) -> QueueStats:  # noqa: B008
    return await queue.stats()
