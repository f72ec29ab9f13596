import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from feedai.context import AppContext, get_context, get_db
from feedai.models import Article
from feedai.schemas import EnqueueRequest, EnqueueResponse, JobResponse, MonitoringReport, QueueStatus

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/queue/status", response_model=QueueStatus)
def queue_status(ctx: AppContext = Depends(get_context)):
    return ctx.store.status()


@router.get("/jobs/{job_id}", response_model=JobResponse)
def job_state(job_id: int, ctx: AppContext = Depends(get_context)):
    job = ctx.store.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job


@router.post("/jobs", response_model=EnqueueResponse)
def add_job(request: EnqueueRequest, ctx: AppContext = Depends(get_context), db: Session = Depends(get_db)):
    """Queue an analysis manually. Returns created=false when an identical job is already active."""
    if db.get(Article, request.article_id) is None:
        raise HTTPException(status_code=404, detail=f"Article {request.article_id} not found")
    job_id = ctx.store.enqueue(request.article_id, request.kind, request.priority)
    return EnqueueResponse(job_id=job_id, created=job_id is not None)


@router.post("/jobs/batch", response_model=List[EnqueueResponse])
def add_jobs(requests: List[EnqueueRequest], ctx: AppContext = Depends(get_context)):
    """Queue several analyses. Duplicates are reported per item and never fail the batch."""
    job_ids = ctx.store.enqueue_batch(requests)
    logger.info(f"[/jobs/batch] {sum(1 for j in job_ids if j is not None)}/{len(job_ids)} jobs created")
    return [EnqueueResponse(job_id=job_id, created=job_id is not None) for job_id in job_ids]


@router.post("/jobs/retry-failed")
def retry_failed(limit: int = 10, ctx: AppContext = Depends(get_context)):
    return {"status": "ok", "retried": ctx.store.retry_failed(limit)}


@router.get("/monitor/report", response_model=MonitoringReport)
async def monitor_report(ctx: AppContext = Depends(get_context)):
    window = ctx.metrics.since(ctx.settings.monitor_window_minutes)
    status = await asyncio.to_thread(ctx.store.status)
    return ctx.monitor.generate_report(window, status)
