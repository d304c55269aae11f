"""Jobs API - submission, status polling and history for generation jobs.

Implements:
  POST /api/jobs                  - submit an image-to-video job; the
                                    poll/fetch/store tail runs in the
                                    background
  GET  /api/jobs/{job_id}         - poll a single job
  GET  /api/jobs                  - list the owner's jobs
  POST /api/jobs/{job_id}/cancel  - stop polling a running job locally
"""

import asyncio
import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from app.database import get_db
from app.deps import get_owner_id, get_pipeline, http_error, request_cancel
from app.errors import PipelineError
from app.models.job import JOB_STATUS_CANCELLED, TERMINAL_JOB_STATUSES, GenerationJob
from app.services.job_service import JobService
from app.services.metadata_store import total_pages_for
from app.services.pipeline import GenerationPipeline
from app.services.video_worker import run_generation_job

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])
_job_service = JobService()

# Strong references so running workers are not garbage collected
_background_tasks: set[asyncio.Task] = set()


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class SubmitJobRequest(BaseModel):
    image_url: str
    prompt: str = ""


class JobSubmittedResponse(BaseModel):
    job_id: str
    status: str
    message: str = "Job queued. Poll GET /api/jobs/{job_id} for status."


class JobResponse(BaseModel):
    """Public representation of a GenerationJob record."""

    job_id: str
    kind: str
    status: str
    progress: int
    prompt: str
    source_url: str
    result_url: str | None
    artifact_id: int | None
    error_message: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


def _get_owned_job(db, job_id: str, owner_id: str) -> GenerationJob:
    job = _job_service.get_for_user(db, job_id, owner_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", response_model=JobSubmittedResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_job(
    body: SubmitJobRequest,
    owner_id: str = Depends(get_owner_id),
    pipeline: GenerationPipeline = Depends(get_pipeline),
) -> JobSubmittedResponse:
    """Submit once upstream and return the job id immediately.

    Submission is not retried; a failure here leaves no job row.
    """
    db = get_db()
    try:
        job = await pipeline.submit(db, owner_id, body.prompt, body.image_url, kind="video")
        response = JobSubmittedResponse(job_id=job.job_id, status=job.status)
    except PipelineError as exc:
        raise http_error(exc) from exc
    finally:
        db.close()

    task = asyncio.create_task(run_generation_job(response.job_id, pipeline))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    logger.info("Queued job %s for %s", response.job_id, owner_id)
    return response


@router.get("/{job_id}", response_model=JobResponse)
def get_job(job_id: str, owner_id: str = Depends(get_owner_id)) -> JobResponse:
    """Return the current status of one of the owner's jobs."""
    db = get_db()
    try:
        return JobResponse.model_validate(_get_owned_job(db, job_id, owner_id))
    finally:
        db.close()


@router.get("", response_model=JobListResponse)
def list_jobs(
    owner_id: str = Depends(get_owner_id),
    page: int = Query(default=1, ge=1, description="Page number (1-based)"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page"),
) -> JobListResponse:
    """List the owner's jobs, newest first."""
    db = get_db()
    try:
        jobs, total = _job_service.list_for_user(db, owner_id, page=page, page_size=page_size)
        items = [JobResponse.model_validate(j) for j in jobs]
    finally:
        db.close()

    return JobListResponse(
        jobs=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages_for(total, page_size),
    )


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: str, owner_id: str = Depends(get_owner_id)) -> JobResponse:
    """Stop polling a job.  The upstream request keeps running.

    Must stay ``async``: the cancel event may only be set from the loop thread.

    Returns 409 when the job already reached a terminal state.
    """
    db = get_db()
    try:
        job = _get_owned_job(db, job_id, owner_id)
        if job.status in TERMINAL_JOB_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Job already finished with status {job.status}",
            )
        # Signals a poll loop in this process, if any; the row is closed either way
        request_cancel(job_id)
        job = _job_service.mark_failed(
            db, job_id, "Cancelled by user", status=JOB_STATUS_CANCELLED
        )
        return JobResponse.model_validate(job)
    finally:
        db.close()
