"""Background worker - drives one submitted job to a persisted artifact.

Invoked via ``asyncio.create_task()`` from ``POST /api/jobs`` once the job is
submitted and recorded.  It owns its own DB session and registers a cancel
event so ``POST /api/jobs/{job_id}/cancel`` can stop polling.  A job whose
row is already terminal is left untouched.
"""

import logging

from app.database import get_db
from app.deps import register_cancel_event, release_cancel_event
from app.errors import PipelineError
from app.logging_config import bind_job_id
from app.models.job import TERMINAL_JOB_STATUSES
from app.services.job_service import JobService
from app.services.pipeline import GenerationPipeline

logger = logging.getLogger(__name__)

_job_service = JobService()


async def run_generation_job(job_id: str, pipeline: GenerationPipeline) -> None:
    """Poll, fetch and store the output of ``job_id``.

    Failures are already written to the job row by the pipeline; anything
    it did not anticipate marks the job FAILED here.
    """
    cancel = register_cancel_event(job_id)
    db = get_db()
    try:
        with bind_job_id(job_id):
            job = _job_service.get_by_job_id(db, job_id)
            if job is None:
                logger.error("Job %s vanished before the worker started", job_id)
                return
            if job.status in TERMINAL_JOB_STATUSES:
                logger.info("Job %s already %s; nothing to do", job_id, job.status)
                return
            try:
                await pipeline.complete(db, job, cancel=cancel)
            except PipelineError as exc:
                logger.warning("Job %s ended without an artifact: %s", job_id, exc.message)
            except Exception as exc:
                logger.exception("Job %s crashed", job_id)
                _job_service.mark_failed(db, job_id, f"Unexpected error: {exc}")
    finally:
        release_cancel_event(job_id)
        db.close()
