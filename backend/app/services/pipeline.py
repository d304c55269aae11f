"""Generation pipeline - submit, poll, fetch, persist.

    JobSubmitter → JobStatusPoller → ResultFetcher → ArtifactUploader → MetadataStore

``submit()`` returns as soon as the upstream queue accepted the job so an
HTTP handler can answer with the job id; ``complete()`` then drives the job
to its end, usually from a background task.  The job row mirrors every
status the poller observes.  Any failure is recorded on the row and raised
as a ``PipelineError``; nothing is retried beyond the uploader's own budget.
"""

import asyncio
import logging

from sqlalchemy.orm import Session

from app.errors import (
    ArtifactUploadError,
    ExternalServiceError,
    JobFailedError,
    MissingResultError,
)
from app.logging_config import bind_job_id
from app.models.artifact import Artifact
from app.models.job import JOB_STATUS_FAILED, TERMINAL_JOB_STATUSES, GenerationJob
from app.services.job_poller import DEFAULT_FAILURE_MESSAGE, JobStatusPoller
from app.services.job_service import JobService
from app.services.job_submitter import JobSubmitter
from app.services.result_fetcher import ResultFetcher
from app.services.uploader import ArtifactUploader

logger = logging.getLogger(__name__)

DEFAULT_VIDEO_PROMPT = (
    "A documentary about the room as the camera slowly pans across the room. "
    "Camera stays in the same place."
)


def stored_public_id(kind: str, job_id: str) -> str:
    """Deterministic object id for a job's output; re-storing overwrites it."""
    return f"fal_{kind}_{job_id}"


class GenerationPipeline:
    def __init__(
        self,
        submitter: JobSubmitter,
        poller: JobStatusPoller,
        fetcher: ResultFetcher,
        uploader: ArtifactUploader,
        jobs: JobService | None = None,
    ) -> None:
        self.submitter = submitter
        self.poller = poller
        self.fetcher = fetcher
        self.uploader = uploader
        self.jobs = jobs or JobService()

    async def submit(
        self,
        db: Session,
        user_id: str,
        prompt: str,
        image_url: str,
        *,
        kind: str = "video",
    ) -> GenerationJob:
        """Submit one job upstream and record it. Not retried."""
        prompt = (prompt or "").strip() or DEFAULT_VIDEO_PROMPT
        job_id = await self.submitter.submit(prompt, image_url, kind=kind)
        return self.jobs.create_job(
            db, job_id, user_id=user_id, kind=kind, prompt=prompt, source_url=image_url
        )

    async def complete(
        self,
        db: Session,
        job: GenerationJob,
        *,
        cancel: asyncio.Event | None = None,
    ) -> Artifact:
        """Poll ``job`` to a terminal state and persist its output.

        Raises:
            JobFailedError: FAILED, TIMEOUT or CANCELLED, or the row was
                already terminal; carries the upstream message or a default.
            MissingResultError: COMPLETED without a media URL.
            ArtifactUploadError: durable upload or metadata insert failed.
        """
        job_id, kind, user_id = job.job_id, job.kind, job.user_id
        self._ensure_open(db, job)

        def record_progress(status: str, progress: int) -> None:
            # Terminal states are written below, once the outcome is handled.
            if status in TERMINAL_JOB_STATUSES:
                return
            self.jobs.update_status(db, job_id, status, progress=progress)

        with bind_job_id(job_id):
            try:
                outcome = await self.poller.poll(
                    job_id, kind=kind, cancel=cancel, on_update=record_progress
                )
            except ExternalServiceError as exc:
                self.jobs.mark_failed(db, job_id, exc.message)
                raise

            if not outcome.succeeded:
                message = outcome.error_message or DEFAULT_FAILURE_MESSAGE
                self.jobs.mark_failed(db, job_id, message, status=outcome.status)
                raise JobFailedError(
                    job_id, outcome.status, message, user_context={"user_id": user_id}
                )

            # The row may have been closed by a cancel served elsewhere.
            self._ensure_open(db, job)

            try:
                media_url = await self.fetcher.fetch(job_id, kind=kind)
                stored = await self.uploader.store_remote(
                    media_url,
                    public_id=stored_public_id(kind, job_id),
                    resource_type=kind,
                    tags=[f"user_{user_id}", "generated", kind],
                    user_context={"user_id": user_id, "job_id": job_id},
                )
                artifact = self.uploader.record(
                    db, stored, user_id, kind=kind, prompt=job.prompt or None
                )
            except (MissingResultError, ArtifactUploadError, ExternalServiceError) as exc:
                self.jobs.mark_failed(db, job_id, exc.message, status=JOB_STATUS_FAILED)
                raise

            self.jobs.mark_completed(
                db, job_id, result_url=artifact.source_url, artifact_id=artifact.id
            )
            logger.info("Job %s stored as artifact %s", job_id, artifact.id)
            return artifact

    def _ensure_open(self, db: Session, job: GenerationJob) -> None:
        """Raise ``JobFailedError`` when the job row is already terminal."""
        db.refresh(job)
        if job.status in TERMINAL_JOB_STATUSES:
            raise JobFailedError(
                job.job_id,
                job.status,
                job.error_message or f"Job already {job.status}",
                user_context={"user_id": job.user_id},
            )

    async def run(
        self,
        db: Session,
        user_id: str,
        prompt: str,
        image_url: str,
        *,
        kind: str = "video",
        cancel: asyncio.Event | None = None,
    ) -> Artifact:
        """Submit and complete in one call."""
        job = await self.submit(db, user_id, prompt, image_url, kind=kind)
        return await self.complete(db, job, cancel=cancel)
