"""Job service - creates, updates and queries GenerationJob records.

Keeps DB operations isolated from the pipeline and API layers so the logic
is easily testable and reusable.
"""

import logging

from sqlalchemy.orm import Session

from app.models.job import (
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_PENDING,
    TERMINAL_JOB_STATUSES,
    GenerationJob,
)

logger = logging.getLogger(__name__)


class JobService:
    """CRUD operations and status helpers for GenerationJob records."""

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_job(
        self,
        db: Session,
        job_id: str,
        *,
        user_id: str,
        kind: str,
        prompt: str = "",
        source_url: str = "",
    ) -> GenerationJob:
        """Record a freshly submitted job in PENDING state.

        ``job_id`` is the upstream handle; the unique constraint rejects reuse.
        """
        job = GenerationJob(
            job_id=job_id,
            user_id=user_id,
            kind=kind,
            prompt=prompt,
            source_url=source_url,
            status=JOB_STATUS_PENDING,
            progress=0,
        )
        db.add(job)
        db.commit()
        db.refresh(job)
        logger.info("Created %s job %s for user %s", kind, job_id, user_id)
        return job

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update_status(
        self,
        db: Session,
        job_id: str,
        status: str,
        *,
        progress: int | None = None,
        error_message: str | None = None,
    ) -> GenerationJob | None:
        """Update status (and optional fields); terminal rows are left alone."""
        job = self.get_by_job_id(db, job_id)
        if not job:
            logger.warning("update_status: job %s not found", job_id)
            return None
        if job.status in TERMINAL_JOB_STATUSES:
            logger.warning("update_status: job %s already %s", job_id, job.status)
            return job
        job.status = status
        if progress is not None:
            job.progress = max(job.progress, progress)
        if error_message is not None:
            job.error_message = error_message
        db.commit()
        db.refresh(job)
        return job

    def mark_completed(
        self,
        db: Session,
        job_id: str,
        *,
        result_url: str,
        artifact_id: int | None = None,
    ) -> GenerationJob | None:
        """Record the durable result of a completed job; terminal rows are left alone."""
        job = self.get_by_job_id(db, job_id)
        if not job:
            return None
        if job.status in TERMINAL_JOB_STATUSES:
            logger.warning("mark_completed: job %s already %s", job_id, job.status)
            return job
        job.status = JOB_STATUS_COMPLETED
        job.progress = 100
        job.result_url = result_url
        job.artifact_id = artifact_id
        db.commit()
        db.refresh(job)
        logger.info("Job %s completed → %s", job_id, result_url)
        return job

    def mark_failed(
        self,
        db: Session,
        job_id: str,
        error_message: str,
        *,
        status: str = JOB_STATUS_FAILED,
    ) -> GenerationJob | None:
        """Move a job to a failure state (FAILED, TIMEOUT or CANCELLED)."""
        job = self.get_by_job_id(db, job_id)
        if not job:
            return None
        if job.status in TERMINAL_JOB_STATUSES:
            logger.warning("mark_failed: job %s already %s", job_id, job.status)
            return job
        job.status = status
        job.error_message = error_message
        db.commit()
        db.refresh(job)
        return job

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_by_job_id(self, db: Session, job_id: str) -> GenerationJob | None:
        return (
            db.query(GenerationJob)
            .filter(GenerationJob.job_id == job_id)
            .populate_existing()
            .first()
        )

    def get_for_user(self, db: Session, job_id: str, user_id: str) -> GenerationJob | None:
        """Fetch a job only if it belongs to ``user_id``."""
        return (
            db.query(GenerationJob)
            .filter(GenerationJob.job_id == job_id, GenerationJob.user_id == user_id)
            .first()
        )

    def list_for_user(
        self,
        db: Session,
        user_id: str,
        *,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[GenerationJob], int]:
        """Return a page of jobs for a user plus the total count, newest first."""
        q = db.query(GenerationJob).filter(GenerationJob.user_id == user_id)
        total = q.count()
        offset = (page - 1) * page_size
        jobs = (
            q.order_by(GenerationJob.created_at.desc(), GenerationJob.id.desc())
            .offset(offset)
            .limit(page_size)
            .all()
        )
        return jobs, total
