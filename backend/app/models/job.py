"""GenerationJob model - tracks one submitted external generation request.

Status lifecycle:
    PENDING → IN_PROGRESS → COMPLETED
                          ↘ FAILED
                          ↘ TIMEOUT    (poll budget exhausted)
                          ↘ CANCELLED  (caller stopped polling)

Terminal states are final; the pipeline never resubmits a job.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base

JOB_STATUS_PENDING = "PENDING"
JOB_STATUS_IN_PROGRESS = "IN_PROGRESS"
JOB_STATUS_COMPLETED = "COMPLETED"
JOB_STATUS_FAILED = "FAILED"
JOB_STATUS_TIMEOUT = "TIMEOUT"
JOB_STATUS_CANCELLED = "CANCELLED"

VALID_JOB_STATUSES: list[str] = [
    JOB_STATUS_PENDING,
    JOB_STATUS_IN_PROGRESS,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_TIMEOUT,
    JOB_STATUS_CANCELLED,
]

TERMINAL_JOB_STATUSES: frozenset[str] = frozenset(
    {JOB_STATUS_COMPLETED, JOB_STATUS_FAILED, JOB_STATUS_TIMEOUT, JOB_STATUS_CANCELLED}
)


class GenerationJob(Base):
    __tablename__ = "generation_jobs"

    id: Mapped[int] = mapped_column(primary_key=True)

    # --- Ownership ---
    user_id: Mapped[str] = mapped_column(String(64), index=True)

    # --- Identity ---
    # Opaque handle returned by the upstream queue; never reused.
    job_id: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    kind: Mapped[str] = mapped_column(String(10), default="video")

    # --- Inputs ---
    prompt: Mapped[str] = mapped_column(Text, default="")
    source_url: Mapped[str] = mapped_column(Text, default="")

    # --- Status tracking ---
    status: Mapped[str] = mapped_column(
        String(20), default=JOB_STATUS_PENDING, index=True
    )
    progress: Mapped[int] = mapped_column(Integer, default=0)

    # --- Results ---
    result_url: Mapped[str | None] = mapped_column(Text, default=None)
    artifact_id: Mapped[int | None] = mapped_column(Integer, default=None)
    error_message: Mapped[str | None] = mapped_column(Text, default=None)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )
