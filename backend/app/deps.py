"""FastAPI dependency functions shared across routers.

Authentication itself happens in front of this service; the authenticated
owner arrives in the ``X-User-Id`` header and every metadata query is
filtered on it.

Service singletons are built lazily from settings on first use.
"""

import asyncio
import logging
from functools import lru_cache

from fastapi import Header, HTTPException

from app.config import settings
from app.errors import (
    ArtifactUploadError,
    ArtifactValidationError,
    JobFailedError,
    PipelineError,
    RetrievalError,
    RetrievalErrorType,
    UploadErrorType,
)
from app.fal.client import FalQueueClient
from app.services.gallery import GalleryReconciler
from app.services.image_generator import ImageGenerator
from app.services.job_poller import JobStatusPoller
from app.services.job_submitter import JobSubmitter
from app.services.metadata_store import MetadataStore
from app.services.orphan_sweep import OrphanSweeper
from app.services.pipeline import GenerationPipeline
from app.services.result_fetcher import ResultFetcher
from app.services.storage import get_storage
from app.services.uploader import ArtifactUploader
from app.services.validator import ArtifactValidator

logger = logging.getLogger(__name__)


def get_owner_id(x_user_id: str = Header(default="")) -> str:
    """Return the authenticated owner id or reject the request with 401."""
    owner = x_user_id.strip()
    if not owner:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return owner


def _models() -> dict[str, str]:
    return {"video": settings.fal_video_model, "image": settings.fal_image_model}


@lru_cache
def get_fal_client() -> FalQueueClient:
    return FalQueueClient(settings.fal_key, base_url=settings.fal_queue_url)


@lru_cache
def get_validator() -> ArtifactValidator:
    return ArtifactValidator(max_bytes=settings.max_upload_bytes)


@lru_cache
def get_metadata_store() -> MetadataStore:
    return MetadataStore(default_page_size=settings.gallery_page_size)


@lru_cache
def get_uploader() -> ArtifactUploader:
    return ArtifactUploader(
        get_storage(),
        get_metadata_store(),
        image_folder=settings.cloudinary_image_folder,
        video_folder=settings.cloudinary_video_folder,
        max_attempts=settings.upload_max_attempts,
        retry_delay=settings.upload_retry_delay_seconds,
    )


@lru_cache
def get_submitter() -> JobSubmitter:
    return JobSubmitter(get_fal_client(), _models())


@lru_cache
def get_poller() -> JobStatusPoller:
    return JobStatusPoller(
        get_fal_client(),
        _models(),
        interval=settings.poll_interval_seconds,
        max_attempts=settings.poll_max_attempts,
        deadline=settings.poll_deadline_seconds,
    )


@lru_cache
def get_fetcher() -> ResultFetcher:
    return ResultFetcher(get_fal_client(), _models())


@lru_cache
def get_pipeline() -> GenerationPipeline:
    return GenerationPipeline(get_submitter(), get_poller(), get_fetcher(), get_uploader())


@lru_cache
def get_reconciler() -> GalleryReconciler:
    return GalleryReconciler(get_storage().probe, batch_size=settings.probe_batch_size)


@lru_cache
def get_orphan_sweeper() -> OrphanSweeper:
    return OrphanSweeper(
        get_storage(), get_metadata_store(), image_folder=settings.cloudinary_image_folder
    )


@lru_cache
def get_image_generator() -> ImageGenerator:
    return ImageGenerator(
        settings.openai_api_key,
        model=settings.openai_image_model,
        size=settings.openai_image_size,
        quality=settings.openai_image_quality,
    )


# ── Cancellation registry ─────────────────────────────────────────────────────
# One event per job polled in this process; setting it stops the poll loop.
_cancel_events: dict[str, asyncio.Event] = {}


def register_cancel_event(job_id: str) -> asyncio.Event:
    event = asyncio.Event()
    _cancel_events[job_id] = event
    return event


def release_cancel_event(job_id: str) -> None:
    _cancel_events.pop(job_id, None)


def request_cancel(job_id: str) -> bool:
    """Signal the poll loop for ``job_id``; False if it is not running here."""
    event = _cancel_events.get(job_id)
    if event is None:
        return False
    event.set()
    logger.info("Cancellation requested for job %s", job_id)
    return True


# ── Error translation ─────────────────────────────────────────────────────────

_RETRIEVAL_STATUS = {
    RetrievalErrorType.INVALID_PARAMETERS: 400,
    RetrievalErrorType.API_TIMEOUT: 504,
    RetrievalErrorType.AUTHENTICATION_FAILURE: 503,
}


def http_error(exc: PipelineError) -> HTTPException:
    """Map a pipeline failure onto an HTTP status with its payload as detail."""
    if isinstance(exc, ArtifactValidationError):
        status_code = 400
    elif isinstance(exc, RetrievalError):
        status_code = _RETRIEVAL_STATUS.get(exc.type, 500)
    elif isinstance(exc, ArtifactUploadError) and exc.type == UploadErrorType.RATE_LIMIT_EXCEEDED:
        status_code = 429
    elif isinstance(exc, JobFailedError):
        status_code = 409
    else:
        status_code = 502
    return HTTPException(status_code=status_code, detail=exc.to_dict())
