"""Artifact uploader - durable upload with bounded retry, then metadata insert.

The two writes form a two-step saga without a transaction:

    1. push the object to durable storage (retried, same key every attempt)
    2. insert the metadata row

If step 2 fails the object is left orphaned; no compensating delete is
attempted.  ``OrphanSweeper`` finds such objects after the fact.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable

import httpx
from sqlalchemy.orm import Session

from app.errors import ArtifactUploadError, RetrievalError, UploadErrorType
from app.models.artifact import ARTIFACT_KIND_IMAGE, Artifact
from app.services.metadata_store import MetadataStore
from app.services.storage import StorageHTTPError, StorageService, StoredObject
from app.services.validator import ValidatedMedia

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 1.0

_MESSAGES: dict[UploadErrorType, str] = {
    UploadErrorType.NETWORK_FAILURE: "Network failure during upload",
    UploadErrorType.INVALID_CREDENTIALS: "Invalid storage credentials",
    UploadErrorType.STORAGE_QUOTA_EXCEEDED: "Storage quota exceeded",
    UploadErrorType.RATE_LIMIT_EXCEEDED: "Rate limit exceeded",
    UploadErrorType.UNKNOWN_ERROR: "An unknown error occurred during upload",
}


def classify_upload_error(exc: Exception) -> UploadErrorType:
    """Pick the upload error type from the HTTP status, then the message."""
    status = getattr(exc, "status_code", None)
    if status in (401, 403):
        return UploadErrorType.INVALID_CREDENTIALS
    if status == 429:
        return UploadErrorType.RATE_LIMIT_EXCEEDED
    if isinstance(exc, httpx.TransportError):
        return UploadErrorType.NETWORK_FAILURE

    text = str(exc).lower()
    if "network" in text:
        return UploadErrorType.NETWORK_FAILURE
    if "quota" in text:
        return UploadErrorType.STORAGE_QUOTA_EXCEEDED
    return UploadErrorType.UNKNOWN_ERROR


def storage_key(user_id: str, timestamp_ms: int) -> str:
    """Deterministic public id for one logical upload."""
    return f"{user_id}_{timestamp_ms}"


class ArtifactUploader:
    """Pushes validated media to durable storage and records its metadata.

    ``sleep`` and ``clock`` are injectable so retry behaviour can be tested
    without real delays.
    """

    def __init__(
        self,
        storage: StorageService,
        metadata: MetadataStore,
        *,
        image_folder: str = "generated_interiors",
        video_folder: str = "generated_videos",
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.storage = storage
        self.metadata = metadata
        self.image_folder = image_folder.strip("/")
        self.video_folder = video_folder.strip("/")
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _with_retry(
        self,
        send: Callable[[], Awaitable[StoredObject]],
        *,
        key: str,
        user_context: dict,
    ) -> StoredObject:
        """Run ``send`` up to ``max_attempts`` times with a fixed delay between."""
        last_exc: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                stored = await send()
            except (StorageHTTPError, httpx.HTTPError) as exc:
                last_exc = exc
                logger.warning(
                    "Upload of %s failed (attempt %d/%d): %s",
                    key,
                    attempt,
                    self.max_attempts,
                    exc,
                )
                if attempt < self.max_attempts:
                    await self._sleep(self.retry_delay)
                continue
            if attempt > 1:
                logger.info("Upload of %s succeeded on attempt %d", key, attempt)
            return stored

        assert last_exc is not None
        error_type = classify_upload_error(last_exc)
        err = ArtifactUploadError(
            error_type,
            _MESSAGES[error_type],
            details={
                "key": key,
                "attempts": self.max_attempts,
                "status_code": getattr(last_exc, "status_code", None),
                "error": str(last_exc),
            },
            user_context=user_context,
        )
        logger.error("Upload of %s gave up: %s", key, error_type.value, extra={"error": err.to_dict()})
        raise err from last_exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def upload(
        self,
        db: Session,
        media: ValidatedMedia,
        user_id: str,
        *,
        kind: str = ARTIFACT_KIND_IMAGE,
        prompt: str | None = None,
        style: str | None = None,
    ) -> Artifact:
        """Upload validated media for ``user_id`` and insert its metadata row.

        Raises:
            ArtifactUploadError: after the retry budget is spent, or when the
                metadata insert fails (the uploaded object is then orphaned).
        """
        timestamp_ms = int(self._clock() * 1000)
        key = storage_key(user_id, timestamp_ms)
        user_context = {"user_id": user_id, "timestamp": timestamp_ms}
        folder = f"{self.image_folder}/{user_id}"
        tags = [f"user_{user_id}", "interior_design", "generated"]

        async def send() -> StoredObject:
            return await self.storage.upload_unsigned(
                media.data,
                filename=f"{key}.{media.format}",
                mime_type=media.mime_type,
                public_id=key,
                folder=folder,
                tags=tags,
            )

        stored = await self._with_retry(send, key=key, user_context=user_context)
        return self.record(db, stored, user_id, kind=kind, prompt=prompt, style=style)

    async def store_remote(
        self,
        file_url: str,
        *,
        public_id: str,
        resource_type: str = "video",
        tags: list[str] | None = None,
        user_context: dict | None = None,
    ) -> StoredObject:
        """Server-side fetch-and-store of a remote URL, retried like ``upload``.

        Used by the trusted tier only; writes no metadata.
        """
        folder = self.video_folder if resource_type == "video" else self.image_folder

        async def send() -> StoredObject:
            return await self.storage.upload_remote(
                file_url,
                public_id=public_id,
                folder=folder,
                resource_type=resource_type,
                tags=tags,
            )

        return await self._with_retry(send, key=public_id, user_context=user_context or {})

    def record(
        self,
        db: Session,
        stored: StoredObject,
        user_id: str,
        *,
        kind: str,
        prompt: str | None = None,
        style: str | None = None,
    ) -> Artifact:
        """Insert metadata for an object that is already in durable storage."""
        try:
            return self.metadata.insert(
                db, user_id=user_id, kind=kind, stored=stored, prompt=prompt, style=style
            )
        except RetrievalError as exc:
            logger.error(
                "Metadata insert failed; object %s is orphaned",
                stored.public_id,
                extra={"orphan_public_id": stored.public_id, "user_id": user_id},
            )
            raise ArtifactUploadError(
                UploadErrorType.UNKNOWN_ERROR,
                "Failed to store metadata in database",
                details={"public_id": stored.public_id, "cause": exc.to_dict()},
                user_context={"user_id": user_id},
            ) from exc

