"""Metadata store - persists and queries Artifact rows.

Every query filters on ``user_id``; a caller can never read or delete
another owner's rows regardless of the ids it passes in.

Database failures are mapped onto ``RetrievalErrorType`` using the
Postgres SQLSTATE when the driver exposes one, falling back to message
inspection for SQLite.
"""

import logging
import math
from dataclasses import dataclass

from sqlalchemy import delete, func, select
from sqlalchemy.exc import DataError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import RetrievalError, RetrievalErrorType
from app.models.artifact import VALID_ARTIFACT_KINDS, Artifact
from app.services.storage import StoredObject

logger = logging.getLogger(__name__)

# Postgres SQLSTATE / PostgREST codes
_ERROR_CODES: dict[str, RetrievalErrorType] = {
    "PGRST116": RetrievalErrorType.INVALID_PARAMETERS,
    "42P01": RetrievalErrorType.RESOURCE_NOT_FOUND,
    "28P01": RetrievalErrorType.AUTHENTICATION_FAILURE,
    "57014": RetrievalErrorType.API_TIMEOUT,
}

_MESSAGES: dict[RetrievalErrorType, str] = {
    RetrievalErrorType.INVALID_PARAMETERS: "Invalid parameters provided for retrieval",
    RetrievalErrorType.RESOURCE_NOT_FOUND: "Resource not found",
    RetrievalErrorType.AUTHENTICATION_FAILURE: "Authentication failure",
    RetrievalErrorType.API_TIMEOUT: "API timeout",
    RetrievalErrorType.UNKNOWN_ERROR: "An unknown error occurred during retrieval",
}


def classify_db_error(exc: Exception) -> RetrievalErrorType:
    """Map a database exception onto the retrieval error family."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in _ERROR_CODES:
        return _ERROR_CODES[code]

    text = str(exc).lower()
    if "no such table" in text or ("relation" in text and "does not exist" in text):
        return RetrievalErrorType.RESOURCE_NOT_FOUND
    if "authentication failed" in text or "access denied" in text:
        return RetrievalErrorType.AUTHENTICATION_FAILURE
    if "timeout" in text or "canceling statement" in text:
        return RetrievalErrorType.API_TIMEOUT
    if isinstance(exc, DataError):
        return RetrievalErrorType.INVALID_PARAMETERS
    return RetrievalErrorType.UNKNOWN_ERROR


def total_pages_for(total: int, page_size: int) -> int:
    """Pages needed for ``total`` rows; an empty result still has one page."""
    return max(1, math.ceil(total / page_size))


@dataclass
class ArtifactPage:
    """One page of metadata rows plus the unfiltered row count."""

    items: list[Artifact]
    total: int
    page: int
    page_size: int
    total_pages: int


@dataclass
class DeleteResult:
    id: int
    deleted: bool
    note: str = ""


class MetadataStore:
    """CRUD for Artifact rows, always scoped by owner."""

    def __init__(self, default_page_size: int = 12, max_page_size: int = 100) -> None:
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    def _error(self, exc: Exception, action: str, **context) -> RetrievalError:
        error_type = classify_db_error(exc)
        err = RetrievalError(
            error_type,
            _MESSAGES[error_type],
            details={"action": action, "error": str(exc)[:500]},
            user_context=context,
        )
        logger.error(
            "Metadata %s failed: %s",
            action,
            error_type.value,
            extra={"error": err.to_dict()},
        )
        return err

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def insert(
        self,
        db: Session,
        *,
        user_id: str,
        kind: str,
        stored: StoredObject,
        prompt: str | None = None,
        style: str | None = None,
    ) -> Artifact:
        """Insert the row for an object that has already been uploaded."""
        artifact = Artifact(
            user_id=user_id,
            kind=kind,
            storage_id=stored.asset_id,
            public_id=stored.public_id,
            url=stored.url,
            secure_url=stored.secure_url,
            format=stored.format,
            width=stored.width,
            height=stored.height,
            bytes=stored.bytes,
            resource_type=stored.resource_type,
            tags=stored.tags,
            prompt=prompt,
            style=style,
        )
        try:
            db.add(artifact)
            db.commit()
            db.refresh(artifact)
        except SQLAlchemyError as exc:
            db.rollback()
            raise self._error(exc, "insert", user_id=user_id, public_id=stored.public_id) from exc
        logger.info("Stored metadata for %s (artifact %s)", stored.public_id, artifact.id)
        return artifact

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def query(
        self,
        db: Session,
        user_id: str,
        *,
        kind: str | None = None,
        page: int = 1,
        page_size: int | None = None,
    ) -> ArtifactPage:
        """Return one page of an owner's artifacts, newest first."""
        page_size = page_size or self.default_page_size
        context = {"user_id": user_id, "page": page, "page_size": page_size}
        if page < 1 or not 1 <= page_size <= self.max_page_size:
            raise RetrievalError(
                RetrievalErrorType.INVALID_PARAMETERS,
                _MESSAGES[RetrievalErrorType.INVALID_PARAMETERS],
                user_context=context,
            )
        if kind is not None and kind not in VALID_ARTIFACT_KINDS:
            raise RetrievalError(
                RetrievalErrorType.INVALID_PARAMETERS,
                f"Unknown artifact kind: {kind}",
                user_context=context,
            )

        conditions = [Artifact.user_id == user_id]
        if kind is not None:
            conditions.append(Artifact.kind == kind)

        try:
            total = db.scalar(select(func.count()).select_from(Artifact).where(*conditions)) or 0
            items = list(
                db.scalars(
                    select(Artifact)
                    .where(*conditions)
                    .order_by(Artifact.created_at.desc(), Artifact.id.desc())
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                )
            )
        except SQLAlchemyError as exc:
            raise self._error(exc, "query", **context) from exc

        return ArtifactPage(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages_for(total, page_size),
        )

    def latest(
        self, db: Session, user_id: str, *, kind: str = "image", limit: int = 6
    ) -> list[Artifact]:
        """The owner's most recent artifacts of one kind."""
        try:
            return list(
                db.scalars(
                    select(Artifact)
                    .where(Artifact.user_id == user_id, Artifact.kind == kind)
                    .order_by(Artifact.created_at.desc(), Artifact.id.desc())
                    .limit(limit)
                )
            )
        except SQLAlchemyError as exc:
            raise self._error(exc, "latest", user_id=user_id) from exc

    def get(self, db: Session, artifact_id: int, user_id: str) -> Artifact | None:
        try:
            return db.scalar(
                select(Artifact).where(Artifact.id == artifact_id, Artifact.user_id == user_id)
            )
        except SQLAlchemyError as exc:
            raise self._error(exc, "get", user_id=user_id, artifact_id=artifact_id) from exc

    def public_ids(self, db: Session, user_id: str) -> set[str]:
        """Every storage public id the owner has a row for."""
        try:
            return set(db.scalars(select(Artifact.public_id).where(Artifact.user_id == user_id)))
        except SQLAlchemyError as exc:
            raise self._error(exc, "public_ids", user_id=user_id) from exc

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, db: Session, artifact_id: int, user_id: str) -> DeleteResult:
        """Delete the metadata row; idempotent.

        A row that never existed, belongs to another owner or is already gone
        yields ``deleted=False`` and no error.  The durable object is left in
        place.
        """
        try:
            result = db.execute(
                delete(Artifact).where(Artifact.id == artifact_id, Artifact.user_id == user_id)
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise self._error(exc, "delete", user_id=user_id, artifact_id=artifact_id) from exc

        if result.rowcount == 0:
            logger.info("Delete of artifact %s for %s: nothing to delete", artifact_id, user_id)
            return DeleteResult(
                id=artifact_id,
                deleted=False,
                note="Not found in database. No action needed.",
            )

        logger.info("Deleted artifact %s for %s", artifact_id, user_id)
        return DeleteResult(
            id=artifact_id,
            deleted=True,
            note="Deleted from database. The stored object is not removed.",
        )
