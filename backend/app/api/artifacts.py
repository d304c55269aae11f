"""Artifacts API - the owner's gallery of persisted images and videos.

Implements:
  GET    /api/artifacts              - one page, dead objects filtered out
  GET    /api/artifacts/latest       - most recent images for the home view
  GET    /api/artifacts/orphans      - stored objects with no metadata row
  POST   /api/artifacts              - approve a generated image: validate,
                                       upload, then record metadata
  GET    /api/artifacts/{id}         - a single artifact
  DELETE /api/artifacts/{id}         - idempotent metadata delete
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from app.database import get_db
from app.deps import (
    get_metadata_store,
    get_orphan_sweeper,
    get_owner_id,
    get_reconciler,
    get_uploader,
    get_validator,
    http_error,
)
from app.errors import PipelineError
from app.models.artifact import ARTIFACT_KIND_IMAGE, VALID_ARTIFACT_KINDS, Artifact
from app.services.gallery import GalleryReconciler
from app.services.metadata_store import MetadataStore
from app.services.orphan_sweep import OrphanSweeper
from app.services.storage import transformed_url
from app.services.uploader import ArtifactUploader
from app.services.validator import ArtifactValidator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/artifacts", tags=["artifacts"])


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class ArtifactResponse(BaseModel):
    id: int
    kind: str
    public_id: str
    url: str
    thumbnail_url: str
    format: str
    width: int | None
    height: int | None
    bytes: int
    tags: list[str] | None
    prompt: str | None
    style: str | None
    created_at: datetime


class ArtifactPageResponse(BaseModel):
    items: list[ArtifactResponse]
    page: int
    page_size: int
    total: int
    total_pages: int


class ApproveRequest(BaseModel):
    """A previewed image the user chose to keep."""

    image: str
    kind: str = ARTIFACT_KIND_IMAGE
    prompt: str | None = None
    style: str | None = None
    file_size: int | None = None
    file_format: str | None = None


class DeleteResponse(BaseModel):
    id: int
    deleted: bool
    note: str


class OrphanListResponse(BaseModel):
    public_ids: list[str]


def _to_response(artifact: Artifact) -> ArtifactResponse:
    url = artifact.source_url
    return ArtifactResponse(
        id=artifact.id,
        kind=artifact.kind,
        public_id=artifact.public_id,
        url=url,
        # Videos are served as stored; images get a resized delivery URL
        thumbnail_url=transformed_url(url) if artifact.kind == ARTIFACT_KIND_IMAGE else url,
        format=artifact.format,
        width=artifact.width,
        height=artifact.height,
        bytes=artifact.bytes,
        tags=artifact.tags,
        prompt=artifact.prompt,
        style=artifact.style,
        created_at=artifact.created_at,
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=ArtifactPageResponse)
async def list_artifacts(
    kind: str | None = Query(default=None, description="image or video"),
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1, le=100),
    live: bool = Query(default=True, description="Hide items whose object is gone"),
    owner_id: str = Depends(get_owner_id),
    store: MetadataStore = Depends(get_metadata_store),
    reconciler: GalleryReconciler = Depends(get_reconciler),
) -> ArtifactPageResponse:
    """Return one page of the owner's artifacts, newest first.

    ``total_pages`` reflects the metadata count; with ``live`` on a page can
    hold fewer than ``page_size`` items.
    """
    db = get_db()
    try:
        result = store.query(db, owner_id, kind=kind, page=page, page_size=page_size)
    except PipelineError as exc:
        raise http_error(exc) from exc
    finally:
        db.close()

    items = result.items
    if live:
        items = (await reconciler.filter_live(result)).items

    return ArtifactPageResponse(
        items=[_to_response(a) for a in items],
        page=result.page,
        page_size=result.page_size,
        total=result.total,
        total_pages=result.total_pages,
    )


@router.get("/latest", response_model=list[ArtifactResponse])
async def latest_artifacts(
    kind: str = Query(default=ARTIFACT_KIND_IMAGE),
    limit: int = Query(default=6, ge=1, le=50),
    owner_id: str = Depends(get_owner_id),
    store: MetadataStore = Depends(get_metadata_store),
    reconciler: GalleryReconciler = Depends(get_reconciler),
) -> list[ArtifactResponse]:
    if kind not in VALID_ARTIFACT_KINDS:
        raise HTTPException(status_code=400, detail=f"Unknown artifact kind: {kind}")
    db = get_db()
    try:
        items = store.latest(db, owner_id, kind=kind, limit=limit)
    except PipelineError as exc:
        raise http_error(exc) from exc
    finally:
        db.close()

    live = await reconciler.live_items(items)
    return [_to_response(a) for a in live]


@router.get("/orphans", response_model=OrphanListResponse)
async def list_orphans(
    owner_id: str = Depends(get_owner_id),
    sweeper: OrphanSweeper = Depends(get_orphan_sweeper),
) -> OrphanListResponse:
    """Stored image objects under the owner's folder that have no row."""
    db = get_db()
    try:
        orphans = await sweeper.find_orphans(db, owner_id)
    except PipelineError as exc:
        raise http_error(exc) from exc
    finally:
        db.close()
    return OrphanListResponse(public_ids=orphans)


@router.post("", response_model=ArtifactResponse, status_code=status.HTTP_201_CREATED)
async def approve_artifact(
    body: ApproveRequest,
    owner_id: str = Depends(get_owner_id),
    validator: ArtifactValidator = Depends(get_validator),
    uploader: ArtifactUploader = Depends(get_uploader),
) -> ArtifactResponse:
    """Persist an approved image.

    Validation runs before any network call.  The metadata row is written
    only after the upload succeeded.
    """
    if body.kind != ARTIFACT_KIND_IMAGE:
        raise HTTPException(status_code=400, detail="Only images can be approved directly")

    try:
        media = validator.validate(
            body.image,
            declared_size=body.file_size,
            declared_format=body.file_format,
        )
    except PipelineError as exc:
        logger.info("Rejected approval for %s: %s", owner_id, exc.message)
        raise http_error(exc) from exc

    db = get_db()
    try:
        artifact = await uploader.upload(
            db, media, owner_id, kind=body.kind, prompt=body.prompt, style=body.style
        )
        return _to_response(artifact)
    except PipelineError as exc:
        raise http_error(exc) from exc
    finally:
        db.close()


@router.get("/{artifact_id}", response_model=ArtifactResponse)
def get_artifact(
    artifact_id: int,
    owner_id: str = Depends(get_owner_id),
    store: MetadataStore = Depends(get_metadata_store),
) -> ArtifactResponse:
    db = get_db()
    try:
        artifact = store.get(db, artifact_id, owner_id)
        if artifact is None:
            raise HTTPException(status_code=404, detail="Artifact not found")
        return _to_response(artifact)
    except PipelineError as exc:
        raise http_error(exc) from exc
    finally:
        db.close()


@router.delete("/{artifact_id}", response_model=DeleteResponse)
def delete_artifact(
    artifact_id: int,
    owner_id: str = Depends(get_owner_id),
    store: MetadataStore = Depends(get_metadata_store),
) -> DeleteResponse:
    """Delete the owner's row for ``artifact_id``.

    Always succeeds for ids that are unknown or already gone; ``deleted``
    tells the caller whether a row was removed.
    """
    db = get_db()
    try:
        result = store.delete(db, artifact_id, owner_id)
    except PipelineError as exc:
        raise http_error(exc) from exc
    finally:
        db.close()
    return DeleteResponse(id=result.id, deleted=result.deleted, note=result.note)
