"""Tests for the artifacts API:

  GET    /api/artifacts            - gallery page with liveness filtering
  GET    /api/artifacts/latest
  GET    /api/artifacts/orphans
  POST   /api/artifacts            - approve → validate → upload → insert
  GET    /api/artifacts/{id}
  DELETE /api/artifacts/{id}       - idempotent
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

from app.deps import (
    get_orphan_sweeper,
    get_reconciler,
    get_uploader,
)
from app.errors import ArtifactUploadError, UploadErrorType
from app.main import app
from app.models.artifact import Artifact
from app.services.gallery import GalleryReconciler
from app.services.metadata_store import MetadataStore
from app.services.orphan_sweep import OrphanSweeper
from app.services.storage import StorageService
from app.services.uploader import ArtifactUploader

client = TestClient(app)

OWNER = {"X-User-Id": "u1"}


def _seed(session_factory, user_id: str, count: int, kind: str = "image") -> list[int]:
    s = session_factory()
    ids = []
    for i in range(count):
        row = Artifact(
            user_id=user_id,
            kind=kind,
            public_id=f"generated_interiors/{user_id}/{user_id}_{i}",
            secure_url=f"https://res.cloudinary.com/demo/image/upload/v1/{user_id}_{i}.png",
            created_at=datetime(2024, 1, 1) + timedelta(minutes=i),
        )
        s.add(row)
        s.commit()
        ids.append(row.id)
    s.close()
    return ids


@pytest.fixture
def dead_urls() -> set[str]:
    return set()


@pytest.fixture(autouse=True)
def wiring(session_factory, dead_urls):
    async def probe(url: str) -> bool:
        return url not in dead_urls

    app.dependency_overrides[get_reconciler] = lambda: GalleryReconciler(probe)
    with patch("app.api.artifacts.get_db", side_effect=lambda: session_factory()):
        yield
    app.dependency_overrides.clear()


def test_requires_owner_header():
    assert client.get("/api/artifacts").status_code == 401


def test_list_filters_dead_items_but_keeps_total_pages(session_factory, dead_urls):
    _seed(session_factory, "u1", 25)
    # Three of the newest twelve no longer resolve
    for i in (24, 20, 13):
        dead_urls.add(f"https://res.cloudinary.com/demo/image/upload/v1/u1_{i}.png")

    r = client.get("/api/artifacts", params={"page": 1, "page_size": 12}, headers=OWNER)

    assert r.status_code == 200
    body = r.json()
    assert len(body["items"]) == 9
    assert body["total"] == 25
    assert body["total_pages"] == 3
    assert body["items"][0]["public_id"].endswith("u1_23")
    assert "w_800,f_auto,q_auto" in body["items"][0]["thumbnail_url"]


def test_list_without_liveness_check(session_factory, dead_urls):
    _seed(session_factory, "u1", 3)
    dead_urls.add("https://res.cloudinary.com/demo/image/upload/v1/u1_0.png")

    r = client.get("/api/artifacts", params={"live": "false"}, headers=OWNER)

    assert len(r.json()["items"]) == 3


def test_list_is_owner_scoped(session_factory):
    _seed(session_factory, "u1", 2)
    _seed(session_factory, "u2", 4)

    body = client.get("/api/artifacts", headers={"X-User-Id": "u2"}).json()
    assert body["total"] == 4


def test_list_rejects_unknown_kind():
    r = client.get("/api/artifacts", params={"kind": "audio"}, headers=OWNER)
    assert r.status_code == 400
    assert r.json()["detail"]["type"] == "INVALID_PARAMETERS"


def test_latest_returns_six_newest_images(session_factory):
    _seed(session_factory, "u1", 9)
    _seed(session_factory, "u1", 2, kind="video")

    r = client.get("/api/artifacts/latest", headers=OWNER)

    assert r.status_code == 200
    items = r.json()
    assert len(items) == 6
    assert all(i["kind"] == "image" for i in items)
    assert items[0]["public_id"].endswith("u1_8")


def test_get_single_artifact_is_owner_scoped(session_factory):
    artifact_id = _seed(session_factory, "u1", 1)[0]
    assert client.get(f"/api/artifacts/{artifact_id}", headers=OWNER).status_code == 200
    r = client.get(f"/api/artifacts/{artifact_id}", headers={"X-User-Id": "u2"})
    assert r.status_code == 404


def test_delete_is_idempotent(session_factory):
    artifact_id = _seed(session_factory, "u1", 1)[0]

    first = client.delete(f"/api/artifacts/{artifact_id}", headers=OWNER)
    second = client.delete(f"/api/artifacts/{artifact_id}", headers=OWNER)
    never = client.delete("/api/artifacts/424242", headers=OWNER)

    assert first.status_code == 200 and first.json()["deleted"] is True
    assert second.status_code == 200 and second.json()["deleted"] is False
    assert never.status_code == 200
    assert never.json()["note"] == "Not found in database. No action needed."


# ---------------------------------------------------------------------------
# Approve
# ---------------------------------------------------------------------------


def _stored_response(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "asset_id": "asset-1",
            "public_id": "generated_interiors/u1/u1_1",
            "url": "http://res.cloudinary.com/demo/image/upload/v1/generated_interiors/u1/u1_1.png",
            "secure_url": "https://res.cloudinary.com/demo/image/upload/v1/generated_interiors/u1/u1_1.png",
            "format": "png",
            "width": 8,
            "height": 6,
            "bytes": 100,
            "tags": ["user_u1", "interior_design", "generated"],
        },
    )


def _real_uploader(handler) -> ArtifactUploader:
    async def no_sleep(_s: float) -> None:
        return None

    storage = StorageService("demo", upload_preset="Image_Gen", transport=httpx.MockTransport(handler))
    return ArtifactUploader(storage, MetadataStore(), sleep=no_sleep)


def test_approve_uploads_then_records(session_factory, png_data_uri):
    uploads = []

    def handler(request):
        uploads.append(request)
        return _stored_response(request)

    app.dependency_overrides[get_uploader] = lambda: _real_uploader(handler)

    r = client.post(
        "/api/artifacts",
        json={"image": png_data_uri, "prompt": "warm oak", "style": "living-room"},
        headers=OWNER,
    )

    assert r.status_code == 201
    body = r.json()
    assert body["kind"] == "image"
    assert body["style"] == "living-room"
    assert body["url"].startswith("https://")
    assert len(uploads) == 1
    s = session_factory()
    assert s.query(Artifact).filter(Artifact.user_id == "u1").count() == 1
    s.close()


def test_approve_rejects_remote_url_before_upload(session_factory):
    uploader = MagicMock(spec=ArtifactUploader)
    uploader.upload = AsyncMock()
    app.dependency_overrides[get_uploader] = lambda: uploader

    r = client.post("/api/artifacts", json={"image": "https://example.com/a.png"}, headers=OWNER)

    assert r.status_code == 400
    assert r.json()["detail"]["type"] == "INVALID_INPUT"
    uploader.upload.assert_not_awaited()


def test_approve_upload_failure_writes_no_row(session_factory, png_data_uri):
    def handler(request):
        return httpx.Response(401, json={"error": {"message": "Invalid api_key"}})

    app.dependency_overrides[get_uploader] = lambda: _real_uploader(handler)

    r = client.post("/api/artifacts", json={"image": png_data_uri}, headers=OWNER)

    assert r.status_code == 502
    assert r.json()["detail"]["type"] == "INVALID_CREDENTIALS"
    s = session_factory()
    assert s.query(Artifact).count() == 0
    s.close()


def test_approve_rate_limited_is_429(png_data_uri):
    uploader = MagicMock(spec=ArtifactUploader)
    uploader.upload = AsyncMock(
        side_effect=ArtifactUploadError(UploadErrorType.RATE_LIMIT_EXCEEDED, "Rate limit exceeded")
    )
    app.dependency_overrides[get_uploader] = lambda: uploader

    r = client.post("/api/artifacts", json={"image": png_data_uri}, headers=OWNER)
    assert r.status_code == 429


def test_approve_only_accepts_images(png_data_uri):
    r = client.post("/api/artifacts", json={"image": png_data_uri, "kind": "video"}, headers=OWNER)
    assert r.status_code == 400


def test_orphans_endpoint():
    sweeper = MagicMock(spec=OrphanSweeper)
    sweeper.find_orphans = AsyncMock(return_value=["generated_interiors/u1/lost"])
    app.dependency_overrides[get_orphan_sweeper] = lambda: sweeper

    r = client.get("/api/artifacts/orphans", headers=OWNER)

    assert r.status_code == 200
    assert r.json() == {"public_ids": ["generated_interiors/u1/lost"]}
