"""Tests for the intermediary routes:

  POST /api/image-to-video
  GET  /api/task/{id}
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from app.deps import get_fal_client, get_fetcher, get_submitter, get_uploader
from app.errors import (
    ArtifactUploadError,
    ExternalServiceError,
    UploadErrorType,
)
from app.fal.client import FalQueueClient
from app.main import app
from app.services.job_submitter import JobSubmitter
from app.services.result_fetcher import ResultFetcher
from app.services.storage import StoredObject
from app.services.uploader import ArtifactUploader

client = TestClient(app)

MODELS = {"video": "fal-ai/kling-video/v1/standard/image-to-video"}


@pytest.fixture
def fal():
    mock = MagicMock(spec=FalQueueClient)
    mock.submit = AsyncMock(return_value={"request_id": "req-1"})
    mock.status = AsyncMock(return_value={"status": "IN_PROGRESS"})
    mock.result = AsyncMock(return_value={"video": {"url": "https://v3.fal.media/out.mp4"}})
    return mock


@pytest.fixture
def uploader():
    mock = MagicMock(spec=ArtifactUploader)
    mock.store_remote = AsyncMock(
        return_value=StoredObject(
            asset_id="a1",
            public_id="generated_videos/fal_video_req-1",
            url="http://res.cloudinary.com/demo/video/upload/fal_video_req-1.mp4",
            secure_url="https://res.cloudinary.com/demo/video/upload/fal_video_req-1.mp4",
            resource_type="video",
        )
    )
    return mock


@pytest.fixture(autouse=True)
def overrides(fal, uploader):
    app.dependency_overrides[get_fal_client] = lambda: fal
    app.dependency_overrides[get_submitter] = lambda: JobSubmitter(fal, MODELS)
    app.dependency_overrides[get_fetcher] = lambda: ResultFetcher(fal, MODELS)
    app.dependency_overrides[get_uploader] = lambda: uploader
    yield
    app.dependency_overrides.clear()


def test_image_to_video_returns_request_id(fal):
    r = client.post(
        "/api/image-to-video",
        json={"prompt": "pan left", "image_url": "https://res.cloudinary.com/demo/a.png"},
    )
    assert r.status_code == 200
    assert r.json() == {"requestId": "req-1"}
    fal.submit.assert_awaited_once()


def test_image_to_video_upstream_error_is_500(fal):
    fal.submit.side_effect = ExternalServiceError("queue unavailable", status_code=503)
    r = client.post(
        "/api/image-to-video",
        json={"prompt": "pan", "image_url": "https://res.cloudinary.com/demo/a.png"},
    )
    assert r.status_code == 500
    assert r.json() == {"error": "queue unavailable"}


def test_image_to_video_bad_input_is_400():
    r = client.post("/api/image-to-video", json={"prompt": "", "image_url": "https://x/a.png"})
    assert r.status_code == 400
    assert "error" in r.json()


def test_task_in_progress(fal, uploader):
    r = client.get("/api/task/req-1")
    assert r.status_code == 200
    assert r.json() == {"status": "IN_PROGRESS", "requestId": "req-1"}
    uploader.store_remote.assert_not_awaited()


def test_task_in_queue_reports_pending(fal):
    fal.status.return_value = {"status": "IN_QUEUE"}
    assert client.get("/api/task/req-1").json()["status"] == "PENDING"


def test_task_completed_stores_video_before_responding(fal, uploader):
    fal.status.return_value = {"status": "COMPLETED"}

    r = client.get("/api/task/req-1")

    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "COMPLETED"
    assert body["requestId"] == "req-1"
    assert body["video"]["url"] == "https://res.cloudinary.com/demo/video/upload/fal_video_req-1.mp4"
    assert "fal.media" not in body["video"]["url"]
    kwargs = uploader.store_remote.await_args.kwargs
    assert uploader.store_remote.await_args.args[0] == "https://v3.fal.media/out.mp4"
    assert kwargs["public_id"] == "fal_video_req-1"
    assert kwargs["resource_type"] == "video"


def test_task_failed_reports_upstream_error(fal):
    fal.status.return_value = {"status": "FAILED", "error": "content policy"}
    r = client.get("/api/task/req-1")
    assert r.json() == {"status": "FAILED", "requestId": "req-1", "error": "content policy"}


def test_task_completed_without_video_is_500(fal):
    fal.status.return_value = {"status": "COMPLETED"}
    fal.result.return_value = {"video": None}
    r = client.get("/api/task/req-1")
    assert r.status_code == 500
    assert r.json()["error"] == "No video URL from the generation service"


def test_task_storage_failure_is_500(fal, uploader):
    fal.status.return_value = {"status": "COMPLETED"}
    uploader.store_remote.side_effect = ArtifactUploadError(
        UploadErrorType.RATE_LIMIT_EXCEEDED, "Rate limit exceeded"
    )
    r = client.get("/api/task/req-1")
    assert r.status_code == 500
    body = r.json()
    assert body["error"] == "Storage upload failed"
    assert body["details"]["type"] == "RATE_LIMIT_EXCEEDED"


def test_task_status_error_is_500(fal):
    fal.status.side_effect = ExternalServiceError("Not found", status_code=404)
    r = client.get("/api/task/req-1")
    assert r.status_code == 500
    assert r.json() == {"error": "Not found"}
