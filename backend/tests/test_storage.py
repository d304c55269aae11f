"""Tests for the durable storage client and the orphan sweep built on it."""

import hashlib
from unittest.mock import MagicMock

import httpx
import pytest

from app.models.artifact import Artifact
from app.services.metadata_store import MetadataStore
from app.services.orphan_sweep import OrphanSweeper
from app.services.storage import (
    StorageHTTPError,
    StorageService,
    StoredObject,
    _sign,
    transformed_url,
)


def _storage(handler, **kwargs) -> StorageService:
    kwargs.setdefault("upload_preset", "Image_Gen")
    return StorageService("demo", transport=httpx.MockTransport(handler), **kwargs)


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def test_transformed_url_inserts_delivery_params():
    url = "https://res.cloudinary.com/demo/image/upload/v123/generated_interiors/u1/u1_1.png"
    assert transformed_url(url) == (
        "https://res.cloudinary.com/demo/image/upload/w_800,f_auto,q_auto/"
        "v123/generated_interiors/u1/u1_1.png"
    )


def test_transformed_url_passes_other_urls_through():
    assert transformed_url("https://example.com/a.png") == "https://example.com/a.png"
    video = "https://res.cloudinary.com/demo/video/upload/v1/clip.mp4"
    assert transformed_url(video) == video


def test_sign_sorts_params_and_skips_empty_values():
    params = {"timestamp": 100, "public_id": "abc", "tags": ""}
    expected = hashlib.sha1(b"public_id=abc&timestamp=100secret").hexdigest()
    assert _sign(params, "secret") == expected


def test_stored_object_falls_back_to_url():
    stored = StoredObject.from_response({"public_id": "p", "url": "http://x/p.png"})
    assert stored.secure_url == "http://x/p.png"
    assert stored.tags == []


# ---------------------------------------------------------------------------
# Uploads
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_upload_unsigned_posts_multipart(upload_body):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=upload_body("generated_interiors/u1/u1_1"))

    stored = await _storage(handler).upload_unsigned(
        b"bytes",
        filename="u1_1.png",
        mime_type="image/png",
        public_id="u1_1",
        folder="generated_interiors/u1",
        tags=["user_u1"],
    )

    assert stored.public_id == "generated_interiors/u1/u1_1"
    assert stored.width == 8
    assert seen[0].headers["content-type"].startswith("multipart/form-data")
    assert b'filename="u1_1.png"' in seen[0].content


@pytest.mark.asyncio
async def test_error_response_raises_with_storage_message():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"message": "Upload preset not found"}})

    with pytest.raises(StorageHTTPError) as exc_info:
        await _storage(handler).upload_unsigned(
            b"x", filename="a.png", mime_type="image/png", public_id="a", folder="f", tags=[]
        )
    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "Upload preset not found"


@pytest.mark.asyncio
async def test_upload_remote_requires_secret():
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover
        raise AssertionError("no request expected")

    with pytest.raises(StorageHTTPError) as exc_info:
        await _storage(handler).upload_remote(
            "https://fal.media/a.mp4", public_id="fal_video_1", folder="generated_videos"
        )
    assert exc_info.value.status_code == 401


# ---------------------------------------------------------------------------
# Probe + listing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_probe_network_error_is_false():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("dns")

    assert await _storage(handler).probe("https://res.cloudinary.com/x.png") is False


@pytest.mark.asyncio
async def test_iter_public_ids_follows_cursor():
    pages = {
        None: {"resources": [{"public_id": "a"}, {"public_id": "b"}], "next_cursor": "c2"},
        "c2": {"resources": [{"public_id": "c"}]},
    }
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=pages[request.url.params.get("next_cursor")])

    storage = _storage(handler, api_key="k", api_secret="s")
    ids = [pid async for pid in storage.iter_public_ids("generated_interiors/u1/")]

    assert ids == ["a", "b", "c"]
    assert seen[0].url.path == "/v1_1/demo/resources/image/upload"
    assert seen[0].url.params["prefix"] == "generated_interiors/u1/"
    assert seen[0].headers["Authorization"].startswith("Basic ")


# ---------------------------------------------------------------------------
# Orphan sweep
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_find_orphans_reports_objects_without_rows(db):
    db.add(Artifact(user_id="u1", kind="image", public_id="generated_interiors/u1/keep", secure_url="https://x"))
    db.commit()

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "resources": [
                    {"public_id": "generated_interiors/u1/keep"},
                    {"public_id": "generated_interiors/u1/lost"},
                ]
            },
        )

    sweeper = OrphanSweeper(_storage(handler, api_key="k", api_secret="s"), MetadataStore())
    assert await sweeper.find_orphans(db, "u1") == ["generated_interiors/u1/lost"]


@pytest.mark.asyncio
async def test_find_orphans_uses_owner_prefix():
    storage = MagicMock(spec=StorageService)
    prefixes = []

    async def iter_ids(prefix):
        prefixes.append(prefix)
        return
        yield  # pragma: no cover

    storage.iter_public_ids = iter_ids
    metadata = MagicMock(spec=MetadataStore)
    metadata.public_ids.return_value = set()

    sweeper = OrphanSweeper(storage, metadata, image_folder="/generated_interiors/")
    assert await sweeper.find_orphans(MagicMock(), "u7") == []
    assert prefixes == ["generated_interiors/u7/"]
