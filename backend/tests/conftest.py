"""Shared fixtures: in-memory database and real encoded image payloads."""

import base64
import io

import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models import Base


@pytest.fixture
def session_factory():
    """A shared in-memory SQLite DB; every session sees the same tables."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


def encode_image(fmt: str = "PNG", size: tuple[int, int] = (8, 6)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color=(120, 90, 60)).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def make_data_uri():
    """Build a ``data:`` URI around real image bytes of the given format."""

    def _make(fmt: str = "PNG", mime: str | None = None, size: tuple[int, int] = (8, 6)) -> str:
        mime = mime or {"JPEG": "jpeg", "PNG": "png", "WEBP": "webp"}[fmt]
        encoded = base64.b64encode(encode_image(fmt, size)).decode()
        return f"data:image/{mime};base64,{encoded}"

    return _make


@pytest.fixture
def png_data_uri(make_data_uri) -> str:
    return make_data_uri("PNG")


def cloudinary_upload_body(public_id: str, **overrides) -> dict:
    """An upload response shaped like the storage API's."""
    body = {
        "asset_id": f"asset-{public_id}",
        "public_id": public_id,
        "url": f"http://res.cloudinary.com/demo/image/upload/v1/{public_id}.png",
        "secure_url": f"https://res.cloudinary.com/demo/image/upload/v1/{public_id}.png",
        "format": "png",
        "width": 8,
        "height": 6,
        "bytes": 123,
        "resource_type": "image",
        "tags": ["generated"],
    }
    body.update(overrides)
    return body


@pytest.fixture
def upload_body():
    return cloudinary_upload_body
