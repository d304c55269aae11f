"""Artifact model - one persisted, owner-scoped media record.

A row is only ever written after the matching durable-storage upload
succeeded. Rows are immutable apart from deletion.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base

ARTIFACT_KIND_IMAGE = "image"
ARTIFACT_KIND_VIDEO = "video"

VALID_ARTIFACT_KINDS: list[str] = [ARTIFACT_KIND_IMAGE, ARTIFACT_KIND_VIDEO]


class Artifact(Base):
    __tablename__ = "artifacts"

    id: Mapped[int] = mapped_column(primary_key=True)

    # --- Ownership ---
    user_id: Mapped[str] = mapped_column(String(64), index=True)

    kind: Mapped[str] = mapped_column(String(10), default=ARTIFACT_KIND_IMAGE, index=True)

    # --- Durable storage location ---
    # asset_id assigned by the storage service
    storage_id: Mapped[str] = mapped_column(String(128), default="")
    public_id: Mapped[str] = mapped_column(String(255))
    url: Mapped[str] = mapped_column(Text, default="")
    secure_url: Mapped[str] = mapped_column(Text)
    resource_type: Mapped[str] = mapped_column(String(20), default="image")

    # --- Media properties ---
    format: Mapped[str] = mapped_column(String(20), default="")
    width: Mapped[int | None] = mapped_column(Integer, default=None)
    height: Mapped[int | None] = mapped_column(Integer, default=None)
    bytes: Mapped[int] = mapped_column(Integer, default=0)
    tags: Mapped[list | None] = mapped_column(JSON, default=None)

    # --- Provenance ---
    prompt: Mapped[str | None] = mapped_column(Text, default=None)
    style: Mapped[str | None] = mapped_column(String(50), default=None)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), index=True
    )

    @property
    def source_url(self) -> str:
        """The durable URL the gallery renders and probes."""
        return self.secure_url or self.url
