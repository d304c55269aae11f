"""Durable object storage (Cloudinary) over its HTTP API.

Objects are stored at: {folder}/{public_id}
  images → generated_interiors/{user_id}/{user_id}_{timestamp_ms}
  videos → generated_videos/fal_video_{request_id}

Two upload paths exist:

* ``upload_unsigned`` - multipart POST of raw bytes with an unsigned upload
  preset; the path browser-approved images take.
* ``upload_remote``   - signed POST where the storage service fetches a
  remote URL itself; only the trusted server tier holds the API secret.

Account identifiers are constructor arguments; ``get_storage()`` builds the
process-wide instance from settings.
"""

import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


class StorageHTTPError(Exception):
    """The storage API answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str, payload: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.payload = payload


@dataclass
class StoredObject:
    """The upload response fields the pipeline consumes."""

    asset_id: str
    public_id: str
    url: str
    secure_url: str
    format: str = ""
    width: int | None = None
    height: int | None = None
    bytes: int = 0
    resource_type: str = "image"
    tags: list[str] = field(default_factory=list)

    @classmethod
    def from_response(cls, data: dict[str, Any]) -> "StoredObject":
        return cls(
            asset_id=data.get("asset_id", ""),
            public_id=data["public_id"],
            url=data.get("url", ""),
            secure_url=data.get("secure_url") or data.get("url", ""),
            format=data.get("format", ""),
            width=data.get("width"),
            height=data.get("height"),
            bytes=data.get("bytes", 0),
            resource_type=data.get("resource_type", "image"),
            tags=list(data.get("tags") or []),
        )


def transformed_url(
    url: str, width: int = 800, format: str = "auto", quality: str = "auto"
) -> str:
    """Insert a ``w_,f_,q_`` delivery transformation into a storage URL.

    URLs that are not Cloudinary image-delivery URLs are returned unchanged.
    """
    if "cloudinary.com" not in url or "/image/upload/" not in url:
        return url
    base, _, public_path = url.partition("/image/upload/")
    if not base or not public_path:
        return url
    return f"{base}/image/upload/w_{width},f_{format},q_{quality}/{public_path}"


def _sign(params: dict[str, Any], api_secret: str) -> str:
    """Cloudinary request signature: sha1 of sorted ``k=v`` pairs + secret."""
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] not in (None, ""))
    return hashlib.sha1(f"{to_sign}{api_secret}".encode()).hexdigest()


class StorageService:
    """Client for the durable object store.

    ``transport`` is handed to every ``httpx.AsyncClient`` this service opens;
    tests pass an ``httpx.MockTransport``.
    """

    def __init__(
        self,
        cloud_name: str,
        *,
        upload_preset: str = "",
        api_key: str = "",
        api_secret: str = "",
        api_base: str = "https://api.cloudinary.com/v1_1",
        timeout: float = 60.0,
        probe_timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.cloud_name = cloud_name
        self.upload_preset = upload_preset
        self.api_key = api_key
        self._api_secret = api_secret
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._probe_timeout = probe_timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self._timeout, transport=self._transport
        )

    def _upload_endpoint(self, resource_type: str) -> str:
        return f"{self._api_base}/{self.cloud_name}/{resource_type}/upload"

    @staticmethod
    def _raise_for_error(resp: httpx.Response) -> None:
        if resp.is_success:
            return
        try:
            payload = resp.json()
        except ValueError:
            payload = {"raw": resp.text[:500]}
        error = payload.get("error") if isinstance(payload, dict) else None
        message = (error or {}).get("message") if isinstance(error, dict) else None
        logger.error(
            "Storage API error %s: %s", resp.status_code, message or resp.text[:200]
        )
        raise StorageHTTPError(resp.status_code, message or "Upload failed", payload)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def upload_unsigned(
        self,
        data: bytes,
        *,
        filename: str,
        mime_type: str,
        public_id: str,
        folder: str,
        tags: list[str],
        resource_type: str = "image",
    ) -> StoredObject:
        """Upload raw bytes with the unsigned preset.

        Re-sending the same ``public_id`` addresses the same object, so a
        retried upload never creates a second one.
        """
        form = {
            "upload_preset": self.upload_preset,
            "cloud_name": self.cloud_name,
            "public_id": public_id,
            "folder": folder,
            "tags": ",".join(tags),
        }
        async with self._client() as client:
            resp = await client.post(
                self._upload_endpoint(resource_type),
                data=form,
                files={"file": (filename, data, mime_type)},
            )
        self._raise_for_error(resp)
        stored = StoredObject.from_response(resp.json())
        logger.debug("Stored %d bytes → %s", len(data), stored.public_id)
        return stored

    async def upload_remote(
        self,
        file_url: str,
        *,
        public_id: str,
        folder: str,
        resource_type: str = "video",
        tags: list[str] | None = None,
        overwrite: bool = True,
    ) -> StoredObject:
        """Have the storage service fetch ``file_url`` and store it (signed)."""
        if not self._api_secret:
            raise StorageHTTPError(401, "Signed uploads need an API secret")
        params: dict[str, Any] = {
            "public_id": public_id,
            "folder": folder,
            "overwrite": "true" if overwrite else "false",
            "tags": ",".join(tags or []),
            "timestamp": int(time.time()),
        }
        form = {
            **{k: str(v) for k, v in params.items() if v not in (None, "")},
            "file": file_url,
            "api_key": self.api_key,
            "signature": _sign(params, self._api_secret),
        }
        async with self._client() as client:
            resp = await client.post(self._upload_endpoint(resource_type), data=form)
        self._raise_for_error(resp)
        stored = StoredObject.from_response(resp.json())
        logger.info("Stored remote %s → %s", resource_type, stored.public_id)
        return stored

    async def probe(self, url: str) -> bool:
        """HEAD the delivery URL; only the status code is consulted."""
        try:
            async with self._client(self._probe_timeout) as client:
                resp = await client.head(url)
        except httpx.HTTPError as exc:
            logger.debug("Probe failed for %s: %s", url, exc)
            return False
        return resp.is_success

    async def iter_public_ids(
        self, prefix: str, resource_type: str = "image", page_size: int = 500
    ) -> AsyncIterator[str]:
        """Yield every stored public id under ``prefix`` (admin API, paginated)."""
        endpoint = f"{self._api_base}/{self.cloud_name}/resources/{resource_type}/upload"
        cursor: str | None = None
        async with self._client() as client:
            while True:
                params: dict[str, Any] = {"prefix": prefix, "max_results": page_size}
                if cursor:
                    params["next_cursor"] = cursor
                resp = await client.get(
                    endpoint, params=params, auth=(self.api_key, self._api_secret)
                )
                self._raise_for_error(resp)
                body = resp.json()
                for resource in body.get("resources", []):
                    yield resource["public_id"]
                cursor = body.get("next_cursor")
                if not cursor:
                    break


# Module-level singleton, created on first use.
_storage: StorageService | None = None


def get_storage() -> StorageService:
    """Return the module-level StorageService singleton."""
    global _storage
    if _storage is None:
        _storage = StorageService(
            settings.cloudinary_cloud_name,
            upload_preset=settings.cloudinary_upload_preset,
            api_key=settings.cloudinary_api_key,
            api_secret=settings.cloudinary_api_secret,
            api_base=settings.cloudinary_api_base,
            probe_timeout=settings.probe_timeout_seconds,
        )
    return _storage
