"""Result fetcher - pulls the canonical media URL out of a completed job."""

import logging
from typing import Any

from app.errors import MissingResultError
from app.fal.client import FalQueueClient

logger = logging.getLogger(__name__)


def extract_media_url(payload: Any, kind: str) -> str | None:
    """Return the output media URL in ``payload`` or None.

    Video jobs answer ``{"video": {"url": ...}}``; image jobs answer
    ``{"images": [{"url": ...}]}`` or ``{"image": {"url": ...}}``.  A
    ``data`` envelope around either shape is unwrapped.
    """
    if not isinstance(payload, dict):
        return None
    if isinstance(payload.get("data"), dict):
        payload = payload["data"]

    if kind == "video":
        media = payload.get("video")
    else:
        images = payload.get("images")
        media = images[0] if isinstance(images, list) and images else payload.get("image")

    url = media.get("url") if isinstance(media, dict) else None
    if isinstance(url, str) and url.startswith(("http://", "https://")):
        return url
    return None


class ResultFetcher:
    def __init__(self, client: FalQueueClient, models: dict[str, str]) -> None:
        self.client = client
        self.models = models

    async def fetch(self, job_id: str, *, kind: str = "video") -> str:
        """One result call for a completed job; returns the media URL.

        Raises:
            MissingResultError: the payload has no usable URL, even though
                the job reported success.
        """
        body = await self.client.result(self.models[kind], job_id)
        url = extract_media_url(body, kind)
        if url is None:
            logger.error("Job %s completed without a %s URL", job_id, kind)
            raise MissingResultError(
                f"No {kind} URL in the result of job {job_id}",
                details={"job_id": job_id},
            )
        return url
