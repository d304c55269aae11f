import logging
from typing import Any

import httpx

from app.errors import ExternalServiceError, JobErrorType

FAL_QUEUE_BASE = "https://queue.fal.run"

logger = logging.getLogger(__name__)


def _app_root(model: str) -> str:
    """Status and result endpoints live under the app root, not the full path.

    ``fal-ai/kling-video/v1/standard/image-to-video`` → ``fal-ai/kling-video``
    """
    return "/".join(model.strip("/").split("/")[:2])


def _upstream_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:500] or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        for key in ("detail", "error", "message"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and value.get("message"):
                return value["message"]
    return f"HTTP {resp.status_code}"


class FalQueueClient:
    """fal.ai queue REST API wrapper authenticated with an API key.

    A job is addressed by ``(model, request_id)``.  Every method opens its
    own ``httpx.AsyncClient``; an optional ``transport`` is passed through
    to it.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = FAL_QUEUE_BASE,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Key {api_key}",
            "Accept": "application/json",
        }
        self._timeout = timeout
        self._transport = transport

    async def _request(
        self,
        method: str,
        url: str,
        error_type: JobErrorType,
        json: dict | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated request and return the JSON body."""
        logger.debug("fal %s %s", method, url)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.request(method, url, headers=self._headers, json=json)
        except httpx.HTTPError as exc:
            logger.error("fal %s %s unreachable: %s", method, url, exc)
            raise ExternalServiceError(
                f"Generation service unreachable: {exc}", type=error_type
            ) from exc

        if not resp.is_success:
            message = _upstream_message(resp)
            logger.error("fal error %s for %s: %s", resp.status_code, url, message)
            raise ExternalServiceError(message, status_code=resp.status_code, type=error_type)
        return resp.json()

    async def submit(self, model: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Enqueue a request; the response carries ``request_id``."""
        return await self._request(
            "POST",
            f"{self._base}/{model.strip('/')}",
            JobErrorType.SUBMISSION_FAILED,
            json=payload,
        )

    async def status(self, model: str, request_id: str) -> dict[str, Any]:
        """Current queue status: ``IN_QUEUE``, ``IN_PROGRESS`` or ``COMPLETED``."""
        return await self._request(
            "GET",
            f"{self._base}/{_app_root(model)}/requests/{request_id}/status",
            JobErrorType.STATUS_FAILED,
        )

    async def result(self, model: str, request_id: str) -> dict[str, Any]:
        """The output payload of a completed request."""
        return await self._request(
            "GET",
            f"{self._base}/{_app_root(model)}/requests/{request_id}",
            JobErrorType.RESULT_FAILED,
        )
