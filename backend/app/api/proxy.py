"""Intermediary routes in front of the generation queue.

Implements:
  POST /api/image-to-video  - submit an image-to-video job → {requestId}
  GET  /api/task/{id}       - one status check; on COMPLETED the video is
                              stored durably before the response is sent, so
                              callers never see the upstream ephemeral URL

Failures answer 500 with ``{"error": ...}``; malformed input answers 400.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.deps import get_fal_client, get_fetcher, get_submitter, get_uploader
from app.errors import (
    ArtifactUploadError,
    ArtifactValidationError,
    ExternalServiceError,
    MissingResultError,
)
from app.fal.client import FalQueueClient
from app.models.job import JOB_STATUS_COMPLETED, JOB_STATUS_FAILED
from app.services.job_poller import map_upstream_status
from app.services.job_submitter import JobSubmitter
from app.services.pipeline import stored_public_id
from app.services.result_fetcher import ResultFetcher
from app.services.uploader import ArtifactUploader

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["proxy"])


class ImageToVideoRequest(BaseModel):
    prompt: str
    image_url: str


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


@router.post("/image-to-video")
async def image_to_video(
    body: ImageToVideoRequest,
    submitter: JobSubmitter = Depends(get_submitter),
):
    logger.info("Image-to-video submission", extra={"image_url": body.image_url})
    try:
        request_id = await submitter.submit(body.prompt, body.image_url, kind="video")
    except ArtifactValidationError as exc:
        return _error(400, exc.message)
    except ExternalServiceError as exc:
        return _error(500, exc.message)
    return {"requestId": request_id}


@router.get("/task/{request_id}")
async def task_status(
    request_id: str,
    client: FalQueueClient = Depends(get_fal_client),
    fetcher: ResultFetcher = Depends(get_fetcher),
    uploader: ArtifactUploader = Depends(get_uploader),
):
    try:
        body = await client.status(fetcher.models["video"], request_id)
    except ExternalServiceError as exc:
        return _error(500, exc.message)

    status = map_upstream_status(body.get("status"))
    if status == JOB_STATUS_FAILED:
        return {
            "status": status,
            "requestId": request_id,
            "error": body.get("error") or "Video generation failed.",
        }
    if status != JOB_STATUS_COMPLETED:
        return {"status": status, "requestId": request_id}

    try:
        video_url = await fetcher.fetch(request_id, kind="video")
    except MissingResultError:
        return _error(500, "No video URL from the generation service")
    except ExternalServiceError as exc:
        return _error(500, exc.message)

    try:
        stored = await uploader.store_remote(
            video_url,
            public_id=stored_public_id("video", request_id),
            resource_type="video",
            user_context={"request_id": request_id},
        )
    except ArtifactUploadError as exc:
        return _error(500, "Storage upload failed", details=exc.to_dict())

    return {
        "status": JOB_STATUS_COMPLETED,
        "video": {"url": stored.secure_url, "public_id": stored.public_id},
        "requestId": request_id,
    }