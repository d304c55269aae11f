"""Images API - styled interior generation from room presets.

Implements:
  GET  /api/images/presets   - the available room presets
  POST /api/images/generate  - generate previews, optionally guided by a
                               reference photo of the flooring

Generated images are returned as ``data:`` URI previews and are not
persisted; the client approves one through ``POST /api/artifacts``.
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.deps import get_image_generator, get_owner_id, get_validator, http_error
from app.errors import PipelineError
from app.services.image_generator import ImageGenerator
from app.services.presets import DEFAULT_FLOOR_TYPE, PRESET_TEMPLATES, build_prompt
from app.services.validator import ArtifactValidator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/images", tags=["images"])


class PresetResponse(BaseModel):
    id: str
    name: str
    description: str


class GenerateImagesRequest(BaseModel):
    preset: str = "living-room"
    floor_type: str = DEFAULT_FLOOR_TYPE
    custom_prompt: str = ""
    # data: URI of the user's photo; plain generation when omitted
    reference_image: str | None = None
    count: int = Field(default=1, ge=1, le=4)


class GeneratedImageResponse(BaseModel):
    id: str
    url: str
    prompt: str
    style: str
    created_at: datetime


class GenerateImagesResponse(BaseModel):
    images: list[GeneratedImageResponse]


@router.get("/presets", response_model=list[PresetResponse])
async def list_presets() -> list[PresetResponse]:
    return [
        PresetResponse(id=p.id, name=p.name, description=p.description)
        for p in PRESET_TEMPLATES
    ]


@router.post("/generate", response_model=GenerateImagesResponse)
async def generate_images(
    body: GenerateImagesRequest,
    owner_id: str = Depends(get_owner_id),
    validator: ArtifactValidator = Depends(get_validator),
    generator: ImageGenerator = Depends(get_image_generator),
) -> GenerateImagesResponse:
    try:
        prompt, style = build_prompt(
            body.preset, floor_type=body.floor_type, custom_prompt=body.custom_prompt
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        reference = validator.validate(body.reference_image) if body.reference_image else None
        images = await generator.generate(prompt, style=style, reference=reference, n=body.count)
    except PipelineError as exc:
        raise http_error(exc) from exc

    logger.info("Generated %d preview(s) for %s", len(images), owner_id, extra={"style": style})
    return GenerateImagesResponse(
        images=[
            GeneratedImageResponse(
                id=img.id, url=img.url, prompt=img.prompt, style=img.style, created_at=img.created_at
            )
            for img in images
        ]
    )
