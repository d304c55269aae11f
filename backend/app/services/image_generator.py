"""Styled image generation via the OpenAI images API.

Results come back as ``data:`` URI previews; nothing is stored until the
user approves an image and it goes through validation and upload.
"""

import base64
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone

from openai import APIError, AsyncOpenAI

from app.errors import ExternalServiceError, MissingResultError
from app.services.validator import ValidatedMedia

logger = logging.getLogger(__name__)


@dataclass
class GeneratedImage:
    id: str
    url: str
    prompt: str
    style: str = "default"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ImageGenerator:
    """Wraps ``AsyncOpenAI.images`` for reference-guided and plain generation."""

    def __init__(
        self,
        api_key: str = "",
        *,
        model: str = "gpt-image-1",
        size: str = "1024x1536",
        quality: str = "medium",
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self.size = size
        self.quality = quality
        self._client = client or AsyncOpenAI(api_key=api_key or None, max_retries=3)

    async def generate(
        self,
        prompt: str,
        *,
        style: str = "default",
        reference: ValidatedMedia | None = None,
        n: int = 1,
    ) -> list[GeneratedImage]:
        """Generate ``n`` images, guided by ``reference`` when given.

        Raises:
            ExternalServiceError: the API rejected the request.
            MissingResultError: the response held no decodable image.
        """
        try:
            if reference is not None:
                response = await self._client.images.edit(
                    model=self.model,
                    image=(f"reference.{reference.format}", reference.data, reference.mime_type),
                    prompt=prompt,
                    n=n,
                    size=self.size,
                    quality=self.quality,
                )
            else:
                response = await self._client.images.generate(
                    model=self.model,
                    prompt=prompt,
                    n=n,
                    size=self.size,
                    quality=self.quality,
                    output_format="png",
                )
        except APIError as exc:
            logger.error("Image generation failed: %s", exc)
            raise ExternalServiceError(
                exc.message or "Image generation failed",
                status_code=getattr(exc, "status_code", None),
            ) from exc

        stamp = int(time.time() * 1000)
        images = [
            GeneratedImage(
                id=f"image-{stamp}-{i}",
                url=f"data:image/png;base64,{item.b64_json}",
                prompt=prompt,
                style=style,
            )
            for i, item in enumerate(response.data or [])
            if isinstance(getattr(item, "b64_json", None), str) and _decodes(item.b64_json)
        ]
        if not images:
            logger.warning("Image generation returned no usable images")
            raise MissingResultError(
                "No valid images were generated. Please try again with a different prompt."
            )
        logger.info("Generated %d image(s)", len(images), extra={"style": style})
        return images


def _decodes(b64: str) -> bool:
    try:
        base64.b64decode(b64, validate=True)
    except ValueError:
        return False
    return bool(b64)
