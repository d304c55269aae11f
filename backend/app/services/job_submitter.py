"""Job submitter - one enqueue call per generation request, never retried."""

import logging

from app.errors import (
    ArtifactValidationError,
    ExternalServiceError,
    ValidationErrorType,
)
from app.fal.client import FalQueueClient

logger = logging.getLogger(__name__)


class JobSubmitter:
    """Submits generation requests to the external queue.

    ``models`` maps a job kind (``"image"`` / ``"video"``) to the upstream
    model id that serves it.
    """

    def __init__(self, client: FalQueueClient, models: dict[str, str]) -> None:
        self.client = client
        self.models = models

    def model_for(self, kind: str) -> str:
        try:
            return self.models[kind]
        except KeyError:
            raise ArtifactValidationError(
                ValidationErrorType.INVALID_INPUT, f"Unsupported job kind: {kind}"
            ) from None

    async def submit(self, prompt: str, image_url: str, *, kind: str = "video") -> str:
        """Enqueue a job and return its opaque handle.

        Raises:
            ArtifactValidationError: empty prompt or a source that is not a URL.
            ExternalServiceError: upstream answered non-2xx; carries its message.
        """
        if not prompt or not prompt.strip():
            raise ArtifactValidationError(ValidationErrorType.INVALID_INPUT, "Prompt is required")
        if not image_url.startswith(("http://", "https://")):
            raise ArtifactValidationError(
                ValidationErrorType.INVALID_INPUT, "Source image must be a reachable URL"
            )

        model = self.model_for(kind)
        body = await self.client.submit(model, {"prompt": prompt, "image_url": image_url})
        request_id = body.get("request_id")
        if not request_id:
            raise ExternalServiceError("Generation service returned no request id", details=body)

        logger.info("Submitted %s job %s", kind, request_id, extra={"model": model})
        return request_id
