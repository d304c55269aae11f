"""Pre-upload validation for browser-originated media.

Runs entirely in memory - no network side effects - and must pass before
``ArtifactUploader`` is invoked.  Accepts base64 ``data:`` URIs only; remote
URLs have to go through the trusted server-side path
(``ArtifactUploader.store_remote``).
"""

import base64
import binascii
import io
import logging
import math
import re
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

from app.errors import ArtifactValidationError, ValidationErrorType

logger = logging.getLogger(__name__)

ALLOWED_FORMATS = ("jpg", "jpeg", "png", "webp")
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MiB

_DATA_URI_RE = re.compile(r"^data:image/([a-zA-Z0-9]+);base64,")

# Pillow format name → canonical extension
_PIL_FORMATS = {"JPEG": "jpg", "PNG": "png", "WEBP": "webp"}


@dataclass(frozen=True)
class ValidatedMedia:
    """Decoded media that passed every check; the only input the uploader takes."""

    data: bytes
    mime_type: str
    format: str
    size_bytes: int
    width: int | None = None
    height: int | None = None


def _normalise_format(fmt: str) -> str:
    fmt = fmt.lower()
    return "jpg" if fmt == "jpeg" else fmt


class ArtifactValidator:
    """Checks size and format constraints on raw encoded media."""

    def __init__(self, max_bytes: int = MAX_FILE_SIZE) -> None:
        self.max_bytes = max_bytes

    def _error(
        self, error_type: ValidationErrorType, message: str, **details
    ) -> ArtifactValidationError:
        logger.warning("Validation failed: %s", message, extra={"error_type": error_type.value})
        return ArtifactValidationError(error_type, message, details=details or None)

    def validate(
        self,
        raw: str,
        declared_size: int | None = None,
        declared_format: str | None = None,
    ) -> ValidatedMedia:
        """Validate a data URI and return the decoded media.

        Raises:
            ArtifactValidationError: ``INVALID_INPUT`` for anything that is not
                a data URI (remote URLs included), ``FILE_SIZE_EXCEEDED`` above
                the cap, ``INVALID_FORMAT`` for types outside jpeg/png/webp or
                bytes Pillow cannot identify.
        """
        if not isinstance(raw, str) or not raw:
            raise self._error(ValidationErrorType.INVALID_INPUT, "Input must be a base64 encoded image")

        if raw.startswith("http"):
            raise self._error(
                ValidationErrorType.INVALID_INPUT,
                "URL uploads require server-side processing and are not accepted here",
            )
        if not raw.startswith("data:"):
            raise self._error(
                ValidationErrorType.INVALID_INPUT,
                "Input must be a base64 encoded image or a valid URL",
            )

        _, _, encoded = raw.partition(",")
        # Estimated from the encoded length, less padding; oversized payloads are never decoded.
        if declared_size is not None:
            estimated = declared_size
        else:
            padding = len(encoded) - len(encoded.rstrip("="))
            estimated = math.ceil(len(encoded) * 3 / 4) - padding
        if estimated > self.max_bytes:
            raise self._error(
                ValidationErrorType.FILE_SIZE_EXCEEDED,
                f"File size exceeds the maximum allowed size of {self.max_bytes // (1024 * 1024)}MB",
                size=estimated,
                max_size=self.max_bytes,
            )

        if declared_format and declared_format.lower() not in ALLOWED_FORMATS:
            raise self._error(
                ValidationErrorType.INVALID_FORMAT,
                f"Invalid file format. Allowed formats are: {', '.join(ALLOWED_FORMATS)}",
                format=declared_format,
            )

        match = _DATA_URI_RE.match(raw)
        if not match:
            raise self._error(
                ValidationErrorType.INVALID_FORMAT,
                "Invalid base64 image format. Cannot determine MIME type.",
            )
        mime_format = match.group(1).lower()
        if mime_format not in ALLOWED_FORMATS:
            raise self._error(
                ValidationErrorType.INVALID_FORMAT,
                f"Invalid image format: {mime_format}. Allowed formats are: {', '.join(ALLOWED_FORMATS)}",
                format=mime_format,
            )

        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            raise self._error(
                ValidationErrorType.INVALID_INPUT, "Image data is not valid base64"
            ) from None

        if len(data) > self.max_bytes:
            raise self._error(
                ValidationErrorType.FILE_SIZE_EXCEEDED,
                f"File size exceeds the maximum allowed size of {self.max_bytes // (1024 * 1024)}MB",
                size=len(data),
                max_size=self.max_bytes,
            )

        try:
            with Image.open(io.BytesIO(data)) as img:
                pil_format = img.format or ""
                width, height = img.size
        except (UnidentifiedImageError, OSError):
            raise self._error(
                ValidationErrorType.INVALID_FORMAT, "Image data could not be decoded"
            ) from None

        actual = _PIL_FORMATS.get(pil_format)
        if actual is None or actual != _normalise_format(mime_format):
            raise self._error(
                ValidationErrorType.INVALID_FORMAT,
                f"Image content ({pil_format or 'unknown'}) does not match declared type {mime_format}",
                format=pil_format,
            )

        return ValidatedMedia(
            data=data,
            mime_type=f"image/{'jpeg' if actual == 'jpg' else actual}",
            format=actual,
            size_bytes=len(data),
            width=width,
            height=height,
        )
