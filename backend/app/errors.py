"""Error taxonomy for the generation and persistence pipeline.

Three closed families map onto the three stages that can fail for an
artifact:

* ``ValidationErrorType`` - raised before any network call, never retried.
* ``UploadErrorType``     - raised after the upload retry budget is spent.
* ``RetrievalErrorType``  - raised by metadata queries.

Job-level failures (upstream ``FAILED``, missing result, poll timeout) use
``JobErrorType``.  Every exception carries a human-readable message and can
be rendered with ``to_dict()`` for logs and JSON responses.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ValidationErrorType(str, Enum):
    FILE_SIZE_EXCEEDED = "FILE_SIZE_EXCEEDED"
    INVALID_FORMAT = "INVALID_FORMAT"
    INVALID_INPUT = "INVALID_INPUT"


class UploadErrorType(str, Enum):
    NETWORK_FAILURE = "NETWORK_FAILURE"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    STORAGE_QUOTA_EXCEEDED = "STORAGE_QUOTA_EXCEEDED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class RetrievalErrorType(str, Enum):
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    AUTHENTICATION_FAILURE = "AUTHENTICATION_FAILURE"
    API_TIMEOUT = "API_TIMEOUT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class JobErrorType(str, Enum):
    SUBMISSION_FAILED = "SUBMISSION_FAILED"
    STATUS_FAILED = "STATUS_FAILED"
    RESULT_FAILED = "RESULT_FAILED"
    JOB_FAILED = "JOB_FAILED"
    MISSING_RESULT = "MISSING_RESULT"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"


class PipelineError(Exception):
    """Base class for every failure the pipeline returns to a caller."""

    def __init__(
        self,
        type: Enum,
        message: str,
        *,
        details: Any = None,
        user_context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.type = type
        self.message = message
        self.details = details
        self.user_context = user_context
        self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.type.value,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        if self.details is not None:
            payload["details"] = self.details
        if self.user_context:
            payload["user_context"] = self.user_context
        return payload


class ArtifactValidationError(PipelineError):
    type: ValidationErrorType


class ArtifactUploadError(PipelineError):
    type: UploadErrorType


class RetrievalError(PipelineError):
    type: RetrievalErrorType


class ExternalServiceError(PipelineError):
    """A generation service answered with a non-2xx status or was unreachable.

    ``type`` names the call that failed: submit, status or result.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        type: JobErrorType = JobErrorType.SUBMISSION_FAILED,
        **kwargs: Any,
    ) -> None:
        super().__init__(type, message, **kwargs)
        self.status_code = status_code


class MissingResultError(PipelineError):
    """A job reported success but its payload has no usable media URL."""

    def __init__(self, message: str = "Completed job has no media URL", **kwargs: Any) -> None:
        super().__init__(JobErrorType.MISSING_RESULT, message, **kwargs)


class JobFailedError(PipelineError):
    """A job ended in a terminal state other than COMPLETED."""

    def __init__(self, job_id: str, status: str, message: str, **kwargs: Any) -> None:
        error_type = {
            "TIMEOUT": JobErrorType.TIMEOUT,
            "CANCELLED": JobErrorType.CANCELLED,
        }.get(status, JobErrorType.JOB_FAILED)
        super().__init__(error_type, message, **kwargs)
        self.job_id = job_id
        self.status = status
