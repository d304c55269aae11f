"""Tests for the error taxonomy and its HTTP translation."""

import pytest

from app.deps import http_error
from app.errors import (
    ArtifactUploadError,
    ArtifactValidationError,
    ExternalServiceError,
    JobErrorType,
    JobFailedError,
    RetrievalError,
    RetrievalErrorType,
    UploadErrorType,
    ValidationErrorType,
)


def test_to_dict_includes_optional_fields_only_when_set():
    bare = ArtifactValidationError(ValidationErrorType.INVALID_INPUT, "bad").to_dict()
    assert set(bare) == {"type", "message", "timestamp"}

    full = RetrievalError(
        RetrievalErrorType.API_TIMEOUT,
        "API timeout",
        details={"action": "query"},
        user_context={"user_id": "u1"},
    ).to_dict()
    assert full["details"] == {"action": "query"}
    assert full["user_context"] == {"user_id": "u1"}


@pytest.mark.parametrize(
    "status,expected",
    [("TIMEOUT", JobErrorType.TIMEOUT), ("CANCELLED", JobErrorType.CANCELLED), ("FAILED", JobErrorType.JOB_FAILED)],
)
def test_job_failed_error_type(status, expected):
    assert JobFailedError("req-1", status, "msg").type == expected


@pytest.mark.parametrize(
    "exc,status_code",
    [
        (ArtifactValidationError(ValidationErrorType.INVALID_FORMAT, "x"), 400),
        (RetrievalError(RetrievalErrorType.INVALID_PARAMETERS, "x"), 400),
        (RetrievalError(RetrievalErrorType.API_TIMEOUT, "x"), 504),
        (RetrievalError(RetrievalErrorType.RESOURCE_NOT_FOUND, "x"), 500),
        (ArtifactUploadError(UploadErrorType.RATE_LIMIT_EXCEEDED, "x"), 429),
        (ArtifactUploadError(UploadErrorType.NETWORK_FAILURE, "x"), 502),
        (ExternalServiceError("x"), 502),
        (JobFailedError("req-1", "FAILED", "x"), 409),
    ],
)
def test_http_error_status(exc, status_code):
    http_exc = http_error(exc)
    assert http_exc.status_code == status_code
    assert http_exc.detail["message"] == "x"
