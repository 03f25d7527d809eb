"""Custom exceptions for Retail Forecaster.

Every error raised by the orchestration layer carries an ``ErrorKind`` so
callers can tell failures apart without parsing messages.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from botocore.exceptions import (
    ClientError,
    ConnectionError as BotoConnectionError,
    ReadTimeoutError,
)

# botocore error codes that indicate a transient condition on the AWS side.
TRANSIENT_ERROR_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "TooManyRequestsException",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "InternalFailure",
        "InternalServerException",
        "ModelNotReadyException",
        "RequestTimeout",
    }
)


class ErrorKind(str, Enum):
    """Machine-readable error categories surfaced to API callers."""

    INTERNAL_ERROR = "internal_error"
    INVALID_REQUEST = "invalid_request"
    CONFIGURATION_UNAVAILABLE = "configuration_unavailable"
    SUBMISSION_FAILED = "submission_failed"
    JOB_STATUS_UNAVAILABLE = "job_status_unavailable"
    NO_CANDIDATE_AVAILABLE = "no_candidate_available"
    DEPLOYMENT_FAILED = "deployment_failed"
    ENDPOINT_STATUS_UNAVAILABLE = "endpoint_status_unavailable"
    INVOCATION_FAILED = "invocation_failed"
    MALFORMED_FORECAST_RESPONSE = "malformed_forecast_response"
    CLEANUP_PARTIALLY_FAILED = "cleanup_partially_failed"
    UPLOAD_URL_FAILED = "upload_url_failed"
    CHAT_COMPLETION_FAILED = "chat_completion_failed"


def is_transient(exc: BaseException | None) -> bool:
    """Return True when ``exc`` looks like a throttling or availability blip."""
    if isinstance(exc, (BotoConnectionError, ReadTimeoutError)):
        return True
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        return code in TRANSIENT_ERROR_CODES
    return False


def aws_error_code(exc: BaseException) -> str | None:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


class RetailForecastError(Exception):
    """Base exception for all retail forecaster errors."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        error_code: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.error_code = error_code
        if cause is not None:
            self.error_code = self.error_code or aws_error_code(cause)
            if is_transient(cause):
                self.retryable = True

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "error_code": self.error_code,
            "details": self.details,
        }


class InvalidRequest(RetailForecastError, ValueError):
    """Raised when a caller supplies an unusable payload."""

    kind = ErrorKind.INVALID_REQUEST


class ConfigurationUnavailable(RetailForecastError):
    """Raised when remote configuration cannot be read and no usable default exists."""

    kind = ErrorKind.CONFIGURATION_UNAVAILABLE
    retryable = True

    def __init__(self, message: str, parameter_name: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.parameter_name = parameter_name
        if parameter_name:
            self.details["parameter_name"] = parameter_name


class SubmissionFailed(RetailForecastError):
    """Raised when dataset staging or AutoML job creation fails."""

    kind = ErrorKind.SUBMISSION_FAILED

    def __init__(self, message: str, job_name: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.job_name = job_name
        if job_name:
            self.details["job_name"] = job_name


class JobStatusUnavailable(RetailForecastError):
    """Raised when a job cannot be described."""

    kind = ErrorKind.JOB_STATUS_UNAVAILABLE

    def __init__(self, message: str, job_name: str, **kwargs):
        super().__init__(message, **kwargs)
        self.job_name = job_name
        self.details["job_name"] = job_name


class NoCandidateAvailable(RetailForecastError):
    """Raised when deployment is requested before a usable candidate exists."""

    kind = ErrorKind.NO_CANDIDATE_AVAILABLE

    def __init__(self, message: str, job_name: str, status: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        self.job_name = job_name
        self.status = status
        self.details.update({"job_name": job_name, "status": status})


class DeploymentFailed(RetailForecastError):
    """Raised when model, endpoint config or endpoint creation fails.

    ``created`` lists the resources that were created before the failing
    step. They are left in place.
    """

    kind = ErrorKind.DEPLOYMENT_FAILED

    def __init__(
        self,
        message: str,
        step: str,
        created: list[str] | None = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.step = step
        self.created = list(created or [])
        self.details.update({"step": step, "created": self.created})


class EndpointStatusUnavailable(RetailForecastError):
    """Raised when an endpoint cannot be described."""

    kind = ErrorKind.ENDPOINT_STATUS_UNAVAILABLE

    def __init__(self, message: str, endpoint_name: str, **kwargs):
        super().__init__(message, **kwargs)
        self.endpoint_name = endpoint_name
        self.details["endpoint_name"] = endpoint_name


class InvocationFailed(RetailForecastError):
    """Raised when the endpoint rejects or cannot serve an invocation."""

    kind = ErrorKind.INVOCATION_FAILED

    def __init__(self, message: str, endpoint_name: str, **kwargs):
        super().__init__(message, **kwargs)
        self.endpoint_name = endpoint_name
        self.details["endpoint_name"] = endpoint_name


class MalformedForecastResponse(RetailForecastError):
    """Raised when an invocation body lacks the expected prediction structure."""

    kind = ErrorKind.MALFORMED_FORECAST_RESPONSE

    def __init__(self, message: str, endpoint_name: str, **kwargs):
        super().__init__(message, **kwargs)
        self.endpoint_name = endpoint_name
        self.details["endpoint_name"] = endpoint_name


class CleanupPartiallyFailed(RetailForecastError):
    """Raised when a deletion step fails.

    Steps after the failing one are not attempted, so ``remaining`` includes
    the failed resource and everything after it.
    """

    kind = ErrorKind.CLEANUP_PARTIALLY_FAILED

    def __init__(
        self,
        message: str,
        failed_step: str,
        deleted: list[str],
        remaining: list[str],
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.failed_step = failed_step
        self.deleted = list(deleted)
        self.remaining = list(remaining)
        self.details.update(
            {"failed_step": failed_step, "deleted": self.deleted, "remaining": self.remaining}
        )


class UploadUrlFailed(RetailForecastError):
    """Raised when a presigned upload URL cannot be issued."""

    kind = ErrorKind.UPLOAD_URL_FAILED


class ChatCompletionFailed(RetailForecastError):
    """Raised when Bedrock fails to produce a chat response."""

    kind = ErrorKind.CHAT_COMPLETION_FAILED

    def __init__(self, message: str, model_id: str | None = None, **kwargs):
        super().__init__(message, **kwargs)
        if model_id:
            self.details["model_id"] = model_id
