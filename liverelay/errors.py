"""
Error taxonomy for stream coordination.

Every failure is caught where it happens and turned into a logged result;
these types carry enough context for the caller to report an explicit
reason (limit reached, no media attached, expired credential, ...).
"""

from enum import Enum
from typing import Any, Optional


class RelayError(Exception):
    """Base class for LiveRelay errors."""


class ValidationError(RelayError):
    """Missing media, malformed schedule or bad target. No state is mutated."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class ResourceLimitError(RelayError):
    """The owner already runs as many streams as their live limit allows."""

    def __init__(self, active_streams: int, effective_limit: int, message: Optional[str] = None):
        self.active_streams = active_streams
        self.effective_limit = effective_limit
        self.message = message or f"Live limit reached ({active_streams}/{effective_limit})"
        super().__init__(self.message)


class ProcessError(RelayError):
    """The encoder failed to spawn or died during the start confirmation window."""

    def __init__(self, message: str, exit_code: Optional[int] = None, output: Optional[list[str]] = None):
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code
        self.output = output or []


class APIErrorType(str, Enum):
    """Classification of provider API failures."""

    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"
    QUOTA_ERROR = "quota_error"
    RATE_LIMIT_ERROR = "rate_limit_error"
    PROCESSING = "processing"
    NOT_FOUND = "not_found"
    TOKEN_EXPIRED = "token_expired"
    INVALID_CLIENT = "invalid_client"
    UNAUTHORIZED = "unauthorized"
    PERMISSION_ERROR = "permission_error"
    REDUNDANT_TRANSITION = "redundant_transition"
    INVALID_TRANSITION = "invalid_transition"
    UNKNOWN = "unknown"


# Worth retrying with backoff. Everything else is dropped immediately.
TRANSIENT_TYPES = frozenset(
    {
        APIErrorType.NETWORK_ERROR,
        APIErrorType.TIMEOUT,
        APIErrorType.SERVER_ERROR,
        APIErrorType.QUOTA_ERROR,
        APIErrorType.RATE_LIMIT_ERROR,
        APIErrorType.PROCESSING,
        APIErrorType.NOT_FOUND,
    }
)


class ExternalAPIError(RelayError):
    """A provider call failed."""

    transient = False

    def __init__(
        self,
        message: str,
        error_type: APIErrorType = APIErrorType.UNKNOWN,
        status_code: Optional[int] = None,
        reason: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.status_code = status_code
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "error_type": self.error_type.value,
            "status_code": self.status_code,
            "reason": self.reason,
            "transient": self.transient,
        }


class TransientAPIError(ExternalAPIError):
    """Network, quota, 5xx or "still processing": retry with backoff."""

    transient = True


class PermanentAPIError(ExternalAPIError):
    """Expired credential, invalid client or missing permission: never retried."""

    transient = False


def classify_api_error(
    status_code: Optional[int] = None,
    reason: Optional[str] = None,
    message: str = "",
) -> APIErrorType:
    """
    Classify a provider failure from its HTTP status, error reason and text.

    Reasons are the `error.errors[].reason` values of Google APIs or the
    `error` field of an OAuth token response.
    """
    reason_str = (reason or "").lower()
    error_str = f"{reason_str} {message}".lower()

    if "redundanttransition" in reason_str:
        return APIErrorType.REDUNDANT_TRANSITION
    if "invalidtransition" in reason_str:
        return APIErrorType.INVALID_TRANSITION

    # OAuth token endpoint errors
    if "invalid_grant" in error_str or "token has been expired" in error_str or "revoked" in error_str:
        return APIErrorType.TOKEN_EXPIRED
    if "invalid_client" in error_str or "unauthorized_client" in error_str:
        return APIErrorType.INVALID_CLIENT

    if any(term in error_str for term in ("quotaexceeded", "dailylimitexceeded", "quota exceeded")):
        return APIErrorType.QUOTA_ERROR
    if any(term in error_str for term in ("ratelimitexceeded", "userratelimitexceeded", "too many requests")):
        return APIErrorType.RATE_LIMIT_ERROR
    if status_code == 429:
        return APIErrorType.RATE_LIMIT_ERROR

    if status_code == 401 or "unauthorized" in error_str or "autherror" in error_str:
        return APIErrorType.UNAUTHORIZED
    if status_code == 403 or "forbidden" in error_str or "insufficientpermissions" in error_str:
        return APIErrorType.PERMISSION_ERROR

    if status_code == 404 or "videonotfound" in error_str or "not found" in error_str:
        return APIErrorType.NOT_FOUND
    if "processing" in error_str:
        return APIErrorType.PROCESSING

    if status_code is not None and status_code >= 500:
        return APIErrorType.SERVER_ERROR
    if any(term in error_str for term in ("timeout", "timed out")):
        return APIErrorType.TIMEOUT
    if any(
        term in error_str
        for term in (
            "connection refused",
            "connection reset",
            "network",
            "name or service not known",
            "temporary failure in name resolution",
            "econnreset",
            "enotfound",
        )
    ):
        return APIErrorType.NETWORK_ERROR

    return APIErrorType.UNKNOWN


def make_api_error(
    status_code: Optional[int] = None,
    reason: Optional[str] = None,
    message: str = "",
) -> ExternalAPIError:
    """Build the Transient/Permanent error matching a provider failure."""
    error_type = classify_api_error(status_code, reason, message)
    error_cls = TransientAPIError if error_type in TRANSIENT_TYPES else PermanentAPIError
    text = message or reason or (f"HTTP {status_code}" if status_code else "provider error")
    if error_type is APIErrorType.TOKEN_EXPIRED:
        text = f"TOKEN_EXPIRED: {text}"
    elif error_type is APIErrorType.INVALID_CLIENT:
        text = f"INVALID_CLIENT: {text}"
    return error_cls(text, error_type=error_type, status_code=status_code, reason=reason)
