from __future__ import annotations
"""Error taxonomy shared by every storage operation."""
from enum import Enum

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    IncompleteReadError,
    NoCredentialsError,
    ParamValidationError,
    PartialCredentialsError,
    ReadTimeoutError,
    ResponseStreamingError,
)


class ErrorKind(str, Enum):
    NOT_FOUND = "NotFound"
    ALREADY_EXISTS = "AlreadyExists"
    AUTH_FAILURE = "AuthFailure"
    THROTTLED = "Throttled"
    TRANSIENT = "Transient"
    VALIDATION = "ValidationError"
    INVALID_CONTINUATION = "InvalidContinuation"
    TRANSPORT_FAILURE = "TransportFailure"
    CANCELLED = "Cancelled"
    UNKNOWN = "Unknown"


class StorageError(RuntimeError):
    """Base class for all errors raised by :mod:`s3kit`."""

    kind = ErrorKind.UNKNOWN
    transient = False
    network = False

    def __init__(self, message: str, *, code: str | None = None, operation: str | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.operation = operation


class NotFoundError(StorageError):
    """The bucket or object does not exist."""

    kind = ErrorKind.NOT_FOUND


class AlreadyExistsError(StorageError):
    kind = ErrorKind.ALREADY_EXISTS


class AuthFailureError(StorageError):
    """Credentials were rejected or missing."""

    kind = ErrorKind.AUTH_FAILURE


class ValidationError(StorageError, ValueError):
    """A bucket, key, cursor or parameter is malformed."""

    kind = ErrorKind.VALIDATION


class InvalidContinuationError(ValidationError):
    """A listing cursor was issued for a different listing or is corrupt."""

    kind = ErrorKind.INVALID_CONTINUATION


class TransientError(StorageError):
    """A failure that may succeed when retried (5xx, request timeout)."""

    kind = ErrorKind.TRANSIENT
    transient = True


class ThrottledError(TransientError):
    kind = ErrorKind.THROTTLED


class ConnectionFailureError(TransientError):
    """The connection was refused, reset or timed out."""

    network = True


class TransportFailureError(StorageError):
    """Raised when a network failure persists after every retry."""

    kind = ErrorKind.TRANSPORT_FAILURE


class OperationCancelledError(StorageError):
    """Raised when a composite operation observes a cancellation request."""

    kind = ErrorKind.CANCELLED


class TransferCancelledError(OperationCancelledError):
    """Raised when an upload or download is cancelled by the caller."""


NOT_FOUND_CODES = frozenset({"NoSuchKey", "NoSuchBucket", "NotFound", "NoSuchUpload", "404"})
ALREADY_EXISTS_CODES = frozenset({"BucketAlreadyExists", "BucketAlreadyOwnedByYou"})
AUTH_CODES = frozenset(
    {
        "AccessDenied",
        "InvalidAccessKeyId",
        "SignatureDoesNotMatch",
        "ExpiredToken",
        "InvalidToken",
        "TokenRefreshRequired",
        "AllAccessDisabled",
        "403",
    }
)
THROTTLING_CODES = frozenset(
    {
        "SlowDown",
        "Throttling",
        "ThrottlingException",
        "ThrottledException",
        "RequestLimitExceeded",
        "TooManyRequests",
        "RequestThrottled",
        "ServiceUnavailable",
        "503",
    }
)
TRANSIENT_CODES = frozenset(
    {
        "InternalError",
        "RequestTimeout",
        "RequestTimeoutException",
        "PriorRequestNotComplete",
        "500",
        "502",
        "504",
    }
)
VALIDATION_CODES = frozenset(
    {
        "InvalidBucketName",
        "KeyTooLongError",
        "InvalidArgument",
        "InvalidRequest",
        "MalformedXML",
        "InvalidObjectState",
        "EntityTooLarge",
        "BucketNotEmpty",
        "400",
    }
)

_NETWORK_ERRORS = (
    EndpointConnectionError,
    IncompleteReadError,
    ConnectionClosedError,
    ReadTimeoutError,
    ResponseStreamingError,
    ConnectTimeoutError,
)


def error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code") or "")


def http_status(exc: ClientError) -> int | None:
    return exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")


def error_class_for_code(code: str, status: int | None = None) -> type[StorageError]:
    """Return the taxonomy class for a provider error code and HTTP status."""

    if code in NOT_FOUND_CODES:
        return NotFoundError
    if code in ALREADY_EXISTS_CODES:
        return AlreadyExistsError
    if code in AUTH_CODES:
        return AuthFailureError
    if code in THROTTLING_CODES:
        return ThrottledError
    if code in TRANSIENT_CODES:
        return TransientError
    if code in VALIDATION_CODES:
        return ValidationError
    if status is None:
        return StorageError
    if status == 404:
        return NotFoundError
    if status in (401, 403):
        return AuthFailureError
    if status == 409:
        return AlreadyExistsError
    if status in (429, 503):
        return ThrottledError
    if status >= 500:
        return TransientError
    if status == 400:
        return ValidationError
    return StorageError


def classify_error(exc: Exception, operation: str | None = None) -> StorageError:
    """Translate a botocore exception into the :class:`StorageError` taxonomy.

    Already classified errors are returned unchanged. The original exception is
    attached as ``__cause__`` so provider details stay available for debugging.
    """

    if isinstance(exc, StorageError):
        return exc
    if isinstance(exc, ClientError):
        code = error_code(exc)
        status = http_status(exc)
        message = exc.response.get("Error", {}).get("Message") or str(exc)
        error_cls = error_class_for_code(code, status)
        error = error_cls(message, code=code or (str(status) if status else None), operation=operation)
    elif isinstance(exc, _NETWORK_ERRORS):
        error = ConnectionFailureError(str(exc), code=type(exc).__name__, operation=operation)
    elif isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        error = AuthFailureError(str(exc), code=type(exc).__name__, operation=operation)
    elif isinstance(exc, ParamValidationError):
        error = ValidationError(str(exc), code=type(exc).__name__, operation=operation)
    elif isinstance(exc, BotoCoreError):
        error = TransportFailureError(str(exc), code=type(exc).__name__, operation=operation)
    else:
        raise TypeError(f"Cannot classify non-storage exception {exc!r}")
    error.__cause__ = exc
    return error
