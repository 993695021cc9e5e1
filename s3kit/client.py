from __future__ import annotations
"""Retrying, classified access to an S3-compatible service."""
import base64
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
import json
import logging
import threading
import time
from typing import Any, BinaryIO, Callable, Mapping, Optional, TypeVar, Union

import boto3
from boto3.exceptions import RetriesExceededError, S3UploadFailedError
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import ClientConfig
from .errors import (
    ConnectionFailureError,
    InvalidContinuationError,
    NotFoundError,
    StorageError,
    TransferCancelledError,
    TransportFailureError,
    ValidationError,
    classify_error,
)
from .models import DeleteOutcome, ObjectIdentifier, ObjectMetadata, Page, validate_bucket, validate_key
from .retry import RetryPolicy, run_with_retry

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

Body = Union[bytes, bytearray, str, BinaryIO]

MAX_LIST_KEYS = 1000
MAX_DELETE_KEYS = 1000
DEFAULT_PRESIGN_EXPIRY = timedelta(minutes=15)
MAX_PRESIGN_EXPIRY = timedelta(days=7)
DEFAULT_MULTIPART_THRESHOLD = 8 * 1024 * 1024
DEFAULT_MULTIPART_CHUNK_SIZE = 8 * 1024 * 1024
DEFAULT_MAX_CONCURRENCY = 10
READ_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class ClientStats:
    """Counters describing the calls a client has made."""

    calls: int = 0
    retries: int = 0
    failures: int = 0


def encode_cursor(bucket: str, prefix: str, delimiter: str | None, token: str) -> str:
    payload = {"b": bucket, "p": prefix, "d": delimiter or "", "t": token}
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_cursor(cursor: str, bucket: str, prefix: str, delimiter: str | None) -> str:
    """Return the service continuation token embedded in ``cursor``.

    Raises:
        InvalidContinuationError: when the cursor is corrupt or was issued for
            another bucket, prefix or delimiter.
    """

    try:
        payload = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")).decode("utf-8"))
        issued_for = (payload["b"], payload["p"], payload["d"])
        token = payload["t"]
    except (ValueError, KeyError, TypeError, UnicodeError) as exc:
        raise InvalidContinuationError("listing cursor is malformed", operation="list_objects") from exc
    if issued_for != (bucket, prefix, delimiter or "") or not isinstance(token, str) or not token:
        raise InvalidContinuationError(
            f"listing cursor was issued for bucket={issued_for[0]!r} prefix={issued_for[1]!r}, "
            f"not bucket={bucket!r} prefix={prefix!r}",
            operation="list_objects",
        )
    return token


class StorageClient:
    """Single-shot storage operations with retries and a uniform error taxonomy.

    The boto3 client returned by ``client_factory`` signs and sends every
    request. The instance holds no mutable state besides its counters and can
    be shared between threads.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        client_factory: Callable[..., object] | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client_factory = client_factory or boto3.client
        self._config = config
        self._retry_policy = retry_policy or RetryPolicy(
            max_retries=config.max_retries,
            max_elapsed=config.request_timeout,
        )
        self._sleep = sleep
        self._clock = clock
        self._stats = ClientStats()
        self._stats_lock = threading.Lock()
        self._client = self._client_factory("s3", **config.client_kwargs())

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    @property
    def stats(self) -> ClientStats:
        with self._stats_lock:
            return self._stats

    def get_object(self, bucket: str, key: str) -> bytes:
        """Return the full content of ``bucket/key``.

        Raises:
            NotFoundError: when the object or bucket does not exist.
        """

        ident = ObjectIdentifier(bucket, key)

        def _get() -> bytes:
            deadline = self._clock() + self._config.request_timeout
            response = self._client.get_object(Bucket=ident.bucket, Key=ident.key)
            body = response["Body"]
            try:
                return self._read_body(body, deadline, ident)
            finally:
                close = getattr(body, "close", None)
                if close:
                    close()

        return self._call("get_object", _get)

    def _read_body(self, body, deadline: float, ident: ObjectIdentifier) -> bytes:
        # read_timeout only bounds a single socket read
        chunks = []
        while True:
            chunk = body.read(READ_CHUNK_SIZE)
            if not chunk:
                return b"".join(chunks)
            chunks.append(chunk)
            if self._clock() > deadline:
                raise ConnectionFailureError(
                    f"reading {ident} took longer than {self._config.request_timeout:g}s",
                    code="RequestTimeout",
                    operation="get_object",
                )

    def open_object(self, bucket: str, key: str):
        """Return the streaming body for ``bucket/key``; reads are not retried."""

        ident = ObjectIdentifier(bucket, key)
        response = self._call(
            "get_object",
            lambda: self._client.get_object(Bucket=ident.bucket, Key=ident.key),
        )
        return response["Body"]

    def put_object(
        self,
        bucket: str,
        key: str,
        body: Body,
        *,
        content_type: str | None = None,
        acl: str | None = None,
        metadata: Mapping[str, str] | None = None,
        expires: datetime | None = None,
    ) -> None:
        """Store ``body`` under ``bucket/key``, replacing any existing object."""

        ident = ObjectIdentifier(bucket, key)
        if isinstance(body, str):
            body = body.encode("utf-8")
        params: dict[str, Any] = {"Bucket": ident.bucket, "Key": ident.key}
        if content_type:
            params["ContentType"] = content_type
        if acl:
            params["ACL"] = acl
        if metadata:
            params["Metadata"] = dict(metadata)
        if expires is not None:
            params["Expires"] = expires

        start_position = None
        if hasattr(body, "seek") and hasattr(body, "tell"):
            start_position = body.tell()

        def _put() -> None:
            if start_position is not None:
                body.seek(start_position)
            self._client.put_object(Body=body, **params)

        self._call("put_object", _put)

    def delete_object(self, bucket: str, key: str) -> None:
        """Delete ``bucket/key``. Deleting a missing object is not an error."""

        ident = ObjectIdentifier(bucket, key)
        try:
            self._call(
                "delete_object",
                lambda: self._client.delete_object(Bucket=ident.bucket, Key=ident.key),
            )
        except NotFoundError:
            LOGGER.debug("delete_object: %s already absent", ident)

    def head_bucket(self, bucket: str) -> bool:
        """Return whether ``bucket`` exists; other failures are raised."""

        validate_bucket(bucket)
        try:
            self._call("head_bucket", lambda: self._client.head_bucket(Bucket=bucket))
        except NotFoundError:
            return False
        return True

    def head_object(self, bucket: str, key: str) -> ObjectMetadata:
        ident = ObjectIdentifier(bucket, key)
        response = self._call(
            "head_object",
            lambda: self._client.head_object(Bucket=ident.bucket, Key=ident.key),
        )
        return ObjectMetadata(
            key=ident.key,
            size=response.get("ContentLength") or 0,
            last_modified=response.get("LastModified"),
            etag=response.get("ETag"),
            content_type=response.get("ContentType"),
            storage_class=response.get("StorageClass"),
            metadata=dict(response.get("Metadata") or {}),
        )

    def list_objects(
        self,
        bucket: str,
        *,
        prefix: str = "",
        delimiter: str | None = None,
        cursor: str | None = None,
        max_keys: int = MAX_LIST_KEYS,
    ) -> Page[ObjectMetadata]:
        """Return one page of objects under ``prefix``.

        ``cursor`` must come from a previous page of the same listing.

        Raises:
            InvalidContinuationError: when ``cursor`` belongs to another listing.
        """

        validate_bucket(bucket)
        if not 1 <= max_keys <= MAX_LIST_KEYS:
            raise ValidationError(f"max_keys must be between 1 and {MAX_LIST_KEYS}")
        prefix = prefix or ""
        params: dict[str, Any] = {"Bucket": bucket, "MaxKeys": max_keys}
        if prefix:
            params["Prefix"] = prefix
        if delimiter:
            params["Delimiter"] = delimiter
        if cursor:
            params["ContinuationToken"] = decode_cursor(cursor, bucket, prefix, delimiter)

        try:
            response = self._call("list_objects", lambda: self._client.list_objects_v2(**params))
        except ValidationError as exc:
            if cursor and not isinstance(exc, InvalidContinuationError):
                raise InvalidContinuationError(
                    f"service rejected the listing cursor: {exc}",
                    code=exc.code,
                    operation="list_objects",
                ) from exc
            raise

        items = [
            ObjectMetadata(
                key=entry["Key"],
                size=entry.get("Size") or 0,
                last_modified=entry.get("LastModified"),
                etag=entry.get("ETag"),
                storage_class=entry.get("StorageClass"),
            )
            for entry in response.get("Contents", [])
        ]
        prefixes = [common["Prefix"] for common in response.get("CommonPrefixes", [])]
        truncated = bool(response.get("IsTruncated", False))
        token = response.get("NextContinuationToken")
        next_cursor = encode_cursor(bucket, prefix, delimiter, token) if truncated and token else None
        return Page(items=items, common_prefixes=prefixes, cursor=next_cursor, truncated=truncated)

    def delete_objects(self, bucket: str, keys: list[str]) -> dict[str, DeleteOutcome]:
        """Delete up to 1000 keys from ``bucket`` in one request.

        A key reported as missing counts as deleted, as does a key the service
        leaves out of its response.
        """

        validate_bucket(bucket)
        if not keys:
            return {}
        if len(keys) > MAX_DELETE_KEYS:
            raise ValidationError(f"at most {MAX_DELETE_KEYS} keys may be deleted per request")
        for key in keys:
            validate_key(key)
        request = {"Objects": [{"Key": key} for key in keys], "Quiet": False}
        response = self._call(
            "delete_objects",
            lambda: self._client.delete_objects(Bucket=bucket, Delete=request),
        )

        outcomes = {key: DeleteOutcome.success() for key in keys}
        for error in response.get("Errors", []):
            key = error.get("Key")
            if key not in outcomes:
                continue
            code = error.get("Code") or "Unknown"
            if code in {"NoSuchKey", "NotFound"}:
                continue
            outcomes[key] = DeleteOutcome.failure(code, error.get("Message"))
        return outcomes

    def create_bucket(self, bucket: str) -> None:
        """Create ``bucket`` in the configured region.

        Raises:
            AlreadyExistsError: when the name is already taken.
        """

        validate_bucket(bucket)
        params: dict[str, Any] = {"Bucket": bucket}
        if self._config.region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": self._config.region}
        self._call("create_bucket", lambda: self._client.create_bucket(**params))

    def delete_bucket(self, bucket: str) -> None:
        validate_bucket(bucket)
        self._call("delete_bucket", lambda: self._client.delete_bucket(Bucket=bucket))

    def list_buckets(self) -> list[str]:
        response = self._call("list_buckets", self._client.list_buckets)
        return [entry["Name"] for entry in response.get("Buckets", [])]

    def generate_presigned_url(
        self,
        bucket: str,
        key: str,
        *,
        method: str = "get",
        expires_in: timedelta | int = DEFAULT_PRESIGN_EXPIRY,
        content_type: str | None = None,
        content_disposition: str | None = None,
    ) -> str:
        """Create a time-limited URL for a GET or PUT of ``bucket/key``.

        ``expires_in`` is passed through unmodified as the URL's expiry.
        """

        ident = ObjectIdentifier(bucket, key)
        operation = method.strip().lower()
        if operation not in {"get", "put"}:
            raise ValidationError("method must be either 'get' or 'put'")
        if isinstance(expires_in, timedelta):
            seconds = expires_in.total_seconds()
        else:
            seconds = float(expires_in)
        if seconds <= 0 or seconds != int(seconds):
            raise ValidationError("expires_in must be a positive whole number of seconds")
        if seconds > MAX_PRESIGN_EXPIRY.total_seconds():
            raise ValidationError("expires_in must not exceed 7 days")

        client_method = "get_object" if operation == "get" else "put_object"
        params: dict[str, str] = {"Bucket": ident.bucket, "Key": ident.key}
        if operation == "get":
            if content_type:
                params["ResponseContentType"] = content_type
            if content_disposition:
                params["ResponseContentDisposition"] = content_disposition
        else:
            if content_type:
                params["ContentType"] = content_type
            if content_disposition:
                params["ContentDisposition"] = content_disposition

        return self._call(
            "generate_presigned_url",
            lambda: self._client.generate_presigned_url(
                client_method,
                Params=params,
                ExpiresIn=int(seconds),
            ),
        )

    def upload_file(
        self,
        bucket: str,
        key: str,
        source_path: str,
        *,
        content_type: str | None = None,
        acl: str | None = None,
        progress_callback: Optional[Callable[[int], None]] = None,
        cancel_requested: Optional[Callable[[], bool]] = None,
        multipart_threshold: int | None = None,
        multipart_chunk_size: int | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        """Upload a local file, switching to multipart above the threshold."""

        ident = ObjectIdentifier(bucket, key)
        extra_args: dict[str, str] = {}
        if content_type:
            extra_args["ContentType"] = content_type
        if acl:
            extra_args["ACL"] = acl
        callback = self._build_transfer_callback(progress_callback, cancel_requested)
        config = self._build_transfer_config(multipart_threshold, multipart_chunk_size, max_concurrency)
        self._call(
            "upload_file",
            lambda: self._client.upload_file(
                source_path,
                ident.bucket,
                ident.key,
                Callback=callback,
                ExtraArgs=extra_args or None,
                Config=config,
            ),
        )

    def download_file(
        self,
        bucket: str,
        key: str,
        destination: str,
        *,
        progress_callback: Optional[Callable[[int], None]] = None,
        cancel_requested: Optional[Callable[[], bool]] = None,
    ) -> None:
        """Download ``bucket/key`` to ``destination``."""

        ident = ObjectIdentifier(bucket, key)
        callback = self._build_transfer_callback(progress_callback, cancel_requested)
        self._call(
            "download_file",
            lambda: self._client.download_file(ident.bucket, ident.key, destination, Callback=callback),
        )

    def _call(self, name: str, operation: Callable[[], T]) -> T:
        def _attempt() -> T:
            self._bump(calls=1)
            try:
                return operation()
            except (ClientError, BotoCoreError) as exc:
                raise classify_error(exc, name) from exc
            except S3UploadFailedError as exc:
                # boto3 wraps the underlying ClientError when a transfer fails
                cause = exc.__cause__ or exc.__context__
                if isinstance(cause, (ClientError, BotoCoreError)):
                    raise classify_error(cause, name) from exc
                raise TransportFailureError(str(exc), operation=name) from exc
            except RetriesExceededError as exc:
                # s3transfer gave up after its own retries on a download
                if isinstance(exc.last_exception, (ClientError, BotoCoreError)):
                    raise classify_error(exc.last_exception, name) from exc
                raise TransportFailureError(
                    f"{name} failed: {exc.last_exception or exc}",
                    code=type(exc.last_exception).__name__ if exc.last_exception else None,
                    operation=name,
                ) from exc

        LOGGER.debug("Calling %s", name)
        try:
            return run_with_retry(
                _attempt,
                self._retry_policy,
                name=name,
                sleep=self._sleep,
                clock=self._clock,
                on_retry=lambda *_: self._bump(retries=1),
            )
        except StorageError:
            self._bump(failures=1)
            raise

    def _bump(self, *, calls: int = 0, retries: int = 0, failures: int = 0) -> None:
        with self._stats_lock:
            self._stats = replace(
                self._stats,
                calls=self._stats.calls + calls,
                retries=self._stats.retries + retries,
                failures=self._stats.failures + failures,
            )

    def _build_transfer_config(
        self,
        multipart_threshold: int | None,
        multipart_chunk_size: int | None,
        max_concurrency: int | None,
    ):
        threshold = multipart_threshold if multipart_threshold and multipart_threshold > 0 else DEFAULT_MULTIPART_THRESHOLD
        chunk_size = multipart_chunk_size if multipart_chunk_size and multipart_chunk_size > 0 else DEFAULT_MULTIPART_CHUNK_SIZE
        concurrency = max_concurrency if max_concurrency and max_concurrency > 0 else DEFAULT_MAX_CONCURRENCY
        return TransferConfig(
            multipart_threshold=threshold,
            multipart_chunksize=chunk_size,
            max_concurrency=concurrency,
        )

    def _build_transfer_callback(
        self,
        progress_callback: Optional[Callable[[int], None]],
        cancel_requested: Optional[Callable[[], bool]],
    ):
        if not progress_callback and not cancel_requested:
            return None

        transferred = 0

        def _callback(bytes_amount: int) -> None:
            nonlocal transferred
            if cancel_requested and cancel_requested():
                raise TransferCancelledError("Transfer cancelled by user")
            transferred += bytes_amount
            if progress_callback:
                progress_callback(transferred)
            if cancel_requested and cancel_requested():
                raise TransferCancelledError("Transfer cancelled by user")

        return _callback
