from __future__ import annotations
"""Validated, immutable client configuration."""
from dataclasses import dataclass, field
import math
from typing import Optional
from urllib.parse import urlparse

from botocore.client import Config

from .errors import ValidationError

DEFAULT_REGION = "us-east-1"
DEFAULT_MAX_RETRIES = 3
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 10.0


@dataclass(frozen=True)
class Credentials:
    """Static access key pair with an optional session token."""

    access_key: str
    secret_key: str = field(repr=False)
    session_token: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class ClientConfig:
    """Everything a :class:`~s3kit.client.StorageClient` needs to reach a service.

    Instances are validated on construction and never change afterwards.
    """

    endpoint_url: str
    credentials: Credentials
    region: str = DEFAULT_REGION
    path_style: bool = True
    max_retries: int = DEFAULT_MAX_RETRIES
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT

    def __post_init__(self) -> None:
        if not self.endpoint_url or not self.endpoint_url.strip():
            raise ValidationError("endpoint_url must not be empty")
        parsed = urlparse(self.endpoint_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValidationError(f"endpoint_url must be an absolute http(s) URL: {self.endpoint_url!r}")
        if not self.credentials.access_key or not self.credentials.secret_key:
            raise ValidationError("access key and secret key must not be empty")
        if not self.region:
            raise ValidationError("region must not be empty")
        if isinstance(self.max_retries, bool) or not isinstance(self.max_retries, int):
            raise ValidationError("max_retries must be an integer")
        if self.max_retries < 0:
            raise ValidationError("max_retries must be >= 0")
        for name in ("request_timeout", "connect_timeout"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"{name} must be a number of seconds")
            if not math.isfinite(value) or value <= 0:
                raise ValidationError(f"{name} must be a positive, finite number of seconds")

    def botocore_config(self) -> Config:
        """Build the botocore ``Config`` for this endpoint.

        Botocore's built-in retries are disabled; :class:`~s3kit.retry.RetryPolicy`
        makes every retry decision.
        """

        return Config(
            signature_version="s3v4",
            region_name=self.region,
            s3={"addressing_style": "path" if self.path_style else "auto"},
            retries={"total_max_attempts": 1, "mode": "standard"},
            connect_timeout=self.connect_timeout,
            read_timeout=self.request_timeout,
        )

    def client_kwargs(self) -> dict[str, object]:
        return {
            "endpoint_url": self.endpoint_url,
            "region_name": self.region,
            "aws_access_key_id": self.credentials.access_key,
            "aws_secret_access_key": self.credentials.secret_key,
            "aws_session_token": self.credentials.session_token,
            "config": self.botocore_config(),
        }


def resolve_config(
    *,
    endpoint_url: str,
    access_key: str,
    secret_key: str,
    session_token: str | None = None,
    region: str | None = None,
    path_style: bool = True,
    max_retries: int = DEFAULT_MAX_RETRIES,
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
) -> ClientConfig:
    """Normalize caller-provided values into a :class:`ClientConfig`.

    Whitespace is stripped and a blank region falls back to ``us-east-1``.

    Raises:
        ValidationError: when a value is missing or out of range.
    """

    return ClientConfig(
        endpoint_url=(endpoint_url or "").strip().rstrip("/"),
        credentials=Credentials(
            access_key=(access_key or "").strip(),
            secret_key=(secret_key or "").strip(),
            session_token=(session_token or "").strip() or None,
        ),
        region=(region or "").strip() or DEFAULT_REGION,
        path_style=path_style,
        max_retries=max_retries,
        request_timeout=float(request_timeout),
        connect_timeout=float(connect_timeout),
    )
