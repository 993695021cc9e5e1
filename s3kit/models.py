from __future__ import annotations
"""Value types produced and consumed by the storage client."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, Iterator, Optional, TypeVar

from .errors import ErrorKind, ValidationError

MAX_KEY_BYTES = 1024

T = TypeVar("T")


@dataclass(frozen=True)
class ObjectIdentifier:
    """A bucket name and object key."""

    bucket: str
    key: str

    def __post_init__(self) -> None:
        validate_bucket(self.bucket)
        validate_key(self.key)

    def __str__(self) -> str:
        return f"{self.bucket}/{self.key}"


def validate_bucket(bucket: str) -> None:
    if not isinstance(bucket, str) or not bucket.strip():
        raise ValidationError("bucket name must be a non-empty string")


def validate_key(key: str) -> None:
    if not isinstance(key, str) or not key:
        raise ValidationError("object key must be a non-empty string")
    try:
        encoded = key.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ValidationError(f"object key is not valid UTF-8: {exc}") from exc
    if len(encoded) > MAX_KEY_BYTES:
        raise ValidationError(
            f"object key is {len(encoded)} bytes, the limit is {MAX_KEY_BYTES}",
            code="KeyTooLongError",
        )


@dataclass(frozen=True)
class ObjectMetadata:
    """Read-only snapshot of an object as reported by list or head."""

    key: str
    size: int = 0
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None
    content_type: Optional[str] = None
    storage_class: Optional[str] = None
    acl: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.size < 0:
            raise ValidationError(f"object size must be >= 0, got {self.size}")


@dataclass
class Page(Generic[T]):
    """One listing response.

    ``cursor`` is opaque and must be handed back unchanged to fetch the
    following page. It is ``None`` when ``truncated`` is false.
    """

    items: list[T] = field(default_factory=list)
    common_prefixes: list[str] = field(default_factory=list)
    cursor: Optional[str] = None
    truncated: bool = False

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.items)


@dataclass(frozen=True)
class DeleteOutcome:
    """Result of deleting one object inside a batch."""

    ok: bool
    code: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def success(cls) -> DeleteOutcome:
        return cls(ok=True)

    @classmethod
    def failure(cls, code: str, message: str | None = None) -> DeleteOutcome:
        return cls(ok=False, code=code, message=message)

    @classmethod
    def transport_failure(cls, message: str | None = None) -> DeleteOutcome:
        return cls(ok=False, code=ErrorKind.TRANSPORT_FAILURE.value, message=message)


@dataclass
class BatchDeleteResult:
    """Per-object outcomes for a bulk delete, one entry per identifier."""

    outcomes: dict[ObjectIdentifier, DeleteOutcome] = field(default_factory=dict)
    cancelled: bool = False

    def record(self, identifier: ObjectIdentifier, outcome: DeleteOutcome) -> None:
        self.outcomes[identifier] = outcome

    @property
    def succeeded(self) -> list[ObjectIdentifier]:
        return [ident for ident, outcome in self.outcomes.items() if outcome.ok]

    @property
    def failed(self) -> dict[ObjectIdentifier, DeleteOutcome]:
        return {ident: outcome for ident, outcome in self.outcomes.items() if not outcome.ok}

    @property
    def all_succeeded(self) -> bool:
        return not self.cancelled and all(outcome.ok for outcome in self.outcomes.values())

    def __len__(self) -> int:
        return len(self.outcomes)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self.outcomes

    def __getitem__(self, identifier: ObjectIdentifier) -> DeleteOutcome:
        return self.outcomes[identifier]
