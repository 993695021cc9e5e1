from __future__ import annotations
"""Pull-based pagination over object listings."""
from enum import Enum
import logging
import threading
from typing import Iterator, Optional

from .client import MAX_LIST_KEYS, StorageClient
from .errors import OperationCancelledError, ValidationError
from .models import ObjectIdentifier, ObjectMetadata, Page

LOGGER = logging.getLogger(__name__)


class PaginatorState(str, Enum):
    READY = "ready"
    FETCHING = "fetching"
    EXHAUSTED = "exhausted"


class ObjectPaginator:
    """Walks a bucket listing one page per :meth:`next_page` call.

    The paginator only fetches when asked, so the caller decides how far to go
    and may simply stop pulling. It is not safe to share between threads.
    """

    def __init__(
        self,
        client: StorageClient,
        bucket: str,
        *,
        prefix: str = "",
        delimiter: str | None = None,
        page_size: int = MAX_LIST_KEYS,
        starting_cursor: str | None = None,
        cancel_event: threading.Event | None = None,
    ):
        if not 1 <= page_size <= MAX_LIST_KEYS:
            raise ValidationError(f"page_size must be between 1 and {MAX_LIST_KEYS}")
        self._client = client
        self._bucket = bucket
        self._prefix = prefix or ""
        self._delimiter = delimiter
        self._page_size = page_size
        self._cursor = starting_cursor
        self._cancel_event = cancel_event
        self._state = PaginatorState.READY
        self._pages_fetched = 0

    @property
    def state(self) -> PaginatorState:
        return self._state

    @property
    def cursor(self) -> Optional[str]:
        return self._cursor

    @property
    def pages_fetched(self) -> int:
        return self._pages_fetched

    def next_page(self) -> Optional[Page[ObjectMetadata]]:
        """Fetch the next page, or return ``None`` once the listing is exhausted.

        Errors from the client are raised unchanged and leave the paginator
        ready to retry the same page.
        """

        if self._state is PaginatorState.EXHAUSTED:
            return None
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise OperationCancelledError(
                f"listing of {self._bucket!r} cancelled after {self._pages_fetched} page(s)",
                operation="list_objects",
            )

        self._state = PaginatorState.FETCHING
        try:
            page = self._client.list_objects(
                self._bucket,
                prefix=self._prefix,
                delimiter=self._delimiter,
                cursor=self._cursor,
                max_keys=self._page_size,
            )
        except Exception:
            self._state = PaginatorState.READY
            raise

        self._pages_fetched += 1
        if page.truncated and page.cursor:
            self._cursor = page.cursor
            self._state = PaginatorState.READY
        else:
            if page.truncated:
                LOGGER.warning(
                    "Listing of %r reported truncation without a continuation token; stopping",
                    self._bucket,
                )
            self._cursor = None
            self._state = PaginatorState.EXHAUSTED
        LOGGER.debug(
            "Fetched page %d of %r (%d objects, state=%s)",
            self._pages_fetched,
            self._bucket,
            len(page.items),
            self._state.value,
        )
        return page

    def reset(self) -> None:
        """Return to the first page, discarding any cursor."""

        self._cursor = None
        self._pages_fetched = 0
        self._state = PaginatorState.READY

    def pages(self) -> Iterator[Page[ObjectMetadata]]:
        while True:
            page = self.next_page()
            if page is None:
                return
            yield page

    def __iter__(self) -> Iterator[Page[ObjectMetadata]]:
        return self.pages()

    def objects(self) -> Iterator[ObjectMetadata]:
        for page in self.pages():
            yield from page.items

    def identifiers(self) -> Iterator[ObjectIdentifier]:
        """Yield an :class:`ObjectIdentifier` per listed object, page by page."""

        for item in self.objects():
            yield ObjectIdentifier(self._bucket, item.key)
