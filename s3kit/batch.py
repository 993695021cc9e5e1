from __future__ import annotations
"""Bulk deletion of streamed object identifiers."""
import logging
import threading
from typing import Iterable

from .client import MAX_DELETE_KEYS, StorageClient
from .errors import TransientError, TransportFailureError, ValidationError
from .models import BatchDeleteResult, DeleteOutcome, ObjectIdentifier
from .paginator import ObjectPaginator

LOGGER = logging.getLogger(__name__)


class BatchDeleter:
    """Drain identifiers into bulk-delete requests of at most ``batch_size`` keys.

    Identifiers are consumed lazily, so a paginator over a very large bucket
    can be fed straight in. Every identifier that was submitted appears exactly
    once in the returned :class:`BatchDeleteResult`.
    """

    def __init__(self, client: StorageClient, *, batch_size: int = MAX_DELETE_KEYS):
        if not 1 <= batch_size <= MAX_DELETE_KEYS:
            raise ValidationError(f"batch_size must be between 1 and {MAX_DELETE_KEYS}")
        self._client = client
        self._batch_size = batch_size

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def delete_all(
        self,
        identifiers: Iterable[ObjectIdentifier],
        *,
        cancel_event: threading.Event | None = None,
    ) -> BatchDeleteResult:
        """Delete every identifier and return the per-object outcomes.

        A batch whose request keeps failing at the transport level is recorded
        as ``TransportFailure`` for each of its identifiers instead of aborting
        the run. Authentication and validation errors are raised unchanged.
        When ``cancel_event`` is set, no further batches are sent and the
        partial result is returned with ``cancelled`` set.
        """

        result = BatchDeleteResult()
        batch: list[ObjectIdentifier] = []
        pending: set[ObjectIdentifier] = set()
        batches_sent = 0

        for identifier in identifiers:
            if identifier in result or identifier in pending:
                continue
            if batch and identifier.bucket != batch[0].bucket:
                if not self._send(batch, result, cancel_event):
                    return result
                batches_sent += 1
                batch = []
                pending = set()
            batch.append(identifier)
            pending.add(identifier)
            if len(batch) >= self._batch_size:
                if not self._send(batch, result, cancel_event):
                    return result
                batches_sent += 1
                batch = []
                pending = set()
                # checked again so a lazy source is not asked for another page
                if self._is_cancelled(cancel_event):
                    result.cancelled = True
                    return result

        if batch:
            if not self._send(batch, result, cancel_event):
                return result
            batches_sent += 1

        LOGGER.debug(
            "Batch delete finished: %d object(s) in %d batch(es), %d failed",
            len(result),
            batches_sent,
            len(result.failed),
        )
        return result

    def empty_bucket(
        self,
        bucket: str,
        *,
        prefix: str = "",
        cancel_event: threading.Event | None = None,
    ) -> BatchDeleteResult:
        """Delete every object under ``prefix`` in ``bucket``."""

        paginator = ObjectPaginator(self._client, bucket, prefix=prefix, page_size=self._batch_size)
        return self.delete_all(paginator.identifiers(), cancel_event=cancel_event)

    def _send(
        self,
        batch: list[ObjectIdentifier],
        result: BatchDeleteResult,
        cancel_event: threading.Event | None,
    ) -> bool:
        if self._is_cancelled(cancel_event):
            LOGGER.info("Batch delete cancelled with %d object(s) processed", len(result))
            result.cancelled = True
            return False
        self._delete_batch(batch, result)
        return True

    def _delete_batch(self, batch: list[ObjectIdentifier], result: BatchDeleteResult) -> None:
        bucket = batch[0].bucket
        try:
            outcomes = self._client.delete_objects(bucket, [ident.key for ident in batch])
        except (TransientError, TransportFailureError) as exc:
            LOGGER.warning(
                "Bulk delete of %d object(s) in %r failed after retries: %s",
                len(batch),
                bucket,
                exc,
            )
            for ident in batch:
                result.record(ident, DeleteOutcome.transport_failure(str(exc)))
            return
        for ident in batch:
            result.record(ident, outcomes.get(ident.key) or DeleteOutcome.success())

    @staticmethod
    def _is_cancelled(cancel_event: threading.Event | None) -> bool:
        return cancel_event is not None and cancel_event.is_set()
