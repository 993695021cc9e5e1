from __future__ import annotations
"""Polling with a wall-clock deadline and cooperative cancellation."""
from enum import Enum
import logging
import math
import threading
import time
from typing import Callable

from .client import StorageClient
from .errors import NotFoundError, ValidationError

LOGGER = logging.getLogger(__name__)

Predicate = Callable[[], bool]


class WaitOutcome(str, Enum):
    SUCCESS = "success"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class WaiterState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    SLEEPING = "sleeping"
    SUCCEEDED = "succeeded"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class Waiter:
    """Poll a predicate until it holds, the deadline passes, or the caller cancels.

    The pause between polls is ``cancel_event.wait(delay)``, so setting the
    event ends the wait at the next poll boundary. A predicate call already in
    progress always runs to completion. Errors raised by the predicate
    propagate unchanged.
    """

    def __init__(
        self,
        *,
        poll_interval: float,
        timeout: float,
        backoff: float = 1.0,
        max_interval: float | None = None,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not math.isfinite(timeout) or timeout <= 0:
            raise ValidationError("timeout must be a positive, finite number of seconds")
        if not math.isfinite(poll_interval) or poll_interval <= 0:
            raise ValidationError("poll_interval must be a positive number of seconds")
        if backoff < 1.0:
            raise ValidationError("backoff must be >= 1.0")
        if max_interval is not None and max_interval < poll_interval:
            raise ValidationError("max_interval must be >= poll_interval")
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.backoff = backoff
        self.max_interval = max_interval
        self._cancel_event = cancel_event or threading.Event()
        self._clock = clock
        self._state = WaiterState.IDLE
        self._attempts = 0

    @property
    def state(self) -> WaiterState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    def cancel(self) -> None:
        self._cancel_event.set()

    def wait_until(self, predicate: Predicate, *, description: str = "condition") -> WaitOutcome:
        deadline = self._clock() + self.timeout
        interval = self.poll_interval
        self._attempts = 0
        while True:
            if self._cancel_event.is_set():
                return self._finish(WaiterState.CANCELLED, WaitOutcome.CANCELLED, description)

            self._state = WaiterState.POLLING
            self._attempts += 1
            if predicate():
                return self._finish(WaiterState.SUCCEEDED, WaitOutcome.SUCCESS, description)

            remaining = deadline - self._clock()
            if remaining <= 0:
                return self._finish(WaiterState.TIMED_OUT, WaitOutcome.TIMED_OUT, description)

            self._state = WaiterState.SLEEPING
            if self._cancel_event.wait(min(interval, remaining)):
                return self._finish(WaiterState.CANCELLED, WaitOutcome.CANCELLED, description)
            interval = interval * self.backoff
            if self.max_interval is not None:
                interval = min(interval, self.max_interval)

    def _finish(self, state: WaiterState, outcome: WaitOutcome, description: str) -> WaitOutcome:
        self._state = state
        LOGGER.info("Waiting for %s ended: %s after %d poll(s)", description, outcome.value, self._attempts)
        return outcome


def bucket_exists(client: StorageClient, bucket: str) -> Predicate:
    return lambda: client.head_bucket(bucket)


def bucket_not_exists(client: StorageClient, bucket: str) -> Predicate:
    return lambda: not client.head_bucket(bucket)


def object_exists(client: StorageClient, bucket: str, key: str) -> Predicate:
    def _check() -> bool:
        try:
            client.head_object(bucket, key)
        except NotFoundError:
            return False
        return True

    return _check
