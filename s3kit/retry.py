from __future__ import annotations
"""Retry policy: exponential backoff with full jitter for transient failures."""
from dataclasses import dataclass
import logging
import random
import time
from typing import Callable, Optional, TypeVar

from .errors import StorageError, TransportFailureError, ValidationError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_BASE_DELAY = 0.1
DEFAULT_MAX_DELAY = 20.0


@dataclass(frozen=True)
class RetryDecision:
    """Either wait ``delay`` seconds and try again, or give up with ``error``."""

    retry: bool
    delay: float = 0.0
    error: Optional[StorageError] = None

    @classmethod
    def retry_after(cls, delay: float) -> RetryDecision:
        return cls(retry=True, delay=delay)

    @classmethod
    def give_up(cls, error: StorageError) -> RetryDecision:
        return cls(retry=False, error=error)


class RetryPolicy:
    """Decide whether a failed call should be retried.

    Only errors flagged ``transient`` (throttling, 5xx, connection reset,
    timeouts) are retried, at most ``max_retries`` times. The delay before
    retry ``n`` is drawn uniformly from ``[0, min(max_delay, base_delay * 2**(n-1))]``.
    """

    def __init__(
        self,
        max_retries: int = 3,
        *,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        max_elapsed: float | None = None,
        rng: random.Random | None = None,
    ):
        if max_retries < 0:
            raise ValidationError("max_retries must be >= 0")
        if base_delay < 0 or max_delay < 0:
            raise ValidationError("retry delays must be >= 0")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_elapsed = max_elapsed
        self._rng = rng or random.Random()

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        return cls(max_retries=0)

    def backoff(self, attempt: int) -> float:
        """Return the jittered delay to wait after failed attempt ``attempt`` (1-based)."""

        ceiling = min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))
        return self._rng.uniform(0, ceiling)

    def decide(self, attempt: int, error: StorageError, elapsed: float = 0.0) -> RetryDecision:
        if not error.transient:
            return RetryDecision.give_up(error)
        if attempt > self.max_retries:
            return RetryDecision.give_up(error)
        delay = self.backoff(attempt)
        if self.max_elapsed is not None and elapsed + delay > self.max_elapsed:
            return RetryDecision.give_up(error)
        return RetryDecision.retry_after(delay)


def run_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    *,
    name: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    on_retry: Callable[[int, StorageError, float], None] | None = None,
) -> T:
    """Call ``operation`` until it succeeds or ``policy`` gives up.

    ``operation`` must raise :class:`StorageError` subclasses. A network-level
    error that is still failing when retries run out is raised as
    :class:`TransportFailureError`, chained from the last error.
    """

    started = clock()
    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except StorageError as exc:
            decision = policy.decide(attempt, exc, clock() - started)
            if not decision.retry:
                LOGGER.debug("%s failed on attempt %d, giving up: %s", name, attempt, exc)
                if exc.network and exc.transient:
                    raise TransportFailureError(
                        f"{name} failed after {attempt} attempt(s): {exc}",
                        code=exc.code,
                        operation=exc.operation or name,
                    ) from exc
                raise
            LOGGER.warning(
                "Transient error on %s (attempt %d): %s; retrying in %.2fs",
                name,
                attempt,
                exc,
                decision.delay,
            )
            if on_retry is not None:
                on_retry(attempt, exc, decision.delay)
            sleep(decision.delay)
