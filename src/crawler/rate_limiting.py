"""Per-provider pacing, circuit breaking and credit accounting.

Every reader provider client owns one instance of each of these objects, so
independent clients never share counters. All three are safe to use from
the worker threads of the discovery and validation pools.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, TypeVar

from . import CreditLimitExceeded

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
    """FIFO admission queue enforcing a minimum delay and a concurrency cap.

    Callers take a ticket on arrival and are admitted strictly in ticket
    order. The caller at the head of the queue first polls until the number
    of in-flight requests is below ``concurrency_cap`` (when one is set), then
    sleeps off whatever remains of ``min_delay`` since the previous admission.
    """

    def __init__(
        self,
        min_delay: float = 1.0,
        concurrency_cap: int | None = None,
        poll_interval: float = 0.1,
        name: str = "provider",
    ):
        self.name = name
        self.min_delay = max(0.0, float(min_delay))
        self.concurrency_cap = concurrency_cap
        self.poll_interval = poll_interval

        self.last_request_time: float | None = None
        self.in_flight = 0
        self.peak_in_flight = 0

        self._lock = threading.Lock()
        self._turn = threading.Condition(self._lock)
        self._next_ticket = 0
        self._now_serving = 0

    @property
    def queued(self) -> int:
        with self._lock:
            return self._next_ticket - self._now_serving

    def acquire(self) -> None:
        """Block until this caller is admitted."""
        with self._turn:
            ticket = self._next_ticket
            self._next_ticket += 1
            while ticket != self._now_serving:
                self._turn.wait()

        try:
            self._wait_for_capacity()
            self._wait_for_spacing()
            with self._lock:
                self.last_request_time = time.monotonic()
                self.in_flight += 1
                self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        finally:
            with self._turn:
                self._now_serving += 1
                self._turn.notify_all()

    def release(self) -> None:
        with self._lock:
            if self.in_flight > 0:
                self.in_flight -= 1

    @contextmanager
    def slot(self) -> Iterator[None]:
        self.acquire()
        try:
            yield
        finally:
            self.release()

    def run(self, task: Callable[[], T]) -> T:
        """Run ``task`` once admitted, releasing the slot afterwards."""
        with self.slot():
            return task()

    def _wait_for_capacity(self) -> None:
        if not self.concurrency_cap:
            return
        while True:
            with self._lock:
                if self.in_flight < self.concurrency_cap:
                    return
            time.sleep(self.poll_interval)

    def _wait_for_spacing(self) -> None:
        with self._lock:
            last = self.last_request_time
        if last is None:
            return
        wait = self.min_delay - (time.monotonic() - last)
        if wait > 0:
            logger.debug("Rate limiting: sleeping %.2fs for %s", wait, self.name)
            time.sleep(wait)


class CircuitBreaker:
    """Consecutive-failure circuit breaker with an optimistic reset.

    * closed: calls pass; failures are counted.
    * open: after ``threshold`` consecutive failures, calls are refused
      without any network I/O.
    * half-open: once ``cooldown`` seconds have passed the breaker lets a
      single trial call through. Its failure re-opens the breaker at once,
      its success closes it.

    Any success zeroes the failure counter.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, threshold: int = 3, cooldown: float = 60.0, name: str = "provider"):
        self.name = name
        self.threshold = threshold
        self.cooldown = cooldown
        self.consecutive_failures = 0
        self.opened_at: float | None = None
        self._trial_in_flight = False
        self._lock = threading.Lock()

    @property
    def state(self) -> str:
        with self._lock:
            if self._trial_in_flight:
                return self.HALF_OPEN
            if self.opened_at is not None:
                return self.OPEN
            return self.CLOSED

    def allow_request(self) -> bool:
        """Return True when a call may go out now.

        When the cooldown has elapsed this admits exactly one trial call;
        concurrent callers keep being refused until that trial resolves.
        """
        with self._lock:
            if self._trial_in_flight:
                return False
            if self.opened_at is None:
                return True
            elapsed = time.monotonic() - self.opened_at
            if elapsed < self.cooldown:
                return False
            self._trial_in_flight = True
            logger.info(
                "%s circuit breaker cooldown elapsed after %.0fs, allowing trial request",
                self.name,
                elapsed,
            )
            return True

    def is_trial(self) -> bool:
        with self._lock:
            return self._trial_in_flight

    def remaining_cooldown(self) -> float:
        with self._lock:
            if self.opened_at is None:
                return 0.0
            return max(0.0, self.cooldown - (time.monotonic() - self.opened_at))

    def record_success(self) -> None:
        with self._lock:
            was_tripped = self.opened_at is not None or self.consecutive_failures > 0
            self.consecutive_failures = 0
            self.opened_at = None
            self._trial_in_flight = False
        if was_tripped:
            logger.info("%s circuit breaker closed after successful request", self.name)

    def record_failure(self) -> None:
        with self._lock:
            if self._trial_in_flight:
                self._trial_in_flight = False
                self.consecutive_failures = max(self.threshold, self.consecutive_failures + 1)
                self.opened_at = time.monotonic()
                logger.warning("%s circuit breaker re-opened after failed trial request", self.name)
                return

            self.consecutive_failures += 1
            if self.consecutive_failures >= self.threshold and self.opened_at is None:
                self.opened_at = time.monotonic()
                logger.warning(
                    "%s circuit breaker opened after %d consecutive failures",
                    self.name,
                    self.consecutive_failures,
                )


class CreditTracker:
    """Approximate credit accounting for a paid provider."""

    def __init__(self, limit: int | None = None, warning_threshold: int | None = None, name: str = "provider"):
        self.name = name
        self.limit = limit
        self.warning_threshold = warning_threshold
        self.credits_used = 0
        self._lock = threading.Lock()

    @property
    def remaining(self) -> int | None:
        if self.limit is None:
            return None
        with self._lock:
            return max(0, self.limit - self.credits_used)

    def ensure_available(self, needed: int = 1) -> None:
        """Raise :class:`CreditLimitExceeded` if ``needed`` credits would overrun."""
        if self.limit is None:
            return
        with self._lock:
            used = self.credits_used
        if used + needed > self.limit:
            raise CreditLimitExceeded(
                f"Not enough {self.name} credits: need ~{needed}, "
                f"have {max(0, self.limit - used)} of {self.limit}",
                provider=self.name,
            )

    def record(self, credits: int = 1) -> None:
        with self._lock:
            self.credits_used += credits
            used = self.credits_used

        if self.limit is not None and used >= self.limit:
            logger.error(
                "%s credit limit reached (%d/%d); further paid calls will fail",
                self.name,
                used,
                self.limit,
            )
        elif self.warning_threshold is not None and used >= self.warning_threshold:
            logger.warning(
                "%s approaching credit limit: %d used, %s remaining",
                self.name,
                used,
                self.remaining,
            )

    def reset(self) -> None:
        with self._lock:
            self.credits_used = 0
        logger.info("%s credit counter reset", self.name)
