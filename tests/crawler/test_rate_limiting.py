from __future__ import annotations

import threading
import time

import pytest

from src.crawler import CreditLimitExceeded
from src.crawler import rate_limiting
from src.crawler.rate_limiting import CircuitBreaker, CreditTracker, RateLimiter


@pytest.fixture
def clock(monkeypatch, time_stub):
    monkeypatch.setattr(rate_limiting, "time", time_stub)
    return time_stub


class TestRateLimiter:
    def test_first_call_is_not_delayed(self, clock):
        limiter = RateLimiter(min_delay=2.0)

        limiter.run(lambda: None)

        assert clock.sleeps == []

    def test_sequential_calls_are_spaced_by_min_delay(self, clock):
        limiter = RateLimiter(min_delay=2.0)
        admitted = []

        for _ in range(3):
            limiter.run(lambda: admitted.append(clock.now))

        assert admitted == [1000.0, 1002.0, 1004.0]
        assert all(later - earlier >= 2.0 for earlier, later in zip(admitted, admitted[1:]))

    def test_no_sleep_when_delay_already_elapsed(self, clock):
        limiter = RateLimiter(min_delay=1.0)
        limiter.run(lambda: None)
        clock.advance(5)

        limiter.run(lambda: None)

        assert clock.sleeps == []

    def test_run_returns_task_value_and_releases_slot(self, clock):
        limiter = RateLimiter(min_delay=0, concurrency_cap=1)

        assert limiter.run(lambda: "ok") == "ok"
        assert limiter.in_flight == 0

    def test_slot_released_when_task_raises(self, clock):
        limiter = RateLimiter(min_delay=0, concurrency_cap=1)

        with pytest.raises(RuntimeError):
            limiter.run(self._boom)

        assert limiter.in_flight == 0

    @staticmethod
    def _boom():
        raise RuntimeError("boom")

    def test_concurrency_cap_is_never_exceeded(self):
        limiter = RateLimiter(min_delay=0, concurrency_cap=2, poll_interval=0.001)
        release = threading.Event()
        errors = []

        def worker():
            try:
                with limiter.slot():
                    release.wait(0.05)
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for thread in threads:
            thread.start()
        release.set()
        for thread in threads:
            thread.join(timeout=5)

        assert not errors
        assert limiter.peak_in_flight <= 2
        assert limiter.in_flight == 0
        assert limiter.queued == 0

    def test_waiting_callers_are_admitted_in_arrival_order(self):
        limiter = RateLimiter(min_delay=0, concurrency_cap=1, poll_interval=0.001)
        admitted = []
        limiter.acquire()

        def worker(index):
            with limiter.slot():
                admitted.append(index)

        threads = []
        for index in range(5):
            thread = threading.Thread(target=worker, args=(index,))
            thread.start()
            threads.append(thread)
            deadline = time.monotonic() + 5
            while limiter.queued < index + 1 and time.monotonic() < deadline:
                time.sleep(0.001)
            assert limiter.queued == index + 1

        limiter.release()
        for thread in threads:
            thread.join(timeout=5)

        assert admitted == [0, 1, 2, 3, 4]
        assert limiter.queued == 0
        assert limiter.in_flight == 0


class TestCircuitBreaker:
    def test_opens_after_threshold_consecutive_failures(self, clock):
        breaker = CircuitBreaker(threshold=3, cooldown=60)

        for _ in range(2):
            breaker.record_failure()
        assert breaker.allow_request() is True

        breaker.record_failure()

        assert breaker.state == CircuitBreaker.OPEN
        assert breaker.allow_request() is False

    def test_success_resets_the_failure_count(self, clock):
        breaker = CircuitBreaker(threshold=3)
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.consecutive_failures == 1
        assert breaker.state == CircuitBreaker.CLOSED

    def test_cooldown_admits_exactly_one_trial(self, clock):
        breaker = CircuitBreaker(threshold=1, cooldown=60)
        breaker.record_failure()
        clock.advance(59)
        assert breaker.allow_request() is False

        clock.advance(1)

        assert breaker.allow_request() is True
        assert breaker.is_trial() is True
        assert breaker.state == CircuitBreaker.HALF_OPEN
        # Concurrent callers wait for the trial to resolve
        assert breaker.allow_request() is False

    def test_failed_trial_reopens_immediately(self, clock):
        breaker = CircuitBreaker(threshold=3, cooldown=60)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(60)
        assert breaker.allow_request() is True

        breaker.record_failure()

        assert breaker.state == CircuitBreaker.OPEN
        assert breaker.remaining_cooldown() == pytest.approx(60)

    def test_successful_trial_closes(self, clock):
        breaker = CircuitBreaker(threshold=1, cooldown=10)
        breaker.record_failure()
        clock.advance(10)
        breaker.allow_request()

        breaker.record_success()

        assert breaker.state == CircuitBreaker.CLOSED
        assert breaker.allow_request() is True


class TestCreditTracker:
    def test_records_and_reports_remaining(self):
        tracker = CreditTracker(limit=10, warning_threshold=8)
        tracker.record(3)

        assert tracker.credits_used == 3
        assert tracker.remaining == 7

    def test_ensure_available_raises_when_budget_would_overrun(self):
        tracker = CreditTracker(limit=5)
        tracker.record(4)

        tracker.ensure_available(1)
        with pytest.raises(CreditLimitExceeded):
            tracker.ensure_available(2)

    def test_unlimited_tracker_never_raises(self):
        tracker = CreditTracker()
        tracker.record(10_000)

        tracker.ensure_available(10_000)
        assert tracker.remaining is None

    def test_reset(self):
        tracker = CreditTracker(limit=2)
        tracker.record(2)
        tracker.reset()

        assert tracker.remaining == 2
