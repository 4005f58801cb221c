from __future__ import annotations

import pytest

from recap_processor.common.errors import CircuitOpenError
from recap_processor.llm.circuit_breaker import CircuitBreaker


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_opens_after_threshold_and_blocks() -> None:
    clock = _Clock()
    cb = CircuitBreaker(failure_threshold=3, minimum_requests=3, cooldown_sec=30, clock=clock)

    for _ in range(2):
        cb.before_call()
        cb.on_failure("boom")
    assert cb.state.state == "closed"

    cb.before_call()
    cb.on_failure("boom")
    assert cb.state.state == "open"

    clock.now += 10
    with pytest.raises(CircuitOpenError) as exc:
        cb.before_call()
    assert exc.value.retry_after_sec == pytest.approx(20.0)
    assert exc.value.retryable is True


def test_minimum_requests_delays_opening() -> None:
    cb = CircuitBreaker(failure_threshold=1, minimum_requests=3, clock=_Clock())
    cb.on_failure()
    cb.on_failure()
    assert cb.state.state == "closed"
    cb.on_failure()
    assert cb.state.state == "open"


def test_half_open_probe_success_closes() -> None:
    clock = _Clock()
    cb = CircuitBreaker(failure_threshold=1, minimum_requests=1, cooldown_sec=5, clock=clock)
    cb.on_failure()
    clock.now += 5

    cb.before_call()
    assert cb.state.state == "half_open"
    with pytest.raises(CircuitOpenError):
        cb.before_call()

    cb.on_success()
    assert cb.state.state == "closed"
    assert cb.state.consecutive_failures == 0
    cb.before_call()


def test_half_open_probe_failure_reopens() -> None:
    clock = _Clock()
    cb = CircuitBreaker(failure_threshold=2, minimum_requests=1, cooldown_sec=5, clock=clock)
    cb.on_failure()
    cb.on_failure()
    clock.now += 6
    cb.before_call()
    cb.on_failure("still down")
    assert cb.state.state == "open"
    assert cb.state.opened_at == clock.now
    assert cb.state.last_error == "still down"


def test_success_resets_consecutive_failures() -> None:
    cb = CircuitBreaker(failure_threshold=2, minimum_requests=1, clock=_Clock())
    cb.on_failure()
    cb.on_success()
    cb.on_failure()
    assert cb.state.state == "closed"
    assert cb.state.total_requests == 3
