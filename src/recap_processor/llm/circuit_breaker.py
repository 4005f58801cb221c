"""
Circuit breaker для сервиса генерации.

Состояния: closed -> open -> half_open -> closed|open.
- open: подряд >= failure_threshold ошибок при >= minimum_requests вызовах
- после cooldown пропускаем half_open_max_calls пробных вызовов
- успех в half_open закрывает, ошибка снова открывает

Состояние живёт только в процессе (между процессами не делится).
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from recap_processor.common.config import Settings, get_settings
from recap_processor.common.errors import CircuitOpenError
from recap_processor.common.logging import get_llm_logger

log = get_llm_logger()


@dataclass
class CircuitBreakerState:
    state: str  # closed|open|half_open
    consecutive_failures: int = 0
    total_requests: int = 0
    opened_at: float | None = None
    half_open_calls: int = 0
    last_error: str | None = None


class CircuitBreaker:
    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        minimum_requests: int = 5,
        cooldown_sec: float = 60.0,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = max(1, failure_threshold)
        self.minimum_requests = max(1, minimum_requests)
        self.cooldown_sec = cooldown_sec
        self.half_open_max_calls = max(1, half_open_max_calls)
        self.clock = clock
        self.state = CircuitBreakerState(state="closed")
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> CircuitBreaker:
        s = s or get_settings()
        return cls(
            failure_threshold=s.circuit_breaker_failure_threshold,
            minimum_requests=s.circuit_breaker_min_requests,
            cooldown_sec=float(s.circuit_breaker_cooldown_seconds),
            half_open_max_calls=s.circuit_breaker_half_open_max_calls,
        )

    def before_call(self) -> None:
        """
        Пропустить вызов или бросить CircuitOpenError.
        """
        with self._lock:
            st = self.state
            if st.state == "closed":
                return
            if st.state == "open":
                age = self.clock() - (st.opened_at or 0.0)
                if age < self.cooldown_sec:
                    raise CircuitOpenError(
                        retry_after_sec=max(0.0, self.cooldown_sec - age),
                        consecutive_failures=st.consecutive_failures,
                    )
                st.state = "half_open"
                st.half_open_calls = 0
                log.info("llm_cb_half_open", extra={"payload": {"failures": st.consecutive_failures}})
            if st.half_open_calls >= self.half_open_max_calls:
                raise CircuitOpenError(
                    retry_after_sec=self.cooldown_sec,
                    consecutive_failures=st.consecutive_failures,
                )
            st.half_open_calls += 1

    def on_success(self) -> None:
        with self._lock:
            st = self.state
            st.total_requests += 1
            if st.state == "closed" and st.consecutive_failures == 0:
                return
            was = st.state
            self.state = CircuitBreakerState(state="closed", total_requests=st.total_requests)
            if was != "closed":
                log.info("llm_cb_closed", extra={"payload": {"reason": "success"}})

    def on_failure(self, error: str | None = None) -> None:
        with self._lock:
            st = self.state
            st.total_requests += 1
            st.consecutive_failures += 1
            st.last_error = error
            should_open = st.state == "half_open" or (
                st.consecutive_failures >= self.failure_threshold
                and st.total_requests >= self.minimum_requests
            )
            if should_open:
                st.state = "open"
                st.opened_at = self.clock()
                st.half_open_calls = 0
            log.warning(
                "llm_cb_failure",
                extra={
                    "payload": {
                        "failures": st.consecutive_failures,
                        "threshold": self.failure_threshold,
                        "state": st.state,
                    }
                },
            )
