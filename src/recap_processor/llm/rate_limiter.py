"""
Token bucket для вызовов сервиса генерации.

Один экземпляр на процесс, общий для всех задач; состояние явное
(tokens / last_refill_ts), время и sleep подменяются в тестах.
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable

from recap_processor.common.config import Settings, get_settings
from recap_processor.common.metrics import RATE_LIMITER_WAIT_MS


class TokenBucketRateLimiter:
    def __init__(
        self,
        tokens_per_second: float,
        capacity: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if tokens_per_second <= 0:
            raise ValueError("tokens_per_second must be > 0")
        self.capacity = max(1.0, float(capacity))
        self.tokens_per_second = float(tokens_per_second)
        self.tokens = self.capacity
        self.clock = clock
        self.sleep = sleep
        self.last_refill_ts = clock()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> TokenBucketRateLimiter:
        s = s or get_settings()
        return cls(s.rate_limit_rps, s.rate_limit_burst or s.rate_limit_rps)

    def _refill(self) -> None:
        now = self.clock()
        elapsed = now - self.last_refill_ts
        if elapsed <= 0:
            return
        self.tokens = min(self.capacity, self.tokens + elapsed * self.tokens_per_second)
        self.last_refill_ts = now

    def try_acquire(self) -> bool:
        with self._lock:
            self._refill()
            if self.tokens >= 1:
                self.tokens -= 1
                return True
            return False

    def wait_time_sec(self) -> float:
        with self._lock:
            deficit = 1 - self.tokens
        if deficit <= 0:
            return 0.0
        # округляем вверх до миллисекунды, чтобы после сна токен точно был
        return math.ceil(deficit / self.tokens_per_second * 1000) / 1000

    def acquire(self) -> float:
        """
        Блокирует до получения токена. Возвращает суммарное ожидание (сек).
        """
        waited = 0.0
        while not self.try_acquire():
            wait = self.wait_time_sec()
            self.sleep(wait)
            waited += wait
        RATE_LIMITER_WAIT_MS.observe(waited * 1000)
        return waited
