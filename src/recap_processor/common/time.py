"""
Утилиты времени.

Назначение:
- единый формат времени (ISO UTC)
- миллисекунды для очереди (visible-at / invisible-until)
- бюджет времени на обработку одного сообщения
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Текущее время в UTC (datetime).
    """
    return datetime.now(UTC)


def utc_ms() -> int:
    """
    Текущее время в UTC в миллисекундах (int).
    """
    return int(utc_now().timestamp() * 1000)


@dataclass
class TimeBudget:
    """
    Общий бюджет времени на одно сообщение.

    Это не вытесняющая отмена: бюджет только отвечает на вопрос,
    успеем ли мы ещё один повтор до внешнего дедлайна.
    """

    overall_timeout_ms: int
    started_at: float = field(default_factory=time.monotonic)

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000

    def remaining_ms(self) -> float:
        return max(0.0, self.overall_timeout_ms - self.elapsed_ms())

    def has_remaining(self, delay_sec: float, *, reserve_ms: float = 0.0) -> bool:
        projected = self.elapsed_ms() + max(0.0, delay_sec) * 1000 + max(0.0, reserve_ms)
        return projected < self.overall_timeout_ms
