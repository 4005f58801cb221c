"""
Retry-политика для задач очереди.

Назначение:
- классифицировать ошибку: ретраить или нет, есть ли подсказка retry-after
- экспоненциальный backoff с full jitter (base * 2^(attempt-1), не больше cap)
- перевод подсказки задержки из сообщения (мс) в задержку очереди (с)

Важно:
- политика ничего не спит и не ставит в очередь, только считает
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import requests

from recap_processor.common.config import Settings, get_settings

RETRYABLE_STATUSES = frozenset({408, 425, 429})
MAX_QUEUE_DELAY_SEC = 900
DEFAULT_REQUEUE_DELAY_SEC = 300

_TRANSIENT_MARKERS = ("timeout", "throttl")


@dataclass(frozen=True)
class ErrorClassification:
    retryable: bool
    retry_after_sec: float | None = None
    status: int | None = None


def parse_retry_after(value: Any, *, now: datetime | None = None) -> float | None:
    """
    Retry-After: число секунд или HTTP-date. Неразборчивое -> None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return max(0.0, float(value)) if math.isfinite(value) else None
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    try:
        num = float(text)
    except ValueError:
        num = None
    if num is not None:
        return max(0.0, num) if math.isfinite(num) else None

    try:
        at = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if at.tzinfo is None:
        at = at.replace(tzinfo=UTC)
    diff = (at - (now or datetime.now(UTC))).total_seconds()
    return diff if diff > 0 else 0.0


def _status_of(err: BaseException) -> int | None:
    response = getattr(err, "response", None)
    details = getattr(err, "details", None)
    candidates = (
        getattr(err, "status", None),
        getattr(err, "status_code", None),
        getattr(response, "status_code", None),
        details.get("status") if isinstance(details, dict) else None,
    )
    for c in candidates:
        if isinstance(c, int) and not isinstance(c, bool):
            return c
    return None


def _retry_after_of(err: BaseException) -> float | None:
    response = getattr(err, "response", None)
    headers = getattr(response, "headers", None)
    details = getattr(err, "details", None)
    candidates = (
        getattr(err, "retry_after", None),
        getattr(err, "retry_after_sec", None),
        headers.get("Retry-After") if headers is not None else None,
        details.get("retry_after_sec") if isinstance(details, dict) else None,
    )
    for c in candidates:
        parsed = parse_retry_after(c)
        if parsed is not None:
            return parsed
    return None


def _looks_transient(err: BaseException) -> bool:
    if isinstance(err, requests.Timeout | requests.ConnectionError | TimeoutError):
        return True
    code = getattr(err, "code", None)
    haystack = " ".join(
        [type(err).__name__, code if isinstance(code, str) else "", str(err)]
    ).lower()
    return any(marker in haystack for marker in _TRANSIENT_MARKERS)


def classify_error(err: BaseException) -> ErrorClassification:
    status = _status_of(err)
    retryable = (
        getattr(err, "retryable", None) is True
        or status in RETRYABLE_STATUSES
        or (status is not None and status >= 500)
        or _looks_transient(err)
    )
    return ErrorClassification(
        retryable=bool(retryable), retry_after_sec=_retry_after_of(err), status=status
    )


@dataclass
class RetryPolicy:
    base_sec: float = 1.0
    cap_sec: float = 60.0
    max_attempts: int = 5
    rng: random.Random = field(default_factory=random.Random)

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> RetryPolicy:
        s = s or get_settings()
        return cls(
            base_sec=s.backoff_base_seconds,
            cap_sec=s.backoff_cap_seconds,
            max_attempts=s.max_attempts,
        )

    def compute_backoff_ceiling(self, attempt: int) -> float:
        exp = max(0, int(attempt) - 1)
        # 2 ** большой степени переполняет float раньше, чем упрётся в cap
        if exp >= 64:
            return self.cap_sec
        return min(self.cap_sec, self.base_sec * (2**exp))

    def clamp_delay(self, delay_sec: float) -> float:
        return min(max(0.0, delay_sec), self.cap_sec)

    def pick_delay_seconds(self, attempt: int, retry_after: float | None = None) -> float:
        if retry_after is not None and math.isfinite(retry_after):
            return self.clamp_delay(retry_after)
        return self.rng.uniform(0.0, self.compute_backoff_ceiling(attempt))

    def is_exhausted(self, attempt: int) -> bool:
        return attempts_exhausted(attempt, self.max_attempts)


def attempts_exhausted(attempt: int, max_attempts: int) -> bool:
    """Следующая попытка (attempt + 1) уже превысила бы лимит."""
    return attempt + 1 > max_attempts


def pick_requeue_delay_seconds(
    hint_ms: float | None, fallback: int = DEFAULT_REQUEUE_DELAY_SEC
) -> int:
    """
    Подсказка из сообщения (мс) -> секунды очереди в [0, 900].
    """
    if hint_ms is None or not math.isfinite(hint_ms) or hint_ms < 0:
        return fallback
    return min(MAX_QUEUE_DELAY_SEC, max(0, round(hint_ms / 1000)))
