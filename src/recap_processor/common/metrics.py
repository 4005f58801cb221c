"""
Метрики Prometheus для воркера.

Назначение:
- общие счётчики и гистограммы для стадий обработки задач
- опциональный HTTP endpoint /metrics (METRICS_PORT > 0)
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, start_http_server

# =============================================================================
# СЧЁТЧИКИ И МЕТРИКИ
# =============================================================================

# Результаты обработки сообщений очереди
QUEUE_TASKS_TOTAL = Counter(
    "recap_queue_tasks_total",
    "Количество обработанных сообщений очереди",
    ["task_type", "result"],  # result=acked|requeued|extended|dropped|deferred
)

# Задержки по стадиям
PIPELINE_STAGE_LATENCY_MS = Histogram(
    "recap_pipeline_stage_latency_ms",
    "Задержка выполнения стадий (мс)",
    ["stage"],
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000),
)

LLM_CALLS_TOTAL = Counter(
    "recap_llm_calls_total",
    "Вызовы сервиса генерации",
    ["generator", "result"],  # result=ok|error|circuit_open
)

RATE_LIMITER_WAIT_MS = Histogram(
    "recap_rate_limiter_wait_ms",
    "Время ожидания токена rate limiter (мс)",
    buckets=(0, 1, 5, 25, 100, 250, 500, 1000, 2500, 5000),
)

INDEX_ROWS_WRITTEN_TOTAL = Counter(
    "recap_index_rows_written_total",
    "Количество записанных строк индексов",
    ["kind"],
)

TABLE_BATCH_REJECTED_TOTAL = Counter(
    "recap_table_batch_rejected_total",
    "Строки, отклонённые batch-записью и поставленные на повтор",
)


@contextmanager
def track_stage_latency(stage: str) -> Iterator[None]:
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        PIPELINE_STAGE_LATENCY_MS.labels(stage=stage).observe(elapsed_ms)


def maybe_start_metrics_server(port: int) -> bool:
    """
    Поднимает /metrics на отдельном порту. Возвращает True, если сервер запущен.
    """
    if not port or port <= 0:
        return False
    start_http_server(port)
    return True
