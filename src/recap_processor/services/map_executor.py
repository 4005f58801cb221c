"""
Map-задача: текст чанка -> генерация -> JSON-результат в blob.

Любая ошибка -> повторная постановка с фиксированной задержкой MAP_RETRY_DELAY_SEC.
"""

from __future__ import annotations

from typing import Any

from recap_processor.common.logging import get_project_logger
from recap_processor.common.metrics import QUEUE_TASKS_TOTAL, track_stage_latency
from recap_processor.common.time import TimeBudget
from recap_processor.common.utils import err_head, parse_json_object
from recap_processor.contracts.tasks import MapTask
from recap_processor.llm.orchestrator import LLMOrchestrator
from recap_processor.queue.protocol import AckOutcome, acknowledge, requeue_with_delay
from recap_processor.queue.transport import QueueMessage
from recap_processor.storage.blob import get_text, put_json

from .context import ProcessorContext

log = get_project_logger()


def chunk_result_value(text: str) -> Any:
    """
    Ответ генератора -> значение blob: объект, если это JSON-объект, иначе строка.
    """
    parsed = parse_json_object(text)
    return parsed if parsed is not None else text


def execute_map(
    ctx: ProcessorContext, message: QueueMessage, task: MapTask, llm: LLMOrchestrator
) -> AckOutcome:
    budget = TimeBudget(ctx.settings.overall_timeout_ms)
    try:
        with track_stage_latency("map_fetch"):
            source_text = get_text(ctx.blobs, task.source_uri)
        result_text = llm.generate_text(source_text, budget=budget)
        with track_stage_latency("map_store"):
            put_json(ctx.blobs, task.result_uri, chunk_result_value(result_text))
    except Exception as e:
        log.warning(
            "map_task_failed",
            extra={
                "payload": {
                    "message_id": message.message_id,
                    "result_url": task.result_uri,
                    "attempt": task.attempt,
                    "err": err_head(e),
                }
            },
        )
        return requeue_with_delay(
            ctx.queue,
            message,
            task,
            ctx.settings.map_retry_delay_sec,
            max_attempts=ctx.settings.max_attempts,
            reason=err_head(e),
        )

    outcome = acknowledge(ctx.queue, message, task)
    QUEUE_TASKS_TOTAL.labels(task_type="map", result="acked").inc()
    log.info(
        "map_task_done",
        extra={
            "payload": {
                "message_id": message.message_id,
                "result_url": task.result_uri,
                "elapsed_ms": int(budget.elapsed_ms()),
            }
        },
    )
    return outcome
