"""
Протокол подтверждения / повторной постановки сообщения.

Исходы обработки сообщения:
- acked:    оригинал удалён (после успеха или после успешной повторной постановки)
- extended: оригинал оставлен в очереди с продлённой невидимостью
            (не удалось переопубликовать, либо попытки исчерпаны -> redrive в DLQ)

Инвариант: если копия не опубликована, оригинал не удаляется.
"""

from __future__ import annotations

import enum

from recap_processor.common.logging import get_project_logger
from recap_processor.common.metrics import QUEUE_TASKS_TOTAL
from recap_processor.common.utils import err_head
from recap_processor.contracts.tasks import TaskMessage, dumps_task, next_attempt

from .retry import MAX_QUEUE_DELAY_SEC, attempts_exhausted
from .transport import QueueMessage, QueueTransport

log = get_project_logger()

DEFAULT_VISIBILITY_EXTENSION_SEC = 300


class AckOutcome(str, enum.Enum):
    acked = "acked"
    extended = "extended"


def clamp_queue_delay(delay_sec: float) -> int:
    return min(MAX_QUEUE_DELAY_SEC, max(0, int(delay_sec)))


def acknowledge(queue: QueueTransport, message: QueueMessage, task: TaskMessage | None = None) -> AckOutcome:
    queue.delete(message.receipt)
    log.info(
        "task_acked",
        extra={
            "payload": {
                "message_id": message.message_id,
                "task_id": task.task_id if task else None,
                "attempt": task.attempt if task else None,
            }
        },
    )
    return AckOutcome.acked


def requeue_with_delay(
    queue: QueueTransport,
    message: QueueMessage,
    task: TaskMessage,
    delay_sec: float,
    *,
    max_attempts: int,
    reason: str = "",
) -> AckOutcome:
    """
    Повторная постановка: publish(копия с attempt + 1) -> delete(оригинал).

    Если publish/delete упал, оригиналу продлевается невидимость. Если упало и
    продление, ошибка пробрасывается (сообщение вернётся само по таймауту).
    """
    delay = clamp_queue_delay(delay_sec)
    task_type = task.type.value
    base_payload = {
        "message_id": message.message_id,
        "task_type": task_type,
        "task_id": task.task_id,
        "attempt": task.attempt,
        "delay_sec": delay,
        "reason": reason,
    }

    if attempts_exhausted(task.attempt, max_attempts):
        _extend(queue, message, delay, base_payload)
        log.error(
            "task_attempts_exhausted",
            extra={"payload": {**base_payload, "max_attempts": max_attempts}},
        )
        QUEUE_TASKS_TOTAL.labels(task_type=task_type, result="extended").inc()
        return AckOutcome.extended

    retry_task = next_attempt(task)
    try:
        new_id = queue.publish(dumps_task(retry_task), delay_sec=delay)
        queue.delete(message.receipt)
    except Exception as e:
        log.warning(
            "task_requeue_failed",
            extra={"payload": {**base_payload, "err": err_head(e)}},
        )
        _extend(queue, message, delay, base_payload)
        QUEUE_TASKS_TOTAL.labels(task_type=task_type, result="extended").inc()
        return AckOutcome.extended

    log.warning(
        "task_requeued",
        extra={"payload": {**base_payload, "next_attempt": retry_task.attempt, "new_message_id": new_id}},
    )
    QUEUE_TASKS_TOTAL.labels(task_type=task_type, result="requeued").inc()
    return AckOutcome.acked


def _extend(queue: QueueTransport, message: QueueMessage, delay: int, payload: dict) -> None:
    timeout = delay or DEFAULT_VISIBILITY_EXTENSION_SEC
    try:
        queue.change_visibility(message.receipt, timeout)
    except Exception as e:
        log.error(
            "task_visibility_extend_failed",
            extra={"payload": {**payload, "timeout_sec": timeout, "err": err_head(e)}},
        )
        raise
    log.info("task_visibility_extended", extra={"payload": {**payload, "timeout_sec": timeout}})
