"""
Обработка одного сообщения очереди.

parse -> (невалидное: лог + удалить) -> выбор генератора (неизвестный: лог + удалить)
-> map / reduce исполнитель.
"""

from __future__ import annotations

from recap_processor.common.errors import InvalidMessageError, UnsupportedGeneratorError
from recap_processor.common.logging import get_project_logger
from recap_processor.common.metrics import QUEUE_TASKS_TOTAL
from recap_processor.contracts.tasks import MapTask, parse_task_message
from recap_processor.queue.protocol import acknowledge
from recap_processor.queue.transport import QueueMessage

from .context import ProcessorContext
from .map_executor import execute_map
from .reduce_executor import execute_reduce

log = get_project_logger()

DROPPED = "dropped"


def handle_message(ctx: ProcessorContext, message: QueueMessage) -> str:
    """
    Возвращает исход: acked | extended | dropped.
    """
    try:
        task = parse_task_message(message.body)
    except InvalidMessageError as e:
        log.warning(
            "task_message_invalid",
            extra={
                "payload": {
                    "message_id": message.message_id,
                    "reason": e.message,
                    "details": e.details,
                    "body_head": message.body[:300],
                }
            },
        )
        acknowledge(ctx.queue, message)
        QUEUE_TASKS_TOTAL.labels(task_type="unknown", result=DROPPED).inc()
        return DROPPED

    try:
        provider = ctx.provider_factory(task.generator, task.generator_model)
    except UnsupportedGeneratorError as e:
        log.error(
            "task_generator_unsupported",
            extra={
                "payload": {
                    "message_id": message.message_id,
                    "task_id": task.task_id,
                    "generator": task.generator,
                    "details": e.details,
                }
            },
        )
        acknowledge(ctx.queue, message, task)
        QUEUE_TASKS_TOTAL.labels(task_type=task.type.value, result=DROPPED).inc()
        return DROPPED

    llm = ctx.orchestrator(provider)
    log.info(
        "task_received",
        extra={
            "payload": {
                "message_id": message.message_id,
                "task_type": task.type.value,
                "task_id": task.task_id,
                "attempt": task.attempt,
                "receive_count": message.receive_count,
                "generator": task.generator,
            }
        },
    )
    if isinstance(task, MapTask):
        outcome = execute_map(ctx, message, task, llm)
    else:
        outcome = execute_reduce(ctx, message, task, llm)
    return outcome.value
