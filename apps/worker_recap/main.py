"""
Worker Recap.

Алгоритм:
- забираем пачку сообщений из очереди (visibility timeout)
- каждое сообщение: map или reduce (services.task_handler)
- исход сообщения решает протокол ack/requeue; необработанные ошибки логируем,
  сообщение вернётся в очередь по таймауту невидимости
"""

from __future__ import annotations

import time

from recap_processor.common.config import get_settings
from recap_processor.common.errors import StaleReceiptError
from recap_processor.common.logging import get_project_logger, setup_logging
from recap_processor.common.metrics import maybe_start_metrics_server
from recap_processor.common.utils import err_head
from recap_processor.services.context import ProcessorContext
from recap_processor.services.task_handler import handle_message

log = get_project_logger()


def process_batch(ctx: ProcessorContext) -> int:
    """
    Одна итерация: receive + обработка. Возвращает число полученных сообщений.
    """
    messages = ctx.queue.receive(
        max_messages=ctx.settings.queue_batch_size,
        visibility_timeout_sec=ctx.settings.queue_visibility_timeout_sec,
    )
    for message in messages:
        try:
            handle_message(ctx, message)
        except StaleReceiptError as e:
            log.warning(
                "worker_recap_stale_receipt",
                extra={"payload": {"message_id": message.message_id, "err": err_head(e)}},
            )
        except Exception as e:
            log.error(
                "worker_recap_message_error",
                extra={
                    "payload": {
                        "message_id": message.message_id,
                        "receive_count": message.receive_count,
                        "err": err_head(e),
                    }
                },
                exc_info=True,
            )
    return len(messages)


def run_loop(ctx: ProcessorContext | None = None) -> None:
    ctx = ctx or ProcessorContext.from_settings()
    s = ctx.settings
    log.info(
        "worker_recap_started",
        extra={"payload": {"queue": s.queue_name, "batch_size": s.queue_batch_size}},
    )

    while True:
        if process_batch(ctx) == 0:
            time.sleep(s.queue_poll_interval_sec)


def main() -> None:
    setup_logging()
    maybe_start_metrics_server(get_settings().metrics_port)
    while True:
        try:
            run_loop()
        except Exception as e:
            log.error("worker_recap_fatal", extra={"payload": {"err": err_head(e)}})
            time.sleep(2)


if __name__ == "__main__":
    main()
