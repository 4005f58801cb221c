"""
Очередь задач поверх Redis с семантикой visibility timeout.

Структуры (для очереди <name>):
- <name>:body      hash  message_id -> тело (JSON)
- <name>:ready     zset  message_id -> visible_at (ms)
- <name>:inflight  zset  message_id -> invisible_until (ms)
- <name>:receipt   hash  message_id -> актуальная квитанция
- <name>:rc        hash  message_id -> сколько раз сообщение выдавалось
- <name>:dlq       list  тела сообщений, превысивших max_receive_count

Захват сообщения = ZREM из ready: из нескольких воркеров выигрывает один.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from recap_processor.common.config import Settings, get_settings
from recap_processor.common.errors import StaleReceiptError
from recap_processor.common.ids import new_event_id, new_receipt_token
from recap_processor.common.logging import get_project_logger
from recap_processor.common.time import utc_ms
from recap_processor.contracts.tasks import TaskMessage, dumps_task

from .redis import redis_client

log = get_project_logger()

_RECEIPT_SEP = "|"


@dataclass(frozen=True)
class QueueMessage:
    message_id: str
    receipt: str
    body: str
    receive_count: int = 1


class QueueTransport(Protocol):
    def receive(
        self, max_messages: int = 1, visibility_timeout_sec: int | None = None
    ) -> list[QueueMessage]: ...

    def delete(self, receipt: str) -> None: ...

    def publish(self, body: str, delay_sec: int = 0) -> str: ...

    def change_visibility(self, receipt: str, timeout_sec: int) -> None: ...


def dlq_name(queue_name: str) -> str:
    return f"{queue_name}:dlq"


class RedisTaskQueue:
    def __init__(
        self,
        name: str,
        *,
        client: Any = None,
        visibility_timeout_sec: int = 300,
        max_receive_count: int = 10,
        clock: Callable[[], int] = utc_ms,
    ) -> None:
        self.name = name
        self.r = client if client is not None else redis_client()
        self.visibility_timeout_sec = visibility_timeout_sec
        self.max_receive_count = max_receive_count
        self.clock = clock

        self.k_body = f"{name}:body"
        self.k_ready = f"{name}:ready"
        self.k_inflight = f"{name}:inflight"
        self.k_receipt = f"{name}:receipt"
        self.k_rc = f"{name}:rc"
        self.k_dlq = dlq_name(name)

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> RedisTaskQueue:
        s = s or get_settings()
        return cls(
            s.queue_name,
            client=redis_client(s.redis_url),
            visibility_timeout_sec=s.queue_visibility_timeout_sec,
            max_receive_count=s.queue_max_receive_count,
        )

    # -------------------------------------------------------------------------
    # producer
    # -------------------------------------------------------------------------
    def publish(self, body: str, delay_sec: int = 0) -> str:
        message_id = new_event_id("msg")
        visible_at = self.clock() + max(0, int(delay_sec)) * 1000
        self.r.hset(self.k_body, message_id, body)
        self.r.zadd(self.k_ready, {message_id: visible_at})
        return message_id

    # -------------------------------------------------------------------------
    # consumer
    # -------------------------------------------------------------------------
    def receive(
        self, max_messages: int = 1, visibility_timeout_sec: int | None = None
    ) -> list[QueueMessage]:
        now = self.clock()
        timeout = self.visibility_timeout_sec if visibility_timeout_sec is None else visibility_timeout_sec
        self._restore_expired(now)

        out: list[QueueMessage] = []
        while len(out) < max_messages:
            candidates = self.r.zrangebyscore(
                self.k_ready, "-inf", now, start=0, num=max_messages - len(out)
            )
            if not candidates:
                break
            for message_id in candidates:
                if not self.r.zrem(self.k_ready, message_id):
                    continue  # забрал другой воркер
                msg = self._claim(message_id, now, timeout)
                if msg is not None:
                    out.append(msg)
        return out

    def _restore_expired(self, now: int) -> None:
        for message_id in self.r.zrangebyscore(self.k_inflight, "-inf", now):
            if self.r.zrem(self.k_inflight, message_id):
                self.r.zadd(self.k_ready, {message_id: now})

    def _claim(self, message_id: str, now: int, timeout_sec: int) -> QueueMessage | None:
        body = self.r.hget(self.k_body, message_id)
        if body is None:
            self._forget(message_id)
            return None

        count = int(self.r.hincrby(self.k_rc, message_id, 1))
        if count > self.max_receive_count:
            self.r.lpush(self.k_dlq, body)
            self._forget(message_id)
            log.warning(
                "queue_message_moved_to_dlq",
                extra={
                    "payload": {
                        "queue": self.name,
                        "dlq": self.k_dlq,
                        "message_id": message_id,
                        "receive_count": count,
                        "max_receive_count": self.max_receive_count,
                    }
                },
            )
            return None

        receipt = f"{message_id}{_RECEIPT_SEP}{new_receipt_token()}"
        self.r.hset(self.k_receipt, message_id, receipt)
        self.r.zadd(self.k_inflight, {message_id: now + max(0, int(timeout_sec)) * 1000})
        return QueueMessage(message_id=message_id, receipt=receipt, body=body, receive_count=count)

    def delete(self, receipt: str) -> None:
        message_id = self._check_receipt(receipt)
        self._forget(message_id)

    def change_visibility(self, receipt: str, timeout_sec: int) -> None:
        message_id = self._check_receipt(receipt)
        until = self.clock() + max(0, int(timeout_sec)) * 1000
        self.r.zrem(self.k_ready, message_id)
        self.r.zadd(self.k_inflight, {message_id: until})

    def _check_receipt(self, receipt: str) -> str:
        message_id = receipt.split(_RECEIPT_SEP, 1)[0]
        if not message_id or self.r.hget(self.k_receipt, message_id) != receipt:
            raise StaleReceiptError(receipt)
        return message_id

    def _forget(self, message_id: str) -> None:
        self.r.zrem(self.k_ready, message_id)
        self.r.zrem(self.k_inflight, message_id)
        self.r.hdel(self.k_body, message_id)
        self.r.hdel(self.k_receipt, message_id)
        self.r.hdel(self.k_rc, message_id)

    # -------------------------------------------------------------------------
    # introspection (скрипты / тесты)
    # -------------------------------------------------------------------------
    def dlq_bodies(self) -> list[str]:
        return list(self.r.lrange(self.k_dlq, 0, -1))


def send_task(queue: QueueTransport, task: TaskMessage, delay_sec: int = 0) -> str:
    """
    Поставить задачу в очередь (producer helper).
    """
    message_id = queue.publish(dumps_task(task), delay_sec=delay_sec)
    log.info(
        "task_enqueued",
        extra={
            "payload": {
                "message_id": message_id,
                "task_type": task.type.value,
                "task_id": task.task_id,
                "attempt": task.attempt,
                "delay_sec": delay_sec,
            }
        },
    )
    return message_id
