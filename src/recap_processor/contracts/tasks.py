"""
Контракт сообщений очереди задач (map / reduce).

Правила:
- payload всегда JSON, дискриминант в поле "type"
- ключи на проводе совпадают с тем, что пишут продюсеры (url, result_url, llm, ...)
- retryAttempts нормализуется: строка -> число, отсутствует/отрицательно/нечисло -> 0
- неизвестные ключи верхнего уровня сохраняются, чтобы повторная постановка
  отличалась от оригинала только счётчиком попыток
- любое нарушение -> InvalidMessageError (такое сообщение дропается, не ретраится)
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field, replace
from typing import Any, ClassVar

from recap_processor.common.errors import InvalidLocatorError, InvalidMessageError
from recap_processor.domain.enums import TaskType
from recap_processor.storage.blob import parse_locator

_MAP_KEYS = {"type", "url", "result_url", "llm", "llmModel", "retryAttempts", "meta", "retryMs_in", "delayMs"}
_REDUCE_KEYS = {
    "type",
    "chunk_result_urls",
    "prompt",
    "issueID",
    "meeting",
    "llm",
    "llmModel",
    "retryAttempts",
    "meta",
    "retryMs_in",
    "delayMs",
}
_MEETING_KEYS = {"issueID", "nameOfMeeting", "nameOfHouse", "date", "numberOfSpeeches"}


@dataclass(frozen=True)
class MeetingInfo:
    issue_id: str
    meeting_name: str
    house: str
    date: str
    speech_count: int | float
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def session(self) -> Any:
        return self.extra.get("session")


@dataclass(frozen=True)
class MapTask:
    type: ClassVar[TaskType] = TaskType.map

    source_uri: str
    result_uri: str
    generator: str
    generator_model: str
    attempt: int = 0
    metadata: dict[str, Any] | None = None
    retry_delay_ms_hint: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def task_id(self) -> str:
        return self.result_uri


@dataclass(frozen=True)
class ReduceTask:
    type: ClassVar[TaskType] = TaskType.reduce

    dependency_result_uris: tuple[str, ...]
    prompt: str
    issue_id: str
    meeting: MeetingInfo
    generator: str
    generator_model: str
    attempt: int = 0
    metadata: dict[str, Any] | None = None
    retry_delay_ms_hint: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def task_id(self) -> str:
        return self.issue_id


TaskMessage = MapTask | ReduceTask


# =============================================================================
# PARSE
# =============================================================================
def parse_task_message(raw: str | bytes | dict[str, Any]) -> TaskMessage:
    """
    Разобрать сырое тело сообщения в типизированную задачу.
    """
    body = _load_body(raw)
    task_type = body.get("type")
    if task_type == TaskType.map.value:
        return _parse_map(body)
    if task_type == TaskType.reduce.value:
        return _parse_reduce(body)
    raise InvalidMessageError(
        "Неизвестный тип задачи", {"type": str(task_type)[:50] if task_type is not None else None}
    )


def _load_body(raw: str | bytes | dict[str, Any]) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidMessageError("Тело сообщения не UTF-8") from e
    if not isinstance(raw, str):
        raise InvalidMessageError("Тело сообщения должно быть JSON-строкой")
    try:
        body = json.loads(raw)
    except ValueError as e:
        raise InvalidMessageError("Тело сообщения не JSON", {"err": str(e)[:200]}) from e
    if not isinstance(body, dict):
        raise InvalidMessageError("Тело сообщения должно быть JSON-объектом")
    return body


def _parse_map(body: dict[str, Any]) -> MapTask:
    return MapTask(
        source_uri=_require_locator(body, "url"),
        result_uri=_require_locator(body, "result_url"),
        generator=_require_str(body, "llm"),
        generator_model=_require_str(body, "llmModel"),
        attempt=normalize_attempt(body.get("retryAttempts")),
        metadata=_optional_meta(body),
        retry_delay_ms_hint=_optional_delay_hint(body),
        extra={k: v for k, v in body.items() if k not in _MAP_KEYS},
    )


def _parse_reduce(body: dict[str, Any]) -> ReduceTask:
    raw_uris = body.get("chunk_result_urls")
    if not isinstance(raw_uris, list):
        raise InvalidMessageError("chunk_result_urls должен быть списком")
    uris = [u for u in raw_uris if isinstance(u, str)]
    if not uris:
        raise InvalidMessageError("chunk_result_urls пуст")
    for uri in uris:
        _check_locator("chunk_result_urls", uri)

    return ReduceTask(
        dependency_result_uris=tuple(uris),
        prompt=_require_str(body, "prompt"),
        issue_id=_require_str(body, "issueID"),
        meeting=_parse_meeting(body.get("meeting")),
        generator=_require_str(body, "llm"),
        generator_model=_require_str(body, "llmModel"),
        attempt=normalize_attempt(body.get("retryAttempts")),
        metadata=_optional_meta(body),
        retry_delay_ms_hint=_optional_delay_hint(body),
        extra={k: v for k, v in body.items() if k not in _REDUCE_KEYS},
    )


def _parse_meeting(value: Any) -> MeetingInfo:
    if not isinstance(value, dict):
        raise InvalidMessageError("meeting должен быть объектом")
    for key in ("nameOfMeeting", "nameOfHouse"):
        if not isinstance(value.get(key), str):
            raise InvalidMessageError("Некорректное поле meeting", {"field": key})
    speeches = _coerce_number(value.get("numberOfSpeeches"))
    if speeches is None:
        raise InvalidMessageError("Некорректное поле meeting", {"field": "numberOfSpeeches"})
    return MeetingInfo(
        issue_id=_require_str(value, "issueID", prefix="meeting."),
        meeting_name=value["nameOfMeeting"],
        house=value["nameOfHouse"],
        date=_require_str(value, "date", prefix="meeting."),
        speech_count=int(speeches) if float(speeches).is_integer() else speeches,
        extra={k: v for k, v in value.items() if k not in _MEETING_KEYS},
    )


def _require_str(body: dict[str, Any], key: str, *, prefix: str = "") -> str:
    value = body.get(key)
    if not isinstance(value, str) or not value.strip():
        raise InvalidMessageError("Обязательное поле отсутствует или пусто", {"field": prefix + key})
    return value


def _require_locator(body: dict[str, Any], key: str) -> str:
    value = body.get(key)
    if not isinstance(value, str):
        raise InvalidMessageError("Обязательное поле отсутствует или пусто", {"field": key})
    _check_locator(key, value)
    return value


def _check_locator(key: str, value: str) -> None:
    try:
        parse_locator(value)
    except InvalidLocatorError as e:
        raise InvalidMessageError("Некорректный локатор", {"field": key, "value": value[:200]}) from e


def _optional_meta(body: dict[str, Any]) -> dict[str, Any] | None:
    meta = body.get("meta")
    if meta is None:
        return None
    if not isinstance(meta, dict):
        raise InvalidMessageError("meta должен быть объектом")
    return meta


def _optional_delay_hint(body: dict[str, Any]) -> float | None:
    key = "retryMs_in" if "retryMs_in" in body else "delayMs"
    raw = body.get(key)
    if raw is None:
        return None
    value = _coerce_number(raw)
    if value is None or value < 0:
        raise InvalidMessageError("Некорректная подсказка задержки", {"field": key})
    return value


def _coerce_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        num = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            num = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return num if math.isfinite(num) else None


def normalize_attempt(value: Any) -> int:
    """
    Счётчик попыток: нечисло / отрицательное / отсутствует -> 0.
    """
    num = _coerce_number(value)
    if num is None or num < 0:
        return 0
    return int(math.floor(num))


# =============================================================================
# ENCODE
# =============================================================================
def encode_task(task: TaskMessage) -> dict[str, Any]:
    """
    Задача -> JSON-совместимый dict в формате провода.
    """
    if isinstance(task, MapTask):
        body: dict[str, Any] = {
            "type": TaskType.map.value,
            "url": task.source_uri,
            "result_url": task.result_uri,
            "llm": task.generator,
            "llmModel": task.generator_model,
            "retryAttempts": task.attempt,
        }
    else:
        body = {
            "type": TaskType.reduce.value,
            "chunk_result_urls": list(task.dependency_result_uris),
            "prompt": task.prompt,
            "issueID": task.issue_id,
            "meeting": {
                **task.meeting.extra,
                "issueID": task.meeting.issue_id,
                "nameOfMeeting": task.meeting.meeting_name,
                "nameOfHouse": task.meeting.house,
                "date": task.meeting.date,
                "numberOfSpeeches": task.meeting.speech_count,
            },
            "llm": task.generator,
            "llmModel": task.generator_model,
            "retryAttempts": task.attempt,
        }
    if task.metadata is not None:
        body["meta"] = task.metadata
    if task.retry_delay_ms_hint is not None:
        body["retryMs_in"] = task.retry_delay_ms_hint
    for key, value in task.extra.items():
        body.setdefault(key, value)
    return body


def dumps_task(task: TaskMessage) -> str:
    return json.dumps(encode_task(task), ensure_ascii=False)


def next_attempt(task: TaskMessage) -> TaskMessage:
    """
    Копия задачи с attempt + 1 (для повторной постановки).
    """
    return replace(task, attempt=task.attempt + 1)
