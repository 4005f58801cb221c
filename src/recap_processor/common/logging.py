"""
Логирование процессора.

- одна строка JSON на событие в stdout (контейнер / lambda-friendly)
- LOG_FORMAT=text для локальной отладки
- имя события в msg, структурные поля через extra={"payload": {...}}
- каждая запись помечена service/env, чтобы различать воркеры в общем потоке логов
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from recap_processor.common.config import get_settings

_NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "s3transfer")


class JsonFormatter(logging.Formatter):
    def __init__(self, *, service: str, env: str) -> None:
        super().__init__()
        self.service = service
        self.env = env

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, UTC)
        entry: dict[str, Any] = {
            "ts": ts.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "service": self.service,
            "env": self.env,
            "logger": record.name,
            "event": record.getMessage(),
        }
        payload = getattr(record, "payload", None)
        if isinstance(payload, dict):
            entry["payload"] = payload
        if record.exc_info:
            entry["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Читаемый формат: payload дописывается после имени события."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        payload = getattr(record, "payload", None)
        if isinstance(payload, dict) and payload:
            line += " " + json.dumps(payload, ensure_ascii=False, default=str)
        return line


def setup_logging() -> None:
    s = get_settings()
    root = logging.getLogger()
    level = getattr(logging, (s.log_level or "INFO").upper(), logging.INFO)
    root.setLevel(level)

    # повторный вызов (тесты, перезапуск цикла) не добавляет хэндлеры
    if root.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if (s.log_format or "").lower() == "text":
        handler.setFormatter(TextFormatter())
    else:
        handler.setFormatter(JsonFormatter(service=s.service_name, env=s.app_env))
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_project_logger(name: str = "recap-processor") -> logging.Logger:
    return logging.getLogger(name)


def get_llm_logger() -> logging.Logger:
    """
    Логгер вызовов генерации: circuit breaker, ретраи, HTTP-статусы провайдера.
    """
    return logging.getLogger("recap-processor.llm")
