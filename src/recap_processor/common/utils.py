"""
Общие утилиты проекта.

Правила:
- сюда кладём только реально общие функции
- без бизнес-логики
"""

from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n(?P<body>.*?)\n?\s*```\s*$", re.DOTALL)


def err_head(err: BaseException, max_len: int = 200) -> str:
    return str(err)[:max_len]


def strip_code_fences(text: str) -> str:
    """
    LLM часто оборачивает JSON в ```json ... ```; снимаем обёртку.
    """
    m = _FENCE_RE.match(text or "")
    if m:
        return m.group("body")
    return text or ""


def parse_json_object(text: str) -> dict[str, Any] | None:
    """
    JSON-объект из текста или None (не объект / не JSON).
    """
    try:
        parsed = json.loads(strip_code_fences(text))
    except (TypeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def stable_key(value: Any) -> str:
    """
    Ключ для дедупликации по полному значению (порядок ключей не важен).
    """
    return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)
