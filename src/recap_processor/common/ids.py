"""
Генерация идентификаторов.

Назначение:
- message_id для сообщений очереди
- receipt-токены для подтверждения доставки
"""

from __future__ import annotations

import secrets
from datetime import UTC, datetime


def new_event_id(prefix: str = "evt") -> str:
    """
    Идентификатор события (лог/очереди/трассировка).
    Формат: <prefix>_<UTCYYYYMMDDHHMMSS>_<rand>
    """
    ts = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
    rnd = secrets.token_hex(6)
    return f"{prefix}_{ts}_{rnd}"


def new_receipt_token() -> str:
    """Одноразовый токен получения сообщения."""
    return secrets.token_hex(12)
