"""
Redis-клиент для очереди задач.

Назначение:
- единая точка подключения к Redis
- используется транспортом очереди, воркером и скриптами
"""

from __future__ import annotations

import redis

from recap_processor.common.config import get_settings

_clients: dict[str, redis.Redis] = {}


def redis_client(url: str | None = None) -> redis.Redis:
    """
    Singleton Redis client (по одному на URL, по умолчанию REDIS_URL).
    """
    url = url or get_settings().redis_url
    client = _clients.get(url)
    if client is None:
        client = _clients[url] = redis.Redis.from_url(url, decode_responses=True)
    return client
