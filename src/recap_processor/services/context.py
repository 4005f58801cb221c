"""
Контекст обработки сообщений.

Все общие ресурсы процесса (очередь, хранилища, rate limiter, circuit breaker)
собраны в одном объекте и передаются явно, без глобального состояния.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

from recap_processor.common.config import Settings, get_settings
from recap_processor.llm.base import LLMProvider
from recap_processor.llm.circuit_breaker import CircuitBreaker
from recap_processor.llm.factory import build_provider
from recap_processor.llm.orchestrator import LLMOrchestrator
from recap_processor.llm.rate_limiter import TokenBucketRateLimiter
from recap_processor.queue.retry import RetryPolicy
from recap_processor.queue.transport import QueueTransport, RedisTaskQueue
from recap_processor.storage.blob import BlobStore, get_blob_store
from recap_processor.storage.db import get_session_factory
from recap_processor.storage.table import SqlTableStore, TableStore


@dataclass
class ProcessorContext:
    queue: QueueTransport
    blobs: BlobStore
    table: TableStore
    rate_limiter: TokenBucketRateLimiter
    circuit_breaker: CircuitBreaker
    retry_policy: RetryPolicy
    settings: Settings = field(default_factory=get_settings)
    provider_factory: Callable[[str, str], LLMProvider] = build_provider
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def from_settings(cls, s: Settings | None = None) -> ProcessorContext:
        s = s or get_settings()
        return cls(
            queue=RedisTaskQueue.from_settings(s),
            blobs=get_blob_store(s),
            table=SqlTableStore(get_session_factory(s.table_dsn)),
            rate_limiter=TokenBucketRateLimiter.from_settings(s),
            circuit_breaker=CircuitBreaker.from_settings(s),
            retry_policy=RetryPolicy.from_settings(s),
            settings=s,
        )

    def orchestrator(self, provider: LLMProvider) -> LLMOrchestrator:
        return LLMOrchestrator(
            provider,
            rate_limiter=self.rate_limiter,
            circuit_breaker=self.circuit_breaker,
            retry_policy=self.retry_policy,
            retries=self.settings.llm_retries,
            sleep=self.sleep,
        )
