from __future__ import annotations

import time
from collections.abc import Callable

from recap_processor.common.config import get_settings
from recap_processor.common.errors import CircuitOpenError, ErrCode, ProviderError
from recap_processor.common.logging import get_llm_logger
from recap_processor.common.metrics import LLM_CALLS_TOTAL, track_stage_latency
from recap_processor.common.time import TimeBudget
from recap_processor.common.utils import err_head
from recap_processor.queue.retry import RetryPolicy, classify_error

from .base import GenerateRequest, LLMProvider
from .circuit_breaker import CircuitBreaker
from .rate_limiter import TokenBucketRateLimiter

log = get_llm_logger()


class LLMOrchestrator:
    """Оркестратор вызовов генерации: circuit breaker -> rate limiter -> провайдер.

    Важная идея: здесь нет логики провайдера, только orchestration.
    Ретраи внутри процесса делаем, только пока бюджет времени сообщения позволяет;
    всё остальное решает повторная постановка в очередь.
    """

    def __init__(
        self,
        provider: LLMProvider,
        *,
        rate_limiter: TokenBucketRateLimiter,
        circuit_breaker: CircuitBreaker,
        retry_policy: RetryPolicy,
        retries: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provider = provider
        self.rate_limiter = rate_limiter
        self.circuit_breaker = circuit_breaker
        self.retry_policy = retry_policy
        self.s = get_settings()
        self.retries = self.s.llm_retries if retries is None else max(0, retries)
        self.sleep = sleep

    def _request(self, prompt: str) -> GenerateRequest:
        return GenerateRequest.single_user_turn(
            prompt,
            temperature=self.s.llm_temperature,
            max_output_tokens=self.s.llm_max_tokens,
            top_p=self.s.llm_top_p,
        )

    def _call_once(self, request: GenerateRequest) -> str:
        generator = self.provider.name
        try:
            self.circuit_breaker.before_call()
        except CircuitOpenError:
            LLM_CALLS_TOTAL.labels(generator=generator, result="circuit_open").inc()
            raise

        self.rate_limiter.acquire()
        try:
            with track_stage_latency("llm_generate"):
                result = self.provider.generate(request)
        except Exception as e:
            self.circuit_breaker.on_failure(err_head(e))
            LLM_CALLS_TOTAL.labels(generator=generator, result="error").inc()
            raise

        self.circuit_breaker.on_success()
        LLM_CALLS_TOTAL.labels(generator=generator, result="ok").inc()
        if not (result.text or "").strip():
            raise ProviderError(ErrCode.LLM_PROVIDER_ERROR, "LLM вернул пустой ответ")
        return result.text

    def generate_text(self, prompt: str, *, budget: TimeBudget | None = None) -> str:
        request = self._request(prompt)
        attempt = 0
        while True:
            attempt += 1
            try:
                return self._call_once(request)
            except CircuitOpenError:
                raise
            except Exception as e:
                cls = classify_error(e)
                if not cls.retryable or attempt > self.retries:
                    raise
                delay = self.retry_policy.pick_delay_seconds(attempt, cls.retry_after_sec)
                if budget is not None and not budget.has_remaining(
                    delay, reserve_ms=self.s.api_timeout_ms
                ):
                    raise
                log.warning(
                    "llm_retry_scheduled",
                    extra={
                        "payload": {
                            "generator": self.provider.name,
                            "attempt": attempt,
                            "delay_sec": round(delay, 3),
                            "status": cls.status,
                            "err": err_head(e),
                        }
                    },
                )
                self.sleep(delay)
