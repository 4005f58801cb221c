from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import requests

from recap_processor.common.config import get_settings
from recap_processor.common.errors import ErrCode, ProviderError, UpstreamError
from recap_processor.common.logging import get_llm_logger
from recap_processor.queue.retry import parse_retry_after

from .base import GenerateRequest, GenerateResult, LLMProvider, ensure_messages

log = get_llm_logger()


@dataclass
class OpenAICompatConfig:
    """Настройки OpenAI-compatible API."""

    api_base: str
    api_key: str
    model: str
    timeout_s: float = 10.0


class OpenAICompatProvider(LLMProvider):
    """Провайдер генерации через OpenAI-compatible /chat/completions."""

    name = "openai_compat"

    def __init__(self, model: str, *, session: requests.Session | None = None) -> None:
        s = get_settings()
        api_base = s.openai_api_base or ""
        api_key = s.openai_api_key or ""

        if not api_base:
            raise ProviderError(ErrCode.LLM_PROVIDER_ERROR, "OPENAI_API_BASE не задан")
        if not api_key:
            raise ProviderError(ErrCode.LLM_PROVIDER_ERROR, "OPENAI_API_KEY не задан")

        self.cfg = OpenAICompatConfig(
            api_base=api_base,
            api_key=api_key,
            model=model,
            timeout_s=s.api_timeout_ms / 1000.0,
        )
        self.session = session or requests.Session()

    def _payload(self, request: GenerateRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.cfg.model,
            "messages": [{"role": m.role, "content": m.content} for m in request.messages],
        }
        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.max_output_tokens is not None:
            payload["max_tokens"] = request.max_output_tokens
        if request.top_p is not None:
            payload["top_p"] = request.top_p
        if request.stop_sequences:
            payload["stop"] = list(request.stop_sequences)
        return payload

    def generate(self, request: GenerateRequest) -> GenerateResult:
        ensure_messages(request)
        url = self.cfg.api_base.rstrip("/") + "/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.cfg.api_key}",
            "Content-Type": "application/json",
        }

        # Timeout / ConnectionError пробрасываем как есть: их классифицирует retry-политика
        resp = self.session.post(
            url, headers=headers, json=self._payload(request), timeout=self.cfg.timeout_s
        )

        if resp.status_code >= 400:
            log.warning(
                "llm_http_status",
                extra={
                    "payload": {
                        "provider": self.name,
                        "model": self.cfg.model,
                        "status": resp.status_code,
                    }
                },
            )
            raise UpstreamError(
                "LLM вернул ошибку",
                status=resp.status_code,
                retry_after_sec=parse_retry_after(resp.headers.get("Retry-After")),
                details={"text_head": resp.text[:500]},
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderError(
                ErrCode.LLM_PROVIDER_ERROR,
                "LLM вернул невалидный JSON",
                {"err": str(e), "text_head": resp.text[:500]},
            ) from e

        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(
                ErrCode.LLM_PROVIDER_ERROR,
                "Не удалось извлечь текст из ответа LLM",
                {"err": str(e), "data_head": str(data)[:500]},
            ) from e

        return GenerateResult(
            text=text or "",
            raw={"model": data.get("model"), "usage": data.get("usage")},
        )
