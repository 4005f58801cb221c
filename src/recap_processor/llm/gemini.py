"""
Провайдер генерации через Google Gemini (google-genai SDK).

Соответствие ролей:
- system    -> system_instruction
- user      -> "user"
- assistant -> "model"

Ошибки API -> UpstreamError со статусом и retryDelay из тела ответа (429).
"""

from __future__ import annotations

import re
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from recap_processor.common.config import get_settings
from recap_processor.common.errors import ErrCode, ProviderError, UpstreamError
from recap_processor.common.logging import get_llm_logger

from .base import GenerateRequest, GenerateResult, LLMProvider, ensure_messages

log = get_llm_logger()

_RETRY_DELAY_RE = re.compile(r"retryDelay['\"]?\s*:\s*['\"](\d+(?:\.\d+)?)s['\"]")

_ROLES = {"user": "user", "assistant": "model"}


def parse_retry_delay(error: Exception) -> float | None:
    """Секунды из retryDelay ("17s") в деталях ошибки Gemini, если есть."""
    m = _RETRY_DELAY_RE.search(str(getattr(error, "details", None) or error))
    return float(m.group(1)) if m else None


class GeminiProvider(LLMProvider):
    name = "gemini"

    def __init__(self, model: str, *, client: Any = None) -> None:
        s = get_settings()
        if client is None:
            api_key = s.gemini_api_key or ""
            if not api_key:
                raise ProviderError(ErrCode.LLM_PROVIDER_ERROR, "GEMINI_API_KEY не задан")
            client = genai.Client(
                api_key=api_key,
                http_options=types.HttpOptions(timeout=s.api_timeout_ms),
            )
        self.model = model
        self.client = client

    def _contents(self, request: GenerateRequest) -> tuple[list[types.Content], str | None]:
        system: list[str] = []
        contents: list[types.Content] = []
        for m in request.messages:
            if m.role == "system":
                system.append(m.content)
                continue
            contents.append(types.Content(role=_ROLES[m.role], parts=[types.Part(text=m.content)]))
        return contents, ("\n\n".join(system) if system else None)

    def _config(self, request: GenerateRequest, system: str | None) -> types.GenerateContentConfig:
        options: dict[str, Any] = {
            "temperature": request.temperature,
            "max_output_tokens": request.max_output_tokens,
            "top_p": request.top_p,
            "top_k": request.top_k,
            "stop_sequences": list(request.stop_sequences) or None,
            "system_instruction": system,
        }
        return types.GenerateContentConfig(**{k: v for k, v in options.items() if v is not None})

    def generate(self, request: GenerateRequest) -> GenerateResult:
        ensure_messages(request)
        contents, system = self._contents(request)
        if not contents:
            raise ProviderError(
                ErrCode.LLM_PROVIDER_ERROR, "Gemini: нужен хотя бы один user/assistant message"
            )

        try:
            response = self.client.models.generate_content(
                model=self.model, contents=contents, config=self._config(request, system)
            )
        except genai_errors.APIError as e:
            log.warning(
                "llm_http_status",
                extra={"payload": {"provider": self.name, "model": self.model, "status": e.code}},
            )
            raise UpstreamError(
                "Gemini вернул ошибку",
                status=e.code,
                retry_after_sec=parse_retry_delay(e),
                details={"text_head": str(e)[:500]},
            ) from e

        text = (response.text or "").strip()
        if not text:
            raise ProviderError(ErrCode.LLM_PROVIDER_ERROR, "Gemini вернул пустой ответ")

        return GenerateResult(
            text=text,
            raw={"model": self.model, "usage": getattr(response, "usage_metadata", None)},
        )
