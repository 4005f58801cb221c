"""
Fake LLM для тестов и dev.

Назначение:
- гонять пайплайн без реальных вызовов LLM
- предсказуемый результат (без случайности)
- инъекция отказа после N вызовов (fail_after_calls)

Режимы: echo | canned | template | script.
"""

from __future__ import annotations

import re
import threading
import time
from collections.abc import Callable

from recap_processor.common.errors import ErrCode, ProviderError

from .base import GenerateRequest, GenerateResult, LLMMessage, LLMProvider, ensure_messages

FAKE_MODES = {"echo", "canned", "template", "script"}

_TEMPLATE_VAR_RE = re.compile(r"{{\s*([a-zA-Z][a-zA-Z0-9_]*)\s*}}")
_TOKEN_SPLIT_RE = re.compile(r"\s+")


class FakeLLMProvider(LLMProvider):
    name = "fake"

    def __init__(
        self,
        mode: str = "echo",
        *,
        canned_text: str = "",
        template: str | None = None,
        script: Callable[[GenerateRequest], str] | None = None,
        delay_ms: int = 0,
        fail_after_calls: int | None = None,
    ) -> None:
        if mode not in FAKE_MODES:
            raise ValueError(f"unknown fake llm mode: {mode}")
        self.mode = mode
        self.canned_text = canned_text
        self.template = template
        self.script = script
        self.delay_ms = max(0, int(delay_ms))
        self.fail_after_calls = fail_after_calls
        self.call_count = 0
        self._lock = threading.Lock()

    def generate(self, request: GenerateRequest) -> GenerateResult:
        ensure_messages(request)
        with self._lock:
            self.call_count += 1
            call_no = self.call_count
        if self.fail_after_calls and call_no > self.fail_after_calls:
            raise ProviderError(
                ErrCode.LLM_PROVIDER_ERROR,
                "Fake LLM forced failure",
                {"call": call_no},
            )

        text = self._produce(request)
        text = _apply_stop_sequences(text, request.stop_sequences)
        text = _apply_max_tokens(text, request.max_output_tokens)

        if self.delay_ms:
            time.sleep(self.delay_ms / 1000.0)

        return GenerateResult(
            text=text,
            raw={
                "mode": self.mode,
                "call_count": call_no,
                "max_output_tokens": request.max_output_tokens,
                "stop_sequences": list(request.stop_sequences) or None,
                "delay_ms": self.delay_ms,
            },
        )

    def _produce(self, request: GenerateRequest) -> str:
        msgs = request.messages
        if self.mode == "canned":
            return self.canned_text or ""
        if self.mode == "template":
            return _render(self.template or "{{lastUser}}", msgs)
        if self.mode == "script" and self.script is not None:
            return self.script(request) or ""
        last = _last_by_role(msgs, "user") or msgs[-1]
        return last.content or ""


def _last_by_role(msgs: list[LLMMessage], role: str) -> LLMMessage | None:
    for m in reversed(msgs):
        if m.role == role:
            return m
    return None


def _render(template: str, msgs: list[LLMMessage]) -> str:
    def joined(role: str) -> str:
        return "\n".join(m.content for m in msgs if m.role == role)

    def last(role: str) -> str:
        m = _last_by_role(msgs, role)
        return m.content if m else ""

    variables = {
        "system": joined("system"),
        "user": joined("user"),
        "assistant": joined("assistant"),
        "lastSystem": last("system"),
        "lastUser": last("user"),
        "lastAssistant": last("assistant"),
        "transcript": "\n".join(f"{m.role.upper()}: {m.content}" for m in msgs),
    }
    return _TEMPLATE_VAR_RE.sub(lambda m: variables.get(m.group(1), ""), template)


def _apply_stop_sequences(text: str, stops: list[str] | None) -> str:
    if not text or not stops:
        return text
    for stop in stops:
        if not stop:
            continue
        idx = text.find(stop)
        if idx >= 0:
            text = text[:idx]
    return text


def _apply_max_tokens(text: str, max_tokens: int | None) -> str:
    # грубая оценка: токен = кусок между пробелами
    if not text or not max_tokens or max_tokens <= 0:
        return text
    tokens = [t for t in _TOKEN_SPLIT_RE.split(text) if t]
    if len(tokens) <= max_tokens:
        return text
    return " ".join(tokens[:max_tokens])
