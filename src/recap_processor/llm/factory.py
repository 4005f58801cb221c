"""
Выбор провайдера генерации по полю llm сообщения.

Неизвестный генератор -> UnsupportedGeneratorError (сообщение дропается).
"""

from __future__ import annotations

from recap_processor.common.config import get_settings
from recap_processor.common.errors import UnsupportedGeneratorError

from .base import LLMProvider
from .gemini import GeminiProvider
from .mock import FakeLLMProvider
from .openai_compat import OpenAICompatProvider

SUPPORTED_GENERATORS = ("openai_compat", "gemini", "fake")


def ensure_supported(generator: str) -> str:
    name = (generator or "").strip().lower()
    if name not in SUPPORTED_GENERATORS:
        raise UnsupportedGeneratorError(generator)
    return name


def build_provider(generator: str, model: str) -> LLMProvider:
    name = ensure_supported(generator)
    if name == "fake":
        s = get_settings()
        return FakeLLMProvider(s.fake_llm_mode, canned_text=s.fake_llm_canned_text)
    if name == "gemini":
        return GeminiProvider(model)
    return OpenAICompatProvider(model)
