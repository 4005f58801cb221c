"""
Базовые типы для сервиса генерации.

Контракт:
- запрос = список сообщений + опции генерации
- результат = текст + сырые метаданные провайдера
- пустой список сообщений -> ValidationError (до вызова провайдера)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal

from recap_processor.common.errors import ValidationError

LLMRole = Literal["system", "user", "assistant"]


@dataclass(frozen=True)
class LLMMessage:
    role: LLMRole
    content: str


@dataclass
class GenerateRequest:
    messages: list[LLMMessage]
    temperature: float | None = None
    max_output_tokens: int | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop_sequences: list[str] = field(default_factory=list)

    @classmethod
    def single_user_turn(cls, content: str, **options: Any) -> GenerateRequest:
        return cls(messages=[LLMMessage(role="user", content=content)], **options)


@dataclass
class GenerateResult:
    """
    Результат генерации.
    """

    text: str
    raw: dict[str, Any] | None = None


class LLMProvider(ABC):
    """
    Интерфейс провайдера генерации.
    """

    name: str = "base"

    @abstractmethod
    def generate(self, request: GenerateRequest) -> GenerateResult:
        raise NotImplementedError


def ensure_messages(request: GenerateRequest) -> None:
    if not request.messages:
        raise ValidationError("Запрос генерации без сообщений")
