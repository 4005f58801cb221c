"""
Единые ошибки и коды ошибок.

Назначение:
- предсказуемые коды для очереди, хранилищ и провайдеров генерации
- единый стиль исключений по проекту
- явная классификация: что дропаем, что ретраим
"""

from __future__ import annotations

from dataclasses import dataclass


class ErrCode:
    # Общие
    UNKNOWN = "unknown"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"

    # Контракты очереди
    INVALID_MESSAGE = "invalid_message"
    UNSUPPORTED_GENERATOR = "unsupported_generator"
    STALE_RECEIPT = "stale_receipt"

    # Данные
    INVALID_DATE = "invalid_date"
    INVALID_RECORD = "invalid_record"
    INVALID_LOCATOR = "invalid_locator"

    # Провайдеры
    LLM_PROVIDER_ERROR = "llm_provider_error"
    UPSTREAM_ERROR = "upstream_error"
    CIRCUIT_OPEN = "circuit_open"

    # Инфра/хранилища
    REDIS_ERROR = "redis_error"
    STORAGE_ERROR = "storage_error"
    TABLE_ERROR = "table_error"


@dataclass
class AppError(Exception):
    """
    Базовая ошибка приложения.
    - code: стабильный код ошибки
    - message: безопасное сообщение
    - details: доп. данные (без секретов)
    """

    code: str
    message: str
    details: dict | None = None

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.code}: {self.message}"


class ValidationError(AppError):
    def __init__(self, message: str = "Ошибка валидации", details: dict | None = None) -> None:
        super().__init__(ErrCode.VALIDATION, message, details)


class NotFoundError(AppError):
    def __init__(self, message: str = "Не найдено", details: dict | None = None) -> None:
        super().__init__(ErrCode.NOT_FOUND, message, details)


class InvalidMessageError(AppError):
    """
    Сообщение очереди никогда не станет валидным: дропаем, не ретраим.
    """

    def __init__(
        self, message: str = "Некорректное сообщение задачи", details: dict | None = None
    ) -> None:
        super().__init__(ErrCode.INVALID_MESSAGE, message, details)


class UnsupportedGeneratorError(AppError):
    def __init__(self, generator: str) -> None:
        super().__init__(
            ErrCode.UNSUPPORTED_GENERATOR,
            "Неподдерживаемый генератор",
            {"generator": generator},
        )


class InvalidLocatorError(ValidationError):
    def __init__(self, locator: object) -> None:
        super().__init__("Некорректный локатор blob", {"locator": str(locator)[:200]})
        self.code = ErrCode.INVALID_LOCATOR


class InvalidDateError(AppError):
    def __init__(self, value: object, reason: str = "unparseable") -> None:
        super().__init__(
            ErrCode.INVALID_DATE,
            "Не удалось нормализовать дату",
            {"value": str(value)[:100], "reason": reason},
        )


class InvalidRecordError(AppError):
    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(ErrCode.INVALID_RECORD, message, details)


class BlobNotFoundError(NotFoundError):
    def __init__(self, locator: str) -> None:
        super().__init__("Blob не найден", {"locator": locator})


class StaleReceiptError(AppError):
    def __init__(self, receipt: str) -> None:
        super().__init__(
            ErrCode.STALE_RECEIPT,
            "Квитанция сообщения устарела (сообщение уже передоставлено)",
            {"receipt": receipt},
        )


class ProviderError(AppError):
    def __init__(self, code: str, message: str, details: dict | None = None) -> None:
        super().__init__(code, message, details)


class UpstreamError(ProviderError):
    """
    Ошибка внешнего сервиса с HTTP-статусом и (опционально) retry-after.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        retry_after_sec: float | None = None,
        retryable: bool | None = None,
        details: dict | None = None,
    ) -> None:
        payload = dict(details or {})
        if status is not None:
            payload["status"] = status
        if retry_after_sec is not None:
            payload["retry_after_sec"] = retry_after_sec
        super().__init__(ErrCode.UPSTREAM_ERROR, message, payload)
        self.status = status
        self.retry_after_sec = retry_after_sec
        self.retryable = retryable


class CircuitOpenError(ProviderError):
    def __init__(self, *, retry_after_sec: float, consecutive_failures: int) -> None:
        super().__init__(
            ErrCode.CIRCUIT_OPEN,
            "LLM circuit breaker is open",
            {
                "retry_after_sec": retry_after_sec,
                "consecutive_failures": consecutive_failures,
            },
        )
        self.retry_after_sec = retry_after_sec
        self.retryable = True
