"""
Централизованная конфигурация процессора (ENV / .env).

Важно:
- настройки читаются из .env и переменных окружения
- типизированные значения через pydantic-settings
- минимальные значения зажимаются при старте, а не в местах использования
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import Field, TypeAdapter, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Runtime
    # -------------------------------------------------------------------------
    app_env: str = Field(default="dev", alias="APP_ENV")
    service_name: str = Field(default="worker-recap", alias="SERVICE_NAME")
    metrics_port: int = Field(default=0, alias="METRICS_PORT")  # 0 = не поднимать

    # -------------------------------------------------------------------------
    # Queue (Redis)
    # -------------------------------------------------------------------------
    redis_url: str = Field(default="redis://redis:6379/0", alias="REDIS_URL")
    queue_name: str = Field(default="q:recap", alias="QUEUE_NAME")
    queue_batch_size: int = Field(default=1, alias="QUEUE_BATCH_SIZE")
    queue_visibility_timeout_sec: int = Field(default=300, alias="QUEUE_VISIBILITY_TIMEOUT_SEC")
    queue_max_receive_count: int = Field(default=10, alias="QUEUE_MAX_RECEIVE_COUNT")
    queue_poll_interval_sec: float = Field(default=2.0, alias="QUEUE_POLL_INTERVAL_SEC")

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------
    table_dsn: str = Field(default="sqlite:///./data/recap.db", alias="TABLE_DSN")
    table_name: str = Field(default="recap_items", alias="TABLE_NAME")
    storage_mode: str = Field(default="local_fs", alias="STORAGE_MODE")  # local_fs|s3
    blob_root_dir: str = Field(default="./data/blobs", alias="BLOB_ROOT_DIR")
    aws_region: str = Field(default="ap-northeast-3", alias="AWS_REGION")
    aws_endpoint_url: str | None = Field(default=None, alias="AWS_ENDPOINT_URL")
    record_month_utc_offset_hours: int = Field(default=0, alias="RECORD_MONTH_UTC_OFFSET_HOURS")

    # -------------------------------------------------------------------------
    # Rate limit / retry / timeouts
    # -------------------------------------------------------------------------
    rate_limit_rps: float = Field(default=5.0, alias="RATE_LIMIT_RPS")
    rate_limit_burst: float | None = Field(default=None, alias="RATE_LIMIT_BURST")
    backoff_base_seconds: float = Field(default=1.0, alias="BACKOFF_BASE_SECONDS")
    backoff_cap_seconds: float = Field(default=60.0, alias="BACKOFF_CAP_SECONDS")
    max_attempts: int = Field(default=5, alias="MAX_ATTEMPTS")
    api_timeout_ms: int = Field(default=10_000, alias="API_TIMEOUT_MS")
    overall_timeout_ms: int = Field(default=45_000, alias="OVERALL_TIMEOUT_MS")
    map_retry_delay_sec: int = Field(default=30, alias="MAP_RETRY_DELAY_SEC")

    # -------------------------------------------------------------------------
    # Circuit breaker (состояние живёт только в процессе)
    # -------------------------------------------------------------------------
    circuit_breaker_failure_threshold: int = Field(
        default=5, alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD"
    )
    circuit_breaker_min_requests: int = Field(default=5, alias="CIRCUIT_BREAKER_MIN_REQUESTS")
    circuit_breaker_cooldown_seconds: int = Field(
        default=60, alias="CIRCUIT_BREAKER_COOLDOWN_SECONDS"
    )
    circuit_breaker_half_open_max_calls: int = Field(
        default=1, alias="CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS"
    )

    # -------------------------------------------------------------------------
    # LLM (OpenAI-compatible, Gemini)
    # -------------------------------------------------------------------------
    openai_api_base: str | None = Field(default=None, alias="OPENAI_API_BASE")
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    gemini_api_key: str | None = Field(default=None, alias="GEMINI_API_KEY")
    llm_temperature: float | None = Field(default=None, alias="LLM_TEMPERATURE")
    llm_max_tokens: int | None = Field(default=None, alias="LLM_MAX_TOKENS")
    llm_top_p: float | None = Field(default=None, alias="LLM_TOP_P")
    llm_retries: int = Field(default=2, alias="LLM_RETRIES")
    fake_llm_mode: str = Field(default="echo", alias="FAKE_LLM_MODE")  # echo|canned|template
    fake_llm_canned_text: str = Field(default="", alias="FAKE_LLM_CANNED_TEXT")

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")  # json|text

    @field_validator("rate_limit_rps")
    @classmethod
    def _min_rps(cls, v: float) -> float:
        return max(1.0, float(v))

    @field_validator("backoff_base_seconds")
    @classmethod
    def _min_backoff_base(cls, v: float) -> float:
        return max(0.1, float(v))

    @field_validator("max_attempts", "queue_batch_size", "queue_max_receive_count")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        return max(1, int(v))

    @field_validator("api_timeout_ms")
    @classmethod
    def _min_api_timeout(cls, v: int) -> int:
        return max(100, int(v))

    @field_validator(
        "circuit_breaker_failure_threshold",
        "circuit_breaker_min_requests",
        "circuit_breaker_cooldown_seconds",
        "circuit_breaker_half_open_max_calls",
    )
    @classmethod
    def _cb_min(cls, v: int) -> int:
        return max(1, int(v))

    @model_validator(mode="after")
    def _align_dependent_limits(self) -> Settings:
        # burst по умолчанию равен rps; cap не может быть меньше base
        if self.rate_limit_burst is None:
            self.rate_limit_burst = self.rate_limit_rps
        self.rate_limit_burst = max(1.0, float(self.rate_limit_burst))
        self.backoff_cap_seconds = max(self.backoff_base_seconds, float(self.backoff_cap_seconds))
        self.overall_timeout_ms = max(self.api_timeout_ms + 1_000, int(self.overall_timeout_ms))
        return self

    def model_post_init(self, __context) -> None:
        _apply_file_overrides(self)


def _file_override_targets() -> dict[str, str]:
    targets: dict[str, str] = {}
    for name, info in Settings.model_fields.items():
        targets[f"{(info.alias or name).upper()}_FILE"] = name
    return targets


def _apply_file_overrides(settings: Settings) -> None:
    """
    <ENV>_FILE (docker secrets, например OPENAI_API_KEY_FILE): значение из файла.

    Значение проходит ту же типизацию, что и обычная переменная окружения.
    """
    targets = _file_override_targets()
    for env_key, path in os.environ.items():
        name = targets.get(env_key)
        file_path = (path or "").strip()
        if name is None or not file_path:
            continue
        try:
            raw = Path(file_path).read_text(encoding="utf-8").strip()
        except OSError as e:
            logging.getLogger("recap-processor").error(
                "config_file_read_failed",
                extra={"payload": {"env_key": env_key, "path": file_path, "err": str(e)[:200]}},
            )
            raise RuntimeError(f"Failed to read {env_key} from {file_path}") from e
        annotation = Settings.model_fields[name].annotation
        setattr(settings, name, TypeAdapter(annotation).validate_python(raw))


_SETTINGS = Settings()


def get_settings() -> Settings:
    return _SETTINGS
