from __future__ import annotations

import pytest

from recap_processor.common.config import Settings


def test_minimums_are_clamped(monkeypatch) -> None:
    monkeypatch.setenv("RATE_LIMIT_RPS", "0")
    monkeypatch.setenv("BACKOFF_BASE_SECONDS", "5")
    monkeypatch.setenv("BACKOFF_CAP_SECONDS", "2")
    monkeypatch.setenv("MAX_ATTEMPTS", "0")
    monkeypatch.setenv("API_TIMEOUT_MS", "20000")
    monkeypatch.setenv("OVERALL_TIMEOUT_MS", "1000")

    s = Settings()

    assert s.rate_limit_rps == 1.0
    assert s.rate_limit_burst == 1.0
    assert s.backoff_cap_seconds == 5.0
    assert s.max_attempts == 1
    assert s.overall_timeout_ms == 21_000


def test_file_overrides_are_typed(tmp_path, monkeypatch) -> None:
    key_file = tmp_path / "openai_key"
    key_file.write_text("sk-from-file\n", encoding="utf-8")
    delay_file = tmp_path / "delay"
    delay_file.write_text("45", encoding="utf-8")
    monkeypatch.setenv("OPENAI_API_KEY_FILE", str(key_file))
    monkeypatch.setenv("MAP_RETRY_DELAY_SEC_FILE", str(delay_file))

    s = Settings()

    assert s.openai_api_key == "sk-from-file"
    assert s.map_retry_delay_sec == 45


def test_unreadable_override_file_fails_startup(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY_FILE", str(tmp_path / "missing"))
    with pytest.raises(RuntimeError):
        Settings()
