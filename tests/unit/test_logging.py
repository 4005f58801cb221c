from __future__ import annotations

import json
import logging

from recap_processor.common.logging import JsonFormatter, TextFormatter


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("recap-processor", logging.WARNING, __file__, 1, "task_requeued", None, None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def test_json_formatter_emits_event_and_payload() -> None:
    line = JsonFormatter(service="worker-recap", env="test").format(
        _record(payload={"message_id": "m-1", "delay_sec": 30, "issue": "会議録"})
    )
    entry = json.loads(line)
    assert entry["event"] == "task_requeued"
    assert entry["level"] == "WARNING"
    assert entry["service"] == "worker-recap"
    assert entry["env"] == "test"
    assert entry["ts"].endswith("Z")
    assert entry["payload"] == {"message_id": "m-1", "delay_sec": 30, "issue": "会議録"}
    assert "会議録" in line


def test_text_formatter_appends_payload() -> None:
    line = TextFormatter().format(_record(payload={"attempt": 2}))
    assert "task_requeued" in line
    assert line.endswith('{"attempt": 2}')
