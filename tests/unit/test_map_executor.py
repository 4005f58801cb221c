from __future__ import annotations

import json
from dataclasses import replace

from recap_processor.common.config import get_settings
from recap_processor.common.errors import UpstreamError
from recap_processor.contracts.tasks import MapTask, parse_task_message
from recap_processor.llm.circuit_breaker import CircuitBreaker
from recap_processor.llm.mock import FakeLLMProvider
from recap_processor.llm.rate_limiter import TokenBucketRateLimiter
from recap_processor.queue.protocol import AckOutcome
from recap_processor.queue.retry import RetryPolicy
from recap_processor.queue.transport import QueueMessage
from recap_processor.services.context import ProcessorContext
from recap_processor.services.map_executor import chunk_result_value, execute_map
from recap_processor.storage.blob import LocalBlobStore, get_json, get_text


class _FakeQueue:
    def __init__(self) -> None:
        self.published: list[tuple[str, int]] = []
        self.deleted: list[str] = []
        self.extended: list[tuple[str, int]] = []

    def publish(self, body: str, delay_sec: int = 0) -> str:
        self.published.append((body, delay_sec))
        return f"m-{len(self.published)}"

    def delete(self, receipt: str) -> None:
        self.deleted.append(receipt)

    def change_visibility(self, receipt: str, timeout_sec: int) -> None:
        self.extended.append((receipt, timeout_sec))

    def receive(self, max_messages: int = 1, visibility_timeout_sec: int | None = None):
        return []


def _ctx(tmp_path, llm: FakeLLMProvider, **overrides) -> ProcessorContext:
    settings = get_settings().model_copy(update={"llm_retries": 0, "map_retry_delay_sec": 30, **overrides})
    return ProcessorContext(
        queue=_FakeQueue(),
        blobs=LocalBlobStore(tmp_path),
        table=None,
        rate_limiter=TokenBucketRateLimiter(1000, 1000),
        circuit_breaker=CircuitBreaker(),
        retry_policy=RetryPolicy(),
        settings=settings,
        provider_factory=lambda generator, model: llm,
        sleep=lambda _: None,
    )


TASK = MapTask(
    source_uri="s3://minutes/issue-1/chunk-001.txt",
    result_uri="s3://minutes/issue-1/chunk-001.json",
    generator="fake",
    generator_model="fake-model",
)
MESSAGE = QueueMessage(message_id="m-0", receipt="m-0|r", body="{}")


def _unavailable(request):
    raise UpstreamError("upstream down", status=400)


def test_chunk_result_value() -> None:
    assert chunk_result_value('{"middleSummary": ["a"]}') == {"middleSummary": ["a"]}
    assert chunk_result_value("```json\n{\"x\": 1}\n```") == {"x": 1}
    assert chunk_result_value("[1, 2]") == "[1, 2]"
    assert chunk_result_value("просто текст") == "просто текст"


def test_map_writes_result_and_acks(tmp_path) -> None:
    llm = FakeLLMProvider("canned", canned_text='{"middleSummary": ["予算の審議"], "participants": ["佐藤"]}')
    ctx = _ctx(tmp_path, llm)
    ctx.blobs.put(TASK.source_uri, "委員長 ただいまから会議を開きます。".encode())

    outcome = execute_map(ctx, MESSAGE, TASK, ctx.orchestrator(llm))

    assert outcome is AckOutcome.acked
    assert ctx.queue.deleted == ["m-0|r"]
    assert ctx.queue.published == []
    assert get_json(ctx.blobs, TASK.result_uri) == {"middleSummary": ["予算の審議"], "participants": ["佐藤"]}


def test_map_echo_stores_plain_text_as_json_string(tmp_path) -> None:
    llm = FakeLLMProvider("echo")
    ctx = _ctx(tmp_path, llm)
    ctx.blobs.put(TASK.source_uri, "本文".encode())

    execute_map(ctx, MESSAGE, TASK, ctx.orchestrator(llm))

    assert get_text(ctx.blobs, TASK.result_uri) == '"本文"'


def test_map_missing_source_requeues_with_fixed_delay(tmp_path) -> None:
    llm = FakeLLMProvider("echo")
    ctx = _ctx(tmp_path, llm)

    outcome = execute_map(ctx, MESSAGE, TASK, ctx.orchestrator(llm))

    assert outcome is AckOutcome.acked
    assert llm.call_count == 0
    (body, delay), = ctx.queue.published
    assert delay == 30
    assert parse_task_message(body).attempt == 1
    assert ctx.queue.deleted == ["m-0|r"]
    assert not ctx.blobs.exists(TASK.result_uri)


def test_map_generation_failure_requeues(tmp_path) -> None:
    llm = FakeLLMProvider("script", script=_unavailable)
    ctx = _ctx(tmp_path, llm, map_retry_delay_sec=45)
    ctx.blobs.put(TASK.source_uri, "本文".encode())

    execute_map(ctx, MESSAGE, TASK, ctx.orchestrator(llm))

    (body, delay), = ctx.queue.published
    assert delay == 45
    assert json.loads(body)["retryAttempts"] == 1


def test_map_exhausted_attempts_extend_visibility(tmp_path) -> None:
    llm = FakeLLMProvider("echo")
    ctx = _ctx(tmp_path, llm, max_attempts=3)
    task = replace(TASK, attempt=3)

    outcome = execute_map(ctx, MESSAGE, task, ctx.orchestrator(llm))

    assert outcome is AckOutcome.extended
    assert ctx.queue.published == []
    assert ctx.queue.deleted == []
    assert ctx.queue.extended == [("m-0|r", 30)]
