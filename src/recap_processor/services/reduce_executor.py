"""
Reduce-задача: результаты map-чанков -> итоговая запись -> single-table хранилище.

Алгоритм:
1) все зависимости должны существовать (exists, не fetch); иначе повторная
   постановка без вызова генератора (reduce мог обогнать медленный map)
2) чтение результатов чанков, сборка промпта
3) один вызов генерации
4) разбор JSON ответа (невалидный -> пустая частичная запись)
5) слияние с массивами из чанков, запись в хранилище, ack

Задержка повтора: подсказка из сообщения, если есть, иначе backoff политики.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from recap_processor.common.logging import get_project_logger
from recap_processor.common.metrics import QUEUE_TASKS_TOTAL, track_stage_latency
from recap_processor.common.time import TimeBudget
from recap_processor.common.utils import err_head, parse_json_object
from recap_processor.contracts.tasks import ReduceTask
from recap_processor.domain.records import (
    ARRAY_FIELDS,
    PartialRecord,
    build_record,
    collect_array_field,
)
from recap_processor.llm.orchestrator import LLMOrchestrator
from recap_processor.queue.protocol import AckOutcome, acknowledge, requeue_with_delay
from recap_processor.queue.retry import RetryPolicy, classify_error, pick_requeue_delay_seconds
from recap_processor.queue.transport import QueueMessage
from recap_processor.storage.blob import BlobStore, get_json
from recap_processor.storage.writer import store_record

from .context import ProcessorContext

log = get_project_logger()

NONE_PROVIDED = "(none provided)"


def reduce_delay_seconds(
    task: ReduceTask, policy: RetryPolicy, err: BaseException | None = None
) -> float:
    if task.retry_delay_ms_hint is not None:
        return pick_requeue_delay_seconds(task.retry_delay_ms_hint)
    retry_after = classify_error(err).retry_after_sec if err is not None else None
    return policy.pick_delay_seconds(task.attempt + 1, retry_after)


def find_missing(blobs: BlobStore, uris: Sequence[str]) -> list[str]:
    return [uri for uri in uris if not blobs.exists(uri)]


def _as_chunk_result(value: Any) -> dict[str, Any]:
    if isinstance(value, str):
        return {"middleSummary": value}
    if not isinstance(value, dict):
        return {}
    if "middleSummary" not in value and "summaryPoints" in value:
        return {**value, "middleSummary": value["summaryPoints"]}
    return value


def load_chunk_results(blobs: BlobStore, uris: Sequence[str]) -> list[dict[str, Any]]:
    return [_as_chunk_result(get_json(blobs, uri)) for uri in uris]


def _strings(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [v for v in value if isinstance(v, str)]
    return []


def build_reduce_prompt(task: ReduceTask, chunks: Sequence[dict[str, Any]]) -> str:
    summaries: list[str] = []
    participants: list[str] = []
    for chunk in chunks:
        summaries.extend(_strings(chunk.get("middleSummary")))
        raw = chunk.get("participants")
        # строка или число вместо списка не перечисляются
        for p in raw if isinstance(raw, list) else []:
            if isinstance(p, str):
                participants.append(p)
            elif isinstance(p, dict) and isinstance(p.get("name"), str):
                participants.append(p["name"])

    m = task.meeting
    lines = [
        task.prompt,
        "",
        f"Meeting: {m.meeting_name} ({m.house}) on {m.date}",
        f"Issue ID: {task.issue_id}",
        f"Chunks received: {len(chunks)} / {len(task.dependency_result_uris)}",
        "",
        "Participants:",
        *(participants or [NONE_PROVIDED]),
        "",
        "Chunk Summaries:",
        *(summaries or [NONE_PROVIDED]),
    ]
    return "\n".join(lines)


def _requeue(
    ctx: ProcessorContext,
    message: QueueMessage,
    task: ReduceTask,
    err: BaseException | None,
    reason: str,
) -> AckOutcome:
    return requeue_with_delay(
        ctx.queue,
        message,
        task,
        reduce_delay_seconds(task, ctx.retry_policy, err),
        max_attempts=ctx.settings.max_attempts,
        reason=reason,
    )


def execute_reduce(
    ctx: ProcessorContext, message: QueueMessage, task: ReduceTask, llm: LLMOrchestrator
) -> AckOutcome:
    budget = TimeBudget(ctx.settings.overall_timeout_ms)
    uris = list(dict.fromkeys(task.dependency_result_uris))
    log_base = {"message_id": message.message_id, "issue_id": task.issue_id, "attempt": task.attempt}

    try:
        missing = find_missing(ctx.blobs, uris)
    except Exception as e:
        log.warning("reduce_dependency_check_failed", extra={"payload": {**log_base, "err": err_head(e)}})
        return _requeue(ctx, message, task, e, err_head(e))

    if missing:
        log.info(
            "reduce_dependencies_missing",
            extra={"payload": {**log_base, "missing": missing[:20], "missing_count": len(missing)}},
        )
        QUEUE_TASKS_TOTAL.labels(task_type="reduce", result="deferred").inc()
        return _requeue(ctx, message, task, None, "missing_dependencies")

    try:
        with track_stage_latency("reduce_load"):
            chunks = load_chunk_results(ctx.blobs, uris)
        prompt = build_reduce_prompt(task, chunks)
        log.info("reduce_ready_for_llm", extra={"payload": {**log_base, "prompt_len": len(prompt)}})

        text = llm.generate_text(prompt, budget=budget)

        base = PartialRecord.from_dict(parse_json_object(text))
        extras = {name: collect_array_field(chunks, name) for name in ARRAY_FIELDS}
        record = build_record(
            base,
            extras,
            issue_id=task.meeting.issue_id,
            meeting_name=task.meeting.meeting_name,
            house=task.meeting.house,
            meeting_date=task.meeting.date,
            meeting_session=task.meeting.session,
            month_offset_hours=ctx.settings.record_month_utc_offset_hours,
        )
        result = store_record(
            ctx.table,
            record,
            month_offset_hours=ctx.settings.record_month_utc_offset_hours,
            sleep=ctx.sleep,
        )
    except Exception as e:
        log.warning("reduce_task_failed", extra={"payload": {**log_base, "err": err_head(e)}})
        return _requeue(ctx, message, task, e, err_head(e))

    outcome = acknowledge(ctx.queue, message, task)
    QUEUE_TASKS_TOTAL.labels(task_type="reduce", result="acked").inc()
    log.info(
        "reduce_task_done",
        extra={
            "payload": {
                **log_base,
                "record_id": result.id,
                "index_rows": result.index_rows,
                "elapsed_ms": int(budget.elapsed_ms()),
            }
        },
    )
    return outcome
