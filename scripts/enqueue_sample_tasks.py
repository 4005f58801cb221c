#!/usr/bin/env python3
"""Загрузить тексты чанков в blob-хранилище и поставить map + reduce задачи."""

from __future__ import annotations

import argparse
import os
import sys
from datetime import UTC, datetime
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

SAMPLE_CHUNKS = [
    "佐藤なおみ委員長: 助成金の執行を追跡するダッシュボードの必要性を提起します。\n"
    "伊藤けん議員: STEM助成の交付が遅い理由と改善計画の説明を求めます。",
    "林りこ副大臣: 報告経路に滞りがあると認め、隔週で進捗を公開します。\n"
    "佐藤なおみ委員長: 次回までに公開様式の案を提出してください。",
]

CHUNK_PROMPT = (
    "Summarize the following part of parliamentary minutes as JSON with keys "
    "middleSummary, participants, dialogs, terms, keywords."
)
REDUCE_PROMPT = (
    "Combine the chunk summaries into one article JSON with keys title, imageKind, "
    "session, categories, description, summary, soft_summary, middle_summary, "
    "dialogs, participants, keywords, terms."
)


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Enqueue sample map/reduce recap tasks")
    p.add_argument("chunks", nargs="*", help="Text files with chunk contents (default: built-in sample)")
    p.add_argument("--issue-id", default=os.getenv("SAMPLE_ISSUE_ID") or f"sample-{datetime.now(UTC):%Y%m%d%H%M%S}")
    p.add_argument("--bucket", default=os.getenv("SAMPLE_BUCKET", "recap-sample"))
    p.add_argument("--scheme", default=None, help="Locator scheme (default: s3 for STORAGE_MODE=s3, else local)")
    p.add_argument("--llm", default=os.getenv("SAMPLE_LLM", "fake"))
    p.add_argument("--llm-model", default=os.getenv("SAMPLE_LLM_MODEL", "fake-model"))
    p.add_argument("--house", default="衆議院")
    p.add_argument("--meeting", default="教育近代化に関する特別委員会")
    p.add_argument("--date", default=datetime.now(UTC).date().isoformat())
    p.add_argument("--session", type=int, default=0)
    p.add_argument("--map-delay-step-sec", type=int, default=0, help="Stagger map tasks by N seconds each")
    p.add_argument("--reduce-delay-sec", type=int, default=5)
    p.add_argument("--reduce-retry-ms", type=int, default=60_000, help="retryMs_in hint for reduce")
    return p.parse_args()


def main() -> int:
    from recap_processor.common.config import get_settings
    from recap_processor.common.logging import get_project_logger, setup_logging
    from recap_processor.contracts.tasks import MapTask, MeetingInfo, ReduceTask
    from recap_processor.queue.retry import MAX_QUEUE_DELAY_SEC
    from recap_processor.queue.transport import RedisTaskQueue, send_task
    from recap_processor.storage.blob import get_blob_store

    args = _parse_args()
    setup_logging()
    log = get_project_logger()
    s = get_settings()

    scheme = args.scheme or ("s3" if s.storage_mode == "s3" else "local")
    base = f"{scheme}://{args.bucket}/{args.issue_id}"
    texts = [Path(p).read_text(encoding="utf-8") for p in args.chunks] or SAMPLE_CHUNKS

    blobs = get_blob_store()
    queue = RedisTaskQueue.from_settings()

    result_uris: list[str] = []
    for idx, text in enumerate(texts, start=1):
        source_uri = f"{base}/chunk-{idx:03d}.txt"
        result_uri = f"{base}/chunk-{idx:03d}.json"
        blobs.put(source_uri, f"{CHUNK_PROMPT}\n\n{text}".encode(), content_type="text/plain")
        task = MapTask(
            source_uri=source_uri,
            result_uri=result_uri,
            generator=args.llm,
            generator_model=args.llm_model,
            metadata={"chunkIndex": idx, "totalChunks": len(texts)},
        )
        delay = min(MAX_QUEUE_DELAY_SEC, (idx - 1) * max(0, args.map_delay_step_sec))
        send_task(queue, task, delay_sec=delay)
        result_uris.append(result_uri)

    reduce_task = ReduceTask(
        dependency_result_uris=tuple(result_uris),
        prompt=REDUCE_PROMPT,
        issue_id=args.issue_id,
        meeting=MeetingInfo(
            issue_id=args.issue_id,
            meeting_name=args.meeting,
            house=args.house,
            date=args.date,
            speech_count=len(texts),
            extra={"session": args.session},
        ),
        generator=args.llm,
        generator_model=args.llm_model,
        retry_delay_ms_hint=args.reduce_retry_ms,
    )
    send_task(queue, reduce_task, delay_sec=min(MAX_QUEUE_DELAY_SEC, args.reduce_delay_sec))

    log.info(
        "sample_tasks_enqueued",
        extra={"payload": {"issue_id": args.issue_id, "map_tasks": len(texts), "queue": s.queue_name}},
    )
    print(f"Enqueued {len(texts)} map task(s) + 1 reduce task for issue {args.issue_id}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
