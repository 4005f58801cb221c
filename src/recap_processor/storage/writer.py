"""
Запись итоговой записи в single-table хранилище с fan-out по индексам.

Порядок:
1) нормализация date/month
2) основная строка A#<id> / META (с колонками листингов GSI1/GSI2)
3) тонкие строки индексов пачками по MAX_BATCH_ITEMS;
   отклонённые строки возвращаются в окно после паузы, пока не запишется всё

Основная строка пишется раньше любой строки индекса.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from recap_processor.common.config import get_settings
from recap_processor.common.logging import get_project_logger
from recap_processor.common.metrics import (
    INDEX_ROWS_WRITTEN_TOTAL,
    TABLE_BATCH_REJECTED_TOTAL,
    track_stage_latency,
)
from recap_processor.domain.enums import IndexKind
from recap_processor.domain.records import Record

from .table import MAX_BATCH_ITEMS, TableStore

log = get_project_logger()

ARTICLE_SK = "META"
ARTICLE_TYPE = "ARTICLE"
THIN_INDEX_TYPE = "THIN_INDEX"
RECENT_KEYWORD_PK = "KEYWORD_RECENT"


@dataclass(frozen=True)
class StoreResult:
    id: str
    primary_key: tuple[str, str]
    index_rows: int


# =============================================================================
# KEYS
# =============================================================================
def article_pk(record_id: str) -> str:
    return f"A#{record_id}"


def session_key(session: int) -> str:
    return f"SESSION#{session:04d}"


def month_bucket(month: str) -> str:
    return f"Y#{month[:4]}#M#{month[5:7]}"


def index_sort_key(month: str, iso: str, record_id: str) -> str:
    return f"{month_bucket(month)}#D#{iso}#A#{record_id}"


def recent_keyword_sort_key(iso: str, keyword: str, record_id: str) -> str:
    return f"D#{iso}#KW#{keyword}#A#{record_id}"


# =============================================================================
# ITEMS
# =============================================================================
def build_primary_item(record: Record) -> dict[str, Any]:
    item = record.to_item()
    item.update(
        {
            "PK": article_pk(record.id),
            "SK": ARTICLE_SK,
            "type": ARTICLE_TYPE,
            "GSI1PK": ARTICLE_TYPE,
            "GSI1SK": record.date,
            "GSI2PK": month_bucket(record.month),
            "GSI2SK": record.date,
        }
    )
    return item


def _facet_name(value: Any, key: str) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict) and isinstance(value.get(key), str):
        return value[key].strip()
    return ""


def build_index_items(record: Record) -> list[dict[str, Any]]:
    thin_base = {
        "type": THIN_INDEX_TYPE,
        "articleId": record.id,
        "title": record.title,
        "date": record.date,
        "month": record.month,
        "imageKind": record.image_kind.value,
        "nameOfMeeting": record.meeting_name,
        "session": record.session,
        "nameOfHouse": record.house,
    }
    sk = index_sort_key(record.month, record.date, record.id)
    items: list[dict[str, Any]] = []
    seen: set[tuple[str, str]] = set()

    def add(item: dict[str, Any]) -> None:
        # разные значения фасета могут дать один ключ ("佐藤" с разными должностями)
        key = (item["PK"], item["SK"])
        if key not in seen:
            seen.add(key)
            items.append(item)

    def thin(pk: str, kind: IndexKind) -> None:
        add({"PK": pk, "SK": sk, "kind": kind.value, **thin_base})

    for c in record.categories:
        cat = _facet_name(c, "category")
        if cat:
            thin(f"CATEGORY#{cat}", IndexKind.category)

    for p in record.participants:
        name = _facet_name(p, "name")
        if name:
            thin(f"PERSON#{name}", IndexKind.person)

    for k in record.keywords:
        kw = _facet_name(k, "keyword")
        if not kw:
            continue
        thin(f"KEYWORD#{kw}", IndexKind.keyword)
        add(
            {
                "PK": RECENT_KEYWORD_PK,
                "SK": recent_keyword_sort_key(record.date, kw, record.id),
                "type": THIN_INDEX_TYPE,
                "kind": IndexKind.keyword_occurrence.value,
                "keyword": kw,
                "articleId": record.id,
                "title": record.title,
                "date": record.date,
                "month": record.month,
            }
        )

    thin(f"IMAGEKIND#{record.image_kind.value}", IndexKind.image_kind)
    thin(session_key(record.session), IndexKind.session)

    if record.house.strip():
        thin(f"HOUSE#{record.house.strip()}", IndexKind.house)
    if record.meeting_name.strip():
        thin(f"MEETING#{record.meeting_name.strip()}", IndexKind.meeting)

    return items


# =============================================================================
# STORE
# =============================================================================
def _batch_put_all(
    table: TableStore,
    items: list[dict[str, Any]],
    *,
    batch_size: int,
    retry_pause_sec: float,
    sleep: Callable[[float], None],
) -> None:
    pending = list(items)
    i = 0
    while i < len(pending):
        window = pending[i : i + batch_size]
        rejected = table.batch_put(window)
        if not rejected:
            i += len(window)
            continue
        TABLE_BATCH_REJECTED_TOTAL.inc(len(rejected))
        log.warning(
            "index_batch_partial",
            extra={"payload": {"window": len(window), "rejected": len(rejected), "offset": i}},
        )
        sleep(retry_pause_sec)
        # принятые строки из окна убираем, отклонённые встают на их место
        pending[i : i + len(window)] = list(rejected)


def store_record(
    table: TableStore,
    record: Record,
    *,
    month_offset_hours: int | None = None,
    batch_size: int = MAX_BATCH_ITEMS,
    retry_pause_sec: float = 0.2,
    sleep: Callable[[float], None] = time.sleep,
) -> StoreResult:
    if month_offset_hours is None:
        month_offset_hours = get_settings().record_month_utc_offset_hours
    batch_size = max(1, min(batch_size, MAX_BATCH_ITEMS))

    rec = record.normalized(month_offset_hours=month_offset_hours)
    primary = build_primary_item(rec)
    index_items = build_index_items(rec)

    with track_stage_latency("store_record"):
        table.put(primary)
        if index_items:
            _batch_put_all(
                table,
                index_items,
                batch_size=batch_size,
                retry_pause_sec=retry_pause_sec,
                sleep=sleep,
            )

    for item in index_items:
        INDEX_ROWS_WRITTEN_TOTAL.labels(kind=item["kind"]).inc()
    log.info(
        "record_stored",
        extra={
            "payload": {
                "id": rec.id,
                "date": rec.date,
                "month": rec.month,
                "index_rows": len(index_items),
            }
        },
    )
    return StoreResult(id=rec.id, primary_key=(primary["PK"], primary["SK"]), index_rows=len(index_items))
