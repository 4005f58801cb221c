from __future__ import annotations

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from recap_processor.common.errors import InvalidDateError
from recap_processor.domain.enums import RecordKind
from recap_processor.domain.records import Record
from recap_processor.storage.models import Base, TableItem
from recap_processor.storage.table import SqlTableStore
from recap_processor.storage.writer import build_index_items, store_record


@pytest.fixture
def sqlite_store():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    yield SqlTableStore(factory), factory
    engine.dispose()


def _record(**overrides) -> Record:
    fields = {
        "id": "issue-1",
        "title": "教育助成金の執行管理",
        "date": "2024-01-15",
        "month": "",
        "image_kind": RecordKind.minutes,
        "session": 213,
        "house": "衆議院",
        "meeting_name": "予算委員会",
        "categories": ["教育", "財政"],
        "participants": [{"name": "佐藤なおみ"}, {"name": "林りこ"}],
        "keywords": [{"keyword": "助成金"}],
    }
    fields.update(overrides)
    return Record(**fields)


class _RecordingTable:
    def __init__(self, reject_first: int = 0) -> None:
        self.calls: list[tuple[str, int]] = []
        self.rows: dict[tuple[str, str], dict] = {}
        self.reject_first = reject_first

    def put(self, item: dict) -> None:
        self.calls.append(("put", 1))
        self.rows[(item["PK"], item["SK"])] = item

    def batch_put(self, items):
        self.calls.append(("batch_put", len(items)))
        rejected = []
        if self.reject_first:
            rejected = list(items[: self.reject_first])
            self.reject_first = 0
        for item in items:
            if item not in rejected:
                self.rows[(item["PK"], item["SK"])] = item
        return rejected

    def get(self, pk, sk):
        return self.rows.get((pk, sk))

    def query(self, pk, sk_prefix=None):
        return [v for (p, s), v in sorted(self.rows.items()) if p == pk and s.startswith(sk_prefix or "")]

    def delete_partition(self, pk):
        return 0


def test_fan_out_row_counts_and_keys() -> None:
    table = _RecordingTable()
    result = store_record(table, _record(), month_offset_hours=0, sleep=lambda _: None)

    assert result.id == "issue-1"
    assert result.primary_key == ("A#issue-1", "META")
    assert result.index_rows == 10
    assert table.calls[0] == ("put", 1)

    primary = table.rows[("A#issue-1", "META")]
    assert primary["type"] == "ARTICLE"
    assert primary["date"] == "2024-01-15T00:00:00.000Z"
    assert primary["month"] == "2024-01"
    assert primary["GSI1PK"] == "ARTICLE"
    assert primary["GSI1SK"] == "2024-01-15T00:00:00.000Z"
    assert primary["GSI2PK"] == "Y#2024#M#01"

    sk = "Y#2024#M#01#D#2024-01-15T00:00:00.000Z#A#issue-1"
    expected_pks = {
        "CATEGORY#教育",
        "CATEGORY#財政",
        "PERSON#佐藤なおみ",
        "PERSON#林りこ",
        "KEYWORD#助成金",
        "IMAGEKIND#会議録",
        "SESSION#0213",
        "HOUSE#衆議院",
        "MEETING#予算委員会",
    }
    assert {pk for (pk, s) in table.rows if s == sk} == expected_pks

    recent = table.rows[("KEYWORD_RECENT", "D#2024-01-15T00:00:00.000Z#KW#助成金#A#issue-1")]
    assert recent["kind"] == "KEYWORD_OCCURRENCE"
    assert recent["articleId"] == "issue-1"

    person = table.rows[("PERSON#林りこ", sk)]
    assert person["type"] == "THIN_INDEX"
    assert person["kind"] == "PERSON_INDEX"
    assert "dialogs" not in person


def test_empty_facets_leave_kind_and_session_rows() -> None:
    record = _record(categories=[" "], participants=[{}], keywords=[], house="", meeting_name="  ")
    kinds = [item["kind"] for item in build_index_items(record.normalized())]
    assert kinds == ["IMAGEKIND_INDEX", "SESSION_INDEX"]


def test_rejected_rows_are_retried_after_pause() -> None:
    table = _RecordingTable(reject_first=3)
    pauses: list[float] = []

    result = store_record(table, _record(), batch_size=4, retry_pause_sec=0.2, sleep=pauses.append)

    assert pauses == [0.2]
    assert result.index_rows == 10
    assert len(table.rows) == 11
    # три отклонённых строки повторяются в начале следующего окна
    assert [n for op, n in table.calls if op == "batch_put"] == [4, 4, 4, 1]


def test_month_offset_changes_bucket() -> None:
    table = _RecordingTable()
    store_record(table, _record(date="2024-01-31T16:00:00Z"), month_offset_hours=9, sleep=lambda _: None)
    primary = table.rows[("A#issue-1", "META")]
    assert primary["month"] == "2024-02"
    assert primary["GSI2PK"] == "Y#2024#M#02"


def test_invalid_date_fails_before_any_write() -> None:
    table = _RecordingTable()
    with pytest.raises(InvalidDateError):
        store_record(table, _record(date="someday"), month_offset_hours=0)
    assert table.calls == []


def test_sql_store_rewrite_is_idempotent(sqlite_store) -> None:
    store, factory = sqlite_store
    store_record(store, _record(), month_offset_hours=0, sleep=lambda _: None)
    store_record(store, _record(), month_offset_hours=0, sleep=lambda _: None)

    with factory() as session:
        total = session.scalar(select(func.count()).select_from(TableItem))
        primaries = session.scalar(
            select(func.count()).select_from(TableItem).where(TableItem.pk == "A#issue-1")
        )
    assert total == 11
    assert primaries == 1

    assert store.get("A#issue-1", "META")["title"] == "教育助成金の執行管理"
    rows = store.query("PERSON#佐藤なおみ", sk_prefix="Y#2024#M#01")
    assert [r["articleId"] for r in rows] == ["issue-1"]
    assert [r["id"] for r in store.query_listing("gsi1", "ARTICLE")] == ["issue-1"]
    assert [r["id"] for r in store.query_listing("gsi2", "Y#2024#M#01")] == ["issue-1"]


def test_sql_store_batch_limit_and_delete_partition(sqlite_store) -> None:
    store, _ = sqlite_store
    with pytest.raises(ValueError):
        store.batch_put([{"PK": f"P#{i}", "SK": "S", "type": "X"} for i in range(26)])

    assert store.batch_put([{"PK": "P#1", "SK": "a", "type": "X"}, {"PK": "P#1", "SK": "b", "type": "X"}]) == []
    assert store.delete_partition("P#1") == 2
    assert store.query("P#1") == []


def test_repeated_speaker_names_are_indexed_once(sqlite_store) -> None:
    store, factory = sqlite_store
    record = _record(
        participants=[
            {"name": "佐藤なおみ", "position": "委員長"},
            {"name": "佐藤なおみ", "position": "大臣"},
            {"name": "林りこ"},
        ]
    )
    result = store_record(store, record, month_offset_hours=0, sleep=lambda _: None)

    assert result.index_rows == 10
    rows = store.query("PERSON#佐藤なおみ")
    assert [r["articleId"] for r in rows] == ["issue-1"]
    with factory() as session:
        total = session.scalar(select(func.count()).select_from(TableItem))
    assert total == 11


def test_categories_equal_after_trim_share_one_row(sqlite_store) -> None:
    store, _ = sqlite_store
    record = _record(categories=["教育", "教育 "], keywords=[{"keyword": "助成金"}, "助成金"])
    keys = [(i["PK"], i["SK"]) for i in build_index_items(record)]
    assert len(keys) == len(set(keys))
    assert [pk for pk, _ in keys].count("CATEGORY#教育") == 1
    assert [pk for pk, _ in keys].count("KEYWORD#助成金") == 1

    result = store_record(store, record, month_offset_hours=0, sleep=lambda _: None)
    assert result.index_rows == len(keys) == 9
    assert len(store.query("CATEGORY#教育")) == 1
