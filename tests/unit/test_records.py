from __future__ import annotations

from datetime import UTC, datetime

import pytest

from recap_processor.common.errors import InvalidDateError, InvalidRecordError
from recap_processor.domain.enums import RecordKind
from recap_processor.domain.records import (
    PartialRecord,
    build_record,
    collect_array_field,
    merge,
    month_from_iso,
    to_iso_utc,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("2024-01-15", "2024-01-15T00:00:00.000Z"),
        ("2024-01-15T10:20:30Z", "2024-01-15T10:20:30.000Z"),
        ("2024-01-15T10:20:30.250+09:00", "2024-01-15T01:20:30.250Z"),
        ("2024-01-15T10:20:30", "2024-01-15T10:20:30.000Z"),
        ("2024-01-15 10:20:30", "2024-01-15T10:20:30.000Z"),
        (1705314030, "2024-01-15T10:20:30.000Z"),
        (1705314030123, "2024-01-15T10:20:30.123Z"),
        (datetime(2024, 1, 15, 10, 20, 30, tzinfo=UTC), "2024-01-15T10:20:30.000Z"),
        ("Mon, 15 Jan 2024 10:20:30 GMT", "2024-01-15T10:20:30.000Z"),
    ],
)
def test_to_iso_utc_accepts_supported_formats(value, expected) -> None:
    assert to_iso_utc(value) == expected


@pytest.mark.parametrize("value", ["", "   ", None, "not a date", "2024-13-45", [2024]])
def test_to_iso_utc_rejects_unparseable(value) -> None:
    with pytest.raises(InvalidDateError):
        to_iso_utc(value)


def test_month_alignment_offset() -> None:
    assert month_from_iso("2024-01-31T16:00:00.000Z") == "2024-01"
    assert month_from_iso("2024-01-31T16:00:00.000Z", 9) == "2024-02"


def test_collect_array_field_flattens_and_dedupes_in_order() -> None:
    chunks = [
        {"keywords": [{"keyword": "予算"}, {"keyword": "教育"}]},
        {"keywords": [{"keyword": "予算"}]},
        {"keywords": "not a list"},
        {},
    ]
    assert collect_array_field(chunks, "keywords") == [{"keyword": "予算"}, {"keyword": "教育"}]


def test_collect_array_field_with_key_function() -> None:
    chunks = [
        {"participants": [{"name": "佐藤", "position": "委員長"}]},
        {"participants": [{"name": "佐藤", "position": None}, {"name": "林"}]},
    ]
    out = collect_array_field(chunks, "participants", key=lambda p: p["name"])
    assert [p["name"] for p in out] == ["佐藤", "林"]
    assert out[0]["position"] == "委員長"


def test_merge_keeps_base_first_and_scalars_from_base() -> None:
    base = PartialRecord(title="Base title", terms=[{"term": "STEM"}])
    extras = {"terms": [{"term": "STEM"}, {"term": "GIGA"}], "dialogs": [{"order": 1}]}
    merged = merge(base, extras)
    assert merged.title == "Base title"
    assert merged.terms == [{"term": "STEM"}, {"term": "GIGA"}]
    assert merged.dialogs == [{"order": 1}]
    assert merged.keywords == []


def test_partial_record_from_dict_drops_mistyped_fields_and_keeps_unknown() -> None:
    partial = PartialRecord.from_dict(
        {"title": 5, "categories": ["教育", 3], "dialogs": "x", "promptVersion": "v3"}
    )
    assert partial.title is None
    assert partial.categories == ["教育"]
    assert partial.dialogs is None
    assert partial.extra == {"promptVersion": "v3"}


def _build(base: PartialRecord, **overrides):
    kwargs = {
        "issue_id": "issue-1",
        "meeting_name": "予算委員会",
        "house": "衆議院",
        "meeting_date": "2024-01-31T16:00:00Z",
        "meeting_session": None,
    }
    kwargs.update(overrides)
    return build_record(base, {}, **kwargs)


def test_build_record_defaults() -> None:
    record = _build(PartialRecord())
    assert record.id == "issue-1"
    assert record.title == "予算委員会"
    assert record.date == "2024-01-31T16:00:00.000Z"
    assert record.month == "2024-01"
    assert record.image_kind is RecordKind.minutes
    assert record.session == 0


def test_build_record_title_and_session_fallbacks() -> None:
    assert _build(PartialRecord(), meeting_name="").title == "Issue issue-1"
    assert _build(PartialRecord(), meeting_session="213").session == 213
    assert _build(PartialRecord(session=7), meeting_session=213).session == 7
    assert _build(PartialRecord(), month_offset_hours=9).month == "2024-02"


def test_build_record_rejects_invalid_kind_and_session() -> None:
    with pytest.raises(InvalidRecordError):
        _build(PartialRecord(image_kind="議事録"))
    with pytest.raises(InvalidRecordError):
        _build(PartialRecord(session=-1))


def test_build_record_rejects_bad_date() -> None:
    with pytest.raises(InvalidDateError):
        _build(PartialRecord(), meeting_date="someday")
