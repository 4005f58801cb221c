"""
Доменная модель итоговой записи (Record) и частичной записи от LLM.

Правила:
- PartialRecord: всё опционально, неизвестные поля сохраняются в extra
- merge: скаляры берутся из base, списки объединяются с дедупликацией
- Record.date всегда в каноническом виде YYYY-MM-DDTHH:MM:SS.mmmZ
- Record.month всегда пересчитывается из date
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import Any

from recap_processor.common.errors import InvalidDateError, InvalidRecordError
from recap_processor.common.utils import stable_key
from recap_processor.domain.enums import RecordKind

ARRAY_FIELDS = ("dialogs", "terms", "keywords", "participants")

_ISO_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T")
_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_SPACE_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}")
_MONTH_RE = re.compile(r"^\d{4}-\d{2}$")

# ключи частичной записи на проводе -> атрибут PartialRecord
_PARTIAL_KEYS = {
    "title": "title",
    "imageKind": "image_kind",
    "session": "session",
    "categories": "categories",
    "description": "description",
    "summary": "summary",
    "soft_summary": "soft_summary",
    "middle_summary": "middle_summary",
    "dialogs": "dialogs",
    "participants": "participants",
    "keywords": "keywords",
    "terms": "terms",
}


# =============================================================================
# PARTIAL RECORD
# =============================================================================
@dataclass
class PartialRecord:
    title: str | None = None
    image_kind: str | None = None
    session: Any = None
    categories: list[str] | None = None
    description: str | None = None
    summary: Any = None
    soft_summary: Any = None
    middle_summary: list[Any] | None = None
    dialogs: list[Any] | None = None
    participants: list[Any] | None = None
    keywords: list[Any] | None = None
    terms: list[Any] | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> PartialRecord:
        """
        Разбор JSON-объекта от LLM. Поля неподходящего типа отбрасываются.
        """
        if not data:
            return cls()
        values: dict[str, Any] = {}
        extra: dict[str, Any] = {}
        for key, value in data.items():
            attr = _PARTIAL_KEYS.get(key)
            if attr is None:
                extra[key] = value
                continue
            if value is None:
                continue
            if attr in {"title", "image_kind", "description"} and not isinstance(value, str):
                continue
            if attr in {"categories", "middle_summary", *ARRAY_FIELDS} and not isinstance(value, list):
                continue
            values[attr] = value
        if "categories" in values:
            values["categories"] = [c for c in values["categories"] if isinstance(c, str)]
        return cls(**values, extra=extra)


def collect_array_field(
    chunks: Iterable[Mapping[str, Any]],
    field_name: str,
    key: Callable[[Any], Any] | None = None,
) -> list[Any]:
    """
    Плоский список значений поля по всем чанкам, без дублей, в порядке появления.
    """
    flat: list[Any] = []
    for chunk in chunks:
        value = chunk.get(field_name)
        if isinstance(value, list):
            flat.extend(value)
    return _dedupe(flat, key)


def _dedupe(items: Iterable[Any], key: Callable[[Any], Any] | None = None) -> list[Any]:
    keyfn = key or stable_key
    seen: set[Any] = set()
    out: list[Any] = []
    for item in items:
        k = keyfn(item)
        if k in seen:
            continue
        seen.add(k)
        out.append(item)
    return out


def merge(
    base: PartialRecord,
    extras: Mapping[str, list[Any]],
    key: Callable[[Any], Any] | None = None,
) -> PartialRecord:
    """
    base + списки из чанков. Значения base идут первыми; скаляры не трогаем.
    """
    merged = {
        name: _dedupe([*(getattr(base, name) or []), *(extras.get(name) or [])], key)
        for name in ARRAY_FIELDS
    }
    return replace(base, **merged)


# =============================================================================
# RECORD
# =============================================================================
@dataclass
class Record:
    id: str
    title: str
    date: str
    month: str
    image_kind: RecordKind
    session: int
    house: str
    meeting_name: str
    categories: list[str] = field(default_factory=list)
    description: str = ""
    summary: Any = None
    soft_summary: Any = None
    middle_summary: list[Any] = field(default_factory=list)
    dialogs: list[Any] = field(default_factory=list)
    participants: list[Any] = field(default_factory=list)
    keywords: list[Any] = field(default_factory=list)
    terms: list[Any] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_item(self) -> dict[str, Any]:
        item: dict[str, Any] = dict(self.extra)
        item.update(
            {
                "id": self.id,
                "title": self.title,
                "date": self.date,
                "month": self.month,
                "imageKind": self.image_kind.value,
                "session": self.session,
                "nameOfHouse": self.house,
                "nameOfMeeting": self.meeting_name,
                "categories": list(self.categories),
                "description": self.description,
                "summary": self.summary,
                "soft_summary": self.soft_summary,
                "middle_summary": list(self.middle_summary),
                "dialogs": list(self.dialogs),
                "participants": list(self.participants),
                "keywords": list(self.keywords),
                "terms": list(self.terms),
            }
        )
        return item

    def normalized(self, *, month_offset_hours: int = 0) -> Record:
        """
        Проверка обязательных полей + канонические date/month.
        """
        if not isinstance(self.id, str) or not self.id.strip():
            raise InvalidRecordError("Пустой id записи")
        if not isinstance(self.title, str) or not self.title.strip():
            raise InvalidRecordError("Пустой title записи", {"id": self.id})
        iso = to_iso_utc(self.date)
        return replace(
            self,
            date=iso,
            month=month_from_iso(iso, month_offset_hours),
            image_kind=coerce_record_kind(self.image_kind),
            session=coerce_session(self.session),
        )


def coerce_record_kind(value: Any) -> RecordKind:
    if value is None or value == "":
        return RecordKind.minutes
    try:
        return RecordKind(value)
    except ValueError as e:
        raise InvalidRecordError("Недопустимый imageKind", {"imageKind": str(value)[:50]}) from e


def coerce_session(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise InvalidRecordError("Недопустимый session", {"session": value})
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    if isinstance(value, int | float) and math.isfinite(value) and value >= 0 and float(value).is_integer():
        return int(value)
    raise InvalidRecordError("Недопустимый session", {"session": str(value)[:50]})


def build_record(
    base: PartialRecord,
    extras: Mapping[str, list[Any]],
    *,
    issue_id: str,
    meeting_name: str,
    house: str,
    meeting_date: str,
    meeting_session: Any = None,
    month_offset_hours: int = 0,
) -> Record:
    """
    Итоговая запись reduce-задачи.

    id берётся из meeting.issueID; title: base -> имя заседания -> "Issue <id>";
    session: base -> meeting.session -> 0.
    """
    merged = merge(base, extras)
    session = merged.session if merged.session not in (None, "") else meeting_session
    record = Record(
        id=issue_id,
        title=merged.title or meeting_name or f"Issue {issue_id}",
        date=meeting_date,
        month="",
        image_kind=coerce_record_kind(merged.image_kind),
        session=coerce_session(session),
        house=house,
        meeting_name=meeting_name,
        categories=list(merged.categories or []),
        description=merged.description or "",
        summary=merged.summary,
        soft_summary=merged.soft_summary,
        middle_summary=list(merged.middle_summary or []),
        dialogs=merged.dialogs or [],
        participants=merged.participants or [],
        keywords=merged.keywords or [],
        terms=merged.terms or [],
        extra=dict(merged.extra),
    )
    return record.normalized(month_offset_hours=month_offset_hours)


# =============================================================================
# DATES
# =============================================================================
def to_iso_utc(value: Any) -> str:
    """
    Дата/время -> "YYYY-MM-DDTHH:MM:SS.mmmZ" (UTC, фиксированная ширина).

    Принимает: datetime, date, epoch (секунды; > 1e12 считается миллисекундами),
    ISO-строку (naive = UTC), "YYYY-MM-DD", "YYYY-MM-DD HH:MM:SS".
    """
    if value is None:
        raise InvalidDateError(value, "empty")
    if isinstance(value, datetime):
        return _format_iso(value)
    if isinstance(value, date):
        return _format_iso(datetime(value.year, value.month, value.day, tzinfo=UTC))
    if isinstance(value, bool):
        raise InvalidDateError(value, "unsupported_type")
    if isinstance(value, int | float):
        if not math.isfinite(value):
            raise InvalidDateError(value, "invalid_epoch")
        seconds = value / 1000 if value > 1e12 else value
        try:
            return _format_iso(datetime.fromtimestamp(seconds, UTC))
        except (OverflowError, OSError, ValueError) as e:
            raise InvalidDateError(value, "invalid_epoch") from e
    if not isinstance(value, str):
        raise InvalidDateError(value, "unsupported_type")

    text = value.strip()
    if not text:
        raise InvalidDateError(value, "empty")
    if _DATE_ONLY_RE.match(text):
        return _format_iso(_parse_iso(text + "T00:00:00+00:00", value))
    if _ISO_DATETIME_RE.match(text):
        return _format_iso(_parse_iso(text, value))
    if _SPACE_DATETIME_RE.match(text):
        return _format_iso(_parse_iso(text.replace(" ", "T", 1), value))
    try:
        return _format_iso(parsedate_to_datetime(text))
    except (TypeError, ValueError) as e:
        raise InvalidDateError(value, "unparseable") from e


def _parse_iso(text: str, original: Any) -> datetime:
    try:
        return datetime.fromisoformat(text)
    except ValueError as e:
        raise InvalidDateError(original, "unparseable") from e


def _format_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    dt = dt.astimezone(UTC)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def month_from_iso(iso_utc: str, offset_hours: int = 0) -> str:
    """
    YYYY-MM из канонической даты; offset_hours=9 выравнивает месяц по JST.
    """
    dt = _parse_iso(iso_utc, iso_utc)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    shifted = dt.astimezone(UTC) + timedelta(hours=offset_hours)
    month = shifted.strftime("%Y-%m")
    if not _MONTH_RE.match(month):
        raise InvalidDateError(iso_utc, "month_out_of_range")
    return month
