"""
Single-table хранилище (ключ = PK + SK) поверх SQLAlchemy.

Контракт TableStore:
- put(item): upsert одной строки (полная перезапись)
- batch_put(items): upsert пачки <= MAX_BATCH_ITEMS, возвращает отклонённые строки
- get / query / delete_partition: чтение для листингов и проверок
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from recap_processor.common.errors import InvalidRecordError
from recap_processor.common.logging import get_project_logger
from recap_processor.common.time import utc_now
from recap_processor.common.utils import err_head

from .db import db_session, get_session_factory
from .models import TableItem

log = get_project_logger()

MAX_BATCH_ITEMS = 25

_LISTING_INDEXES = {
    "gsi1": (TableItem.gsi1pk, TableItem.gsi1sk),
    "gsi2": (TableItem.gsi2pk, TableItem.gsi2sk),
}


class TableStore(Protocol):
    def put(self, item: dict[str, Any]) -> None: ...

    def batch_put(self, items: Sequence[dict[str, Any]]) -> list[dict[str, Any]]: ...

    def get(self, pk: str, sk: str) -> dict[str, Any] | None: ...

    def query(self, pk: str, sk_prefix: str | None = None) -> list[dict[str, Any]]: ...

    def delete_partition(self, pk: str) -> int: ...


def _to_row(item: dict[str, Any]) -> TableItem:
    pk, sk = item.get("PK"), item.get("SK")
    if not isinstance(pk, str) or not pk or not isinstance(sk, str) or not sk:
        raise InvalidRecordError("Строка таблицы без PK/SK", {"pk": pk, "sk": sk})
    return TableItem(
        pk=pk,
        sk=sk,
        item_type=str(item.get("type") or ""),
        gsi1pk=item.get("GSI1PK"),
        gsi1sk=item.get("GSI1SK"),
        gsi2pk=item.get("GSI2PK"),
        gsi2sk=item.get("GSI2SK"),
        data=item,
        updated_at=utc_now(),
    )


class SqlTableStore:
    def __init__(self, session_factory: sessionmaker[Session] | None = None) -> None:
        self.session_factory = session_factory or get_session_factory()

    def put(self, item: dict[str, Any]) -> None:
        row = _to_row(item)
        with db_session(self.session_factory) as session:
            session.merge(row)

    def batch_put(self, items: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
        if len(items) > MAX_BATCH_ITEMS:
            raise ValueError(f"batch too large: {len(items)} > {MAX_BATCH_ITEMS}")
        rows = [_to_row(item) for item in items]
        try:
            with db_session(self.session_factory) as session:
                for row in rows:
                    session.merge(row)
        except OperationalError as e:
            # блокировка / недоступность БД: вся пачка уходит на повтор
            log.warning(
                "table_batch_rejected",
                extra={"payload": {"items": len(rows), "err": err_head(e)}},
            )
            return list(items)
        return []

    def get(self, pk: str, sk: str) -> dict[str, Any] | None:
        with db_session(self.session_factory) as session:
            row = session.get(TableItem, (pk, sk))
            return dict(row.data) if row is not None else None

    def query(self, pk: str, sk_prefix: str | None = None) -> list[dict[str, Any]]:
        stmt = select(TableItem).where(TableItem.pk == pk)
        if sk_prefix:
            stmt = stmt.where(TableItem.sk.startswith(sk_prefix, autoescape=True))
        stmt = stmt.order_by(TableItem.sk)
        with db_session(self.session_factory) as session:
            return [dict(row.data) for row in session.scalars(stmt)]

    def query_listing(
        self, index: str, pk: str, *, descending: bool = True, limit: int | None = None
    ) -> list[dict[str, Any]]:
        """
        Глобальные листинги: gsi1 (все записи по дате), gsi2 (месяц по дате).
        """
        pk_col, sk_col = _LISTING_INDEXES[index]
        stmt = select(TableItem).where(pk_col == pk)
        stmt = stmt.order_by(sk_col.desc() if descending else sk_col)
        if limit:
            stmt = stmt.limit(limit)
        with db_session(self.session_factory) as session:
            return [dict(row.data) for row in session.scalars(stmt)]

    def delete_partition(self, pk: str) -> int:
        with db_session(self.session_factory) as session:
            res = session.execute(delete(TableItem).where(TableItem.pk == pk))
            return int(res.rowcount or 0)
