"""
ORM-модели single-table хранилища.

Одна таблица на все сущности:
- основная запись (PK = A#<id>, SK = META) с колонками глобальных листингов gsi1/gsi2
- тонкие строки индексов (PK = <FACET>#<value>, SK = Y#YYYY#M#MM#D#<iso>#A#<id>)
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from recap_processor.common.config import get_settings
from recap_processor.common.time import utc_now


# =============================================================================
# BASE
# =============================================================================
class Base(DeclarativeBase):
    pass


# =============================================================================
# TABLE ITEM
# =============================================================================
class TableItem(Base):
    __tablename__ = get_settings().table_name

    pk: Mapped[str] = mapped_column(String(512), primary_key=True)
    sk: Mapped[str] = mapped_column(String(512), primary_key=True)

    item_type: Mapped[str] = mapped_column(String(32), nullable=False)

    gsi1pk: Mapped[str | None] = mapped_column(String(128), nullable=True)
    gsi1sk: Mapped[str | None] = mapped_column(String(64), nullable=True)
    gsi2pk: Mapped[str | None] = mapped_column(String(128), nullable=True)
    gsi2sk: Mapped[str | None] = mapped_column(String(64), nullable=True)

    data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        Index("ix_recap_items_gsi1", "gsi1pk", "gsi1sk"),
        Index("ix_recap_items_gsi2", "gsi2pk", "gsi2sk"),
    )
