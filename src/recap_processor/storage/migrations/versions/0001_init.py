"""
Инициальная миграция.

Создаёт single-table хранилище записей и индексов листингов (gsi1, gsi2).
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

from recap_processor.common.config import get_settings

revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    table = get_settings().table_name
    op.create_table(
        table,
        sa.Column("pk", sa.String(length=512), primary_key=True),
        sa.Column("sk", sa.String(length=512), primary_key=True),
        sa.Column("item_type", sa.String(length=32), nullable=False),
        sa.Column("gsi1pk", sa.String(length=128), nullable=True),
        sa.Column("gsi1sk", sa.String(length=64), nullable=True),
        sa.Column("gsi2pk", sa.String(length=128), nullable=True),
        sa.Column("gsi2sk", sa.String(length=64), nullable=True),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_recap_items_gsi1", table, ["gsi1pk", "gsi1sk"])
    op.create_index("ix_recap_items_gsi2", table, ["gsi2pk", "gsi2sk"])


def downgrade() -> None:
    table = get_settings().table_name
    op.drop_index("ix_recap_items_gsi2", table_name=table)
    op.drop_index("ix_recap_items_gsi1", table_name=table)
    op.drop_table(table)
