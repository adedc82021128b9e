"""create lesson packs table

Revision ID: 20261019_0003
Revises: 20261019_0002
Create Date: 2026-10-19 09:40:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_0003"
down_revision: Union[str, Sequence[str], None] = "20261019_0002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "lesson_packs",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("topic", sa.String(length=256), nullable=False),
        sa.Column("grade", sa.String(length=32), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("lesson", sa.JSON(), nullable=False),
    )
    op.create_index("ix_lesson_packs_created_at", "lesson_packs", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_lesson_packs_created_at", table_name="lesson_packs")
    op.drop_table("lesson_packs")
