"""unique canonical names, sentiment marker on summary tags

Revision ID: 20261019_0002
Revises: 20261001_0001
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261019_0002"
down_revision = "20261001_0001"
branch_labels = None
depends_on = None

CANONICAL_TABLES = ("canonical_tags", "canonical_themes")


def upgrade() -> None:
    for name in CANONICAL_TABLES:
        op.drop_index(f"ix_{name}_name", table_name=name)
        op.create_index(f"ix_{name}_name", name, ["name"], unique=True)
    op.add_column("summary_tags", sa.Column("sentiment", sa.String(length=1), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("summary_tags") as batch:
        batch.drop_column("sentiment")
    for name in CANONICAL_TABLES:
        op.drop_index(f"ix_{name}_name", table_name=name)
        op.create_index(f"ix_{name}_name", name, ["name"], unique=False)
