"""Add per-user unit preference

Revision ID: 8d41f0c6a2e3
Revises: 5c2e7a91b4d0
Create Date: 2026-10-19 15:30:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "8d41f0c6a2e3"
down_revision: str | Sequence[str] | None = "5c2e7a91b4d0"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Nullable ``units`` column; NULL falls back to the configured default."""
    with op.batch_alter_table("user_settings") as batch_op:
        batch_op.add_column(sa.Column("units", sa.String(2), nullable=True))
        batch_op.create_check_constraint(
            "ck_user_settings_units", "units IS NULL OR units IN ('km', 'mi')"
        )


def downgrade() -> None:
    with op.batch_alter_table("user_settings") as batch_op:
        batch_op.drop_constraint("ck_user_settings_units", type_="check")
        batch_op.drop_column("units")
