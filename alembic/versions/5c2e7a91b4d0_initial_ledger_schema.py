"""Initial ledger schema

Revision ID: 5c2e7a91b4d0
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5c2e7a91b4d0"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamp(name: str, **kw) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
        **kw,
    )


def upgrade() -> None:
    """Create the registry, installation ledger and append-only logs."""
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("display_name", sa.String(100), nullable=True),
        _timestamp("created_at"),
    )

    for table in ("bikes", "parts"):
        columns = [
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("owner_id", sa.String(64), nullable=False),
            sa.Column("name", sa.String(200), nullable=False),
            sa.Column("type", sa.String(20), nullable=False),
            sa.Column("brand", sa.String(100), nullable=True),
            sa.Column("model", sa.String(100), nullable=True),
            sa.Column("purchase_date", sa.Date(), nullable=True),
            sa.Column("total_kilometrage", sa.Float(), nullable=False, server_default="0"),
        ]
        checks = [
            sa.CheckConstraint(
                "total_kilometrage >= 0", name=f"ck_{table}_kilometrage_non_negative"
            ),
        ]
        if table == "parts":
            columns.append(sa.Column("replacement_threshold_km", sa.Float(), nullable=True))
            checks.append(
                sa.CheckConstraint(
                    "replacement_threshold_km IS NULL OR replacement_threshold_km > 0",
                    name="ck_parts_threshold_positive",
                )
            )
        op.create_table(
            table,
            *columns,
            sa.Column("metadata", _JSON, nullable=True),
            _timestamp("created_at"),
            _timestamp("updated_at"),
            *checks,
        )
        op.create_index(f"ix_{table}_owner_id", table, ["owner_id"])
        op.create_index(f"ix_{table}_type", table, ["type"])

    op.create_table(
        "installations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "part_id", sa.String(36),
            sa.ForeignKey("parts.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "bike_id", sa.String(36),
            sa.ForeignKey("bikes.id", ondelete="CASCADE"), nullable=False,
        ),
        _timestamp("installed_at"),
        sa.Column("removed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "uq_installations_open_part",
        "installations",
        ["part_id"],
        unique=True,
        postgresql_where=sa.text("removed_at IS NULL"),
        sqlite_where=sa.text("removed_at IS NULL"),
    )
    op.create_index("ix_installations_bike_open", "installations", ["bike_id", "removed_at"])
    op.create_index("ix_installations_part_time", "installations", ["part_id", "installed_at"])

    op.create_table(
        "user_settings",
        sa.Column("user_id", sa.String(64), primary_key=True),
        sa.Column(
            "active_bike_id", sa.String(36),
            sa.ForeignKey("bikes.id", ondelete="SET NULL"), nullable=True,
        ),
        _timestamp("updated_at"),
    )

    op.create_table(
        "kilometrage_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "bike_id", sa.String(36),
            sa.ForeignKey("bikes.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("distance_km", sa.Float(), nullable=False),
        _timestamp("logged_at"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.CheckConstraint("distance_km > 0", name="ck_kilometrage_log_positive"),
    )
    op.create_index("ix_kilometrage_log_bike_time", "kilometrage_log", ["bike_id", "logged_at"])
    op.create_index("ix_kilometrage_log_user_id", "kilometrage_log", ["user_id"])

    op.create_table(
        "maintenance_records",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "bike_id", sa.String(36),
            sa.ForeignKey("bikes.id", ondelete="CASCADE"), nullable=True,
        ),
        sa.Column(
            "part_id", sa.String(36),
            sa.ForeignKey("parts.id", ondelete="CASCADE"), nullable=True,
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("maintenance_type", sa.String(20), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        _timestamp("performed_at"),
        sa.Column("cost", sa.Float(), nullable=True),
        sa.Column("metadata", _JSON, nullable=True),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "(bike_id IS NOT NULL AND part_id IS NULL) OR "
            "(bike_id IS NULL AND part_id IS NOT NULL)",
            name="ck_maintenance_single_subject",
        ),
        sa.CheckConstraint("cost IS NULL OR cost >= 0", name="ck_maintenance_cost_non_negative"),
    )
    op.create_index(
        "ix_maintenance_bike_time", "maintenance_records", ["bike_id", "performed_at"]
    )
    op.create_index(
        "ix_maintenance_part_time", "maintenance_records", ["part_id", "performed_at"]
    )

    op.create_table(
        "ownership_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entity_type", sa.String(10), nullable=False),
        sa.Column("entity_id", sa.String(36), nullable=False),
        sa.Column("previous_owner_id", sa.String(64), nullable=False),
        sa.Column("new_owner_id", sa.String(64), nullable=False),
        _timestamp("transferred_at"),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_ownership_history_entity", "ownership_history", ["entity_type", "entity_id"]
    )


def downgrade() -> None:
    """Drop every ledger table, dependents first."""
    op.drop_table("ownership_history")
    op.drop_table("maintenance_records")
    op.drop_table("kilometrage_log")
    op.drop_table("user_settings")
    op.drop_index("uq_installations_open_part", table_name="installations")
    op.drop_table("installations")
    op.drop_table("parts")
    op.drop_table("bikes")
    op.drop_table("users")
