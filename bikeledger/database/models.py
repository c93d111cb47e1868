"""
bikeledger.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- users               — Mirror of the external identity provider (existence checks only)
- bikes               — User-owned bikes with a cumulative kilometre counter
- parts               — User-owned components; kilometrage follows the physical part
- installations       — Time-bounded part↔bike association (one open row per part)
- user_settings       — Per-user singleton holding the active bike reference
- kilometrage_log     — Append-only distance journal, one row per logged ride
- maintenance_records — Append-only service log for a bike or a part
- ownership_history   — Append-only transfer audit trail

All distances are stored in kilometres.
"""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from bikeledger.constants import utcnow

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all BikeLedger ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class BikeType(enum.StrEnum):
    ROAD = "road"
    MOUNTAIN = "mountain"
    HYBRID = "hybrid"
    GRAVEL = "gravel"
    EBIKE = "ebike"
    OTHER = "other"


class PartType(enum.StrEnum):
    CHAIN = "chain"
    TIRES = "tires"
    BRAKE_PADS = "brake_pads"
    CASSETTE = "cassette"
    DERAILLEUR = "derailleur"
    CRANKSET = "crankset"
    SADDLE = "saddle"
    HANDLEBAR = "handlebar"
    PEDALS = "pedals"
    OTHER = "other"


class MaintenanceType(enum.StrEnum):
    REPAIR = "repair"
    REPLACEMENT = "replacement"
    ADJUSTMENT = "adjustment"
    CLEANING = "cleaning"
    INSPECTION = "inspection"
    OTHER = "other"


class EntityType(enum.StrEnum):
    """Subject of a maintenance record or an ownership transfer."""
    BIKE = "bike"
    PART = "part"


# ---------------------------------------------------------------------------
# Users — identity mirror
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(100), default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<User id={self.id!r}>"


# ---------------------------------------------------------------------------
# Bikes
# ---------------------------------------------------------------------------
class Bike(Base):
    __tablename__ = "bikes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    brand: Mapped[str | None] = mapped_column(String(100), default=None)
    model: Mapped[str | None] = mapped_column(String(100), default=None)
    purchase_date: Mapped[date | None] = mapped_column(Date, default=None)
    total_kilometrage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONType, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    installations: Mapped[list[Installation]] = relationship(
        back_populates="bike", cascade="all, delete-orphan"
    )
    kilometrage_entries: Mapped[list[KilometrageLogEntry]] = relationship(
        back_populates="bike", cascade="all, delete-orphan"
    )
    maintenance_records: Mapped[list[MaintenanceRecord]] = relationship(
        back_populates="bike", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("total_kilometrage >= 0", name="ck_bikes_kilometrage_non_negative"),
        Index("ix_bikes_owner_id", "owner_id"),
        Index("ix_bikes_type", "type"),
    )

    def __repr__(self) -> str:
        return f"<Bike id={self.id} name={self.name!r} km={self.total_kilometrage:.1f}>"


# ---------------------------------------------------------------------------
# Parts
# ---------------------------------------------------------------------------
class Part(Base):
    __tablename__ = "parts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    brand: Mapped[str | None] = mapped_column(String(100), default=None)
    model: Mapped[str | None] = mapped_column(String(100), default=None)
    purchase_date: Mapped[date | None] = mapped_column(Date, default=None)
    total_kilometrage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    replacement_threshold_km: Mapped[float | None] = mapped_column(Float, default=None)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONType, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow
    )

    installations: Mapped[list[Installation]] = relationship(
        back_populates="part", cascade="all, delete-orphan"
    )
    maintenance_records: Mapped[list[MaintenanceRecord]] = relationship(
        back_populates="part", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("total_kilometrage >= 0", name="ck_parts_kilometrage_non_negative"),
        CheckConstraint(
            "replacement_threshold_km IS NULL OR replacement_threshold_km > 0",
            name="ck_parts_threshold_positive",
        ),
        Index("ix_parts_owner_id", "owner_id"),
        Index("ix_parts_type", "type"),
    )

    def __repr__(self) -> str:
        return f"<Part id={self.id} name={self.name!r} km={self.total_kilometrage:.1f}>"


# ---------------------------------------------------------------------------
# Installations — part↔bike with temporal validity
# ---------------------------------------------------------------------------
class Installation(Base):
    """One mounting interval of a part on a bike.

    ``removed_at IS NULL`` marks the open (current) installation.  The
    partial unique index guarantees at most one open row per part no matter
    which code path writes to the table.
    """
    __tablename__ = "installations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    part_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("parts.id", ondelete="CASCADE"), nullable=False
    )
    bike_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bikes.id", ondelete="CASCADE"), nullable=False
    )
    installed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    removed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )

    part: Mapped[Part] = relationship(back_populates="installations")
    bike: Mapped[Bike] = relationship(back_populates="installations")

    __table_args__ = (
        Index(
            "uq_installations_open_part",
            "part_id",
            unique=True,
            postgresql_where=text("removed_at IS NULL"),
            sqlite_where=text("removed_at IS NULL"),
        ),
        Index("ix_installations_bike_open", "bike_id", "removed_at"),
        Index("ix_installations_part_time", "part_id", "installed_at"),
    )

    @property
    def is_open(self) -> bool:
        return self.removed_at is None

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<Installation id={self.id} part={self.part_id} bike={self.bike_id} {state}>"


# ---------------------------------------------------------------------------
# UserSettings — active-bike reference and unit preference per user
# ---------------------------------------------------------------------------
class UserSettings(Base):
    __tablename__ = "user_settings"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    active_bike_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("bikes.id", ondelete="SET NULL"), nullable=True
    )
    # NULL: no preference, the configured default_unit applies.
    units: Mapped[str | None] = mapped_column(String(2), nullable=True, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "units IS NULL OR units IN ('km', 'mi')", name="ck_user_settings_units"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<UserSettings user={self.user_id} active_bike={self.active_bike_id} "
            f"units={self.units}>"
        )


# ---------------------------------------------------------------------------
# KilometrageLogEntry — append-only distance journal
# ---------------------------------------------------------------------------
class KilometrageLogEntry(Base):
    __tablename__ = "kilometrage_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    bike_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bikes.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    distance_km: Mapped[float] = mapped_column(Float, nullable=False)
    logged_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    notes: Mapped[str | None] = mapped_column(Text, default=None)

    bike: Mapped[Bike] = relationship(back_populates="kilometrage_entries")

    __table_args__ = (
        CheckConstraint("distance_km > 0", name="ck_kilometrage_log_positive"),
        Index("ix_kilometrage_log_bike_time", "bike_id", "logged_at"),
        Index("ix_kilometrage_log_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<KilometrageLogEntry id={self.id} bike={self.bike_id} km={self.distance_km}>"


# ---------------------------------------------------------------------------
# MaintenanceRecord — append-only service log
# ---------------------------------------------------------------------------
class MaintenanceRecord(Base):
    """A service performed on exactly one bike or one part."""
    __tablename__ = "maintenance_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    bike_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("bikes.id", ondelete="CASCADE"), nullable=True
    )
    part_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("parts.id", ondelete="CASCADE"), nullable=True
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    maintenance_type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    performed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    cost: Mapped[float | None] = mapped_column(Float, default=None)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSONType, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    bike: Mapped[Bike | None] = relationship(back_populates="maintenance_records")
    part: Mapped[Part | None] = relationship(back_populates="maintenance_records")

    __table_args__ = (
        CheckConstraint(
            "(bike_id IS NOT NULL AND part_id IS NULL) OR "
            "(bike_id IS NULL AND part_id IS NOT NULL)",
            name="ck_maintenance_single_subject",
        ),
        CheckConstraint("cost IS NULL OR cost >= 0", name="ck_maintenance_cost_non_negative"),
        Index("ix_maintenance_bike_time", "bike_id", "performed_at"),
        Index("ix_maintenance_part_time", "part_id", "performed_at"),
    )

    @property
    def subject_type(self) -> EntityType:
        return EntityType.BIKE if self.bike_id is not None else EntityType.PART

    @property
    def subject_id(self) -> str:
        return self.bike_id if self.bike_id is not None else self.part_id

    def __repr__(self) -> str:
        return (
            f"<MaintenanceRecord id={self.id} {self.subject_type}={self.subject_id} "
            f"type={self.maintenance_type!r}>"
        )


# ---------------------------------------------------------------------------
# OwnershipHistoryRecord — append-only transfer trail
# ---------------------------------------------------------------------------
class OwnershipHistoryRecord(Base):
    """No FK to the entity: the trail outlives bike/part deletion."""
    __tablename__ = "ownership_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(10), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    previous_owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    new_owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    transferred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    notes: Mapped[str | None] = mapped_column(Text, default=None)

    __table_args__ = (
        Index("ix_ownership_history_entity", "entity_type", "entity_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<OwnershipHistoryRecord {self.entity_type}={self.entity_id} "
            f"{self.previous_owner_id}->{self.new_owner_id}>"
        )
