"""
bikeledger.services.maintenance_service — Maintenance Log
==========================================================

Insert-only service records for a bike or a part.  No update or delete
operation exists.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from bikeledger.constants import parse_datetime, utcnow
from bikeledger.database.engine import run_in_transaction
from bikeledger.database.models import EntityType, MaintenanceRecord, MaintenanceType
from bikeledger.services.ownership import owned_entity, parse_entity_type
from bikeledger.services.validation import optional_cost, require_enum, require_text

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def _subject_column(subject_type: EntityType):
    return (
        MaintenanceRecord.bike_id
        if subject_type is EntityType.BIKE
        else MaintenanceRecord.part_id
    )


def latest_maintenance_at(
    session: Session, subject_type: EntityType, subject_id: str
) -> datetime | None:
    """``performed_at`` of the most recent record for the subject, if any."""
    return session.scalar(
        select(MaintenanceRecord.performed_at)
        .where(_subject_column(subject_type) == subject_id)
        .order_by(MaintenanceRecord.performed_at.desc())
        .limit(1)
    )


def record_maintenance(
    engine: Engine,
    *,
    subject_type: str | EntityType,
    subject_id: str,
    requester_id: str,
    maintenance_type: str,
    description: str,
    performed_at: datetime | str | None = None,
    cost: float | None = None,
    metadata: dict | None = None,
) -> MaintenanceRecord:
    """Append a service record after checking the requester owns the subject.

    Raises
    ------
    InvalidEnum
        Unknown *subject_type* or *maintenance_type*.
    ValidationError
        Blank description, negative cost or malformed *performed_at*.
    """
    kind = parse_entity_type(subject_type)
    values = dict(
        user_id=requester_id,
        maintenance_type=require_enum(MaintenanceType, maintenance_type, "maintenance_type").value,
        description=require_text(description, "description"),
        performed_at=parse_datetime(performed_at, "performed_at") or utcnow(),
        cost=optional_cost(cost),
        metadata_=metadata,
    )

    def _record(session: Session) -> MaintenanceRecord:
        subject = owned_entity(session, kind, subject_id, requester_id, lock=True)
        record = MaintenanceRecord(
            bike_id=subject.id if kind is EntityType.BIKE else None,
            part_id=subject.id if kind is EntityType.PART else None,
            **values,
        )
        session.add(record)
        session.flush()
        return record

    record = run_in_transaction(engine, _record, operation="record_maintenance")
    logger.info(
        "Maintenance %s recorded on %s %s", record.maintenance_type, kind, subject_id
    )
    return record


def maintenance_history(
    engine: Engine,
    *,
    subject_type: str | EntityType,
    subject_id: str,
    requester_id: str,
) -> list[MaintenanceRecord]:
    """All records for the subject, most recently performed first."""
    kind = parse_entity_type(subject_type)

    def _history(session: Session) -> list[MaintenanceRecord]:
        owned_entity(session, kind, subject_id, requester_id)
        return list(
            session.scalars(
                select(MaintenanceRecord)
                .where(_subject_column(kind) == subject_id)
                .order_by(MaintenanceRecord.performed_at.desc(), MaintenanceRecord.id.desc())
            ).all()
        )

    return run_in_transaction(engine, _history, operation="maintenance_history")
