"""
bikeledger.services.ownership — Guarded Lookups
================================================

One query filtered by id *and* owner.  A miss raises :class:`NotOwner`
whether the row is absent or belongs to someone else, so callers can't
probe for the existence of other users' bikes and parts.

Run these inside the transaction that mutates the row: with ``lock=True``
the row is held (``SELECT … FOR UPDATE``) until commit, which closes the
race between "check ownership" and "apply mutation" under a concurrent
transfer.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from bikeledger.database.models import Bike, EntityType, Part
from bikeledger.errors import InvalidEnum, NotOwner


def owned_bike(session: Session, bike_id: str, owner_id: str, *, lock: bool = False) -> Bike:
    stmt = select(Bike).where(Bike.id == bike_id, Bike.owner_id == owner_id)
    if lock:
        stmt = stmt.with_for_update()
    bike = session.scalar(stmt)
    if bike is None:
        raise NotOwner(f"Bike {bike_id} not found")
    return bike


def owned_part(session: Session, part_id: str, owner_id: str, *, lock: bool = False) -> Part:
    stmt = select(Part).where(Part.id == part_id, Part.owner_id == owner_id)
    if lock:
        stmt = stmt.with_for_update()
    part = session.scalar(stmt)
    if part is None:
        raise NotOwner(f"Part {part_id} not found")
    return part


def parse_entity_type(value: str | EntityType, field: str = "subject_type") -> EntityType:
    try:
        return EntityType(value)
    except ValueError:
        raise InvalidEnum(field, value, {e.value for e in EntityType}) from None


def owned_entity(
    session: Session,
    entity_type: EntityType,
    entity_id: str,
    owner_id: str,
    *,
    lock: bool = False,
) -> Bike | Part:
    if entity_type is EntityType.BIKE:
        return owned_bike(session, entity_id, owner_id, lock=lock)
    return owned_part(session, entity_id, owner_id, lock=lock)
