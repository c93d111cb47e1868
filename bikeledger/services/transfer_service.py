"""
bikeledger.services.transfer_service — Ownership Transfer Engine
=================================================================

Reassigns a bike (with the parts mounted on it) or a single part to a
different user.  Each transfer is one transaction:

    bike:  lock bike → lock mounted parts → reassign all → one history row each
    part:  lock part → close open installation → reassign → one history row

Kilometrage is never touched.  After commit the previous owner loses access
because every other operation filters by ``owner_id``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from bikeledger.constants import utcnow
from bikeledger.database.engine import run_in_transaction
from bikeledger.database.models import (
    Bike,
    EntityType,
    Installation,
    OwnershipHistoryRecord,
    Part,
    UserSettings,
)
from bikeledger.errors import InvalidTransfer, NotOwner, UnknownUser
from bikeledger.services.identity_service import UserExists, user_exists
from bikeledger.services.installation_service import active_parts_for, close_open_installation
from bikeledger.services.ownership import (
    owned_bike,
    owned_entity,
    owned_part,
    parse_entity_type,
)
from bikeledger.services.validation import optional_text, require_text

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass
class BikeTransferResult:
    bike: Bike
    parts: list[Part] = field(default_factory=list)
    records: list[OwnershipHistoryRecord] = field(default_factory=list)


@dataclass
class PartTransferResult:
    part: Part
    closed_installation: Installation | None = None
    record: OwnershipHistoryRecord | None = None


def _check_target(
    session: Session, requester_id: str, new_owner_id: str, exists: UserExists
) -> None:
    if new_owner_id == requester_id:
        raise InvalidTransfer("Cannot transfer to yourself")
    if not exists(session, new_owner_id):
        raise UnknownUser(f"User {new_owner_id} does not exist")


def _history(
    entity_type: EntityType,
    entity_id: str,
    previous_owner_id: str,
    new_owner_id: str,
    notes: str | None,
) -> OwnershipHistoryRecord:
    return OwnershipHistoryRecord(
        entity_type=entity_type.value,
        entity_id=entity_id,
        previous_owner_id=previous_owner_id,
        new_owner_id=new_owner_id,
        transferred_at=utcnow(),
        notes=notes,
    )


def transfer_bike(
    engine: Engine,
    bike_id: str,
    *,
    requester_id: str,
    new_owner_id: str,
    notes: str | None = None,
    exists: UserExists = user_exists,
) -> BikeTransferResult:
    """Give a bike and its currently installed parts to *new_owner_id*.

    Installations stay open; the parts move with the bike.  If the bike
    was the previous owner's active bike, that selection is cleared.

    Raises
    ------
    InvalidTransfer
        *new_owner_id* is the requester.
    UnknownUser
        *new_owner_id* is not a known user.
    NotOwner
        The requester does not own the bike.
    """
    target = require_text(new_owner_id, "new_owner_id")
    note = optional_text(notes)

    def _transfer(session: Session) -> BikeTransferResult:
        _check_target(session, requester_id, target, exists)
        bike = owned_bike(session, bike_id, requester_id, lock=True)
        parts = active_parts_for(session, bike.id, lock=True)

        records = [_history(EntityType.BIKE, bike.id, requester_id, target, note)]
        bike.owner_id = target
        for part in parts:
            if part.owner_id != requester_id:
                # Mounted parts share the bike's owner.
                raise NotOwner(f"Part {part.id} on bike {bike.id} is not owned by requester")
            records.append(_history(EntityType.PART, part.id, requester_id, target, note))
            part.owner_id = target

        session.execute(
            update(UserSettings)
            .where(
                UserSettings.user_id == requester_id,
                UserSettings.active_bike_id == bike.id,
            )
            .values(active_bike_id=None)
        )
        session.add_all(records)
        session.flush()
        return BikeTransferResult(bike=bike, parts=parts, records=records)

    result = run_in_transaction(engine, _transfer, operation="transfer_bike")
    logger.info(
        "Bike %s transferred %s → %s with %d parts",
        bike_id, requester_id, target, len(result.parts),
    )
    return result


def transfer_part(
    engine: Engine,
    part_id: str,
    *,
    requester_id: str,
    new_owner_id: str,
    notes: str | None = None,
    exists: UserExists = user_exists,
) -> PartTransferResult:
    """Give a single part to *new_owner_id*.

    A mounted part is unmounted first, in the same transaction; a part is
    never owned by one user while installed on another user's bike.
    """
    target = require_text(new_owner_id, "new_owner_id")
    note = optional_text(notes)

    def _transfer(session: Session) -> PartTransferResult:
        _check_target(session, requester_id, target, exists)
        part = owned_part(session, part_id, requester_id, lock=True)
        closed = close_open_installation(session, part.id)

        record = _history(EntityType.PART, part.id, requester_id, target, note)
        part.owner_id = target
        session.add(record)
        session.flush()
        return PartTransferResult(part=part, closed_installation=closed, record=record)

    result = run_in_transaction(engine, _transfer, operation="transfer_part")
    if result.closed_installation is not None:
        logger.info(
            "Part %s unmounted from bike %s and transferred %s → %s",
            part_id, result.closed_installation.bike_id, requester_id, target,
        )
    else:
        logger.info("Part %s transferred %s → %s", part_id, requester_id, target)
    return result


def ownership_history(
    engine: Engine,
    *,
    entity_type: str | EntityType,
    entity_id: str,
    requester_id: str,
) -> list[OwnershipHistoryRecord]:
    """Transfer trail of an entity the requester currently owns, newest first."""
    kind = parse_entity_type(entity_type, "entity_type")

    def _history_rows(session: Session) -> list[OwnershipHistoryRecord]:
        owned_entity(session, kind, entity_id, requester_id)
        return list(
            session.scalars(
                select(OwnershipHistoryRecord)
                .where(
                    OwnershipHistoryRecord.entity_type == kind.value,
                    OwnershipHistoryRecord.entity_id == entity_id,
                )
                .order_by(
                    OwnershipHistoryRecord.transferred_at.desc(),
                    OwnershipHistoryRecord.id.desc(),
                )
            ).all()
        )

    return run_in_transaction(engine, _history_rows, operation="ownership_history")
