"""
bikeledger.services.kilometrage_service — Kilometrage Ledger
=============================================================

Appends distance to a bike and cascades it to every part mounted on the
bike at that moment.  One transaction covers:

    1. Lock the bike row (owner-guarded).
    2. Append a ``kilometrage_log`` entry.
    3. Increment the bike's ``total_kilometrage``.
    4. Lock and increment each part with an open installation on the bike.

A concurrent install/remove on the same bike or part either commits before
this transaction (and its part is included/excluded accordingly) or after
it, never half-way through the cascade.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from bikeledger.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, parse_datetime, utcnow
from bikeledger.database.engine import run_in_transaction
from bikeledger.database.models import Bike, KilometrageLogEntry, Part
from bikeledger.engine.units import Unit, parse_unit
from bikeledger.errors import ValidationError
from bikeledger.services.active_bike_service import resolve_active_bike
from bikeledger.services.installation_service import active_parts_for
from bikeledger.services.ownership import owned_bike
from bikeledger.services.serializers import (
    bike_to_dict,
    kilometrage_entry_to_dict,
    part_to_dict,
)
from bikeledger.services.validation import optional_text, positive_distance_km

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass
class DistanceLogResult:
    """Outcome of one logged distance: the entry plus every row it touched."""

    entry: KilometrageLogEntry
    bike: Bike
    parts: list[Part] = field(default_factory=list)

    def to_dict(self, unit: Unit | str = Unit.KM) -> dict[str, Any]:
        return {
            "entry": kilometrage_entry_to_dict(self.entry, unit),
            "bike": bike_to_dict(self.bike, unit),
            "updated_parts": [part_to_dict(p, unit) for p in self.parts],
        }


def apply_distance(
    session: Session,
    bike: Bike,
    *,
    user_id: str,
    distance_km: float,
    notes: str | None = None,
    logged_at: datetime | None = None,
) -> DistanceLogResult:
    """Append + cascade on an already locked, already authorized *bike*."""
    entry = KilometrageLogEntry(
        bike_id=bike.id,
        user_id=user_id,
        distance_km=distance_km,
        logged_at=logged_at or utcnow(),
        notes=notes,
    )
    session.add(entry)

    # Increment in SQL so the new total never derives from a stale read.
    session.execute(
        update(Bike)
        .where(Bike.id == bike.id)
        .values(total_kilometrage=Bike.total_kilometrage + distance_km)
        .execution_options(synchronize_session=False)
    )
    parts = active_parts_for(session, bike.id, lock=True)
    if parts:
        session.execute(
            update(Part)
            .where(Part.id.in_([p.id for p in parts]))
            .values(total_kilometrage=Part.total_kilometrage + distance_km)
            .execution_options(synchronize_session=False)
        )

    session.flush()
    session.refresh(bike, ["total_kilometrage"])
    for part in parts:
        session.refresh(part, ["total_kilometrage"])
    return DistanceLogResult(entry=entry, bike=bike, parts=parts)


def log_distance(
    engine: Engine,
    bike_id: str,
    *,
    requester_id: str,
    distance: float,
    unit: Unit | str = Unit.KM,
    notes: str | None = None,
    logged_at: datetime | str | None = None,
) -> DistanceLogResult:
    """Log *distance* (in *unit*) on a bike and cascade it to mounted parts.

    Raises
    ------
    InvalidDistance
        *distance* is zero, negative or not a finite number.
    """
    distance_km = positive_distance_km(distance, parse_unit(unit))
    when = parse_datetime(logged_at, "logged_at")
    note = optional_text(notes)

    def _log(session: Session) -> DistanceLogResult:
        bike = owned_bike(session, bike_id, requester_id, lock=True)
        return apply_distance(
            session, bike,
            user_id=requester_id,
            distance_km=distance_km,
            notes=note,
            logged_at=when,
        )

    result = run_in_transaction(engine, _log, operation="log_distance")
    logger.info(
        "Logged %.2f km on bike %s (cascaded to %d parts)",
        distance_km, bike_id, len(result.parts),
    )
    return result


def log_distance_for_active_bike(
    engine: Engine,
    *,
    user_id: str,
    distance: float,
    unit: Unit | str = Unit.KM,
    notes: str | None = None,
) -> DistanceLogResult | None:
    """Trip-recording entry point: log on whichever bike is active.

    Returns ``None`` when the user has no active bike.
    """
    distance_km = positive_distance_km(distance, parse_unit(unit))
    note = optional_text(notes)

    def _log(session: Session) -> DistanceLogResult | None:
        bike = resolve_active_bike(session, user_id, lock=True)
        if bike is None:
            return None
        return apply_distance(session, bike, user_id=user_id, distance_km=distance_km, notes=note)

    result = run_in_transaction(engine, _log, operation="log_distance_for_active_bike")
    if result is None:
        logger.info("No active bike for %s — %.2f km not recorded", user_id, distance_km)
    else:
        logger.info("Trip of %.2f km recorded on active bike %s", distance_km, result.bike.id)
    return result


def get_history(
    engine: Engine,
    bike_id: str,
    *,
    requester_id: str,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
    max_page_size: int = MAX_PAGE_SIZE,
) -> list[KilometrageLogEntry]:
    """Paginated distance log for a bike, newest first.  Read-only."""
    if limit < 1 or limit > max_page_size:
        raise ValidationError(f"limit must be between 1 and {max_page_size}", field="limit")
    if offset < 0:
        raise ValidationError("offset must not be negative", field="offset")

    def _history(session: Session) -> list[KilometrageLogEntry]:
        owned_bike(session, bike_id, requester_id)
        return list(
            session.scalars(
                select(KilometrageLogEntry)
                .where(KilometrageLogEntry.bike_id == bike_id)
                .order_by(KilometrageLogEntry.logged_at.desc(), KilometrageLogEntry.id.desc())
                .limit(limit)
                .offset(offset)
            ).all()
        )

    return run_in_transaction(engine, _history, operation="get_kilometrage_history")
