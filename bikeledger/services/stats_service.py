"""
bikeledger.services.stats_service — Statistics Calculator
==========================================================

Read-only.  Gathers raw values from the ledgers in one transaction and
hands them to :mod:`bikeledger.engine.stats` for the arithmetic.

Distance since last maintenance is computed by summing the kilometrage log
after the latest maintenance record rather than storing a snapshot on the
record.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from bikeledger.constants import utcnow
from bikeledger.database.engine import run_in_transaction
from bikeledger.database.models import EntityType, Installation, KilometrageLogEntry
from bikeledger.engine.stats import BikeStats, PartStats, compute_bike_stats, compute_part_stats
from bikeledger.services.installation_service import active_bike_for, active_parts_for
from bikeledger.services.maintenance_service import latest_maintenance_at
from bikeledger.services.ownership import owned_bike, owned_part

if TYPE_CHECKING:
    from sqlalchemy import Engine


def kilometrage_logged_since(session: Session, bike_id: str, since: datetime) -> float:
    """Sum of distances logged on the bike strictly after *since*."""
    total = session.scalar(
        select(func.coalesce(func.sum(KilometrageLogEntry.distance_km), 0.0)).where(
            KilometrageLogEntry.bike_id == bike_id,
            KilometrageLogEntry.logged_at > since,
        )
    )
    return float(total or 0.0)


def bike_stats(
    engine: Engine, bike_id: str, *, requester_id: str, now: datetime | None = None
) -> BikeStats:
    def _stats(session: Session) -> BikeStats:
        bike = owned_bike(session, bike_id, requester_id)
        last = latest_maintenance_at(session, EntityType.BIKE, bike.id)
        since = kilometrage_logged_since(session, bike.id, last) if last is not None else None
        return compute_bike_stats(
            bike_id=bike.id,
            total_km=bike.total_kilometrage,
            km_logged_since_maintenance=since,
            purchase_date=bike.purchase_date,
            created_at=bike.created_at,
            last_maintenance_at=last,
            installed_parts_count=len(active_parts_for(session, bike.id)),
            now=now or utcnow(),
        )

    return run_in_transaction(engine, _stats, operation="bike_stats")


def part_stats(
    engine: Engine, part_id: str, *, requester_id: str, now: datetime | None = None
) -> PartStats:
    def _stats(session: Session) -> PartStats:
        part = owned_part(session, part_id, requester_id)
        current = active_bike_for(session, part.id)
        installs = session.scalar(
            select(func.count()).select_from(Installation).where(Installation.part_id == part.id)
        )
        return compute_part_stats(
            part_id=part.id,
            total_km=part.total_kilometrage,
            threshold_km=part.replacement_threshold_km,
            purchase_date=part.purchase_date,
            created_at=part.created_at,
            last_maintenance_at=latest_maintenance_at(session, EntityType.PART, part.id),
            current_bike_id=current.id if current is not None else None,
            installation_count=int(installs or 0),
            now=now or utcnow(),
        )

    return run_in_transaction(engine, _stats, operation="part_stats")
