"""
bikeledger.engine.stats — Derived Statistics
=============================================

Pure calculation.  No DB I/O inside the engine; the stats service gathers
the raw values and hands them over.

Distances come in as kilometres and are rendered in the requested unit on
the way out via :func:`BikeStats.to_dict` / :func:`PartStats.to_dict`.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime

from bikeledger.constants import as_utc
from bikeledger.engine.units import Unit, convert_fields

_BIKE_DISTANCE_FIELDS = ("total_kilometrage", "kilometrage_since_last_maintenance")
_PART_DISTANCE_FIELDS = (
    "total_kilometrage",
    "replacement_threshold_km",
    "kilometrage_until_replacement",
)


@dataclass
class BikeStats:
    bike_id: str
    total_kilometrage: float
    kilometrage_since_last_maintenance: float
    days_owned: int
    days_since_last_maintenance: int | None
    installed_parts_count: int
    last_maintenance_at: datetime | None = None

    def to_dict(self, unit: Unit | str = Unit.KM) -> dict:
        data = asdict(self)
        if self.last_maintenance_at is not None:
            data["last_maintenance_at"] = self.last_maintenance_at.isoformat()
        data["unit"] = str(unit)
        return convert_fields(data, _BIKE_DISTANCE_FIELDS, unit)


@dataclass
class PartStats:
    part_id: str
    total_kilometrage: float
    days_owned: int
    days_since_last_maintenance: int | None
    current_bike_id: str | None
    installation_count: int
    replacement_threshold_km: float | None = None
    needs_replacement: bool | None = None
    kilometrage_until_replacement: float | None = None
    last_maintenance_at: datetime | None = None

    def to_dict(self, unit: Unit | str = Unit.KM) -> dict:
        data = asdict(self)
        if self.last_maintenance_at is not None:
            data["last_maintenance_at"] = self.last_maintenance_at.isoformat()
        data["unit"] = str(unit)
        return convert_fields(data, _PART_DISTANCE_FIELDS, unit)


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------
def days_between(start: date | datetime | None, now: datetime) -> int | None:
    """Whole days from *start* to *now*, never negative.  ``None`` in, ``None`` out."""
    if start is None:
        return None
    if isinstance(start, datetime):
        delta = as_utc(now) - as_utc(start)
        return max(delta.days, 0)
    return max((as_utc(now).date() - start).days, 0)


def needs_replacement(total_km: float, threshold_km: float | None) -> bool | None:
    """``True`` once *total_km* reaches the threshold; ``None`` if no threshold is set."""
    if threshold_km is None:
        return None
    return total_km >= threshold_km


def kilometrage_until_replacement(
    total_km: float, threshold_km: float | None
) -> float | None:
    if threshold_km is None:
        return None
    return max(threshold_km - total_km, 0.0)


def ownership_start(
    purchase_date: date | None, created_at: datetime | None
) -> date | datetime | None:
    """Ownership counts from the purchase date when known, else from creation."""
    return purchase_date if purchase_date is not None else created_at


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------
def compute_bike_stats(
    *,
    bike_id: str,
    total_km: float,
    km_logged_since_maintenance: float | None,
    purchase_date: date | None,
    created_at: datetime | None,
    last_maintenance_at: datetime | None,
    installed_parts_count: int,
    now: datetime,
) -> BikeStats:
    """Assemble :class:`BikeStats`.

    With no maintenance on record the whole history counts, so
    ``kilometrage_since_last_maintenance`` equals the bike's total.
    """
    if last_maintenance_at is None or km_logged_since_maintenance is None:
        since = total_km
    else:
        since = min(km_logged_since_maintenance, total_km)

    return BikeStats(
        bike_id=bike_id,
        total_kilometrage=total_km,
        kilometrage_since_last_maintenance=since,
        days_owned=days_between(ownership_start(purchase_date, created_at), now) or 0,
        days_since_last_maintenance=days_between(last_maintenance_at, now),
        installed_parts_count=installed_parts_count,
        last_maintenance_at=as_utc(last_maintenance_at),
    )


def compute_part_stats(
    *,
    part_id: str,
    total_km: float,
    threshold_km: float | None,
    purchase_date: date | None,
    created_at: datetime | None,
    last_maintenance_at: datetime | None,
    current_bike_id: str | None,
    installation_count: int,
    now: datetime,
) -> PartStats:
    return PartStats(
        part_id=part_id,
        total_kilometrage=total_km,
        days_owned=days_between(ownership_start(purchase_date, created_at), now) or 0,
        days_since_last_maintenance=days_between(last_maintenance_at, now),
        current_bike_id=current_bike_id,
        installation_count=installation_count,
        replacement_threshold_km=threshold_km,
        needs_replacement=needs_replacement(total_km, threshold_km),
        kilometrage_until_replacement=kilometrage_until_replacement(total_km, threshold_km),
        last_maintenance_at=as_utc(last_maintenance_at),
    )
