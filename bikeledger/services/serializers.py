"""
bikeledger.services.serializers — ORM rows → JSON-ready dicts
==============================================================

The single place where stored kilometres become the caller's unit.
Only loaded column attributes are read, so these work on detached rows
returned by the services.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from bikeledger.constants import as_utc
from bikeledger.database.models import (
    Bike,
    Installation,
    KilometrageLogEntry,
    MaintenanceRecord,
    OwnershipHistoryRecord,
    Part,
)
from bikeledger.engine.units import Unit, from_km


def _iso(value: date | datetime | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return value.isoformat()


def bike_to_dict(bike: Bike, unit: Unit | str = Unit.KM) -> dict[str, Any]:
    return {
        "id": bike.id,
        "owner_id": bike.owner_id,
        "name": bike.name,
        "type": bike.type,
        "brand": bike.brand,
        "model": bike.model,
        "purchase_date": _iso(bike.purchase_date),
        "total_kilometrage": from_km(bike.total_kilometrage, unit),
        "unit": str(unit),
        "metadata": bike.metadata_,
        "created_at": _iso(bike.created_at),
        "updated_at": _iso(bike.updated_at),
    }


def part_to_dict(part: Part, unit: Unit | str = Unit.KM) -> dict[str, Any]:
    return {
        "id": part.id,
        "owner_id": part.owner_id,
        "name": part.name,
        "type": part.type,
        "brand": part.brand,
        "model": part.model,
        "purchase_date": _iso(part.purchase_date),
        "total_kilometrage": from_km(part.total_kilometrage, unit),
        "replacement_threshold_km": from_km(part.replacement_threshold_km, unit),
        "unit": str(unit),
        "metadata": part.metadata_,
        "created_at": _iso(part.created_at),
        "updated_at": _iso(part.updated_at),
    }


def installation_to_dict(installation: Installation) -> dict[str, Any]:
    return {
        "id": installation.id,
        "part_id": installation.part_id,
        "bike_id": installation.bike_id,
        "installed_at": _iso(installation.installed_at),
        "removed_at": _iso(installation.removed_at),
        "active": installation.is_open,
    }


def kilometrage_entry_to_dict(
    entry: KilometrageLogEntry, unit: Unit | str = Unit.KM
) -> dict[str, Any]:
    return {
        "id": entry.id,
        "bike_id": entry.bike_id,
        "user_id": entry.user_id,
        "distance": from_km(entry.distance_km, unit),
        "unit": str(unit),
        "logged_at": _iso(entry.logged_at),
        "notes": entry.notes,
    }


def maintenance_to_dict(record: MaintenanceRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "subject_type": str(record.subject_type),
        "subject_id": record.subject_id,
        "maintenance_type": record.maintenance_type,
        "description": record.description,
        "performed_at": _iso(record.performed_at),
        "cost": record.cost,
        "metadata": record.metadata_,
    }


def ownership_to_dict(record: OwnershipHistoryRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "entity_type": record.entity_type,
        "entity_id": record.entity_id,
        "previous_owner_id": record.previous_owner_id,
        "new_owner_id": record.new_owner_id,
        "transferred_at": _iso(record.transferred_at),
        "notes": record.notes,
    }
