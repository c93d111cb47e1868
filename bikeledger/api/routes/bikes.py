"""
bikeledger.api.routes.bikes — Bike registry, kilometrage, maintenance & transfer
=================================================================================
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel

from bikeledger.api.deps import get_config, get_engine, get_requester_id, get_unit
from bikeledger.config import BikeLedgerConfig
from bikeledger.engine.units import Unit
from bikeledger.services import (
    active_bike_service,
    bike_service,
    installation_service,
    kilometrage_service,
    maintenance_service,
    stats_service,
    transfer_service,
)
from bikeledger.services.serializers import (
    bike_to_dict,
    installation_to_dict,
    kilometrage_entry_to_dict,
    maintenance_to_dict,
    ownership_to_dict,
    part_to_dict,
)

router = APIRouter(prefix="/bikes", tags=["bikes"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class BikeCreate(BaseModel):
    name: str | None = None
    type: str | None = None
    brand: str | None = None
    model: str | None = None
    purchase_date: date | None = None
    initial_kilometrage: float | None = None
    metadata: dict[str, Any] | None = None


class BikeUpdate(BaseModel):
    name: str | None = None
    type: str | None = None
    brand: str | None = None
    model: str | None = None
    purchase_date: date | None = None
    metadata: dict[str, Any] | None = None


class DistanceCreate(BaseModel):
    distance: float | str | None = None
    notes: str | None = None
    logged_at: datetime | str | None = None


class MaintenanceCreate(BaseModel):
    maintenance_type: str | None = None
    description: str | None = None
    performed_at: datetime | str | None = None
    cost: float | None = None
    metadata: dict[str, Any] | None = None


class TransferRequest(BaseModel):
    new_owner_id: str | None = None
    notes: str | None = None


def _bike_with_parts(bike, parts, unit: Unit) -> dict:
    data = bike_to_dict(bike, unit)
    data["installed_parts"] = [part_to_dict(p, unit) for p in parts]
    return data


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
@router.post("", status_code=201)
def create_bike(
    body: BikeCreate,
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    bike = bike_service.create_bike(
        engine,
        owner_id=requester_id,
        name=body.name,
        type=body.type,
        brand=body.brand,
        model=body.model,
        purchase_date=body.purchase_date,
        initial_kilometrage=body.initial_kilometrage,
        unit=unit,
        metadata=body.metadata,
    )
    return bike_to_dict(bike, unit)


@router.get("")
def list_bikes(
    include_parts: bool = Query(False),
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    """The caller's bikes, newest first; optionally with installed parts."""
    if include_parts:
        rows = bike_service.list_bikes_with_parts(engine, owner_id=requester_id)
        return {"bikes": [_bike_with_parts(b, parts, unit) for b, parts in rows]}
    bikes = bike_service.list_bikes(engine, owner_id=requester_id)
    return {"bikes": [bike_to_dict(b, unit) for b in bikes]}


# Registered before /{bike_id} so "active" is not taken for an id.
@router.get("/active")
def get_active_bike(
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    active = active_bike_service.get_active(engine, user_id=requester_id)
    if active is None:
        return {"active_bike": None}
    return {"active_bike": _bike_with_parts(active.bike, active.parts, unit)}


@router.post("/active/kilometrage", status_code=201)
def log_active_distance(
    body: DistanceCreate,
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    """Trip recording: log distance on whichever bike is active."""
    result = kilometrage_service.log_distance_for_active_bike(
        engine,
        user_id=requester_id,
        distance=body.distance,
        unit=unit,
        notes=body.notes,
    )
    if result is None:
        return {"recorded": False}
    return {"recorded": True, **result.to_dict(unit)}


@router.get("/{bike_id}")
def get_bike(
    bike_id: str,
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    bike, parts = bike_service.get_bike_with_parts(engine, bike_id, requester_id=requester_id)
    return _bike_with_parts(bike, parts, unit)


@router.patch("/{bike_id}")
def update_bike(
    bike_id: str,
    body: BikeUpdate,
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    bike = bike_service.update_bike(
        engine, bike_id,
        requester_id=requester_id,
        patch=body.model_dump(exclude_unset=True),
    )
    return bike_to_dict(bike, unit)


@router.delete("/{bike_id}", status_code=204)
def delete_bike(
    bike_id: str,
    requester_id: str = Depends(get_requester_id),
    engine=Depends(get_engine),
):
    bike_service.delete_bike(engine, bike_id, requester_id=requester_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Installations
# ---------------------------------------------------------------------------
@router.get("/{bike_id}/parts")
def list_installed_parts(
    bike_id: str,
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    parts = installation_service.get_installed_parts(engine, bike_id, requester_id=requester_id)
    return {"parts": [part_to_dict(p, unit) for p in parts]}


@router.put("/{bike_id}/parts/{part_id}", status_code=201)
def install_part(
    bike_id: str,
    part_id: str,
    requester_id: str = Depends(get_requester_id),
    engine=Depends(get_engine),
):
    installation = installation_service.install_part(
        engine, part_id=part_id, bike_id=bike_id, requester_id=requester_id
    )
    return installation_to_dict(installation)


@router.delete("/{bike_id}/parts/{part_id}")
def remove_part(
    bike_id: str,
    part_id: str,
    requester_id: str = Depends(get_requester_id),
    engine=Depends(get_engine),
):
    installation = installation_service.remove_part(
        engine, part_id=part_id, bike_id=bike_id, requester_id=requester_id
    )
    return installation_to_dict(installation)


# ---------------------------------------------------------------------------
# Active bike
# ---------------------------------------------------------------------------
@router.post("/{bike_id}/activate")
def activate_bike(
    bike_id: str,
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    bike = active_bike_service.set_active(engine, user_id=requester_id, bike_id=bike_id)
    return {"active_bike": bike_to_dict(bike, unit)}


@router.post("/{bike_id}/deactivate")
def deactivate_bike(
    bike_id: str,
    requester_id: str = Depends(get_requester_id),
    engine=Depends(get_engine),
):
    active_bike_service.deactivate(engine, user_id=requester_id, bike_id=bike_id)
    return {"active_bike": None}


# ---------------------------------------------------------------------------
# Kilometrage
# ---------------------------------------------------------------------------
@router.post("/{bike_id}/kilometrage", status_code=201)
def log_distance(
    bike_id: str,
    body: DistanceCreate,
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    result = kilometrage_service.log_distance(
        engine, bike_id,
        requester_id=requester_id,
        distance=body.distance,
        unit=unit,
        notes=body.notes,
        logged_at=body.logged_at,
    )
    return result.to_dict(unit)


@router.get("/{bike_id}/kilometrage")
def kilometrage_history(
    bike_id: str,
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    cfg: BikeLedgerConfig = Depends(get_config),
    engine=Depends(get_engine),
):
    entries = kilometrage_service.get_history(
        engine, bike_id,
        requester_id=requester_id,
        limit=limit or cfg.default_page_size,
        offset=offset,
        max_page_size=cfg.max_page_size,
    )
    return {"entries": [kilometrage_entry_to_dict(e, unit) for e in entries]}


# ---------------------------------------------------------------------------
# Maintenance & stats
# ---------------------------------------------------------------------------
@router.post("/{bike_id}/maintenance", status_code=201)
def record_maintenance(
    bike_id: str,
    body: MaintenanceCreate,
    requester_id: str = Depends(get_requester_id),
    engine=Depends(get_engine),
):
    record = maintenance_service.record_maintenance(
        engine,
        subject_type="bike",
        subject_id=bike_id,
        requester_id=requester_id,
        maintenance_type=body.maintenance_type,
        description=body.description,
        performed_at=body.performed_at,
        cost=body.cost,
        metadata=body.metadata,
    )
    return maintenance_to_dict(record)


@router.get("/{bike_id}/maintenance")
def maintenance_history(
    bike_id: str,
    requester_id: str = Depends(get_requester_id),
    engine=Depends(get_engine),
):
    records = maintenance_service.maintenance_history(
        engine, subject_type="bike", subject_id=bike_id, requester_id=requester_id
    )
    return {"records": [maintenance_to_dict(r) for r in records]}


@router.get("/{bike_id}/stats")
def bike_stats(
    bike_id: str,
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    return stats_service.bike_stats(engine, bike_id, requester_id=requester_id).to_dict(unit)


# ---------------------------------------------------------------------------
# Ownership
# ---------------------------------------------------------------------------
@router.post("/{bike_id}/transfer")
def transfer_bike(
    bike_id: str,
    body: TransferRequest,
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    result = transfer_service.transfer_bike(
        engine, bike_id,
        requester_id=requester_id,
        new_owner_id=body.new_owner_id,
        notes=body.notes,
    )
    return {
        "bike": bike_to_dict(result.bike, unit),
        "transferred_parts": [part_to_dict(p, unit) for p in result.parts],
        "history": [ownership_to_dict(r) for r in result.records],
    }


@router.get("/{bike_id}/ownership-history")
def bike_ownership_history(
    bike_id: str,
    requester_id: str = Depends(get_requester_id),
    engine=Depends(get_engine),
):
    records = transfer_service.ownership_history(
        engine, entity_type="bike", entity_id=bike_id, requester_id=requester_id
    )
    return {"history": [ownership_to_dict(r) for r in records]}
