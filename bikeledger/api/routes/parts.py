"""
bikeledger.api.routes.parts — Part registry, installation trail & transfer
==========================================================================
"""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from bikeledger.api.deps import get_engine, get_requester_id, get_unit
from bikeledger.api.routes.bikes import MaintenanceCreate, TransferRequest
from bikeledger.engine.units import Unit
from bikeledger.services import (
    installation_service,
    maintenance_service,
    part_service,
    stats_service,
    transfer_service,
)
from bikeledger.services.serializers import (
    bike_to_dict,
    installation_to_dict,
    maintenance_to_dict,
    ownership_to_dict,
    part_to_dict,
)

router = APIRouter(prefix="/parts", tags=["parts"])


class PartCreate(BaseModel):
    name: str | None = None
    type: str | None = None
    brand: str | None = None
    model: str | None = None
    purchase_date: date | None = None
    initial_kilometrage: float | None = None
    replacement_threshold: float | None = None
    metadata: dict[str, Any] | None = None


class PartUpdate(BaseModel):
    name: str | None = None
    type: str | None = None
    brand: str | None = None
    model: str | None = None
    purchase_date: date | None = None
    replacement_threshold: float | None = None
    metadata: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
@router.post("", status_code=201)
def create_part(
    body: PartCreate,
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    part = part_service.create_part(
        engine,
        owner_id=requester_id,
        name=body.name,
        type=body.type,
        brand=body.brand,
        model=body.model,
        purchase_date=body.purchase_date,
        initial_kilometrage=body.initial_kilometrage,
        replacement_threshold=body.replacement_threshold,
        unit=unit,
        metadata=body.metadata,
    )
    return part_to_dict(part, unit)


@router.get("")
def list_parts(
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    parts = part_service.list_parts(engine, owner_id=requester_id)
    return {"parts": [part_to_dict(p, unit) for p in parts]}


@router.get("/due")
def parts_due(
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    """Parts whose kilometrage has reached their replacement threshold."""
    parts = part_service.parts_due_for_replacement(engine, owner_id=requester_id)
    return {"parts": [part_to_dict(p, unit) for p in parts]}


@router.get("/{part_id}")
def get_part(
    part_id: str,
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    part, bike = part_service.get_part_with_bike(engine, part_id, requester_id=requester_id)
    data = part_to_dict(part, unit)
    data["current_bike_id"] = bike.id if bike is not None else None
    return data


@router.patch("/{part_id}")
def update_part(
    part_id: str,
    body: PartUpdate,
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    part = part_service.update_part(
        engine, part_id,
        requester_id=requester_id,
        patch=body.model_dump(exclude_unset=True),
        unit=unit,
    )
    return part_to_dict(part, unit)


@router.delete("/{part_id}", status_code=204)
def delete_part(
    part_id: str,
    requester_id: str = Depends(get_requester_id),
    engine=Depends(get_engine),
):
    part_service.delete_part(engine, part_id, requester_id=requester_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Installation trail
# ---------------------------------------------------------------------------
@router.get("/{part_id}/bike")
def current_bike(
    part_id: str,
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    bike = installation_service.get_current_bike(engine, part_id, requester_id=requester_id)
    return {"bike": bike_to_dict(bike, unit) if bike is not None else None}


@router.get("/{part_id}/installations")
def installation_history(
    part_id: str,
    requester_id: str = Depends(get_requester_id),
    engine=Depends(get_engine),
):
    rows = installation_service.get_installation_history(
        engine, part_id, requester_id=requester_id
    )
    return {"installations": [installation_to_dict(i) for i in rows]}


# ---------------------------------------------------------------------------
# Maintenance & stats
# ---------------------------------------------------------------------------
@router.post("/{part_id}/maintenance", status_code=201)
def record_maintenance(
    part_id: str,
    body: MaintenanceCreate,
    requester_id: str = Depends(get_requester_id),
    engine=Depends(get_engine),
):
    record = maintenance_service.record_maintenance(
        engine,
        subject_type="part",
        subject_id=part_id,
        requester_id=requester_id,
        maintenance_type=body.maintenance_type,
        description=body.description,
        performed_at=body.performed_at,
        cost=body.cost,
        metadata=body.metadata,
    )
    return maintenance_to_dict(record)


@router.get("/{part_id}/maintenance")
def maintenance_history(
    part_id: str,
    requester_id: str = Depends(get_requester_id),
    engine=Depends(get_engine),
):
    records = maintenance_service.maintenance_history(
        engine, subject_type="part", subject_id=part_id, requester_id=requester_id
    )
    return {"records": [maintenance_to_dict(r) for r in records]}


@router.get("/{part_id}/stats")
def part_stats(
    part_id: str,
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    return stats_service.part_stats(engine, part_id, requester_id=requester_id).to_dict(unit)


# ---------------------------------------------------------------------------
# Ownership
# ---------------------------------------------------------------------------
@router.post("/{part_id}/transfer")
def transfer_part(
    part_id: str,
    body: TransferRequest,
    requester_id: str = Depends(get_requester_id),
    unit: Unit = Depends(get_unit),
    engine=Depends(get_engine),
):
    result = transfer_service.transfer_part(
        engine, part_id,
        requester_id=requester_id,
        new_owner_id=body.new_owner_id,
        notes=body.notes,
    )
    closed = result.closed_installation
    return {
        "part": part_to_dict(result.part, unit),
        "closed_installation": installation_to_dict(closed) if closed is not None else None,
        "history": ownership_to_dict(result.record),
    }


@router.get("/{part_id}/ownership-history")
def part_ownership_history(
    part_id: str,
    requester_id: str = Depends(get_requester_id),
    engine=Depends(get_engine),
):
    records = transfer_service.ownership_history(
        engine, entity_type="part", entity_id=part_id, requester_id=requester_id
    )
    return {"history": [ownership_to_dict(r) for r in records]}
