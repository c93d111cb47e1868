"""
bikeledger.services.bike_service — Bike Registry
=================================================

CRUD for bikes owned by a user.  Reads and writes go through
:func:`run_in_transaction`; every per-bike operation starts with the guarded
lookup from :mod:`bikeledger.services.ownership`.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from bikeledger.constants import BIKE_PATCH_FIELDS, parse_date
from bikeledger.database.engine import run_in_transaction
from bikeledger.database.models import Bike, BikeType, Part, UserSettings
from bikeledger.engine.units import Unit, parse_unit
from bikeledger.errors import ValidationError
from bikeledger.services.installation_service import active_parts_for
from bikeledger.services.ownership import owned_bike
from bikeledger.services.validation import (
    non_negative_distance_km,
    optional_text,
    require_enum,
    require_text,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def create_bike(
    engine: Engine,
    *,
    owner_id: str,
    name: str,
    type: str,
    brand: str | None = None,
    model: str | None = None,
    purchase_date: date | str | None = None,
    initial_kilometrage: float | None = None,
    unit: Unit | str = Unit.KM,
    metadata: dict | None = None,
) -> Bike:
    """Register a new bike for *owner_id*.

    *initial_kilometrage* is interpreted in *unit* and stored in km;
    omitted means zero.
    """
    values = dict(
        owner_id=owner_id,
        name=require_text(name, "name"),
        type=require_enum(BikeType, type, "type").value,
        brand=optional_text(brand),
        model=optional_text(model),
        purchase_date=parse_date(purchase_date, "purchase_date"),
        total_kilometrage=non_negative_distance_km(
            initial_kilometrage, parse_unit(unit), "initial_kilometrage"
        ),
        metadata_=metadata,
    )

    def _create(session: Session) -> Bike:
        bike = Bike(**values)
        session.add(bike)
        session.flush()
        return bike

    created = run_in_transaction(engine, _create, operation="create_bike")
    logger.info("Bike %s created for %s (%.1f km)", created.id, owner_id, created.total_kilometrage)
    return created


def get_bike(engine: Engine, bike_id: str, *, requester_id: str) -> Bike:
    return run_in_transaction(
        engine,
        lambda session: owned_bike(session, bike_id, requester_id),
        operation="get_bike",
    )


def get_bike_with_parts(
    engine: Engine, bike_id: str, *, requester_id: str
) -> tuple[Bike, list[Part]]:
    """The bike and its installed parts, read in one transaction."""

    def _get(session: Session) -> tuple[Bike, list[Part]]:
        bike = owned_bike(session, bike_id, requester_id)
        return bike, active_parts_for(session, bike.id)

    return run_in_transaction(engine, _get, operation="get_bike_with_parts")


def list_bikes(engine: Engine, *, owner_id: str) -> list[Bike]:
    """All bikes of *owner_id*, newest first."""

    def _list(session: Session) -> list[Bike]:
        return list(
            session.scalars(
                select(Bike)
                .where(Bike.owner_id == owner_id)
                .order_by(Bike.created_at.desc(), Bike.id)
            ).all()
        )

    return run_in_transaction(engine, _list, operation="list_bikes")


def list_bikes_with_parts(engine: Engine, *, owner_id: str) -> list[tuple[Bike, list[Part]]]:
    """Like :func:`list_bikes`, paired with each bike's currently installed parts."""

    def _list(session: Session) -> list[tuple[Bike, list[Part]]]:
        bikes = session.scalars(
            select(Bike)
            .where(Bike.owner_id == owner_id)
            .order_by(Bike.created_at.desc(), Bike.id)
        ).all()
        return [(bike, active_parts_for(session, bike.id)) for bike in bikes]

    return run_in_transaction(engine, _list, operation="list_bikes_with_parts")


def _apply_patch(bike: Bike, patch: dict[str, Any]) -> None:
    unknown = set(patch) - BIKE_PATCH_FIELDS
    if unknown:
        raise ValidationError(
            f"Fields not updatable: {sorted(unknown)}", fields=sorted(unknown)
        )
    if "name" in patch:
        bike.name = require_text(patch["name"], "name")
    if "type" in patch:
        bike.type = require_enum(BikeType, patch["type"], "type").value
    if "brand" in patch:
        bike.brand = optional_text(patch["brand"])
    if "model" in patch:
        bike.model = optional_text(patch["model"])
    if "purchase_date" in patch:
        bike.purchase_date = parse_date(patch["purchase_date"], "purchase_date")
    if "metadata" in patch:
        bike.metadata_ = patch["metadata"]


def update_bike(
    engine: Engine, bike_id: str, *, requester_id: str, patch: dict[str, Any]
) -> Bike:
    """Partial update: only the keys present in *patch* change."""

    def _update(session: Session) -> Bike:
        bike = owned_bike(session, bike_id, requester_id, lock=True)
        _apply_patch(bike, patch)
        session.flush()
        return bike

    bike = run_in_transaction(engine, _update, operation="update_bike")
    logger.info("Bike %s updated (%s)", bike_id, ", ".join(sorted(patch)) or "no fields")
    return bike


def delete_bike(engine: Engine, bike_id: str, *, requester_id: str) -> None:
    """Delete a bike with its installations, kilometrage and maintenance rows."""

    def _delete(session: Session) -> None:
        bike = owned_bike(session, bike_id, requester_id, lock=True)
        session.execute(
            update(UserSettings)
            .where(UserSettings.active_bike_id == bike.id)
            .values(active_bike_id=None)
        )
        session.delete(bike)

    run_in_transaction(engine, _delete, operation="delete_bike")
    logger.info("Bike %s deleted by %s", bike_id, requester_id)
