"""
bikeledger.services.part_service — Part Registry
=================================================

CRUD for parts owned by a user.  A part's kilometrage belongs to the
physical part: it is never reset by moving the part between bikes or
owners.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from bikeledger.constants import PART_PATCH_FIELDS, parse_date
from bikeledger.database.engine import run_in_transaction
from bikeledger.database.models import Bike, Part, PartType
from bikeledger.engine.units import Unit, parse_unit
from bikeledger.errors import ValidationError
from bikeledger.services.installation_service import active_bike_for
from bikeledger.services.ownership import owned_part
from bikeledger.services.validation import (
    non_negative_distance_km,
    optional_text,
    optional_threshold_km,
    require_enum,
    require_text,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def create_part(
    engine: Engine,
    *,
    owner_id: str,
    name: str,
    type: str,
    brand: str | None = None,
    model: str | None = None,
    purchase_date: date | str | None = None,
    initial_kilometrage: float | None = None,
    replacement_threshold: float | None = None,
    unit: Unit | str = Unit.KM,
    metadata: dict | None = None,
) -> Part:
    """Register a new part.  Both distances are given in *unit*."""
    parsed_unit = parse_unit(unit)
    values = dict(
        owner_id=owner_id,
        name=require_text(name, "name"),
        type=require_enum(PartType, type, "type").value,
        brand=optional_text(brand),
        model=optional_text(model),
        purchase_date=parse_date(purchase_date, "purchase_date"),
        total_kilometrage=non_negative_distance_km(
            initial_kilometrage, parsed_unit, "initial_kilometrage"
        ),
        replacement_threshold_km=optional_threshold_km(replacement_threshold, parsed_unit),
        metadata_=metadata,
    )

    def _create(session: Session) -> Part:
        part = Part(**values)
        session.add(part)
        session.flush()
        return part

    part = run_in_transaction(engine, _create, operation="create_part")
    logger.info("Part %s (%s) created for %s", part.id, part.type, owner_id)
    return part


def get_part(engine: Engine, part_id: str, *, requester_id: str) -> Part:
    return run_in_transaction(
        engine,
        lambda session: owned_part(session, part_id, requester_id),
        operation="get_part",
    )


def get_part_with_bike(
    engine: Engine, part_id: str, *, requester_id: str
) -> tuple[Part, Bike | None]:
    """The part and the bike it is mounted on (or ``None``), read in one transaction."""

    def _get(session: Session) -> tuple[Part, Bike | None]:
        part = owned_part(session, part_id, requester_id)
        return part, active_bike_for(session, part.id)

    return run_in_transaction(engine, _get, operation="get_part_with_bike")


def list_parts(engine: Engine, *, owner_id: str) -> list[Part]:
    """All parts of *owner_id*, newest first."""

    def _list(session: Session) -> list[Part]:
        return list(
            session.scalars(
                select(Part)
                .where(Part.owner_id == owner_id)
                .order_by(Part.created_at.desc(), Part.id)
            ).all()
        )

    return run_in_transaction(engine, _list, operation="list_parts")


def parts_due_for_replacement(engine: Engine, *, owner_id: str) -> list[Part]:
    """Parts whose kilometrage has reached their replacement threshold."""

    def _due(session: Session) -> list[Part]:
        return list(
            session.scalars(
                select(Part)
                .where(
                    Part.owner_id == owner_id,
                    Part.replacement_threshold_km.is_not(None),
                    Part.total_kilometrage >= Part.replacement_threshold_km,
                )
                .order_by(Part.total_kilometrage.desc())
            ).all()
        )

    return run_in_transaction(engine, _due, operation="parts_due_for_replacement")


def _apply_patch(part: Part, patch: dict[str, Any], unit: Unit) -> None:
    unknown = set(patch) - PART_PATCH_FIELDS
    if unknown:
        raise ValidationError(
            f"Fields not updatable: {sorted(unknown)}", fields=sorted(unknown)
        )
    if "name" in patch:
        part.name = require_text(patch["name"], "name")
    if "type" in patch:
        part.type = require_enum(PartType, patch["type"], "type").value
    if "brand" in patch:
        part.brand = optional_text(patch["brand"])
    if "model" in patch:
        part.model = optional_text(patch["model"])
    if "purchase_date" in patch:
        part.purchase_date = parse_date(patch["purchase_date"], "purchase_date")
    if "replacement_threshold" in patch:
        part.replacement_threshold_km = optional_threshold_km(
            patch["replacement_threshold"], unit
        )
    if "metadata" in patch:
        part.metadata_ = patch["metadata"]


def update_part(
    engine: Engine,
    part_id: str,
    *,
    requester_id: str,
    patch: dict[str, Any],
    unit: Unit | str = Unit.KM,
) -> Part:
    """Partial update.  ``replacement_threshold`` in *patch* is read in *unit*."""
    parsed_unit = parse_unit(unit)

    def _update(session: Session) -> Part:
        part = owned_part(session, part_id, requester_id, lock=True)
        _apply_patch(part, patch, parsed_unit)
        session.flush()
        return part

    part = run_in_transaction(engine, _update, operation="update_part")
    logger.info("Part %s updated (%s)", part_id, ", ".join(sorted(patch)) or "no fields")
    return part


def delete_part(engine: Engine, part_id: str, *, requester_id: str) -> None:
    """Delete a part together with its installation and maintenance rows."""

    def _delete(session: Session) -> None:
        part = owned_part(session, part_id, requester_id, lock=True)
        session.delete(part)

    run_in_transaction(engine, _delete, operation="delete_part")
    logger.info("Part %s deleted by %s", part_id, requester_id)
