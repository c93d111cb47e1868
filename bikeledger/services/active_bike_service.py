"""
bikeledger.services.active_bike_service — Active Bike Selector
===============================================================

Each user has one ``user_settings`` row whose ``active_bike_id`` names the
bike that receives distance from trip recording.  It is a single mutable
reference: selecting a new bike overwrites the old value, nothing is
archived, and no flag lives on the bike rows themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from bikeledger.database.engine import run_in_transaction
from bikeledger.database.models import Bike, Part, UserSettings
from bikeledger.errors import ConflictNotActive
from bikeledger.services.installation_service import active_parts_for
from bikeledger.services.ownership import owned_bike
from bikeledger.services.settings_service import get_or_create_settings

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


@dataclass
class ActiveBike:
    bike: Bike
    parts: list[Part] = field(default_factory=list)


def resolve_active_bike(session: Session, user_id: str, *, lock: bool = False) -> Bike | None:
    """The user's active bike, or ``None``.

    A reference to a bike the user no longer owns reads as "none selected".
    """
    active_id = session.scalar(
        select(UserSettings.active_bike_id).where(UserSettings.user_id == user_id)
    )
    if active_id is None:
        return None
    stmt = select(Bike).where(Bike.id == active_id, Bike.owner_id == user_id)
    if lock:
        stmt = stmt.with_for_update()
    return session.scalar(stmt)


def set_active(engine: Engine, *, user_id: str, bike_id: str) -> Bike:
    """Make *bike_id* the user's active bike, replacing any previous choice."""

    def _set(session: Session) -> tuple[Bike, str | None]:
        bike = owned_bike(session, bike_id, user_id, lock=True)
        settings = get_or_create_settings(session, user_id, lock=True)
        previous = settings.active_bike_id
        settings.active_bike_id = bike.id
        session.flush()
        return bike, previous

    bike, previous = run_in_transaction(engine, _set, operation="set_active")
    logger.info("User %s active bike %s → %s", user_id, previous, bike_id)
    return bike


def deactivate(engine: Engine, *, user_id: str, bike_id: str) -> None:
    """Clear the selection.

    Raises
    ------
    ConflictNotActive
        *bike_id* is not the user's active bike.
    """

    def _deactivate(session: Session) -> None:
        owned_bike(session, bike_id, user_id)
        settings = get_or_create_settings(session, user_id, lock=True)
        if settings.active_bike_id != bike_id:
            raise ConflictNotActive(f"Bike {bike_id} is not the active bike")
        settings.active_bike_id = None
        session.flush()

    run_in_transaction(engine, _deactivate, operation="deactivate")
    logger.info("User %s deactivated bike %s", user_id, bike_id)


def get_active(engine: Engine, *, user_id: str) -> ActiveBike | None:
    """The active bike with its mounted parts, or ``None`` when nothing is selected."""

    def _get(session: Session) -> ActiveBike | None:
        bike = resolve_active_bike(session, user_id)
        if bike is None:
            return None
        return ActiveBike(bike=bike, parts=active_parts_for(session, bike.id))

    return run_in_transaction(engine, _get, operation="get_active")
