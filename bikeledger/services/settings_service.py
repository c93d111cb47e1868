"""
bikeledger.services.settings_service — Per-user Settings
=========================================================

One ``user_settings`` row per user holds the active bike (see
:mod:`bikeledger.services.active_bike_service`) and the preferred distance
unit.  The row is created lazily on first write.

Unit resolution for a request, most specific first:

    1. An explicit ``?unit=`` on the request.
    2. The user's stored ``units`` preference.
    3. ``default_unit`` from ``config.yaml``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from bikeledger.database.engine import run_in_transaction
from bikeledger.database.models import UserSettings
from bikeledger.engine.units import Unit
from bikeledger.services.validation import require_enum

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def get_or_create_settings(session: Session, user_id: str, *, lock: bool = False) -> UserSettings:
    """Fetch or insert the user's settings row."""
    stmt = select(UserSettings).where(UserSettings.user_id == user_id)
    if lock:
        stmt = stmt.with_for_update()
    settings = session.scalar(stmt)
    if settings is None:
        settings = UserSettings(user_id=user_id)
        session.add(settings)
        session.flush()
    return settings


def get_settings(engine: Engine, *, user_id: str) -> dict[str, Any]:
    """The user's settings as a plain dict; defaults when no row exists yet."""

    def _get(session: Session) -> dict[str, Any]:
        row = session.scalar(select(UserSettings).where(UserSettings.user_id == user_id))
        return {
            "active_bike_id": row.active_bike_id if row is not None else None,
            "units": row.units if row is not None else None,
        }

    return run_in_transaction(engine, _get, operation="get_settings")


def get_unit_preference(engine: Engine, *, user_id: str) -> Unit | None:
    """The stored unit preference, or ``None`` when the user never chose one."""
    stored = run_in_transaction(
        engine,
        lambda session: session.scalar(
            select(UserSettings.units).where(UserSettings.user_id == user_id)
        ),
        operation="get_unit_preference",
    )
    return Unit(stored) if stored else None


def set_unit_preference(engine: Engine, *, user_id: str, unit: Unit | str | None) -> Unit | None:
    """Store *unit* as the user's preference; ``None`` clears it.

    Raises
    ------
    InvalidEnum
        *unit* is neither ``km`` nor ``mi``.
    """
    chosen = None
    if unit is not None:
        chosen = require_enum(Unit, str(unit).strip().lower(), "units")

    def _set(session: Session) -> None:
        settings = get_or_create_settings(session, user_id, lock=True)
        settings.units = chosen.value if chosen is not None else None
        session.flush()

    run_in_transaction(engine, _set, operation="set_unit_preference")
    logger.info("User %s unit preference → %s", user_id, chosen.value if chosen else "default")
    return chosen
