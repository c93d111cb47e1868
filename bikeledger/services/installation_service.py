"""
bikeledger.services.installation_service — Installation Ledger
===============================================================

Tracks which part is mounted on which bike over time.

Central rule: a part has **at most one** open installation
(``removed_at IS NULL``).  Enforced twice:

* here, by ``install_part`` closing the previous open row and opening the
  new one inside a single transaction with the part row locked, and
* in storage, by the partial unique index ``uq_installations_open_part``.
  If a concurrent writer slips past the first check the index rejects the
  second open row; :func:`run_in_transaction` treats that as a
  serialization conflict and replays the install, which then closes the
  winner's row cleanly.

The session-level helpers (``active_parts_for``, ``active_bike_for``,
``open_installation``, ``installation_history``) take no requester.  They
are building blocks for the kilometrage cascade and transfers, which have
already done their ownership checks.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.orm import Session

from bikeledger.constants import utcnow
from bikeledger.database.engine import run_in_transaction
from bikeledger.database.models import Bike, Installation, Part
from bikeledger.errors import NotInstalled
from bikeledger.services.ownership import owned_bike, owned_part

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Session-level building blocks
# ---------------------------------------------------------------------------
def open_installation(
    session: Session, part_id: str, *, lock: bool = False
) -> Installation | None:
    stmt = select(Installation).where(
        Installation.part_id == part_id, Installation.removed_at.is_(None)
    )
    if lock:
        stmt = stmt.with_for_update()
    return session.scalar(stmt)


def active_parts_for(session: Session, bike_id: str, *, lock: bool = False) -> list[Part]:
    """Parts with an open installation on *bike_id*, in mounting order.

    With ``lock=True`` the part rows are held until commit so the set can't
    change under a cascade or transfer that is about to write to them.
    """
    stmt = (
        select(Part)
        .join(Installation, Installation.part_id == Part.id)
        .where(Installation.bike_id == bike_id, Installation.removed_at.is_(None))
        .order_by(Installation.installed_at, Installation.id)
    )
    if lock:
        stmt = stmt.with_for_update(of=Part)
    return list(session.scalars(stmt).all())


def active_bike_for(session: Session, part_id: str) -> Bike | None:
    """The bike the part is mounted on right now, or ``None``."""
    return session.scalar(
        select(Bike)
        .join(Installation, Installation.bike_id == Bike.id)
        .where(Installation.part_id == part_id, Installation.removed_at.is_(None))
    )


def installation_history(session: Session, part_id: str) -> list[Installation]:
    """Every installation of the part, open and closed, newest first."""
    return list(
        session.scalars(
            select(Installation)
            .where(Installation.part_id == part_id)
            .order_by(Installation.installed_at.desc(), Installation.id.desc())
        ).all()
    )


def close_open_installation(session: Session, part_id: str) -> Installation | None:
    """Stamp ``removed_at`` on the part's open row, if any, and flush."""
    current = open_installation(session, part_id, lock=True)
    if current is None:
        return None
    current.removed_at = utcnow()
    session.flush()
    return current


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------
def install_part(
    engine: Engine, *, part_id: str, bike_id: str, requester_id: str
) -> Installation:
    """Mount *part_id* on *bike_id*.

    The requester must own **both** the part and the bike.  Any open
    installation of the part, on this bike or another, is closed in the
    same transaction before the new row is inserted.
    """

    def _install(session: Session) -> tuple[Installation, str | None]:
        part = owned_part(session, part_id, requester_id, lock=True)
        bike = owned_bike(session, bike_id, requester_id, lock=True)

        previous = close_open_installation(session, part.id)
        installation = Installation(part_id=part.id, bike_id=bike.id, installed_at=utcnow())
        session.add(installation)
        session.flush()
        return installation, previous.bike_id if previous else None

    installation, previous_bike_id = run_in_transaction(
        engine, _install, operation="install_part"
    )
    if previous_bike_id is not None:
        logger.info(
            "Part %s moved from bike %s to bike %s", part_id, previous_bike_id, bike_id
        )
    else:
        logger.info("Part %s installed on bike %s", part_id, bike_id)
    return installation


def remove_part(
    engine: Engine, *, part_id: str, bike_id: str, requester_id: str
) -> Installation:
    """Close the open installation of *part_id* on *bike_id*.

    Raises
    ------
    NotInstalled
        No open row for exactly this (part, bike) pair.
    """

    def _remove(session: Session) -> Installation:
        owned_part(session, part_id, requester_id, lock=True)
        owned_bike(session, bike_id, requester_id)
        current = open_installation(session, part_id, lock=True)
        if current is None or current.bike_id != bike_id:
            raise NotInstalled(f"Part {part_id} is not installed on bike {bike_id}")
        current.removed_at = utcnow()
        session.flush()
        return current

    installation = run_in_transaction(engine, _remove, operation="remove_part")
    logger.info("Part %s removed from bike %s", part_id, bike_id)
    return installation


def get_installed_parts(engine: Engine, bike_id: str, *, requester_id: str) -> list[Part]:
    def _parts(session: Session) -> list[Part]:
        owned_bike(session, bike_id, requester_id)
        return active_parts_for(session, bike_id)

    return run_in_transaction(engine, _parts, operation="get_installed_parts")


def get_current_bike(engine: Engine, part_id: str, *, requester_id: str) -> Bike | None:
    def _bike(session: Session) -> Bike | None:
        owned_part(session, part_id, requester_id)
        return active_bike_for(session, part_id)

    return run_in_transaction(engine, _bike, operation="get_current_bike")


def get_installation_history(
    engine: Engine, part_id: str, *, requester_id: str
) -> list[Installation]:
    def _history(session: Session) -> list[Installation]:
        owned_part(session, part_id, requester_id)
        return installation_history(session, part_id)

    return run_in_transaction(engine, _history, operation="get_installation_history")
