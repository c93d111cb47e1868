"""
bikeledger.database.engine — Database Connection & Unit of Work
================================================================

Every public operation in :mod:`bikeledger.services` is a single
serializable transaction.  Services never open sessions directly; they hand
a ``work(session)`` callable to :func:`run_in_transaction`, which:

    1. Opens a :class:`Session` and begins a transaction.
    2. Runs ``work(session)``: guarded lookups, row locks and writes.
    3. Commits.  Any exception rolls the whole unit back.
    4. On a serialization conflict, retries with exponential backoff.
    5. Any other store error surfaces as :class:`StoreUnavailable`.

Usage::

    from bikeledger.database.engine import create_db_engine, init_db, run_in_transaction

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    bike = run_in_transaction(engine, lambda s: s.get(Bike, bike_id))
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy import Engine, create_engine, event, make_url
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from bikeledger.database.models import Base
from bikeledger.errors import StoreConflict, StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLSTATE codes PostgreSQL uses when a transaction lost a race.
_SERIALIZATION_FAILURE = "40001"
_DEADLOCK_DETECTED = "40P01"

OPEN_INSTALLATION_INDEX = "uq_installations_open_part"


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or the ``DATABASE_URL`` env var.

    Connections run at ``SERIALIZABLE`` isolation so multi-row ledger
    updates (install, cascade, transfer) are ordered against each other.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    if make_url(url).get_backend_name() == "sqlite":
        engine = create_engine(url, echo=False, connect_args={"check_same_thread": False})
        use_immediate_transactions(engine)
        logger.info("SQLite engine created → %s", engine.url.database)
        return engine

    engine = create_engine(
        url,
        echo=False,
        isolation_level="SERIALIZABLE",
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


def use_immediate_transactions(engine: Engine) -> Engine:
    """Make every SQLite transaction take the write lock at ``BEGIN``.

    SQLite ignores ``FOR UPDATE`` and pysqlite defers ``BEGIN`` until the
    first write, so two transactions could read the same totals before
    either writes.  ``BEGIN IMMEDIATE`` serializes them instead; a writer
    that waits past the busy timeout gets "database is locked", which
    :func:`run_in_transaction` retries.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`bikeledger.database.models`.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained as a safety net for dev/test
        environments where Alembic may not have run.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff for serialization conflicts."""

    max_attempts: int = 5
    backoff_seconds: float = 0.05
    max_backoff_seconds: float = 1.0

    def delay_for(self, attempt: int) -> float:
        """Sleep before retry number *attempt* (1-based)."""
        return min(self.backoff_seconds * (2 ** (attempt - 1)), self.max_backoff_seconds)


_retry_policy = RetryPolicy()


def configure_retry_policy(
    *,
    max_attempts: int | None = None,
    backoff_seconds: float | None = None,
    max_backoff_seconds: float | None = None,
) -> RetryPolicy:
    """Replace the process-wide retry policy; unspecified fields keep their value."""
    global _retry_policy
    current = _retry_policy
    _retry_policy = RetryPolicy(
        max_attempts=max_attempts if max_attempts is not None else current.max_attempts,
        backoff_seconds=(
            backoff_seconds if backoff_seconds is not None else current.backoff_seconds
        ),
        max_backoff_seconds=(
            max_backoff_seconds
            if max_backoff_seconds is not None
            else current.max_backoff_seconds
        ),
    )
    return _retry_policy


def get_retry_policy() -> RetryPolicy:
    return _retry_policy


def is_serialization_conflict(exc: DBAPIError) -> bool:
    """True when *exc* means "another transaction won the race, try again".

    Covers PostgreSQL serialization failures and deadlocks, SQLite's busy
    lock, and the open-installation unique index rejecting a second open row.
    """
    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if pgcode in (_SERIALIZATION_FAILURE, _DEADLOCK_DETECTED):
        return True
    message = str(orig if orig is not None else exc)
    if "database is locked" in message:
        return True
    if isinstance(exc, IntegrityError):
        return OPEN_INSTALLATION_INDEX in message or "installations.part_id" in message
    return False


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------
def run_in_transaction(
    engine: Engine,
    work: Callable[[Session], T],
    *,
    operation: str | None = None,
    policy: RetryPolicy | None = None,
) -> T:
    """Run ``work(session)`` as one all-or-nothing transaction.

    Objects returned by *work* stay usable after the session closes
    (``expire_on_commit=False``) as long as only loaded columns are read.

    Raises
    ------
    StoreConflict
        The transaction kept losing serialization races after every retry.
    StoreUnavailable
        Any other database error (connectivity, timeout, constraint).
    """
    policy = policy or _retry_policy
    name = operation or getattr(work, "__name__", "transaction")

    for attempt in range(1, policy.max_attempts + 1):
        try:
            with Session(engine, expire_on_commit=False) as session:
                with session.begin():
                    return work(session)
        except DBAPIError as exc:
            if not is_serialization_conflict(exc):
                logger.error("%s failed with a store error: %s", name, exc)
                raise StoreUnavailable(f"{name}: backing store unavailable") from exc
            if attempt >= policy.max_attempts:
                logger.warning(
                    "%s lost a serialization race %d times — giving up", name, attempt
                )
                raise StoreConflict(
                    f"{name}: conflicting concurrent update, try again"
                ) from exc
            delay = policy.delay_for(attempt)
            logger.info(
                "%s serialization conflict (attempt %d/%d) — retrying in %.2fs",
                name, attempt, policy.max_attempts, delay,
            )
            time.sleep(delay)
        except SQLAlchemyError as exc:
            # Pool checkout timeouts and other errors raised before the DBAPI.
            logger.error("%s failed with a store error: %s", name, exc)
            raise StoreUnavailable(f"{name}: backing store unavailable") from exc

    raise StoreConflict(f"{name}: no attempts allowed by retry policy")
