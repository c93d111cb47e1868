"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of bikeledger.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from bikeledger.database.engine import configure_retry_policy, get_retry_policy  # noqa: E402
from bikeledger.database.models import Base, User  # noqa: E402
from bikeledger.services import bike_service, part_service  # noqa: E402

ALICE = "user-alice"
BOB = "user-bob"


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all BikeLedger tables.

    Uses StaticPool so every session shares the same in-memory database.
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def engine(db_engine: Engine) -> Engine:
    """``db_engine`` with Alice and Bob already mirrored into ``users``."""
    with Session(db_engine) as session:
        session.add_all([User(id=ALICE, display_name="Alice"), User(id=BOB, display_name="Bob")])
        session.commit()
    return db_engine


@pytest.fixture(autouse=True)
def fast_retries():
    """No sleeping between retries in tests; restore the policy afterwards."""
    saved = get_retry_policy()
    configure_retry_policy(backoff_seconds=0.0, max_backoff_seconds=0.0)
    yield
    configure_retry_policy(
        max_attempts=saved.max_attempts,
        backoff_seconds=saved.backoff_seconds,
        max_backoff_seconds=saved.max_backoff_seconds,
    )


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------
def make_bike(engine: Engine, owner_id: str = ALICE, **overrides):
    fields = {"name": "Road Bike", "type": "road"}
    fields.update(overrides)
    return bike_service.create_bike(engine, owner_id=owner_id, **fields)


def make_part(engine: Engine, owner_id: str = ALICE, **overrides):
    fields = {"name": "Chain", "type": "chain"}
    fields.update(overrides)
    return part_service.create_part(engine, owner_id=owner_id, **fields)


def make_token(sub: str = ALICE, name: str | None = None) -> str:
    """Create a bearer JWT for *sub*.  Usable as a factory from any test."""
    import jwt

    from bikeledger.api.deps import JWT_ALGORITHM, JWT_SECRET

    claims = {"sub": sub}
    if name:
        claims["name"] = name
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def auth(sub: str = ALICE) -> dict:
    return {"Authorization": f"Bearer {make_token(sub)}"}


@pytest.fixture
def client(engine: Engine):
    """A FastAPI TestClient wired to the in-memory engine and default config."""
    from fastapi.testclient import TestClient

    from bikeledger.api.deps import get_config, get_engine
    from bikeledger.api.main import app
    from bikeledger.config import BikeLedgerConfig

    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_config] = lambda: BikeLedgerConfig()
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
