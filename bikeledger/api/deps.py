"""
bikeledger.api.deps — FastAPI dependency injection
===================================================
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, Query, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine

from bikeledger.config import BikeLedgerConfig, load_config
from bikeledger.database.engine import create_db_engine
from bikeledger.engine.units import Unit, parse_unit
from bikeledger.services import settings_service
from bikeledger.services.identity_service import ensure_user

_WEAK_SECRETS = frozenset({
    "bikeledger-dev-secret-change-me",
    "change-me",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Use the signing secret of your identity provider."
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> BikeLedgerConfig:
    return load_config(os.getenv("BIKELEDGER_CONFIG", "config.yaml"))


def get_requester_id(
    authorization: Annotated[str | None, Header()] = None,
    engine: Engine = Depends(get_engine),
) -> str:
    """Validate the bearer JWT and return its subject as the requester id.

    The identity is mirrored into ``users`` so it can receive transfers.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Token has no subject")
    ensure_user(engine, str(subject), payload.get("name") or payload.get("email"))
    return str(subject)


def get_unit(
    unit: str | None = Query(None, description="Distance unit: km or mi"),
    requester_id: str = Depends(get_requester_id),
    engine: Engine = Depends(get_engine),
    cfg: BikeLedgerConfig = Depends(get_config),
) -> Unit:
    """``?unit=`` if given, else the caller's stored preference, else ``default_unit``."""
    if unit:
        return parse_unit(unit)
    preferred = settings_service.get_unit_preference(engine, user_id=requester_id)
    return preferred or cfg.default_unit
