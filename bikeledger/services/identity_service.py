"""
bikeledger.services.identity_service — Identity Mirror
=======================================================

Authentication lives outside the engine.  Verified identities are mirrored
into ``users`` so transfers can answer "does the target user exist?"
inside the same transaction as the transfer itself.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from bikeledger.database.engine import run_in_transaction
from bikeledger.database.models import User

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

# Collaborator signature for transfer-target lookups: (session, user_id) -> bool
UserExists = Callable[[Session, str], bool]


def get_or_create_user(session: Session, user_id: str, display_name: str | None = None) -> User:
    """Fetch or insert a User row; refresh the display name when one is given."""
    user = session.get(User, user_id)
    if user is None:
        user = User(id=user_id, display_name=display_name)
        session.add(user)
        session.flush()
        logger.info("User %s registered", user_id)
    elif display_name and user.display_name != display_name:
        user.display_name = display_name
    return user


def ensure_user(engine: Engine, user_id: str, display_name: str | None = None) -> User:
    return run_in_transaction(
        engine,
        lambda session: get_or_create_user(session, user_id, display_name),
        operation="ensure_user",
    )


def user_exists(session: Session, user_id: str) -> bool:
    """Default :data:`UserExists` collaborator backed by the ``users`` table."""
    return session.get(User, user_id) is not None
