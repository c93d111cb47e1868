"""
bikeledger.errors — Typed Failure Taxonomy
===========================================

Every public operation either commits fully or raises one of these.
The HTTP layer maps ``code`` to a status; the engine never picks one.

Hierarchy::

    LedgerError
    ├── ValidationError
    │   ├── InvalidDistance
    │   └── InvalidEnum
    ├── NotFound
    │   └── NotOwner
    ├── ConflictNotActive
    ├── NotInstalled
    ├── InvalidTransfer
    ├── UnknownUser
    ├── StoreConflict      # retried internally before surfacing
    └── StoreUnavailable
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all engine failures."""

    code: str = "ledger_error"

    def __init__(self, message: str = "", **details) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details


class ValidationError(LedgerError):
    code = "validation_error"


class InvalidDistance(ValidationError):
    code = "invalid_distance"


class InvalidEnum(ValidationError):
    code = "invalid_enum"

    def __init__(self, field: str, value, allowed) -> None:
        super().__init__(
            f"Invalid {field} {value!r}. Must be one of: {sorted(allowed)}",
            field=field,
            allowed=sorted(allowed),
        )


class NotFound(LedgerError):
    code = "not_found"


class NotOwner(NotFound):
    """The requester does not own the entity; indistinguishable from absent."""

    code = "not_owner"


class ConflictNotActive(LedgerError):
    code = "conflict_not_active"


class NotInstalled(LedgerError):
    code = "not_installed"


class InvalidTransfer(LedgerError):
    code = "invalid_transfer"


class UnknownUser(LedgerError):
    code = "unknown_user"


class StoreConflict(LedgerError):
    code = "store_conflict"


class StoreUnavailable(LedgerError):
    code = "store_unavailable"
