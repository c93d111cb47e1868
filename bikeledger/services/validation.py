"""
bikeledger.services.validation — Input checks shared by the registries & ledgers
=================================================================================
"""

from __future__ import annotations

import enum
import math
from typing import Any, TypeVar

from bikeledger.engine.units import Unit, to_km
from bikeledger.errors import InvalidDistance, InvalidEnum, ValidationError

E = TypeVar("E", bound=enum.Enum)


def require_text(value: Any, field: str) -> str:
    """Return *value* stripped; blank or missing raises :class:`ValidationError`."""
    if value is None or not str(value).strip():
        raise ValidationError(f"Missing required field: {field}", field=field)
    return str(value).strip()


def optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def require_enum(enum_cls: type[E], value: Any, field: str) -> E:
    if value is None or value == "":
        raise ValidationError(f"Missing required field: {field}", field=field)
    try:
        return enum_cls(value)
    except ValueError:
        raise InvalidEnum(field, value, {m.value for m in enum_cls}) from None


def _as_number(value: Any, field: str) -> float:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", field=field) from None
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be finite", field=field)
    return number


def positive_distance_km(value: Any, unit: Unit, field: str = "distance") -> float:
    """Convert a strictly positive distance to km, else :class:`InvalidDistance`."""
    try:
        number = _as_number(value, field)
    except ValidationError as exc:
        raise InvalidDistance(exc.message, field=field) from None
    if number <= 0:
        raise InvalidDistance(f"{field} must be greater than zero", field=field)
    return to_km(number, unit)


def non_negative_distance_km(value: Any, unit: Unit, field: str) -> float:
    """Starting counters: ``None`` means zero, negatives are rejected."""
    if value is None:
        return 0.0
    number = _as_number(value, field)
    if number < 0:
        raise InvalidDistance(f"{field} must be a non-negative number", field=field)
    return to_km(number, unit)


def optional_threshold_km(value: Any, unit: Unit, field: str = "replacement_threshold") -> float | None:
    if value is None:
        return None
    number = _as_number(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be greater than zero", field=field)
    return to_km(number, unit)


def optional_cost(value: Any) -> float | None:
    if value is None:
        return None
    number = _as_number(value, "cost")
    if number < 0:
        raise ValidationError("cost must not be negative", field="cost")
    return number
