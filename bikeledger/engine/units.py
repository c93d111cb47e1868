"""
bikeledger.engine.units — Distance Unit Conversion
===================================================

Pure conversion helpers.  Storage is always kilometres; miles only exist
at the boundary (request input and response output).
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from typing import Any

from bikeledger.errors import InvalidEnum

KM_TO_MI = 0.621371
MI_TO_KM = 1.60934


class Unit(enum.StrEnum):
    KM = "km"
    MI = "mi"


def parse_unit(value: str | Unit | None, default: Unit = Unit.KM) -> Unit:
    """Return the :class:`Unit` for *value*, or *default* when it is empty.

    Raises
    ------
    InvalidEnum
        If *value* is neither ``"km"`` nor ``"mi"``.
    """
    if value is None or value == "":
        return default
    if isinstance(value, Unit):
        return value
    try:
        return Unit(str(value).strip().lower())
    except ValueError:
        raise InvalidEnum("unit", value, {u.value for u in Unit}) from None


def km_to_miles(km: float) -> float:
    return km * KM_TO_MI


def miles_to_km(miles: float) -> float:
    return miles * MI_TO_KM


def convert(distance: float, from_unit: Unit | str, to_unit: Unit | str) -> float:
    """Convert *distance* between units.  Same unit is a no-op."""
    src = parse_unit(from_unit)
    dst = parse_unit(to_unit)
    if src is dst:
        return distance
    return km_to_miles(distance) if src is Unit.KM else miles_to_km(distance)


def to_km(distance: float, unit: Unit | str = Unit.KM) -> float:
    """Normalise an input distance to kilometres."""
    return convert(distance, unit, Unit.KM)


def from_km(distance_km: float | None, unit: Unit | str = Unit.KM) -> float | None:
    """Render a stored kilometre value in *unit* (``None`` passes through)."""
    if distance_km is None:
        return None
    return convert(distance_km, Unit.KM, unit)


def convert_fields(
    data: Mapping[str, Any], fields: Iterable[str], unit: Unit | str
) -> dict[str, Any]:
    """Return a copy of *data* with each km field in *fields* rendered in *unit*."""
    result = dict(data)
    for name in fields:
        if result.get(name) is not None:
            result[name] = from_km(result[name], unit)
    return result
