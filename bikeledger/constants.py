"""
bikeledger.constants — Shared Constants & Helpers
==================================================

Single source of truth for patch allow-lists, paging defaults and the
clock.  Import from here instead of duplicating in services and routes.
"""

from __future__ import annotations

from datetime import UTC, date, datetime

from bikeledger.errors import ValidationError

# ---------------------------------------------------------------------------
# Registry patch allow-lists
# ---------------------------------------------------------------------------
BIKE_PATCH_FIELDS: set[str] = {
    "name", "type", "brand", "model", "purchase_date", "metadata",
}

PART_PATCH_FIELDS: set[str] = {
    "name", "type", "brand", "model", "purchase_date", "metadata",
    "replacement_threshold",
}


# ---------------------------------------------------------------------------
# Paging
# ---------------------------------------------------------------------------
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


# ---------------------------------------------------------------------------
# Clock helpers
# ---------------------------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_date(value: date | str | None, field: str) -> date | None:
    """Accept a :class:`date` or an ISO 8601 ``YYYY-MM-DD`` string."""
    if value is None or (isinstance(value, date) and not isinstance(value, datetime)):
        return value
    if isinstance(value, datetime):
        return value.date()
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Malformed date for {field}: {value!r}", field=field) from None


def parse_datetime(value: datetime | str | None, field: str) -> datetime | None:
    """Accept a :class:`datetime` or an ISO 8601 string; result is UTC-aware."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        raise ValidationError(f"Malformed datetime for {field}: {value!r}", field=field) from None
