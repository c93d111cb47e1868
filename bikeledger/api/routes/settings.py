"""
bikeledger.api.routes.settings — Per-user preferences
======================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from bikeledger.api.deps import get_engine, get_requester_id
from bikeledger.services import settings_service

router = APIRouter(prefix="/settings", tags=["settings"])


class SettingsUpdate(BaseModel):
    units: str | None = None


@router.get("")
def get_settings(
    requester_id: str = Depends(get_requester_id),
    engine=Depends(get_engine),
):
    return settings_service.get_settings(engine, user_id=requester_id)


@router.put("")
def update_settings(
    body: SettingsUpdate,
    requester_id: str = Depends(get_requester_id),
    engine=Depends(get_engine),
):
    """Set the preferred unit; ``{"units": null}`` falls back to the server default."""
    settings_service.set_unit_preference(engine, user_id=requester_id, unit=body.units)
    return settings_service.get_settings(engine, user_id=requester_id)
