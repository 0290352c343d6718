"""
FastAPI route: venue compliance summary for its manager.

    GET /api/v1/venues/{venue_id}/summary
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.app.api.deps import acting_manager, get_services
from backend.app.core.errors import PermissionDenied
from backend.app.directory.models import User
from backend.app.services import ComplianceServices

router = APIRouter(prefix="/api/v1/venues", tags=["venues"])


@router.get("/{venue_id}/summary", summary="Venue compliance summary")
async def venue_summary(
    venue_id: str,
    manager: User = Depends(acting_manager),
    services: ComplianceServices = Depends(get_services),
):
    if manager.venue_id != venue_id:
        raise PermissionDenied("Managers can only view their own venue", venue_id=venue_id)
    return await services.venues.summary(venue_id)
