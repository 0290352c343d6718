"""
FastAPI routes: the geofenced alert feed.

    GET  /api/v1/alerts                — active alerts covering my venue
    GET  /api/v1/alerts/{id}           — one alert (notification deep link)
    POST /api/v1/alerts/{id}/archive   — archive an alert
    POST /api/v1/alerts/{id}/resend    — re-run dispatch for the alert's incident
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from backend.app.api.deps import acting_manager, acting_user, get_services
from backend.app.core.errors import ValidationError
from backend.app.directory.models import User
from backend.app.services import ComplianceServices

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])


@router.get("", summary="Alerts covering the manager's venue")
async def venue_alerts(
    manager: User = Depends(acting_manager),
    services: ComplianceServices = Depends(get_services),
):
    if not manager.venue_id:
        raise ValidationError("No venue associated with this manager", field="venue_id")
    alerts = await services.feed.alerts_for_venue(manager.venue_id)
    return {"venue_id": manager.venue_id, "alerts": [a.to_dict() for a in alerts]}


@router.get("/{alert_id}", summary="Get an alert")
async def get_alert(
    alert_id: str,
    user: User = Depends(acting_user),
    services: ComplianceServices = Depends(get_services),
):
    alert = await services.feed.get(alert_id)
    return alert.to_dict()


@router.post("/{alert_id}/archive", summary="Archive an alert")
async def archive_alert(
    alert_id: str,
    manager: User = Depends(acting_manager),
    services: ComplianceServices = Depends(get_services),
):
    alert = await services.feed.archive(alert_id)
    return alert.to_dict()


@router.post("/{alert_id}/resend", summary="Deliver an alert again")
async def resend_alert(
    alert_id: str,
    manager: User = Depends(acting_manager),
    services: ComplianceServices = Depends(get_services),
):
    """Recipients are re-derived; no second Alert is created."""
    alert = await services.feed.get(alert_id)
    incident = await services.pipeline.get_incident(alert.incident_id)
    result = await services.dispatcher.dispatch(incident)
    return result.to_dict()
