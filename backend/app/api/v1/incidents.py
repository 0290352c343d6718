"""
FastAPI routes: incident intake and verification.

    POST  /api/v1/incidents                      — report an incident
    GET   /api/v1/incidents/{id}                 — fetch one incident
    PATCH /api/v1/incidents/{id}/verification    — manager verification
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from backend.app.api.deps import acting_manager, acting_user, acting_user_id, get_services
from backend.app.api.schemas import IncidentReportRequest, VerificationRequest
from backend.app.directory.models import User
from backend.app.incidents.pipeline import IncidentOutcome
from backend.app.services import ComplianceServices

router = APIRouter(prefix="/api/v1/incidents", tags=["incidents"])


def _outcome_body(outcome: IncidentOutcome) -> Dict[str, Any]:
    return {
        "incident": outcome.incident.to_dict(),
        "alert_worthy": outcome.alert_worthy,
        "certification": (
            outcome.certification.to_dict() if outcome.certification else None
        ),
        "dispatch": outcome.dispatch.to_dict() if outcome.dispatch else None,
    }


@router.post("", status_code=201, summary="Report an incident")
async def report_incident(
    request: IncidentReportRequest,
    user_id: str = Depends(acting_user_id),
    services: ComplianceServices = Depends(get_services),
):
    """
    Record the report. A validated regulatory sting also expires the
    reporter's certification and alerts nearby managers; when dispatch
    runs in the background ``dispatch`` is null in the response.
    """
    outcome = await services.pipeline.submit(request.to_submission(user_id))
    return _outcome_body(outcome)


@router.get("/{incident_id}", summary="Get an incident")
async def get_incident(
    incident_id: str,
    user: User = Depends(acting_user),
    services: ComplianceServices = Depends(get_services),
):
    incident = await services.pipeline.get_incident(incident_id)
    return incident.to_dict()


@router.patch("/{incident_id}/verification", summary="Verify or archive an incident")
async def update_verification(
    incident_id: str,
    request: VerificationRequest,
    manager: User = Depends(acting_manager),
    services: ComplianceServices = Depends(get_services),
):
    outcome = await services.pipeline.update_verification(
        incident_id, request.verification_status,
    )
    return _outcome_body(outcome)
