"""
Pydantic request schemas for the compliance API.

Separated from the route handlers so they are reusable across the
codebase (background workers, tests). The acting user always comes from
the ``X-User-Id`` header, never from a request body.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from backend.app.incidents.models import IncidentCategory, VerificationStatus


# ---------------------------------------------------------------------------
# Incidents
# ---------------------------------------------------------------------------

class IncidentReportRequest(BaseModel):
    """A new incident report from the field."""
    category: IncidentCategory = Field(..., examples=["regulatory_sting"])
    latitude: float = Field(
        ..., ge=-90.0, le=90.0, allow_inf_nan=False,
        description="Latitude in decimal degrees", examples=[30.2672],
    )
    longitude: float = Field(
        ..., ge=-180.0, le=180.0, allow_inf_nan=False,
        description="Longitude in decimal degrees", examples=[-97.7431],
    )
    incident_timestamp: datetime = Field(..., examples=["2026-03-14T22:15:00Z"])
    description: Optional[str] = Field(None, max_length=4000)
    photo_urls: List[str] = Field(default_factory=list, max_length=10)
    venue_id: Optional[str] = Field(None, description="Defaults to the reporter's venue")
    address: Optional[str] = None
    verification_status: VerificationStatus = Field(
        VerificationStatus.PENDING,
        description="Trusted intake may submit a report already validated",
    )

    def to_submission(self, reporter_id: str) -> Dict[str, Any]:
        return {**self.model_dump(), "reporter_id": reporter_id}


class VerificationRequest(BaseModel):
    verification_status: VerificationStatus = Field(..., examples=["validated"])


# ---------------------------------------------------------------------------
# Training
# ---------------------------------------------------------------------------

class QuizSubmissionRequest(BaseModel):
    """Answers keyed by question id."""
    answers: Dict[str, Any] = Field(..., examples=[{"q1": "B", "q2": "A"}])


# ---------------------------------------------------------------------------
# Push subscriptions
# ---------------------------------------------------------------------------

class SubscriptionKeysInput(BaseModel):
    p256dh: str = Field(..., min_length=1)
    auth: str = Field(..., min_length=1)


class PushSubscriptionInput(BaseModel):
    """The browser's PushSubscription.toJSON() shape."""
    endpoint: str = Field(..., min_length=1)
    keys: SubscriptionKeysInput


class SubscribeRequest(BaseModel):
    subscription: PushSubscriptionInput


class UnsubscribeRequest(BaseModel):
    endpoint: str = Field(..., min_length=1)
