"""
models.py — Incident reports.

Defines:
    • IncidentCategory / VerificationStatus enums
    • Incident           — the persisted report
    • IncidentSubmission — validated input for a new report
    • is_alert_worthy    — the single trigger predicate

═══════════════════════════════════════════════════════════════════════════
THE TRIGGER PREDICATE
═══════════════════════════════════════════════════════════════════════════

A validated regulatory sting is the one trusted signal that something
actionable happened. Both downstream consequences key off it:

    is_alert_worthy(incident)
        ├── CertificationEngine.on_incident_involvement(reporter)
        └── AlertDispatcher.dispatch(incident)

Every call site uses this function; none re-states the condition.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from backend.app.spatial.geo_index import Coordinate


class IncidentCategory(str, Enum):
    REGULATORY_STING = "regulatory_sting"
    UNVERIFIED_HOTSPOT = "unverified_hotspot"
    OPERATIONAL_INCIDENT = "operational_incident"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    ARCHIVED = "archived"


def _generate_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Incident:
    """
    A reported incident. Immutable after creation apart from the
    verification fields.
    """
    category: IncidentCategory
    reporter_id: str
    location: Coordinate
    incident_timestamp: datetime
    id: str = field(default_factory=_generate_id)
    verification_status: VerificationStatus = VerificationStatus.PENDING
    venue_id: Optional[str] = None
    address: Optional[str] = None
    description: Optional[str] = None
    photo_urls: List[str] = field(default_factory=list)
    reported_at: datetime = field(default_factory=_now)
    validated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category.value,
            "reporter_id": self.reporter_id,
            "location": self.location.to_dict(),
            "verification_status": self.verification_status.value,
            "incident_timestamp": self.incident_timestamp.isoformat(),
            "venue_id": self.venue_id,
            "address": self.address,
            "description": self.description,
            "photo_urls": list(self.photo_urls),
            "reported_at": self.reported_at.isoformat(),
            "validated_at": (
                self.validated_at.isoformat() if self.validated_at else None
            ),
        }


def is_alert_worthy(incident: Incident) -> bool:
    """True only for a validated regulatory sting."""
    return (
        incident.verification_status == VerificationStatus.VALIDATED
        and incident.category == IncidentCategory.REGULATORY_STING
    )


class IncidentSubmission(BaseModel):
    """Input for a new incident report."""
    category: IncidentCategory
    reporter_id: str = Field(..., min_length=1)
    latitude: float = Field(..., ge=-90.0, le=90.0, allow_inf_nan=False)
    longitude: float = Field(..., ge=-180.0, le=180.0, allow_inf_nan=False)
    incident_timestamp: datetime
    description: Optional[str] = None
    photo_urls: List[str] = Field(default_factory=list)
    venue_id: Optional[str] = None
    address: Optional[str] = None
    verification_status: VerificationStatus = VerificationStatus.PENDING

    @model_validator(mode="after")
    def _require_evidence(self) -> "IncidentSubmission":
        has_text = bool(self.description and self.description.strip())
        if not has_text and not self.photo_urls:
            raise ValueError("A description or at least one photo is required")
        return self

    def to_incident(self) -> Incident:
        timestamp = self.incident_timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return Incident(
            category=self.category,
            reporter_id=self.reporter_id,
            location=Coordinate(self.latitude, self.longitude),
            incident_timestamp=timestamp,
            verification_status=self.verification_status,
            venue_id=self.venue_id,
            address=self.address,
            description=self.description.strip() if self.description else None,
            photo_urls=list(self.photo_urls),
        )
