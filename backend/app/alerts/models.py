"""
models.py — Shared data structures for geofenced alert dispatch.

Defines:
    • AlertSeverity       — critical / standard
    • Alert               — one per alert-worthy incident
    • SubscriptionKeys    — Web Push encryption keys
    • PushSubscription    — a user's push endpoint
    • NotificationPayload — the structured message sent to endpoints
    • DeliveryOutcome     — delivered / gone / transient failure
    • DeliveryAttempt     — single send attempt record
    • DispatchResult      — aggregate report of one dispatch

═══════════════════════════════════════════════════════════════════════════
NOTIFICATION PAYLOAD SHAPE
═══════════════════════════════════════════════════════════════════════════

Compatibility shape, understood by any push consumer:

    {
        "title":       str,
        "body":        str,
        "severityTag": "critical" | "standard",
        "data": {
            "incidentId":   str,
            "alertId":      str,
            "deepLinkPath": str,
        },
    }

The service worker additionally reads presentation fields (icon, badge,
tag, requireInteraction, vibrate, data.url); to_push_json() adds those
on top of the compatibility shape.

═══════════════════════════════════════════════════════════════════════════
DELIVERY OUTCOMES
═══════════════════════════════════════════════════════════════════════════

    Outcome            Transport signal              Effect
    ─────────────      ─────────────────────         ───────────────────────
    DELIVERED          2xx                           counted as sent
    GONE               HTTP 404 / 410                endpoint deactivated
    TRANSIENT_FAILURE  other HTTP error, network     counted as failure,
                       error, timeout                not retried this cycle
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from backend.app.spatial.geo_index import Coordinate


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class AlertSeverity(str, Enum):
    CRITICAL = "critical"
    STANDARD = "standard"


class DeliveryOutcome(str, Enum):
    """Result of one push delivery attempt."""
    DELIVERED = "delivered"
    GONE = "gone"                            # endpoint permanently invalid
    TRANSIENT_FAILURE = "transient_failure"  # may work next time


# ═══════════════════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════════════════

def _generate_id() -> str:
    return uuid.uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Alert:
    """
    A geofenced alert published for one incident.

    ``incident_id`` is the idempotency key: stores refuse a second Alert
    for the same incident.
    """
    incident_id: str
    location: Coordinate
    title: str
    message: str
    radius_miles: float = 5.0
    severity: AlertSeverity = AlertSeverity.CRITICAL
    id: str = field(default_factory=_generate_id)
    is_active: bool = True
    published_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "incident_id": self.incident_id,
            "title": self.title,
            "message": self.message,
            "severity": self.severity.value,
            "location": self.location.to_dict(),
            "radius_miles": self.radius_miles,
            "is_active": self.is_active,
            "published_at": self.published_at.isoformat(),
        }


@dataclass(frozen=True)
class SubscriptionKeys:
    """Web Push encryption keys supplied by the browser."""
    p256dh: str
    auth: str


@dataclass
class PushSubscription:
    """
    A push endpoint owned by a user. Deactivated, never deleted.
    """
    user_id: str
    endpoint: str
    keys: SubscriptionKeys
    id: str = field(default_factory=_generate_id)
    user_agent: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def to_subscription_info(self) -> Dict[str, Any]:
        """Shape expected by Web Push libraries."""
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.keys.p256dh, "auth": self.keys.auth},
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "endpoint": self.endpoint,
            "user_agent": self.user_agent,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class NotificationData:
    """Deep-link data carried by a notification."""
    incident_id: str
    alert_id: str
    deep_link_path: str

    def __post_init__(self) -> None:
        for name in ("incident_id", "alert_id", "deep_link_path"):
            if not getattr(self, name):
                raise ValueError(f"NotificationData.{name} is required")
        if not self.deep_link_path.startswith("/"):
            raise ValueError(
                f"deep_link_path must be an absolute app path, got {self.deep_link_path!r}"
            )


@dataclass(frozen=True)
class NotificationPayload:
    """A push notification. All fields required; validated on creation."""
    title: str
    body: str
    severity_tag: AlertSeverity
    data: NotificationData

    def __post_init__(self) -> None:
        if not self.title or not self.title.strip():
            raise ValueError("NotificationPayload.title is required")
        if not self.body or not self.body.strip():
            raise ValueError("NotificationPayload.body is required")
        if not isinstance(self.severity_tag, AlertSeverity):
            raise ValueError(f"Unknown severity tag: {self.severity_tag!r}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "severityTag": self.severity_tag.value,
            "data": {
                "incidentId": self.data.incident_id,
                "alertId": self.data.alert_id,
                "deepLinkPath": self.data.deep_link_path,
            },
        }

    def to_push_json(self) -> str:
        """Serialised message including service-worker presentation hints."""
        critical = self.severity_tag == AlertSeverity.CRITICAL
        message = self.to_dict()
        message["data"]["url"] = self.data.deep_link_path
        message.update({
            "icon": "/icon-192.png",
            "badge": "/badge-72.png",
            "tag": f"alert-{self.data.alert_id}",
            "requireInteraction": critical,
            "vibrate": [200, 100, 200] if critical else [100],
        })
        return json.dumps(message)


@dataclass
class DeliveryAttempt:
    """Record of a single delivery attempt to one endpoint."""
    user_id: str
    endpoint: str
    outcome: DeliveryOutcome
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    attempted_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == DeliveryOutcome.DELIVERED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempt_id": self.attempt_id,
            "user_id": self.user_id,
            "endpoint": self.endpoint,
            "outcome": self.outcome.value,
            "attempted_at": self.attempted_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "error_message": self.error_message,
        }


@dataclass
class DispatchResult:
    """Aggregate report of one dispatch."""
    incident_id: str
    alert_id: Optional[str] = None
    dispatched: bool = False           # False when the incident wasn't alert-worthy
    alert_created: bool = False        # False when an existing alert was reused
    manager_count: int = 0
    attempts: List[DeliveryAttempt] = field(default_factory=list)
    deactivated_endpoints: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=_now)
    completed_at: Optional[datetime] = None

    @property
    def notifications_sent(self) -> int:
        return sum(1 for a in self.attempts if a.succeeded)

    @property
    def failures(self) -> int:
        return sum(1 for a in self.attempts if not a.succeeded)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "incident_id": self.incident_id,
            "alert_id": self.alert_id,
            "dispatched": self.dispatched,
            "alert_created": self.alert_created,
            "manager_count": self.manager_count,
            "notifications_sent": self.notifications_sent,
            "failures": self.failures,
            "deactivated_endpoints": list(self.deactivated_endpoints),
            "started_at": self.started_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "attempts": [a.to_dict() for a in self.attempts],
        }
