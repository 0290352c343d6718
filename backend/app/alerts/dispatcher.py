"""
dispatcher.py — Geofenced alert dispatch for verified incidents.

This is the central coordinator that:
    1. Re-checks that the incident is alert-worthy
    2. Creates the incident's Alert exactly once (idempotency key = incident id)
    3. Finds managers whose venue catch area contains the incident
    4. Fans the notification out to every active endpoint of every recipient
    5. Deactivates endpoints that come back "gone"
    6. Produces a DispatchResult

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  IncidentPipeline   │
    │  validated sting    │
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  1. Ensure Alert    │  load_alert_by_incident → reuse
    │     (exactly once)  │  else save_alert; a concurrent duplicate
    │                     │  (StateInvariantViolation) → reload + reuse
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  2. Geofence        │  managers_with_venue → within_range(
    │     Targeting       │      incident, alert radius + venue radius)
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  3. Fan-out         │  one task per (recipient, endpoint), all-settled,
    │                     │  each bounded by the delivery timeout
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  4. Feedback        │  GONE → SubscriptionRegistry.deactivate(endpoint)
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  5. DispatchResult  │  manager_count, notifications_sent, failures
    └─────────────────────┘

═══════════════════════════════════════════════════════════════════════════
FAILURE ISOLATION
═══════════════════════════════════════════════════════════════════════════

    • Every endpoint is its own failure domain. A slow, failing or raising
      endpoint is recorded as TRANSIENT_FAILURE and never delays or fails
      the others (asyncio.gather with return_exceptions=True).
    • No retries inside one dispatch. The Alert persists, so calling
      dispatch() again for the incident resends without creating a
      second Alert.
    • Zero recipients is a successful dispatch, not an error.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from backend.app.alerts.channels.web_push import PushTransport
from backend.app.alerts.models import (
    Alert,
    AlertSeverity,
    DeliveryAttempt,
    DeliveryOutcome,
    DispatchResult,
    NotificationData,
    NotificationPayload,
    PushSubscription,
)
from backend.app.alerts.subscriptions import SubscriptionRegistry
from backend.app.core.errors import StateInvariantViolation
from backend.app.incidents.models import Incident, is_alert_worthy
from backend.app.spatial.geo_index import RangeCandidate, within_range
from backend.app.storage.base import Directory, Store

logger = logging.getLogger(__name__)

ALERT_TITLE = "Verified Regulatory Incident Nearby"
TEST_NOTIFICATION_TITLE = "Sting Free Test"
TEST_NOTIFICATION_ID = "test-notification"
DEFAULT_ALERT_RADIUS_MILES = 5.0
DEFAULT_DELIVERY_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_CONCURRENT_DELIVERIES = 50


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Alert & Payload Builders
# ═══════════════════════════════════════════════════════════════════════════

def build_alert(incident: Incident, radius_miles: float = DEFAULT_ALERT_RADIUS_MILES) -> Alert:
    """The Alert record for an alert-worthy incident."""
    reported_on = f"{incident.incident_timestamp:%b %d, %Y}"
    return Alert(
        incident_id=incident.id,
        location=incident.location,
        radius_miles=radius_miles,
        severity=AlertSeverity.CRITICAL,
        title=ALERT_TITLE,
        message=(
            f"A verified regulatory incident was reported {reported_on} in your area. "
            "Review protocols and update staff training as needed."
        ),
        is_active=True,
    )


def alert_deep_link(alert: Alert) -> str:
    return f"/alerts/{alert.id}"


def build_test_notification() -> NotificationPayload:
    return NotificationPayload(
        title=TEST_NOTIFICATION_TITLE,
        body="Push notifications are working! You're all set.",
        severity_tag=AlertSeverity.STANDARD,
        data=NotificationData(
            incident_id=TEST_NOTIFICATION_ID,
            alert_id=TEST_NOTIFICATION_ID,
            deep_link_path="/dashboard",
        ),
    )


def build_notification(incident: Incident, alert: Alert) -> NotificationPayload:
    return NotificationPayload(
        title=alert.title,
        body=alert.message,
        severity_tag=alert.severity,
        data=NotificationData(
            incident_id=incident.id,
            alert_id=alert.id,
            deep_link_path=alert_deep_link(alert),
        ),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Dispatcher
# ═══════════════════════════════════════════════════════════════════════════

class AlertDispatcher:

    def __init__(
        self,
        store: Store,
        directory: Directory,
        registry: SubscriptionRegistry,
        transport: PushTransport,
        *,
        default_radius_miles: float = DEFAULT_ALERT_RADIUS_MILES,
        delivery_timeout_seconds: float = DEFAULT_DELIVERY_TIMEOUT_SECONDS,
        max_concurrent_deliveries: int = DEFAULT_MAX_CONCURRENT_DELIVERIES,
    ) -> None:
        self.store = store
        self.directory = directory
        self.registry = registry
        self.transport = transport
        self.default_radius_miles = default_radius_miles
        self.delivery_timeout_seconds = delivery_timeout_seconds
        self.max_concurrent_deliveries = max_concurrent_deliveries

    # ── Step 1: exactly-once alert ──

    async def _ensure_alert(self, incident: Incident) -> Tuple[Alert, bool]:
        existing = await self.store.load_alert_by_incident(incident.id)
        if existing is not None:
            return existing, False

        alert = build_alert(incident, self.default_radius_miles)
        try:
            return await self.store.save_alert(alert), True
        except StateInvariantViolation:
            # Lost a race with a concurrent dispatch of the same incident
            existing = await self.store.load_alert_by_incident(incident.id)
            if existing is None:
                raise
            logger.info(
                "Alert for incident %s created concurrently; reusing %s",
                incident.id, existing.id,
            )
            return existing, False

    # ── Step 2: geofence targeting ──

    async def find_recipients(self, alert: Alert) -> List[str]:
        """Managers whose venue catch area contains the alert location."""
        managers = await self.directory.managers_with_venue()
        candidates = [
            RangeCandidate(m.user_id, m.venue_location, m.venue_radius_miles)
            for m in managers
            if m.venue_location is not None
        ]
        in_range = within_range(alert.location, alert.radius_miles, candidates)
        # A manager listed twice still gets one notification per endpoint
        return list(dict.fromkeys(in_range))

    # ── Step 3/4: single-endpoint delivery ──

    async def _deliver(
        self,
        subscription: PushSubscription,
        payload: NotificationPayload,
        semaphore: asyncio.Semaphore,
    ) -> DeliveryAttempt:
        attempt = DeliveryAttempt(
            user_id=subscription.user_id,
            endpoint=subscription.endpoint,
            outcome=DeliveryOutcome.TRANSIENT_FAILURE,
        )

        async with semaphore:
            try:
                attempt.outcome = await asyncio.wait_for(
                    self.transport.send(subscription, payload),
                    timeout=self.delivery_timeout_seconds,
                )
            except asyncio.TimeoutError:
                attempt.error_message = (
                    f"Delivery timed out after {self.delivery_timeout_seconds:.1f}s"
                )
                logger.warning(
                    "Push to user %s timed out", subscription.user_id,
                    extra={"user_id": subscription.user_id},
                )
            except Exception as exc:
                attempt.error_message = str(exc) or type(exc).__name__
                logger.error(
                    "Push to user %s failed: %s", subscription.user_id, exc,
                    extra={"user_id": subscription.user_id},
                )
        attempt.completed_at = _now()

        if attempt.outcome == DeliveryOutcome.GONE:
            attempt.error_message = "Subscription endpoint is gone"
            try:
                await self.registry.deactivate(subscription.endpoint)
            except Exception:
                logger.exception(
                    "Could not deactivate dead endpoint for user %s", subscription.user_id,
                )

        return attempt

    async def _fan_out(
        self,
        targets: List[PushSubscription],
        payload: NotificationPayload,
        result: DispatchResult,
    ) -> None:
        semaphore = asyncio.Semaphore(self.max_concurrent_deliveries)
        outcomes = await asyncio.gather(
            *(self._deliver(sub, payload, semaphore) for sub in targets),
            return_exceptions=True,
        )

        for sub, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                outcome = DeliveryAttempt(
                    user_id=sub.user_id,
                    endpoint=sub.endpoint,
                    outcome=DeliveryOutcome.TRANSIENT_FAILURE,
                    completed_at=_now(),
                    error_message=str(outcome) or type(outcome).__name__,
                )
            result.attempts.append(outcome)
            if outcome.outcome == DeliveryOutcome.GONE:
                result.deactivated_endpoints.append(sub.endpoint)

    # ── Main entry points ──

    async def dispatch(self, incident: Incident) -> DispatchResult:
        """
        Publish the incident's alert to every manager in range.

        Never raises for delivery problems; store failures while creating
        the alert or reading the directory do propagate.
        """
        result = DispatchResult(incident_id=incident.id)

        if not is_alert_worthy(incident):
            logger.debug("Incident %s is not alert-worthy; nothing to dispatch", incident.id)
            result.completed_at = _now()
            return result

        result.dispatched = True
        alert, created = await self._ensure_alert(incident)
        result.alert_id = alert.id
        result.alert_created = created

        if not alert.is_active:
            logger.info(
                "Alert %s is archived; not delivering", alert.id,
                extra={"alert_id": alert.id, "incident_id": incident.id},
            )
            result.completed_at = _now()
            return result

        recipients = await self.find_recipients(alert)
        result.manager_count = len(recipients)

        if not recipients:
            logger.info(
                "Alert %s: no managers within geofence (radius=%.1f mi)",
                alert.id, alert.radius_miles,
                extra={"alert_id": alert.id, "incident_id": incident.id},
            )
            result.completed_at = _now()
            return result

        payload = build_notification(incident, alert)

        lookups = await asyncio.gather(
            *(self.registry.active_endpoints_for(uid) for uid in recipients),
            return_exceptions=True,
        )
        targets: List[PushSubscription] = []
        for user_id, subs in zip(recipients, lookups):
            if isinstance(subs, BaseException):
                logger.error(
                    "Subscription lookup failed for user %s: %s", user_id, subs,
                    extra={"user_id": user_id, "alert_id": alert.id},
                )
                result.attempts.append(DeliveryAttempt(
                    user_id=user_id,
                    endpoint="",
                    outcome=DeliveryOutcome.TRANSIENT_FAILURE,
                    completed_at=_now(),
                    error_message=f"Subscription lookup failed: {subs}",
                ))
                continue
            targets.extend(subs)

        await self._fan_out(targets, payload, result)

        result.completed_at = _now()
        logger.info(
            "Alert %s dispatched: %d manager(s), %d endpoint(s), %d sent, %d failed, "
            "%d deactivated, %.2fs",
            alert.id, result.manager_count, len(targets),
            result.notifications_sent, result.failures,
            len(result.deactivated_endpoints),
            (result.completed_at - result.started_at).total_seconds(),
            extra={
                "alert_id": alert.id,
                "incident_id": incident.id,
                "recipient_count": result.manager_count,
                "notifications_sent": result.notifications_sent,
                "failures": result.failures,
            },
        )
        return result

    async def send_test_notification(self, user_id: str) -> DispatchResult:
        """Send a test push to every active endpoint of one user."""
        result = DispatchResult(
            incident_id=TEST_NOTIFICATION_ID,
            alert_id=TEST_NOTIFICATION_ID,
            dispatched=True,
            manager_count=1,
        )
        targets = await self.registry.active_endpoints_for(user_id)
        await self._fan_out(targets, build_test_notification(), result)
        result.completed_at = _now()

        logger.info(
            "Test notification for user %s: %d endpoint(s), %d sent, %d failed",
            user_id, len(targets), result.notifications_sent, result.failures,
            extra={
                "user_id": user_id,
                "notifications_sent": result.notifications_sent,
                "failures": result.failures,
            },
        )
        return result
