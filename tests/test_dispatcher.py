"""
test_dispatcher.py — Geofenced alert dispatch.

Covers:
    • Exactly-once Alert per incident (sequential, concurrent, lost race)
    • Geofence targeting with summed radii
    • Fan-out outcomes: delivered / gone / transient / raised / timed out
    • Dead-endpoint self-healing
    • Payload shape and the test notification

Run with:
    pytest tests/test_dispatcher.py -v
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Dict, List, Tuple
from unittest.mock import AsyncMock

import pytest

from backend.app.alerts.channels.web_push import PushTransport
from backend.app.alerts.dispatcher import (
    ALERT_TITLE,
    AlertDispatcher,
    build_alert,
    build_notification,
)
from backend.app.alerts.models import (
    AlertSeverity,
    DeliveryOutcome,
    NotificationPayload,
    PushSubscription,
)
from backend.app.core.errors import StateInvariantViolation
from backend.app.incidents.models import Incident, IncidentCategory, VerificationStatus
from backend.app.spatial.geo_index import Coordinate

from conftest import T0

KEYS = {"p256dh": "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA_0QTpQtUbVlUls0VJXg7A8u-Ts1XbjhazAkj7I99e8QcYP7DkM", "auth": "tBHItJI5svbpez7KI4CCXg"}


class ScriptedTransport(PushTransport):
    """
    Per-endpoint behaviour: a DeliveryOutcome, an exception to raise, or
    "hang" to never complete. Unscripted endpoints are delivered.
    """

    def __init__(self, script: Dict[str, object] = None) -> None:
        self.script = dict(script or {})
        self.sent: List[Tuple[str, NotificationPayload]] = []

    async def send(self, subscription: PushSubscription, payload: NotificationPayload) -> DeliveryOutcome:
        behaviour = self.script.get(subscription.endpoint, DeliveryOutcome.DELIVERED)
        if behaviour == "hang":
            await asyncio.sleep(3600)
        if isinstance(behaviour, Exception):
            raise behaviour
        self.sent.append((subscription.endpoint, payload))
        return behaviour


def _make_incident(
    location: Coordinate = Coordinate(40.0, -74.0),
    category: IncidentCategory = IncidentCategory.REGULATORY_STING,
    status: VerificationStatus = VerificationStatus.VALIDATED,
) -> Incident:
    return Incident(
        category=category,
        reporter_id="staff-1",
        location=location,
        incident_timestamp=T0 - timedelta(hours=1),
        verification_status=status,
        description="Undercover compliance check",
    )


def _subscribe(world, user_id: str, endpoint: str) -> None:
    world.run(world.services.registry.register(user_id, endpoint, KEYS))


def _dispatcher(world, transport: PushTransport, **kwargs) -> AlertDispatcher:
    return AlertDispatcher(
        world.store, world.directory, world.services.registry, transport, **kwargs,
    )


@pytest.fixture
def subscribed(world):
    """mgr-a has two devices, mgr-b one, mgr-far one."""
    _subscribe(world, "mgr-a", "https://push.example/a-phone")
    _subscribe(world, "mgr-a", "https://push.example/a-laptop")
    _subscribe(world, "mgr-b", "https://push.example/b-phone")
    _subscribe(world, "mgr-far", "https://push.example/far-phone")
    return world


# ═══════════════════════════════════════════════════════════════════════════
# Builders
# ═══════════════════════════════════════════════════════════════════════════

class TestBuilders:

    def test_alert_defaults(self):
        incident = _make_incident()
        alert = build_alert(incident)
        assert alert.incident_id == incident.id
        assert alert.location == incident.location
        assert alert.radius_miles == 5.0
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.title == ALERT_TITLE
        assert alert.is_active

    def test_notification_payload_shape(self):
        incident = _make_incident()
        alert = build_alert(incident)
        payload = build_notification(incident, alert).to_dict()
        assert payload["title"] == ALERT_TITLE
        assert payload["severityTag"] == "critical"
        assert payload["data"] == {
            "incidentId": incident.id,
            "alertId": alert.id,
            "deepLinkPath": f"/alerts/{alert.id}",
        }


# ═══════════════════════════════════════════════════════════════════════════
# Dispatch
# ═══════════════════════════════════════════════════════════════════════════

class TestDispatchTargeting:

    def test_nearby_managers_notified_far_manager_not(self, subscribed):
        world = subscribed
        transport = ScriptedTransport()
        result = world.run(_dispatcher(world, transport).dispatch(_make_incident()))

        assert result.dispatched
        assert result.alert_created
        assert result.manager_count == 2
        assert result.notifications_sent == 3
        assert result.failures == 0
        endpoints = sorted(e for e, _ in transport.sent)
        assert endpoints == [
            "https://push.example/a-laptop",
            "https://push.example/a-phone",
            "https://push.example/b-phone",
        ]

    def test_venue_radius_extends_catch_area(self, subscribed):
        world = subscribed
        # ~69 mi away; in range only once the far venue's own radius reaches it
        world.directory.venues["venue-far"].alert_radius_miles = 70.0
        result = world.run(_dispatcher(world, ScriptedTransport()).dispatch(_make_incident()))
        assert result.manager_count == 3

    def test_configured_default_venue_radius(self, subscribed):
        world = subscribed
        world.directory.default_venue_radius_miles = 70.0
        result = world.run(_dispatcher(world, ScriptedTransport()).dispatch(_make_incident()))
        assert result.manager_count == 3

    def test_zero_recipients_is_success(self, subscribed):
        world = subscribed
        remote = _make_incident(location=Coordinate(-33.87, 151.21))
        result = world.run(_dispatcher(world, ScriptedTransport()).dispatch(remote))
        assert result.dispatched
        assert result.alert_created
        assert result.manager_count == 0
        assert result.attempts == []

    def test_manager_without_subscriptions(self, world):
        result = world.run(_dispatcher(world, ScriptedTransport()).dispatch(_make_incident()))
        assert result.manager_count == 2
        assert result.notifications_sent == 0
        assert result.failures == 0

    @pytest.mark.parametrize("category, status", [
        (IncidentCategory.REGULATORY_STING, VerificationStatus.PENDING),
        (IncidentCategory.OPERATIONAL_INCIDENT, VerificationStatus.VALIDATED),
    ])
    def test_not_alert_worthy(self, subscribed, category, status):
        world = subscribed
        transport = ScriptedTransport()
        incident = _make_incident(category=category, status=status)
        result = world.run(_dispatcher(world, transport).dispatch(incident))

        assert not result.dispatched
        assert result.alert_id is None
        assert not transport.sent
        assert world.run(world.store.load_alert_by_incident(incident.id)) is None


class TestExactlyOnceAlert:

    def test_repeat_dispatch_reuses_alert(self, subscribed):
        world = subscribed
        dispatcher = _dispatcher(world, ScriptedTransport())
        incident = _make_incident()

        first = world.run(dispatcher.dispatch(incident))
        second = world.run(dispatcher.dispatch(incident))

        assert first.alert_created and not second.alert_created
        assert first.alert_id == second.alert_id
        assert len(world.store.alerts) == 1
        # Resend delivers again
        assert second.notifications_sent == 3

    def test_concurrent_dispatch_creates_one_alert(self, subscribed):
        world = subscribed
        dispatcher = _dispatcher(world, ScriptedTransport())
        incident = _make_incident()

        async def both():
            return await asyncio.gather(dispatcher.dispatch(incident), dispatcher.dispatch(incident))

        first, second = world.run(both())
        assert first.alert_id == second.alert_id
        assert len(world.store.alerts) == 1
        assert [first.alert_created, second.alert_created].count(True) == 1

    def test_lost_race_reuses_winner(self, world):
        incident = _make_incident()
        winner = build_alert(incident)
        world.store.load_alert_by_incident = AsyncMock(side_effect=[None, winner])
        world.store.save_alert = AsyncMock(side_effect=StateInvariantViolation("dup"))

        result = world.run(_dispatcher(world, ScriptedTransport()).dispatch(incident))
        assert result.alert_id == winner.id
        assert not result.alert_created

    def test_archived_alert_not_redelivered(self, subscribed):
        world = subscribed
        transport = ScriptedTransport()
        dispatcher = _dispatcher(world, transport)
        incident = _make_incident()

        first = world.run(dispatcher.dispatch(incident))
        world.run(world.services.feed.archive(first.alert_id))
        transport.sent.clear()

        again = world.run(dispatcher.dispatch(incident))
        assert again.alert_id == first.alert_id
        assert not transport.sent
        assert again.attempts == []


class TestFailureIsolation:

    def test_gone_endpoint_deactivated(self, subscribed):
        world = subscribed
        transport = ScriptedTransport({"https://push.example/a-laptop": DeliveryOutcome.GONE})
        dispatcher = _dispatcher(world, transport)

        result = world.run(dispatcher.dispatch(_make_incident()))
        assert result.deactivated_endpoints == ["https://push.example/a-laptop"]
        assert result.notifications_sent == 2
        assert result.failures == 1

        sub = world.run(world.store.load_subscription("https://push.example/a-laptop"))
        assert sub.is_active is False

        # The dead endpoint is no longer targeted
        transport.sent.clear()
        world.run(dispatcher.dispatch(_make_incident()))
        assert "https://push.example/a-laptop" not in [e for e, _ in transport.sent]

    def test_one_bad_endpoint_does_not_block_others(self, subscribed):
        world = subscribed
        transport = ScriptedTransport({
            "https://push.example/a-phone": RuntimeError("connection reset"),
            "https://push.example/a-laptop": "hang",
        })
        dispatcher = _dispatcher(world, transport, delivery_timeout_seconds=0.05)

        result = world.run(dispatcher.dispatch(_make_incident()))
        by_endpoint = {a.endpoint: a for a in result.attempts}

        assert by_endpoint["https://push.example/b-phone"].outcome == DeliveryOutcome.DELIVERED
        assert by_endpoint["https://push.example/a-phone"].outcome == DeliveryOutcome.TRANSIENT_FAILURE
        assert "connection reset" in by_endpoint["https://push.example/a-phone"].error_message
        assert by_endpoint["https://push.example/a-laptop"].outcome == DeliveryOutcome.TRANSIENT_FAILURE
        assert "timed out" in by_endpoint["https://push.example/a-laptop"].error_message
        assert result.notifications_sent == 1
        assert result.failures == 2
        # Transient failures keep the subscription
        assert world.run(world.store.load_subscription("https://push.example/a-phone")).is_active

    def test_transient_outcome_counted_as_failure(self, subscribed):
        world = subscribed
        transport = ScriptedTransport({"https://push.example/b-phone": DeliveryOutcome.TRANSIENT_FAILURE})
        result = world.run(_dispatcher(world, transport).dispatch(_make_incident()))
        assert result.failures == 1
        assert result.deactivated_endpoints == []

    def test_concurrency_is_bounded(self, subscribed):
        world = subscribed
        in_flight = {"now": 0, "peak": 0}

        class CountingTransport(PushTransport):
            async def send(self, subscription, payload):
                in_flight["now"] += 1
                in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
                await asyncio.sleep(0.01)
                in_flight["now"] -= 1
                return DeliveryOutcome.DELIVERED

        dispatcher = _dispatcher(world, CountingTransport(), max_concurrent_deliveries=1)
        result = world.run(dispatcher.dispatch(_make_incident()))
        assert result.notifications_sent == 3
        assert in_flight["peak"] == 1


class TestTestNotification:

    def test_sent_to_every_active_endpoint_of_user(self, subscribed):
        world = subscribed
        transport = ScriptedTransport()
        result = world.run(_dispatcher(world, transport).send_test_notification("mgr-a"))

        assert result.notifications_sent == 2
        _, payload = transport.sent[0]
        assert payload.severity_tag == AlertSeverity.STANDARD
        assert payload.data.deep_link_path == "/dashboard"

    def test_user_without_endpoints(self, world):
        result = world.run(_dispatcher(world, ScriptedTransport()).send_test_notification("staff-1"))
        assert result.attempts == []
