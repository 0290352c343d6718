"""
test_pipeline.py — Incident intake and its side effects.

Covers:
    • Validation (coordinates, evidence, reporter, venue)
    • Validated regulatory sting → forced expiry + geofenced dispatch
    • Non-alert-worthy reports → no side effects
    • Dispatch failures are contained, certification failures propagate
    • Background dispatch and drain()
    • Manager verification triggers side effects once

Run with:
    pytest tests/test_pipeline.py -v
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from backend.app.certification.models import CertificationStatus
from backend.app.core.errors import NotFoundError, ValidationError
from backend.app.directory.models import User, UserRole
from backend.app.incidents.models import IncidentSubmission, VerificationStatus

from conftest import T0, build_world

KEYS = {"p256dh": "BPk3-public", "auth": "secret-auth"}


def _report(**overrides) -> dict:
    data = {
        "category": "regulatory_sting",
        "reporter_id": "staff-1",
        "latitude": 40.0,
        "longitude": -74.0,
        "incident_timestamp": "2026-03-01T10:00:00+00:00",
        "description": "Two agents checked IDs and cited a minor",
        "verification_status": "validated",
    }
    data.update(overrides)
    return data


def _subscribe_managers(world) -> None:
    for user_id in ("mgr-a", "mgr-b", "mgr-far"):
        world.run(world.services.registry.register(user_id, f"https://push.example/{user_id}", KEYS))


# ═══════════════════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════════════════

class TestValidation:

    @pytest.mark.parametrize("overrides, field", [
        ({"latitude": 91.0}, "latitude"),
        ({"longitude": -200.0}, "longitude"),
        ({"latitude": float("nan")}, "latitude"),
        ({"category": "noise_complaint"}, "category"),
        ({"reporter_id": ""}, "reporter_id"),
    ])
    def test_field_errors(self, world, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            world.run(world.services.pipeline.submit(_report(**overrides)))
        assert field in [e["field"] for e in exc_info.value.errors]
        assert world.store.incidents == {}

    def test_evidence_required(self, world):
        with pytest.raises(ValidationError):
            world.run(world.services.pipeline.submit(_report(description="  ", photo_urls=[])))

    def test_photo_alone_is_enough(self, world):
        incident = world.run(world.services.pipeline.record_incident(
            _report(description=None, photo_urls=["https://cdn.example/p.jpg"]),
        ))
        assert incident.photo_urls == ["https://cdn.example/p.jpg"]

    def test_unknown_reporter(self, world):
        with pytest.raises(NotFoundError):
            world.run(world.services.pipeline.submit(_report(reporter_id="ghost")))

    def test_unknown_venue(self, world):
        with pytest.raises(NotFoundError):
            world.run(world.services.pipeline.submit(_report(venue_id="venue-x")))

    def test_home_venue_wins_over_submitted_venue(self, world):
        incident = world.run(world.services.pipeline.record_incident(
            _report(venue_id="venue-b", verification_status="pending"),
        ))
        assert incident.venue_id == "venue-a"

    def test_submitted_venue_used_for_venueless_reporter(self, world):
        world.directory.add_user(User("floater", UserRole.STAFF, name="Floater"))
        incident = world.run(world.services.pipeline.record_incident(
            _report(reporter_id="floater", venue_id="venue-b", verification_status="pending"),
        ))
        assert incident.venue_id == "venue-b"

    def test_accepts_submission_model(self, world):
        submission = IncidentSubmission.model_validate(_report(verification_status="pending"))
        incident = world.run(world.services.pipeline.record_incident(submission))
        assert incident.verification_status == VerificationStatus.PENDING


# ═══════════════════════════════════════════════════════════════════════════
# Side effects
# ═══════════════════════════════════════════════════════════════════════════

class TestValidatedSting:

    def test_expires_reporter_and_alerts_nearby_managers(self, world):
        _subscribe_managers(world)
        outcome = world.run(world.services.pipeline.submit(_report()))

        assert outcome.alert_worthy
        assert outcome.incident.validated_at == T0
        assert outcome.incident.venue_id == "venue-a"
        assert outcome.certification.status == CertificationStatus.EXPIRED
        assert outcome.certification.related_incident_count == 1

        dispatch = outcome.dispatch
        assert dispatch.alert_created
        assert dispatch.manager_count == 2
        assert dispatch.notifications_sent == 2
        sent_to = sorted(e for e, _ in world.transport.sent)
        assert sent_to == ["https://push.example/mgr-a", "https://push.example/mgr-b"]

        stored = world.run(world.store.load_incident(outcome.incident.id))
        assert stored.verification_status == VerificationStatus.VALIDATED

    def test_manager_reporter_alerts_without_certification(self, world):
        _subscribe_managers(world)
        outcome = world.run(world.services.pipeline.submit(_report(reporter_id="mgr-a")))
        assert outcome.certification is None
        assert outcome.dispatch.manager_count == 2

    def test_naive_timestamp_treated_as_utc(self, world):
        incident = world.run(world.services.pipeline.record_incident(
            _report(incident_timestamp="2026-03-01T10:00:00", verification_status="pending"),
        ))
        assert incident.incident_timestamp == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("overrides", [
        {"verification_status": "pending"},
        {"category": "operational_incident"},
        {"category": "unverified_hotspot"},
    ])
    def test_not_alert_worthy_has_no_side_effects(self, world, overrides):
        _subscribe_managers(world)
        outcome = world.run(world.services.pipeline.submit(_report(**overrides)))

        assert not outcome.alert_worthy
        assert outcome.certification is None
        assert outcome.dispatch is None
        assert outcome.incident.validated_at is None
        assert world.store.alerts == {}
        assert not world.transport.sent
        assert world.run(world.store.load_certification("staff-1")) is None


class TestFailureContainment:

    def test_dispatch_failure_does_not_fail_submission(self, world):
        pipeline = world.services.pipeline
        pipeline.dispatcher.dispatch = AsyncMock(side_effect=RuntimeError("push service down"))

        outcome = world.run(pipeline.submit(_report()))
        assert outcome.dispatch is None
        assert outcome.certification.status == CertificationStatus.EXPIRED
        assert outcome.incident.id in world.store.incidents

    def test_certification_failure_propagates_after_persisting(self, world):
        _subscribe_managers(world)
        pipeline = world.services.pipeline
        pipeline.engine.on_incident_involvement = AsyncMock(side_effect=RuntimeError("db down"))

        async def scenario():
            with pytest.raises(RuntimeError):
                await pipeline.submit(_report())
            return await pipeline.drain()

        results = world.run(scenario())
        assert len(world.store.incidents) == 1
        # The alert still went out
        assert results[0].alert_created
        assert results[0].notifications_sent == 2


class TestBackgroundDispatch:

    def test_submit_returns_before_dispatch_completes(self, clock):
        world = build_world(clock, DISPATCH_IN_BACKGROUND=True)
        _subscribe_managers(world)
        pipeline = world.services.pipeline

        async def scenario():
            outcome = await pipeline.submit(_report())
            pending = pipeline.pending_dispatches
            results = await pipeline.drain()
            return outcome, pending, results

        outcome, pending, results = world.run(scenario())
        assert outcome.dispatch is None
        assert outcome.dispatch_task is not None
        assert outcome.certification.status == CertificationStatus.EXPIRED
        assert pending == 1
        assert results[0].notifications_sent == 2
        assert pipeline.pending_dispatches == 0

    def test_drain_with_nothing_pending(self, world):
        assert world.run(world.services.pipeline.drain()) == []


# ═══════════════════════════════════════════════════════════════════════════
# Verification
# ═══════════════════════════════════════════════════════════════════════════

class TestUpdateVerification:

    def _pending(self, world):
        return world.run(world.services.pipeline.record_incident(_report(verification_status="pending")))

    def test_first_validation_triggers_side_effects(self, world, clock):
        _subscribe_managers(world)
        incident = self._pending(world)
        clock.advance(hours=3)

        outcome = world.run(world.services.pipeline.update_verification(incident.id, "validated"))
        assert outcome.incident.verification_status == VerificationStatus.VALIDATED
        assert outcome.incident.validated_at == clock.now
        assert outcome.certification.related_incident_count == 1
        assert outcome.dispatch.notifications_sent == 2

    def test_revalidation_does_not_repeat(self, world):
        pipeline = world.services.pipeline
        incident = self._pending(world)
        world.run(pipeline.update_verification(incident.id, VerificationStatus.VALIDATED))
        world.run(pipeline.update_verification(incident.id, VerificationStatus.ARCHIVED))
        outcome = world.run(pipeline.update_verification(incident.id, VerificationStatus.VALIDATED))

        assert outcome.certification is None
        assert outcome.dispatch is None
        cert = world.run(world.store.load_certification("staff-1"))
        assert cert.related_incident_count == 1
        assert len(world.store.alerts) == 1

    def test_same_status_is_noop(self, world):
        incident = self._pending(world)
        outcome = world.run(world.services.pipeline.update_verification(incident.id, "pending"))
        assert outcome.incident.validated_at is None
        assert outcome.certification is None

    def test_archiving_does_not_trigger(self, world):
        incident = self._pending(world)
        outcome = world.run(world.services.pipeline.update_verification(incident.id, "archived"))
        assert not outcome.alert_worthy
        assert world.store.alerts == {}

    def test_unknown_status(self, world):
        incident = self._pending(world)
        with pytest.raises(ValidationError):
            world.run(world.services.pipeline.update_verification(incident.id, "approved"))

    def test_unknown_incident(self, world):
        with pytest.raises(NotFoundError):
            world.run(world.services.pipeline.update_verification("missing", "validated"))
