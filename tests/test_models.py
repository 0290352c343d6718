"""
test_models.py — Notification payloads and incident submission parsing.

Run with:
    pytest tests/test_models.py -v
"""

from __future__ import annotations

import json
from datetime import timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from backend.app.alerts.models import (
    AlertSeverity,
    DeliveryAttempt,
    DeliveryOutcome,
    DispatchResult,
    NotificationData,
    NotificationPayload,
)
from backend.app.incidents.models import IncidentCategory, IncidentSubmission


def _data(**overrides) -> NotificationData:
    values = dict(incident_id="inc-1", alert_id="alert-1", deep_link_path="/alerts/alert-1")
    values.update(overrides)
    return NotificationData(**values)


class TestNotificationPayload:

    @pytest.mark.parametrize("field", ["incident_id", "alert_id", "deep_link_path"])
    def test_data_fields_required(self, field):
        with pytest.raises(ValueError):
            _data(**{field: ""})

    def test_deep_link_must_be_app_path(self):
        with pytest.raises(ValueError):
            _data(deep_link_path="https://evil.example/phish")

    @pytest.mark.parametrize("title, body", [("", "body"), ("Title", "   ")])
    def test_title_and_body_required(self, title, body):
        with pytest.raises(ValueError):
            NotificationPayload(title, body, AlertSeverity.CRITICAL, _data())

    def test_severity_must_be_enum(self):
        with pytest.raises(ValueError):
            NotificationPayload("Title", "Body", "urgent", _data())

    def test_push_json_critical(self):
        payload = NotificationPayload("Title", "Body", AlertSeverity.CRITICAL, _data())
        message = json.loads(payload.to_push_json())

        assert message["severityTag"] == "critical"
        assert message["data"]["deepLinkPath"] == "/alerts/alert-1"
        assert message["data"]["url"] == "/alerts/alert-1"
        assert message["tag"] == "alert-alert-1"
        assert message["requireInteraction"] is True
        assert message["vibrate"] == [200, 100, 200]

    def test_push_json_standard(self):
        payload = NotificationPayload("Title", "Body", AlertSeverity.STANDARD, _data())
        message = json.loads(payload.to_push_json())
        assert message["requireInteraction"] is False
        assert message["vibrate"] == [100]

    def test_to_dict_unaffected_by_push_json(self):
        payload = NotificationPayload("Title", "Body", AlertSeverity.STANDARD, _data())
        payload.to_push_json()
        assert "url" not in payload.to_dict()["data"]


class TestDispatchResult:

    def test_counts(self):
        result = DispatchResult(incident_id="inc-1", attempts=[
            DeliveryAttempt("u", "e1", DeliveryOutcome.DELIVERED),
            DeliveryAttempt("u", "e2", DeliveryOutcome.GONE),
            DeliveryAttempt("u", "e3", DeliveryOutcome.TRANSIENT_FAILURE),
        ])
        assert result.notifications_sent == 1
        assert result.failures == 2
        summary = result.to_dict()
        assert summary["notifications_sent"] == 1
        assert [a["outcome"] for a in summary["attempts"]] == ["delivered", "gone", "transient_failure"]


class TestIncidentSubmission:

    def _valid(self, **overrides) -> dict:
        data = {
            "category": "operational_incident",
            "reporter_id": "staff-1",
            "latitude": 40.0,
            "longitude": -74.0,
            "incident_timestamp": "2026-03-01T10:00:00",
            "description": "  Spilled drinks near the stage  ",
        }
        data.update(overrides)
        return data

    def test_naive_timestamp_becomes_utc(self):
        incident = IncidentSubmission.model_validate(self._valid()).to_incident()
        assert incident.incident_timestamp.tzinfo == timezone.utc
        assert incident.category == IncidentCategory.OPERATIONAL_INCIDENT

    def test_description_trimmed(self):
        incident = IncidentSubmission.model_validate(self._valid()).to_incident()
        assert incident.description == "Spilled drinks near the stage"

    def test_coordinates_kept(self):
        incident = IncidentSubmission.model_validate(self._valid(latitude=-90, longitude=180)).to_incident()
        assert (incident.location.latitude, incident.location.longitude) == (-90.0, 180.0)

    @pytest.mark.parametrize("overrides", [
        {"latitude": 90.0001},
        {"longitude": float("inf")},
        {"incident_timestamp": "yesterday"},
        {"description": None, "photo_urls": []},
    ])
    def test_rejected(self, overrides):
        with pytest.raises(PydanticValidationError):
            IncidentSubmission.model_validate(self._valid(**overrides))
