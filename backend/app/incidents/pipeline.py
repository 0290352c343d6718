"""
pipeline.py — Incident intake and its side effects.

    record_incident(input)
        │
        ├── validate (pydantic → ValidationError with field detail)
        ├── resolve reporter / venue in the directory (NotFoundError)
        ├── persist Incident
        └── if is_alert_worthy(incident):
                ├── AlertDispatcher.dispatch(incident)           best-effort
                └── CertificationEngine.on_incident_involvement  must succeed

The predicate is evaluated once and both consequences key off that single
answer.

Dispatch runs as its own asyncio task. With ``dispatch_in_background``
the pipeline returns as soon as the certification write is done and the
task finishes on its own; its DispatchResult is logged, and drain()
collects whatever is still running (shutdown, tests). Dispatch failures
never fail the incident submission. Certification failures do propagate.

Manager verification (update_verification) runs the same side effects
the first time an incident becomes a validated sting.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, Optional, Set, Union

from pydantic import ValidationError as PydanticValidationError

from backend.app.alerts.dispatcher import AlertDispatcher
from backend.app.alerts.models import DispatchResult
from backend.app.certification.engine import CertificationEngine
from backend.app.certification.models import Certification
from backend.app.core.errors import NotFoundError, ValidationError
from backend.app.incidents.models import (
    Incident,
    IncidentSubmission,
    VerificationStatus,
    is_alert_worthy,
)
from backend.app.storage.base import Directory, Store

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IncidentOutcome:
    """Everything one submission caused."""
    incident: Incident
    alert_worthy: bool = False
    certification: Optional[Certification] = None
    dispatch: Optional[DispatchResult] = None  # None while running in background
    dispatch_task: Optional["asyncio.Task[Optional[DispatchResult]]"] = None


class IncidentPipeline:

    def __init__(
        self,
        store: Store,
        directory: Directory,
        engine: CertificationEngine,
        dispatcher: AlertDispatcher,
        *,
        dispatch_in_background: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.directory = directory
        self.engine = engine
        self.dispatcher = dispatcher
        self.dispatch_in_background = dispatch_in_background
        self.clock = clock
        self._pending: Set["asyncio.Task[Optional[DispatchResult]]"] = set()

    # ── Validation ──

    async def _validate(
        self, data: Union[IncidentSubmission, Mapping[str, Any]],
    ) -> IncidentSubmission:
        if isinstance(data, IncidentSubmission):
            submission = data
        else:
            try:
                submission = IncidentSubmission.model_validate(data)
            except PydanticValidationError as exc:
                raise ValidationError.from_pydantic(exc, "Invalid incident report") from exc

        reporter = await self.directory.get_user(submission.reporter_id)
        if reporter is None:
            raise NotFoundError("User", id=submission.reporter_id)

        # The reporter's home venue wins; the submitted venue covers venueless users
        venue_id = reporter.venue_id or submission.venue_id
        if submission.venue_id and await self.directory.get_venue(submission.venue_id) is None:
            raise NotFoundError("Venue", id=submission.venue_id)

        return submission.model_copy(update={"venue_id": venue_id})

    # ── Side effects ──

    async def _dispatch_safely(self, incident: Incident) -> Optional[DispatchResult]:
        try:
            return await self.dispatcher.dispatch(incident)
        except Exception:
            logger.exception(
                "Alert dispatch for incident %s failed; the incident is recorded "
                "and dispatch can be re-run",
                incident.id,
                extra={"incident_id": incident.id},
            )
            return None

    async def _apply_side_effects(self, incident: Incident) -> IncidentOutcome:
        outcome = IncidentOutcome(incident=incident, alert_worthy=is_alert_worthy(incident))
        if not outcome.alert_worthy:
            return outcome

        task = asyncio.create_task(self._dispatch_safely(incident))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        outcome.dispatch_task = task

        outcome.certification = await self.engine.on_incident_involvement(
            incident.reporter_id, incident,
        )

        if not self.dispatch_in_background:
            outcome.dispatch = await task
        return outcome

    # ── Entry points ──

    async def submit(self, data: Union[IncidentSubmission, Mapping[str, Any]]) -> IncidentOutcome:
        """Record an incident and report everything it triggered."""
        submission = await self._validate(data)

        incident = submission.to_incident()
        if incident.verification_status == VerificationStatus.VALIDATED:
            incident.validated_at = self.clock()
        incident = await self.store.save_incident(incident)

        logger.info(
            "Incident %s recorded: %s/%s by %s",
            incident.id, incident.category.value,
            incident.verification_status.value, incident.reporter_id,
            extra={"incident_id": incident.id, "user_id": incident.reporter_id},
        )
        return await self._apply_side_effects(incident)

    async def record_incident(self, data: Union[IncidentSubmission, Mapping[str, Any]]) -> Incident:
        return (await self.submit(data)).incident

    async def get_incident(self, incident_id: str) -> Incident:
        incident = await self.store.load_incident(incident_id)
        if incident is None:
            raise NotFoundError("Incident", id=incident_id)
        return incident

    async def update_verification(
        self,
        incident_id: str,
        status: Union[VerificationStatus, str],
    ) -> IncidentOutcome:
        """
        Move an incident to ``status``.

        The first validation of a regulatory sting triggers the same side
        effects as a validated submission; later flips don't repeat them.
        """
        try:
            status = VerificationStatus(status)
        except ValueError as exc:
            raise ValidationError(
                f"Unknown verification status: {status!r}", field="verification_status",
            ) from exc

        incident = await self.get_incident(incident_id)
        if incident.verification_status == status:
            return IncidentOutcome(incident=incident, alert_worthy=is_alert_worthy(incident))

        first_validation = incident.validated_at is None
        incident.verification_status = status
        if status == VerificationStatus.VALIDATED and first_validation:
            incident.validated_at = self.clock()
        incident = await self.store.save_incident(incident)

        logger.info(
            "Incident %s verification → %s", incident.id, status.value,
            extra={"incident_id": incident.id},
        )

        if first_validation and status == VerificationStatus.VALIDATED:
            return await self._apply_side_effects(incident)
        return IncidentOutcome(incident=incident, alert_worthy=is_alert_worthy(incident))

    async def drain(self) -> List[Optional[DispatchResult]]:
        """Wait for every background dispatch still in flight."""
        if not self._pending:
            return []
        return list(await asyncio.gather(*list(self._pending)))

    @property
    def pending_dispatches(self) -> int:
        return len(self._pending)
