"""
base.py — Persistence contracts consumed by the compliance core.

Two read/write surfaces:

    Directory  — users and venues, read-only from the core's side
    Store      — certifications, training progress, incidents, alerts,
                 push subscriptions

Each write is its own atomic unit keyed by a single natural key
(user id, incident id, endpoint); no operation spans records of
different kinds, so implementations need no cross-table transactions.
"""

from __future__ import annotations

import abc
from typing import Iterable, List, Optional

from backend.app.alerts.models import Alert, PushSubscription
from backend.app.certification.models import (
    Certification,
    QuizQuestion,
    TrainingModule,
    UserProgress,
)
from backend.app.directory.models import ManagerLocation, User, Venue
from backend.app.incidents.models import Incident


class Directory(abc.ABC):
    """Read-only user/venue directory."""

    @abc.abstractmethod
    async def managers_with_venue(self) -> List[ManagerLocation]:
        """Every manager that has a home venue, joined with its location."""

    @abc.abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        ...

    @abc.abstractmethod
    async def get_venue(self, venue_id: str) -> Optional[Venue]:
        ...

    @abc.abstractmethod
    async def staff_for_venue(self, venue_id: str) -> List[User]:
        ...


class Store(abc.ABC):
    """Read/write persistence for records the core owns."""

    # ── Certifications ──

    @abc.abstractmethod
    async def load_certification(self, user_id: str) -> Optional[Certification]:
        ...

    @abc.abstractmethod
    async def save_certification(self, cert: Certification) -> Certification:
        """Insert or replace the record for ``cert.user_id``."""

    # ── Training catalogue & progress ──

    @abc.abstractmethod
    async def save_module(
        self, module: TrainingModule, questions: Iterable[QuizQuestion] = (),
    ) -> None:
        """Insert or replace a module together with its quiz questions."""

    @abc.abstractmethod
    async def list_modules(self) -> List[TrainingModule]:
        """All modules ordered by ``order_index``."""

    @abc.abstractmethod
    async def load_module(self, module_id: str) -> Optional[TrainingModule]:
        ...

    @abc.abstractmethod
    async def questions_for_module(self, module_id: str) -> List[QuizQuestion]:
        ...

    @abc.abstractmethod
    async def load_progress(self, user_id: str, module_id: str) -> Optional[UserProgress]:
        ...

    @abc.abstractmethod
    async def progress_for_user(self, user_id: str) -> List[UserProgress]:
        ...

    @abc.abstractmethod
    async def save_progress(self, progress: UserProgress) -> UserProgress:
        ...

    # ── Incidents ──

    @abc.abstractmethod
    async def load_incident(self, incident_id: str) -> Optional[Incident]:
        ...

    @abc.abstractmethod
    async def save_incident(self, incident: Incident) -> Incident:
        """Insert or update by ``incident.id``."""

    @abc.abstractmethod
    async def incidents_for_venue(self, venue_id: str, limit: int = 10) -> List[Incident]:
        """Most recent first."""

    # ── Alerts ──

    @abc.abstractmethod
    async def load_alert(self, alert_id: str) -> Optional[Alert]:
        ...

    @abc.abstractmethod
    async def load_alert_by_incident(self, incident_id: str) -> Optional[Alert]:
        ...

    @abc.abstractmethod
    async def save_alert(self, alert: Alert) -> Alert:
        """
        Insert a new alert.

        Raises StateInvariantViolation if an alert already exists for
        ``alert.incident_id``.
        """

    @abc.abstractmethod
    async def update_alert(self, alert: Alert) -> Alert:
        ...

    @abc.abstractmethod
    async def active_alerts(self) -> List[Alert]:
        ...

    # ── Push subscriptions ──

    @abc.abstractmethod
    async def load_subscription(self, endpoint: str) -> Optional[PushSubscription]:
        ...

    @abc.abstractmethod
    async def active_subscriptions(self, user_id: str) -> List[PushSubscription]:
        ...

    @abc.abstractmethod
    async def upsert_subscription(self, subscription: PushSubscription) -> PushSubscription:
        """Insert, or overwrite the row with the same ``endpoint``."""

    @abc.abstractmethod
    async def deactivate_subscription(self, endpoint: str) -> Optional[PushSubscription]:
        """Set ``is_active=False``. Idempotent; None if unknown endpoint."""
