"""
memory.py — In-process Directory and Store.

Used by the test-suite and for local development without PostgreSQL.
Records are copied on the way in and out so callers can't mutate
stored state behind the store's back.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from backend.app.alerts.models import Alert, PushSubscription
from backend.app.certification.models import (
    Certification,
    QuizQuestion,
    TrainingModule,
    UserProgress,
)
from backend.app.core.errors import StateInvariantViolation
from backend.app.directory.models import DEFAULT_VENUE_RADIUS_MILES, ManagerLocation, User, Venue
from backend.app.incidents.models import Incident
from backend.app.storage.base import Directory, Store


class InMemoryDirectory(Directory):

    def __init__(
        self,
        users: Iterable[User] = (),
        venues: Iterable[Venue] = (),
        default_venue_radius_miles: float = DEFAULT_VENUE_RADIUS_MILES,
    ) -> None:
        self.default_venue_radius_miles = default_venue_radius_miles
        self.users: Dict[str, User] = {u.id: u for u in users}
        self.venues: Dict[str, Venue] = {v.id: v for v in venues}

    def add_user(self, user: User) -> User:
        self.users[user.id] = user
        return user

    def add_venue(self, venue: Venue) -> Venue:
        self.venues[venue.id] = venue
        return venue

    async def managers_with_venue(self) -> List[ManagerLocation]:
        managers = []
        for user in self.users.values():
            if not user.is_manager or not user.venue_id:
                continue
            venue = await self.get_venue(user.venue_id)
            if venue is None:
                continue
            managers.append(ManagerLocation(
                user_id=user.id,
                venue_id=venue.id,
                venue_location=venue.location,
                venue_radius_miles=venue.alert_radius_miles,
            ))
        return managers

    async def get_user(self, user_id: str) -> Optional[User]:
        return self.users.get(user_id)

    async def get_venue(self, venue_id: str) -> Optional[Venue]:
        venue = self.venues.get(venue_id)
        return venue.with_default_radius(self.default_venue_radius_miles) if venue else None

    async def staff_for_venue(self, venue_id: str) -> List[User]:
        staff = [u for u in self.users.values() if u.is_staff and u.venue_id == venue_id]
        return sorted(staff, key=lambda u: u.name)


class InMemoryStore(Store):

    def __init__(self) -> None:
        self.certifications: Dict[str, Certification] = {}
        self.modules: Dict[str, TrainingModule] = {}
        self.questions: Dict[str, List[QuizQuestion]] = {}
        self.progress: Dict[Tuple[str, str], UserProgress] = {}
        self.incidents: Dict[str, Incident] = {}
        self.alerts: Dict[str, Alert] = {}
        self.subscriptions: Dict[str, PushSubscription] = {}

    # ── Seeding helpers ──

    def add_module(self, module: TrainingModule, questions: Iterable[QuizQuestion] = ()) -> None:
        self.modules[module.id] = module
        self.questions[module.id] = sorted(questions, key=lambda q: q.order_index)

    async def save_module(self, module: TrainingModule, questions: Iterable[QuizQuestion] = ()) -> None:
        self.add_module(module, questions)

    # ── Certifications ──

    async def load_certification(self, user_id: str) -> Optional[Certification]:
        return copy.deepcopy(self.certifications.get(user_id))

    async def save_certification(self, cert: Certification) -> Certification:
        cert.updated_at = datetime.now(timezone.utc)
        self.certifications[cert.user_id] = copy.deepcopy(cert)
        return cert

    # ── Training ──

    async def list_modules(self) -> List[TrainingModule]:
        return sorted(self.modules.values(), key=lambda m: m.order_index)

    async def load_module(self, module_id: str) -> Optional[TrainingModule]:
        return self.modules.get(module_id)

    async def questions_for_module(self, module_id: str) -> List[QuizQuestion]:
        return list(self.questions.get(module_id, []))

    async def load_progress(self, user_id: str, module_id: str) -> Optional[UserProgress]:
        return copy.deepcopy(self.progress.get((user_id, module_id)))

    async def progress_for_user(self, user_id: str) -> List[UserProgress]:
        return [
            copy.deepcopy(p) for (uid, _), p in self.progress.items()
            if uid == user_id
        ]

    async def save_progress(self, progress: UserProgress) -> UserProgress:
        self.progress[(progress.user_id, progress.module_id)] = copy.deepcopy(progress)
        return progress

    # ── Incidents ──

    async def load_incident(self, incident_id: str) -> Optional[Incident]:
        return copy.deepcopy(self.incidents.get(incident_id))

    async def save_incident(self, incident: Incident) -> Incident:
        self.incidents[incident.id] = copy.deepcopy(incident)
        return incident

    async def incidents_for_venue(self, venue_id: str, limit: int = 10) -> List[Incident]:
        matching = [i for i in self.incidents.values() if i.venue_id == venue_id]
        matching.sort(key=lambda i: i.reported_at, reverse=True)
        return [copy.deepcopy(i) for i in matching[:limit]]

    # ── Alerts ──

    async def load_alert(self, alert_id: str) -> Optional[Alert]:
        return copy.deepcopy(self.alerts.get(alert_id))

    async def load_alert_by_incident(self, incident_id: str) -> Optional[Alert]:
        for alert in self.alerts.values():
            if alert.incident_id == incident_id:
                return copy.deepcopy(alert)
        return None

    async def save_alert(self, alert: Alert) -> Alert:
        # No await between the check and the insert, so this is atomic on the loop
        if any(a.incident_id == alert.incident_id for a in self.alerts.values()):
            raise StateInvariantViolation(
                "An alert already exists for this incident",
                incident_id=alert.incident_id,
            )
        self.alerts[alert.id] = copy.deepcopy(alert)
        return alert

    async def update_alert(self, alert: Alert) -> Alert:
        self.alerts[alert.id] = copy.deepcopy(alert)
        return alert

    async def active_alerts(self) -> List[Alert]:
        return [copy.deepcopy(a) for a in self.alerts.values() if a.is_active]

    # ── Push subscriptions ──

    async def load_subscription(self, endpoint: str) -> Optional[PushSubscription]:
        return copy.deepcopy(self.subscriptions.get(endpoint))

    async def active_subscriptions(self, user_id: str) -> List[PushSubscription]:
        return [
            copy.deepcopy(s) for s in self.subscriptions.values()
            if s.user_id == user_id and s.is_active
        ]

    async def upsert_subscription(self, subscription: PushSubscription) -> PushSubscription:
        existing = self.subscriptions.get(subscription.endpoint)
        if existing is not None:
            subscription.id = existing.id
            subscription.created_at = existing.created_at
        subscription.updated_at = datetime.now(timezone.utc)
        self.subscriptions[subscription.endpoint] = copy.deepcopy(subscription)
        return subscription

    async def deactivate_subscription(self, endpoint: str) -> Optional[PushSubscription]:
        sub = self.subscriptions.get(endpoint)
        if sub is None:
            return None
        if sub.is_active:
            sub.is_active = False
            sub.updated_at = datetime.now(timezone.utc)
        return copy.deepcopy(sub)
