"""
sql.py — SQLAlchemy-backed Directory and Store.

One short-lived AsyncSession per operation; every write commits on its
own. Uniqueness (one alert per incident, one row per push endpoint) is
left to the database constraints in tables.py, and an IntegrityError on
those is reported as StateInvariantViolation.

Some drivers (SQLite) hand back naive datetimes even for
``DateTime(timezone=True)`` columns; everything read here is normalised
to UTC-aware values.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.alerts.models import (
    Alert,
    AlertSeverity,
    PushSubscription,
    SubscriptionKeys,
)
from backend.app.certification.models import (
    Certification,
    CertificationStatus,
    QuizQuestion,
    TrainingModule,
    UserProgress,
)
from backend.app.core.errors import StateInvariantViolation
from backend.app.directory.models import (
    DEFAULT_VENUE_RADIUS_MILES,
    ManagerLocation,
    User,
    UserRole,
    Venue,
)
from backend.app.incidents.models import Incident, IncidentCategory, VerificationStatus
from backend.app.spatial.geo_index import Coordinate
from backend.app.storage.base import Directory, Store
from backend.app.storage.tables import (
    AlertRow,
    CertificationRow,
    IncidentRow,
    PushSubscriptionRow,
    QuizQuestionRow,
    TrainingModuleRow,
    UserProgressRow,
    UserRow,
    VenueRow,
)

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Row ↔ record conversion
# ═══════════════════════════════════════════════════════════════════════════

def _venue(row: VenueRow, default_radius_miles: float) -> Venue:
    return Venue(
        id=row.id,
        name=row.name,
        location=Coordinate(row.latitude, row.longitude),
        alert_radius_miles=(
            row.alert_radius_miles if row.alert_radius_miles is not None else default_radius_miles
        ),
    )


def _user(row: UserRow) -> User:
    return User(
        id=row.id,
        role=UserRole(row.role),
        venue_id=row.venue_id,
        name=row.name or "",
        email=row.email,
    )


def _module(row: TrainingModuleRow) -> TrainingModule:
    return TrainingModule(
        id=row.id,
        title=row.title,
        order_index=row.order_index,
        is_required=row.is_required,
        description=row.description or "",
        estimated_minutes=row.estimated_minutes,
    )


def _question(row: QuizQuestionRow) -> QuizQuestion:
    return QuizQuestion(
        id=row.id,
        module_id=row.module_id,
        question_text=row.question_text,
        correct_answer=row.correct_answer,
        order_index=row.order_index,
        options=tuple(row.options or ()),
        explanation=row.explanation or "",
    )


def _progress(row: UserProgressRow) -> UserProgress:
    return UserProgress(
        id=row.id,
        user_id=row.user_id,
        module_id=row.module_id,
        started_at=_aware(row.started_at),
        passed=row.passed,
        quiz_score=row.quiz_score,
        best_score=row.best_score,
        quiz_attempts=row.quiz_attempts,
        passed_at=_aware(row.passed_at),
    )


def _certification(row: CertificationRow) -> Certification:
    return Certification(
        id=row.id,
        user_id=row.user_id,
        status=CertificationStatus(row.status),
        certified_at=_aware(row.certified_at),
        expires_at=_aware(row.expires_at),
        related_incident_count=row.related_incident_count,
        requires_recertification=row.requires_recertification,
        recertification_reason=row.recertification_reason,
        recertification_requested_at=_aware(row.recertification_requested_at),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _incident(row: IncidentRow) -> Incident:
    return Incident(
        id=row.id,
        category=IncidentCategory(row.category),
        reporter_id=row.reporter_id,
        location=Coordinate(row.latitude, row.longitude),
        incident_timestamp=_aware(row.incident_timestamp),
        verification_status=VerificationStatus(row.verification_status),
        venue_id=row.venue_id,
        address=row.address,
        description=row.description,
        photo_urls=list(row.photo_urls or []),
        reported_at=_aware(row.reported_at),
        validated_at=_aware(row.validated_at),
    )


def _alert(row: AlertRow) -> Alert:
    return Alert(
        id=row.id,
        incident_id=row.incident_id,
        title=row.title,
        message=row.message,
        severity=AlertSeverity(row.severity),
        location=Coordinate(row.latitude, row.longitude),
        radius_miles=row.radius_miles,
        is_active=row.is_active,
        published_at=_aware(row.published_at),
    )


def _subscription(row: PushSubscriptionRow) -> PushSubscription:
    return PushSubscription(
        id=row.id,
        user_id=row.user_id,
        endpoint=row.endpoint,
        keys=SubscriptionKeys(p256dh=row.p256dh, auth=row.auth),
        user_agent=row.user_agent,
        is_active=row.is_active,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Directory
# ═══════════════════════════════════════════════════════════════════════════

class SqlDirectory(Directory):

    def __init__(
        self,
        sessions: SessionFactory,
        default_venue_radius_miles: float = DEFAULT_VENUE_RADIUS_MILES,
    ) -> None:
        self.sessions = sessions
        self.default_venue_radius_miles = default_venue_radius_miles

    async def add_venue(self, venue: Venue) -> Venue:
        async with self.sessions() as session:
            await session.merge(VenueRow(
                id=venue.id,
                name=venue.name,
                latitude=venue.location.latitude,
                longitude=venue.location.longitude,
                alert_radius_miles=venue.alert_radius_miles,
            ))
            await session.commit()
        return venue

    async def add_user(self, user: User) -> User:
        async with self.sessions() as session:
            await session.merge(UserRow(
                id=user.id,
                role=user.role.value,
                venue_id=user.venue_id,
                name=user.name,
                email=user.email,
            ))
            await session.commit()
        return user

    async def managers_with_venue(self) -> List[ManagerLocation]:
        stmt = (
            select(UserRow, VenueRow)
            .join(VenueRow, UserRow.venue_id == VenueRow.id)
            .where(UserRow.role == UserRole.MANAGER.value)
        )
        async with self.sessions() as session:
            rows = (await session.execute(stmt)).all()
        managers = []
        for user, venue_row in rows:
            venue = _venue(venue_row, self.default_venue_radius_miles)
            managers.append(ManagerLocation(
                user_id=user.id,
                venue_id=venue.id,
                venue_location=venue.location,
                venue_radius_miles=venue.alert_radius_miles,
            ))
        return managers

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self.sessions() as session:
            row = await session.get(UserRow, user_id)
        return _user(row) if row else None

    async def get_venue(self, venue_id: str) -> Optional[Venue]:
        async with self.sessions() as session:
            row = await session.get(VenueRow, venue_id)
        return _venue(row, self.default_venue_radius_miles) if row else None

    async def staff_for_venue(self, venue_id: str) -> List[User]:
        stmt = (
            select(UserRow)
            .where(UserRow.venue_id == venue_id, UserRow.role == UserRole.STAFF.value)
            .order_by(UserRow.name)
        )
        async with self.sessions() as session:
            rows = (await session.scalars(stmt)).all()
        return [_user(r) for r in rows]


# ═══════════════════════════════════════════════════════════════════════════
# Store
# ═══════════════════════════════════════════════════════════════════════════

class SqlStore(Store):

    def __init__(self, sessions: SessionFactory) -> None:
        self.sessions = sessions

    # ── Seeding ──

    async def save_module(self, module: TrainingModule, questions=()) -> None:
        async with self.sessions() as session:
            await session.merge(TrainingModuleRow(
                id=module.id,
                title=module.title,
                order_index=module.order_index,
                is_required=module.is_required,
                description=module.description,
                estimated_minutes=module.estimated_minutes,
            ))
            for q in questions:
                await session.merge(QuizQuestionRow(
                    id=q.id,
                    module_id=module.id,
                    question_text=q.question_text,
                    correct_answer=q.correct_answer,
                    order_index=q.order_index,
                    options=list(q.options),
                    explanation=q.explanation,
                ))
            await session.commit()

    # ── Certifications ──

    async def load_certification(self, user_id: str) -> Optional[Certification]:
        stmt = select(CertificationRow).where(CertificationRow.user_id == user_id)
        async with self.sessions() as session:
            row = (await session.scalars(stmt)).first()
        return _certification(row) if row else None

    async def save_certification(self, cert: Certification) -> Certification:
        cert.updated_at = _now()
        async with self.sessions() as session:
            await session.merge(CertificationRow(
                id=cert.id,
                user_id=cert.user_id,
                status=cert.status.value,
                certified_at=cert.certified_at,
                expires_at=cert.expires_at,
                related_incident_count=cert.related_incident_count,
                requires_recertification=cert.requires_recertification,
                recertification_reason=cert.recertification_reason,
                recertification_requested_at=cert.recertification_requested_at,
                created_at=cert.created_at,
                updated_at=cert.updated_at,
            ))
            try:
                await session.commit()
            except IntegrityError as exc:
                raise StateInvariantViolation(
                    "A certification already exists for this user", user_id=cert.user_id,
                ) from exc
        return cert

    # ── Training ──

    async def list_modules(self) -> List[TrainingModule]:
        stmt = select(TrainingModuleRow).order_by(TrainingModuleRow.order_index)
        async with self.sessions() as session:
            rows = (await session.scalars(stmt)).all()
        return [_module(r) for r in rows]

    async def load_module(self, module_id: str) -> Optional[TrainingModule]:
        async with self.sessions() as session:
            row = await session.get(TrainingModuleRow, module_id)
        return _module(row) if row else None

    async def questions_for_module(self, module_id: str) -> List[QuizQuestion]:
        stmt = (
            select(QuizQuestionRow)
            .where(QuizQuestionRow.module_id == module_id)
            .order_by(QuizQuestionRow.order_index)
        )
        async with self.sessions() as session:
            rows = (await session.scalars(stmt)).all()
        return [_question(r) for r in rows]

    async def load_progress(self, user_id: str, module_id: str) -> Optional[UserProgress]:
        stmt = select(UserProgressRow).where(
            UserProgressRow.user_id == user_id,
            UserProgressRow.module_id == module_id,
        )
        async with self.sessions() as session:
            row = (await session.scalars(stmt)).first()
        return _progress(row) if row else None

    async def progress_for_user(self, user_id: str) -> List[UserProgress]:
        stmt = select(UserProgressRow).where(UserProgressRow.user_id == user_id)
        async with self.sessions() as session:
            rows = (await session.scalars(stmt)).all()
        return [_progress(r) for r in rows]

    async def save_progress(self, progress: UserProgress) -> UserProgress:
        async with self.sessions() as session:
            await session.merge(UserProgressRow(
                id=progress.id,
                user_id=progress.user_id,
                module_id=progress.module_id,
                started_at=progress.started_at,
                passed=progress.passed,
                quiz_score=progress.quiz_score,
                best_score=progress.best_score,
                quiz_attempts=progress.quiz_attempts,
                passed_at=progress.passed_at,
            ))
            try:
                await session.commit()
            except IntegrityError as exc:
                raise StateInvariantViolation(
                    "Progress for this module was created concurrently",
                    user_id=progress.user_id, module_id=progress.module_id,
                ) from exc
        return progress

    # ── Incidents ──

    async def load_incident(self, incident_id: str) -> Optional[Incident]:
        async with self.sessions() as session:
            row = await session.get(IncidentRow, incident_id)
        return _incident(row) if row else None

    async def save_incident(self, incident: Incident) -> Incident:
        async with self.sessions() as session:
            await session.merge(IncidentRow(
                id=incident.id,
                category=incident.category.value,
                reporter_id=incident.reporter_id,
                latitude=incident.location.latitude,
                longitude=incident.location.longitude,
                incident_timestamp=incident.incident_timestamp,
                verification_status=incident.verification_status.value,
                venue_id=incident.venue_id,
                address=incident.address,
                description=incident.description,
                photo_urls=list(incident.photo_urls),
                reported_at=incident.reported_at,
                validated_at=incident.validated_at,
            ))
            await session.commit()
        return incident

    async def incidents_for_venue(self, venue_id: str, limit: int = 10) -> List[Incident]:
        stmt = (
            select(IncidentRow)
            .where(IncidentRow.venue_id == venue_id)
            .order_by(IncidentRow.reported_at.desc())
            .limit(limit)
        )
        async with self.sessions() as session:
            rows = (await session.scalars(stmt)).all()
        return [_incident(r) for r in rows]

    # ── Alerts ──

    async def load_alert(self, alert_id: str) -> Optional[Alert]:
        async with self.sessions() as session:
            row = await session.get(AlertRow, alert_id)
        return _alert(row) if row else None

    async def load_alert_by_incident(self, incident_id: str) -> Optional[Alert]:
        stmt = select(AlertRow).where(AlertRow.incident_id == incident_id)
        async with self.sessions() as session:
            row = (await session.scalars(stmt)).first()
        return _alert(row) if row else None

    async def save_alert(self, alert: Alert) -> Alert:
        async with self.sessions() as session:
            session.add(AlertRow(
                id=alert.id,
                incident_id=alert.incident_id,
                title=alert.title,
                message=alert.message,
                severity=alert.severity.value,
                latitude=alert.location.latitude,
                longitude=alert.location.longitude,
                radius_miles=alert.radius_miles,
                is_active=alert.is_active,
                published_at=alert.published_at,
            ))
            try:
                await session.commit()
            except IntegrityError as exc:
                raise StateInvariantViolation(
                    "An alert already exists for this incident",
                    incident_id=alert.incident_id,
                ) from exc
        return alert

    async def update_alert(self, alert: Alert) -> Alert:
        stmt = (
            update(AlertRow)
            .where(AlertRow.id == alert.id)
            .values(
                title=alert.title,
                message=alert.message,
                severity=alert.severity.value,
                radius_miles=alert.radius_miles,
                is_active=alert.is_active,
            )
        )
        async with self.sessions() as session:
            await session.execute(stmt)
            await session.commit()
        return alert

    async def active_alerts(self) -> List[Alert]:
        stmt = select(AlertRow).where(AlertRow.is_active.is_(True))
        async with self.sessions() as session:
            rows = (await session.scalars(stmt)).all()
        return [_alert(r) for r in rows]

    # ── Push subscriptions ──

    async def load_subscription(self, endpoint: str) -> Optional[PushSubscription]:
        stmt = select(PushSubscriptionRow).where(PushSubscriptionRow.endpoint == endpoint)
        async with self.sessions() as session:
            row = (await session.scalars(stmt)).first()
        return _subscription(row) if row else None

    async def active_subscriptions(self, user_id: str) -> List[PushSubscription]:
        stmt = select(PushSubscriptionRow).where(
            PushSubscriptionRow.user_id == user_id,
            PushSubscriptionRow.is_active.is_(True),
        )
        async with self.sessions() as session:
            rows = (await session.scalars(stmt)).all()
        return [_subscription(r) for r in rows]

    async def _write_subscription(self, subscription: PushSubscription) -> PushSubscription:
        stmt = select(PushSubscriptionRow).where(
            PushSubscriptionRow.endpoint == subscription.endpoint,
        )
        async with self.sessions() as session:
            row = (await session.scalars(stmt)).first()
            if row is None:
                row = PushSubscriptionRow(
                    id=subscription.id,
                    endpoint=subscription.endpoint,
                    created_at=subscription.created_at,
                )
                session.add(row)
            else:
                subscription.id = row.id
                subscription.created_at = _aware(row.created_at)
            row.user_id = subscription.user_id
            row.p256dh = subscription.keys.p256dh
            row.auth = subscription.keys.auth
            row.user_agent = subscription.user_agent
            row.is_active = subscription.is_active
            row.updated_at = subscription.updated_at
            await session.commit()
        return subscription

    async def upsert_subscription(self, subscription: PushSubscription) -> PushSubscription:
        subscription.updated_at = _now()
        try:
            return await self._write_subscription(subscription)
        except IntegrityError:
            # Another request inserted the endpoint first; the row now exists
            logger.debug("Concurrent insert for push endpoint; retrying as update")
            return await self._write_subscription(subscription)

    async def deactivate_subscription(self, endpoint: str) -> Optional[PushSubscription]:
        stmt = select(PushSubscriptionRow).where(PushSubscriptionRow.endpoint == endpoint)
        async with self.sessions() as session:
            row = (await session.scalars(stmt)).first()
            if row is None:
                return None
            if row.is_active:
                row.is_active = False
                row.updated_at = _now()
                await session.commit()
            return _subscription(row)
