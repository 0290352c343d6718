"""
engine.py — Certification state transitions.

The engine is the only writer of Certification records. It reacts to
two events and answers one query:

    on_module_completion(user)           → maybe issue / renew (ACTIVE)
    on_incident_involvement(user, inc)   → forced expiry (EXPIRED + recert)
    current_view(user)                   → status derived lazily at read

═══════════════════════════════════════════════════════════════════════════
ISSUANCE
═══════════════════════════════════════════════════════════════════════════

A user is certified when every *required* module has a passing attempt.
Issuance (or renewal) sets

    status       = ACTIVE
    certified_at = now
    expires_at   = now + 365 days

and clears any recertification demand.

After a forced expiry, modules only count once they have been passed
again at or after the moment recertification was requested; passes
from before the incident do not restore trust.

═══════════════════════════════════════════════════════════════════════════
FORCED EXPIRY
═══════════════════════════════════════════════════════════════════════════

A staff member named as reporter on a validated regulatory sting loses
certification immediately, regardless of remaining validity:

    status                       = EXPIRED
    requires_recertification     = True
    recertification_reason       = "<category> on <date>" message
    related_incident_count      += 1

Managers hold no certification; the transition skips them.

═══════════════════════════════════════════════════════════════════════════
TIME-BASED DECAY (derived, never stored)
═══════════════════════════════════════════════════════════════════════════

    expires_at ≤ now                 → EXPIRED
    expires_at − now ≤ 30 days       → EXPIRING_SOON
    otherwise                        → ACTIVE
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from backend.app.certification.models import (
    Certification,
    CertificationStatus,
    CertificationView,
    UserProgress,
)
from backend.app.core.errors import NotFoundError
from backend.app.incidents.models import Incident, is_alert_worthy
from backend.app.storage.base import Directory, Store

logger = logging.getLogger(__name__)

DEFAULT_VALIDITY = timedelta(days=365)
DEFAULT_EXPIRING_SOON = timedelta(days=30)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def derive_status(
    cert: Optional[Certification],
    now: datetime,
    *,
    expiring_soon: timedelta = DEFAULT_EXPIRING_SOON,
) -> CertificationStatus:
    """Status of ``cert`` as seen at ``now``."""
    if cert is None:
        return CertificationStatus.NOT_CERTIFIED
    if cert.requires_recertification or cert.status == CertificationStatus.EXPIRED:
        return CertificationStatus.EXPIRED
    if cert.status == CertificationStatus.NOT_CERTIFIED or cert.expires_at is None:
        return CertificationStatus.NOT_CERTIFIED

    remaining = cert.expires_at - now
    if remaining <= timedelta(0):
        return CertificationStatus.EXPIRED
    if remaining <= expiring_soon:
        return CertificationStatus.EXPIRING_SOON
    return CertificationStatus.ACTIVE


def recertification_reason(incident: Incident) -> str:
    category = incident.category.value.replace("_", " ")
    return (
        f"Named in a validated {category} on "
        f"{incident.incident_timestamp:%Y-%m-%d}; recertification required"
    )


class CertificationEngine:
    """Deterministic certification transitions over the Store."""

    def __init__(
        self,
        store: Store,
        directory: Directory,
        *,
        validity: timedelta = DEFAULT_VALIDITY,
        expiring_soon: timedelta = DEFAULT_EXPIRING_SOON,
        clock: Clock = _utcnow,
    ) -> None:
        self.store = store
        self.directory = directory
        self.validity = validity
        self.expiring_soon = expiring_soon
        self.clock = clock

    # ── Issuance ──

    async def on_module_completion(self, user_id: str) -> Optional[Certification]:
        """
        Issue or renew the certification if every required module is passed.

        Returns the saved certification, or None when no transition occurs.
        """
        modules = await self.store.list_modules()
        required = [m.id for m in modules if m.is_required]
        if not required:
            logger.warning("No required training modules configured; not certifying %s", user_id)
            return None

        cert = await self.store.load_certification(user_id)
        fresh_since = (
            cert.recertification_requested_at
            if cert is not None and cert.requires_recertification
            else None
        )

        progress: Dict[str, UserProgress] = {
            p.module_id: p for p in await self.store.progress_for_user(user_id)
        }
        outstanding = [
            module_id for module_id in required
            if not _counts_as_passed(progress.get(module_id), fresh_since)
        ]
        if outstanding:
            logger.debug(
                "User %s has %d required module(s) outstanding",
                user_id, len(outstanding),
            )
            return None

        now = self.clock()
        if cert is None:
            cert = Certification(user_id=user_id)
        cert.status = CertificationStatus.ACTIVE
        cert.certified_at = now
        cert.expires_at = now + self.validity
        cert.requires_recertification = False
        cert.recertification_reason = None
        cert.recertification_requested_at = None

        saved = await self.store.save_certification(cert)
        logger.info(
            "Certification issued for %s, expires %s",
            user_id, saved.expires_at.date(),
            extra={"user_id": user_id},
        )
        return saved

    # ── Forced expiry ──

    async def on_incident_involvement(
        self, user_id: str, incident: Incident,
    ) -> Optional[Certification]:
        """
        Force the user's certification to EXPIRED for an alert-worthy incident.

        Returns the saved certification, or None when the incident doesn't
        qualify or the user holds no certification role. Store failures
        propagate.
        """
        if not is_alert_worthy(incident):
            return None

        user = await self.directory.get_user(user_id)
        if user is None:
            raise NotFoundError("User", id=user_id)
        if not user.is_staff:
            logger.info(
                "Reporter %s of incident %s is not staff; no certification to expire",
                user_id, incident.id,
            )
            return None

        now = self.clock()
        cert = await self.store.load_certification(user_id) or Certification(user_id=user_id)
        previous = derive_status(cert, now, expiring_soon=self.expiring_soon)

        cert.status = CertificationStatus.EXPIRED
        cert.requires_recertification = True
        cert.recertification_reason = recertification_reason(incident)
        cert.recertification_requested_at = now
        cert.related_incident_count += 1

        saved = await self.store.save_certification(cert)
        logger.warning(
            "Certification for %s force-expired (was %s) by incident %s; %d related incident(s)",
            user_id, previous.value, incident.id, saved.related_incident_count,
            extra={"user_id": user_id, "incident_id": incident.id},
        )
        return saved

    # ── Read path ──

    def derive_status(self, cert: Optional[Certification], now: Optional[datetime] = None) -> CertificationStatus:
        return derive_status(cert, now or self.clock(), expiring_soon=self.expiring_soon)

    async def current_view(self, user_id: str) -> CertificationView:
        """The user's certification with status decayed to the current time."""
        now = self.clock()
        cert = await self.store.load_certification(user_id)
        status = derive_status(cert, now, expiring_soon=self.expiring_soon)

        if cert is None:
            return CertificationView(user_id=user_id, status=status, as_of=now)

        days_remaining = None
        if cert.expires_at is not None and status != CertificationStatus.EXPIRED:
            days_remaining = max(0, (cert.expires_at - now).days)

        return CertificationView(
            user_id=user_id,
            status=status,
            as_of=now,
            certified_at=cert.certified_at,
            expires_at=cert.expires_at,
            days_remaining=days_remaining,
            requires_recertification=cert.requires_recertification,
            recertification_reason=cert.recertification_reason,
            related_incident_count=cert.related_incident_count,
        )


def _counts_as_passed(progress: Optional[UserProgress], fresh_since: Optional[datetime]) -> bool:
    if progress is None or not progress.passed:
        return False
    if fresh_since is None:
        return True
    return progress.passed_at is not None and progress.passed_at >= fresh_since
