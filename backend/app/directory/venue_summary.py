"""
venue_summary.py — Compliance snapshot for one venue.

    {
        "venue":   {...},
        "metrics": {
            "total_staff", "certified_staff", "expiring_certifications",
            "critical_alerts", "recent_incidents"
        },
        "staff":            first five staff with their certification view,
        "recent_incidents": up to ten, newest first,
        "alerts":           active alerts covering the venue, newest first,
    }

Certification status is derived at read time, so ``certified_staff``
counts views whose derived status is ACTIVE (an EXPIRING_SOON member is
counted under ``expiring_certifications`` instead).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from backend.app.alerts.alert_feed import AlertFeed
from backend.app.alerts.models import AlertSeverity
from backend.app.certification.engine import CertificationEngine
from backend.app.certification.models import CertificationStatus
from backend.app.core.errors import NotFoundError
from backend.app.storage.base import Directory, Store

logger = logging.getLogger(__name__)

RECENT_INCIDENT_LIMIT = 10
STAFF_PREVIEW_SIZE = 5


class VenueSummaryService:

    def __init__(
        self,
        store: Store,
        directory: Directory,
        engine: CertificationEngine,
        feed: AlertFeed,
    ) -> None:
        self.store = store
        self.directory = directory
        self.engine = engine
        self.feed = feed

    async def summary(self, venue_id: str) -> Dict[str, Any]:
        venue = await self.directory.get_venue(venue_id)
        if venue is None:
            raise NotFoundError("Venue", id=venue_id)

        staff = await self.directory.staff_for_venue(venue_id)
        views = await asyncio.gather(*(self.engine.current_view(u.id) for u in staff))
        incidents = await self.store.incidents_for_venue(venue_id, limit=RECENT_INCIDENT_LIMIT)
        alerts = await self.feed.alerts_for_venue(venue_id)

        statuses = [v.status for v in views]
        metrics = {
            "total_staff": len(staff),
            "certified_staff": statuses.count(CertificationStatus.ACTIVE),
            "expiring_certifications": statuses.count(CertificationStatus.EXPIRING_SOON),
            "critical_alerts": sum(
                1 for a in alerts if a.severity == AlertSeverity.CRITICAL
            ),
            "recent_incidents": len(incidents),
        }
        logger.debug("Venue %s summary: %s", venue_id, metrics)

        return {
            "venue": venue.to_dict(),
            "metrics": metrics,
            "staff": [
                {"user": user.to_dict(), "certification": view.to_dict()}
                for user, view in list(zip(staff, views))[:STAFF_PREVIEW_SIZE]
            ],
            "recent_incidents": [i.to_dict() for i in incidents],
            "alerts": [a.to_dict() for a in alerts],
        }
