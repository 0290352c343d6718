"""
alert_feed.py — What a venue sees, and archiving.

A venue's feed is every active alert whose location lies within
``venue radius + alert radius`` of the venue, the same summed-radius
rule used to pick dispatch recipients, so a manager's feed always
contains the alerts they were notified about.
"""

from __future__ import annotations

import logging
from typing import List

from backend.app.alerts.models import Alert
from backend.app.core.errors import NotFoundError
from backend.app.spatial.geo_index import RangeCandidate, within_range
from backend.app.storage.base import Directory, Store

logger = logging.getLogger(__name__)


class AlertFeed:

    def __init__(self, store: Store, directory: Directory) -> None:
        self.store = store
        self.directory = directory

    async def get(self, alert_id: str) -> Alert:
        alert = await self.store.load_alert(alert_id)
        if alert is None:
            raise NotFoundError("Alert", id=alert_id)
        return alert

    async def alerts_for_venue(self, venue_id: str) -> List[Alert]:
        """Active alerts covering the venue, newest first."""
        venue = await self.directory.get_venue(venue_id)
        if venue is None:
            raise NotFoundError("Venue", id=venue_id)

        alerts = {a.id: a for a in await self.store.active_alerts()}
        # Each alert is a candidate carrying its own radius; the venue is the center
        candidates = [
            RangeCandidate(a.id, a.location, a.radius_miles) for a in alerts.values()
        ]
        in_range = within_range(venue.location, venue.alert_radius_miles, candidates)

        matched = [alerts[alert_id] for alert_id in in_range]
        matched.sort(key=lambda a: a.published_at, reverse=True)
        return matched

    async def archive(self, alert_id: str) -> Alert:
        """Set ``is_active=False``. Archiving twice is harmless."""
        alert = await self.get(alert_id)
        if alert.is_active:
            alert.is_active = False
            alert = await self.store.update_alert(alert)
            logger.info("Alert %s archived", alert_id, extra={"alert_id": alert_id})
        return alert
