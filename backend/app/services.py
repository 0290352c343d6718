"""
services.py — Composition root.

Wires the compliance core together from Settings plus a Store, a
Directory and a PushTransport:

    SubscriptionRegistry ─┐
    PushTransport ────────┼─▶ AlertDispatcher ─┐
    CertificationEngine ──┼────────────────────┼─▶ IncidentPipeline
                          └─▶ TrainingService  │
    AlertFeed ─────────────▶ VenueSummaryService

Nothing here touches globals; main.py builds one ComplianceServices per
application and tests build their own around in-memory stores.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from backend.app.alerts.alert_feed import AlertFeed
from backend.app.alerts.channels.web_push import PushTransport, build_transport
from backend.app.alerts.dispatcher import AlertDispatcher
from backend.app.alerts.subscriptions import SubscriptionRegistry
from backend.app.certification.engine import CertificationEngine
from backend.app.certification.training_service import TrainingService
from backend.app.core.config import Settings
from backend.app.directory.venue_summary import VenueSummaryService
from backend.app.incidents.pipeline import IncidentPipeline
from backend.app.storage.base import Directory, Store


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ComplianceServices:
    settings: Settings
    store: Store
    directory: Directory
    transport: PushTransport
    registry: SubscriptionRegistry
    engine: CertificationEngine
    training: TrainingService
    dispatcher: AlertDispatcher
    feed: AlertFeed
    pipeline: IncidentPipeline
    venues: VenueSummaryService


def build_services(
    settings: Settings,
    store: Store,
    directory: Directory,
    transport: Optional[PushTransport] = None,
    *,
    clock: Callable[[], datetime] = _utcnow,
) -> ComplianceServices:
    transport = transport or build_transport(settings)
    registry = SubscriptionRegistry(store)

    engine = CertificationEngine(
        store,
        directory,
        validity=timedelta(days=settings.CERTIFICATION_VALIDITY_DAYS),
        expiring_soon=timedelta(days=settings.EXPIRING_SOON_DAYS),
        clock=clock,
    )
    training = TrainingService(
        store, directory, engine, pass_threshold=settings.QUIZ_PASS_THRESHOLD,
    )
    dispatcher = AlertDispatcher(
        store,
        directory,
        registry,
        transport,
        default_radius_miles=settings.DEFAULT_ALERT_RADIUS_MILES,
        delivery_timeout_seconds=settings.PUSH_TIMEOUT_SECONDS,
        max_concurrent_deliveries=settings.PUSH_MAX_CONCURRENCY,
    )
    pipeline = IncidentPipeline(
        store,
        directory,
        engine,
        dispatcher,
        dispatch_in_background=settings.DISPATCH_IN_BACKGROUND,
        clock=clock,
    )
    feed = AlertFeed(store, directory)

    return ComplianceServices(
        settings=settings,
        store=store,
        directory=directory,
        transport=transport,
        registry=registry,
        engine=engine,
        training=training,
        dispatcher=dispatcher,
        feed=feed,
        pipeline=pipeline,
        venues=VenueSummaryService(store, directory, engine, feed),
    )
