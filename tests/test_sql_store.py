"""
test_sql_store.py — SqlStore / SqlDirectory against in-memory SQLite.

Each test runs inside a single event loop: the engine is created, the
tables built, the scenario run and the engine disposed.

Run with:
    pytest tests/test_sql_store.py -v
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from backend.app.alerts.channels.web_push import SimulatedPushTransport
from backend.app.alerts.models import Alert, PushSubscription, SubscriptionKeys
from backend.app.certification.catalogue import MODULES, questions_for, seed_catalogue
from backend.app.certification.models import CertificationStatus
from backend.app.core.database import build_session_factory, close_db, init_db
from backend.app.core.errors import StateInvariantViolation
from backend.app.directory.models import User, UserRole, Venue
from backend.app.incidents.models import Incident, IncidentCategory, VerificationStatus
from backend.app.services import build_services
from backend.app.spatial.geo_index import Coordinate
from backend.app.storage.sql import SqlDirectory, SqlStore

from conftest import (
    MODULE_IDS,
    T0,
    VENUE_A,
    VENUE_B,
    VENUE_FAR,
    FixedClock,
    answers_for,
    make_modules,
    make_questions,
    make_settings,
)


async def _seed(store: SqlStore, directory: SqlDirectory, with_modules: bool = True) -> None:
    for venue in (
        Venue("venue-a", "Alpha Bar", VENUE_A),
        Venue("venue-b", "Bravo Lounge", VENUE_B),
        Venue("venue-far", "Faraway Tavern", VENUE_FAR),
    ):
        await directory.add_venue(venue)
    for user in (
        User("mgr-a", UserRole.MANAGER, venue_id="venue-a", name="Manager A"),
        User("mgr-b", UserRole.MANAGER, venue_id="venue-b", name="Manager B"),
        User("mgr-far", UserRole.MANAGER, venue_id="venue-far", name="Manager Far"),
        User("mgr-none", UserRole.MANAGER, name="Manager Without Venue"),
        User("staff-2", UserRole.STAFF, venue_id="venue-a", name="Staff Two"),
        User("staff-1", UserRole.STAFF, venue_id="venue-a", name="Staff One"),
    ):
        await directory.add_user(user)
    if not with_modules:
        return
    for module in make_modules():
        await store.save_module(module, make_questions(module.id))


def run_sql(scenario, with_modules: bool = True):
    """Run ``scenario(store, directory)`` against a fresh seeded database."""

    async def main():
        engine = create_async_engine(
            "sqlite+aiosqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        try:
            await init_db(engine)
            sessions = build_session_factory(engine)
            store, directory = SqlStore(sessions), SqlDirectory(sessions)
            await _seed(store, directory, with_modules)
            return await scenario(store, directory)
        finally:
            await close_db(engine)

    return asyncio.run(main())


def _incident(**overrides) -> Incident:
    values = dict(
        category=IncidentCategory.OPERATIONAL_INCIDENT,
        reporter_id="staff-1",
        location=Coordinate(40.0, -74.0),
        incident_timestamp=T0,
        venue_id="venue-a",
        description="Fight in the parking lot",
        photo_urls=["https://cdn.example/1.jpg"],
        reported_at=T0,
    )
    values.update(overrides)
    return Incident(**values)


class TestDirectory:

    def test_managers_with_venue_skips_venueless(self):
        async def scenario(store, directory):
            return await directory.managers_with_venue()

        managers = run_sql(scenario)
        assert sorted(m.user_id for m in managers) == ["mgr-a", "mgr-b", "mgr-far"]
        far = next(m for m in managers if m.user_id == "mgr-far")
        assert far.venue_location == VENUE_FAR
        assert far.venue_radius_miles == 5.0

    def test_staff_for_venue_sorted_by_name(self):
        async def scenario(store, directory):
            return await directory.staff_for_venue("venue-a")

        assert [u.id for u in run_sql(scenario)] == ["staff-1", "staff-2"]

    def test_lookups(self):
        async def scenario(store, directory):
            return (
                await directory.get_user("mgr-a"),
                await directory.get_user("ghost"),
                await directory.get_venue("venue-b"),
            )

        user, missing, venue = run_sql(scenario)
        assert user.role == UserRole.MANAGER
        assert missing is None
        assert venue.location == VENUE_B

    def test_unset_venue_radius_uses_directory_default(self):
        async def scenario(store, directory):
            await directory.add_venue(Venue("venue-x", "Explicit Radius", VENUE_B, 2.5))
            wide = SqlDirectory(directory.sessions, default_venue_radius_miles=70.0)
            managers = {m.user_id: m for m in await wide.managers_with_venue()}
            return managers, await wide.get_venue("venue-a"), await wide.get_venue("venue-x")

        managers, unset, explicit = run_sql(scenario)
        assert managers["mgr-far"].venue_radius_miles == 70.0
        assert unset.alert_radius_miles == 70.0
        assert explicit.alert_radius_miles == 2.5


class TestIncidentsAndAlerts:

    def test_incident_round_trip_is_utc_aware(self):
        async def scenario(store, directory):
            saved = await store.save_incident(_incident())
            return saved, await store.load_incident(saved.id)

        saved, loaded = run_sql(scenario)
        assert loaded.incident_timestamp == T0
        assert loaded.incident_timestamp.tzinfo is not None
        assert loaded.photo_urls == saved.photo_urls
        assert loaded.category == IncidentCategory.OPERATIONAL_INCIDENT

    def test_incidents_for_venue_newest_first(self):
        async def scenario(store, directory):
            for n in range(4):
                await store.save_incident(_incident(
                    description=f"Incident {n}", reported_at=T0 + timedelta(minutes=n),
                ))
            await store.save_incident(_incident(venue_id="venue-b"))
            return await store.incidents_for_venue("venue-a", limit=3)

        incidents = run_sql(scenario)
        assert [i.description for i in incidents] == ["Incident 3", "Incident 2", "Incident 1"]

    def test_second_alert_for_incident_rejected(self):
        async def scenario(store, directory):
            first = Alert(incident_id="inc-1", location=VENUE_A, title="t", message="m")
            await store.save_alert(first)
            with pytest.raises(StateInvariantViolation):
                await store.save_alert(
                    Alert(incident_id="inc-1", location=VENUE_A, title="t", message="m"),
                )
            return first, await store.load_alert_by_incident("inc-1")

        first, loaded = run_sql(scenario)
        assert loaded.id == first.id

    def test_archive_via_update(self):
        async def scenario(store, directory):
            alert = await store.save_alert(
                Alert(incident_id="inc-1", location=VENUE_A, title="t", message="m"),
            )
            alert.is_active = False
            await store.update_alert(alert)
            return await store.load_alert(alert.id), await store.active_alerts()

        loaded, active = run_sql(scenario)
        assert loaded.is_active is False
        assert active == []


class TestSubscriptions:

    def _sub(self, user_id="mgr-a", p256dh="BPk3-public") -> PushSubscription:
        return PushSubscription(
            user_id=user_id,
            endpoint="https://push.example/device",
            keys=SubscriptionKeys(p256dh, "secret-auth"),
        )

    def test_upsert_keeps_row_identity(self):
        async def scenario(store, directory):
            first = await store.upsert_subscription(self._sub())
            second = await store.upsert_subscription(self._sub(user_id="mgr-b", p256dh="rotated"))
            return first, second, await store.load_subscription("https://push.example/device")

        first, second, loaded = run_sql(scenario)
        assert second.id == first.id
        assert loaded.user_id == "mgr-b"
        assert loaded.keys.p256dh == "rotated"

    def test_deactivate(self):
        async def scenario(store, directory):
            await store.upsert_subscription(self._sub())
            gone = await store.deactivate_subscription("https://push.example/device")
            again = await store.deactivate_subscription("https://push.example/device")
            missing = await store.deactivate_subscription("https://push.example/unknown")
            return gone, again, missing, await store.active_subscriptions("mgr-a")

        gone, again, missing, active = run_sql(scenario)
        assert gone.is_active is False
        assert again.is_active is False
        assert missing is None
        assert active == []


class TestFullStack:
    """The whole compliance flow on the SQL store."""

    def test_certify_then_sting(self):
        clock = FixedClock()

        async def scenario(store, directory):
            transport = SimulatedPushTransport()
            services = build_services(make_settings(), store, directory, transport, clock=clock)
            await services.registry.register(
                "mgr-b", "https://push.example/b", {"p256dh": "BPk3", "auth": "auth"},
            )
            for module_id in MODULE_IDS:
                await services.training.submit_quiz_attempt(
                    "staff-1", module_id, answers_for(module_id, 5),
                )
            certified = await services.engine.current_view("staff-1")

            outcome = await services.pipeline.submit({
                "category": "regulatory_sting",
                "reporter_id": "staff-1",
                "latitude": 40.0,
                "longitude": -74.0,
                "incident_timestamp": T0.isoformat(),
                "description": "Minor served during sting",
                "verification_status": VerificationStatus.VALIDATED.value,
            })
            after = await services.engine.current_view("staff-1")
            summary = await services.venues.summary("venue-a")
            return certified, outcome, after, summary, transport

        certified, outcome, after, summary, transport = run_sql(scenario)
        assert certified.status == CertificationStatus.ACTIVE
        assert outcome.dispatch.alert_created
        assert outcome.dispatch.manager_count == 2
        assert [e for e, _ in transport.sent] == ["https://push.example/b"]
        assert after.status == CertificationStatus.EXPIRED
        assert after.related_incident_count == 1
        assert summary["metrics"]["critical_alerts"] == 1
        assert summary["metrics"]["certified_staff"] == 0


class TestCatalogueSeeding:

    def test_seeds_empty_database(self):
        async def scenario(store, directory):
            created = await seed_catalogue(store)
            again = await seed_catalogue(store)
            modules = await store.list_modules()
            questions = await store.questions_for_module(MODULES[0].id)
            return created, again, modules, questions

        created, again, modules, questions = run_sql(scenario, with_modules=False)
        assert created == 4
        assert again == 0
        assert [m.id for m in modules] == [m.id for m in MODULES]
        assert all(m.is_required for m in modules)
        assert [q.id for q in questions] == [q.id for q in questions_for(MODULES[0].id)]
        assert questions[0].correct_answer in questions[0].options

    def test_seeded_catalogue_allows_certification(self):
        clock = FixedClock()

        async def scenario(store, directory):
            await seed_catalogue(store)
            services = build_services(
                make_settings(), store, directory, SimulatedPushTransport(), clock=clock,
            )
            for module in MODULES:
                answers = {q.id: q.correct_answer for q in questions_for(module.id)}
                await services.training.submit_quiz_attempt("staff-1", module.id, answers)
            return await services.engine.current_view("staff-1")

        view = run_sql(scenario, with_modules=False)
        assert view.status == CertificationStatus.ACTIVE
        assert view.expires_at == clock.now + timedelta(days=365)
