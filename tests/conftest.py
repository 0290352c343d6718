"""
Shared fixtures: a fixed clock and a small in-memory world.

World layout (decimal degrees, miles):

    venue-a    (40.00, -74.0)   radius 5   manager mgr-a, staff staff-1/staff-2
    venue-b    (40.01, -74.0)   radius 5   manager mgr-b     ~0.69 mi from venue-a
    venue-far  (41.00, -74.0)   radius 5   manager mgr-far   ~69 mi from venue-a

Four required training modules, five questions each; the correct answer
to every question is "A".
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List

import pytest

from backend.app.alerts.channels.web_push import SimulatedPushTransport
from backend.app.certification.models import QuizQuestion, TrainingModule
from backend.app.core.config import Settings
from backend.app.directory.models import User, UserRole, Venue
from backend.app.services import ComplianceServices, build_services
from backend.app.spatial.geo_index import Coordinate
from backend.app.storage.memory import InMemoryDirectory, InMemoryStore

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

VENUE_A = Coordinate(40.0, -74.0)
VENUE_B = Coordinate(40.01, -74.0)
VENUE_FAR = Coordinate(41.0, -74.0)

MODULE_IDS = ["mod-1", "mod-2", "mod-3", "mod-4"]
QUESTIONS_PER_MODULE = 5


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_modules() -> List[TrainingModule]:
    return [
        TrainingModule(id=mid, title=f"Module {i + 1}", order_index=i)
        for i, mid in enumerate(MODULE_IDS)
    ]


def make_questions(module_id: str, count: int = QUESTIONS_PER_MODULE) -> List[QuizQuestion]:
    return [
        QuizQuestion(
            id=f"{module_id}-q{n}",
            module_id=module_id,
            question_text=f"Question {n}?",
            correct_answer="A",
            order_index=n,
            options=("A", "B", "C", "D"),
        )
        for n in range(count)
    ]


def answers_for(module_id: str, correct: int, total: int = QUESTIONS_PER_MODULE) -> Dict[str, str]:
    """Answer sheet with exactly ``correct`` right answers."""
    return {
        f"{module_id}-q{n}": ("A" if n < correct else "B")
        for n in range(total)
    }


def make_settings(**overrides) -> Settings:
    values = dict(
        ENVIRONMENT="test",
        DISPATCH_IN_BACKGROUND=False,
        VAPID_PUBLIC_KEY=None,
        VAPID_PRIVATE_KEY=None,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@dataclass
class World:
    clock: FixedClock
    store: InMemoryStore
    directory: InMemoryDirectory
    transport: SimulatedPushTransport
    services: ComplianceServices

    def run(self, coro):
        return asyncio.run(coro)


def build_world(clock: FixedClock = None, **settings_overrides) -> World:
    clock = clock or FixedClock()
    directory = InMemoryDirectory(
        venues=[
            Venue("venue-a", "Alpha Bar", VENUE_A),
            Venue("venue-b", "Bravo Lounge", VENUE_B),
            Venue("venue-far", "Faraway Tavern", VENUE_FAR),
        ],
        users=[
            User("mgr-a", UserRole.MANAGER, venue_id="venue-a", name="Manager A"),
            User("mgr-b", UserRole.MANAGER, venue_id="venue-b", name="Manager B"),
            User("mgr-far", UserRole.MANAGER, venue_id="venue-far", name="Manager Far"),
            User("staff-1", UserRole.STAFF, venue_id="venue-a", name="Staff One"),
            User("staff-2", UserRole.STAFF, venue_id="venue-a", name="Staff Two"),
        ],
    )
    store = InMemoryStore()
    for module in make_modules():
        store.add_module(module, make_questions(module.id))

    transport = SimulatedPushTransport(public_key="test-vapid-public-key")
    services = build_services(
        make_settings(**settings_overrides), store, directory, transport, clock=clock,
    )
    return World(clock, store, directory, transport, services)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def world(clock) -> World:
    return build_world(clock)
