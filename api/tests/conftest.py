from __future__ import annotations

import os

os.environ.setdefault("QB_OTEL_ENABLED", "false")
os.environ.setdefault("QB_STORAGE_BACKEND", "memory")

from collections.abc import Iterable
from datetime import datetime, timedelta, timezone

import pytest

from quotebridge.services.engine import LifecycleService
from quotebridge.services.records import ContractorPreferenceRecord, NotificationRequest
from quotebridge.services.store import InMemoryRepository

BASE_TIME = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class RecordingDispatcher:
    def __init__(self) -> None:
        self.sent: list[NotificationRequest] = []

    def dispatch(self, requests: Iterable[NotificationRequest]) -> int:
        batch = list(requests)
        self.sent.extend(batch)
        return len(batch)

    async def drain(self) -> None:
        return None

    def kinds(self) -> list[str]:
        return [request.event_kind for request in self.sent]

    def of_kind(self, event_kind: str) -> list[NotificationRequest]:
        return [request for request in self.sent if request.event_kind == event_kind]


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def seed_contractors(repository: InMemoryRepository) -> None:
    for preferences in (
        ContractorPreferenceRecord(
            contractor_id="contractor-a",
            service_counties=frozenset({"Dublin"}),
            specialty="domestic",
            email="a@assessors.ie",
        ),
        ContractorPreferenceRecord(
            contractor_id="contractor-b",
            service_counties=frozenset({"Dublin", "Wicklow"}),
            specialty="both",
            email="b@assessors.ie",
        ),
        ContractorPreferenceRecord(
            contractor_id="contractor-cork",
            service_counties=frozenset({"Cork"}),
            specialty="domestic",
        ),
        ContractorPreferenceRecord(
            contractor_id="contractor-retired",
            service_counties=frozenset(),
            specialty="both",
            is_active=False,
        ),
    ):
        repository.put_contractor_preferences(preferences)


@pytest.fixture
def clock() -> Clock:
    return Clock(BASE_TIME)


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def repository() -> InMemoryRepository:
    repo = InMemoryRepository()
    seed_contractors(repo)
    return repo


@pytest.fixture
def service(repository: InMemoryRepository, dispatcher: RecordingDispatcher, clock: Clock) -> LifecycleService:
    return LifecycleService(repository, dispatcher, clock=clock, sweep_default_batch_size=50)
