import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from family_sync.config import Settings
from family_sync.context import AppContext
from family_sync.database.memory_store import InMemoryDocumentStore


class StepClock:
    """Deterministic server clock: every call is one second after the previous one."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        self.current = self.current + timedelta(seconds=1)
        return self.current


async def _settle(rounds: int = 25) -> None:
    """Let pending store operations and scheduled snapshot deliveries run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def make_settings(**overrides) -> Settings:
    values = {"STORE_BACKEND": "memory", "DEPLOYMENT_ID": "test-deployment", "MEMBER_APPEND_STRATEGY": "auto"}
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def test_settings():
    return make_settings()


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def store(clock):
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def context(test_settings, store):
    return AppContext(test_settings, store=store)


@pytest.fixture
def settle():
    return _settle


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def context_factory():
    """Build an isolated context (own store and clock) with setting overrides."""

    def _factory(**overrides) -> AppContext:
        return AppContext(make_settings(**overrides), store=InMemoryDocumentStore(clock=StepClock()))

    return _factory
