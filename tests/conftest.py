"""Shared fixtures."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from memhub.memory import KnowledgeManager, KnowledgeStore


class FakeClock:
    """Controllable clock for lifecycle tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, days: float = 0, hours: float = 0) -> None:
        self.current += timedelta(days=days, hours=hours)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path, clock: FakeClock) -> KnowledgeStore:
    """Create a KnowledgeStore with a temporary database."""
    store = KnowledgeStore(tmp_path / "test_memory.db", clock=clock)
    store.init_db()
    return store


@pytest.fixture
def manager(store: KnowledgeStore) -> KnowledgeManager:
    """Create a KnowledgeManager around the temporary store."""
    manager = KnowledgeManager(store)
    yield manager
    manager.close()
