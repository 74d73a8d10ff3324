"""Pytest configuration: project root on sys.path, fake clock, one repo fixture per backend."""
from __future__ import annotations

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from nexachat.core.single_flight import reset_guards  # noqa: E402
from nexachat.db.database import SqliteRepository  # noqa: E402
from nexachat.db.memory import MemoryRepository  # noqa: E402


class FakeClock:
    """Manually advanced clock. Call for a datetime, .time() for epoch seconds."""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def time(self) -> float:
        return self.now.timestamp()

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _isolate_guards():
    reset_guards()
    yield
    reset_guards()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path, clock):
    if request.param == "memory":
        return MemoryRepository(clock=clock)
    return SqliteRepository(str(tmp_path / "chat.db"), clock=clock)


@pytest.fixture
def alice(repo):
    return repo.create_user("alice")


@pytest.fixture
def bob(repo):
    return repo.create_user("bob")
