"""Shared fixtures for message-simulator tests.

Repository-level tests run against MemoryStorage and ManualScheduler:
no disk, no clock. Debounced saves only happen when a test drains the
scheduler (or calls repo.flush()).
"""

from __future__ import annotations

import pytest

from message_simulator.last_active import LastActivePointer
from message_simulator.navigation import HistoryNavigation
from message_simulator.reconciler import Reconciler
from message_simulator.repository import ThreadRepository
from message_simulator.scheduler import ManualScheduler
from message_simulator.storage import MemoryStorage


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage(quota_bytes=None)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def repo(storage, scheduler) -> ThreadRepository:
    """A loaded repository holding one seeded thread."""
    repository = ThreadRepository(storage, scheduler=scheduler)
    repository.load()
    return repository


@pytest.fixture
def navigation() -> HistoryNavigation:
    return HistoryNavigation("http://localhost:3000/")


@pytest.fixture
def pointer(storage) -> LastActivePointer:
    return LastActivePointer(storage)


@pytest.fixture
def reconciler(repo, navigation, pointer) -> Reconciler:
    return Reconciler(repo, navigation, pointer)


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path, monkeypatch):
    """Never touch the real ~/.message-simulator."""
    monkeypatch.setenv("MSGSIM_HOME", str(tmp_path / "home"))
