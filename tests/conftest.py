"""Root pytest configuration for all tests.

Provides an engine wired to an in-memory repository, an executor that runs
syncs synchronously and a clock that ticks on every call, so sync timestamps
are strictly ordered.
"""

import pytest

from src.core.settings import EngineSettings
from src.engine.docs_engine import DocsEngine
from src.storage.store import ContentStore
from tests.helpers.executors import ImmediateExecutor, TickingClock
from tests.helpers.fake_repository import InMemoryRepository

SPACE = "space-1"


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def settings():
    return EngineSettings(retry_base_delay=0.0)


@pytest.fixture
def store():
    return ContentStore()


@pytest.fixture
def engine(repo, store, settings, clock):
    docs = DocsEngine(repo, store=store, settings=settings,
                      executor=ImmediateExecutor(), clock=clock)
    yield docs
    docs.close()


@pytest.fixture
def config(engine):
    """Space 'space-1' bound to the in-memory repository (root 'docs', branch 'main')."""
    return engine.configure_sync(SPACE, "memory://docs")
