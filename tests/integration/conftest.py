"""Pytest configuration and fixtures for integration tests.

Engines here run syncs on their own worker threads, so tests wait for
results with wait_for_sync() or eventually().
"""

import shutil
import subprocess
import threading
import time

import pytest

from src.core.settings import EngineSettings
from src.engine.docs_engine import DocsEngine
from src.repository.git_repository import LocalGitRepository
from tests.helpers.fake_repository import InMemoryRepository

WAIT_SECONDS = 5.0


class BlockingRepository(InMemoryRepository):
    """InMemoryRepository whose fetch_commits can be held until released.

    While block is set, fetch_commits signals entered and waits for release,
    simulating a sync stuck on a slow remote.
    """

    def __init__(self):
        super().__init__()
        self.block = False
        self.entered = threading.Event()
        self.release = threading.Event()

    def fetch_commits(self, since, branch):
        if self.block:
            self.entered.set()
            self.release.wait(WAIT_SECONDS)
        return super().fetch_commits(since, branch)


def eventually(predicate, timeout: float = WAIT_SECONDS, interval: float = 0.01) -> bool:
    """Poll predicate until it returns True or timeout passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def live_settings():
    return EngineSettings(retry_base_delay=0.0)


@pytest.fixture
def live_engine(repo, store, live_settings):
    """Engine on the in-memory repository with a real worker pool."""
    engine = DocsEngine(repo, store=store, settings=live_settings)
    yield engine
    engine.close()


@pytest.fixture
def live_config(live_engine):
    return live_engine.configure_sync("space-1", "memory://docs")


@pytest.fixture
def blocking_repo():
    repo = BlockingRepository()
    yield repo
    repo.release.set()


@pytest.fixture
def git_repo(tmp_path):
    """Bare git repository with HEAD parked off the synced branch."""
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    path = tmp_path / "site.git"
    subprocess.run(["git", "init", "--bare", "--quiet", str(path)], check=True)
    subprocess.run(["git", "symbolic-ref", "HEAD", "refs/heads/unused"], cwd=path, check=True)
    return LocalGitRepository(str(path), author_name="Docs Bot", author_email="bot@example.com")
