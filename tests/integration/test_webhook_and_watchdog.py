"""Webhook deliveries and stuck-sync recovery on a live engine."""

import json
import time

import pytest

from src.core.errors import ForbiddenError
from src.core.settings import EngineSettings
from src.engine.docs_engine import DocsEngine
from src.sync.models import SyncOperation, SyncStatus, SyncTrigger
from src.sync.webhook import sign_payload
from tests.helpers.builders import page_file
from tests.integration.conftest import WAIT_SECONDS, eventually

SECRET = "s3cret"


@pytest.fixture
def signed_config(live_engine):
    return live_engine.configure_sync("space-1", "memory://docs", webhook_secret=SECRET)


class TestWebhookDelivery:

    def test_push_event_pulls_pages(self, live_engine, repo, signed_config):
        sha = repo.commit({"docs/intro.md": page_file("Intro", "Welcome")})
        body = json.dumps(repo.push_payload([sha]))

        history_id = live_engine.handle_webhook(signed_config.id, body,
                                                sign_payload(SECRET, body))
        history = live_engine.wait_for_sync(history_id, timeout=WAIT_SECONDS)

        assert history.operation == SyncOperation.WEBHOOK
        assert history.triggered_by == SyncTrigger.WEBHOOK
        assert history.pages_created == 1
        assert live_engine.store.find_commit(signed_config.id, sha).sync_history_id == history_id

    def test_redelivery_returns_first_history(self, live_engine, repo, signed_config):
        sha = repo.commit({"docs/intro.md": page_file("Intro", "Welcome")})
        payload = repo.push_payload([sha])
        signature = sign_payload(SECRET, payload)
        first = live_engine.handle_webhook(signed_config.id, payload, signature)
        live_engine.wait_for_sync(first, timeout=WAIT_SECONDS)

        again = live_engine.handle_webhook(signed_config.id, payload, signature)

        assert again == first
        assert len(live_engine.list_sync_history(signed_config.id)) == 1

    def test_forged_delivery_rejected(self, live_engine, repo, signed_config):
        sha = repo.commit({"docs/intro.md": page_file("Intro", "Welcome")})
        payload = repo.push_payload([sha])

        with pytest.raises(ForbiddenError):
            live_engine.handle_webhook(signed_config.id, payload, sign_payload("guess", payload))
        with pytest.raises(ForbiddenError):
            live_engine.handle_webhook(signed_config.id, payload)

        assert live_engine.list_sync_history(signed_config.id) == []

    def test_other_branch_moves_head_only(self, live_engine, repo, signed_config):
        repo.create_branch("release")
        live_engine.add_branch(signed_config.id, "release")
        sha = repo.commit({"docs/intro.md": page_file("Intro", "Draft")}, branch="release")
        payload = repo.push_payload([sha], branch="release")

        history_id = live_engine.handle_webhook(signed_config.id, payload,
                                                sign_payload(SECRET, payload))

        history = live_engine.wait_for_sync(history_id, timeout=WAIT_SECONDS)
        assert history.metadata['ignored'] is True
        assert live_engine.store.find_branch(signed_config.id, "release").head_commit == sha
        assert live_engine.store.list_pages("space-1") == []


class TestStuckSyncRecovery:

    @pytest.fixture
    def stuck_engine(self, store, blocking_repo):
        settings = EngineSettings(retry_base_delay=0.0, watchdog_timeout_seconds=0.01,
                                  watchdog_interval_seconds=0.02)
        engine = DocsEngine(blocking_repo, store=store, settings=settings)
        yield engine
        blocking_repo.release.set()
        engine.close()

    def test_sweep_frees_the_binding(self, stuck_engine, blocking_repo):
        blocking_repo.commit({"docs/intro.md": page_file("Intro", "Welcome")})
        config = stuck_engine.configure_sync("space-1", "memory://docs")
        blocking_repo.block = True
        stuck_id = stuck_engine.trigger_sync(config.id, "pull")
        assert blocking_repo.entered.wait(WAIT_SECONDS)
        time.sleep(0.05)

        assert stuck_engine.sweep_stuck_syncs() == [stuck_id]
        stuck = stuck_engine.store.require_history(stuck_id)
        assert stuck.status == SyncStatus.ERROR
        assert stuck.errors[0].startswith("Sync timed out")

        blocking_repo.block = False
        retry = stuck_engine.wait_for_sync(stuck_engine.trigger_sync(config.id, "pull"),
                                           timeout=WAIT_SECONDS)
        blocking_repo.release.set()
        stuck_engine.wait_for_sync(stuck_id, timeout=WAIT_SECONDS)

        assert retry.status == SyncStatus.SUCCESS
        assert retry.pages_created == 1
        assert stuck_engine.store.require_history(stuck_id).status == SyncStatus.ERROR
        assert stuck_engine.get_sync_config(config.id).sync_status == SyncStatus.SUCCESS
        assert len(stuck_engine.store.list_pages("space-1")) == 1

    def test_watchdog_thread_sweeps(self, stuck_engine, blocking_repo):
        config = stuck_engine.configure_sync("space-1", "memory://docs")
        blocking_repo.block = True
        stuck_id = stuck_engine.trigger_sync(config.id, "pull")
        assert blocking_repo.entered.wait(WAIT_SECONDS)

        stuck_engine.start_watchdog()

        assert eventually(
            lambda: stuck_engine.get_sync_config(config.id).sync_status == SyncStatus.ERROR
        )
        assert stuck_engine.store.require_history(stuck_id).is_completed
