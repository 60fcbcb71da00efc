"""Unit tests for sync.sync_engine module."""

import pytest

from src.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    SyncInProgressError,
    ValidationError,
)
from src.engine.docs_engine import DocsEngine
from src.sync.models import SyncOperation, SyncStatus, SyncTrigger
from src.sync.webhook import sign_payload
from tests.helpers.builders import page_file
from tests.helpers.executors import DeferredExecutor


@pytest.fixture
def deferred():
    return DeferredExecutor()


@pytest.fixture
def slow_engine(repo, store, settings, clock, deferred):
    """Engine whose syncs stay 'syncing' until deferred.run_pending()."""
    docs = DocsEngine(repo, store=store, settings=settings, executor=deferred, clock=clock)
    yield docs
    docs.close()


class TestConfigure:

    def test_creates_config_and_default_branch(self, engine):
        config = engine.configure_sync("space-1", "memory://docs", root_path="./content/")

        assert config.root_path == "content"
        assert config.sync_status == SyncStatus.IDLE
        branch = engine.store.find_branch(config.id, "main")
        assert branch.is_default

    def test_reconfigure_keeps_identity(self, engine, config):
        updated = engine.configure_sync("space-1", "memory://other", default_branch="trunk",
                                        exclude_patterns=["drafts/*"])

        assert updated.id == config.id
        assert updated.repository_url == "memory://other"
        assert updated.exclude_patterns == ["drafts/*"]
        assert [b.name for b in engine.list_branches(config.id) if b.is_default] == ["trunk"]

    @pytest.mark.parametrize("kwargs", [
        {'repository_url': ' '},
        {'default_branch': ''},
        {'commit_message_template': 'no placeholder'},
        {'root_path': '../outside'},
    ])
    def test_validation(self, engine, kwargs):
        arguments = dict(space_id="space-1", repository_url="memory://docs")
        arguments.update(kwargs)
        with pytest.raises(ValidationError):
            engine.configure_sync(**arguments)
        assert engine.store.config_for_space("space-1") is None


class TestBranches:

    def test_add_branch(self, engine, config):
        branch = engine.add_branch(config.id, "feature", head_commit="abc")
        assert not branch.is_default
        assert engine.store.find_branch(config.id, "feature").head_commit == "abc"

    def test_duplicate_branch(self, engine, config):
        with pytest.raises(ConflictError):
            engine.add_branch(config.id, "main")

    def test_new_default_branch(self, engine, config):
        engine.add_branch(config.id, "release", is_default=True)

        assert engine.get_sync_config(config.id).default_branch == "release"
        assert not engine.store.find_branch(config.id, "main").is_default


class TestTrigger:

    def test_unknown_direction(self, engine, config):
        with pytest.raises(ValidationError):
            engine.trigger_sync(config.id, "sideways")

    def test_unknown_config(self, engine):
        with pytest.raises(NotFoundError):
            engine.trigger_sync("missing", "pull")

    def test_operation_kind(self, engine, repo, config):
        repo.commit({"docs/intro.md": page_file("Intro")})
        first = engine.wait_for_sync(engine.trigger_sync(config.id, "pull"))
        second = engine.wait_for_sync(engine.trigger_sync(config.id, "pull"))

        assert first.operation == SyncOperation.FULL_SYNC
        assert second.operation == SyncOperation.INCREMENTAL
        assert first.duration_ms is not None
        assert [h.id for h in engine.list_sync_history(config.id)] == [first.id, second.id]

    def test_single_flight(self, slow_engine, deferred):
        config = slow_engine.configure_sync("space-1", "memory://docs")
        history_id = slow_engine.trigger_sync(config.id, "pull")

        assert slow_engine.get_sync_config(config.id).sync_status == SyncStatus.SYNCING
        with pytest.raises(SyncInProgressError) as exc_info:
            slow_engine.trigger_sync(config.id, "push")
        assert exc_info.value.sync_id == history_id
        with pytest.raises(SyncInProgressError):
            slow_engine.configure_sync("space-1", "memory://other")

        assert deferred.run_pending() == 1
        assert slow_engine.wait_for_sync(history_id).status == SyncStatus.SUCCESS
        assert slow_engine.trigger_sync(config.id, "push") != history_id


class TestSweepStuckSyncs:

    def test_times_out_stuck_sync(self, slow_engine, deferred, repo, clock):
        config = slow_engine.configure_sync("space-1", "memory://docs")
        repo.commit({"docs/intro.md": page_file("Intro")})
        history_id = slow_engine.trigger_sync(config.id, "pull")
        clock.advance(901)

        assert slow_engine.sweep_stuck_syncs() == [history_id]

        history = slow_engine.store.require_history(history_id)
        assert history.status == SyncStatus.ERROR
        assert "timed out" in history.errors[0]
        stored = slow_engine.get_sync_config(config.id)
        assert stored.sync_status == SyncStatus.ERROR
        assert stored.current_sync_id is None

    def test_late_worker_result_discarded(self, slow_engine, deferred, repo, clock):
        config = slow_engine.configure_sync("space-1", "memory://docs")
        repo.commit({"docs/intro.md": page_file("Intro")})
        history_id = slow_engine.trigger_sync(config.id, "pull")
        clock.advance(901)
        slow_engine.sweep_stuck_syncs()

        deferred.run_ignoring_cancel()

        assert slow_engine.wait_for_sync(history_id).status == SyncStatus.ERROR
        assert slow_engine.store.list_pages("space-1") == []
        assert slow_engine.get_sync_config(config.id).last_sync_commit is None

    def test_recent_sync_left_alone(self, slow_engine, deferred, clock):
        config = slow_engine.configure_sync("space-1", "memory://docs")
        slow_engine.trigger_sync(config.id, "pull")
        clock.advance(100)

        assert slow_engine.sweep_stuck_syncs() == []
        assert slow_engine.get_sync_config(config.id).sync_status == SyncStatus.SYNCING

    def test_new_trigger_after_sweep(self, slow_engine, deferred, clock):
        config = slow_engine.configure_sync("space-1", "memory://docs")
        stuck = slow_engine.trigger_sync(config.id, "pull")
        clock.advance(901)
        slow_engine.sweep_stuck_syncs()

        fresh = slow_engine.trigger_sync(config.id, "pull")
        deferred.run_pending()

        assert fresh != stuck
        assert slow_engine.wait_for_sync(fresh).status == SyncStatus.SUCCESS


class TestHandleWebhook:

    def test_push_to_default_branch_pulls(self, engine, repo, config):
        sha = repo.commit({"docs/intro.md": page_file("Intro", "Hello")})

        history = engine.wait_for_sync(engine.handle_webhook(config.id, repo.push_payload([sha])))

        assert history.operation == SyncOperation.WEBHOOK
        assert history.triggered_by == SyncTrigger.WEBHOOK
        assert history.pages_created == 1
        assert history.metadata['after'] == sha

    def test_redelivery_returns_recorded_history(self, engine, repo, config):
        sha = repo.commit({"docs/intro.md": page_file("Intro", "Hello")})
        payload = repo.push_payload([sha])
        first = engine.handle_webhook(config.id, payload)

        second = engine.handle_webhook(config.id, payload)

        assert second == first
        assert len(engine.list_sync_history(config.id)) == 1
        assert len(engine.store.list_pages("space-1")) == 1

    def test_other_branch_only_moves_head(self, engine, repo, config):
        repo.create_branch("feature")
        engine.add_branch(config.id, "feature")
        sha = repo.commit({"docs/intro.md": page_file("Intro")}, branch="feature")

        history_id = engine.handle_webhook(config.id, repo.push_payload([sha], branch="feature"))

        history = engine.store.require_history(history_id)
        assert history.metadata['ignored'] is True
        assert history.status == SyncStatus.SUCCESS
        assert engine.store.find_branch(config.id, "feature").head_commit == sha
        assert engine.store.list_pages("space-1") == []

    def test_signature_required_with_secret(self, engine, repo):
        config = engine.configure_sync("space-1", "memory://docs", webhook_secret="s3cret")
        sha = repo.commit({"docs/intro.md": page_file("Intro")})
        payload = repo.push_payload([sha])

        with pytest.raises(ForbiddenError):
            engine.handle_webhook(config.id, payload)
        with pytest.raises(ForbiddenError):
            engine.handle_webhook(config.id, payload, sign_payload("wrong", payload))

        history_id = engine.handle_webhook(config.id, payload, sign_payload("s3cret", payload))
        assert engine.wait_for_sync(history_id).pages_created == 1

    def test_webhook_while_syncing(self, slow_engine, repo):
        config = slow_engine.configure_sync("space-1", "memory://docs")
        slow_engine.trigger_sync(config.id, "push")
        sha = repo.commit({"docs/intro.md": page_file("Intro")})

        with pytest.raises(SyncInProgressError):
            slow_engine.handle_webhook(config.id, repo.push_payload([sha]))


class TestRegisterWebhook:

    def test_id_stored(self, engine, repo, config):
        webhook_id = engine.register_webhook(config.id, "https://docs.example/hooks")

        assert webhook_id == "hook-1"
        assert engine.get_sync_config(config.id).webhook_id == "hook-1"
        assert repo.webhooks == [("https://docs.example/hooks", None)]
