"""Unit tests for ConflictResolver (explicit conflict resolution)."""

import pytest

from src.core.errors import ValidationError
from src.sync.models import SyncStatus
from tests.helpers.builders import page_file, paragraphs, texts


def pull(engine, config):
    return engine.wait_for_sync(engine.trigger_sync(config.id, "pull"))


@pytest.fixture
def conflicted(engine, repo, config):
    """Page /intro with local 'Local' and remote 'Remote' over base 'Hello'."""
    repo.commit({"docs/intro.md": page_file("Intro", "Hello")})
    pull(engine, config)
    page = engine.store.find_page_by_path("space-1", "/intro")
    engine.update_page_content(page.id, blocks=paragraphs("Local"))
    repo.commit({"docs/intro.md": page_file("Intro", "Remote")})
    pull(engine, config)
    return engine.get_page(page.id)


class TestResolveConflict:

    def test_keep_local(self, engine, config, conflicted):
        versions_before = len(engine.list_versions(conflicted.id))

        page = engine.resolve_conflict(conflicted.id, "keep_local", author="alice")

        assert not page.has_conflict
        assert texts(engine.get_blocks(page.id)) == ["Local"]
        versions = engine.list_versions(page.id)
        assert len(versions) == versions_before + 1
        assert versions[-1].change_description == "Conflict resolved (keep_local)"
        assert versions[-1].created_by == "alice"
        assert engine.baselines.get(config.id, "docs/intro.md") == page_file("Intro", "Remote")
        assert engine.get_sync_config(config.id).sync_status == SyncStatus.IDLE

    def test_keep_local_then_push_writes_local(self, engine, repo, config, conflicted):
        engine.resolve_conflict(conflicted.id, "keep_local")

        history = engine.wait_for_sync(engine.trigger_sync(config.id, "push"))

        assert history.status == SyncStatus.SUCCESS
        assert repo.files_at()["docs/intro.md"] == page_file("Intro", "Local")

    def test_take_remote(self, engine, config, conflicted):
        page = engine.resolve_conflict(conflicted.id, "take_remote")

        assert not page.has_conflict
        assert texts(engine.get_blocks(page.id)) == ["Remote"]
        assert engine.list_versions(page.id)[-1].change_description == \
            "Conflict resolved (take_remote)"

    def test_merged(self, engine, config, conflicted):
        page = engine.resolve_conflict(
            conflicted.id, "merged", content=page_file("Intro Merged", "Local\n\nRemote")
        )

        assert page.title == "Intro Merged"
        assert texts(engine.get_blocks(page.id)) == ["Local", "Remote"]

    def test_take_remote_deletion(self, engine, repo, config):
        repo.commit({"docs/intro.md": page_file("Intro", "Hello")})
        pull(engine, config)
        page = engine.store.find_page_by_path("space-1", "/intro")
        engine.update_page_content(page.id, blocks=paragraphs("Local"))
        repo.commit({"docs/intro.md": None})
        pull(engine, config)

        resolved = engine.resolve_conflict(page.id, "take_remote")

        assert resolved.is_deleted
        assert engine.store.find_page_by_path("space-1", "/intro") is None
        assert engine.baselines.get(config.id, "docs/intro.md") is None

    def test_status_stays_conflict_while_others_pending(self, engine, repo, config):
        repo.commit({"docs/a.md": page_file("A", "a"), "docs/b.md": page_file("B", "b")})
        pull(engine, config)
        a = engine.store.find_page_by_path("space-1", "/a")
        b = engine.store.find_page_by_path("space-1", "/b")
        engine.update_page_content(a.id, blocks=paragraphs("a local"))
        engine.update_page_content(b.id, blocks=paragraphs("b local"))
        repo.commit({"docs/a.md": page_file("A", "a remote"), "docs/b.md": page_file("B", "b remote")})
        pull(engine, config)

        engine.resolve_conflict(a.id, "keep_local")
        assert engine.get_sync_config(config.id).sync_status == SyncStatus.CONFLICT

        engine.resolve_conflict(b.id, "keep_local")
        assert engine.get_sync_config(config.id).sync_status == SyncStatus.IDLE


class TestResolveConflictErrors:

    def test_merged_content_with_markers(self, engine, conflicted):
        content = page_file("Intro", "<<<<<<< local\nLocal\n=======\nRemote\n>>>>>>> remote")
        with pytest.raises(ValidationError):
            engine.resolve_conflict(conflicted.id, "merged", content=content)
        assert engine.get_page(conflicted.id).has_conflict

    def test_merged_content_required(self, engine, conflicted):
        with pytest.raises(ValidationError):
            engine.resolve_conflict(conflicted.id, "merged", content="  ")

    def test_unknown_choice(self, engine, conflicted):
        with pytest.raises(ValidationError):
            engine.resolve_conflict(conflicted.id, "flip_a_coin")

    def test_page_without_conflict(self, engine, config):
        page = engine.create_page("space-1", "Calm")
        with pytest.raises(ValidationError):
            engine.resolve_conflict(page.id, "keep_local")
