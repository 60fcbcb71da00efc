"""Unit tests for sync.pull module, driven through the engine."""

from src.sync.models import CommitResult, SyncStatus
from tests.helpers.builders import page_file, paragraphs, texts


def pull(engine, config):
    return engine.wait_for_sync(engine.trigger_sync(config.id, "pull"))


def page_at(engine, path):
    return engine.store.find_page_by_path("space-1", path)


class TestPullCreates:

    def test_creates_pages_for_new_files(self, engine, repo, config):
        sha = repo.commit({
            "docs/intro.md": page_file("Intro", "Hello", published=True),
            "docs/guide/setup.md": page_file("Setup", "Steps"),
        })

        history = pull(engine, config)

        assert history.status == SyncStatus.SUCCESS
        assert history.files_processed == 2
        assert history.pages_created == 2
        assert history.end_commit == sha
        intro = page_at(engine, "/intro")
        assert intro.title == "Intro" and intro.is_published
        assert texts(engine.get_blocks(intro.id)) == ["Hello"]
        setup = page_at(engine, "/guide/setup")
        assert setup.depth == 1
        assert setup.parent_id is None
        assert engine.get_sync_config(config.id).last_sync_commit == sha

    def test_records_processed_commits(self, engine, repo, config):
        sha = repo.commit({"docs/intro.md": page_file("Intro", "Hello")}, author="alice")

        history = pull(engine, config)

        commit = engine.store.find_commit(config.id, sha)
        assert commit.sync_history_id == history.id
        assert commit.author == "alice"
        assert commit.result == CommitResult.SUCCESS
        assert commit.files_changed == ["docs/intro.md"]

    def test_ignores_non_page_files(self, engine, repo, config):
        repo.commit({"README.md": "# Readme", "docs/logo.png": "binary"})

        history = pull(engine, config)

        assert history.files_processed == 0
        assert engine.store.list_pages("space-1") == []

    def test_second_pull_is_a_no_op(self, engine, repo, config):
        repo.commit({"docs/intro.md": page_file("Intro", "Hello")})
        pull(engine, config)

        history = pull(engine, config)

        assert history.status == SyncStatus.SUCCESS
        assert history.files_processed == 0
        assert len(engine.store.list_pages("space-1")) == 1


class TestPullUpdates:

    def test_fast_forward(self, engine, repo, config):
        repo.commit({"docs/intro.md": page_file("Intro", "Hello")})
        pull(engine, config)
        sha = repo.commit({"docs/intro.md": page_file("Introduction", "Changed")})

        history = pull(engine, config)

        page = page_at(engine, "/intro")
        assert history.pages_updated == 1
        assert page.title == "Introduction"
        assert texts(engine.get_blocks(page.id)) == ["Changed"]
        versions = engine.list_versions(page.id)
        assert len(versions) == 1
        assert versions[0].title == "Intro"
        assert versions[0].git_commit_sha == sha

    def test_publish_flag_follows_file(self, engine, repo, config):
        repo.commit({"docs/intro.md": page_file("Intro", "Hello")})
        pull(engine, config)
        repo.commit({"docs/intro.md": page_file("Intro", "Hello", published=True)})

        pull(engine, config)

        assert page_at(engine, "/intro").is_published

    def test_local_edits_kept_when_remote_only_reformatted(self, engine, repo, config):
        repo.commit({"docs/intro.md": page_file("Intro", "Hello")})
        pull(engine, config)
        page = page_at(engine, "/intro")
        engine.update_page_content(page.id, blocks=paragraphs("Local"))
        repo.commit({"docs/intro.md": "---\ntitle: Intro\n---\nHello\n"})

        history = pull(engine, config)

        assert history.status == SyncStatus.SUCCESS
        assert texts(engine.get_blocks(page.id)) == ["Local"]
        assert not page_at(engine, "/intro").has_conflict

    def test_both_sides_changed_records_conflict(self, engine, repo, config):
        repo.commit({"docs/intro.md": page_file("Intro", "Hello")})
        pull(engine, config)
        page = page_at(engine, "/intro")
        engine.update_page_content(page.id, blocks=paragraphs("Local"))
        sha = repo.commit({"docs/intro.md": page_file("Intro", "Remote")})

        history = pull(engine, config)

        assert history.status == SyncStatus.CONFLICT
        assert history.conflicts == [
            {'page_id': page.id, 'path': '/intro', 'file_path': 'docs/intro.md'}
        ]
        conflict = page_at(engine, "/intro").conflict
        assert conflict.base_content == page_file("Intro", "Hello")
        assert conflict.local_content == page_file("Intro", "Local")
        assert conflict.remote_content == page_file("Intro", "Remote")
        assert conflict.remote_commit == sha
        assert "<<<<<<< local" in conflict.merge_preview
        assert texts(engine.get_blocks(page.id)) == ["Local"]
        assert engine.get_sync_config(config.id).sync_status == SyncStatus.CONFLICT

    def test_pending_conflict_gets_latest_remote(self, engine, repo, config):
        repo.commit({"docs/intro.md": page_file("Intro", "Hello")})
        pull(engine, config)
        page = page_at(engine, "/intro")
        engine.update_page_content(page.id, blocks=paragraphs("Local"))
        repo.commit({"docs/intro.md": page_file("Intro", "Remote")})
        pull(engine, config)
        repo.commit({"docs/intro.md": page_file("Intro", "Remote again")})

        pull(engine, config)

        conflict = page_at(engine, "/intro").conflict
        assert conflict.remote_content == page_file("Intro", "Remote again")
        assert conflict.local_content == page_file("Intro", "Local")

    def test_conflict_cleared_when_sides_agree(self, engine, repo, config):
        repo.commit({"docs/intro.md": page_file("Intro", "Hello")})
        pull(engine, config)
        page = page_at(engine, "/intro")
        engine.update_page_content(page.id, blocks=paragraphs("Local"))
        repo.commit({"docs/intro.md": page_file("Intro", "Remote")})
        pull(engine, config)
        repo.commit({"docs/intro.md": page_file("Intro", "Local")})

        history = pull(engine, config)

        assert history.status == SyncStatus.SUCCESS
        assert not page_at(engine, "/intro").has_conflict


class TestPullDeletes:

    def test_remote_delete_removes_unchanged_page(self, engine, repo, config):
        repo.commit({"docs/guide.md": page_file("Guide"), "docs/guide/setup.md": page_file("Setup")})
        pull(engine, config)
        repo.commit({"docs/guide/setup.md": None})

        history = pull(engine, config)

        assert history.pages_deleted == 1
        assert page_at(engine, "/guide/setup") is None
        assert page_at(engine, "/guide") is not None
        assert engine.baselines.get(config.id, "docs/guide/setup.md") is None

    def test_remote_delete_of_parent_keeps_children(self, engine, repo, config):
        repo.commit({"docs/guide.md": page_file("Guide"), "docs/guide/setup.md": page_file("Setup")})
        pull(engine, config)
        repo.commit({"docs/guide.md": None})

        history = pull(engine, config)

        assert history.pages_deleted == 1
        assert page_at(engine, "/guide") is None
        setup = page_at(engine, "/guide/setup")
        assert setup.parent_id is None
        assert engine.baselines.get(config.id, "docs/guide/setup.md") is not None

        engine.wait_for_sync(engine.trigger_sync(config.id, "push"))
        assert repo.files_at() == {"docs/guide/setup.md": page_file("Setup")}

    def test_remote_delete_of_edited_page_conflicts(self, engine, repo, config):
        repo.commit({"docs/intro.md": page_file("Intro", "Hello")})
        pull(engine, config)
        page = page_at(engine, "/intro")
        engine.update_page_content(page.id, blocks=paragraphs("Local"))
        repo.commit({"docs/intro.md": None})

        history = pull(engine, config)

        assert history.status == SyncStatus.CONFLICT
        conflict = page_at(engine, "/intro").conflict
        assert conflict.remote_content is None


class TestPullErrors:

    def test_invalid_file_recorded_as_partial(self, engine, repo, config):
        sha = repo.commit({
            "docs/bad.md": '<div data-block-type="bogus" data-content="{}">\n\n</div>\n',
            "docs/good.md": page_file("Good", "Fine"),
        })

        history = pull(engine, config)

        assert history.status == SyncStatus.SUCCESS
        assert history.pages_created == 1
        assert len(history.errors) == 1
        assert history.errors[0].startswith("docs/bad.md")
        assert engine.store.find_commit(config.id, sha).result == CommitResult.PARTIAL

    def test_repository_failure_marks_error(self, engine, repo, config):
        repo.unavailable_calls = 100

        history = pull(engine, config)

        assert history.status == SyncStatus.ERROR
        stored = engine.get_sync_config(config.id)
        assert stored.sync_status == SyncStatus.ERROR
        assert "connection refused" in stored.last_error
        assert stored.current_sync_id is None
