"""Unit tests for ChangeRequestWorkflow.merge."""

import pytest

from src.change_requests.models import ChangeRequestStatus
from src.content_tree.models import PageConflict
from src.core.errors import (
    ApprovalRequiredError,
    CommitRejectedError,
    ForbiddenError,
    InternalError,
    InvalidTransitionError,
    LockTimeoutError,
    MergeConflictError,
    ValidationError,
)
from src.sync.models import CommitResult
from tests.helpers.builders import page_file, paragraphs, texts


def approved_change_request(engine, propose, target="main"):
    """Open a change request, let propose(change_request) add changes, submit and approve."""
    change_request = engine.create_change_request(
        "space-1", "Improve docs", "docs/improve", target, "alice"
    )
    engine.add_reviewer(change_request.id, "bob", "alice")
    propose(change_request)
    engine.transition_change_request(change_request.id, "submit", "alice")
    engine.transition_change_request(change_request.id, "approve", "bob")
    return change_request


@pytest.fixture
def page(engine, config):
    return engine.create_page("space-1", "Intro", blocks=paragraphs("Hello"))


@pytest.fixture
def update_request(engine, page):
    return approved_change_request(
        engine,
        lambda cr: engine.propose_update(cr.id, page.id, "alice", blocks=paragraphs("New")),
    )


class TestMergeUpdates:

    def test_merge_applies_and_commits(self, engine, repo, config, page, update_request):
        outcome = engine.merge_change_request(update_request.id, "bob")

        head = repo.head_commit("main")
        assert outcome.merged_commit_id == head
        assert outcome.pages_affected == [page.id]
        assert repo.files_at() == {"docs/intro.md": page_file("Intro", "New")}
        assert repo.commits[head].message == "docs: merge change request 'Improve docs' [docsync]"
        assert texts(engine.get_blocks(page.id)) == ["New"]

        merged = engine.get_change_request(update_request.id)
        assert merged.status == ChangeRequestStatus.MERGED
        assert (merged.merged_by, merged.merge_commit_sha) == ("bob", head)
        assert merged.merged_at is not None

    def test_merge_records_commit_and_baseline(self, engine, repo, config, page, update_request):
        engine.merge_change_request(update_request.id, "alice")

        head = repo.head_commit("main")
        commit = engine.store.find_commit(config.id, head)
        assert commit.change_request_id == update_request.id
        assert commit.files_changed == ["docs/intro.md"]
        assert engine.baselines.get(config.id, "docs/intro.md") == page_file("Intro", "New")
        assert engine.store.find_branch(config.id, "main").head_commit == head

    def test_merge_creates_version(self, engine, page, update_request):
        engine.merge_change_request(update_request.id, "bob")

        versions = engine.list_versions(page.id)
        assert len(versions) == 1
        assert versions[0].change_description == "Merged change request 'Improve docs'"
        assert versions[0].git_commit_sha == engine.get_change_request(
            update_request.id).merge_commit_sha

    def test_merge_via_transition(self, engine, update_request):
        merged = engine.transition_change_request(update_request.id, "merge", "bob")

        assert merged.status == ChangeRequestStatus.MERGED

    def test_merged_twice(self, engine, update_request):
        engine.merge_change_request(update_request.id, "bob")

        with pytest.raises(InvalidTransitionError):
            engine.merge_change_request(update_request.id, "bob")


class TestMergeCreatesAndDeletes:

    def test_create_page(self, engine, repo, page):
        change_request = approved_change_request(
            engine,
            lambda cr: engine.propose_create(cr.id, "alice", "Setup", parent_id=page.id,
                                             blocks=paragraphs("Steps")),
        )

        outcome = engine.merge_change_request(change_request.id, "bob")

        created = engine.get_page(outcome.pages_affected[0])
        assert (created.path, created.parent_id) == ("/intro/setup", page.id)
        assert texts(engine.get_blocks(created.id)) == ["Steps"]
        assert repo.files_at()["docs/intro/setup.md"] == page_file("Setup", "Steps")
        assert engine.list_changes(change_request.id)[0].page_id == created.id

    def test_delete_subtree(self, engine, repo, config, page):
        child = engine.create_page("space-1", "Child", parent_id=page.id)
        engine.wait_for_sync(engine.trigger_sync(config.id, "push"))
        change_request = approved_change_request(
            engine, lambda cr: engine.propose_delete(cr.id, page.id, "alice"),
        )

        outcome = engine.merge_change_request(change_request.id, "bob")

        assert set(outcome.pages_affected) == {page.id, child.id}
        assert repo.files_at() == {}
        assert engine.get_subtree("space-1") == []
        assert engine.baselines.get(config.id, "docs/intro.md") is None


class TestMergePolicy:

    def test_requires_approval(self, engine, page):
        change_request = engine.create_change_request(
            "space-1", "Edit", "feature", "main", "alice"
        )
        engine.add_reviewer(change_request.id, "bob", "alice")
        engine.propose_delete(change_request.id, page.id, "alice")
        engine.transition_change_request(change_request.id, "submit", "alice")

        with pytest.raises(ApprovalRequiredError) as exc_info:
            engine.merge_change_request(change_request.id, "bob")
        assert exc_info.value.required == 1

    def test_zero_approvals_allows_submitted(self, engine, page):
        engine.settings.space_required_approvals["space-1"] = 0
        change_request = engine.create_change_request(
            "space-1", "Edit", "feature", "main", "alice"
        )
        engine.propose_delete(change_request.id, page.id, "alice")
        engine.transition_change_request(change_request.id, "submit", "alice")

        outcome = engine.merge_change_request(change_request.id, "alice")

        assert outcome.pages_affected == [page.id]

    def test_zero_approvals_still_requires_submit(self, engine, page):
        engine.settings.space_required_approvals["space-1"] = 0
        change_request = engine.create_change_request(
            "space-1", "Edit", "feature", "main", "alice"
        )
        engine.propose_delete(change_request.id, page.id, "alice")

        with pytest.raises(ApprovalRequiredError):
            engine.merge_change_request(change_request.id, "alice")

    def test_outsider_cannot_merge(self, engine, update_request):
        with pytest.raises(ForbiddenError):
            engine.merge_change_request(update_request.id, "mallory")

    def test_lock_held(self, engine, update_request):
        engine.settings.merge_lock_timeout_seconds = 0.05

        with engine.workflow.locks.hold("space-1", "main"):
            with pytest.raises(LockTimeoutError):
                engine.merge_change_request(update_request.id, "bob")

        assert engine.get_change_request(update_request.id).status == ChangeRequestStatus.APPROVED


class TestMergeFailures:

    def test_rejected_commit_changes_nothing(self, engine, repo, config, page, update_request):
        repo.reject_commits = True

        with pytest.raises(CommitRejectedError):
            engine.merge_change_request(update_request.id, "bob")

        assert engine.get_change_request(update_request.id).status == ChangeRequestStatus.APPROVED
        assert texts(engine.get_blocks(page.id)) == ["Hello"]
        assert engine.list_versions(page.id) == []
        assert engine.list_commits(config.id) == []

    def test_page_changed_after_proposal(self, engine, page, update_request):
        engine.update_page_content(page.id, blocks=paragraphs("Edited meanwhile"))

        with pytest.raises(MergeConflictError) as exc_info:
            engine.merge_change_request(update_request.id, "bob")

        assert exc_info.value.conflicts == ["/intro: page changed since the change was proposed"]
        change = engine.list_changes(update_request.id)[0]
        assert change.has_conflict
        assert texts(engine.get_blocks(page.id)) == ["Edited meanwhile"]

    def test_rebase_then_merge(self, engine, page, update_request):
        engine.update_page_content(page.id, blocks=paragraphs("Edited meanwhile"))
        with pytest.raises(MergeConflictError):
            engine.merge_change_request(update_request.id, "bob")
        change = engine.list_changes(update_request.id)[0]

        rebased = engine.resolve_change_conflict(update_request.id, change.id, "alice")
        engine.merge_change_request(update_request.id, "bob")

        assert not rebased.has_conflict
        assert rebased.base_version == 1
        assert texts(engine.get_blocks(page.id)) == ["New"]

    def test_deleted_page_cannot_rebase(self, engine, page, update_request):
        engine.delete_page(page.id)
        with pytest.raises(MergeConflictError) as exc_info:
            engine.merge_change_request(update_request.id, "bob")
        assert exc_info.value.conflicts == ["/intro: page was deleted"]
        change = engine.list_changes(update_request.id)[0]

        with pytest.raises(ValidationError):
            engine.resolve_change_conflict(update_request.id, change.id, "alice")

    def test_only_creator_rebases(self, engine, page, update_request):
        change = engine.list_changes(update_request.id)[0]

        with pytest.raises(ForbiddenError):
            engine.resolve_change_conflict(update_request.id, change.id, "bob")

    def test_create_path_taken(self, engine, config):
        change_request = approved_change_request(
            engine, lambda cr: engine.propose_create(cr.id, "alice", "Setup"),
        )
        engine.create_page("space-1", "Setup")

        with pytest.raises(MergeConflictError) as exc_info:
            engine.merge_change_request(change_request.id, "bob")

        assert exc_info.value.conflicts == ["/setup: path already exists"]

    def test_create_under_deleted_parent(self, engine, page):
        change_request = approved_change_request(
            engine, lambda cr: engine.propose_create(cr.id, "alice", "Setup", parent_id=page.id),
        )
        engine.delete_page(page.id)

        with pytest.raises(MergeConflictError) as exc_info:
            engine.merge_change_request(change_request.id, "bob")

        assert exc_info.value.conflicts == ["/intro/setup: parent page was deleted"]

    def test_page_in_sync_conflict(self, engine, page, update_request):
        stored = engine.store.get_page(page.id)
        stored.conflict = PageConflict(file_path="docs/intro.md", base_content=None,
                                       local_content="Hello", remote_content="Remote")
        engine.store.save_page(stored)

        with pytest.raises(MergeConflictError) as exc_info:
            engine.merge_change_request(update_request.id, "bob")

        assert exc_info.value.conflicts == ["/intro: page has an unresolved sync conflict"]


class TestMergeRaces:

    @staticmethod
    def run_before_first_commit(repo, monkeypatch, action):
        create_commit = repo.create_commit
        done = []

        def wrapped(files, message, branch):
            if not done:
                done.append(action())
            return create_commit(files, message, branch)

        monkeypatch.setattr(repo, "create_commit", wrapped)

    def test_page_edited_while_committing(self, engine, repo, config, page, update_request,
                                          monkeypatch):
        self.run_before_first_commit(repo, monkeypatch, lambda: engine.update_page_content(
            page.id, blocks=paragraphs("Concurrent edit")))

        with pytest.raises(MergeConflictError) as exc_info:
            engine.merge_change_request(update_request.id, "bob")

        assert exc_info.value.conflicts == ["/intro: page changed since the change was proposed"]
        assert texts(engine.get_blocks(page.id)) == ["Concurrent edit"]
        assert engine.get_change_request(update_request.id).status == ChangeRequestStatus.APPROVED
        assert engine.list_changes(update_request.id)[0].has_conflict
        assert repo.files_at() == {}
        assert engine.baselines.get(config.id, "docs/intro.md") is None

    def test_merge_commit_reverted_and_recorded(self, engine, repo, config, page, update_request,
                                                monkeypatch):
        self.run_before_first_commit(repo, monkeypatch, lambda: engine.update_page_content(
            page.id, blocks=paragraphs("Concurrent edit")))

        with pytest.raises(MergeConflictError):
            engine.merge_change_request(update_request.id, "bob")

        merge_sha, revert_sha = repo.branches["main"]
        results = {c.commit_sha: c.result for c in engine.list_commits(config.id)}
        assert results == {merge_sha: CommitResult.FAILED, revert_sha: CommitResult.SUCCESS}
        assert repo.files_at(merge_sha) == {"docs/intro.md": page_file("Intro", "New")}
        assert engine.store.find_branch(config.id, "main").head_commit == revert_sha

    def test_path_taken_while_committing(self, engine, repo, config, monkeypatch):
        change_request = approved_change_request(
            engine, lambda cr: engine.propose_create(cr.id, "alice", "Guide"),
        )
        created = []
        self.run_before_first_commit(repo, monkeypatch, lambda: created.append(
            engine.create_page("space-1", "Guide")))

        with pytest.raises(MergeConflictError) as exc_info:
            engine.merge_change_request(change_request.id, "bob")

        assert exc_info.value.conflicts == ["/guide: path already exists"]
        assert engine.get_change_request(change_request.id).status == ChangeRequestStatus.APPROVED
        assert engine.store.find_page_by_path("space-1", "/guide").id == created[0].id
        assert repo.files_at() == {}

    def test_apply_failure_reverts_commit(self, engine, repo, config, page, update_request,
                                          monkeypatch):
        def broken_update(*args, **kwargs):
            raise InternalError("block table unavailable")

        monkeypatch.setattr(engine.tree, "update_content", broken_update)

        with pytest.raises(InternalError):
            engine.merge_change_request(update_request.id, "bob")

        assert engine.get_change_request(update_request.id).status == ChangeRequestStatus.APPROVED
        assert texts(engine.get_blocks(page.id)) == ["Hello"]
        assert engine.list_versions(page.id) == []
        assert repo.files_at() == {}
        assert len(repo.branches["main"]) == 2

class TestMergeIntoOtherBranch:

    def test_release_branch_leaves_pages(self, engine, repo, config, page):
        repo.create_branch("release")
        engine.add_branch(config.id, "release")
        change_request = approved_change_request(
            engine,
            lambda cr: engine.propose_update(cr.id, page.id, "alice", blocks=paragraphs("New")),
            target="release",
        )

        outcome = engine.merge_change_request(change_request.id, "bob")

        assert outcome.pages_affected == []
        assert texts(engine.get_blocks(page.id)) == ["Hello"]
        assert repo.head_commit("main") is None
        assert repo.files_at(repo.head_commit("release")) == {
            "docs/intro.md": page_file("Intro", "New")
        }
        assert engine.store.find_branch(config.id, "release").head_commit == outcome.merged_commit_id
        assert engine.baselines.get(config.id, "docs/intro.md") is None
