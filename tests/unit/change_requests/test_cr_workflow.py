"""Unit tests for change_requests.workflow: proposals and review state machine."""

import pytest

from src.change_requests.models import ChangeRequestStatus, ChangeType, ReviewStatus
from src.core.errors import (
    DuplicatePathError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from tests.helpers.builders import paragraph, paragraphs


def open_change_request(engine, reviewers=("bob",)):
    change_request = engine.create_change_request(
        "space-1", "Improve docs", "docs/improve", "main", "alice"
    )
    for reviewer in reviewers:
        engine.add_reviewer(change_request.id, reviewer, "alice")
    return change_request


@pytest.fixture
def page(engine, config):
    return engine.create_page("space-1", "Intro", blocks=paragraphs("Hello"))


@pytest.fixture
def submitted(engine, page):
    change_request = open_change_request(engine)
    engine.propose_update(change_request.id, page.id, "alice", blocks=paragraphs("New"))
    engine.transition_change_request(change_request.id, "submit", "alice")
    return change_request


class TestCreate:

    def test_draft_created(self, engine, config):
        change_request = engine.create_change_request(
            "space-1", " Improve docs ", "docs/improve", "main", "alice", description="typos"
        )

        assert change_request.status == ChangeRequestStatus.DRAFT
        assert change_request.title == "Improve docs"
        assert engine.list_change_requests("space-1") == [change_request]

    @pytest.mark.parametrize("title,source,target", [
        ("", "feature", "main"),
        ("   ", "feature", "main"),
        ("Edit", "main", "main"),
        ("Edit", "", "main"),
    ])
    def test_invalid_input(self, engine, config, title, source, target):
        with pytest.raises(ValidationError):
            engine.create_change_request("space-1", title, source, target, "alice")

    def test_space_without_config(self, engine):
        with pytest.raises(NotFoundError):
            engine.create_change_request("space-1", "Edit", "feature", "main", "alice")

    def test_unknown_target_branch(self, engine, config):
        with pytest.raises(NotFoundError) as exc_info:
            engine.create_change_request("space-1", "Edit", "feature", "release", "alice")
        assert exc_info.value.identifier == "release"


class TestReviewers:

    def test_reviewer_gets_pending_review(self, engine, config):
        change_request = open_change_request(engine)

        reviews = engine.list_reviews(change_request.id)

        assert engine.get_change_request(change_request.id).reviewers == ["bob"]
        assert [(r.reviewer_id, r.status) for r in reviews] == [("bob", ReviewStatus.PENDING)]

    def test_adding_twice_is_idempotent(self, engine, config):
        change_request = open_change_request(engine)

        engine.add_reviewer(change_request.id, "bob", "alice")

        assert engine.get_change_request(change_request.id).reviewers == ["bob"]
        assert len(engine.list_reviews(change_request.id)) == 1

    def test_only_creator_assigns(self, engine, config):
        change_request = open_change_request(engine, reviewers=())

        with pytest.raises(ForbiddenError):
            engine.add_reviewer(change_request.id, "carol", "bob")

    def test_creator_cannot_review(self, engine, config):
        change_request = open_change_request(engine, reviewers=())

        with pytest.raises(ValidationError):
            engine.add_reviewer(change_request.id, "alice", "alice")


class TestProposals:

    def test_update_records_block_diff(self, engine, page):
        change_request = open_change_request(engine)
        nodes = engine.get_blocks(page.id)
        nodes[0].content = {'text': 'Hello!'}
        nodes.append(paragraph("More"))

        change = engine.propose_update(change_request.id, page.id, "alice", blocks=nodes)

        assert change.change_type == ChangeType.UPDATE
        assert change.path == "/intro"
        assert change.base_version == 0
        assert [e['op'] for e in change.block_changes] == ['modified', 'added']
        assert engine.get_blocks(page.id)[0].content == {'text': 'Hello'}

    def test_update_again_replaces(self, engine, page):
        change_request = open_change_request(engine)
        first = engine.propose_update(change_request.id, page.id, "alice",
                                      blocks=paragraphs("One"))

        second = engine.propose_update(change_request.id, page.id, "alice",
                                       blocks=paragraphs("Two"), title="Introduction")

        changes = engine.list_changes(change_request.id)
        assert second.id == first.id
        assert len(changes) == 1
        assert changes[0].after_snapshot['title'] == "Introduction"

    def test_only_creator_proposes(self, engine, page):
        change_request = open_change_request(engine)

        with pytest.raises(ForbiddenError):
            engine.propose_update(change_request.id, page.id, "bob", blocks=paragraphs("x"))

    def test_proposals_only_in_draft(self, engine, page, submitted):
        with pytest.raises(InvalidTransitionError):
            engine.propose_delete(submitted.id, page.id, "alice")

    def test_create_under_parent(self, engine, page):
        change_request = open_change_request(engine)

        change = engine.propose_create(change_request.id, "alice", "Setup Guide",
                                       parent_id=page.id, blocks=paragraphs("Steps"))

        assert change.change_type == ChangeType.CREATE
        assert change.path == "/intro/setup-guide"
        assert change.page_id is None
        assert [e['op'] for e in change.block_changes] == ['added']

    def test_create_existing_path(self, engine, page):
        change_request = open_change_request(engine)

        with pytest.raises(DuplicatePathError):
            engine.propose_create(change_request.id, "alice", "Intro")

    def test_create_same_path_twice(self, engine, config):
        change_request = open_change_request(engine)
        engine.propose_create(change_request.id, "alice", "New Page")

        with pytest.raises(DuplicatePathError):
            engine.propose_create(change_request.id, "alice", "New page")

    def test_delete_then_update(self, engine, page):
        change_request = open_change_request(engine)
        change = engine.propose_delete(change_request.id, page.id, "alice")

        assert change.after_snapshot is None
        assert [e['op'] for e in change.block_changes] == ['removed']
        with pytest.raises(ValidationError):
            engine.propose_update(change_request.id, page.id, "alice", blocks=paragraphs("x"))

    def test_page_of_other_space(self, engine, config):
        other = engine.create_page("space-2", "Elsewhere")
        change_request = open_change_request(engine)

        with pytest.raises(ValidationError):
            engine.propose_delete(change_request.id, other.id, "alice")


class TestTransitions:

    def test_submit_requires_changes(self, engine, config):
        change_request = open_change_request(engine)

        with pytest.raises(ValidationError):
            engine.transition_change_request(change_request.id, "submit", "alice")

    def test_submit_by_creator_only(self, engine, page):
        change_request = open_change_request(engine)
        engine.propose_delete(change_request.id, page.id, "alice")

        with pytest.raises(ForbiddenError):
            engine.transition_change_request(change_request.id, "submit", "bob")

    def test_review_flow(self, engine, submitted):
        assert engine.get_change_request(submitted.id).status == ChangeRequestStatus.PENDING_REVIEW

        started = engine.transition_change_request(submitted.id, "start_review", "bob")
        approved = engine.transition_change_request(submitted.id, "approve", "bob", body="LGTM")

        assert started.status == ChangeRequestStatus.IN_REVIEW
        assert approved.status == ChangeRequestStatus.APPROVED
        assert approved.approved_by == ["bob"]
        review = engine.list_reviews(submitted.id)[0]
        assert (review.status, review.body) == (ReviewStatus.APPROVED, "LGTM")

    def test_start_review_by_reviewer_only(self, engine, submitted):
        with pytest.raises(ForbiddenError):
            engine.transition_change_request(submitted.id, "start_review", "alice")

    def test_approve_draft(self, engine, page):
        change_request = open_change_request(engine)

        with pytest.raises(InvalidTransitionError):
            engine.transition_change_request(change_request.id, "approve", "bob")

    def test_unknown_action(self, engine, submitted):
        with pytest.raises(ValidationError):
            engine.transition_change_request(submitted.id, "rebase", "bob")

    def test_two_approvals_required(self, engine, page):
        engine.settings.space_required_approvals["space-1"] = 2
        change_request = open_change_request(engine, reviewers=("bob", "carol"))
        engine.propose_delete(change_request.id, page.id, "alice")
        engine.transition_change_request(change_request.id, "submit", "alice")

        after_bob = engine.transition_change_request(change_request.id, "approve", "bob")
        after_carol = engine.transition_change_request(change_request.id, "approve", "carol")

        assert after_bob.status == ChangeRequestStatus.IN_REVIEW
        assert after_carol.status == ChangeRequestStatus.APPROVED
        assert after_carol.approved_by == ["bob", "carol"]

    def test_reject_withdraws_approval(self, engine, page):
        engine.settings.space_required_approvals["space-1"] = 2
        change_request = open_change_request(engine, reviewers=("bob", "carol"))
        engine.propose_delete(change_request.id, page.id, "alice")
        engine.transition_change_request(change_request.id, "submit", "alice")
        engine.transition_change_request(change_request.id, "approve", "bob")

        rejected = engine.transition_change_request(change_request.id, "reject", "bob", body="No")

        assert rejected.status == ChangeRequestStatus.REJECTED
        assert rejected.approved_by == []
        review = next(r for r in engine.list_reviews(change_request.id) if r.reviewer_id == "bob")
        assert review.status == ReviewStatus.CHANGES_REQUESTED

    def test_approved_request_cannot_be_rejected(self, engine, submitted):
        engine.transition_change_request(submitted.id, "approve", "bob")

        with pytest.raises(InvalidTransitionError):
            engine.transition_change_request(submitted.id, "reject", "bob")

        assert engine.get_change_request(submitted.id).status == ChangeRequestStatus.APPROVED

    def test_comment_starts_review(self, engine, submitted):
        commented = engine.transition_change_request(submitted.id, "comment", "bob", body="?")

        assert commented.status == ChangeRequestStatus.IN_REVIEW
        assert engine.list_reviews(submitted.id)[0].status == ReviewStatus.COMMENTED

    def test_comment_keeps_approval(self, engine, submitted):
        engine.transition_change_request(submitted.id, "approve", "bob")

        commented = engine.transition_change_request(submitted.id, "comment", "bob", body="nit")

        assert commented.status == ChangeRequestStatus.APPROVED
        review = engine.list_reviews(submitted.id)[0]
        assert (review.status, review.body) == (ReviewStatus.APPROVED, "nit")

    def test_close(self, engine, submitted):
        with pytest.raises(ForbiddenError):
            engine.transition_change_request(submitted.id, "close", "mallory")

        closed = engine.transition_change_request(submitted.id, "close", "bob")

        assert closed.status == ChangeRequestStatus.CLOSED
        with pytest.raises(InvalidTransitionError):
            engine.transition_change_request(submitted.id, "close", "alice")
