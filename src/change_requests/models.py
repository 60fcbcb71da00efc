"""Data models for change requests.

A change request is an isolated, reviewable set of proposed page edits,
analogous to a pull request.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ChangeRequestStatus(str, Enum):
    """Closed state machine of a change request.

    draft -> pending_review -> in_review -> {approved, rejected} -> {merged, closed}
    """

    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    MERGED = "merged"
    CLOSED = "closed"

    @property
    def is_terminal(self) -> bool:
        return self in (ChangeRequestStatus.MERGED, ChangeRequestStatus.CLOSED)


class ChangeRequestAction(str, Enum):
    """Actions accepted by transition_change_request."""

    SUBMIT = "submit"
    START_REVIEW = "start_review"
    APPROVE = "approve"
    REJECT = "reject"
    COMMENT = "comment"
    CLOSE = "close"
    MERGE = "merge"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    COMMENTED = "commented"


class ChangeType(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class ChangeRequest:
    """A proposed set of page edits awaiting review.

    Attributes:
        id: Unique change request identifier
        space_id: Space whose pages are edited
        title: Short summary
        status: Current workflow state
        source_branch: Branch name holding the proposal
        target_branch: Branch the proposal merges into
        created_by: Creator user id
        reviewers: Assigned reviewer ids
        approved_by: Reviewers who approved
        merged_by: User who merged
        merged_at: Merge time
        merge_commit_sha: Commit created by the merge
    """
    id: str
    space_id: str
    title: str
    source_branch: str
    target_branch: str
    created_by: str
    status: ChangeRequestStatus = ChangeRequestStatus.DRAFT
    description: Optional[str] = None
    reviewers: List[str] = field(default_factory=list)
    approved_by: List[str] = field(default_factory=list)
    merged_by: Optional[str] = None
    merged_at: Optional[datetime] = None
    merge_commit_sha: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class ChangeRequestChange:
    """Per-page diff record of a change request.

    Snapshots have the shape {"title": str, "blocks": [block records]}.

    Attributes:
        change_type: create, update or delete
        page_id: Edited page (None for a create until merged)
        path: Page path the change applies to
        parent_id: Parent page for creates
        before_snapshot: Page content when the change was proposed
        after_snapshot: Proposed content (None for deletes)
        block_changes: Block-level diff entries
        base_version: Number of versions of the page when proposed
        has_conflict: Unresolved conflict marker
        conflict_reason: Why the change conflicts
    """
    id: str
    change_request_id: str
    change_type: ChangeType
    path: str
    page_id: Optional[str] = None
    parent_id: Optional[str] = None
    before_snapshot: Optional[Dict[str, Any]] = None
    after_snapshot: Optional[Dict[str, Any]] = None
    block_changes: List[Dict[str, Any]] = field(default_factory=list)
    base_version: int = 0
    has_conflict: bool = False
    conflict_reason: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class Review:
    """The single review record of one reviewer on one change request."""
    id: str
    change_request_id: str
    reviewer_id: str
    status: ReviewStatus = ReviewStatus.PENDING
    body: Optional[str] = None
    submitted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class MergeOutcome:
    """Result of a successful merge."""
    change_request_id: str
    merged_commit_id: Optional[str]
    pages_affected: List[str] = field(default_factory=list)


@dataclass
class ChangeRequestComment:
    """A discussion comment on a change request.

    Top-level comments start a thread and may be anchored to a page, a block
    of that page or a line of its file; replies point at the thread's first
    comment. Threads are resolved as a whole.
    """
    id: str
    change_request_id: str
    created_by: str
    content: str
    page_id: Optional[str] = None
    block_id: Optional[str] = None
    line_number: Optional[int] = None
    parent_comment_id: Optional[str] = None
    is_resolved: bool = False
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
