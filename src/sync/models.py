"""Data models for the sync engine.

This module defines the repository binding of a space, the commit, branch
and audit records owned by it, and the results passed between the sync
phases.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class SyncStatus(str, Enum):
    """Sync state of a repository binding.

    IDLE -> SYNCING -> {SUCCESS, CONFLICT, ERROR}. Only SYNCING holds the
    mutex; the terminal states are at rest.
    """

    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    CONFLICT = "conflict"
    ERROR = "error"


class SyncDirection(str, Enum):
    """Direction of a sync run or commit."""

    PUSH = "push"
    PULL = "pull"


class SyncOperation(str, Enum):
    """Kind of sync run recorded in history."""

    FULL_SYNC = "full_sync"
    INCREMENTAL = "incremental"
    WEBHOOK = "webhook"


class SyncTrigger(str, Enum):
    """What started a sync run."""

    USER = "user"
    WEBHOOK = "webhook"
    SCHEDULED = "scheduled"


class CommitResult(str, Enum):
    """Outcome of applying a commit."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class GitSyncConfig:
    """Repository binding of a space (one per space).

    Attributes:
        id: Unique config identifier
        space_id: Bound space
        repository_url: Repository reference understood by the repository client
        default_branch: Branch whose content the live pages mirror
        root_path: Directory inside the repository holding page files
        include_patterns: Glob patterns a file must match to be synced
        exclude_patterns: Glob patterns that exclude a file from sync
        sync_status: Current state machine status
        last_sync_commit: Last commit both sides agree on
        last_sync_at: Time of the last completed sync
        last_error: Message of the last failed sync
        commit_message_template: Template for push commit messages ({summary})
        webhook_id: Identifier returned when the webhook was registered
        webhook_secret: Secret used to verify webhook signatures
        current_sync_id: History id of the sync holding the mutex
        sync_started_at: When the in-flight sync acquired the mutex
    """
    id: str
    space_id: str
    repository_url: str
    default_branch: str = "main"
    root_path: str = "docs"
    include_patterns: List[str] = field(default_factory=lambda: ["**/*.md", "*.md"])
    exclude_patterns: List[str] = field(default_factory=list)
    sync_status: SyncStatus = SyncStatus.IDLE
    last_sync_commit: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None
    commit_message_template: str = "docs: {summary} [docsync]"
    webhook_id: Optional[str] = None
    webhook_secret: Optional[str] = None
    current_sync_id: Optional[str] = None
    sync_started_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class GitCommit:
    """A commit processed by (pull) or produced by (push) a config.

    (config_id, commit_sha) is unique; this is what makes webhook redelivery
    a no-op.
    """
    id: str
    config_id: str
    commit_sha: str
    direction: SyncDirection
    message: Optional[str] = None
    author: Optional[str] = None
    committed_at: Optional[datetime] = None
    change_request_id: Optional[str] = None
    files_changed: List[str] = field(default_factory=list)
    result: Optional[CommitResult] = None
    error_message: Optional[str] = None
    sync_history_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class GitBranch:
    """A named ref of a config's repository. Exactly one is the default."""
    id: str
    config_id: str
    name: str
    head_commit: Optional[str] = None
    is_default: bool = False
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class SyncHistory:
    """Append-only audit record of one sync run.

    Once completed_at is set the record is never modified again.
    """
    id: str
    config_id: str
    operation: SyncOperation
    direction: SyncDirection
    status: SyncStatus
    started_at: datetime
    start_commit: Optional[str] = None
    end_commit: Optional[str] = None
    files_processed: int = 0
    pages_created: int = 0
    pages_updated: int = 0
    pages_deleted: int = 0
    errors: List[str] = field(default_factory=list)
    conflicts: List[Dict[str, Any]] = field(default_factory=list)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    triggered_by: SyncTrigger = SyncTrigger.USER
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None


@dataclass
class SyncBaseline:
    """Canonical file content both sides agreed on after the last sync of a file."""
    config_id: str
    file_path: str
    content: str
    commit_sha: Optional[str] = None
    updated_at: Optional[datetime] = None
