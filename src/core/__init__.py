"""Shared error taxonomy and settings for the docsync engine."""

from .errors import (
    DocSyncError,
    NotFoundError,
    ConflictError,
    HierarchyCycleError,
    DuplicatePathError,
    SyncInProgressError,
    SyncCancelledError,
    ContentConflictError,
    MergeConflictError,
    LockTimeoutError,
    ForbiddenError,
    InvalidTransitionError,
    ApprovalRequiredError,
    ValidationError,
    FrontmatterError,
    ConfigError,
    ExternalServiceError,
    RepositoryUnavailableError,
    CommitRejectedError,
    InternalError,
)
from .clock import Clock, utc_now
from .settings import EngineSettings

__all__ = [
    'DocSyncError',
    'NotFoundError',
    'ConflictError',
    'HierarchyCycleError',
    'DuplicatePathError',
    'SyncInProgressError',
    'SyncCancelledError',
    'ContentConflictError',
    'MergeConflictError',
    'LockTimeoutError',
    'ForbiddenError',
    'InvalidTransitionError',
    'ApprovalRequiredError',
    'ValidationError',
    'FrontmatterError',
    'ConfigError',
    'ExternalServiceError',
    'RepositoryUnavailableError',
    'CommitRejectedError',
    'InternalError',
    'EngineSettings',
    'Clock',
    'utc_now',
]
