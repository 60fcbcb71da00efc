"""Typed exception hierarchy for the docsync engine.

This module defines all custom exceptions raised by the engine components.
All exceptions inherit from DocSyncError so callers can catch any
application-level error in one place, and each carries the context
attributes needed to report it.

Categories:
- NotFoundError: missing page, branch, commit, change request, config
- ConflictError: hierarchy cycle, duplicate path, merge conflict, sync in flight
- ForbiddenError: role violation, invalid state transition, missing approval
- ValidationError: malformed input
- ExternalServiceError: repository collaborator unreachable or rejecting work
- InternalError: broken invariants that should never be observable
"""

from typing import List, Optional


class DocSyncError(Exception):
    """Base exception for all docsync errors."""
    pass


class NotFoundError(DocSyncError):
    """Raised when a requested entity does not exist."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(f"{resource} {identifier} not found")
        self.resource = resource
        self.identifier = identifier


class ConflictError(DocSyncError):
    """Raised when an operation collides with the current state."""
    pass


class HierarchyCycleError(ConflictError):
    """Raised when a move would make a page its own ancestor."""

    def __init__(self, page_id: str, new_parent_id: str):
        super().__init__(
            f"Cannot move page {page_id} under {new_parent_id}: "
            f"target parent is the page itself or one of its descendants"
        )
        self.page_id = page_id
        self.new_parent_id = new_parent_id


class DuplicatePathError(ConflictError):
    """Raised when a page path is already taken within a space."""

    def __init__(self, space_id: str, path: str):
        super().__init__(f"Path '{path}' already exists in space {space_id}")
        self.space_id = space_id
        self.path = path


class SyncInProgressError(ConflictError):
    """Raised when a sync is triggered while another one is in flight."""

    def __init__(self, config_id: str, sync_id: Optional[str] = None):
        message = f"A sync is already in progress for config {config_id}"
        if sync_id:
            message += f" (sync {sync_id})"
        super().__init__(message)
        self.config_id = config_id
        self.sync_id = sync_id


class SyncCancelledError(ConflictError):
    """Raised when a sync worker finds it no longer holds the sync mutex."""

    def __init__(self, config_id: str, sync_id: str):
        super().__init__(
            f"Sync {sync_id} of config {config_id} was cancelled; its result is discarded"
        )
        self.config_id = config_id
        self.sync_id = sync_id


class ContentConflictError(ConflictError):
    """Raised when local and remote content both diverged from the base."""

    def __init__(self, message: str = "Local and remote content both changed since base"):
        super().__init__(message)


class MergeConflictError(ConflictError):
    """Raised when a change request cannot merge because of conflicting changes.

    Attributes:
        change_request_id: The change request that failed to merge
        conflicts: Descriptions of the conflicting changes
    """

    def __init__(self, change_request_id: str, conflicts: List[str]):
        super().__init__(
            f"Change request {change_request_id} has unresolved conflicts: "
            f"{', '.join(conflicts)}"
        )
        self.change_request_id = change_request_id
        self.conflicts = conflicts


class LockTimeoutError(ConflictError):
    """Raised when an exclusive lock cannot be acquired in time."""

    def __init__(self, lock_name: str, timeout: float):
        super().__init__(
            f"Timeout acquiring lock '{lock_name}' after {timeout}s. "
            f"Another operation may be in progress."
        )
        self.lock_name = lock_name
        self.timeout = timeout


class ForbiddenError(DocSyncError):
    """Raised when the actor is not allowed to perform an operation."""
    pass


class InvalidTransitionError(ForbiddenError):
    """Raised when a state machine transition is not allowed."""

    def __init__(self, entity: str, current_state: str, action: str):
        super().__init__(
            f"Cannot {action} {entity} in state '{current_state}'"
        )
        self.entity = entity
        self.current_state = current_state
        self.action = action


class ApprovalRequiredError(ForbiddenError):
    """Raised when merging a change request that lacks approval."""

    def __init__(self, change_request_id: str, status: str, required: int):
        super().__init__(
            f"Change request {change_request_id} is '{status}' and needs "
            f"{required} approval(s) before it can be merged"
        )
        self.change_request_id = change_request_id
        self.status = status
        self.required = required


class ValidationError(DocSyncError):
    """Raised when input is malformed."""

    def __init__(self, message: str, field: Optional[str] = None):
        if field:
            full_message = f"Invalid value for '{field}': {message}"
        else:
            full_message = f"Validation error: {message}"
        super().__init__(full_message)
        self.field = field
        self.original_message = message


class FrontmatterError(ValidationError):
    """Raised when YAML frontmatter parsing or validation fails."""

    def __init__(self, file_path: str, message: str):
        super().__init__(f"Frontmatter error in {file_path}: {message}")
        self.file_path = file_path
        self.message = message


class ConfigError(ValidationError):
    """Raised when configuration validation fails."""

    def __init__(self, message: str, config_field: Optional[str] = None):
        super().__init__(message, config_field)
        self.config_field = config_field


class ExternalServiceError(DocSyncError):
    """Raised when an external collaborator fails.

    Attributes:
        service: Name of the failing collaborator
        retryable: Whether the failure is transient and worth retrying
    """

    retryable = False

    def __init__(self, service: str, message: str):
        super().__init__(f"{service} failure: {message}")
        self.service = service
        self.message = message


class RepositoryUnavailableError(ExternalServiceError):
    """Raised when the repository is unreachable or times out."""

    retryable = True

    def __init__(self, message: str):
        super().__init__("repository", message)


class CommitRejectedError(ExternalServiceError):
    """Raised when the repository refuses to create a commit."""

    def __init__(self, message: str):
        super().__init__("repository", f"commit rejected: {message}")


class InternalError(DocSyncError):
    """Raised when an engine invariant is broken."""
    pass
