"""Data models for CLI operations."""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional

from src.core.errors import (
    ConflictError,
    DocSyncError,
    ExternalServiceError,
    ForbiddenError,
)
from src.core.settings import EngineSettings
from src.sync.models import SyncStatus


class ExitCode(IntEnum):
    """Exit codes for CLI operations.

    - SUCCESS (0): Operation completed successfully
    - GENERAL_ERROR (1): General error (config issues, validation failures)
    - CONFLICTS (2): Unresolved conflicts detected during sync
    - FORBIDDEN (3): Signature, role or workflow rule violation
    - EXTERNAL_ERROR (4): Repository unreachable or commit rejected

    Example:
        >>> exit_code = ExitCode.SUCCESS
        >>> sys.exit(exit_code)
    """
    SUCCESS = 0
    GENERAL_ERROR = 1
    CONFLICTS = 2
    FORBIDDEN = 3
    EXTERNAL_ERROR = 4


def exit_code_for(error: DocSyncError) -> ExitCode:
    """Map an engine error to the exit code reported by the CLI."""
    if isinstance(error, ExternalServiceError):
        return ExitCode.EXTERNAL_ERROR
    if isinstance(error, ForbiddenError):
        return ExitCode.FORBIDDEN
    if isinstance(error, ConflictError):
        return ExitCode.CONFLICTS
    return ExitCode.GENERAL_ERROR


def exit_code_for_status(status: SyncStatus) -> ExitCode:
    if status == SyncStatus.CONFLICT:
        return ExitCode.CONFLICTS
    if status == SyncStatus.ERROR:
        return ExitCode.GENERAL_ERROR
    return ExitCode.SUCCESS


@dataclass
class ProjectConfig:
    """Sync binding stored in .docsync/config.yaml.

    Attributes:
        space_id: Space the checkout is bound to
        repository_path: Local git repository holding the page files
        default_branch: Branch the pages mirror
        root_path: Directory inside the repository holding page files
        include_patterns: Glob patterns a file must match to be synced
        exclude_patterns: Glob patterns excluded from sync
        commit_message_template: Template for push commit messages
        author_name: Author of commits created by pushes
        author_email: Author email of commits created by pushes
        settings: Engine settings

    Example:
        >>> config = ProjectConfig(space_id="handbook", repository_path=".")
    """
    space_id: str
    repository_path: str
    default_branch: str = "main"
    root_path: str = "docs"
    include_patterns: List[str] = field(default_factory=lambda: ["**/*.md", "*.md"])
    exclude_patterns: List[str] = field(default_factory=list)
    commit_message_template: Optional[str] = None
    author_name: str = "docsync"
    author_email: str = "docsync@localhost"
    settings: EngineSettings = field(default_factory=EngineSettings)
