"""Unit tests for cli.models module."""

import pytest

from src.cli.errors import ConfigNotFoundError, InitError
from src.cli.models import ExitCode, ProjectConfig, exit_code_for, exit_code_for_status
from src.core.errors import (
    ApprovalRequiredError,
    CommitRejectedError,
    ConfigError,
    ForbiddenError,
    MergeConflictError,
    NotFoundError,
    RepositoryUnavailableError,
    SyncInProgressError,
    ValidationError,
)
from src.sync.models import SyncStatus


class TestExitCodeFor:

    @pytest.mark.parametrize("error,expected", [
        (RepositoryUnavailableError("down"), ExitCode.EXTERNAL_ERROR),
        (CommitRejectedError("non-fast-forward"), ExitCode.EXTERNAL_ERROR),
        (ForbiddenError("no"), ExitCode.FORBIDDEN),
        (ApprovalRequiredError("cr-1", "draft", 1), ExitCode.FORBIDDEN),
        (SyncInProgressError("c-1", "h-1"), ExitCode.CONFLICTS),
        (MergeConflictError("cr-1", ["/intro: page was deleted"]), ExitCode.CONFLICTS),
        (NotFoundError("Page", "p-1"), ExitCode.GENERAL_ERROR),
        (ValidationError("bad"), ExitCode.GENERAL_ERROR),
        (ConfigError("bad config"), ExitCode.GENERAL_ERROR),
        (ConfigNotFoundError(".docsync/config.yaml"), ExitCode.GENERAL_ERROR),
        (InitError("exists"), ExitCode.GENERAL_ERROR),
    ])
    def test_mapping(self, error, expected):
        assert exit_code_for(error) == expected


class TestExitCodeForStatus:

    @pytest.mark.parametrize("status,expected", [
        (SyncStatus.SUCCESS, ExitCode.SUCCESS),
        (SyncStatus.IDLE, ExitCode.SUCCESS),
        (SyncStatus.CONFLICT, ExitCode.CONFLICTS),
        (SyncStatus.ERROR, ExitCode.GENERAL_ERROR),
    ])
    def test_mapping(self, status, expected):
        assert exit_code_for_status(status) == expected


class TestProjectConfig:

    def test_defaults(self):
        config = ProjectConfig(space_id="handbook", repository_path=".")

        assert config.default_branch == "main"
        assert config.root_path == "docs"
        assert config.include_patterns == ["**/*.md", "*.md"]
        assert config.settings.required_approvals == 1

    def test_pattern_lists_not_shared(self):
        first = ProjectConfig(space_id="a", repository_path=".")
        second = ProjectConfig(space_id="b", repository_path=".")

        first.exclude_patterns.append("drafts/**")

        assert second.exclude_patterns == []
