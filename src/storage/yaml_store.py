"""YAML-file-backed content store.

Persists the full store state to a single YAML file (by default
``.docsync/state.yaml``) after every committed outermost transaction, and
loads it again on construction. Used by the CLI, which runs one process per
command.
"""

import logging
import os
import tempfile
from typing import Any, Dict

import yaml

from src.change_requests.models import (
    ChangeRequest,
    ChangeRequestChange,
    ChangeRequestComment,
    Review,
)
from src.content_tree.models import Block, Page, PageVersion
from src.core.errors import ConfigError
from src.sync.models import GitBranch, GitCommit, GitSyncConfig, SyncBaseline, SyncHistory

from .records import from_record, to_record
from .store import ContentStore, StoreState

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class YamlStore(ContentStore):
    """ContentStore that mirrors its state into a YAML file.

    Args:
        state_path: File to load from and save to

    Raises:
        ConfigError: If an existing state file cannot be parsed
    """

    def __init__(self, state_path: str):
        super().__init__()
        self.state_path = state_path
        if os.path.exists(state_path):
            self._state = self._load(state_path)
            logger.info(f"Loaded store state from {state_path}")

    def _after_commit(self) -> None:
        self.save()

    def save(self) -> None:
        """Write the current state atomically (temp file + rename)."""
        directory = os.path.dirname(os.path.abspath(self.state_path))
        os.makedirs(directory, exist_ok=True)

        document = self._dump_state(self._state)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                yaml.safe_dump(document, f, sort_keys=False, allow_unicode=True)
            os.replace(tmp_path, self.state_path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug(f"Saved store state to {self.state_path}")

    @staticmethod
    def _dump_state(state: StoreState) -> Dict[str, Any]:
        return {
            'version': STATE_VERSION,
            'pages': [to_record(page) for page in state.pages.values()],
            'blocks': [
                to_record(block)
                for page_blocks in state.blocks.values()
                for block in page_blocks.values()
            ],
            'versions': [
                to_record(version)
                for versions in state.versions.values()
                for version in versions
            ],
            'sync_configs': [to_record(c) for c in state.sync_configs.values()],
            'commits': [to_record(c) for c in state.commits.values()],
            'branches': [to_record(b) for b in state.branches.values()],
            'history': [to_record(h) for h in state.history.values()],
            'baselines': [to_record(b) for b in state.baselines.values()],
            'change_requests': [to_record(cr) for cr in state.change_requests.values()],
            'changes': [to_record(c) for c in state.changes.values()],
            'reviews': [to_record(r) for r in state.reviews.values()],
            'comments': [to_record(c) for c in state.comments.values()],
        }

    @staticmethod
    def _load(state_path: str) -> StoreState:
        try:
            with open(state_path, 'r', encoding='utf-8') as f:
                document = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse store state {state_path}: {e}")

        if not isinstance(document, dict):
            raise ConfigError(f"Store state {state_path} must be a mapping")
        if document.get('version', STATE_VERSION) != STATE_VERSION:
            raise ConfigError(
                f"Unsupported store state version {document.get('version')}", 'version'
            )

        state = StoreState()
        for record in document.get('pages') or []:
            page = from_record(Page, record)
            state.pages[page.id] = page
            if not page.is_deleted:
                state.path_index[(page.space_id, page.path)] = page.id
            state.children_index.setdefault((page.space_id, page.parent_id), set()).add(page.id)

        for record in document.get('blocks') or []:
            block = from_record(Block, record)
            state.blocks.setdefault(block.page_id, {})[block.id] = block
            state.block_pages[block.id] = block.page_id

        for record in document.get('versions') or []:
            version = from_record(PageVersion, record)
            state.versions.setdefault(version.page_id, []).append(version)
        for versions in state.versions.values():
            versions.sort(key=lambda v: v.version_number)

        for record in document.get('sync_configs') or []:
            config = from_record(GitSyncConfig, record)
            state.sync_configs[config.id] = config
            state.config_by_space[config.space_id] = config.id

        for record in document.get('commits') or []:
            commit = from_record(GitCommit, record)
            state.commits[commit.id] = commit
            state.commit_index[(commit.config_id, commit.commit_sha)] = commit.id

        for record in document.get('branches') or []:
            branch = from_record(GitBranch, record)
            state.branches[branch.id] = branch

        for record in document.get('history') or []:
            history = from_record(SyncHistory, record)
            state.history[history.id] = history

        for record in document.get('baselines') or []:
            baseline = from_record(SyncBaseline, record)
            state.baselines[(baseline.config_id, baseline.file_path)] = baseline

        for record in document.get('change_requests') or []:
            change_request = from_record(ChangeRequest, record)
            state.change_requests[change_request.id] = change_request

        for record in document.get('changes') or []:
            change = from_record(ChangeRequestChange, record)
            state.changes[change.id] = change

        for record in document.get('reviews') or []:
            review = from_record(Review, record)
            state.reviews[(review.change_request_id, review.reviewer_id)] = review

        for record in document.get('comments') or []:
            comment = from_record(ChangeRequestComment, record)
            state.comments[comment.id] = comment

        return state
