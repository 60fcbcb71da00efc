"""Transactional in-memory store enforcing the entity invariants.

ContentStore is the persistence collaborator of the engine. It keeps every
entity in memory, hands out copies (never live references) and enforces the
uniqueness constraints of the data model:

- page path unique among non-deleted pages of a space
- one GitSyncConfig per space
- (config id, commit sha) unique
- (config id, branch name) unique, exactly one default branch per config
- (change request id, reviewer id) unique, upserted
- page version numbers strictly increasing with no gaps
- completed SyncHistory records are immutable

Writes happen inside ``transaction()``. Transactions are serialized by a
re-entrant lock and may nest. The outermost level snapshots the state and
restores it if the block raises, so a failing unit of work never leaves
partial writes. Nested levels join it unless opened as a savepoint.
"""

import copy
import functools
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple

from src.change_requests.models import (
    ChangeRequest,
    ChangeRequestChange,
    ChangeRequestComment,
    Review,
)
from src.content_tree.models import Block, Page, PageVersion
from src.core.errors import (
    ConflictError,
    DuplicatePathError,
    InternalError,
    NotFoundError,
)
from src.sync.models import GitBranch, GitCommit, GitSyncConfig, SyncBaseline, SyncHistory

logger = logging.getLogger(__name__)


def _synchronized(method):
    """Run a read method under the store lock."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


@dataclass
class StoreState:
    """All tables and indexes of the store."""
    pages: Dict[str, Page] = field(default_factory=dict)
    path_index: Dict[Tuple[str, str], str] = field(default_factory=dict)
    children_index: Dict[Tuple[str, Optional[str]], Set[str]] = field(default_factory=dict)
    blocks: Dict[str, Dict[str, Block]] = field(default_factory=dict)
    block_pages: Dict[str, str] = field(default_factory=dict)
    versions: Dict[str, List[PageVersion]] = field(default_factory=dict)
    sync_configs: Dict[str, GitSyncConfig] = field(default_factory=dict)
    config_by_space: Dict[str, str] = field(default_factory=dict)
    commits: Dict[str, GitCommit] = field(default_factory=dict)
    commit_index: Dict[Tuple[str, str], str] = field(default_factory=dict)
    branches: Dict[str, GitBranch] = field(default_factory=dict)
    history: Dict[str, SyncHistory] = field(default_factory=dict)
    baselines: Dict[Tuple[str, str], SyncBaseline] = field(default_factory=dict)
    change_requests: Dict[str, ChangeRequest] = field(default_factory=dict)
    changes: Dict[str, ChangeRequestChange] = field(default_factory=dict)
    reviews: Dict[Tuple[str, str], Review] = field(default_factory=dict)
    comments: Dict[str, ChangeRequestComment] = field(default_factory=dict)


class ContentStore:
    """In-memory transactional store for all engine entities.

    Example:
        >>> store = ContentStore()
        >>> with store.transaction():
        ...     store.add_page(page)
        ...     store.replace_blocks(page.id, blocks)
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._depth = 0
        self._state = StoreState()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self, savepoint: bool = False) -> Iterator["ContentStore"]:
        """Run a block of work atomically.

        Only the outermost transaction captures the state on entry; nested
        blocks join it, so an error escaping them rolls back the whole unit
        of work. Pass ``savepoint=True`` for a nested block whose failure
        the caller handles: it captures its own state and restores it
        before re-raising. The outermost successful transaction triggers
        ``_after_commit``.
        """
        with self._lock:
            outermost = self._depth == 0
            snapshot = copy.deepcopy(self._state) if outermost or savepoint else None
            self._depth += 1
            try:
                yield self
            except BaseException:
                if snapshot is not None:
                    self._state = snapshot
                    logger.debug(f"Transaction rolled back (depth {self._depth})")
                raise
            else:
                if outermost:
                    self._after_commit()
            finally:
                self._depth -= 1

    def _after_commit(self) -> None:
        """Hook invoked after the outermost transaction commits."""
        pass

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    def add_page(self, page: Page) -> Page:
        """Insert a new page.

        Raises:
            ConflictError: If the id is already used
            DuplicatePathError: If a live page of the space has the same path
        """
        with self.transaction():
            if page.id in self._state.pages:
                raise ConflictError(f"Page {page.id} already exists")
            if not page.is_deleted:
                self._claim_path(page)
            stored = copy.deepcopy(page)
            self._state.pages[page.id] = stored
            self._index_child(stored)
        return copy.deepcopy(page)

    def save_page(self, page: Page) -> Page:
        """Replace a stored page, keeping the path and children indexes current."""
        with self.transaction():
            current = self._state.pages.get(page.id)
            if current is None:
                raise NotFoundError("Page", page.id)

            if not current.is_deleted:
                self._state.path_index.pop((current.space_id, current.path), None)
            if not page.is_deleted:
                self._claim_path(page)

            self._unindex_child(current)
            stored = copy.deepcopy(page)
            self._state.pages[page.id] = stored
            self._index_child(stored)
        return copy.deepcopy(page)

    @_synchronized
    def get_page(self, page_id: str) -> Optional[Page]:
        page = self._state.pages.get(page_id)
        return copy.deepcopy(page) if page else None

    @_synchronized
    def require_page(self, page_id: str, include_deleted: bool = False) -> Page:
        """Return a page or raise NotFoundError (deleted pages count as missing)."""
        page = self._state.pages.get(page_id)
        if page is None or (page.is_deleted and not include_deleted):
            raise NotFoundError("Page", page_id)
        return copy.deepcopy(page)

    @_synchronized
    def find_page_by_path(self, space_id: str, path: str) -> Optional[Page]:
        page_id = self._state.path_index.get((space_id, path))
        return self.get_page(page_id) if page_id else None

    @_synchronized
    def list_pages(self, space_id: str, include_deleted: bool = False) -> List[Page]:
        pages = [
            page for page in self._state.pages.values()
            if page.space_id == space_id and (include_deleted or not page.is_deleted)
        ]
        return copy.deepcopy(sorted(pages, key=lambda p: (p.depth, p.path)))

    @_synchronized
    def child_pages(self, space_id: str, parent_id: Optional[str]) -> List[Page]:
        """Live children of parent_id (None for the space root), ordered by position."""
        ids = self._state.children_index.get((space_id, parent_id), set())
        children = [
            self._state.pages[page_id] for page_id in ids
            if not self._state.pages[page_id].is_deleted
        ]
        return copy.deepcopy(sorted(children, key=lambda p: (p.position, p.slug)))

    @_synchronized
    def count_pages(self, space_id: str) -> int:
        return sum(1 for page in self._state.pages.values() if page.space_id == space_id)

    def _claim_path(self, page: Page) -> None:
        key = (page.space_id, page.path)
        owner = self._state.path_index.get(key)
        if owner is not None and owner != page.id:
            raise DuplicatePathError(page.space_id, page.path)
        self._state.path_index[key] = page.id

    def _index_child(self, page: Page) -> None:
        key = (page.space_id, page.parent_id)
        self._state.children_index.setdefault(key, set()).add(page.id)

    def _unindex_child(self, page: Page) -> None:
        key = (page.space_id, page.parent_id)
        siblings = self._state.children_index.get(key)
        if siblings is not None:
            siblings.discard(page.id)
            if not siblings:
                del self._state.children_index[key]

    # ------------------------------------------------------------------
    # Blocks
    # ------------------------------------------------------------------

    def replace_blocks(self, page_id: str, blocks: List[Block]) -> None:
        """Replace every block of a page."""
        with self.transaction():
            if page_id not in self._state.pages:
                raise NotFoundError("Page", page_id)
            for block_id in self._state.blocks.get(page_id, {}):
                self._state.block_pages.pop(block_id, None)

            page_blocks = {}
            for block in blocks:
                if block.page_id != page_id:
                    raise InternalError(
                        f"Block {block.id} belongs to page {block.page_id}, not {page_id}"
                    )
                owner = self._state.block_pages.get(block.id)
                if owner is not None:
                    raise ConflictError(f"Block {block.id} already belongs to page {owner}")
                page_blocks[block.id] = copy.deepcopy(block)
                self._state.block_pages[block.id] = page_id
            self._state.blocks[page_id] = page_blocks

    @_synchronized
    def get_blocks(self, page_id: str) -> List[Block]:
        blocks = self._state.blocks.get(page_id, {}).values()
        return copy.deepcopy(list(blocks))

    @_synchronized
    def get_block(self, block_id: str) -> Optional[Block]:
        page_id = self._state.block_pages.get(block_id)
        if page_id is None:
            return None
        return copy.deepcopy(self._state.blocks[page_id][block_id])

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def add_version(self, version: PageVersion) -> PageVersion:
        """Append a version; its number must be exactly last + 1.

        Raises:
            InternalError: If the number would create a gap or reuse a number
        """
        with self.transaction():
            if version.page_id not in self._state.pages:
                raise NotFoundError("Page", version.page_id)
            versions = self._state.versions.setdefault(version.page_id, [])
            expected = len(versions) + 1
            if version.version_number != expected:
                raise InternalError(
                    f"Version {version.version_number} for page {version.page_id} "
                    f"breaks the sequence (expected {expected})"
                )
            versions.append(copy.deepcopy(version))
        return copy.deepcopy(version)

    @_synchronized
    def list_versions(self, page_id: str) -> List[PageVersion]:
        return copy.deepcopy(self._state.versions.get(page_id, []))

    @_synchronized
    def latest_version_number(self, page_id: str) -> int:
        return len(self._state.versions.get(page_id, []))

    @_synchronized
    def get_version(self, page_id: str, version_number: int) -> Optional[PageVersion]:
        versions = self._state.versions.get(page_id, [])
        if 1 <= version_number <= len(versions):
            return copy.deepcopy(versions[version_number - 1])
        return None

    # ------------------------------------------------------------------
    # Sync configs, commits, branches, history, baselines
    # ------------------------------------------------------------------

    def add_sync_config(self, config: GitSyncConfig) -> GitSyncConfig:
        with self.transaction():
            if config.space_id in self._state.config_by_space:
                raise ConflictError(f"Space {config.space_id} already has a sync config")
            self._state.sync_configs[config.id] = copy.deepcopy(config)
            self._state.config_by_space[config.space_id] = config.id
        return copy.deepcopy(config)

    def save_sync_config(self, config: GitSyncConfig) -> GitSyncConfig:
        with self.transaction():
            if config.id not in self._state.sync_configs:
                raise NotFoundError("GitSyncConfig", config.id)
            self._state.sync_configs[config.id] = copy.deepcopy(config)
        return copy.deepcopy(config)

    @_synchronized
    def get_sync_config(self, config_id: str) -> Optional[GitSyncConfig]:
        config = self._state.sync_configs.get(config_id)
        return copy.deepcopy(config) if config else None

    @_synchronized
    def require_sync_config(self, config_id: str) -> GitSyncConfig:
        config = self.get_sync_config(config_id)
        if config is None:
            raise NotFoundError("GitSyncConfig", config_id)
        return config

    @_synchronized
    def config_for_space(self, space_id: str) -> Optional[GitSyncConfig]:
        config_id = self._state.config_by_space.get(space_id)
        return self.get_sync_config(config_id) if config_id else None

    @_synchronized
    def list_sync_configs(self) -> List[GitSyncConfig]:
        return copy.deepcopy(list(self._state.sync_configs.values()))

    def add_commit(self, commit: GitCommit) -> GitCommit:
        """Record a commit.

        Raises:
            ConflictError: If (config id, sha) is already recorded
        """
        with self.transaction():
            key = (commit.config_id, commit.commit_sha)
            if key in self._state.commit_index:
                raise ConflictError(
                    f"Commit {commit.commit_sha} already recorded for config {commit.config_id}"
                )
            self._state.commits[commit.id] = copy.deepcopy(commit)
            self._state.commit_index[key] = commit.id
        return copy.deepcopy(commit)

    @_synchronized
    def find_commit(self, config_id: str, commit_sha: str) -> Optional[GitCommit]:
        commit_id = self._state.commit_index.get((config_id, commit_sha))
        return copy.deepcopy(self._state.commits[commit_id]) if commit_id else None

    @_synchronized
    def has_commit(self, config_id: str, commit_sha: str) -> bool:
        return (config_id, commit_sha) in self._state.commit_index

    @_synchronized
    def list_commits(self, config_id: str) -> List[GitCommit]:
        commits = [c for c in self._state.commits.values() if c.config_id == config_id]
        return copy.deepcopy(commits)

    def add_branch(self, branch: GitBranch) -> GitBranch:
        """Add a branch; a new default branch demotes the previous default."""
        with self.transaction():
            if self.find_branch(branch.config_id, branch.name) is not None:
                raise ConflictError(
                    f"Branch '{branch.name}' already exists for config {branch.config_id}"
                )
            if branch.is_default:
                self._clear_default_branch(branch.config_id)
            self._state.branches[branch.id] = copy.deepcopy(branch)
        return copy.deepcopy(branch)

    def save_branch(self, branch: GitBranch) -> GitBranch:
        with self.transaction():
            current = self._state.branches.get(branch.id)
            if current is None:
                raise NotFoundError("GitBranch", branch.id)
            if branch.is_default and not current.is_default:
                self._clear_default_branch(branch.config_id)
            if current.is_default and not branch.is_default:
                raise ConflictError(
                    f"Branch '{branch.name}' is the default; promote another branch instead"
                )
            self._state.branches[branch.id] = copy.deepcopy(branch)
        return copy.deepcopy(branch)

    @_synchronized
    def find_branch(self, config_id: str, name: str) -> Optional[GitBranch]:
        for branch in self._state.branches.values():
            if branch.config_id == config_id and branch.name == name:
                return copy.deepcopy(branch)
        return None

    @_synchronized
    def list_branches(self, config_id: str) -> List[GitBranch]:
        branches = [b for b in self._state.branches.values() if b.config_id == config_id]
        return copy.deepcopy(sorted(branches, key=lambda b: b.name))

    def _clear_default_branch(self, config_id: str) -> None:
        for branch in self._state.branches.values():
            if branch.config_id == config_id and branch.is_default:
                branch.is_default = False

    def add_history(self, history: SyncHistory) -> SyncHistory:
        with self.transaction():
            if history.id in self._state.history:
                raise ConflictError(f"Sync history {history.id} already exists")
            self._state.history[history.id] = copy.deepcopy(history)
        return copy.deepcopy(history)

    def save_history(self, history: SyncHistory) -> SyncHistory:
        """Update a running history record.

        Raises:
            InternalError: If the stored record is already completed
        """
        with self.transaction():
            current = self._state.history.get(history.id)
            if current is None:
                raise NotFoundError("SyncHistory", history.id)
            if current.is_completed:
                raise InternalError(f"Sync history {history.id} is completed and immutable")
            self._state.history[history.id] = copy.deepcopy(history)
        return copy.deepcopy(history)

    @_synchronized
    def get_history(self, history_id: str) -> Optional[SyncHistory]:
        history = self._state.history.get(history_id)
        return copy.deepcopy(history) if history else None

    @_synchronized
    def require_history(self, history_id: str) -> SyncHistory:
        history = self.get_history(history_id)
        if history is None:
            raise NotFoundError("SyncHistory", history_id)
        return history

    @_synchronized
    def list_history(self, config_id: str) -> List[SyncHistory]:
        records = [h for h in self._state.history.values() if h.config_id == config_id]
        return copy.deepcopy(sorted(records, key=lambda h: h.started_at))

    @_synchronized
    def get_baseline(self, config_id: str, file_path: str) -> Optional[SyncBaseline]:
        baseline = self._state.baselines.get((config_id, file_path))
        return copy.deepcopy(baseline) if baseline else None

    def save_baseline(self, baseline: SyncBaseline) -> None:
        with self.transaction():
            key = (baseline.config_id, baseline.file_path)
            self._state.baselines[key] = copy.deepcopy(baseline)

    def delete_baseline(self, config_id: str, file_path: str) -> None:
        with self.transaction():
            self._state.baselines.pop((config_id, file_path), None)

    @_synchronized
    def list_baselines(self, config_id: str) -> List[SyncBaseline]:
        baselines = [b for (cid, _), b in self._state.baselines.items() if cid == config_id]
        return copy.deepcopy(sorted(baselines, key=lambda b: b.file_path))

    # ------------------------------------------------------------------
    # Change requests
    # ------------------------------------------------------------------

    def add_change_request(self, change_request: ChangeRequest) -> ChangeRequest:
        with self.transaction():
            if change_request.id in self._state.change_requests:
                raise ConflictError(f"Change request {change_request.id} already exists")
            self._state.change_requests[change_request.id] = copy.deepcopy(change_request)
        return copy.deepcopy(change_request)

    def save_change_request(self, change_request: ChangeRequest) -> ChangeRequest:
        with self.transaction():
            if change_request.id not in self._state.change_requests:
                raise NotFoundError("ChangeRequest", change_request.id)
            self._state.change_requests[change_request.id] = copy.deepcopy(change_request)
        return copy.deepcopy(change_request)

    @_synchronized
    def require_change_request(self, change_request_id: str) -> ChangeRequest:
        change_request = self._state.change_requests.get(change_request_id)
        if change_request is None:
            raise NotFoundError("ChangeRequest", change_request_id)
        return copy.deepcopy(change_request)

    @_synchronized
    def list_change_requests(self, space_id: str) -> List[ChangeRequest]:
        requests = [cr for cr in self._state.change_requests.values() if cr.space_id == space_id]
        return copy.deepcopy(requests)

    def add_change(self, change: ChangeRequestChange) -> ChangeRequestChange:
        with self.transaction():
            if change.change_request_id not in self._state.change_requests:
                raise NotFoundError("ChangeRequest", change.change_request_id)
            self._state.changes[change.id] = copy.deepcopy(change)
        return copy.deepcopy(change)

    def save_change(self, change: ChangeRequestChange) -> ChangeRequestChange:
        with self.transaction():
            if change.id not in self._state.changes:
                raise NotFoundError("ChangeRequestChange", change.id)
            self._state.changes[change.id] = copy.deepcopy(change)
        return copy.deepcopy(change)

    @_synchronized
    def require_change(self, change_id: str) -> ChangeRequestChange:
        change = self._state.changes.get(change_id)
        if change is None:
            raise NotFoundError("ChangeRequestChange", change_id)
        return copy.deepcopy(change)

    @_synchronized
    def list_changes(self, change_request_id: str) -> List[ChangeRequestChange]:
        changes = [
            change for change in self._state.changes.values()
            if change.change_request_id == change_request_id
        ]
        return copy.deepcopy(sorted(changes, key=lambda c: (c.created_at is None, c.created_at, c.path)))

    def upsert_review(self, review: Review) -> Review:
        """Insert or update the single review of (change request, reviewer).

        An existing record keeps its id and creation time.
        """
        with self.transaction():
            key = (review.change_request_id, review.reviewer_id)
            current = self._state.reviews.get(key)
            stored = copy.deepcopy(review)
            if current is not None:
                stored.id = current.id
                stored.created_at = current.created_at
            self._state.reviews[key] = stored
        return copy.deepcopy(stored)

    @_synchronized
    def get_review(self, change_request_id: str, reviewer_id: str) -> Optional[Review]:
        review = self._state.reviews.get((change_request_id, reviewer_id))
        return copy.deepcopy(review) if review else None

    @_synchronized
    def list_reviews(self, change_request_id: str) -> List[Review]:
        reviews = [
            review for (cr_id, _), review in self._state.reviews.items()
            if cr_id == change_request_id
        ]
        return copy.deepcopy(reviews)

    def add_comment(self, comment: ChangeRequestComment) -> ChangeRequestComment:
        with self.transaction():
            if comment.change_request_id not in self._state.change_requests:
                raise NotFoundError("ChangeRequest", comment.change_request_id)
            self._state.comments[comment.id] = copy.deepcopy(comment)
        return copy.deepcopy(comment)

    def save_comment(self, comment: ChangeRequestComment) -> ChangeRequestComment:
        with self.transaction():
            if comment.id not in self._state.comments:
                raise NotFoundError("ChangeRequestComment", comment.id)
            self._state.comments[comment.id] = copy.deepcopy(comment)
        return copy.deepcopy(comment)

    @_synchronized
    def require_comment(self, comment_id: str) -> ChangeRequestComment:
        comment = self._state.comments.get(comment_id)
        if comment is None:
            raise NotFoundError("ChangeRequestComment", comment_id)
        return copy.deepcopy(comment)

    @_synchronized
    def list_comments(self, change_request_id: str) -> List[ChangeRequestComment]:
        comments = [
            comment for comment in self._state.comments.values()
            if comment.change_request_id == change_request_id
        ]
        return copy.deepcopy(sorted(comments, key=lambda c: (c.created_at is None, c.created_at)))
