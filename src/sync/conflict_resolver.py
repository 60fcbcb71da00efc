"""Three-way merge decisions and explicit conflict resolution.

The sync engine compares three canonical renderings of a page file:

- base: the content both sides agreed on after the last sync of the file
- local: the current page content in the store
- remote: the incoming file content from the repository

Decision table (checked in this order):
- local == remote: nothing to do
- local == base: fast-forward to remote
- remote == base: local wins, nothing to apply
- otherwise: conflict, both sides are stored on the page

Conflicts are never resolved automatically. ConflictResolver applies the
explicit choice of a user (keep local, take remote, or merged content).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

from merge3 import Merge3

from src.content_tree.models import Page
from src.core.clock import Clock, utc_now
from src.core.errors import ContentConflictError, ValidationError

from .baselines import CONFLICT_MARKER_PATTERN, BaselineManager
from .mapping import build_mapper
from .models import SyncStatus

if TYPE_CHECKING:
    from src.content_tree.tree_store import ContentTreeStore
    from src.storage.store import ContentStore
    from src.versioning.version_log import VersionLog

logger = logging.getLogger(__name__)


class MergeResolution(str, Enum):
    """Outcome of a three-way comparison."""

    UNCHANGED = "unchanged"
    FAST_FORWARD = "fast_forward"
    KEEP_LOCAL = "keep_local"
    CONFLICT = "conflict"


class ResolutionChoice(str, Enum):
    """Explicit choices accepted by resolve_conflict."""

    KEEP_LOCAL = "keep_local"
    TAKE_REMOTE = "take_remote"
    MERGED = "merged"


@dataclass
class MergeDecision:
    """Result of three_way_merge.

    Attributes:
        resolution: Which side wins, or CONFLICT
        content: Resulting content (None on conflict)
        merge_preview: Line merge with conflict markers (conflicts only)
    """
    resolution: MergeResolution
    content: Optional[str] = None
    merge_preview: str = ""

    @property
    def is_conflict(self) -> bool:
        return self.resolution == MergeResolution.CONFLICT


def has_conflict_markers(content: str) -> bool:
    """Check whether content still contains <<<<<<< / ======= / >>>>>>> lines."""
    return bool(CONFLICT_MARKER_PATTERN.search(content or ""))


def merge_preview(base: Optional[str], local: Optional[str], remote: Optional[str]) -> str:
    """Line-based merge of both sides with conflict markers where they overlap.

    Args:
        base: Common ancestor (None when unknown)
        local: Local side (None when absent)
        remote: Remote side (None when deleted)

    Returns:
        Merged text; overlapping edits are wrapped in
        <<<<<<< local / ======= / >>>>>>> remote markers
    """
    base_lines = (base or "").splitlines(True)
    local_lines = (local or "").splitlines(True)
    remote_lines = (remote or "").splitlines(True)

    m3 = Merge3(base_lines, local_lines, remote_lines)
    merged_lines = m3.merge_lines(
        name_a='local',
        name_b='remote',
        start_marker='<<<<<<<',
        mid_marker='=======',
        end_marker='>>>>>>>'
    )
    return ''.join(merged_lines)


def three_way_merge(base: Optional[str], local: Optional[str],
                    remote: Optional[str]) -> MergeDecision:
    """Decide how local and remote content reconcile against base.

    A base of None means the two sides share no known ancestor, so they
    only reconcile when they are identical.

    Example:
        >>> three_way_merge("A", "A", "B").content
        'B'
        >>> three_way_merge("A", "B", "C").is_conflict
        True
    """
    if local == remote:
        return MergeDecision(MergeResolution.UNCHANGED, content=local)
    if base is not None and local == base:
        return MergeDecision(MergeResolution.FAST_FORWARD, content=remote)
    if base is not None and remote == base:
        return MergeDecision(MergeResolution.KEEP_LOCAL, content=local)

    return MergeDecision(
        MergeResolution.CONFLICT,
        merge_preview=merge_preview(base, local, remote),
    )


def resolve_three_way(base: Optional[str], local: Optional[str],
                      remote: Optional[str]) -> Optional[str]:
    """Return the reconciled content, raising on conflict.

    Raises:
        ContentConflictError: If local and remote both diverged from base
    """
    decision = three_way_merge(base, local, remote)
    if decision.is_conflict:
        raise ContentConflictError()
    return decision.content


class ConflictResolver:
    """Applies explicit resolution choices to pages with a pending conflict.

    Args:
        store: Persistence collaborator
        tree: Content tree store used to apply the chosen content
        versions: Version log (every resolution is snapshotted)
        baselines: Baseline manager; the remote side becomes the new base
        file_extension: Extension of page files
        clock: Time source
    """

    def __init__(self, store: 'ContentStore', tree: 'ContentTreeStore',
                 versions: 'VersionLog', baselines: BaselineManager,
                 file_extension: str = ".md", clock: Clock = utc_now):
        self.store = store
        self.tree = tree
        self.versions = versions
        self.baselines = baselines
        self.file_extension = file_extension
        self.clock = clock

    def resolve(self, page_id: str, choice: str, content: Optional[str] = None,
                author: Optional[str] = None) -> Page:
        """Resolve the pending conflict of a page.

        Args:
            page_id: Page with a pending conflict
            choice: keep_local, take_remote or merged
            content: File content to apply (merged only)
            author: User resolving the conflict

        Returns:
            The page after resolution (soft-deleted when taking a remote
            deletion)

        Raises:
            ValidationError: If the page has no conflict, the choice is
                unknown, or merged content is missing or still has markers
        """
        page = self.store.require_page(page_id)
        conflict = page.conflict
        if conflict is None:
            raise ValidationError(f"Page {page.path} has no pending conflict", 'page_id')

        try:
            choice = ResolutionChoice(choice)
        except ValueError:
            raise ValidationError(
                f"Unknown resolution '{choice}', expected one of "
                f"{', '.join(c.value for c in ResolutionChoice)}",
                'choice'
            )

        config = self.store.config_for_space(page.space_id)
        if config is None:
            raise ValidationError(
                f"Space {page.space_id} has no sync configuration", 'page_id'
            )
        mapper = build_mapper(config, self.tree, self.file_extension)

        document = None
        if choice == ResolutionChoice.MERGED:
            if not content or not content.strip():
                raise ValidationError("Merged content is required", 'content')
            if has_conflict_markers(content):
                raise ValidationError(
                    "Merged content still contains conflict markers", 'content'
                )
            document = mapper.parse_file(conflict.file_path, content)
        elif choice == ResolutionChoice.TAKE_REMOTE and conflict.remote_content is not None:
            document = mapper.parse_file(conflict.file_path, conflict.remote_content)

        description = f"Conflict resolved ({choice.value})"
        with self.store.transaction():
            before = self.store.latest_version_number(page_id)

            if document is not None:
                self.tree.update_content(
                    page_id,
                    blocks=document.blocks,
                    title=document.title,
                    author=author,
                    description=description,
                    commit_sha=conflict.remote_commit,
                )
                if document.published != self.store.require_page(page_id).is_published:
                    self.tree.set_published(page_id, document.published)

            if self.store.latest_version_number(page_id) == before:
                self.versions.create_version(
                    page_id, author=author, description=description,
                    commit_sha=conflict.remote_commit,
                )

            resolved = self.store.require_page(page_id)
            resolved.conflict = None
            resolved.updated_at = self.clock()
            self.store.save_page(resolved)

            if choice == ResolutionChoice.TAKE_REMOTE and conflict.remote_content is None:
                self.tree.delete_page(page_id)

            if conflict.remote_content is None:
                self.baselines.remove(config.id, conflict.file_path)
            else:
                self.baselines.update(
                    config.id, conflict.file_path, conflict.remote_content,
                    conflict.remote_commit,
                )
            self._release_conflict_status(config.id, page.space_id)

            resolved = self.store.require_page(page_id, include_deleted=True)

        logger.info(f"Resolved conflict on page {page.path} with {choice.value}")
        return resolved

    def _release_conflict_status(self, config_id: str, space_id: str) -> None:
        if any(page.has_conflict for page in self.store.list_pages(space_id)):
            return
        config = self.store.require_sync_config(config_id)
        if config.sync_status == SyncStatus.CONFLICT:
            config.sync_status = SyncStatus.IDLE
            config.updated_at = self.clock()
            self.store.save_sync_config(config)
            logger.info(f"All conflicts of space {space_id} resolved, config back to idle")
