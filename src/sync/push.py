"""Push phase: write changed pages of a space to the repository.

Like the pull, a push is split so the store lock is never held during
network calls:

1. prepare: collect pages changed since the last sync and deleted pages,
   compare each against the file at the remote head, and create one commit
   with every file to write or delete
2. apply: in one store transaction, record the commit and conflicts, update
   the baselines and advance the config's last synced commit when the push
   was a fast-forward of it
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional

from src.content_tree.models import Page, PageConflict
from src.core.clock import Clock, utc_now
from src.core.errors import ValidationError
from src.git_mapping.git_mapper import GitMapper

from .baselines import BaselineManager
from .conflict_resolver import MergeResolution, three_way_merge
from .models import CommitResult, GitCommit, GitSyncConfig, SyncDirection, SyncHistory

if TYPE_CHECKING:
    from src.content_tree.tree_store import ContentTreeStore
    from src.repository.client import RepositoryClient
    from src.storage.store import ContentStore

logger = logging.getLogger(__name__)


@dataclass
class PushPlan:
    """Result of the prepare step.

    Attributes:
        head: Remote head the comparison was made against
        start_commit: Config's last synced commit when the push started
        commit_sha: Commit created by the push (None when nothing changed)
        message: Commit message
        writes: File path -> canonical content written
        deletes: Files deleted
        created: Files written that did not exist remotely
        agreed: File path -> canonical content both sides already share
        forgotten: Files whose baseline is obsolete (gone on both sides)
        conflicts: Pages whose file changed on both sides
        errors: Per-file problems
    """
    head: Optional[str] = None
    start_commit: Optional[str] = None
    commit_sha: Optional[str] = None
    message: Optional[str] = None
    writes: Dict[str, str] = field(default_factory=dict)
    deletes: List[str] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    agreed: Dict[str, str] = field(default_factory=dict)
    forgotten: List[str] = field(default_factory=list)
    conflicts: List[PageConflict] = field(default_factory=list)
    conflict_pages: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def files_changed(self) -> List[str]:
        return sorted(set(self.writes) | set(self.deletes))


class PushSync:
    """Pushes page changes to the repository.

    Args:
        store: Persistence collaborator
        tree: Content tree store (read only)
        repository: Repository collaborator
        baselines: Baseline manager
        clock: Time source
    """

    def __init__(self, store: 'ContentStore', tree: 'ContentTreeStore',
                 repository: 'RepositoryClient', baselines: BaselineManager,
                 clock: Clock = utc_now):
        self.store = store
        self.tree = tree
        self.repository = repository
        self.baselines = baselines
        self.clock = clock

    def prepare(self, config: GitSyncConfig, mapper: GitMapper) -> PushPlan:
        """Compare changed pages with the remote head and commit the result.

        Raises:
            CommitRejectedError: If the repository refuses the commit
        """
        head = self.repository.head_commit(config.default_branch)
        plan = PushPlan(head=head, start_commit=config.last_sync_commit)
        files: Dict[str, Optional[str]] = {}
        live_files = set()

        for page in self.store.list_pages(config.space_id):
            file_path = mapper.paths.page_to_file(page.path)
            if not mapper.paths.is_page_file(file_path):
                continue
            live_files.add(file_path)
            if page.has_conflict or not self._changed_since_sync(page, config):
                continue
            content = self._check_page(config, mapper, page, file_path, head, plan)
            if content is not None:
                files[file_path] = content

        for file_path in self._deletion_candidates(config, mapper) - live_files:
            if self._check_deletion(config, mapper, file_path, head, plan):
                files[file_path] = None

        if not files:
            logger.info(f"Nothing to push for space {config.space_id}")
            return plan

        plan.message = self._commit_message(config, plan)
        plan.commit_sha = self.repository.create_commit(files, plan.message, config.default_branch)
        logger.info(
            f"Pushed {len(plan.writes)} write(s) and {len(plan.deletes)} deletion(s) "
            f"as {plan.commit_sha[:8]}"
        )
        return plan

    def apply(self, config: GitSyncConfig, plan: PushPlan, history: SyncHistory) -> None:
        """Record a prepared push. Must run inside a store transaction."""
        history.errors.extend(plan.errors)

        for conflict, page_id in zip(plan.conflicts, plan.conflict_pages):
            page = self.store.get_page(page_id)
            if page is None or page.has_conflict:
                continue
            page.conflict = conflict
            self.store.save_page(page)
            history.conflicts.append({
                'page_id': page.id, 'path': page.path, 'file_path': conflict.file_path,
            })

        for file_path, content in plan.agreed.items():
            self.baselines.update(config.id, file_path, content, plan.head)
        for file_path in plan.forgotten:
            self.baselines.remove(config.id, file_path)

        history.files_processed = len(plan.files_changed)
        if not plan.commit_sha or plan.commit_sha == plan.head:
            history.end_commit = plan.head
            return

        for file_path, content in plan.writes.items():
            self.baselines.update(config.id, file_path, content, plan.commit_sha)
        for file_path in plan.deletes:
            self.baselines.remove(config.id, file_path)

        history.pages_created = len(plan.created)
        history.pages_updated = len(plan.writes) - len(plan.created)
        history.pages_deleted = len(plan.deletes)
        history.end_commit = plan.commit_sha

        if not self.store.has_commit(config.id, plan.commit_sha):
            self.store.add_commit(GitCommit(
                id=str(uuid.uuid4()),
                config_id=config.id,
                commit_sha=plan.commit_sha,
                direction=SyncDirection.PUSH,
                message=plan.message,
                files_changed=plan.files_changed,
                result=CommitResult.SUCCESS,
                sync_history_id=history.id,
                created_at=self.clock(),
            ))

        if plan.head == plan.start_commit:
            config.last_sync_commit = plan.commit_sha
        else:
            logger.info(
                f"Remote head moved past {plan.start_commit or 'root'}, "
                f"{plan.commit_sha[:8]} will be skipped by the next pull"
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _changed_since_sync(page: Page, config: GitSyncConfig) -> bool:
        if config.last_sync_at is None or page.updated_at is None:
            return True
        return page.updated_at > config.last_sync_at

    def _check_page(self, config: GitSyncConfig, mapper: GitMapper, page: Page,
                    file_path: str, head: Optional[str], plan: PushPlan) -> Optional[str]:
        """Return the file content to write for page, or None to skip it."""
        blocks = self.tree.get_blocks(page.id)
        local = mapper.canonical_page(page, blocks)
        text = self.repository.get_file_contents(file_path, head) if head else None
        base = self.baselines.resolve_base(config, file_path, mapper, self.repository)

        if text is None:
            if base is not None:
                logger.debug(f"{file_path} was removed remotely, leaving it to the next pull")
                return None
            plan.writes[file_path] = local
            plan.created.append(file_path)
            return mapper.serialize_page(page, blocks)

        try:
            document = mapper.parse_file(file_path, text)
        except ValidationError as e:
            plan.errors.append(f"{file_path}: {e}")
            logger.error(f"Cannot compare {page.path} with {file_path}: {e}")
            return None
        remote = mapper.render(document.title, document.published, document.blocks)

        decision = three_way_merge(base, local, remote)
        if decision.resolution == MergeResolution.KEEP_LOCAL:
            plan.writes[file_path] = local
            return mapper.serialize_page(page, blocks, extras=document.extras)
        if decision.resolution == MergeResolution.UNCHANGED:
            plan.agreed[file_path] = local
            return None
        if decision.resolution == MergeResolution.FAST_FORWARD:
            logger.debug(f"{file_path} changed remotely only, leaving it to the next pull")
            return None

        plan.conflicts.append(PageConflict(
            file_path=file_path,
            base_content=base,
            local_content=local,
            remote_content=remote,
            merge_preview=decision.merge_preview,
            remote_commit=head,
            detected_at=self.clock(),
        ))
        plan.conflict_pages.append(page.id)
        logger.warning(f"Conflict on page {page.path}: both sides changed {file_path}")
        return None

    def _deletion_candidates(self, config: GitSyncConfig, mapper: GitMapper) -> set:
        """Files of pages deleted or moved away since the last sync."""
        candidates = set(self.baselines.tracked_files(config.id))
        for page in self.store.list_pages(config.space_id, include_deleted=True):
            if not page.is_deleted:
                continue
            if config.last_sync_at is not None and page.deleted_at <= config.last_sync_at:
                continue
            file_path = mapper.paths.page_to_file(page.path)
            if mapper.paths.is_page_file(file_path):
                candidates.add(file_path)
        return candidates

    def _check_deletion(self, config: GitSyncConfig, mapper: GitMapper, file_path: str,
                        head: Optional[str], plan: PushPlan) -> bool:
        text = self.repository.get_file_contents(file_path, head) if head else None
        if text is None:
            if self.baselines.get(config.id, file_path) is not None:
                plan.forgotten.append(file_path)
            return False

        base = self.baselines.resolve_base(config, file_path, mapper, self.repository)
        try:
            remote = mapper.canonicalize(file_path, text)
        except ValidationError as e:
            plan.errors.append(f"{file_path}: {e}")
            return False

        if base is None or remote != base:
            logger.warning(
                f"{file_path} changed remotely since its page was deleted, keeping it"
            )
            return False

        plan.deletes.append(file_path)
        return True

    @staticmethod
    def _commit_message(config: GitSyncConfig, plan: PushPlan) -> str:
        parts = []
        updated = len(plan.writes) - len(plan.created)
        if plan.created:
            parts.append(f"add {len(plan.created)} page(s)")
        if updated:
            parts.append(f"update {updated} page(s)")
        if plan.deletes:
            parts.append(f"delete {len(plan.deletes)} page(s)")
        return config.commit_message_template.format(summary=", ".join(parts))
