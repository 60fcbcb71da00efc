"""Pull phase: apply repository commits to the pages of a space.

A pull runs in two steps so the store lock is never held during network
calls:

1. fetch: read new commits and the content of every changed page file at
   the target commit, plus the three-way base of each file
2. apply: in one store transaction, decide per file with the three-way merge
   and create, update or delete pages, record the processed commits and
   advance the config's last synced commit
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Set

from src.content_tree.models import PageConflict
from src.core.clock import Clock, utc_now
from src.core.errors import DuplicatePathError, ValidationError
from src.git_mapping.git_mapper import GitMapper
from src.repository.client import RemoteCommit

from .baselines import BaselineManager
from .conflict_resolver import MergeResolution, merge_preview, three_way_merge
from .models import CommitResult, GitCommit, GitSyncConfig, SyncDirection, SyncHistory

if TYPE_CHECKING:
    from src.content_tree.tree_store import ContentTreeStore
    from src.repository.client import RepositoryClient
    from src.storage.store import ContentStore

logger = logging.getLogger(__name__)


@dataclass
class RemoteFile:
    """A changed page file read at the pull target.

    Attributes:
        file_path: Repository path
        text: File content at the target (None when removed)
        base: Canonical three-way base (None when unknown)
        commit: Last pulled commit touching the file
    """
    file_path: str
    text: Optional[str]
    base: Optional[str]
    commit: RemoteCommit


@dataclass
class PullPlan:
    """Everything fetched from the repository for one pull."""
    commits: List[RemoteCommit] = field(default_factory=list)
    target: Optional[str] = None
    files: List[RemoteFile] = field(default_factory=list)


@dataclass
class FileOutcome:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    conflict: Optional[Dict[str, str]] = None


def merge_commit_lists(fetched: List[RemoteCommit],
                       extra: List[RemoteCommit]) -> List[RemoteCommit]:
    """Append commits from extra whose sha is not already in fetched."""
    known = {commit.sha for commit in fetched}
    merged = list(fetched)
    for commit in extra:
        if commit.sha not in known:
            known.add(commit.sha)
            merged.append(commit)
    return merged


class PullSync:
    """Pulls repository commits into the content tree.

    Args:
        store: Persistence collaborator
        tree: Content tree store used to create, update and delete pages
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

    def fetch(self, config: GitSyncConfig, mapper: GitMapper,
              extra_commits: Optional[List[RemoteCommit]] = None) -> PullPlan:
        """Read new commits and changed page files from the repository.

        Args:
            config: Repository binding to pull
            mapper: Mapper of the binding
            extra_commits: Commits announced by a webhook; merged with the
                commits the repository reports

        Returns:
            The plan to apply (empty when every commit was already processed)
        """
        fetched = self.repository.fetch_commits(config.last_sync_commit, config.default_branch)
        commits = merge_commit_lists(fetched, extra_commits or [])
        new_commits = [c for c in commits if not self.store.has_commit(config.id, c.sha)]
        if not new_commits:
            logger.info(f"No new commits on {config.default_branch} for space {config.space_id}")
            return PullPlan()

        target = fetched[-1].sha if fetched else new_commits[-1].sha
        last_touch: Dict[str, RemoteCommit] = {}
        for commit in new_commits:
            for file_path in commit.files_changed:
                if mapper.paths.is_page_file(file_path):
                    last_touch[file_path] = commit

        files = []
        for file_path in sorted(last_touch):
            files.append(RemoteFile(
                file_path=file_path,
                text=self.repository.get_file_contents(file_path, target),
                base=self.baselines.resolve_base(config, file_path, mapper, self.repository),
                commit=last_touch[file_path],
            ))

        logger.info(
            f"Fetched {len(new_commits)} commit(s) and {len(files)} page file(s) "
            f"up to {target[:8]}"
        )
        return PullPlan(commits=new_commits, target=target, files=files)

    def apply(self, config: GitSyncConfig, mapper: GitMapper, plan: PullPlan,
              history: SyncHistory) -> None:
        """Apply a fetched plan. Must run inside a store transaction.

        Updates the counters, errors and conflicts of history and the last
        synced commit of config in place; the caller persists both.
        """
        failed_files: Set[str] = set()

        ordered = sorted(
            plan.files,
            key=lambda f: ((mapper.paths.file_to_page(f.file_path) or '').count('/'), f.file_path),
        )
        for remote_file in ordered:
            history.files_processed += 1
            try:
                with self.store.transaction(savepoint=True):
                    outcome = self._apply_file(config, mapper, remote_file)
            except (ValidationError, DuplicatePathError) as e:
                logger.error(f"Cannot pull {remote_file.file_path}: {e}")
                history.errors.append(f"{remote_file.file_path}: {e}")
                failed_files.add(remote_file.file_path)
                continue

            history.pages_created += outcome.created
            history.pages_updated += outcome.updated
            history.pages_deleted += outcome.deleted
            if outcome.conflict:
                history.conflicts.append(outcome.conflict)

        for commit in plan.commits:
            changed = commit.files_changed
            self.store.add_commit(GitCommit(
                id=str(uuid.uuid4()),
                config_id=config.id,
                commit_sha=commit.sha,
                direction=SyncDirection.PULL,
                message=commit.message,
                author=commit.author,
                committed_at=commit.committed_at,
                files_changed=changed,
                result=CommitResult.PARTIAL if failed_files & set(changed) else CommitResult.SUCCESS,
                sync_history_id=history.id,
                created_at=self.clock(),
            ))

        if plan.target:
            config.last_sync_commit = plan.target
            history.end_commit = plan.target

    def _apply_file(self, config: GitSyncConfig, mapper: GitMapper,
                    remote_file: RemoteFile) -> FileOutcome:
        file_path = remote_file.file_path
        page_path = mapper.paths.file_to_page(file_path)
        page = self.store.find_page_by_path(config.space_id, page_path)
        commit = remote_file.commit

        document = None
        remote = None
        if remote_file.text is not None:
            document = mapper.parse_file(file_path, remote_file.text)
            remote = mapper.render(document.title, document.published, document.blocks)

        if page is None:
            if remote is None:
                self.baselines.remove(config.id, file_path)
                return FileOutcome()
            if remote_file.base is not None and remote == remote_file.base:
                logger.debug(f"{file_path} unchanged since its page was deleted, skipping")
                return FileOutcome()
            created = self.tree.create_page_at_path(
                config.space_id, page_path, document.title,
                blocks=document.blocks, is_published=document.published,
            )
            self.baselines.update(config.id, file_path, remote, commit.sha)
            logger.info(f"Created page {created.path} from {file_path}")
            return FileOutcome(created=1)

        local = mapper.canonical_page(page, self.tree.get_blocks(page.id))

        if page.conflict is not None:
            if remote == local:
                page.conflict = None
                self.store.save_page(page)
                self.baselines.update(config.id, file_path, remote, commit.sha)
                logger.info(f"Conflict on {page.path} cleared, both sides now agree")
                return FileOutcome()
            page.conflict.remote_content = remote
            page.conflict.remote_commit = commit.sha
            page.conflict.merge_preview = merge_preview(
                page.conflict.base_content, page.conflict.local_content, remote
            )
            self.store.save_page(page)
            return FileOutcome(conflict=_conflict_entry(page.id, page.path, file_path))

        if remote is None:
            if remote_file.base is None or local == remote_file.base:
                deleted = self.tree.delete_page(page.id, keep_children=True)
                self.baselines.remove(config.id, file_path)
                logger.info(f"Deleted page {page.path}, {file_path} was removed")
                return FileOutcome(deleted=len(deleted))
            return self._record_conflict(page, file_path, remote_file.base, local, None,
                                         commit.sha, merge_preview(remote_file.base, local, None))

        decision = three_way_merge(remote_file.base, local, remote)
        if decision.resolution == MergeResolution.UNCHANGED:
            self.baselines.update(config.id, file_path, remote, commit.sha)
            return FileOutcome()

        if decision.resolution == MergeResolution.KEEP_LOCAL:
            logger.debug(f"{file_path} unchanged remotely, keeping local edits of {page.path}")
            return FileOutcome()

        if decision.resolution == MergeResolution.FAST_FORWARD:
            self.tree.update_content(
                page.id,
                blocks=document.blocks,
                title=document.title,
                author=commit.author,
                description=f"Pulled from {commit.sha[:8]}",
                commit_sha=commit.sha,
            )
            if document.published != page.is_published:
                self.tree.set_published(page.id, document.published)
            self.baselines.update(config.id, file_path, remote, commit.sha)
            logger.info(f"Updated page {page.path} from {file_path}")
            return FileOutcome(updated=1)

        return self._record_conflict(page, file_path, remote_file.base, local, remote,
                                     commit.sha, decision.merge_preview)

    def _record_conflict(self, page, file_path, base, local, remote, commit_sha,
                         preview) -> FileOutcome:
        page.conflict = PageConflict(
            file_path=file_path,
            base_content=base,
            local_content=local,
            remote_content=remote,
            merge_preview=preview,
            remote_commit=commit_sha,
            detected_at=self.clock(),
        )
        self.store.save_page(page)
        logger.warning(f"Conflict on page {page.path}: both sides changed {file_path}")
        return FileOutcome(conflict=_conflict_entry(page.id, page.path, file_path))


def _conflict_entry(page_id: str, page_path: str, file_path: str) -> Dict[str, str]:
    return {'page_id': page_id, 'path': page_path, 'file_path': file_path}
