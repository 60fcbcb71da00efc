"""DocsEngine: the explicitly constructed entry point of the core.

The API layer, webhook receiver and CLI construct one DocsEngine with their
persistence and repository collaborators and call it; nothing in the core is
reached through global state.
"""

import logging
from concurrent.futures import Executor
from typing import Any, List, Optional, Union

from src.change_requests.branch_locks import BranchLockManager
from src.change_requests.models import (
    ChangeRequest,
    ChangeRequestChange,
    ChangeRequestComment,
    MergeOutcome,
    Review,
)
from src.change_requests.workflow import ChangeRequestWorkflow
from src.content_tree.blocks import BlockNode
from src.content_tree.models import BreadcrumbItem, Page, PageTreeNode, PageVersion
from src.content_tree.tree_store import ContentTreeStore
from src.core.clock import Clock, utc_now
from src.core.settings import EngineSettings
from src.repository.client import RepositoryClient
from src.repository.retry_logic import RetryingRepository
from src.storage.store import ContentStore
from src.sync.baselines import BaselineManager
from src.sync.conflict_resolver import ConflictResolver
from src.sync.models import GitBranch, GitCommit, GitSyncConfig, SyncHistory, SyncTrigger
from src.sync.sync_engine import SyncEngine
from src.sync.watchdog import SyncWatchdog
from src.versioning.version_log import VersionLog

from .access import (
    AccessPolicy,
    ChangeRequestResource,
    PageResource,
    Permission,
    Role,
    SpaceResource,
    SyncConfigResource,
    check_access,
)

logger = logging.getLogger(__name__)


class DocsEngine:
    """Facade over the content tree, version log, sync engine and workflow.

    Args:
        repository: Repository collaborator; wrapped with bounded retries
        store: Persistence collaborator (a fresh in-memory store by default)
        settings: Engine settings
        executor: Executor running syncs (a thread pool by default)
        clock: Time source shared by every component

    Example:
        >>> engine = DocsEngine(LocalGitRepository("/srv/docs"))
        >>> config = engine.configure_sync("space-1", "/srv/docs")
        >>> history = engine.wait_for_sync(engine.trigger_sync(config.id, "pull"))
    """

    def __init__(self, repository: RepositoryClient, store: Optional[ContentStore] = None,
                 settings: Optional[EngineSettings] = None,
                 executor: Optional[Executor] = None, clock: Clock = utc_now):
        self.settings = settings or EngineSettings()
        self.settings.validate()
        self.store = store if store is not None else ContentStore()
        self.clock = clock
        self.repository = RetryingRepository(
            repository,
            max_retries=self.settings.max_retries,
            base_delay=self.settings.retry_base_delay,
        )

        self.versions = VersionLog(self.store, clock)
        self.tree = ContentTreeStore(self.store, self.versions, clock)
        self.baselines = BaselineManager(self.store, clock)
        self.access = AccessPolicy(self.store)
        self.sync = SyncEngine(
            self.store, self.tree, self.repository, self.baselines,
            settings=self.settings, executor=executor, clock=clock,
        )
        self.resolver = ConflictResolver(
            self.store, self.tree, self.versions, self.baselines,
            file_extension=self.settings.file_extension, clock=clock,
        )
        self.workflow = ChangeRequestWorkflow(
            self.store, self.tree, self.repository, self.baselines,
            locks=BranchLockManager(), settings=self.settings, clock=clock,
        )
        self.watchdog = SyncWatchdog(self.sync, self.settings.watchdog_interval_seconds)

    def __enter__(self) -> "DocsEngine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Stop the watchdog and the sync executor."""
        self.watchdog.stop()
        self.sync.shutdown()

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def grant_role(self, space_id: str, user_id: str, role: Union[Role, str]) -> Role:
        return self.access.grant(space_id, user_id, role)

    def check_access(self, actor_id: str, resource, permission: Union[Permission, str]) -> None:
        check_access(self.access, actor_id, resource, permission)

    def _check(self, actor_id: Optional[str], resource, permission: Permission) -> None:
        if actor_id is not None:
            check_access(self.access, actor_id, resource, permission)

    # ------------------------------------------------------------------
    # Content tree
    # ------------------------------------------------------------------

    def create_page(self, space_id: str, title: str, parent_id: Optional[str] = None,
                    slug: Optional[str] = None, blocks: Optional[List[BlockNode]] = None,
                    position: Optional[int] = None, is_published: bool = False,
                    actor_id: Optional[str] = None) -> Page:
        self._check(actor_id, SpaceResource(space_id), Permission.EDIT)
        return self.tree.create_page(space_id, title, parent_id=parent_id, slug=slug,
                                     blocks=blocks, position=position,
                                     is_published=is_published)

    def move_page(self, page_id: str, new_parent_id: Optional[str],
                  position: Optional[int] = None, actor_id: Optional[str] = None) -> Page:
        self._check(actor_id, PageResource(page_id), Permission.EDIT)
        return self.tree.move_page(page_id, new_parent_id, position)

    def reorder_page(self, page_id: str, new_position: int,
                     actor_id: Optional[str] = None) -> Page:
        self._check(actor_id, PageResource(page_id), Permission.EDIT)
        return self.tree.reorder_page(page_id, new_position)

    def update_page_content(self, page_id: str, blocks: Optional[List[BlockNode]] = None,
                            title: Optional[str] = None, author: Optional[str] = None,
                            description: Optional[str] = None) -> Page:
        """Replace page content, snapshotting the previous content first."""
        self._check(author, PageResource(page_id), Permission.EDIT)
        return self.tree.update_content(page_id, blocks=blocks, title=title,
                                        author=author, description=description)

    def set_published(self, page_id: str, published: bool,
                      actor_id: Optional[str] = None) -> Page:
        self._check(actor_id, PageResource(page_id), Permission.EDIT)
        return self.tree.set_published(page_id, published)

    def duplicate_page(self, page_id: str, title: Optional[str] = None,
                       include_children: bool = False,
                       actor_id: Optional[str] = None) -> Page:
        self._check(actor_id, PageResource(page_id), Permission.EDIT)
        return self.tree.duplicate_page(page_id, title=title, include_children=include_children)

    def delete_page(self, page_id: str, actor_id: Optional[str] = None) -> List[str]:
        self._check(actor_id, PageResource(page_id), Permission.EDIT)
        return self.tree.delete_page(page_id)

    def get_page(self, page_id: str) -> Page:
        return self.tree.get_page(page_id)

    def get_blocks(self, page_id: str) -> List[BlockNode]:
        return self.tree.get_blocks(page_id)

    def get_subtree(self, space_id: str, root_id: Optional[str] = None,
                    max_depth: Optional[int] = None) -> List[PageTreeNode]:
        return self.tree.get_subtree(space_id, root_id, max_depth)

    def get_breadcrumb(self, page_id: str) -> List[BreadcrumbItem]:
        return self.tree.get_breadcrumb(page_id)

    # ------------------------------------------------------------------
    # Versions
    # ------------------------------------------------------------------

    def create_version(self, page_id: str, author: Optional[str] = None,
                       description: Optional[str] = None) -> PageVersion:
        self._check(author, PageResource(page_id), Permission.EDIT)
        return self.versions.create_version(page_id, author=author, description=description)

    def restore_version(self, page_id: str, version_number: int,
                        author: Optional[str] = None) -> Page:
        self._check(author, PageResource(page_id), Permission.EDIT)
        return self.versions.restore_version(page_id, version_number, author=author)

    def list_versions(self, page_id: str) -> List[PageVersion]:
        return self.versions.list_versions(page_id)

    def get_version(self, page_id: str, version_number: int) -> PageVersion:
        return self.versions.get_version(page_id, version_number)

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def configure_sync(self, space_id: str, repository_url: str, default_branch: str = "main",
                       root_path: str = "docs", include_patterns: Optional[List[str]] = None,
                       exclude_patterns: Optional[List[str]] = None,
                       webhook_secret: Optional[str] = None,
                       commit_message_template: Optional[str] = None,
                       actor_id: Optional[str] = None) -> GitSyncConfig:
        self._check(actor_id, SpaceResource(space_id), Permission.MANAGE)
        return self.sync.configure(
            space_id, repository_url, default_branch=default_branch, root_path=root_path,
            include_patterns=include_patterns, exclude_patterns=exclude_patterns,
            webhook_secret=webhook_secret, commit_message_template=commit_message_template,
        )

    def get_sync_config(self, config_id: str) -> GitSyncConfig:
        return self.store.require_sync_config(config_id)

    def add_branch(self, config_id: str, name: str, head_commit: Optional[str] = None,
                   is_default: bool = False, actor_id: Optional[str] = None) -> GitBranch:
        self._check(actor_id, SyncConfigResource(config_id), Permission.MANAGE)
        return self.sync.add_branch(config_id, name, head_commit, is_default)

    def list_branches(self, config_id: str) -> List[GitBranch]:
        self.store.require_sync_config(config_id)
        return self.store.list_branches(config_id)

    def register_webhook(self, config_id: str, url: str,
                         actor_id: Optional[str] = None) -> str:
        self._check(actor_id, SyncConfigResource(config_id), Permission.MANAGE)
        return self.sync.register_webhook(config_id, url)

    def trigger_sync(self, config_id: str, direction: str,
                     actor_id: Optional[str] = None,
                     triggered_by: SyncTrigger = SyncTrigger.USER) -> str:
        """Start a sync in the background and return its history id."""
        self._check(actor_id, SyncConfigResource(config_id), Permission.EDIT)
        return self.sync.trigger(config_id, direction, triggered_by)

    def wait_for_sync(self, history_id: str, timeout: Optional[float] = None) -> SyncHistory:
        return self.sync.wait(history_id, timeout)

    def handle_webhook(self, config_id: str, payload: Any,
                       signature: Optional[str] = None) -> str:
        return self.sync.handle_webhook(config_id, payload, signature)

    def list_sync_history(self, config_id: str) -> List[SyncHistory]:
        self.store.require_sync_config(config_id)
        return self.store.list_history(config_id)

    def list_commits(self, config_id: str) -> List[GitCommit]:
        """Commits pulled or pushed by a config, in the order they were recorded."""
        self.store.require_sync_config(config_id)
        return self.store.list_commits(config_id)

    def sweep_stuck_syncs(self) -> List[str]:
        return self.sync.sweep_stuck_syncs()

    def start_watchdog(self) -> None:
        self.watchdog.start()

    def resolve_conflict(self, page_id: str, choice: str, content: Optional[str] = None,
                         author: Optional[str] = None) -> Page:
        self._check(author, PageResource(page_id), Permission.EDIT)
        return self.resolver.resolve(page_id, choice, content=content, author=author)

    # ------------------------------------------------------------------
    # Change requests
    # ------------------------------------------------------------------

    def create_change_request(self, space_id: str, title: str, source_branch: str,
                              target_branch: str, created_by: str,
                              description: Optional[str] = None) -> ChangeRequest:
        self._check(created_by, SpaceResource(space_id), Permission.EDIT)
        return self.workflow.create(space_id, title, source_branch, target_branch,
                                    created_by, description)

    def get_change_request(self, change_request_id: str) -> ChangeRequest:
        return self.store.require_change_request(change_request_id)

    def list_change_requests(self, space_id: str) -> List[ChangeRequest]:
        return self.store.list_change_requests(space_id)

    def list_changes(self, change_request_id: str) -> List[ChangeRequestChange]:
        self.store.require_change_request(change_request_id)
        return self.store.list_changes(change_request_id)

    def list_reviews(self, change_request_id: str) -> List[Review]:
        self.store.require_change_request(change_request_id)
        return self.store.list_reviews(change_request_id)

    def add_reviewer(self, change_request_id: str, reviewer_id: str,
                     actor_id: str) -> ChangeRequest:
        self._check(actor_id, ChangeRequestResource(change_request_id), Permission.EDIT)
        return self.workflow.add_reviewer(change_request_id, reviewer_id, actor_id)

    def propose_update(self, change_request_id: str, page_id: str, actor_id: str,
                       blocks: Optional[List[BlockNode]] = None,
                       title: Optional[str] = None) -> ChangeRequestChange:
        self._check(actor_id, ChangeRequestResource(change_request_id), Permission.EDIT)
        return self.workflow.propose_update(change_request_id, page_id, actor_id,
                                            blocks=blocks, title=title)

    def propose_create(self, change_request_id: str, actor_id: str, title: str,
                       parent_id: Optional[str] = None, slug: Optional[str] = None,
                       blocks: Optional[List[BlockNode]] = None) -> ChangeRequestChange:
        self._check(actor_id, ChangeRequestResource(change_request_id), Permission.EDIT)
        return self.workflow.propose_create(change_request_id, actor_id, title,
                                            parent_id=parent_id, slug=slug, blocks=blocks)

    def propose_delete(self, change_request_id: str, page_id: str,
                       actor_id: str) -> ChangeRequestChange:
        self._check(actor_id, ChangeRequestResource(change_request_id), Permission.EDIT)
        return self.workflow.propose_delete(change_request_id, page_id, actor_id)

    def transition_change_request(self, change_request_id: str, action: str, actor_id: str,
                                  body: Optional[str] = None) -> ChangeRequest:
        permission = Permission.MANAGE if action == 'merge' else Permission.COMMENT
        self._check(actor_id, ChangeRequestResource(change_request_id), permission)
        return self.workflow.transition(change_request_id, action, actor_id, body)

    def merge_change_request(self, change_request_id: str, actor_id: str) -> MergeOutcome:
        self._check(actor_id, ChangeRequestResource(change_request_id), Permission.MANAGE)
        return self.workflow.merge(change_request_id, actor_id)

    def resolve_change_conflict(self, change_request_id: str, change_id: str,
                                actor_id: str) -> ChangeRequestChange:
        self._check(actor_id, ChangeRequestResource(change_request_id), Permission.EDIT)
        return self.workflow.resolve_change_conflict(change_request_id, change_id, actor_id)

    def add_comment(self, change_request_id: str, actor_id: str, content: str,
                    page_id: Optional[str] = None, block_id: Optional[str] = None,
                    line_number: Optional[int] = None) -> ChangeRequestComment:
        self._check(actor_id, ChangeRequestResource(change_request_id), Permission.COMMENT)
        return self.workflow.add_comment(change_request_id, actor_id, content, page_id=page_id,
                                         block_id=block_id, line_number=line_number)

    def reply_to_comment(self, change_request_id: str, comment_id: str, actor_id: str,
                         content: str) -> ChangeRequestComment:
        self._check(actor_id, ChangeRequestResource(change_request_id), Permission.COMMENT)
        return self.workflow.reply(change_request_id, comment_id, actor_id, content)

    def resolve_comment(self, change_request_id: str, comment_id: str,
                        actor_id: str) -> ChangeRequestComment:
        self._check(actor_id, ChangeRequestResource(change_request_id), Permission.COMMENT)
        return self.workflow.resolve_comment(change_request_id, comment_id, actor_id)

    def list_comments(self, change_request_id: str) -> List[ChangeRequestComment]:
        self.store.require_change_request(change_request_id)
        return self.store.list_comments(change_request_id)
