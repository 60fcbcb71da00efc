"""Sync orchestration for repository bindings.

SyncEngine owns the sync state machine of every GitSyncConfig:

    idle -> syncing -> {success, conflict, error}

Entering 'syncing' is the single-flight mutex: a trigger while a config is
syncing fails with SyncInProgressError. The terminal states are at rest and
accept a new trigger. Syncs run on a concurrent.futures executor; the
trigger returns the SyncHistory id immediately and wait() blocks until the
run finishes.

The watchdog (sweep_stuck_syncs) marks syncs stuck beyond the configured
timeout as 'error' and releases the mutex. A worker finishing after that
finds it no longer owns the mutex and discards its result.
"""

import logging
import threading
import uuid
from concurrent.futures import CancelledError, Executor, Future, ThreadPoolExecutor
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from src.core.clock import Clock, utc_now
from src.core.errors import (
    DocSyncError,
    SyncCancelledError,
    SyncInProgressError,
    ValidationError,
)
from src.core.settings import EngineSettings
from src.git_mapping.path_mapper import normalize_root
from src.repository.client import RemoteCommit

from .baselines import BaselineManager
from .mapping import build_mapper
from .models import (
    GitBranch,
    GitSyncConfig,
    SyncDirection,
    SyncHistory,
    SyncOperation,
    SyncStatus,
    SyncTrigger,
)
from .pull import PullSync
from .push import PushSync
from .webhook import WebhookEvent, parse_payload, verify_signature

if TYPE_CHECKING:
    from src.content_tree.tree_store import ContentTreeStore
    from src.repository.client import RepositoryClient
    from src.storage.store import ContentStore

logger = logging.getLogger(__name__)


class SyncEngine:
    """Runs pulls, pushes and webhook-triggered pulls for repository bindings.

    Args:
        store: Persistence collaborator
        tree: Content tree store
        repository: Repository collaborator (already wrapped with retries)
        baselines: Baseline manager
        settings: Engine settings (watchdog timeout, workers, extension)
        executor: Executor running the syncs (a thread pool by default)
        clock: Time source
    """

    def __init__(self, store: 'ContentStore', tree: 'ContentTreeStore',
                 repository: 'RepositoryClient', baselines: BaselineManager,
                 settings: Optional[EngineSettings] = None,
                 executor: Optional[Executor] = None, clock: Clock = utc_now):
        self.store = store
        self.tree = tree
        self.repository = repository
        self.baselines = baselines
        self.settings = settings or EngineSettings()
        self.clock = clock
        self.puller = PullSync(store, tree, repository, baselines, clock)
        self.pusher = PushSync(store, tree, repository, baselines, clock)

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self.settings.max_workers,
            thread_name_prefix="docsync-sync",
        )
        self._futures: Dict[str, Future] = {}
        self._futures_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure(
        self,
        space_id: str,
        repository_url: str,
        default_branch: str = "main",
        root_path: str = "docs",
        include_patterns: Optional[List[str]] = None,
        exclude_patterns: Optional[List[str]] = None,
        webhook_secret: Optional[str] = None,
        commit_message_template: Optional[str] = None,
    ) -> GitSyncConfig:
        """Bind a space to a repository, or update its existing binding.

        Raises:
            ValidationError: If the repository or branch is empty, or the
                commit message template has no {summary} placeholder
            SyncInProgressError: If the binding is currently syncing
        """
        if not repository_url or not repository_url.strip():
            raise ValidationError("Repository reference cannot be empty", 'repository_url')
        if not default_branch or not default_branch.strip():
            raise ValidationError("Default branch cannot be empty", 'default_branch')
        if commit_message_template is not None and '{summary}' not in commit_message_template:
            raise ValidationError(
                "Template must contain a {summary} placeholder", 'commit_message_template'
            )

        now = self.clock()
        with self.store.transaction():
            config = self.store.config_for_space(space_id)
            if config is None:
                config = GitSyncConfig(
                    id=str(uuid.uuid4()),
                    space_id=space_id,
                    repository_url=repository_url.strip(),
                    created_at=now,
                )
                self.store.add_sync_config(config)
            elif config.sync_status == SyncStatus.SYNCING:
                raise SyncInProgressError(config.id, config.current_sync_id)

            config.repository_url = repository_url.strip()
            config.default_branch = default_branch.strip()
            config.root_path = normalize_root(root_path)
            if include_patterns is not None:
                config.include_patterns = list(include_patterns)
            if exclude_patterns is not None:
                config.exclude_patterns = list(exclude_patterns)
            if webhook_secret is not None:
                config.webhook_secret = webhook_secret or None
            if commit_message_template is not None:
                config.commit_message_template = commit_message_template
            config.updated_at = now
            config = self.store.save_sync_config(config)
            self._ensure_default_branch(config)

        logger.info(
            f"Space {space_id} bound to {config.repository_url} "
            f"({config.default_branch}:{config.root_path})"
        )
        return config

    def _ensure_default_branch(self, config: GitSyncConfig) -> None:
        branch = self.store.find_branch(config.id, config.default_branch)
        if branch is None:
            self.store.add_branch(GitBranch(
                id=str(uuid.uuid4()),
                config_id=config.id,
                name=config.default_branch,
                is_default=True,
                created_at=self.clock(),
            ))
        elif not branch.is_default:
            branch.is_default = True
            branch.updated_at = self.clock()
            self.store.save_branch(branch)

    def add_branch(self, config_id: str, name: str, head_commit: Optional[str] = None,
                   is_default: bool = False) -> GitBranch:
        """Register a branch of the config's repository.

        Making the branch the default also makes it the branch live pages
        follow.

        Raises:
            ConflictError: If the branch name is already registered
            ValidationError: If the name is empty
        """
        if not name or not name.strip():
            raise ValidationError("Branch name cannot be empty", 'name')

        with self.store.transaction():
            config = self.store.require_sync_config(config_id)
            branch = self.store.add_branch(GitBranch(
                id=str(uuid.uuid4()),
                config_id=config_id,
                name=name.strip(),
                head_commit=head_commit,
                is_default=is_default,
                created_at=self.clock(),
            ))
            if is_default:
                config.default_branch = branch.name
                config.updated_at = self.clock()
                self.store.save_sync_config(config)

        logger.info(f"Added branch {branch.name} to config {config_id}")
        return branch

    def register_webhook(self, config_id: str, url: str) -> str:
        """Register a push webhook with the repository and remember its id."""
        config = self.store.require_sync_config(config_id)
        secret = config.webhook_secret or self.settings.webhook_secret
        webhook_id = self.repository.register_webhook(url, secret)

        with self.store.transaction():
            config = self.store.require_sync_config(config_id)
            config.webhook_id = webhook_id
            config.updated_at = self.clock()
            self.store.save_sync_config(config)
        return webhook_id

    # ------------------------------------------------------------------
    # Running syncs
    # ------------------------------------------------------------------

    def trigger(self, config_id: str, direction: str,
                triggered_by: SyncTrigger = SyncTrigger.USER) -> str:
        """Start a pull or push in the background.

        Returns:
            Id of the SyncHistory record of the run

        Raises:
            NotFoundError: If the config does not exist
            ValidationError: If direction is not push or pull
            SyncInProgressError: If the config is already syncing
        """
        try:
            direction = SyncDirection(direction)
        except ValueError:
            raise ValidationError(f"Unknown sync direction '{direction}'", 'direction')

        config = self.store.require_sync_config(config_id)
        operation = SyncOperation.INCREMENTAL if config.last_sync_commit else SyncOperation.FULL_SYNC
        return self._start(config_id, direction, operation, triggered_by)

    def handle_webhook(self, config_id: str, payload: Any,
                       signature: Optional[str] = None) -> str:
        """Handle a push webhook delivery.

        Redelivered events whose commits were all processed already return
        the history id that processed them. Pushes to other branches only
        update the branch head.

        Returns:
            Id of the SyncHistory record handling the event

        Raises:
            ForbiddenError: If the signature does not verify
            ValidationError: If the payload is not a push event
            SyncInProgressError: If the config is already syncing
        """
        config = self.store.require_sync_config(config_id)
        verify_signature(config.webhook_secret or self.settings.webhook_secret,
                         payload, signature)
        event = parse_payload(payload)

        if event.branch != config.default_branch:
            return self._record_branch_push(config, event)

        recorded = [self.store.find_commit(config_id, sha) for sha in event.commit_shas]
        if recorded and all(recorded):
            for commit in reversed(recorded):
                if commit.sync_history_id:
                    logger.info(
                        f"Webhook for {event.commit_shas[-1][:8]} already processed by "
                        f"sync {commit.sync_history_id}"
                    )
                    return commit.sync_history_id
            return self._record_completed(config, event, {'duplicate': True})

        return self._start(
            config_id,
            SyncDirection.PULL,
            SyncOperation.WEBHOOK,
            SyncTrigger.WEBHOOK,
            extra_commits=event.commits,
            metadata={'ref': event.ref, 'after': event.after},
        )

    def wait(self, history_id: str, timeout: Optional[float] = None) -> SyncHistory:
        """Block until a sync finishes and return its history record.

        Raises:
            concurrent.futures.TimeoutError: If the sync is still running
                after timeout seconds
        """
        with self._futures_lock:
            future = self._futures.get(history_id)

        if future is not None:
            try:
                future.result(timeout=timeout)
            except CancelledError:
                logger.debug(f"Sync {history_id} was cancelled before it ran")
            with self._futures_lock:
                self._futures.pop(history_id, None)

        return self.store.require_history(history_id)

    def sweep_stuck_syncs(self, now: Optional[datetime] = None) -> List[str]:
        """Fail syncs that have been running longer than the watchdog timeout.

        Returns:
            History ids of the syncs that were timed out
        """
        now = now or self.clock()
        timeout = self.settings.watchdog_timeout_seconds
        swept = []

        for config in self.store.list_sync_configs():
            if config.sync_status != SyncStatus.SYNCING or config.sync_started_at is None:
                continue
            if (now - config.sync_started_at).total_seconds() <= timeout:
                continue

            message = f"Sync timed out after {timeout:g}s"
            history_id = config.current_sync_id
            with self.store.transaction():
                current = self.store.require_sync_config(config.id)
                if current.sync_status != SyncStatus.SYNCING or \
                        current.current_sync_id != history_id:
                    continue
                history = self.store.get_history(history_id) if history_id else None
                if history is not None and not history.is_completed:
                    self._complete(history, SyncStatus.ERROR, now, error=message)
                self._release(current, SyncStatus.ERROR, now, error=message)

            with self._futures_lock:
                future = self._futures.get(history_id)
            if future is not None:
                future.cancel()

            logger.warning(f"Config {config.id}: sync {history_id} stuck, marked as error")
            swept.append(history_id)

        return swept

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _start(self, config_id: str, direction: SyncDirection, operation: SyncOperation,
               triggered_by: SyncTrigger, extra_commits: Optional[List[RemoteCommit]] = None,
               metadata: Optional[Dict[str, Any]] = None) -> str:
        now = self.clock()
        with self.store.transaction():
            config = self.store.require_sync_config(config_id)
            if config.sync_status == SyncStatus.SYNCING:
                raise SyncInProgressError(config_id, config.current_sync_id)

            history = self.store.add_history(SyncHistory(
                id=str(uuid.uuid4()),
                config_id=config_id,
                operation=operation,
                direction=direction,
                status=SyncStatus.SYNCING,
                started_at=now,
                start_commit=config.last_sync_commit,
                triggered_by=triggered_by,
                metadata=metadata or {},
            ))
            config.sync_status = SyncStatus.SYNCING
            config.current_sync_id = history.id
            config.sync_started_at = now
            config.updated_at = now
            self.store.save_sync_config(config)

        logger.info(f"Started {direction.value} sync {history.id} for config {config_id}")
        with self._futures_lock:
            future = self._executor.submit(
                self._run, config_id, history.id, direction, extra_commits
            )
            self._futures[history.id] = future
        return history.id

    def _run(self, config_id: str, history_id: str, direction: SyncDirection,
             extra_commits: Optional[List[RemoteCommit]] = None) -> None:
        try:
            config = self.store.require_sync_config(config_id)
            mapper = build_mapper(config, self.tree, self.settings.file_extension)

            if direction == SyncDirection.PULL:
                plan = self.puller.fetch(config, mapper, extra_commits)
                with self.store.transaction():
                    config, history = self._ensure_current(config_id, history_id)
                    self.puller.apply(config, mapper, plan, history)
                    self._finish(config, history)
            else:
                plan = self.pusher.prepare(config, mapper)
                with self.store.transaction():
                    config, history = self._ensure_current(config_id, history_id)
                    self.pusher.apply(config, plan, history)
                    self._finish(config, history)
        except SyncCancelledError as e:
            logger.warning(str(e))
        except DocSyncError as e:
            self._fail(config_id, history_id, e)
        except Exception as e:
            self._fail(config_id, history_id, e)
            raise

    def _ensure_current(self, config_id: str, history_id: str) -> Tuple[GitSyncConfig, SyncHistory]:
        config = self.store.require_sync_config(config_id)
        history = self.store.require_history(history_id)
        if (config.sync_status != SyncStatus.SYNCING
                or config.current_sync_id != history_id
                or history.is_completed):
            raise SyncCancelledError(config_id, history_id)
        return config, history

    def _finish(self, config: GitSyncConfig, history: SyncHistory) -> None:
        now = self.clock()
        pending = any(page.has_conflict for page in self.store.list_pages(config.space_id))
        status = SyncStatus.CONFLICT if pending else SyncStatus.SUCCESS

        self._complete(history, status, now)
        config.last_sync_at = history.started_at
        self._release(config, status, now)

        logger.info(
            f"Sync {history.id} finished with {status.value}: "
            f"{history.files_processed} file(s), {history.pages_created} created, "
            f"{history.pages_updated} updated, {history.pages_deleted} deleted, "
            f"{len(history.conflicts)} conflict(s)"
        )

    def _fail(self, config_id: str, history_id: str, error: Exception) -> None:
        message = str(error)
        now = self.clock()
        with self.store.transaction():
            config = self.store.require_sync_config(config_id)
            history = self.store.require_history(history_id)
            if config.current_sync_id != history_id or history.is_completed:
                logger.warning(f"Sync {history_id} failed after it was cancelled: {message}")
                return
            self._complete(history, SyncStatus.ERROR, now, error=message)
            self._release(config, SyncStatus.ERROR, now, error=message)
        logger.error(f"Sync {history_id} of config {config_id} failed: {message}")

    def _complete(self, history: SyncHistory, status: SyncStatus, now: datetime,
                  error: Optional[str] = None) -> None:
        history.status = status
        if error:
            history.errors.append(error)
        history.completed_at = now
        history.duration_ms = int((now - history.started_at).total_seconds() * 1000)
        self.store.save_history(history)

    def _release(self, config: GitSyncConfig, status: SyncStatus, now: datetime,
                 error: Optional[str] = None) -> None:
        config.sync_status = status
        config.last_error = error
        config.current_sync_id = None
        config.sync_started_at = None
        config.updated_at = now
        self.store.save_sync_config(config)

    # ------------------------------------------------------------------
    # Webhook helpers
    # ------------------------------------------------------------------

    def _record_branch_push(self, config: GitSyncConfig, event: WebhookEvent) -> str:
        with self.store.transaction():
            branch = self.store.find_branch(config.id, event.branch)
            if branch is not None and event.after:
                branch.head_commit = event.after
                branch.updated_at = self.clock()
                self.store.save_branch(branch)
            history_id = self._record_completed(config, event, {'ignored': True})

        logger.info(f"Webhook for branch {event.branch} recorded, live pages follow "
                    f"{config.default_branch}")
        return history_id

    def _record_completed(self, config: GitSyncConfig, event: WebhookEvent,
                          metadata: Dict[str, Any]) -> str:
        now = self.clock()
        history = self.store.add_history(SyncHistory(
            id=str(uuid.uuid4()),
            config_id=config.id,
            operation=SyncOperation.WEBHOOK,
            direction=SyncDirection.PULL,
            status=SyncStatus.SUCCESS,
            started_at=now,
            start_commit=config.last_sync_commit,
            end_commit=config.last_sync_commit,
            completed_at=now,
            duration_ms=0,
            triggered_by=SyncTrigger.WEBHOOK,
            metadata=dict(metadata, ref=event.ref, after=event.after),
        ))
        return history.id
