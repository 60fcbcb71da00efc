"""Change request workflow: proposals, review state machine and merge.

State machine:

    draft -> pending_review -> in_review -> {approved, rejected} -> {merged, closed}

- submit: creator only, draft with at least one change
- start_review: assigned reviewer, pending_review
- approve / reject / comment: assigned reviewer, recorded as a Review upsert;
  approval reaches 'approved' once enough reviewers approved
- close: creator or assigned reviewer, any non-terminal state
- add_comment / reply / resolve_comment: threaded discussion on open requests,
  optionally anchored to a page, block or line; threads are resolved by their
  author, the creator or a reviewer
- merge: see ChangeRequestWorkflow.merge

Merging holds the (space, target branch) lock. The repository commit is
created first; only when the repository accepts it are the changes applied
to the live pages, in a single store transaction together with the merge
commit record and the merged status. A rejected commit therefore aborts the
merge with nothing applied and the status unchanged. Conflicts are checked
again inside that transaction; when a page changed while the commit was
created, or the apply fails, the merge commit is reverted with a follow-up
commit and recorded as failed.
"""

import logging
import uuid
from typing import TYPE_CHECKING, Dict, List, Optional

from src.content_tree.blocks import BlockNode
from src.content_tree.models import Page
from src.content_tree.slug import SlugConverter
from src.content_tree.tree_store import join_path
from src.core.clock import Clock, utc_now
from src.core.errors import (
    ApprovalRequiredError,
    ConflictError,
    DuplicatePathError,
    ExternalServiceError,
    ForbiddenError,
    InvalidTransitionError,
    MergeConflictError,
    NotFoundError,
    ValidationError,
)
from src.core.settings import EngineSettings
from src.sync.baselines import BaselineManager
from src.sync.mapping import build_mapper
from src.sync.models import CommitResult, GitCommit, GitSyncConfig, SyncDirection

from .branch_locks import BranchLockManager
from .diff import diff_blocks, make_snapshot, same_content, snapshot_from_nodes, snapshot_nodes
from .models import (
    ChangeRequest,
    ChangeRequestAction,
    ChangeRequestChange,
    ChangeRequestComment,
    ChangeRequestStatus,
    ChangeType,
    MergeOutcome,
    Review,
    ReviewStatus,
)

if TYPE_CHECKING:
    from src.content_tree.tree_store import ContentTreeStore
    from src.repository.client import RepositoryClient
    from src.storage.store import ContentStore

logger = logging.getLogger(__name__)

REVIEWABLE_STATES = (ChangeRequestStatus.PENDING_REVIEW, ChangeRequestStatus.IN_REVIEW)


class ChangeRequestWorkflow:
    """Creates, reviews and merges change requests.

    Args:
        store: Persistence collaborator
        tree: Content tree store the merged changes are applied to
        repository: Repository collaborator receiving merge commits
        baselines: Baseline manager (merged files become the new base)
        locks: Per-(space, branch) merge locks
        settings: Approval policy and merge lock timeout
        clock: Time source
    """

    def __init__(self, store: 'ContentStore', tree: 'ContentTreeStore',
                 repository: 'RepositoryClient', baselines: BaselineManager,
                 locks: Optional[BranchLockManager] = None,
                 settings: Optional[EngineSettings] = None, clock: Clock = utc_now):
        self.store = store
        self.tree = tree
        self.repository = repository
        self.baselines = baselines
        self.locks = locks or BranchLockManager()
        self.settings = settings or EngineSettings()
        self.clock = clock

    # ------------------------------------------------------------------
    # Creation and proposals
    # ------------------------------------------------------------------

    def create(self, space_id: str, title: str, source_branch: str, target_branch: str,
               created_by: str, description: Optional[str] = None) -> ChangeRequest:
        """Open a draft change request.

        Raises:
            ValidationError: If the title or a branch is empty, or both
                branches are the same
            NotFoundError: If the space has no sync config or the target
                branch is unknown
        """
        if not title or not title.strip():
            raise ValidationError("Change request title cannot be empty", 'title')
        if not source_branch or not target_branch:
            raise ValidationError("Source and target branch are required", 'source_branch')
        if source_branch == target_branch:
            raise ValidationError(
                f"Source and target branch are both '{source_branch}'", 'source_branch'
            )

        config = self._config_for(space_id)
        if self.store.find_branch(config.id, target_branch) is None:
            raise NotFoundError("GitBranch", target_branch)

        now = self.clock()
        change_request = self.store.add_change_request(ChangeRequest(
            id=str(uuid.uuid4()),
            space_id=space_id,
            title=title.strip(),
            description=description,
            source_branch=source_branch,
            target_branch=target_branch,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        ))
        logger.info(f"Created change request {change_request.id} '{change_request.title}'")
        return change_request

    def add_reviewer(self, change_request_id: str, reviewer_id: str,
                     actor_id: str) -> ChangeRequest:
        """Assign a reviewer (creator only)."""
        with self.store.transaction():
            change_request = self.store.require_change_request(change_request_id)
            self._require_creator(change_request, actor_id, 'assign reviewers to')
            self._require_open(change_request, 'assign reviewers to')
            if reviewer_id == change_request.created_by:
                raise ValidationError("The creator cannot review their own change request",
                                      'reviewer_id')
            if reviewer_id in change_request.reviewers:
                return change_request

            change_request.reviewers.append(reviewer_id)
            change_request.updated_at = self.clock()
            self.store.upsert_review(Review(
                id=str(uuid.uuid4()),
                change_request_id=change_request_id,
                reviewer_id=reviewer_id,
                created_at=self.clock(),
            ))
            return self.store.save_change_request(change_request)

    def propose_update(self, change_request_id: str, page_id: str, actor_id: str,
                       blocks: Optional[List[BlockNode]] = None,
                       title: Optional[str] = None) -> ChangeRequestChange:
        """Propose new content for an existing page.

        Proposing again for the same page replaces the earlier proposal.
        """
        with self.store.transaction():
            change_request = self._require_draft(change_request_id, actor_id)
            page = self._require_space_page(change_request, page_id)
            current_blocks = self.store.get_blocks(page_id)
            before = make_snapshot(page.title, current_blocks)
            new_title = title.strip() if title and title.strip() else page.title
            after = snapshot_from_nodes(
                page_id, new_title,
                blocks if blocks is not None else self.tree.get_blocks(page_id),
            )
            existing = self._find_change(change_request_id, page_id=page_id)
            if existing is not None and existing.change_type == ChangeType.DELETE:
                raise ValidationError(f"Page {page.path} is already proposed for deletion",
                                      'page_id')

            change = existing or ChangeRequestChange(
                id=str(uuid.uuid4()),
                change_request_id=change_request_id,
                change_type=ChangeType.UPDATE,
                path=page.path,
                page_id=page_id,
                created_at=self.clock(),
            )
            change.before_snapshot = before
            change.after_snapshot = after
            change.block_changes = diff_blocks(before, after)
            change.base_version = self.store.latest_version_number(page_id)
            change.has_conflict = False
            change.conflict_reason = None
            return self._save_change(change, existing is None)

    def propose_create(self, change_request_id: str, actor_id: str, title: str,
                       parent_id: Optional[str] = None, slug: Optional[str] = None,
                       blocks: Optional[List[BlockNode]] = None) -> ChangeRequestChange:
        """Propose a new page under parent_id (or at the space root).

        Raises:
            DuplicatePathError: If the path is already taken
        """
        if not title or not title.strip():
            raise ValidationError("Page title cannot be empty", 'title')
        slug = SlugConverter.validate(slug) if slug else SlugConverter.title_to_slug(title)

        with self.store.transaction():
            change_request = self._require_draft(change_request_id, actor_id)
            parent = self._require_space_page(change_request, parent_id) if parent_id else None
            path = join_path(parent.path if parent else None, slug)
            if self.store.find_page_by_path(change_request.space_id, path) is not None:
                raise DuplicatePathError(change_request.space_id, path)
            if self._find_change(change_request_id, path=path) is not None:
                raise DuplicatePathError(change_request.space_id, path)

            after = snapshot_from_nodes('', title.strip(), blocks or [])
            change = ChangeRequestChange(
                id=str(uuid.uuid4()),
                change_request_id=change_request_id,
                change_type=ChangeType.CREATE,
                path=path,
                parent_id=parent_id,
                after_snapshot=after,
                block_changes=diff_blocks(None, after),
                created_at=self.clock(),
            )
            return self._save_change(change, True)

    def propose_delete(self, change_request_id: str, page_id: str,
                       actor_id: str) -> ChangeRequestChange:
        """Propose deleting a page (and its subtree)."""
        with self.store.transaction():
            change_request = self._require_draft(change_request_id, actor_id)
            page = self._require_space_page(change_request, page_id)
            before = make_snapshot(page.title, self.store.get_blocks(page_id))
            existing = self._find_change(change_request_id, page_id=page_id)

            change = existing or ChangeRequestChange(
                id=str(uuid.uuid4()),
                change_request_id=change_request_id,
                change_type=ChangeType.DELETE,
                path=page.path,
                page_id=page_id,
                created_at=self.clock(),
            )
            change.change_type = ChangeType.DELETE
            change.before_snapshot = before
            change.after_snapshot = None
            change.block_changes = diff_blocks(before, None)
            change.base_version = self.store.latest_version_number(page_id)
            change.has_conflict = False
            change.conflict_reason = None
            return self._save_change(change, existing is None)

    def resolve_change_conflict(self, change_request_id: str, change_id: str,
                                actor_id: str) -> ChangeRequestChange:
        """Rebase a conflicting change onto the current page content.

        The proposed content is kept; the before snapshot and base version
        move to the page's current state.

        Raises:
            ValidationError: If the change cannot be rebased (its page is
                gone, or its create path is still taken)
        """
        with self.store.transaction():
            change_request = self.store.require_change_request(change_request_id)
            self._require_creator(change_request, actor_id, 'resolve conflicts of')
            self._require_open(change_request, 'resolve conflicts of')
            change = self.store.require_change(change_id)
            if change.change_request_id != change_request_id:
                raise NotFoundError("ChangeRequestChange", change_id)
            if not change.has_conflict:
                return change

            if change.change_type == ChangeType.CREATE:
                if self.store.find_page_by_path(change_request.space_id, change.path):
                    raise ValidationError(
                        f"Path {change.path} is still taken; propose the page elsewhere",
                        'path'
                    )
            else:
                page = self.store.get_page(change.page_id)
                if page is None or page.is_deleted:
                    raise ValidationError(
                        f"Page {change.path} no longer exists and cannot be rebased",
                        'page_id'
                    )
                change.before_snapshot = make_snapshot(
                    page.title, self.store.get_blocks(page.id)
                )
                change.block_changes = diff_blocks(change.before_snapshot, change.after_snapshot)
                change.base_version = self.store.latest_version_number(page.id)

            change.has_conflict = False
            change.conflict_reason = None
            change = self.store.save_change(change)

        logger.info(f"Rebased change {change_id} of change request {change_request_id}")
        return change

    # ------------------------------------------------------------------
    # Review state machine
    # ------------------------------------------------------------------

    def transition(self, change_request_id: str, action: str, actor_id: str,
                   body: Optional[str] = None) -> ChangeRequest:
        """Apply a workflow action.

        Raises:
            ValidationError: If the action is unknown, or submitting without changes
            ForbiddenError: If the actor may not perform the action
            InvalidTransitionError: If the action is not allowed in the current state
        """
        try:
            action = ChangeRequestAction(action)
        except ValueError:
            raise ValidationError(f"Unknown change request action '{action}'", 'action')

        if action == ChangeRequestAction.MERGE:
            self.merge(change_request_id, actor_id)
            return self.store.require_change_request(change_request_id)

        with self.store.transaction():
            change_request = self.store.require_change_request(change_request_id)
            previous = change_request.status
            handler = {
                ChangeRequestAction.SUBMIT: self._submit,
                ChangeRequestAction.START_REVIEW: self._start_review,
                ChangeRequestAction.APPROVE: self._approve,
                ChangeRequestAction.REJECT: self._reject,
                ChangeRequestAction.COMMENT: self._comment,
                ChangeRequestAction.CLOSE: self._close,
            }[action]
            handler(change_request, actor_id, body)
            change_request.updated_at = self.clock()
            change_request = self.store.save_change_request(change_request)

        logger.info(
            f"Change request {change_request_id}: {action.value} by {actor_id} "
            f"({previous.value} -> {change_request.status.value})"
        )
        return change_request

    def _submit(self, change_request: ChangeRequest, actor_id: str, body) -> None:
        self._require_creator(change_request, actor_id, 'submit')
        self._require_state(change_request, 'submit', ChangeRequestStatus.DRAFT)
        if not self.store.list_changes(change_request.id):
            raise ValidationError("A change request needs at least one change to be submitted")
        change_request.status = ChangeRequestStatus.PENDING_REVIEW

    def _start_review(self, change_request: ChangeRequest, actor_id: str, body) -> None:
        self._require_reviewer(change_request, actor_id, 'start reviewing')
        self._require_state(change_request, 'start reviewing',
                            ChangeRequestStatus.PENDING_REVIEW)
        change_request.status = ChangeRequestStatus.IN_REVIEW

    def _approve(self, change_request: ChangeRequest, actor_id: str, body) -> None:
        self._require_reviewer(change_request, actor_id, 'approve')
        self._require_state(change_request, 'approve', *REVIEWABLE_STATES,
                            ChangeRequestStatus.APPROVED)
        self._record_review(change_request, actor_id, ReviewStatus.APPROVED, body)
        if actor_id not in change_request.approved_by:
            change_request.approved_by.append(actor_id)

        required = max(self.settings.approvals_required_for(change_request.space_id), 1)
        if len(change_request.approved_by) >= required:
            change_request.status = ChangeRequestStatus.APPROVED
        else:
            change_request.status = ChangeRequestStatus.IN_REVIEW

    def _reject(self, change_request: ChangeRequest, actor_id: str, body) -> None:
        self._require_reviewer(change_request, actor_id, 'reject')
        self._require_state(change_request, 'reject', *REVIEWABLE_STATES)
        self._record_review(change_request, actor_id, ReviewStatus.CHANGES_REQUESTED, body)
        if actor_id in change_request.approved_by:
            change_request.approved_by.remove(actor_id)
        change_request.status = ChangeRequestStatus.REJECTED

    def _comment(self, change_request: ChangeRequest, actor_id: str, body) -> None:
        self._require_reviewer(change_request, actor_id, 'comment on')
        self._require_state(change_request, 'comment on', *REVIEWABLE_STATES,
                            ChangeRequestStatus.APPROVED, ChangeRequestStatus.REJECTED)
        current = self.store.get_review(change_request.id, actor_id)
        status = ReviewStatus.COMMENTED
        if current is not None and current.status in (ReviewStatus.APPROVED,
                                                       ReviewStatus.CHANGES_REQUESTED):
            status = current.status
        self._record_review(change_request, actor_id, status, body)
        if change_request.status == ChangeRequestStatus.PENDING_REVIEW:
            change_request.status = ChangeRequestStatus.IN_REVIEW

    def _close(self, change_request: ChangeRequest, actor_id: str, body) -> None:
        if actor_id != change_request.created_by and actor_id not in change_request.reviewers:
            raise ForbiddenError(
                f"Only the creator or a reviewer can close change request {change_request.id}"
            )
        self._require_open(change_request, 'close')
        change_request.status = ChangeRequestStatus.CLOSED

    def _record_review(self, change_request: ChangeRequest, reviewer_id: str,
                       status: ReviewStatus, body: Optional[str]) -> Review:
        now = self.clock()
        return self.store.upsert_review(Review(
            id=str(uuid.uuid4()),
            change_request_id=change_request.id,
            reviewer_id=reviewer_id,
            status=status,
            body=body,
            submitted_at=now,
            created_at=now,
            updated_at=now,
        ))

    # ------------------------------------------------------------------
    # Discussion
    # ------------------------------------------------------------------

    def add_comment(self, change_request_id: str, actor_id: str, content: str,
                    page_id: Optional[str] = None, block_id: Optional[str] = None,
                    line_number: Optional[int] = None) -> ChangeRequestComment:
        """Start a discussion thread, optionally anchored to a page.

        Raises:
            ValidationError: If the content is empty or the anchor does not
                point into a page of the change request's space
            InvalidTransitionError: If the request is merged or closed
        """
        content = self._validate_comment(content)
        with self.store.transaction():
            change_request = self.store.require_change_request(change_request_id)
            self._require_open(change_request, 'comment on')
            if page_id is not None:
                self._require_space_page(change_request, page_id)
                if block_id is not None:
                    block = self.store.get_block(block_id)
                    if block is None or block.page_id != page_id:
                        raise ValidationError(
                            f"Block {block_id} is not part of page {page_id}", 'block_id'
                        )
                if line_number is not None and line_number < 1:
                    raise ValidationError("Line numbers start at 1", 'line_number')
            elif block_id is not None or line_number is not None:
                raise ValidationError("Block and line anchors need a page", 'page_id')

            comment = self.store.add_comment(ChangeRequestComment(
                id=str(uuid.uuid4()),
                change_request_id=change_request_id,
                created_by=actor_id,
                content=content,
                page_id=page_id,
                block_id=block_id,
                line_number=line_number,
                created_at=self.clock(),
                updated_at=self.clock(),
            ))
        logger.debug(f"Comment {comment.id} added to change request {change_request_id}")
        return comment

    def reply(self, change_request_id: str, comment_id: str, actor_id: str,
              content: str) -> ChangeRequestComment:
        """Reply to a thread. Replies to a reply join the same thread."""
        content = self._validate_comment(content)
        with self.store.transaction():
            change_request = self.store.require_change_request(change_request_id)
            self._require_open(change_request, 'comment on')
            thread = self._thread_of(change_request_id, comment_id)
            if thread.is_resolved:
                raise ValidationError(f"Thread {thread.id} is resolved", 'comment_id')

            return self.store.add_comment(ChangeRequestComment(
                id=str(uuid.uuid4()),
                change_request_id=change_request_id,
                created_by=actor_id,
                content=content,
                parent_comment_id=thread.id,
                created_at=self.clock(),
                updated_at=self.clock(),
            ))

    def resolve_comment(self, change_request_id: str, comment_id: str,
                        actor_id: str) -> ChangeRequestComment:
        """Mark a thread resolved.

        Raises:
            ForbiddenError: If the actor is not the thread author, the
                creator or an assigned reviewer
            ValidationError: If the thread is already resolved
        """
        with self.store.transaction():
            change_request = self.store.require_change_request(change_request_id)
            self._require_open(change_request, 'resolve comments on')
            thread = self._thread_of(change_request_id, comment_id)
            participants = {thread.created_by, change_request.created_by,
                            *change_request.reviewers}
            if actor_id not in participants:
                raise ForbiddenError(
                    f"Only the thread author, the creator or a reviewer can resolve "
                    f"thread {thread.id}"
                )
            if thread.is_resolved:
                raise ValidationError(f"Thread {thread.id} is already resolved", 'comment_id')

            thread.is_resolved = True
            thread.resolved_by = actor_id
            thread.resolved_at = self.clock()
            thread.updated_at = thread.resolved_at
            thread = self.store.save_comment(thread)
        logger.info(f"Thread {thread.id} on change request {change_request_id} resolved")
        return thread

    def _thread_of(self, change_request_id: str, comment_id: str) -> ChangeRequestComment:
        comment = self.store.require_comment(comment_id)
        if comment.change_request_id != change_request_id:
            raise NotFoundError("ChangeRequestComment", comment_id)
        if comment.parent_comment_id is not None:
            return self.store.require_comment(comment.parent_comment_id)
        return comment

    @staticmethod
    def _validate_comment(content: str) -> str:
        if not content or not content.strip():
            raise ValidationError("Comment cannot be empty", 'content')
        return content.strip()

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def merge(self, change_request_id: str, actor_id: str) -> MergeOutcome:
        """Merge an approved change request into its target branch.

        Returns:
            MergeOutcome with the merge commit id and the affected page ids

        Raises:
            ForbiddenError: If the actor is neither creator nor reviewer
            ApprovalRequiredError: If the request lacks approval
            InvalidTransitionError: If the request is already merged or closed
            MergeConflictError: If a change conflicts with the current pages,
                before or after the commit (the conflicting changes are marked
                and a landed merge commit is reverted before raising)
            LockTimeoutError: If another merge holds the branch lock
            ExternalServiceError: If the repository rejects the commit
        """
        change_request = self.store.require_change_request(change_request_id)
        if actor_id != change_request.created_by and actor_id not in change_request.reviewers:
            raise ForbiddenError(
                f"Only the creator or a reviewer can merge change request {change_request_id}"
            )
        self._require_mergeable(change_request)

        config = self._config_for(change_request.space_id)
        branch = self.store.find_branch(config.id, change_request.target_branch)
        if branch is None:
            raise NotFoundError("GitBranch", change_request.target_branch)
        live = branch.name == config.default_branch

        with self.locks.hold(change_request.space_id, branch.name,
                             self.settings.merge_lock_timeout_seconds):
            changes = self.store.list_changes(change_request_id)
            if not changes:
                raise ValidationError("Change request has no changes to merge")
            self._check_conflicts(change_request, changes, live)

            mapper = build_mapper(config, self.tree, self.settings.file_extension)
            head = self.repository.head_commit(branch.name)
            files = self._render_files(config, mapper, changes, head)
            originals = {
                path: self.repository.get_file_contents(path, head) if head else None
                for path in files
            }
            message = config.commit_message_template.format(
                summary=f"merge change request '{change_request.title}'"
            )
            sha = self.repository.create_commit(files, message, branch.name)

            reasons: List[str] = []
            try:
                with self.store.transaction():
                    change_request = self.store.require_change_request(change_request_id)
                    self._require_mergeable(change_request)
                    changes = self.store.list_changes(change_request_id)
                    if live:
                        reasons = self._mark_conflicts(change_request, changes, live)
                    if not reasons:
                        affected = self._record_merge(
                            config, mapper, change_request, changes, files, branch.name,
                            sha, message, actor_id, live,
                        )
            except ConflictError as e:
                self._revert_merge_commit(config, branch.name, files, originals, sha,
                                          message, change_request_id, actor_id)
                raise MergeConflictError(change_request_id, [str(e)]) from e
            except Exception:
                self._revert_merge_commit(config, branch.name, files, originals, sha,
                                          message, change_request_id, actor_id)
                raise

            if reasons:
                self._revert_merge_commit(config, branch.name, files, originals, sha,
                                          message, change_request_id, actor_id)
                logger.warning(
                    f"Change request {change_request_id} conflicted while merging: "
                    f"{len(reasons)} conflict(s)"
                )
                raise MergeConflictError(change_request_id, reasons)

        logger.info(
            f"Merged change request {change_request_id} into {branch.name} as {sha[:8]} "
            f"({len(affected)} page(s) affected)"
        )
        return MergeOutcome(
            change_request_id=change_request_id,
            merged_commit_id=sha,
            pages_affected=affected,
        )

    def _record_merge(self, config: GitSyncConfig, mapper, change_request: ChangeRequest,
                      changes: List[ChangeRequestChange], files: Dict[str, Optional[str]],
                      branch_name: str, sha: str, message: str, actor_id: str,
                      live: bool) -> List[str]:
        """Apply the merged changes and record the merge. Runs inside a transaction."""
        affected = self._apply_changes(change_request, changes, actor_id, sha) if live else []
        if live:
            for file_path, content in files.items():
                if content is None:
                    self.baselines.remove(config.id, file_path)
                else:
                    self.baselines.update(
                        config.id, file_path, mapper.canonicalize(file_path, content), sha
                    )

        self._record_commit(config, sha, message, actor_id, change_request.id,
                            sorted(files), CommitResult.SUCCESS)
        self._move_branch_head(config, branch_name, sha)

        change_request.status = ChangeRequestStatus.MERGED
        change_request.merged_by = actor_id
        change_request.merged_at = self.clock()
        change_request.merge_commit_sha = sha
        change_request.updated_at = change_request.merged_at
        self.store.save_change_request(change_request)
        return affected

    def _revert_merge_commit(self, config: GitSyncConfig, branch_name: str,
                             files: Dict[str, Optional[str]],
                             originals: Dict[str, Optional[str]], sha: str, message: str,
                             change_request_id: str, actor_id: str) -> None:
        """Restore the files a merge commit changed, after its apply failed."""
        restore = {path: originals[path] for path in files if originals[path] != files[path]}
        logger.warning(
            f"Reverting merge commit {sha[:8]} of change request {change_request_id}"
        )
        revert_sha = revert_message = None
        if restore:
            revert_message = config.commit_message_template.format(
                summary=f"revert merge of change request {change_request_id}"
            )
            try:
                revert_sha = self.repository.create_commit(restore, revert_message, branch_name)
            except ExternalServiceError as e:
                logger.error(
                    f"Could not revert merge commit {sha[:8]} on {branch_name}: {e}"
                )
                raise

        with self.store.transaction():
            self._record_commit(config, sha, message, actor_id, change_request_id,
                                sorted(files), CommitResult.FAILED)
            if revert_sha is not None and revert_sha != sha:
                self._record_commit(config, revert_sha, revert_message, actor_id,
                                    change_request_id, sorted(restore), CommitResult.SUCCESS)
                self._move_branch_head(config, branch_name, revert_sha)

    def _record_commit(self, config: GitSyncConfig, sha: str, message: str, actor_id: str,
                       change_request_id: str, files_changed: List[str],
                       result: CommitResult) -> None:
        if self.store.has_commit(config.id, sha):
            return
        self.store.add_commit(GitCommit(
            id=str(uuid.uuid4()),
            config_id=config.id,
            commit_sha=sha,
            direction=SyncDirection.PUSH,
            message=message,
            author=actor_id,
            committed_at=self.clock(),
            change_request_id=change_request_id,
            files_changed=files_changed,
            result=result,
            created_at=self.clock(),
        ))

    def _move_branch_head(self, config: GitSyncConfig, branch_name: str, sha: str) -> None:
        branch = self.store.find_branch(config.id, branch_name)
        branch.head_commit = sha
        branch.updated_at = self.clock()
        self.store.save_branch(branch)

    def _require_mergeable(self, change_request: ChangeRequest) -> None:
        if change_request.status.is_terminal:
            raise InvalidTransitionError(
                "change request", change_request.status.value, 'merge'
            )
        if change_request.status == ChangeRequestStatus.APPROVED:
            return
        required = self.settings.approvals_required_for(change_request.space_id)
        if required == 0 and change_request.status in REVIEWABLE_STATES:
            return
        raise ApprovalRequiredError(change_request.id, change_request.status.value, required)

    def _check_conflicts(self, change_request: ChangeRequest,
                         changes: List[ChangeRequestChange], live: bool) -> None:
        """Mark conflicting changes and raise MergeConflictError if any."""
        with self.store.transaction():
            reasons = self._mark_conflicts(change_request, changes, live)

        if reasons:
            logger.warning(
                f"Change request {change_request.id} cannot merge: {len(reasons)} conflict(s)"
            )
            raise MergeConflictError(change_request.id, reasons)

    def _mark_conflicts(self, change_request: ChangeRequest,
                        changes: List[ChangeRequestChange], live: bool) -> List[str]:
        reasons = []
        for change in changes:
            reason = change.conflict_reason if change.has_conflict else None
            if reason is None and live:
                reason = self._conflict_reason(change_request, change)
            if reason is None:
                continue
            if not change.has_conflict:
                change.has_conflict = True
                change.conflict_reason = reason
                self.store.save_change(change)
            reasons.append(f"{change.path}: {reason}")
        return reasons

    def _conflict_reason(self, change_request: ChangeRequest,
                         change: ChangeRequestChange) -> Optional[str]:
        if change.change_type == ChangeType.CREATE:
            if self.store.find_page_by_path(change_request.space_id, change.path):
                return "path already exists"
            if change.parent_id:
                parent = self.store.get_page(change.parent_id)
                if parent is None or parent.is_deleted:
                    return "parent page was deleted"
                if join_path(parent.path, change.path.rsplit('/', 1)[-1]) != change.path:
                    return "parent page was moved"
            return None

        page = self.store.get_page(change.page_id)
        if page is None or page.is_deleted:
            return "page was deleted"
        if page.has_conflict:
            return "page has an unresolved sync conflict"
        current = make_snapshot(page.title, self.store.get_blocks(page.id))
        if not same_content(current, change.before_snapshot):
            return "page changed since the change was proposed"
        return None

    def _render_files(self, config: GitSyncConfig, mapper, changes: List[ChangeRequestChange],
                      head: Optional[str]) -> Dict[str, Optional[str]]:
        files: Dict[str, Optional[str]] = {}
        for change in changes:
            file_path = mapper.paths.page_to_file(change.path)
            if change.change_type == ChangeType.DELETE:
                files[file_path] = None
                for page in self._subtree_pages(change):
                    files[mapper.paths.page_to_file(page.path)] = None
                continue

            extras = {}
            published = False
            if change.change_type == ChangeType.UPDATE:
                page = self.store.get_page(change.page_id)
                published = page.is_published if page else False
                existing = self.repository.get_file_contents(file_path, head) if head else None
                if existing is not None:
                    extras = mapper.parse_file(file_path, existing).extras
            files[file_path] = mapper.render(
                change.after_snapshot['title'], published,
                snapshot_nodes(change.after_snapshot), extras,
            )
        return files

    def _subtree_pages(self, change: ChangeRequestChange) -> List[Page]:
        page = self.store.get_page(change.page_id)
        if page is None:
            return []
        prefix = page.path + '/'
        return [p for p in self.store.list_pages(page.space_id) if p.path.startswith(prefix)]

    def _apply_changes(self, change_request: ChangeRequest, changes: List[ChangeRequestChange],
                       actor_id: str, sha: str) -> List[str]:
        description = f"Merged change request '{change_request.title}'"
        affected = []
        ordered = sorted(changes, key=lambda c: (c.change_type != ChangeType.CREATE,
                                                 c.path.count('/'), c.path))
        for change in ordered:
            if change.change_type == ChangeType.CREATE:
                page = self.tree.create_page(
                    change_request.space_id,
                    change.after_snapshot['title'],
                    parent_id=change.parent_id,
                    slug=change.path.rsplit('/', 1)[-1],
                    blocks=snapshot_nodes(change.after_snapshot),
                )
                change.page_id = page.id
                self.store.save_change(change)
                affected.append(page.id)
            elif change.change_type == ChangeType.UPDATE:
                self.tree.update_content(
                    change.page_id,
                    blocks=snapshot_nodes(change.after_snapshot),
                    title=change.after_snapshot['title'],
                    author=actor_id,
                    description=description,
                    commit_sha=sha,
                )
                affected.append(change.page_id)
            else:
                affected.extend(self.tree.delete_page(change.page_id))
        return affected

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _config_for(self, space_id: str) -> GitSyncConfig:
        config = self.store.config_for_space(space_id)
        if config is None:
            raise NotFoundError("GitSyncConfig", f"for space {space_id}")
        return config

    def _find_change(self, change_request_id: str, page_id: Optional[str] = None,
                     path: Optional[str] = None) -> Optional[ChangeRequestChange]:
        for change in self.store.list_changes(change_request_id):
            if page_id is not None and change.page_id == page_id:
                return change
            if path is not None and change.path == path:
                return change
        return None

    def _save_change(self, change: ChangeRequestChange, is_new: bool) -> ChangeRequestChange:
        change_request = self.store.require_change_request(change.change_request_id)
        change_request.updated_at = self.clock()
        self.store.save_change_request(change_request)
        if is_new:
            return self.store.add_change(change)
        return self.store.save_change(change)

    def _require_draft(self, change_request_id: str, actor_id: str) -> ChangeRequest:
        change_request = self.store.require_change_request(change_request_id)
        self._require_creator(change_request, actor_id, 'edit')
        self._require_state(change_request, 'edit', ChangeRequestStatus.DRAFT)
        return change_request

    def _require_space_page(self, change_request: ChangeRequest, page_id: str) -> Page:
        page = self.store.require_page(page_id)
        if page.space_id != change_request.space_id:
            raise ValidationError(
                f"Page {page_id} belongs to another space", 'page_id'
            )
        return page

    @staticmethod
    def _require_creator(change_request: ChangeRequest, actor_id: str, verb: str) -> None:
        if actor_id != change_request.created_by:
            raise ForbiddenError(
                f"Only the creator can {verb} change request {change_request.id}"
            )

    @staticmethod
    def _require_reviewer(change_request: ChangeRequest, actor_id: str, verb: str) -> None:
        if actor_id not in change_request.reviewers:
            raise ForbiddenError(
                f"Only an assigned reviewer can {verb} change request {change_request.id}"
            )

    @staticmethod
    def _require_state(change_request: ChangeRequest, verb: str,
                       *allowed: ChangeRequestStatus) -> None:
        if change_request.status not in allowed:
            raise InvalidTransitionError("change request", change_request.status.value, verb)

    @staticmethod
    def _require_open(change_request: ChangeRequest, verb: str) -> None:
        if change_request.status.is_terminal:
            raise InvalidTransitionError("change request", change_request.status.value, verb)
