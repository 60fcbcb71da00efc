"""Immutable per-page version log.

Every content-changing update snapshots the current page (title and block
tree) into a new PageVersion before the update is applied, inside the same
store transaction. Version numbers are 1, 2, 3, ... per page without gaps.

Restoring version v first snapshots the current content ("Before restore to
version v") and then copies v's content into the live page, so a restore
never destroys history and can itself be undone.
"""

import logging
import uuid
from typing import TYPE_CHECKING, List, Optional

from src.content_tree.blocks import blocks_from_snapshot, snapshot_blocks
from src.content_tree.models import Page, PageVersion
from src.core.clock import Clock, utc_now
from src.core.errors import NotFoundError

if TYPE_CHECKING:
    from src.storage.store import ContentStore

logger = logging.getLogger(__name__)


class VersionLog:
    """Creates, lists and restores page versions.

    Args:
        store: Persistence collaborator
        clock: Time source for version timestamps

    Example:
        >>> log = VersionLog(store)
        >>> log.create_version(page.id, author="alice")
        >>> log.restore_version(page.id, 1, author="alice")
    """

    def __init__(self, store: 'ContentStore', clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    def create_version(
        self,
        page_id: str,
        author: Optional[str] = None,
        description: Optional[str] = None,
        commit_sha: Optional[str] = None,
    ) -> PageVersion:
        """Snapshot the current content of a page.

        Args:
            page_id: Page to snapshot
            author: User responsible for the change being recorded
            description: Optional change description
            commit_sha: Commit that caused the change, if it came from git

        Returns:
            The new PageVersion

        Raises:
            NotFoundError: If the page does not exist
        """
        with self.store.transaction():
            page = self.store.require_page(page_id, include_deleted=True)
            version = PageVersion(
                id=str(uuid.uuid4()),
                page_id=page_id,
                version_number=self.store.latest_version_number(page_id) + 1,
                title=page.title,
                content_snapshot=snapshot_blocks(self.store.get_blocks(page_id)),
                created_by=author,
                change_description=description,
                git_commit_sha=commit_sha,
                created_at=self.clock(),
            )
            version = self.store.add_version(version)

        logger.debug(f"Created version {version.version_number} of page {page_id}")
        return version

    def restore_version(self, page_id: str, version_number: int,
                        author: Optional[str] = None) -> Page:
        """Restore a page to an earlier version.

        Args:
            page_id: Page to restore
            version_number: Version whose content is copied back
            author: User performing the restore

        Returns:
            The updated page

        Raises:
            NotFoundError: If the page or the version does not exist
        """
        target = self.get_version(page_id, version_number)

        with self.store.transaction():
            page = self.store.require_page(page_id)
            self.create_version(
                page_id,
                author=author,
                description=f"Before restore to version {version_number}",
            )
            self.store.replace_blocks(
                page_id, blocks_from_snapshot(page_id, target.content_snapshot)
            )
            page.title = target.title
            page.updated_at = self.clock()
            page = self.store.save_page(page)

        logger.info(f"Restored page {page_id} to version {version_number}")
        return page

    def list_versions(self, page_id: str) -> List[PageVersion]:
        """Return all versions of a page, oldest first."""
        self.store.require_page(page_id, include_deleted=True)
        return self.store.list_versions(page_id)

    def get_version(self, page_id: str, version_number: int) -> PageVersion:
        version = self.store.get_version(page_id, version_number)
        if version is None:
            raise NotFoundError("PageVersion", f"{page_id}@{version_number}")
        return version
