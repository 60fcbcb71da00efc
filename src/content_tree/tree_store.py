"""Page hierarchy operations for a space.

ContentTreeStore owns the page/block hierarchy rules on top of the
persistence collaborator:

- path = parent path + "/" + slug, unique among live pages of a space
- depth = parent depth + 1, positions contiguous from 0 among siblings
- moves never create cycles (bounded ancestor walk from the new parent)
- content changes are snapshotted by the version log first, atomically

Pages created by a pull whose parent directory has no page of its own are
virtual-directory orphans: they sit at the space root with a depth derived
from their path, and are adopted when a page is created at the parent path.
"""

import copy
import logging
import uuid
from collections import deque
from typing import TYPE_CHECKING, List, Optional

from src.core.clock import Clock, utc_now
from src.core.errors import (
    DuplicatePathError,
    HierarchyCycleError,
    InternalError,
    ValidationError,
)

from .blocks import BlockNode, build_blocks, iter_nodes, to_nodes, tree_signature
from .models import BlockType, BreadcrumbItem, Page, PageTreeNode
from .slug import SlugConverter

if TYPE_CHECKING:
    from src.storage.store import ContentStore
    from src.versioning.version_log import VersionLog

logger = logging.getLogger(__name__)


def join_path(parent_path: Optional[str], slug: str) -> str:
    """Build a page path from its parent path and slug."""
    return f"{parent_path or ''}/{slug}"


def parent_path_of(path: str) -> Optional[str]:
    """Return the parent path of a page path, or None for a root path."""
    head, _, _ = path.rstrip('/').rpartition('/')
    return head or None


def path_depth(path: str) -> int:
    return len([segment for segment in path.split('/') if segment]) - 1


class ContentTreeStore:
    """Creates, moves, reorders and edits pages of a space.

    Args:
        store: Persistence collaborator
        versions: Version log used to snapshot content before changes
        clock: Time source for timestamps
    """

    def __init__(self, store: 'ContentStore', versions: 'VersionLog',
                 clock: Clock = utc_now):
        self.store = store
        self.versions = versions
        self.clock = clock

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_page(
        self,
        space_id: str,
        title: str,
        parent_id: Optional[str] = None,
        slug: Optional[str] = None,
        blocks: Optional[List[BlockNode]] = None,
        position: Optional[int] = None,
        is_published: bool = False,
    ) -> Page:
        """Create a page under parent_id (or at the space root).

        Args:
            space_id: Owning space
            title: Page title
            parent_id: Parent page, None for the root
            slug: Path segment (derived from the title when omitted)
            blocks: Initial content
            position: Sibling position (appended when omitted)
            is_published: Initial published flag

        Returns:
            The created page

        Raises:
            NotFoundError: If the parent does not exist
            ValidationError: If the title/slug is invalid or the parent is in
                another space
            DuplicatePathError: If the resulting path is taken
        """
        title = self._validate_title(title)
        slug = SlugConverter.validate(slug) if slug else SlugConverter.title_to_slug(title)

        parent = None
        if parent_id is not None:
            parent = self.store.require_page(parent_id)
            if parent.space_id != space_id:
                raise ValidationError(
                    f"Parent page {parent_id} belongs to another space", 'parent_id'
                )

        return self._insert_page(
            space_id=space_id,
            parent=parent,
            slug=slug,
            title=title,
            path=join_path(parent.path if parent else None, slug),
            nodes=blocks or [],
            position=position,
            is_published=is_published,
        )

    def create_page_at_path(
        self,
        space_id: str,
        path: str,
        title: str,
        blocks: Optional[List[BlockNode]] = None,
        is_published: bool = False,
    ) -> Page:
        """Create a page at an explicit path (used when pulling files).

        The parent is the live page at the parent path; when there is none
        the page becomes a virtual-directory orphan at the space root.
        """
        segments = [segment for segment in path.split('/') if segment]
        if not segments:
            raise ValidationError(f"Invalid page path '{path}'", 'path')
        slug = SlugConverter.validate(segments[-1])
        path = '/' + '/'.join(segments)

        parent = None
        parent_path = parent_path_of(path)
        if parent_path:
            parent = self.store.find_page_by_path(space_id, parent_path)

        return self._insert_page(
            space_id=space_id,
            parent=parent,
            slug=slug,
            title=self._validate_title(title),
            path=path,
            nodes=blocks or [],
            position=None,
            is_published=is_published,
        )

    def duplicate_page(self, page_id: str, title: Optional[str] = None,
                       include_children: bool = False) -> Page:
        """Copy a page next to the original.

        The copy is unpublished, titled "<title> (Copy)" unless a title is
        given, and gets the first free slug among its siblings. Block content
        is copied with fresh block ids; versions are not.

        Args:
            page_id: Page to copy
            title: Title of the copy
            include_children: Copy the whole subtree below the page as well

        Returns:
            The new page
        """
        source = self.store.require_page(page_id)
        title = self._validate_title(title) if title else f"{source.title} (Copy)"
        parent = self.store.get_page(source.parent_id) if source.parent_id else None
        parent_path = parent_path_of(source.path)
        slug = self._free_slug(source.space_id, parent_path,
                               SlugConverter.title_to_slug(title))

        with self.store.transaction():
            duplicate = self._insert_page(
                space_id=source.space_id,
                parent=parent,
                slug=slug,
                title=title,
                path=join_path(parent_path, slug),
                nodes=self.get_blocks(source.id),
                position=source.position + 1,
                is_published=False,
            )
            if include_children:
                self._duplicate_children(source, duplicate)
            duplicate = self.store.require_page(duplicate.id)

        logger.info(f"Duplicated page {source.path} as {duplicate.path}")
        return duplicate

    def _duplicate_children(self, source: Page, duplicate: Page) -> None:
        for child in self.store.child_pages(source.space_id, source.id):
            copied = self._insert_page(
                space_id=duplicate.space_id,
                parent=duplicate,
                slug=child.slug,
                title=child.title,
                path=join_path(duplicate.path, child.slug),
                nodes=self.get_blocks(child.id),
                position=None,
                is_published=False,
            )
            self._duplicate_children(child, copied)

    def _free_slug(self, space_id: str, parent_path: Optional[str], slug: str) -> str:
        candidate, suffix = slug, 2
        while self.store.find_page_by_path(space_id, join_path(parent_path, candidate)):
            candidate = f"{slug}-{suffix}"
            suffix += 1
        return candidate

    def _insert_page(self, space_id, parent, slug, title, path, nodes,
                     position, is_published) -> Page:
        self._validate_references(nodes)
        nodes = copy.deepcopy(nodes)
        now = self.clock()

        with self.store.transaction():
            siblings = self.store.child_pages(space_id, parent.id if parent else None)
            page = Page(
                id=str(uuid.uuid4()),
                space_id=space_id,
                parent_id=parent.id if parent else None,
                slug=slug,
                title=title,
                path=path,
                depth=parent.depth + 1 if parent else path_depth(path),
                position=len(siblings),
                is_published=is_published,
                published_at=now if is_published else None,
                created_at=now,
                updated_at=now,
            )
            self.store.add_page(page)
            self._release_foreign_ids(page.id, nodes)
            self.store.replace_blocks(page.id, build_blocks(page.id, nodes))
            if position is not None:
                self._place(page, siblings, position)
            self._adopt_orphans(page)
            page = self.store.require_page(page.id)

        logger.info(f"Created page {page.path} ({page.id}) in space {space_id}")
        return page

    def _adopt_orphans(self, page: Page) -> None:
        prefix = page.path + '/'
        orphans = [
            root for root in self.store.child_pages(page.space_id, None)
            if root.path.startswith(prefix) and parent_path_of(root.path) == page.path
        ]
        if not orphans:
            return

        position = len(self.store.child_pages(page.space_id, page.id))
        for orphan in orphans:
            orphan.parent_id = page.id
            orphan.position = position
            position += 1
            self.store.save_page(orphan)
            logger.debug(f"Page {page.path} adopted orphan {orphan.path}")
        self._renumber(page.space_id, None)

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    def move_page(self, page_id: str, new_parent_id: Optional[str],
                  position: Optional[int] = None) -> Page:
        """Move a page (and its subtree) under a new parent.

        Args:
            page_id: Page to move
            new_parent_id: New parent, None for the space root
            position: Position among the new siblings (appended when omitted)

        Returns:
            The moved page

        Raises:
            HierarchyCycleError: If the new parent is the page or a descendant
            DuplicatePathError: If any recomputed path is already taken
            ValidationError: If the new parent is in another space
        """
        page = self.store.require_page(page_id)

        parent = None
        if new_parent_id is not None:
            parent = self.store.require_page(new_parent_id)
            if parent.space_id != page.space_id:
                raise ValidationError(
                    f"Cannot move page {page_id} to another space", 'parent_id'
                )
            self._check_not_descendant(page, parent)

        subtree = self._collect_subtree(page)
        old_prefix = page.path
        new_prefix = join_path(parent.path if parent else None, page.slug)
        depth_delta = (parent.depth + 1 if parent else 0) - page.depth
        subtree_ids = {node.id for node in subtree}

        for node in subtree:
            new_path = new_prefix + node.path[len(old_prefix):]
            owner = self.store.find_page_by_path(page.space_id, new_path)
            if owner is not None and owner.id not in subtree_ids:
                raise DuplicatePathError(page.space_id, new_path)

        old_parent_id = page.parent_id
        with self.store.transaction():
            for node in subtree:
                node.path = new_prefix + node.path[len(old_prefix):]
                node.depth += depth_delta
                if node.id == page.id:
                    node.parent_id = new_parent_id
                    node.position = len(self.store.child_pages(page.space_id, new_parent_id))
                node.updated_at = self.clock()
                self.store.save_page(node)

            self._renumber(page.space_id, old_parent_id)
            moved = self.store.require_page(page_id)
            if position is not None:
                siblings = [
                    sibling for sibling in self.store.child_pages(page.space_id, new_parent_id)
                    if sibling.id != page_id
                ]
                self._place(moved, siblings, position)
            self._renumber(page.space_id, new_parent_id)
            moved = self.store.require_page(page_id)

        logger.info(f"Moved page {page_id} from {old_prefix} to {moved.path}")
        return moved

    def reorder_page(self, page_id: str, new_position: int) -> Page:
        """Move a page to new_position among its siblings (clamped)."""
        page = self.store.require_page(page_id)
        with self.store.transaction():
            siblings = [
                sibling for sibling in self.store.child_pages(page.space_id, page.parent_id)
                if sibling.id != page_id
            ]
            self._place(page, siblings, new_position)
            page = self.store.require_page(page_id)
        logger.debug(f"Reordered page {page.path} to position {page.position}")
        return page

    def _place(self, page: Page, siblings: List[Page], position: int) -> None:
        """Insert page among siblings (which exclude it) and renumber 0..n-1."""
        ordered = [sibling for sibling in siblings if sibling.id != page.id]
        position = max(0, min(position, len(ordered)))
        ordered.insert(position, page)
        for index, sibling in enumerate(ordered):
            current = self.store.require_page(sibling.id)
            if current.position != index:
                current.position = index
                self.store.save_page(current)

    def _renumber(self, space_id: str, parent_id: Optional[str]) -> None:
        for index, sibling in enumerate(self.store.child_pages(space_id, parent_id)):
            if sibling.position != index:
                sibling.position = index
                self.store.save_page(sibling)

    def _check_not_descendant(self, page: Page, new_parent: Page) -> None:
        """Walk from new_parent to the root looking for page.

        The walk is bounded by the number of pages in the space so corrupted
        parent links cannot loop forever.
        """
        limit = self.store.count_pages(page.space_id)
        node: Optional[Page] = new_parent
        steps = 0
        while node is not None:
            if node.id == page.id:
                raise HierarchyCycleError(page.id, new_parent.id)
            if node.parent_id is None:
                return
            steps += 1
            if steps > limit:
                raise InternalError(f"Parent links above page {new_parent.id} contain a cycle")
            node = self.store.get_page(node.parent_id)

    def _collect_subtree(self, root: Page) -> List[Page]:
        pages = []
        queue = deque([root])
        while queue:
            page = queue.popleft()
            pages.append(page)
            queue.extend(self.store.child_pages(page.space_id, page.id))
        return pages

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def get_page(self, page_id: str) -> Page:
        return self.store.require_page(page_id)

    def get_page_by_path(self, space_id: str, path: str) -> Optional[Page]:
        return self.store.find_page_by_path(space_id, path)

    def get_subtree(self, space_id: str, root_id: Optional[str] = None,
                    max_depth: Optional[int] = None) -> List[PageTreeNode]:
        """Return the page tree below root_id, at most max_depth levels deep.

        Args:
            space_id: Space to read
            root_id: Subtree root; None returns every root-level page
            max_depth: Levels of children to include (None for unbounded,
                0 for the roots only)

        Returns:
            Tree nodes of the requested roots, children ordered by position
        """
        if root_id is not None:
            roots = [self.store.require_page(root_id)]
        else:
            roots = self.store.child_pages(space_id, None)

        nodes = [PageTreeNode(page=page) for page in roots]
        queue = deque((node, 0) for node in nodes)
        while queue:
            node, level = queue.popleft()
            if max_depth is not None and level >= max_depth:
                continue
            for child in self.store.child_pages(node.page.space_id, node.page.id):
                child_node = PageTreeNode(page=child)
                node.children.append(child_node)
                queue.append((child_node, level + 1))
        return nodes

    def get_breadcrumb(self, page_id: str) -> List[BreadcrumbItem]:
        """Return the pages from the root down to page_id (inclusive)."""
        page = self.store.require_page(page_id)
        limit = self.store.count_pages(page.space_id)
        trail = []
        node: Optional[Page] = page
        while node is not None:
            trail.append(BreadcrumbItem(id=node.id, title=node.title, slug=node.slug,
                                        path=node.path))
            if len(trail) > limit:
                raise InternalError(f"Parent links above page {page_id} contain a cycle")
            node = self.store.get_page(node.parent_id) if node.parent_id else None
        trail.reverse()
        return trail

    def get_blocks(self, page_id: str) -> List[BlockNode]:
        """Return the block tree of a page."""
        self.store.require_page(page_id, include_deleted=True)
        return to_nodes(self.store.get_blocks(page_id))

    def list_pages(self, space_id: str) -> List[Page]:
        return self.store.list_pages(space_id)

    # ------------------------------------------------------------------
    # Content
    # ------------------------------------------------------------------

    def update_content(
        self,
        page_id: str,
        blocks: Optional[List[BlockNode]] = None,
        title: Optional[str] = None,
        author: Optional[str] = None,
        description: Optional[str] = None,
        commit_sha: Optional[str] = None,
    ) -> Page:
        """Replace the title and/or block tree of a page.

        The current content is snapshotted into a new version first, in the
        same transaction. Updates that change nothing create no version.

        Args:
            page_id: Page to update
            blocks: New block tree (None keeps the current blocks)
            title: New title (None keeps the current title)
            author: User making the change
            description: Optional change description for the version
            commit_sha: Commit that caused the change, if it came from git

        Returns:
            The updated page
        """
        page = self.store.require_page(page_id)
        new_title = self._validate_title(title) if title is not None else page.title
        current_nodes = to_nodes(self.store.get_blocks(page_id))

        blocks_changed = (
            blocks is not None
            and tree_signature(blocks) != tree_signature(current_nodes)
        )
        if not blocks_changed and new_title == page.title:
            logger.debug(f"Page {page.path} unchanged, no version created")
            return page

        if blocks is not None:
            self._validate_references(blocks)
            blocks = copy.deepcopy(blocks)
            self._release_foreign_ids(page_id, blocks)

        with self.store.transaction():
            self.versions.create_version(
                page_id, author=author, description=description, commit_sha=commit_sha
            )
            if blocks_changed:
                self.store.replace_blocks(page_id, build_blocks(page_id, blocks))
            page.title = new_title
            page.updated_at = self.clock()
            page = self.store.save_page(page)

        logger.info(f"Updated content of page {page.path}")
        return page

    def set_published(self, page_id: str, published: bool) -> Page:
        """Publish or unpublish a page.

        Raises:
            ValidationError: If the page is already published
        """
        page = self.store.require_page(page_id)
        if published and page.is_published:
            raise ValidationError(f"Page {page.path} is already published", 'is_published')
        if not published and not page.is_published:
            return page

        page.is_published = published
        page.published_at = self.clock() if published else page.published_at
        page.updated_at = self.clock()
        return self.store.save_page(page)

    def delete_page(self, page_id: str, keep_children: bool = False) -> List[str]:
        """Soft-delete a page and its subtree.

        Args:
            page_id: Page to delete
            keep_children: Delete only the page; its live children become
                virtual-directory orphans at the space root, keeping their
                paths and depths

        Returns:
            Ids of every page deleted, the page itself first
        """
        page = self.store.require_page(page_id)
        subtree = [page] if keep_children else self._collect_subtree(page)
        now = self.clock()
        with self.store.transaction():
            for node in subtree:
                node.deleted_at = now
                node.updated_at = now
                self.store.save_page(node)
            if keep_children:
                self._orphan_children(page)
            self._renumber(page.space_id, page.parent_id)

        logger.info(f"Deleted page {page.path} and {len(subtree) - 1} descendant(s)")
        return [node.id for node in subtree]

    def _orphan_children(self, page: Page) -> None:
        children = self.store.child_pages(page.space_id, page.id)
        position = len(self.store.child_pages(page.space_id, None))
        for child in children:
            child.parent_id = None
            child.position = position
            position += 1
            self.store.save_page(child)
            logger.debug(f"Page {child.path} is now an orphan of deleted {page.path}")
        if children:
            self._renumber(page.space_id, None)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_title(title: str) -> str:
        if title is None or not title.strip():
            raise ValidationError("Page title cannot be empty", 'title')
        return title.strip()

    def reusable_fallback(self, block_id: str) -> Optional[BlockNode]:
        """Inline copy of a reusable block, used as a reference's fallback.

        Returns:
            The block subtree without identifiers, or None if block_id is not
            a reusable block
        """
        target = self.store.get_block(block_id)
        if target is None or not target.is_reusable:
            return None

        page_blocks = self.store.get_blocks(target.page_id)
        for node in iter_nodes(to_nodes(page_blocks)):
            if node.block_id != block_id:
                continue
            fallback = copy.deepcopy(node)
            for inner in iter_nodes([fallback]):
                inner.block_id = None
                inner.is_reusable = False
            return fallback
        return None

    def _validate_references(self, nodes: List[BlockNode]) -> None:
        """Reusable references without an inline fallback must resolve."""
        for node in iter_nodes(nodes):
            if BlockType(node.block_type) != BlockType.REUSABLE_BLOCK:
                continue
            if not node.reusable_block_id:
                raise ValidationError("Reusable block reference needs a target id", 'blocks')
            if node.children:
                continue
            if self.reusable_fallback(node.reusable_block_id) is None:
                raise ValidationError(
                    f"Reusable block {node.reusable_block_id} does not exist", 'blocks'
                )

    def _release_foreign_ids(self, page_id: str, nodes: List[BlockNode]) -> None:
        """Drop block ids that belong to another page so they are regenerated."""
        for node in iter_nodes(nodes):
            if node.block_id is None:
                continue
            owner = self.store.get_block(node.block_id)
            if owner is not None and owner.page_id != page_id:
                node.block_id = None
