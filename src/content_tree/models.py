"""Data models for the content tree.

This module defines the page, block and version records owned by a space.
All models use dataclasses for clean, type-safe data structures.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class BlockType(str, Enum):
    """Closed set of block type tags."""

    PARAGRAPH = "paragraph"
    HEADING_1 = "heading_1"
    HEADING_2 = "heading_2"
    HEADING_3 = "heading_3"
    HEADING_4 = "heading_4"
    HEADING_5 = "heading_5"
    HEADING_6 = "heading_6"
    BLOCKQUOTE = "blockquote"
    CODE_BLOCK = "code_block"
    TABLE = "table"
    HINT_INFO = "hint_info"
    HINT_WARNING = "hint_warning"
    HINT_DANGER = "hint_danger"
    HINT_SUCCESS = "hint_success"
    REUSABLE_BLOCK = "reusable_block"
    IMAGE = "image"
    VIDEO = "video"
    EMBED = "embed"
    MATH = "math"
    DIVIDER = "divider"
    TOGGLE = "toggle"
    TABS = "tabs"
    API_BLOCK = "api_block"
    FILE_ATTACHMENT = "file_attachment"
    ACTION_BUTTON = "action_button"

    @property
    def heading_level(self) -> Optional[int]:
        """Heading level 1-6, or None for non-heading types."""
        if self.value.startswith("heading_"):
            return int(self.value[-1])
        return None

    @classmethod
    def heading(cls, level: int) -> "BlockType":
        return cls(f"heading_{level}")


@dataclass
class PageConflict:
    """Both sides of an unresolved sync conflict stored on a page.

    The live page content is left untouched while a conflict is pending.

    Attributes:
        file_path: Repository file the conflict was detected on
        base_content: Canonical content both sides last agreed on (None if unknown)
        local_content: Canonical content of the page when the conflict was detected
        remote_content: Canonical incoming file content (None if deleted remotely)
        merge_preview: Line merge with <<<<<<< ======= >>>>>>> markers
        remote_commit: Commit sha the remote side was read from
        detected_at: When the conflict was first detected
    """
    file_path: str
    base_content: Optional[str]
    local_content: str
    remote_content: Optional[str]
    merge_preview: str = ""
    remote_commit: Optional[str] = None
    detected_at: Optional[datetime] = None


@dataclass
class Page:
    """A node of the page hierarchy.

    Attributes:
        id: Unique page identifier
        space_id: Owning space
        parent_id: Parent page (None at the root or for virtual-directory orphans)
        slug: Last path segment
        title: Display title
        path: Full path such as /guide/setup
        depth: Nesting depth, parent.depth + 1 (0 at the root)
        position: Order among siblings, contiguous from 0
        is_published: Published flag
        published_at: When the page was last published
        deleted_at: Soft-delete marker
        conflict: Unresolved sync conflict, if any
    """
    id: str
    space_id: str
    parent_id: Optional[str]
    slug: str
    title: str
    path: str
    depth: int = 0
    position: int = 0
    is_published: bool = False
    published_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    conflict: Optional[PageConflict] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def has_conflict(self) -> bool:
        return self.conflict is not None


@dataclass
class Block:
    """A content block owned by a page.

    Attributes:
        id: Unique block identifier
        page_id: Owning page
        parent_block_id: Parent block for nested blocks (None at top level)
        block_type: Type tag
        position: Order among sibling blocks, contiguous from 0
        content: Type-specific payload ({"text": ...} for text blocks)
        language: Code language for code blocks
        is_reusable: Whether other pages may reference this block
        reusable_block_id: Referenced reusable block for reusable_block types
    """
    id: str
    page_id: str
    parent_block_id: Optional[str]
    block_type: BlockType
    position: int = 0
    content: Dict[str, Any] = field(default_factory=dict)
    language: Optional[str] = None
    is_reusable: bool = False
    reusable_block_id: Optional[str] = None


@dataclass
class PageVersion:
    """Immutable snapshot of a page's content.

    Attributes:
        id: Unique version identifier
        page_id: Page the snapshot belongs to
        version_number: 1, 2, 3, ... per page with no gaps
        title: Page title at snapshot time
        content_snapshot: Block records at snapshot time
        created_by: Author of the change that triggered the snapshot
        change_description: Optional description
        git_commit_sha: Commit that caused the change, when it came from git
        created_at: Snapshot time
    """
    id: str
    page_id: str
    version_number: int
    title: str
    content_snapshot: List[Dict[str, Any]] = field(default_factory=list)
    created_by: Optional[str] = None
    change_description: Optional[str] = None
    git_commit_sha: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class BreadcrumbItem:
    """One step of the path from the root to a page."""
    id: str
    title: str
    slug: str
    path: str


@dataclass
class PageTreeNode:
    """A page with its (depth-bounded) children."""
    page: Page
    children: List['PageTreeNode'] = field(default_factory=list)
