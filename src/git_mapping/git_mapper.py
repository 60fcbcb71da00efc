"""Translation between pages and repository files.

GitMapper is the single entry point of the mapping layer used by the sync
engine and the change request workflow. It combines the path mapping, the
frontmatter handling and the block (de)serialization.

Round-trip law: for every page, ``parse_file(serialize_page(page))`` yields
the same title, published flag and block tree (types, content, ordering and
nesting). Because of this, ``canonicalize(text)`` (serialize after parse) is
the form used to compare the two sides of a sync: formatting differences a
person introduces in a file that do not change the parsed tree compare equal.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from src.content_tree.blocks import BlockNode
from src.content_tree.models import BlockType, Page
from src.content_tree.slug import SlugConverter

from .block_parser import BlockParser
from .block_serializer import BlockSerializer, ReferenceResolver
from .frontmatter_handler import FrontmatterHandler
from .path_mapper import PathMapper

logger = logging.getLogger(__name__)


@dataclass
class ParsedDocument:
    """A page file parsed into page fields.

    Attributes:
        file_path: Repository path of the file
        page_path: Page path the file maps to (None outside the synced root)
        title: Title from frontmatter, first heading or file name
        published: Published flag from frontmatter
        blocks: Parsed block tree
        extras: Frontmatter keys not managed by the page model
    """
    file_path: str
    page_path: Optional[str]
    title: str
    published: bool
    blocks: List[BlockNode] = field(default_factory=list)
    extras: Dict[str, Any] = field(default_factory=dict)


class GitMapper:
    """Serializes pages to files and parses files back to pages.

    Args:
        paths: Path mapping for the repository binding
        resolver: Looks up reusable blocks for references and fallbacks

    Example:
        >>> mapper = GitMapper(PathMapper("docs"))
        >>> text = mapper.serialize_page(page, blocks)
        >>> mapper.parse_file("docs/intro.md", text).title
        'Introduction'
    """

    def __init__(self, paths: PathMapper, resolver: Optional[ReferenceResolver] = None):
        self.paths = paths
        self.serializer = BlockSerializer(resolver)
        self.parser = BlockParser(resolver)

    def serialize_page(self, page: Page, blocks: List[BlockNode],
                       extras: Optional[Dict[str, Any]] = None) -> str:
        """Serialize a page and its block tree to file content."""
        return self.render(page.title, page.is_published, blocks, extras)

    def render(self, title: str, published: bool, blocks: List[BlockNode],
               extras: Optional[Dict[str, Any]] = None) -> str:
        body = self.serializer.serialize(blocks)
        return FrontmatterHandler.generate(title, published, body, extras)

    def parse_file(self, file_path: str, text: str) -> ParsedDocument:
        """Parse file content into page fields.

        Raises:
            FrontmatterError: If the frontmatter is malformed
            ValidationError: If a block container is malformed
        """
        frontmatter, body = FrontmatterHandler.split(file_path, text)
        title, published, extras = FrontmatterHandler.read_managed(file_path, frontmatter)
        blocks = self.parser.parse(body, file_path)

        if not title:
            title = _first_heading(blocks)
        if not title:
            stem = os.path.splitext(os.path.basename(file_path))[0]
            title = SlugConverter.slug_to_title(stem) or stem
            logger.debug(f"{file_path}: no title found, derived '{title}' from the file name")

        return ParsedDocument(
            file_path=file_path,
            page_path=self.paths.file_to_page(file_path),
            title=title,
            published=published,
            blocks=blocks,
            extras=extras,
        )

    def canonical_page(self, page: Page, blocks: List[BlockNode]) -> str:
        """Comparison form of a page (no frontmatter extras)."""
        return self.render(page.title, page.is_published, blocks)

    def canonicalize(self, file_path: str, text: str) -> str:
        """Comparison form of file content: serialize(parse(text)) without extras."""
        document = self.parse_file(file_path, text)
        return self.render(document.title, document.published, document.blocks)


def _first_heading(blocks: List[BlockNode]) -> Optional[str]:
    for node in blocks:
        if BlockType(node.block_type) == BlockType.HEADING_1:
            text = str(node.content.get('text', '')).strip()
            if text:
                return text
    return None
