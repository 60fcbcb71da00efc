"""Git mapping layer: reversible translation between pages and files.

This package maps page paths to repository files, serializes block trees to
a Markdown dialect with YAML frontmatter, and parses such files back into
equivalent block trees.
"""

from .block_parser import BlockParser
from .block_serializer import BlockSerializer, ReferenceResolver
from .frontmatter_handler import FrontmatterHandler
from .git_mapper import GitMapper, ParsedDocument
from .markdown_converter import html_to_markdown
from .path_mapper import PathMapper, normalize_root

__all__ = [
    'BlockParser',
    'BlockSerializer',
    'FrontmatterHandler',
    'GitMapper',
    'ParsedDocument',
    'PathMapper',
    'ReferenceResolver',
    'html_to_markdown',
    'normalize_root',
]
