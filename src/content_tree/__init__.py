"""Hierarchical pages and blocks of a documentation space.

This package provides the page/block models, block tree conversion, slug
rules and the ContentTreeStore that enforces the hierarchy invariants.
"""

from .blocks import BlockNode, build_blocks, iter_nodes, to_nodes, tree_signature
from .models import (
    Block,
    BlockType,
    BreadcrumbItem,
    Page,
    PageConflict,
    PageTreeNode,
    PageVersion,
)
from .slug import SlugConverter
from .tree_store import ContentTreeStore, join_path, parent_path_of

__all__ = [
    'Block',
    'BlockNode',
    'BlockType',
    'BreadcrumbItem',
    'ContentTreeStore',
    'Page',
    'PageConflict',
    'PageTreeNode',
    'PageVersion',
    'SlugConverter',
    'build_blocks',
    'iter_nodes',
    'join_path',
    'parent_path_of',
    'to_nodes',
    'tree_signature',
]
