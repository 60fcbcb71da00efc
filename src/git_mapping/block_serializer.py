"""Serialization of block trees to the page file body.

Blocks are written in their native Markdown form when that form parses back
to exactly the same block; otherwise (and always for blocks with children)
they are written as a container tag carrying the type and a JSON payload.
Blocks are separated by one blank line.
"""

import html
import json
import logging
from typing import Callable, List, Optional

from src.content_tree.blocks import BlockNode
from src.content_tree.models import BlockType

from .markup import (
    CODE_FENCE,
    LANGUAGE_PATTERN,
    MATH_FENCE,
    escape_line,
    format_table_row,
)

logger = logging.getLogger(__name__)

# Resolves a reusable block id to the block it references (None if unknown)
ReferenceResolver = Callable[[str], Optional[BlockNode]]

TEXT_TYPES = {
    BlockType.PARAGRAPH,
    BlockType.BLOCKQUOTE,
    BlockType.CODE_BLOCK,
    BlockType.MATH,
    BlockType.HEADING_1,
    BlockType.HEADING_2,
    BlockType.HEADING_3,
    BlockType.HEADING_4,
    BlockType.HEADING_5,
    BlockType.HEADING_6,
}


class BlockSerializer:
    """Serializes block trees.

    Args:
        resolver: Looks up reusable blocks to write their inline fallback
    """

    def __init__(self, resolver: Optional[ReferenceResolver] = None):
        self.resolver = resolver

    def serialize(self, nodes: List[BlockNode]) -> str:
        """Serialize top-level nodes to a Markdown body (no trailing newline)."""
        return '\n\n'.join(self._serialize_node(node) for node in nodes)

    def _serialize_node(self, node: BlockNode) -> str:
        native = self._native_form(node)
        if native is not None:
            return native
        return self._container_form(node)

    def _container_form(self, node: BlockNode) -> str:
        block_type = BlockType(node.block_type)
        attributes = [('data-block-type', block_type.value)]
        if node.is_reusable:
            if node.block_id:
                attributes.append(('data-block-id', node.block_id))
            attributes.append(('data-reusable', 'true'))
        if node.reusable_block_id:
            attributes.append(('data-ref', node.reusable_block_id))
        if node.language:
            attributes.append(('data-language', node.language))
        attributes.append(('data-content', json.dumps(node.content, sort_keys=True,
                                                      ensure_ascii=False)))

        attrs = ' '.join(f'{name}="{html.escape(value, quote=True)}"'
                         for name, value in attributes)
        opening = f'<div {attrs}>'

        children = node.children
        if block_type == BlockType.REUSABLE_BLOCK and not children and node.reusable_block_id:
            fallback = self.resolver(node.reusable_block_id) if self.resolver else None
            if fallback is None:
                logger.warning(
                    f"Reusable block {node.reusable_block_id} not found, writing reference only"
                )
            else:
                children = [fallback]

        if not children:
            return f'{opening}\n\n</div>'
        body = '\n\n'.join(self._serialize_node(child) for child in children)
        return f'{opening}\n\n{body}\n\n</div>'

    def _native_form(self, node: BlockNode) -> Optional[str]:
        """Native Markdown for a block, or None if it would not parse back exactly."""
        if node.children or node.is_reusable or node.reusable_block_id:
            return None

        block_type = BlockType(node.block_type)
        if node.language and block_type != BlockType.CODE_BLOCK:
            return None

        if block_type in TEXT_TYPES:
            text = _only_text(node)
            if text is None:
                return None

            if block_type == BlockType.PARAGRAPH:
                lines = text.split('\n')
                if not text or any(not line.strip() for line in lines):
                    return None
                return '\n'.join(escape_line(line) for line in lines)

            if block_type.heading_level:
                if not text or '\n' in text or text != text.strip():
                    return None
                return f"{'#' * block_type.heading_level} {text}"

            if block_type == BlockType.BLOCKQUOTE:
                return '\n'.join(f'> {line}' if line else '>' for line in text.split('\n'))

            if block_type == BlockType.CODE_BLOCK:
                language = node.language or ''
                if language and not LANGUAGE_PATTERN.match(language):
                    return None
                lines = text.split('\n')
                if any(line.startswith(CODE_FENCE) for line in lines):
                    return None
                return f'{CODE_FENCE}{language}\n{text}\n{CODE_FENCE}'

            if block_type == BlockType.MATH:
                lines = text.split('\n')
                if any(line.strip() == MATH_FENCE for line in lines):
                    return None
                return f'{MATH_FENCE}\n{text}\n{MATH_FENCE}'

        if block_type == BlockType.DIVIDER:
            return '***' if not node.content else None

        if block_type == BlockType.IMAGE:
            return _image_form(node)

        if block_type == BlockType.TABLE:
            return _table_form(node)

        return None


def _only_text(node: BlockNode) -> Optional[str]:
    if set(node.content) != {'text'} or not isinstance(node.content['text'], str):
        return None
    return node.content['text']


def _image_form(node: BlockNode) -> Optional[str]:
    if set(node.content) != {'url', 'alt'}:
        return None
    url, alt = node.content['url'], node.content['alt']
    if not isinstance(url, str) or not isinstance(alt, str):
        return None
    if any(ch in url for ch in ') \t\n') or any(ch in alt for ch in ']\n'):
        return None
    return f'![{alt}]({url})'


def _table_form(node: BlockNode) -> Optional[str]:
    if set(node.content) != {'rows'}:
        return None
    rows = node.content['rows']
    if not isinstance(rows, list) or not rows:
        return None
    width = len(rows[0]) if isinstance(rows[0], list) else 0
    if width == 0:
        return None
    for row in rows:
        if not isinstance(row, list) or len(row) != width:
            return None
        for cell in row:
            if not isinstance(cell, str) or '\n' in cell or cell != cell.strip():
                return None

    lines = [format_table_row(rows[0]), '| ' + ' | '.join(['---'] * width) + ' |']
    lines.extend(format_table_row(row) for row in rows[1:])
    return '\n'.join(lines)
