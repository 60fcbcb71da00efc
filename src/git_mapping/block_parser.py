"""Parsing of page file bodies back into block trees.

The parser is line based. Open container tags are kept on an explicit stack
so nesting depth never grows the Python call stack. Constructs are only
recognized at the start of a block, except that headings, code fences and
container tags also end a running paragraph (as they do in Markdown).

Raw HTML fragments (a block starting with an HTML tag that is not a block
container) are converted to Markdown with markdownify and parsed again.
"""

import json
import logging
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup

from src.content_tree.blocks import BlockNode
from src.content_tree.models import BlockType
from src.core.errors import ValidationError

from .block_serializer import ReferenceResolver
from .markdown_converter import html_to_markdown
from .markup import (
    CODE_FENCE,
    CONTAINER_CLOSE_PATTERN,
    CONTAINER_OPEN_PATTERN,
    DIVIDER_PATTERN,
    FENCE_PATTERN,
    HEADING_PATTERN,
    HTML_START_PATTERN,
    IMAGE_PATTERN,
    MATH_FENCE,
    TABLE_SEPARATOR_PATTERN,
    split_table_row,
    unescape_line,
)

logger = logging.getLogger(__name__)


class BlockParser:
    """Parses Markdown bodies written by BlockSerializer (or by people).

    Args:
        resolver: Looks up reusable blocks; references to known blocks drop
            their inline fallback
        convert_html: Convert raw HTML fragments with markdownify
    """

    def __init__(self, resolver: Optional[ReferenceResolver] = None,
                 convert_html: bool = True):
        self.resolver = resolver
        self.convert_html = convert_html

    def parse(self, body: str, file_path: str = "<body>") -> List[BlockNode]:
        """Parse a body into top-level block nodes.

        Raises:
            ValidationError: If a container tag has an unknown type or an
                invalid payload
        """
        lines = body.replace('\r\n', '\n').split('\n')
        roots: List[BlockNode] = []
        stack: List[BlockNode] = []
        i = 0

        while i < len(lines):
            line = lines[i]
            target = stack[-1].children if stack else roots

            if not line.strip():
                i += 1
                continue

            if CONTAINER_OPEN_PATTERN.match(line):
                node = self._open_container(line, file_path)
                target.append(node)
                stack.append(node)
                i += 1
                continue

            if CONTAINER_CLOSE_PATTERN.match(line):
                if stack:
                    self._close_container(stack.pop())
                else:
                    logger.warning(f"{file_path}:{i + 1}: closing tag without container, ignored")
                i += 1
                continue

            fence = FENCE_PATTERN.match(line)
            if fence:
                node, i = self._parse_code(lines, i, fence.group(1), file_path)
                target.append(node)
                continue

            if line.strip() == MATH_FENCE:
                node, i = self._parse_math(lines, i, file_path)
                target.append(node)
                continue

            heading = HEADING_PATTERN.match(line)
            if heading:
                level = len(heading.group(1))
                target.append(BlockNode.text(BlockType.heading(level), heading.group(2).strip()))
                i += 1
                continue

            if line.startswith('>'):
                node, i = self._parse_blockquote(lines, i)
                target.append(node)
                continue

            if DIVIDER_PATTERN.match(line):
                target.append(BlockNode(block_type=BlockType.DIVIDER))
                i += 1
                continue

            image = IMAGE_PATTERN.match(line)
            if image:
                target.append(BlockNode(
                    block_type=BlockType.IMAGE,
                    content={'alt': image.group(1), 'url': image.group(2)},
                ))
                i += 1
                continue

            if (line.startswith('|') and i + 1 < len(lines)
                    and TABLE_SEPARATOR_PATTERN.match(lines[i + 1])):
                node, i = self._parse_table(lines, i)
                target.append(node)
                continue

            if self.convert_html and HTML_START_PATTERN.match(line):
                fragment, i = self._collect_paragraph(lines, i)
                target.extend(self._parse_html(fragment, file_path))
                continue

            paragraph, i = self._collect_paragraph(lines, i)
            text = '\n'.join(unescape_line(raw) for raw in paragraph)
            target.append(BlockNode.text(BlockType.PARAGRAPH, text))

        while stack:
            node = stack.pop()
            logger.warning(f"{file_path}: unclosed '{node.block_type.value}' container closed at end of file")
            self._close_container(node)

        return roots

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def _open_container(self, line: str, file_path: str) -> BlockNode:
        tag = BeautifulSoup(line, 'lxml').find('div')
        attrs = tag.attrs if tag is not None else {}

        raw_type = attrs.get('data-block-type', '')
        try:
            block_type = BlockType(raw_type)
        except ValueError:
            raise ValidationError(
                f"Unknown block type '{raw_type}' in {file_path}", 'data-block-type'
            )

        raw_content = attrs.get('data-content', '{}')
        try:
            content = json.loads(raw_content)
        except json.JSONDecodeError as e:
            raise ValidationError(
                f"Invalid block payload in {file_path}: {e}", 'data-content'
            )
        if not isinstance(content, dict):
            raise ValidationError(
                f"Block payload in {file_path} must be a JSON object", 'data-content'
            )

        return BlockNode(
            block_type=block_type,
            content=content,
            language=attrs.get('data-language') or None,
            reusable_block_id=attrs.get('data-ref') or None,
            is_reusable=attrs.get('data-reusable') == 'true',
            block_id=attrs.get('data-block-id') or None,
        )

    def _close_container(self, node: BlockNode) -> None:
        if node.reusable_block_id and self.resolver is not None:
            if self.resolver(node.reusable_block_id) is not None:
                node.children = []

    # ------------------------------------------------------------------
    # Native forms
    # ------------------------------------------------------------------

    def _parse_code(self, lines: List[str], start: int, language: str,
                    file_path: str) -> Tuple[BlockNode, int]:
        code = []
        i = start + 1
        while i < len(lines) and not lines[i].startswith(CODE_FENCE):
            code.append(lines[i])
            i += 1
        if i >= len(lines):
            logger.warning(f"{file_path}:{start + 1}: unclosed code fence")
        node = BlockNode.text(BlockType.CODE_BLOCK, '\n'.join(code))
        node.language = language or None
        return node, i + 1

    def _parse_math(self, lines: List[str], start: int,
                    file_path: str) -> Tuple[BlockNode, int]:
        expression = []
        i = start + 1
        while i < len(lines) and lines[i].strip() != MATH_FENCE:
            expression.append(lines[i])
            i += 1
        if i >= len(lines):
            logger.warning(f"{file_path}:{start + 1}: unclosed math block")
        return BlockNode.text(BlockType.MATH, '\n'.join(expression)), i + 1

    @staticmethod
    def _parse_blockquote(lines: List[str], start: int) -> Tuple[BlockNode, int]:
        quoted = []
        i = start
        while i < len(lines) and lines[i].startswith('>'):
            line = lines[i]
            quoted.append(line[2:] if line.startswith('> ') else line[1:])
            i += 1
        return BlockNode.text(BlockType.BLOCKQUOTE, '\n'.join(quoted)), i

    @staticmethod
    def _parse_table(lines: List[str], start: int) -> Tuple[BlockNode, int]:
        rows = [split_table_row(lines[start])]
        i = start + 2
        while i < len(lines) and lines[i].startswith('|'):
            rows.append(split_table_row(lines[i]))
            i += 1
        return BlockNode(block_type=BlockType.TABLE, content={'rows': rows}), i

    @staticmethod
    def _collect_paragraph(lines: List[str], start: int) -> Tuple[List[str], int]:
        collected = [lines[start]]
        i = start + 1
        while i < len(lines):
            line = lines[i]
            if (not line.strip()
                    or CONTAINER_OPEN_PATTERN.match(line)
                    or CONTAINER_CLOSE_PATTERN.match(line)
                    or FENCE_PATTERN.match(line)
                    or HEADING_PATTERN.match(line)
                    or line.strip() == MATH_FENCE):
                break
            collected.append(line)
            i += 1
        return collected, i

    def _parse_html(self, fragment: List[str], file_path: str) -> List[BlockNode]:
        markdown = html_to_markdown('\n'.join(fragment))
        if not markdown:
            return []
        logger.debug(f"{file_path}: converted raw HTML fragment to Markdown")
        return BlockParser(self.resolver, convert_html=False).parse(markdown, file_path)
