"""Block tree construction and comparison.

Blocks are persisted flat (one record per block with a parent block id and a
position). Callers work with BlockNode trees instead; this module converts
between the two using an id -> children index, never by following parent
links recursively, so a corrupted parent chain cannot loop forever.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from src.core.errors import InternalError, ValidationError

from .models import Block, BlockType


@dataclass
class BlockNode:
    """A block and its children, independent of storage identifiers.

    Attributes:
        block_type: Type tag
        content: Type-specific payload
        language: Code language (code blocks only)
        reusable_block_id: Referenced reusable block (reusable_block only)
        is_reusable: Whether this block may be referenced from other pages
        children: Nested blocks in order
        block_id: Existing identifier to keep, if any
    """
    block_type: BlockType
    content: Dict[str, Any] = field(default_factory=dict)
    language: Optional[str] = None
    reusable_block_id: Optional[str] = None
    is_reusable: bool = False
    children: List['BlockNode'] = field(default_factory=list)
    block_id: Optional[str] = None

    @classmethod
    def text(cls, block_type: BlockType, text: str) -> "BlockNode":
        return cls(block_type=block_type, content={"text": text})


def build_blocks(page_id: str, nodes: List[BlockNode]) -> List[Block]:
    """Flatten a block tree into records with ids, parents and positions.

    Existing block ids on nodes are kept; missing ones are generated.

    Args:
        page_id: Owning page
        nodes: Top-level nodes in order

    Returns:
        Block records in depth-first order

    Raises:
        ValidationError: If the same block id appears twice
    """
    blocks: List[Block] = []
    seen = set()
    stack = [(None, position, node) for position, node in reversed(list(enumerate(nodes)))]

    while stack:
        parent_id, position, node = stack.pop()
        block_id = node.block_id or str(uuid.uuid4())
        if block_id in seen:
            raise ValidationError(f"Duplicate block id {block_id}", 'blocks')
        seen.add(block_id)

        blocks.append(Block(
            id=block_id,
            page_id=page_id,
            parent_block_id=parent_id,
            block_type=BlockType(node.block_type),
            position=position,
            content=dict(node.content),
            language=node.language,
            is_reusable=node.is_reusable,
            reusable_block_id=node.reusable_block_id,
        ))
        for child_position, child in reversed(list(enumerate(node.children))):
            stack.append((block_id, child_position, child))

    return blocks


def to_nodes(blocks: List[Block]) -> List[BlockNode]:
    """Rebuild the block tree from flat records.

    Args:
        blocks: Records of a single page

    Returns:
        Top-level nodes ordered by position

    Raises:
        InternalError: If a block references a missing parent or the parent
            links contain a cycle
    """
    by_id = {block.id: block for block in blocks}
    children_index: Dict[Optional[str], List[Block]] = {}
    for block in blocks:
        parent_key = block.parent_block_id
        if parent_key is not None and parent_key not in by_id:
            raise InternalError(
                f"Block {block.id} references missing parent block {parent_key}"
            )
        children_index.setdefault(parent_key, []).append(block)

    nodes_by_id = {
        block.id: BlockNode(
            block_type=block.block_type,
            content=dict(block.content),
            language=block.language,
            reusable_block_id=block.reusable_block_id,
            is_reusable=block.is_reusable,
            block_id=block.id,
        )
        for block in blocks
    }

    visited = set()
    roots = sorted(children_index.get(None, []), key=lambda b: b.position)
    queue = list(roots)
    while queue:
        block = queue.pop(0)
        visited.add(block.id)
        kids = sorted(children_index.get(block.id, []), key=lambda b: b.position)
        nodes_by_id[block.id].children = [nodes_by_id[kid.id] for kid in kids]
        queue.extend(kids)

    if len(visited) != len(blocks):
        raise InternalError("Block parent links contain a cycle")

    return [nodes_by_id[block.id] for block in roots]


def snapshot_blocks(blocks: List[Block]) -> List[Dict[str, Any]]:
    """Convert block records into plain dicts for a version snapshot."""
    return [
        {
            'id': block.id,
            'parent_block_id': block.parent_block_id,
            'block_type': block.block_type.value,
            'position': block.position,
            'content': dict(block.content),
            'language': block.language,
            'is_reusable': block.is_reusable,
            'reusable_block_id': block.reusable_block_id,
        }
        for block in blocks
    ]


def blocks_from_snapshot(page_id: str, snapshot: List[Dict[str, Any]]) -> List[Block]:
    """Recreate block records from a version snapshot."""
    return [
        Block(
            id=record['id'],
            page_id=page_id,
            parent_block_id=record.get('parent_block_id'),
            block_type=BlockType(record['block_type']),
            position=record.get('position', 0),
            content=dict(record.get('content') or {}),
            language=record.get('language'),
            is_reusable=bool(record.get('is_reusable', False)),
            reusable_block_id=record.get('reusable_block_id'),
        )
        for record in snapshot
    ]


def tree_signature(nodes: List[BlockNode]) -> tuple:
    """Identifier-free, hashable description of a block tree.

    Two trees with equal signatures have the same types, content, ordering
    and nesting.
    """
    def sign(node: BlockNode) -> tuple:
        content = tuple(sorted((k, repr(v)) for k, v in node.content.items()))
        return (
            BlockType(node.block_type).value,
            content,
            node.language,
            node.reusable_block_id,
            tuple(sign(child) for child in node.children),
        )

    return tuple(sign(node) for node in nodes)


def iter_nodes(nodes: List[BlockNode]):
    """Yield every node of a tree, depth first."""
    stack = list(reversed(nodes))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))
