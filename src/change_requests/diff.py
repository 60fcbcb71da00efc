"""Block-level diffs and snapshots of proposed page edits.

Snapshots have the shape ``{"title": str, "blocks": [block records]}``, the
same records the version log stores. Diffs match blocks by id: blocks only
in the before snapshot are removed, blocks only in the after snapshot are
added, and blocks in both are modified (type, content or language changed)
or moved (parent or position changed).
"""

from typing import Any, Dict, List, Optional

from src.content_tree.blocks import (
    BlockNode,
    blocks_from_snapshot,
    build_blocks,
    snapshot_blocks,
    to_nodes,
    tree_signature,
)
from src.content_tree.models import Block


def make_snapshot(title: str, blocks: List[Block]) -> Dict[str, Any]:
    return {'title': title, 'blocks': snapshot_blocks(blocks)}


def snapshot_from_nodes(page_id: str, title: str, nodes: List[BlockNode]) -> Dict[str, Any]:
    """Snapshot a proposed block tree (new blocks get generated ids)."""
    return make_snapshot(title, build_blocks(page_id, nodes))


def snapshot_nodes(snapshot: Optional[Dict[str, Any]]) -> List[BlockNode]:
    """Return the block tree of a snapshot."""
    if not snapshot:
        return []
    return to_nodes(blocks_from_snapshot('', snapshot.get('blocks') or []))


def same_content(first: Optional[Dict[str, Any]], second: Optional[Dict[str, Any]]) -> bool:
    """Compare two snapshots by title and block tree, ignoring block ids."""
    if first is None or second is None:
        return first is second
    return (
        first.get('title') == second.get('title')
        and tree_signature(snapshot_nodes(first)) == tree_signature(snapshot_nodes(second))
    )


def diff_blocks(before: Optional[Dict[str, Any]],
                after: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Compute the block-level changes between two snapshots.

    Returns:
        Entries of the form {"op", "block_id", "block_type", "before", "after"}
        with op one of added, removed, modified, moved; removed entries
        first, then the after snapshot's blocks in order
    """
    before_records = {r['id']: r for r in (before or {}).get('blocks') or []}
    after_records = (after or {}).get('blocks') or []
    after_ids = {r['id'] for r in after_records}

    changes = []
    for block_id, record in before_records.items():
        if block_id not in after_ids:
            changes.append(_entry('removed', record, record, None))

    for record in after_records:
        previous = before_records.get(record['id'])
        if previous is None:
            changes.append(_entry('added', record, None, record))
        elif _payload(previous) != _payload(record):
            changes.append(_entry('modified', record, previous, record))
        elif _placement(previous) != _placement(record):
            changes.append(_entry('moved', record, previous, record))
    return changes


def _payload(record: Dict[str, Any]) -> tuple:
    content = tuple(sorted((key, repr(value)) for key, value in (record.get('content') or {}).items()))
    return (record.get('block_type'), content, record.get('language'),
            record.get('reusable_block_id'))


def _placement(record: Dict[str, Any]) -> tuple:
    return (record.get('parent_block_id'), record.get('position'))


def _entry(op: str, record: Dict[str, Any], before: Optional[Dict[str, Any]],
           after: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {
        'op': op,
        'block_id': record['id'],
        'block_type': record.get('block_type'),
        'before': before,
        'after': after,
    }
