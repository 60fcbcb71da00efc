"""Change requests: proposed page edits reviewed before they are merged.

This package provides the change request models, block-level diffs, the
per-branch merge locks and the ChangeRequestWorkflow state machine.
"""

from .branch_locks import BranchLockManager
from .diff import diff_blocks, make_snapshot, same_content, snapshot_nodes
from .models import (
    ChangeRequest,
    ChangeRequestAction,
    ChangeRequestChange,
    ChangeRequestStatus,
    ChangeType,
    MergeOutcome,
    Review,
    ReviewStatus,
)
from .workflow import ChangeRequestWorkflow

__all__ = [
    'BranchLockManager',
    'ChangeRequest',
    'ChangeRequestAction',
    'ChangeRequestChange',
    'ChangeRequestStatus',
    'ChangeRequestWorkflow',
    'ChangeType',
    'MergeOutcome',
    'Review',
    'ReviewStatus',
    'diff_blocks',
    'make_snapshot',
    'same_content',
    'snapshot_nodes',
]
