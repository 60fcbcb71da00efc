"""Bidirectional synchronization between spaces and repositories.

This package provides the three-way merge decisions, the conflict resolver,
the pull and push phases, webhook handling and the SyncEngine that runs
them under the per-config single-flight mutex.
"""

from .baselines import BaselineManager
from .conflict_resolver import (
    ConflictResolver,
    MergeDecision,
    MergeResolution,
    ResolutionChoice,
    has_conflict_markers,
    merge_preview,
    resolve_three_way,
    three_way_merge,
)
from .mapping import build_mapper
from .models import (
    CommitResult,
    GitBranch,
    GitCommit,
    GitSyncConfig,
    SyncBaseline,
    SyncDirection,
    SyncHistory,
    SyncOperation,
    SyncStatus,
    SyncTrigger,
)
from .pull import PullPlan, PullSync
from .push import PushPlan, PushSync
from .sync_engine import SyncEngine
from .watchdog import SyncWatchdog
from .webhook import WebhookEvent, parse_payload, sign_payload, verify_signature

__all__ = [
    'BaselineManager',
    'CommitResult',
    'ConflictResolver',
    'GitBranch',
    'GitCommit',
    'GitSyncConfig',
    'MergeDecision',
    'MergeResolution',
    'PullPlan',
    'PullSync',
    'PushPlan',
    'PushSync',
    'ResolutionChoice',
    'SyncBaseline',
    'SyncDirection',
    'SyncEngine',
    'SyncHistory',
    'SyncOperation',
    'SyncStatus',
    'SyncTrigger',
    'SyncWatchdog',
    'WebhookEvent',
    'build_mapper',
    'has_conflict_markers',
    'merge_preview',
    'parse_payload',
    'resolve_three_way',
    'sign_payload',
    'three_way_merge',
    'verify_signature',
]
