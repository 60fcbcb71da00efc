"""Engine facade and resource access checks."""

from .access import (
    AccessPolicy,
    ChangeRequestResource,
    PageResource,
    Permission,
    Role,
    SpaceResource,
    SyncConfigResource,
    check_access,
)
from .docs_engine import DocsEngine

__all__ = [
    'AccessPolicy',
    'ChangeRequestResource',
    'DocsEngine',
    'PageResource',
    'Permission',
    'Role',
    'SpaceResource',
    'SyncConfigResource',
    'check_access',
]
