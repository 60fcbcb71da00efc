"""Role-based access checks over tagged resource kinds.

Every resource the engine exposes is one of a closed set of frozen
dataclasses, each carrying its own typed identifier. check_access() dispatches
on the resource kind to one check function per kind.

Roles are granted per space. A space without any grant is unrestricted;
once a role is granted in a space, every actor needs a role there.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from functools import singledispatch
from typing import TYPE_CHECKING, Dict, Optional, Tuple, Union

from src.core.errors import ForbiddenError, ValidationError

if TYPE_CHECKING:
    from src.storage.store import ContentStore

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Role of a user within a space, strongest first."""
    ADMIN = "admin"
    CREATOR = "creator"
    EDITOR = "editor"
    COMMENTER = "commenter"
    VISITOR = "visitor"

    @property
    def rank(self) -> int:
        return _ROLE_RANKS[self]


class Permission(str, Enum):
    READ = "read"
    COMMENT = "comment"
    EDIT = "edit"
    MANAGE = "manage"


_ROLE_RANKS = {
    Role.VISITOR: 0,
    Role.COMMENTER: 1,
    Role.EDITOR: 2,
    Role.CREATOR: 3,
    Role.ADMIN: 4,
}

# Weakest role holding each permission on a space
_SPACE_MINIMUM = {
    Permission.READ: Role.VISITOR,
    Permission.COMMENT: Role.COMMENTER,
    Permission.EDIT: Role.EDITOR,
    Permission.MANAGE: Role.ADMIN,
}


@dataclass(frozen=True)
class SpaceResource:
    space_id: str


@dataclass(frozen=True)
class PageResource:
    page_id: str


@dataclass(frozen=True)
class ChangeRequestResource:
    change_request_id: str


@dataclass(frozen=True)
class SyncConfigResource:
    config_id: str


Resource = Union[SpaceResource, PageResource, ChangeRequestResource, SyncConfigResource]


class AccessPolicy:
    """Space role grants.

    Args:
        store: Persistence collaborator used to resolve resources to spaces
    """

    def __init__(self, store: 'ContentStore'):
        self.store = store
        self._grants: Dict[Tuple[str, str], Role] = {}
        self._lock = threading.Lock()

    def grant(self, space_id: str, user_id: str, role: Union[Role, str]) -> Role:
        try:
            role = Role(role)
        except ValueError:
            raise ValidationError(f"Unknown role '{role}'", 'role')
        with self._lock:
            self._grants[(space_id, user_id)] = role
        logger.info(f"Granted {role.value} on space {space_id} to {user_id}")
        return role

    def revoke(self, space_id: str, user_id: str) -> None:
        with self._lock:
            self._grants.pop((space_id, user_id), None)

    def role_of(self, space_id: str, user_id: str) -> Optional[Role]:
        with self._lock:
            return self._grants.get((space_id, user_id))

    def is_restricted(self, space_id: str) -> bool:
        with self._lock:
            return any(key[0] == space_id for key in self._grants)

    def has_role(self, space_id: str, user_id: str, minimum: Role) -> bool:
        """Whether user_id holds at least minimum in space_id."""
        if not self.is_restricted(space_id):
            return True
        role = self.role_of(space_id, user_id)
        return role is not None and role.rank >= minimum.rank


def check_access(policy: AccessPolicy, actor_id: str, resource: Resource,
                 permission: Union[Permission, str]) -> None:
    """Raise ForbiddenError unless actor_id holds permission on resource.

    Raises:
        ForbiddenError: If access is denied
        NotFoundError: If the resource does not exist
        ValidationError: If the resource kind or permission is unknown
    """
    try:
        permission = Permission(permission)
    except ValueError:
        raise ValidationError(f"Unknown permission '{permission}'", 'permission')

    if not _allowed(resource, policy, actor_id, permission):
        logger.debug(f"Denied {permission.value} on {resource} to {actor_id}")
        raise ForbiddenError(
            f"{actor_id} may not {permission.value} {type(resource).__name__} "
            f"{_identifier(resource)}"
        )


@singledispatch
def _allowed(resource, policy: AccessPolicy, actor_id: str, permission: Permission) -> bool:
    raise ValidationError(f"Unknown resource kind {type(resource).__name__}", 'resource')


@_allowed.register
def _(resource: SpaceResource, policy: AccessPolicy, actor_id: str,
      permission: Permission) -> bool:
    return policy.has_role(resource.space_id, actor_id, _SPACE_MINIMUM[permission])


@_allowed.register
def _(resource: PageResource, policy: AccessPolicy, actor_id: str,
      permission: Permission) -> bool:
    page = policy.store.require_page(resource.page_id, include_deleted=True)
    minimum = _SPACE_MINIMUM[permission]
    if permission == Permission.READ and not page.is_published:
        # Drafts are visible to editors only
        minimum = Role.EDITOR
    return policy.has_role(page.space_id, actor_id, minimum)


@_allowed.register
def _(resource: ChangeRequestResource, policy: AccessPolicy, actor_id: str,
      permission: Permission) -> bool:
    change_request = policy.store.require_change_request(resource.change_request_id)
    space_id = change_request.space_id
    if permission == Permission.MANAGE:
        # Merging: space creators and admins, or an assigned reviewer who can edit
        if actor_id in change_request.reviewers:
            return policy.has_role(space_id, actor_id, Role.EDITOR)
        return policy.has_role(space_id, actor_id, Role.CREATOR)
    return policy.has_role(space_id, actor_id, _SPACE_MINIMUM[permission])


@_allowed.register
def _(resource: SyncConfigResource, policy: AccessPolicy, actor_id: str,
      permission: Permission) -> bool:
    config = policy.store.require_sync_config(resource.config_id)
    minimum = {
        Permission.READ: Role.EDITOR,
        Permission.COMMENT: Role.EDITOR,
        Permission.EDIT: Role.CREATOR,
        Permission.MANAGE: Role.ADMIN,
    }[permission]
    return policy.has_role(config.space_id, actor_id, minimum)


def _identifier(resource: Resource) -> str:
    return next(iter(vars(resource).values()))
