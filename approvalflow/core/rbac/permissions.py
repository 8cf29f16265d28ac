"""Permission model for the approval workflow engine.

Permission string format: "resource:action"

Two families share the format:
  - engine resources, e.g. ``approvals:submit`` or ``workflows:read``,
    checked by the HTTP layer
  - entity-type permissions, e.g. ``expense:approve`` or
    ``invoice:approve``, checked by the identity service when a user acts
    on a step

Wildcards: ``resource:*`` grants every action on a resource,
``*:action`` grants one action on every resource, ``*:*`` grants all.
"""

from enum import Enum
from typing import FrozenSet, NamedTuple


class Resource(str, Enum):
    """Engine resources that can be protected by permissions."""

    APPROVALS = "approvals"       # Approval requests
    WORKFLOWS = "workflows"       # Workflow templates (read-only here)


class Action(str, Enum):
    """Actions that can be performed on resources."""

    READ = "read"
    LIST = "list"
    SUBMIT = "submit"             # Submit entities for approval
    APPROVE = "approve"           # Act on approval steps of an entity type
    MANAGE = "manage"             # Administrative actions (cancel any request)


WILDCARD = "*"


class Permission(NamedTuple):
    """A permission is a combination of resource and action."""
    resource: str
    action: Action

    def __str__(self) -> str:
        resource = self.resource.value if isinstance(self.resource, Resource) else self.resource
        return f"{resource}:{self.action.value}"

    @classmethod
    def from_string(cls, perm_str: str) -> "Permission":
        """Parse a permission string like 'approvals:read'."""
        parts = perm_str.split(":")
        if len(parts) != 2 or not parts[0]:
            raise ValueError(f"Invalid permission format: {perm_str}")
        return cls(parts[0], Action(parts[1]))

    @classmethod
    def for_entity_type(cls, entity_type: str, action: Action = Action.APPROVE) -> "Permission":
        """Permission to act on approvals of one entity type."""
        return cls(entity_type, action)


# Maps each engine resource to its valid actions
PERMISSION_MATRIX: dict[Resource, FrozenSet[Action]] = {
    Resource.APPROVALS: frozenset([
        Action.READ, Action.LIST, Action.SUBMIT, Action.MANAGE,
    ]),
    Resource.WORKFLOWS: frozenset([
        Action.READ, Action.LIST,
    ]),
}


def _generate_permission_definitions() -> dict[str, Permission]:
    permissions = {}
    for resource, actions in PERMISSION_MATRIX.items():
        for action in actions:
            perm = Permission(resource.value, action)
            permissions[str(perm)] = perm
    return permissions


# All engine permissions as a dictionary: "resource:action" -> Permission
PERMISSION_DEFINITIONS = _generate_permission_definitions()


def is_valid_permission(perm_str: str) -> bool:
    """Check if a permission string is a known engine permission or a valid entity permission."""
    if perm_str in PERMISSION_DEFINITIONS:
        return True
    try:
        Permission.from_string(perm_str)
    except ValueError:
        return False
    return True
