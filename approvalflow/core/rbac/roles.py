"""Default role definitions.

1. Admin - Full access, may cancel any request
2. Approver - Reads requests and acts on steps for every entity type
3. Requester - Submits entities and follows their requests
4. Viewer - Read-only access
"""

from typing import Dict, List

from .permissions import Action, Permission, Resource, WILDCARD


def _build_permissions(*perms: tuple) -> List[str]:
    """Build permission strings from (resource, Action) tuples."""
    return [str(Permission(r.value if isinstance(r, Resource) else r, a)) for r, a in perms]


ADMIN_PERMISSIONS = [
    "*:*"  # Global wildcard - all permissions
]

APPROVER_PERMISSIONS = _build_permissions(
    (Resource.APPROVALS, Action.READ),
    (Resource.APPROVALS, Action.LIST),
    (Resource.APPROVALS, Action.SUBMIT),
    (Resource.WORKFLOWS, Action.READ),
    (Resource.WORKFLOWS, Action.LIST),
    # Every entity type
    (WILDCARD, Action.APPROVE),
)

REQUESTER_PERMISSIONS = _build_permissions(
    (Resource.APPROVALS, Action.READ),
    (Resource.APPROVALS, Action.LIST),
    (Resource.APPROVALS, Action.SUBMIT),
)

VIEWER_PERMISSIONS = _build_permissions(
    (Resource.APPROVALS, Action.READ),
    (Resource.APPROVALS, Action.LIST),
    (Resource.WORKFLOWS, Action.READ),
    (Resource.WORKFLOWS, Action.LIST),
)


DEFAULT_ROLES: Dict[str, dict] = {
    "admin": {
        "name": "Admin",
        "description": "Full access with all permissions",
        "permissions": ADMIN_PERMISSIONS,
        "is_system": True,
    },
    "approver": {
        "name": "Approver",
        "description": "Acts on approval steps for every entity type",
        "permissions": APPROVER_PERMISSIONS,
        "is_system": True,
    },
    "requester": {
        "name": "Requester",
        "description": "Submits entities for approval and follows their progress",
        "permissions": REQUESTER_PERMISSIONS,
        "is_system": True,
    },
    "viewer": {
        "name": "Viewer",
        "description": "Read-only access to approval requests",
        "permissions": VIEWER_PERMISSIONS,
        "is_system": True,
    },
}


def get_default_role_permissions(role_key: str) -> List[str]:
    """Get permissions list for a default role."""
    role = DEFAULT_ROLES.get(role_key)
    if not role:
        raise ValueError(f"Unknown default role: {role_key}")
    return role["permissions"]
