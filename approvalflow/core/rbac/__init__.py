"""RBAC (Role-Based Access Control) for the approval workflow engine.

Defines the permission model, default roles, and access control utilities.
"""

from .permissions import Permission, Resource, Action, PERMISSION_DEFINITIONS
from .checker import PermissionChecker, has_permission, require_permission

__all__ = [
    "Permission",
    "Resource",
    "Action",
    "PERMISSION_DEFINITIONS",
    "PermissionChecker",
    "has_permission",
    "require_permission",
]
