"""Permission checking utilities.

Provides the checker used by the identity service and the decorator that
guards FastAPI endpoints.
"""

from functools import wraps
from typing import Callable, List, Union

from fastapi import HTTPException, status

from .permissions import Permission, WILDCARD


class PermissionChecker:
    """Checks if a user has specific permissions based on their role."""

    def __init__(self, user_permissions: list[str]):
        """
        Initialize with user's permissions list.

        Args:
            user_permissions: List of permission strings from user's role
        """
        self.permissions = set(user_permissions or [])

    def has_permission(self, permission: Union[str, Permission]) -> bool:
        """Check if user has a specific permission (wildcards honored)."""
        perm_str = str(permission)

        if perm_str in self.permissions:
            return True

        if ":" not in perm_str:
            return False

        resource, action = perm_str.split(":", 1)
        candidates = (
            f"{resource}:{WILDCARD}",
            f"{WILDCARD}:{action}",
            f"{WILDCARD}:{WILDCARD}",
        )
        return any(c in self.permissions for c in candidates)

    def has_any_permission(self, permissions: List[Union[str, Permission]]) -> bool:
        return any(self.has_permission(p) for p in permissions)

    def has_all_permissions(self, permissions: List[Union[str, Permission]]) -> bool:
        return all(self.has_permission(p) for p in permissions)


def has_permission(user, permission: Union[str, Permission]) -> bool:
    """
    Check if a user has a specific permission.

    Args:
        user: User model instance with role relationship
        permission: Permission string or Permission object
    """
    if not user or not user.role:
        return False

    checker = PermissionChecker(user.role.permissions or [])
    return checker.has_permission(permission)


def require_permission(*permissions: Union[str, Permission], require_all: bool = False):
    """
    Decorator factory for FastAPI endpoints requiring specific permissions.

    Usage:
        @router.get("/approvals/{request_id}")
        @require_permission("approvals:read")
        async def get_request(request_id: UUID, current_user: User = Depends(get_current_user)):
            ...
    """
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            current_user = kwargs.get("current_user")

            if not current_user:
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Authentication required"
                )

            if not current_user.role:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail="User has no assigned role"
                )

            checker = PermissionChecker(current_user.role.permissions or [])
            perm_strs = [str(p) for p in permissions]

            if require_all:
                has_access = checker.has_all_permissions(perm_strs)
            else:
                has_access = checker.has_any_permission(perm_strs)

            if not has_access:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Insufficient permissions. Required: {', '.join(perm_strs)}"
                )

            return await func(*args, **kwargs)

        return wrapper
    return decorator
