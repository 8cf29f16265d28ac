"""Identity and permission collaborator.

The engine never computes authorization policy itself; it asks an
``IdentityService``. ``DirectoryIdentityService`` answers from the local
users/roles tables and is what the HTTP application wires in.
"""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Set
from uuid import UUID

from sqlalchemy import and_
from sqlalchemy.orm import Session, joinedload

from approvalflow.core.rbac.checker import PermissionChecker
from approvalflow.core.rbac.permissions import Action, Permission
from approvalflow.db.models import Role, User

logger = logging.getLogger(__name__)


class IdentityService(ABC):
    """Interface the engine uses to reach the identity/permission system."""

    @abstractmethod
    def authorize(self, user_id: UUID, org_id: UUID, entity_type: str) -> bool:
        """Can this user act on approvals of this entity type right now?"""

    @abstractmethod
    def role_members(self, org_id: UUID, role: str) -> Set[UUID]:
        """Current active holders of a role in the organization."""

    @abstractmethod
    def managers_of(self, user_id: UUID, org_id: UUID, levels: int = 1) -> List[UUID]:
        """The user's manager chain, nearest first, up to ``levels`` deep."""

    @abstractmethod
    def active_users(self, org_id: UUID, user_ids: Iterable[UUID]) -> Set[UUID]:
        """The subset of ``user_ids`` that are active members of the organization."""

    def is_valid_user(self, user_id: UUID, org_id: UUID) -> bool:
        return user_id in self.active_users(org_id, [user_id])


class DirectoryIdentityService(IdentityService):
    """Identity service backed by the ``users`` and ``roles`` tables."""

    def __init__(self, db: Session):
        self.db = db

    def authorize(self, user_id: UUID, org_id: UUID, entity_type: str) -> bool:
        user = self._get_member(user_id, org_id)
        if user is None or user.role is None:
            logger.debug("User %s is not an active member of org %s", user_id, org_id)
            return False

        checker = PermissionChecker(user.role.permissions or [])
        return checker.has_permission(Permission.for_entity_type(entity_type, Action.APPROVE))

    def role_members(self, org_id: UUID, role: str) -> Set[UUID]:
        rows = self.db.query(User.id).join(Role, User.role_id == Role.id).filter(
            and_(
                User.org_id == org_id,
                User.is_active.is_(True),
                Role.org_id == org_id,
                Role.name == role,
            )
        ).all()
        return {row.id for row in rows}

    def managers_of(self, user_id: UUID, org_id: UUID, levels: int = 1) -> List[UUID]:
        chain: List[UUID] = []
        seen = {user_id}
        current = self._get_member(user_id, org_id, require_active=False)

        while current is not None and current.manager_id and len(chain) < levels:
            if current.manager_id in seen:
                logger.warning("Manager cycle detected at user %s", current.manager_id)
                break
            seen.add(current.manager_id)
            manager = self._get_member(current.manager_id, org_id, require_active=False)
            if manager is None:
                break
            if manager.is_active:
                chain.append(manager.id)
            current = manager

        return chain

    def active_users(self, org_id: UUID, user_ids: Iterable[UUID]) -> Set[UUID]:
        ids = set(user_ids)
        if not ids:
            return set()
        rows = self.db.query(User.id).filter(
            and_(
                User.id.in_(ids),
                User.org_id == org_id,
                User.is_active.is_(True),
            )
        ).all()
        return {row.id for row in rows}

    def _get_member(self, user_id: UUID, org_id: UUID, *, require_active: bool = True) -> Optional[User]:
        query = self.db.query(User).options(joinedload(User.role)).filter(
            and_(User.id == user_id, User.org_id == org_id)
        )
        if require_active:
            query = query.filter(User.is_active.is_(True))
        return query.first()
