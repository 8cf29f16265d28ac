"""Approver resolution.

Turns a workflow step's ``approver_spec`` into the concrete set of users
who must act on it. Role membership and manager chains are looked up
through the ``IdentityService`` when the step-order opens, so changes
made between steps are honored.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, FrozenSet, Iterable, List, Mapping, Optional, Union
from uuid import UUID

from approvalflow.core.errors import InvalidApproverSpecError, NoEligibleApproversError
from approvalflow.db.models import WorkflowStep
from approvalflow.services.identity import IdentityService

logger = logging.getLogger(__name__)


class ApproverSpecType(str, Enum):
    """Tags of the approver spec union."""

    USERS = "users"
    ROLE = "role"
    ENTITY_FIELD = "entity_field"
    REQUESTER_MANAGER = "requester_manager"


@dataclass(frozen=True)
class StaticUsers:
    user_ids: tuple


@dataclass(frozen=True)
class RoleMembers:
    role: str


@dataclass(frozen=True)
class EntityField:
    """Approvers named by an attribute of the submitted entity."""
    field: str


@dataclass(frozen=True)
class RequesterManager:
    levels: int = 1


ApproverSpec = Union[StaticUsers, RoleMembers, EntityField, RequesterManager]


@dataclass(frozen=True)
class EntityContext:
    """What the submitting caller told us about the entity."""
    entity_type: str
    entity_id: str
    snapshot: Mapping[str, Any]
    requested_by: UUID


def parse_approver_spec(data: Any) -> ApproverSpec:
    """
    Parse a stored approver spec.

    Raises:
        InvalidApproverSpecError: If the spec is malformed or has an unknown type
    """
    if not isinstance(data, Mapping):
        raise InvalidApproverSpecError(f"Approver spec must be an object, got {type(data).__name__}")

    try:
        kind = ApproverSpecType(data.get("type"))
    except ValueError:
        raise InvalidApproverSpecError(f"Unknown approver spec type: {data.get('type')!r}")

    if kind == ApproverSpecType.USERS:
        raw_ids = data.get("user_ids")
        if not isinstance(raw_ids, (list, tuple)) or not raw_ids:
            raise InvalidApproverSpecError("'users' approver spec needs a non-empty 'user_ids' list")
        return StaticUsers(user_ids=tuple(_parse_user_id(v) for v in raw_ids))

    if kind == ApproverSpecType.ROLE:
        role = data.get("role")
        if not isinstance(role, str) or not role.strip():
            raise InvalidApproverSpecError("'role' approver spec needs a role name")
        return RoleMembers(role=role)

    if kind == ApproverSpecType.ENTITY_FIELD:
        field = data.get("field")
        if not isinstance(field, str) or not field:
            raise InvalidApproverSpecError("'entity_field' approver spec needs a field name")
        return EntityField(field=field)

    levels = data.get("levels", 1)
    if isinstance(levels, bool) or not isinstance(levels, int) or levels < 1:
        raise InvalidApproverSpecError(f"'requester_manager' levels must be a positive integer, got {levels!r}")
    return RequesterManager(levels=levels)


def _parse_user_id(value: Any) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise InvalidApproverSpecError(f"Invalid user id in approver spec: {value!r}")


class ApproverResolver:
    """Resolves workflow steps to approver sets."""

    def __init__(self, identity: IdentityService):
        self.identity = identity

    def resolve(self, step: WorkflowStep, org_id: UUID, context: EntityContext) -> FrozenSet[UUID]:
        """
        Resolve the approvers of one workflow step.

        Only active members of the organization are returned.

        Raises:
            InvalidApproverSpecError: If the step's spec is malformed
            NoEligibleApproversError: If nobody is left to approve
        """
        spec = parse_approver_spec(step.approver_spec)
        candidates = self._candidates(spec, org_id, context)
        approvers = frozenset(self.identity.active_users(org_id, candidates))

        if not approvers:
            logger.warning(
                "Step %s of workflow %s resolved no approvers (spec=%s)",
                step.step_order, step.workflow_id, step.approver_spec,
            )
            raise NoEligibleApproversError(step.workflow_id, step.step_order)

        logger.debug("Step %s resolved %d approver(s)", step.step_order, len(approvers))
        return approvers

    def _candidates(self, spec: ApproverSpec, org_id: UUID, context: EntityContext) -> Iterable[UUID]:
        if isinstance(spec, StaticUsers):
            return spec.user_ids
        if isinstance(spec, RoleMembers):
            return self.identity.role_members(org_id, spec.role)
        if isinstance(spec, EntityField):
            return self._from_entity_field(spec.field, context)
        return self.identity.managers_of(context.requested_by, org_id, spec.levels)

    def _from_entity_field(self, field: str, context: EntityContext) -> List[UUID]:
        value = (context.snapshot or {}).get(field)
        if value is None:
            return []
        values = value if isinstance(value, (list, tuple)) else [value]

        ids: List[UUID] = []
        for raw in values:
            user_id = _coerce_uuid(raw)
            if user_id is None:
                logger.warning("Ignoring non-UUID approver %r in entity field %s", raw, field)
                continue
            ids.append(user_id)
        return ids


def _coerce_uuid(value: Any) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None
