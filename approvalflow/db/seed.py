"""Database seeding for the approval engine.

Creates default roles, organizations, and workflows loaded from YAML
definitions such as::

    workflows:
      - name: Large expenses
        entity_type: expense
        priority: 10
        conditions: {field: amount, operator: gte, value: 10000}
        steps:
          - name: Finance review
            approvers: {type: role, role: Approver}
            quorum: all
          - name: Director sign-off
            approvers: {type: requester_manager, levels: 2}
            type: single
"""

import logging
import os
import uuid
from dataclasses import dataclass
from typing import IO, Any, Dict, List, Optional, Union

import yaml
from sqlalchemy import and_
from sqlalchemy.orm import Session

from approvalflow.core.approval.machine import normalize_quorum
from approvalflow.core.approval.resolver import parse_approver_spec
from approvalflow.core.errors import InvalidInputError
from approvalflow.core.rbac.roles import DEFAULT_ROLES
from approvalflow.core.rules.conditions import parse_conditions
from approvalflow.db.models import ApprovalWorkflow, Organization, Role, WorkflowStep

logger = logging.getLogger(__name__)


def seed_default_roles(db: Session, org_id: uuid.UUID) -> Dict[str, Role]:
    """
    Create the default roles for an organization.

    Roles are idempotent - if they already exist, returns existing roles.

    Returns:
        Dict mapping role key to Role object
    """
    roles = {}

    for role_key, role_config in DEFAULT_ROLES.items():
        existing = db.query(Role).filter(
            and_(
                Role.org_id == org_id,
                Role.name == role_config["name"],
                Role.is_system.is_(True),
            )
        ).first()

        if existing:
            roles[role_key] = existing
            continue

        role = Role(
            id=uuid.uuid4(),
            org_id=org_id,
            name=role_config["name"],
            permissions=list(role_config["permissions"]),
            is_system=True,
        )
        db.add(role)
        roles[role_key] = role

    db.flush()
    return roles


def seed_organization(
    db: Session,
    name: str,
    slug: str,
    *,
    settings: Optional[dict] = None,
) -> Organization:
    """Create an organization with default roles, or return the existing one."""
    existing = db.query(Organization).filter(Organization.slug == slug).first()
    if existing:
        return existing

    org = Organization(
        id=uuid.uuid4(),
        name=name,
        slug=slug,
        settings=settings or {},
    )
    db.add(org)
    db.flush()

    seed_default_roles(db, org.id)
    logger.info("Seeded organization %s (%s)", slug, org.id)
    return org


def get_role_by_name(db: Session, org_id: uuid.UUID, name: str) -> Optional[Role]:
    """Get a role by name within an organization."""
    return db.query(Role).filter(
        and_(
            Role.org_id == org_id,
            Role.name == name,
        )
    ).first()


# ---------------------------------------------------------------------------
# Workflow definitions
# ---------------------------------------------------------------------------


@dataclass
class StepDefinition:
    step_order: int
    approver_spec: Dict[str, Any]
    quorum: Optional[int]
    name: Optional[str] = None


@dataclass
class WorkflowDefinition:
    name: str
    entity_type: str
    steps: List[StepDefinition]
    conditions: Optional[Dict[str, Any]] = None
    priority: int = 0
    description: Optional[str] = None
    is_active: bool = True


def load_workflow_definitions(source: Union[str, os.PathLike, IO]) -> List[WorkflowDefinition]:
    """
    Load and validate workflow definitions from YAML.

    Args:
        source: Path to a YAML file, or an open stream

    Raises:
        InvalidInputError: If the document structure is wrong
        ApprovalConfigurationError: If a condition or approver spec is invalid
    """
    if hasattr(source, "read"):
        data = yaml.safe_load(source)
    else:
        with open(source, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

    if isinstance(data, dict):
        data = data.get("workflows")
    if not isinstance(data, list):
        raise InvalidInputError("Workflow definitions must be a list under 'workflows'")

    return [_parse_workflow(item, index) for index, item in enumerate(data)]


def _parse_workflow(item: Any, index: int) -> WorkflowDefinition:
    if not isinstance(item, dict):
        raise InvalidInputError(f"Workflow #{index + 1} must be a mapping")

    name = item.get("name")
    entity_type = item.get("entity_type") or item.get("entityType")
    if not name or not entity_type:
        raise InvalidInputError(f"Workflow #{index + 1} needs 'name' and 'entity_type'")

    conditions = item.get("conditions")
    parse_conditions(conditions)

    raw_steps = item.get("steps") or []
    if not isinstance(raw_steps, list) or not raw_steps:
        raise InvalidInputError(f"Workflow '{name}' needs at least one step")

    steps = [_parse_step(raw, position, name) for position, raw in enumerate(raw_steps, start=1)]
    orders = [s.step_order for s in steps]
    if len(set(orders)) != len(orders):
        raise InvalidInputError(f"Workflow '{name}' has duplicate step orders: {orders}")

    priority = item.get("priority", 0)
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise InvalidInputError(f"Workflow '{name}' priority must be an integer")

    return WorkflowDefinition(
        name=str(name),
        entity_type=str(entity_type),
        steps=sorted(steps, key=lambda s: s.step_order),
        conditions=conditions or None,
        priority=priority,
        description=item.get("description"),
        is_active=bool(item.get("is_active", True)),
    )


def _parse_step(raw: Any, position: int, workflow_name: str) -> StepDefinition:
    if not isinstance(raw, dict):
        raise InvalidInputError(f"Step {position} of workflow '{workflow_name}' must be a mapping")

    order = raw.get("order", position)
    if isinstance(order, bool) or not isinstance(order, int) or order < 1:
        raise InvalidInputError(f"Step {position} of workflow '{workflow_name}' has invalid order {order!r}")

    approver_spec = raw.get("approvers")
    parse_approver_spec(approver_spec)

    quorum = normalize_quorum(
        raw.get("quorum"),
        step_type=raw.get("type"),
        min_approvals=raw.get("min_approvals", raw.get("minApprovals")),
    )

    return StepDefinition(
        step_order=order,
        approver_spec=dict(approver_spec),
        quorum=quorum,
        name=raw.get("name"),
    )


def seed_workflows(
    db: Session,
    org_id: uuid.UUID,
    definitions: List[WorkflowDefinition],
) -> List[ApprovalWorkflow]:
    """
    Insert workflow definitions for an organization.

    Idempotent: a workflow with the same name and entity type already in
    the organization is returned as-is, not updated.
    """
    workflows = []

    for definition in definitions:
        existing = db.query(ApprovalWorkflow).filter(
            and_(
                ApprovalWorkflow.org_id == org_id,
                ApprovalWorkflow.name == definition.name,
                ApprovalWorkflow.entity_type == definition.entity_type,
            )
        ).first()

        if existing:
            workflows.append(existing)
            continue

        workflow = ApprovalWorkflow(
            id=uuid.uuid4(),
            org_id=org_id,
            name=definition.name,
            description=definition.description,
            entity_type=definition.entity_type,
            conditions=definition.conditions,
            priority=definition.priority,
            is_active=definition.is_active,
        )
        for step in definition.steps:
            workflow.steps.append(WorkflowStep(
                id=uuid.uuid4(),
                step_order=step.step_order,
                name=step.name,
                approver_spec=step.approver_spec,
                quorum=step.quorum,
            ))
        db.add(workflow)
        workflows.append(workflow)
        logger.info("Seeded workflow '%s' for %s in org %s", definition.name, definition.entity_type, org_id)

    db.flush()
    return workflows
