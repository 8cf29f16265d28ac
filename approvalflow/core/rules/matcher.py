"""Workflow matching.

Selects the single workflow that governs a submitted entity: among the
organization's active workflows for the entity type, the highest
priority workflow whose conditions match wins; ties go to the earliest
created (then lowest id) so repeated runs always pick the same one.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID

from sqlalchemy import and_
from sqlalchemy.orm import Session

from approvalflow.core.errors import InvalidConditionError, NoMatchingWorkflowError
from approvalflow.db.models import ApprovalWorkflow

from .conditions import matches, parse_conditions

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    """Outcome of matching one entity against the candidate workflows."""
    workflow: Optional[ApprovalWorkflow]
    evaluated: List[UUID] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.workflow is not None


class WorkflowMatcher:
    """Finds the applicable workflow for an organization + entity."""

    def __init__(self, db: Session):
        self.db = db

    def find_matching_workflow(
        self,
        org_id: UUID,
        entity_type: str,
        entity_snapshot: Mapping[str, Any],
    ) -> ApprovalWorkflow:
        """
        Return the governing workflow.

        Raises:
            NoMatchingWorkflowError: If no active workflow matches
            InvalidConditionError: If a candidate reached before the match has
                malformed stored conditions
        """
        result = self.match(org_id, entity_type, entity_snapshot)
        if not result.matched:
            logger.info(
                "No workflow matched %s in org %s (%d candidates)",
                entity_type, org_id, len(result.evaluated),
            )
            raise NoMatchingWorkflowError(org_id, entity_type)
        return result.workflow

    def match(
        self,
        org_id: UUID,
        entity_type: str,
        entity_snapshot: Mapping[str, Any],
    ) -> MatchResult:
        """
        Evaluate candidates in precedence order and report the first match.

        A candidate with malformed conditions stops the evaluation; lower
        priority workflows are never consulted in its place.
        """
        context = self._build_context(entity_type, entity_snapshot)
        result = MatchResult(workflow=None)

        for workflow in self.candidates(org_id, entity_type):
            result.evaluated.append(workflow.id)
            try:
                condition = parse_conditions(workflow.conditions)
            except InvalidConditionError as e:
                logger.error("Workflow %s (%s) has invalid conditions: %s", workflow.id, workflow.name, e)
                raise

            if matches(condition, context):
                logger.info(
                    "Matched workflow %s (%s) for %s in org %s",
                    workflow.id, workflow.name, entity_type, org_id,
                )
                result.workflow = workflow
                return result

        return result

    def candidates(self, org_id: UUID, entity_type: str) -> List[ApprovalWorkflow]:
        """Active workflows for the entity type, in deterministic precedence order."""
        return self.db.query(ApprovalWorkflow).filter(
            and_(
                ApprovalWorkflow.org_id == org_id,
                ApprovalWorkflow.entity_type == entity_type,
                ApprovalWorkflow.is_active.is_(True),
            )
        ).order_by(
            ApprovalWorkflow.priority.desc(),
            ApprovalWorkflow.created_at.asc(),
            ApprovalWorkflow.id.asc(),
        ).all()

    def _build_context(self, entity_type: str, entity_snapshot: Mapping[str, Any]) -> Dict[str, Any]:
        """Snapshot attributes plus the entity type, for conditions that test it."""
        return {
            **dict(entity_snapshot or {}),
            "entity_type": entity_type,
        }
