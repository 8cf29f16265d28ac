"""Read-only projections over approval requests.

Every query goes to the database; nothing is cached, so a caller always
sees the lifecycle operations it has just performed.
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session, aliased, selectinload

from approvalflow.core.errors import InvalidInputError, RequestNotFoundError
from approvalflow.db.models import ApprovalHistory, ApprovalRequest, ApprovalStep, WorkflowStep

from .states import RequestStatus, StepStatus

logger = logging.getLogger(__name__)


class ApprovalQueryService:
    """Pending-for-user lists, request detail, entity history and timelines."""

    def __init__(self, db: Session, org_id: UUID):
        self.db = db
        self.org_id = org_id

    def list_for_approver(
        self,
        user_id: UUID,
        *,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """
        Requests the user is involved in as approver or delegate.

        Without a status filter this is the user's inbox: pending requests
        where they hold an actionable pending step. With a status filter it
        lists requests in that status in which the user holds any step.
        """
        owner = aliased(ApprovalRequest)
        if status is None:
            step_filter = and_(
                ApprovalStep.status == StepStatus.PENDING.value,
                ApprovalStep.step_order == owner.current_step_order,
                or_(
                    and_(ApprovalStep.approver_id == user_id, ApprovalStep.delegated_to.is_(None)),
                    ApprovalStep.delegated_to == user_id,
                ),
            )
            request_status = RequestStatus.PENDING.value
        else:
            request_status = _parse_status(status)
            step_filter = or_(ApprovalStep.approver_id == user_id, ApprovalStep.delegated_to == user_id)

        involved = self.db.query(ApprovalStep.request_id).join(
            owner, ApprovalStep.request_id == owner.id
        ).filter(
            and_(owner.org_id == self.org_id, step_filter)
        )

        query = self.db.query(ApprovalRequest).options(
            selectinload(ApprovalRequest.steps)
        ).filter(
            and_(
                ApprovalRequest.org_id == self.org_id,
                ApprovalRequest.status == request_status,
                ApprovalRequest.id.in_(involved),
            )
        ).order_by(ApprovalRequest.submitted_at.desc(), ApprovalRequest.id.asc()).populate_existing()

        requests = query.offset(offset).limit(limit).all()
        logger.debug(
            "Listed %d %s request(s) for user %s in org %s", len(requests), request_status, user_id, self.org_id
        )
        totals = self._total_steps([r.workflow_id for r in requests])
        return [self._request_to_dict(r, totals.get(r.workflow_id, 0)) for r in requests]

    def get_request(self, request_id: UUID) -> Dict[str, Any]:
        """
        Request detail with all steps across all step-orders.

        Raises:
            RequestNotFoundError: If the request is not in this organization
        """
        request = self.db.query(ApprovalRequest).options(
            selectinload(ApprovalRequest.steps)
        ).filter(
            and_(ApprovalRequest.id == request_id, ApprovalRequest.org_id == self.org_id)
        ).populate_existing().first()

        if request is None:
            raise RequestNotFoundError(request_id)

        totals = self._total_steps([request.workflow_id])
        return self._request_to_dict(request, totals.get(request.workflow_id, 0))

    def get_entity_history(self, entity_type: str, entity_id: str) -> List[Dict[str, Any]]:
        """All requests ever made for an entity, newest first."""
        requests = self.db.query(ApprovalRequest).options(
            selectinload(ApprovalRequest.steps)
        ).filter(
            and_(
                ApprovalRequest.org_id == self.org_id,
                ApprovalRequest.entity_type == entity_type,
                ApprovalRequest.entity_id == str(entity_id),
            )
        ).order_by(ApprovalRequest.submitted_at.desc(), ApprovalRequest.id.desc()).populate_existing().all()

        totals = self._total_steps([r.workflow_id for r in requests])
        return [self._request_to_dict(r, totals.get(r.workflow_id, 0)) for r in requests]

    def get_timeline(self, request_id: UUID) -> List[Dict[str, Any]]:
        """
        Transition history of a request, oldest first.

        Raises:
            RequestNotFoundError: If the request is not in this organization
        """
        exists = self.db.query(ApprovalRequest.id).filter(
            and_(ApprovalRequest.id == request_id, ApprovalRequest.org_id == self.org_id)
        ).first()
        if exists is None:
            raise RequestNotFoundError(request_id)

        entries = self.db.query(ApprovalHistory).filter(
            ApprovalHistory.request_id == request_id
        ).order_by(ApprovalHistory.sequence.asc(), ApprovalHistory.created_at.asc()).all()
        return [self._history_to_dict(h) for h in entries]

    def _total_steps(self, workflow_ids: List[UUID]) -> Dict[UUID, int]:
        ids = set(workflow_ids)
        if not ids:
            return {}
        rows = self.db.query(WorkflowStep.workflow_id, func.count(WorkflowStep.id)).filter(
            WorkflowStep.workflow_id.in_(ids)
        ).group_by(WorkflowStep.workflow_id).all()
        return {workflow_id: count for workflow_id, count in rows}

    def _request_to_dict(self, request: ApprovalRequest, total_steps: int) -> Dict[str, Any]:
        """Convert an ApprovalRequest model to dictionary."""
        return {
            "id": str(request.id),
            "org_id": str(request.org_id),
            "workflow_id": str(request.workflow_id),
            "entity_type": request.entity_type,
            "entity_id": request.entity_id,
            "entity_snapshot": request.entity_snapshot or {},
            "status": request.status,
            "current_step": request.current_step_order,
            "total_steps": total_steps,
            "required_approvals": request.required_approvals,
            "requested_by": str(request.requested_by),
            "submitted_at": request.submitted_at.isoformat() if request.submitted_at else None,
            "completed_at": request.completed_at.isoformat() if request.completed_at else None,
            "steps": [self._step_to_dict(s) for s in request.steps],
        }

    def _step_to_dict(self, step: ApprovalStep) -> Dict[str, Any]:
        return {
            "id": str(step.id),
            "step_order": step.step_order,
            "approver_id": str(step.approver_id),
            "delegated_to": str(step.delegated_to) if step.delegated_to else None,
            "status": step.status,
            "comments": step.comments,
            "action_at": step.action_at.isoformat() if step.action_at else None,
        }

    def _history_to_dict(self, entry: ApprovalHistory) -> Dict[str, Any]:
        return {
            "id": str(entry.id),
            "sequence": entry.sequence,
            "from_state": entry.from_state,
            "to_state": entry.to_state,
            "transition": entry.transition,
            "step_order": entry.step_order,
            "user_id": str(entry.user_id) if entry.user_id else None,
            "comment": entry.comment,
            "metadata": entry.extra_data or {},
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }


def _parse_status(status: str) -> str:
    try:
        return RequestStatus(str(status).lower()).value
    except ValueError:
        raise InvalidInputError(
            f"Unknown status '{status}'; expected one of "
            + ", ".join(s.value for s in RequestStatus)
        )
