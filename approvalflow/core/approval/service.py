"""Approval service: the request lifecycle.

Submits entities for approval and applies approver actions. Each
operation is one unit of work inside a SAVEPOINT: the request row is
locked, eligibility is checked, the acting step is claimed with a
conditional update, and any advancement (next step-order opened,
request completed) is written before the savepoint is released. A
failure anywhere rolls the savepoint back, so a failed call leaves
every row as it found it.

Notifications are dispatched only after the unit of work succeeded.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Mapping, Optional
from uuid import UUID

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from approvalflow.core.errors import (
    DuplicateSubmissionError,
    InsufficientPermissionError,
    InvalidInputError,
    NoEligibleStepError,
    QuorumUnreachableError,
    RequestNotFoundError,
    WorkflowHasNoStepsError,
)
from approvalflow.core.rules.matcher import WorkflowMatcher
from approvalflow.db.base import utcnow
from approvalflow.db.models import (
    ApprovalHistory,
    ApprovalRequest,
    ApprovalStep,
    WorkflowStep,
)
from approvalflow.services.identity import IdentityService
from approvalflow.services.notifications import (
    ApprovalEvent,
    LoggingNotifier,
    NotificationEventType,
    Notifier,
    dispatch,
)

from .machine import ApprovalStateMachine, evaluate_step_order, required_approvals
from .resolver import ApproverResolver, EntityContext
from .states import ApprovalTransition, RequestStatus, StepOrderState, StepStatus

logger = logging.getLogger(__name__)

# from_state recorded for the submission entry of the timeline
NEW_STATE = "new"

MAX_ENTITY_TYPE_LENGTH = 100
MAX_ENTITY_ID_LENGTH = 255


@dataclass(frozen=True)
class SubmissionResult:
    request_id: UUID
    workflow_id: UUID
    status: str
    approver_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": str(self.request_id),
            "workflow_id": str(self.workflow_id),
            "status": self.status,
            "approver_count": self.approver_count,
        }


@dataclass(frozen=True)
class ActionResult:
    """Outcome of approve/reject/delegate/cancel."""
    request_id: UUID
    status: str
    current_step: Optional[int]
    advanced: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": str(self.request_id),
            "status": self.status,
            "current_step": self.current_step,
            "advanced": self.advanced,
        }


class ApprovalService:
    """
    Request Lifecycle Manager.

    Handles:
    - Submitting entities (workflow matching, first batch of steps)
    - Approve / reject with quorum evaluation and step-order advancement
    - Delegation of a pending step to another user
    - Cancellation by the requester or a manager
    """

    def __init__(
        self,
        db: Session,
        org_id: UUID,
        identity: IdentityService,
        notifier: Optional[Notifier] = None,
    ):
        """
        Initialize the approval service.

        Args:
            db: Database session
            org_id: Organization ID for scoping
            identity: Identity/permission collaborator
            notifier: Receives events after successful operations
        """
        self.db = db
        self.org_id = org_id
        self.identity = identity
        self.notifier = notifier if notifier is not None else LoggingNotifier()
        self.matcher = WorkflowMatcher(db)
        self.resolver = ApproverResolver(identity)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        entity_type: str,
        entity_id: Any,
        entity_snapshot: Optional[Mapping[str, Any]],
        requested_by: UUID,
    ) -> SubmissionResult:
        """
        Submit an entity for approval.

        Raises:
            InvalidInputError: If the arguments are malformed
            DuplicateSubmissionError: If a pending request exists for the entity
            ApprovalConfigurationError: If no workflow can carry the submission
        """
        entity_type = _validate_text(entity_type, "entity_type", MAX_ENTITY_TYPE_LENGTH)
        entity_id = _validate_text(entity_id, "entity_id", MAX_ENTITY_ID_LENGTH)
        requested_by = _as_uuid(requested_by, "requested_by")
        if entity_snapshot is None:
            entity_snapshot = {}
        if not isinstance(entity_snapshot, Mapping):
            raise InvalidInputError("entity_snapshot must be an object")
        snapshot = dict(entity_snapshot)

        try:
            with self.db.begin_nested():
                if self._pending_request_for(entity_type, entity_id) is not None:
                    raise DuplicateSubmissionError(entity_type, entity_id)

                workflow = self.matcher.find_matching_workflow(self.org_id, entity_type, snapshot)
                first_step = self._next_workflow_step(workflow.id, after=0)
                if first_step is None:
                    logger.warning("Workflow %s has no steps", workflow.id)
                    raise WorkflowHasNoStepsError(workflow.id)

                stored_snapshot = _storable(snapshot)
                context = EntityContext(entity_type, entity_id, stored_snapshot, requested_by)
                approvers = self.resolver.resolve(first_step, self.org_id, context)
                required = self._required_for(first_step, approvers)

                request = ApprovalRequest(
                    id=uuid.uuid4(),
                    org_id=self.org_id,
                    workflow_id=workflow.id,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    entity_snapshot=stored_snapshot,
                    status=RequestStatus.PENDING.value,
                    current_step_order=first_step.step_order,
                    required_approvals=required,
                    requested_by=requested_by,
                )
                self.db.add(request)
                self._open_batch(request, first_step.step_order, approvers)
                self._add_history(
                    request,
                    sequence=0,
                    from_state=NEW_STATE,
                    to_state=RequestStatus.PENDING.value,
                    transition=ApprovalTransition.SUBMIT.value,
                    step_order=first_step.step_order,
                    user_id=requested_by,
                    extra_data={
                        "workflow_id": str(workflow.id),
                        "approvers": sorted(str(a) for a in approvers),
                        "required_approvals": required,
                    },
                )
                self.db.flush()
        except IntegrityError:
            # Only the pending-entity index makes this a lost submission race
            if self._pending_request_for(entity_type, entity_id) is None:
                raise
            logger.info("Concurrent submission detected for %s %s", entity_type, entity_id)
            raise DuplicateSubmissionError(entity_type, entity_id)

        logger.info(
            "Submitted %s %s as request %s (workflow %s, %d approver(s))",
            entity_type, entity_id, request.id, workflow.id, len(approvers),
        )
        dispatch(self.notifier, [
            self._event(request, NotificationEventType.APPROVAL_REQUESTED, sorted(approvers),
                        actor_id=requested_by, step_order=first_step.step_order),
        ])

        return SubmissionResult(
            request_id=request.id,
            workflow_id=workflow.id,
            status=request.status,
            approver_count=len(approvers),
        )

    # ------------------------------------------------------------------
    # Approver actions
    # ------------------------------------------------------------------

    def approve(self, request_id: UUID, acting_user_id: UUID, comments: Optional[str] = None) -> ActionResult:
        """
        Approve the acting user's pending step.

        When the step-order reaches its quorum the next step-order opens,
        or the request is approved if none is left.
        """
        return self._decide(request_id, acting_user_id, comments, StepStatus.APPROVED)

    def reject(self, request_id: UUID, acting_user_id: UUID, comments: Optional[str] = None) -> ActionResult:
        """Reject the acting user's pending step; the whole request is rejected."""
        return self._decide(request_id, acting_user_id, comments, StepStatus.REJECTED)

    def _decide(
        self,
        request_id: UUID,
        acting_user_id: UUID,
        comments: Optional[str],
        decision: StepStatus,
    ) -> ActionResult:
        request_id = _as_uuid(request_id, "request_id")
        acting_user_id = _as_uuid(acting_user_id, "acting_user_id")
        action = "approve" if decision == StepStatus.APPROVED else "reject"
        events: List[ApprovalEvent] = []
        advanced = False

        with self.db.begin_nested():
            request = self._lock_request(request_id)
            machine = ApprovalStateMachine(request.id, RequestStatus(request.status), self.org_id)
            machine.ensure_pending()

            step = self._actionable_step(request, acting_user_id)
            if step is None:
                raise NoEligibleStepError(request.id, acting_user_id)
            if not self.identity.authorize(acting_user_id, self.org_id, request.entity_type):
                raise InsufficientPermissionError(acting_user_id, request.entity_type, action)

            order = step.step_order
            self._claim_step(step, acting_user_id, decision, comments)

            if decision == StepStatus.REJECTED:
                machine.transition(
                    ApprovalTransition.REJECT,
                    user_id=acting_user_id,
                    comment=comments,
                    step_order=order,
                    metadata={"step_id": str(step.id)},
                )
                events.append(self._event(
                    request, NotificationEventType.APPROVAL_REJECTED, [request.requested_by],
                    actor_id=acting_user_id, step_order=order, comments=comments,
                ))
            else:
                machine.transition(
                    ApprovalTransition.APPROVE_STEP,
                    user_id=acting_user_id,
                    comment=comments,
                    step_order=order,
                    metadata={"step_id": str(step.id)},
                )
                advanced = self._evaluate_batch(request, machine, acting_user_id, events)

            self._persist_transitions(request, machine)
            self.db.flush()

        logger.info(
            "User %s %sd step %s of request %s; request is %s",
            acting_user_id, action, order, request.id, request.status,
        )
        dispatch(self.notifier, events)
        return ActionResult(request.id, request.status, request.current_step_order, advanced)

    def _evaluate_batch(
        self,
        request: ApprovalRequest,
        machine: ApprovalStateMachine,
        acting_user_id: UUID,
        events: List[ApprovalEvent],
    ) -> bool:
        """Advance or complete the request if the open step-order is satisfied."""
        order = request.current_step_order
        statuses = [row.status for row in self.db.query(ApprovalStep.status).filter(
            and_(ApprovalStep.request_id == request.id, ApprovalStep.step_order == order)
        ).all()]

        state = evaluate_step_order(statuses, request.required_approvals)
        if state != StepOrderState.SATISFIED:
            logger.debug(
                "Step %s of request %s still open (%d/%d)",
                order, request.id, statuses.count(StepStatus.APPROVED.value), request.required_approvals,
            )
            return False

        skipped = self._skip_leftovers(request, order)
        next_step = self._next_workflow_step(request.workflow_id, after=order)

        if next_step is None:
            machine.transition(
                ApprovalTransition.COMPLETE,
                user_id=acting_user_id,
                step_order=order,
                metadata={"skipped_steps": skipped},
            )
            events.append(self._event(
                request, NotificationEventType.APPROVAL_APPROVED, [request.requested_by],
                actor_id=acting_user_id, step_order=order,
            ))
            logger.info("Request %s approved", request.id)
            return False

        context = EntityContext(
            request.entity_type, request.entity_id, request.entity_snapshot or {}, request.requested_by
        )
        approvers = self.resolver.resolve(next_step, self.org_id, context)
        required = self._required_for(next_step, approvers)

        request.current_step_order = next_step.step_order
        request.required_approvals = required
        self._open_batch(request, next_step.step_order, approvers)

        machine.transition(
            ApprovalTransition.ADVANCE,
            user_id=acting_user_id,
            step_order=next_step.step_order,
            metadata={
                "previous_step_order": order,
                "approvers": sorted(str(a) for a in approvers),
                "required_approvals": required,
                "skipped_steps": skipped,
            },
        )
        events.append(self._event(
            request, NotificationEventType.APPROVAL_REQUESTED, sorted(approvers),
            actor_id=acting_user_id, step_order=next_step.step_order,
        ))
        logger.info(
            "Request %s advanced from step %s to step %s (%d approver(s))",
            request.id, order, next_step.step_order, len(approvers),
        )
        return True

    def delegate(
        self,
        request_id: UUID,
        acting_user_id: UUID,
        delegate_user_id: UUID,
        comments: Optional[str] = None,
    ) -> ActionResult:
        """
        Hand the acting user's pending step to another user.

        Only the step's original approver may delegate (again, if it was
        delegated before); the step keeps its status.

        Raises:
            InvalidInputError: Self-delegation, unknown delegate, or a delegate
                who already holds a pending step on the request
            NoEligibleStepError: If the acting user is not an original approver
                of a pending step
            InsufficientPermissionError: If the acting user may not approve
        """
        request_id = _as_uuid(request_id, "request_id")
        acting_user_id = _as_uuid(acting_user_id, "acting_user_id")
        delegate_user_id = _as_uuid(delegate_user_id, "delegate_user_id")

        with self.db.begin_nested():
            request = self._lock_request(request_id)
            machine = ApprovalStateMachine(request.id, RequestStatus(request.status), self.org_id)
            machine.ensure_pending()

            if delegate_user_id == acting_user_id:
                raise InvalidInputError("Cannot delegate a step to yourself")

            step = self._pending_steps_query(request).filter(
                ApprovalStep.approver_id == acting_user_id
            ).first()
            if step is None:
                raise NoEligibleStepError(request.id, acting_user_id)
            if not self.identity.authorize(acting_user_id, self.org_id, request.entity_type):
                raise InsufficientPermissionError(acting_user_id, request.entity_type, "delegate")
            if not self.identity.is_valid_user(delegate_user_id, self.org_id):
                raise InvalidInputError(f"User {delegate_user_id} is not an active member of the organization")
            if self._actionable_step(request, delegate_user_id) is not None:
                raise InvalidInputError(f"User {delegate_user_id} already has a pending step on this request")

            previous = step.delegated_to
            updated = self.db.query(ApprovalStep).filter(
                and_(ApprovalStep.id == step.id, ApprovalStep.status == StepStatus.PENDING.value)
            ).update({ApprovalStep.delegated_to: delegate_user_id}, synchronize_session="fetch")
            if updated != 1:
                raise NoEligibleStepError(request.id, acting_user_id)

            machine.transition(
                ApprovalTransition.DELEGATE_STEP,
                user_id=acting_user_id,
                comment=comments,
                step_order=step.step_order,
                metadata={
                    "step_id": str(step.id),
                    "delegated_to": str(delegate_user_id),
                    "previous_delegate": str(previous) if previous else None,
                },
            )
            self._persist_transitions(request, machine)
            self.db.flush()

        logger.info(
            "User %s delegated step %s of request %s to %s",
            acting_user_id, step.step_order, request.id, delegate_user_id,
        )
        dispatch(self.notifier, [
            self._event(request, NotificationEventType.APPROVAL_DELEGATED, [delegate_user_id],
                        actor_id=acting_user_id, step_order=step.step_order, comments=comments),
        ])
        return ActionResult(request.id, request.status, request.current_step_order)

    def cancel(
        self,
        request_id: UUID,
        acting_user_id: UUID,
        comments: Optional[str] = None,
        *,
        allow_any_actor: bool = False,
    ) -> ActionResult:
        """
        Cancel a pending request.

        Args:
            allow_any_actor: Caller already verified the actor may manage
                approvals; otherwise only the requester may cancel

        Raises:
            InsufficientPermissionError: If the actor is neither requester nor manager
        """
        request_id = _as_uuid(request_id, "request_id")
        acting_user_id = _as_uuid(acting_user_id, "acting_user_id")

        with self.db.begin_nested():
            request = self._lock_request(request_id)
            machine = ApprovalStateMachine(request.id, RequestStatus(request.status), self.org_id)
            machine.ensure_pending()

            if not allow_any_actor and request.requested_by != acting_user_id:
                raise InsufficientPermissionError(acting_user_id, request.entity_type, "cancel")

            recipients = sorted({
                step.acting_user_id for step in self._pending_steps_query(request).all()
            })
            machine.transition(
                ApprovalTransition.CANCEL,
                user_id=acting_user_id,
                comment=comments,
                step_order=request.current_step_order,
            )
            self._persist_transitions(request, machine)
            self.db.flush()

        logger.info("Request %s cancelled by %s", request.id, acting_user_id)
        dispatch(self.notifier, [
            self._event(request, NotificationEventType.APPROVAL_CANCELLED, recipients,
                        actor_id=acting_user_id, step_order=request.current_step_order,
                        comments=comments),
        ])
        return ActionResult(request.id, request.status, request.current_step_order)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_request(self, request_id: UUID) -> ApprovalRequest:
        request = self.db.query(ApprovalRequest).filter(
            and_(
                ApprovalRequest.id == request_id,
                ApprovalRequest.org_id == self.org_id,
            )
        ).with_for_update().populate_existing().first()

        if request is None:
            raise RequestNotFoundError(request_id)
        return request

    def _pending_request_for(self, entity_type: str, entity_id: str) -> Optional[ApprovalRequest]:
        return self.db.query(ApprovalRequest).filter(
            and_(
                ApprovalRequest.org_id == self.org_id,
                ApprovalRequest.entity_type == entity_type,
                ApprovalRequest.entity_id == entity_id,
                ApprovalRequest.status == RequestStatus.PENDING.value,
            )
        ).first()

    def _pending_steps_query(self, request: ApprovalRequest):
        """Pending steps of the open step-order."""
        return self.db.query(ApprovalStep).filter(
            and_(
                ApprovalStep.request_id == request.id,
                ApprovalStep.step_order == request.current_step_order,
                ApprovalStep.status == StepStatus.PENDING.value,
            )
        ).order_by(ApprovalStep.created_at.asc(), ApprovalStep.id.asc())

    def _actionable_step(self, request: ApprovalRequest, user_id: UUID) -> Optional[ApprovalStep]:
        """The pending step the user may act on: their own undelegated step, or one delegated to them."""
        return self._pending_steps_query(request).filter(
            or_(
                and_(ApprovalStep.approver_id == user_id, ApprovalStep.delegated_to.is_(None)),
                ApprovalStep.delegated_to == user_id,
            )
        ).first()

    def _claim_step(
        self,
        step: ApprovalStep,
        acting_user_id: UUID,
        decision: StepStatus,
        comments: Optional[str],
    ) -> None:
        """Move the step out of pending; only one concurrent caller can win."""
        updated = self.db.query(ApprovalStep).filter(
            and_(ApprovalStep.id == step.id, ApprovalStep.status == StepStatus.PENDING.value)
        ).update(
            {
                ApprovalStep.status: decision.value,
                ApprovalStep.comments: comments,
                ApprovalStep.action_at: utcnow(),
            },
            synchronize_session="fetch",
        )
        if updated != 1:
            raise NoEligibleStepError(step.request_id, acting_user_id)

    def _skip_leftovers(self, request: ApprovalRequest, order: int) -> int:
        """Mark steps the quorum made unnecessary as skipped."""
        skipped = self.db.query(ApprovalStep).filter(
            and_(
                ApprovalStep.request_id == request.id,
                ApprovalStep.step_order == order,
                ApprovalStep.status == StepStatus.PENDING.value,
            )
        ).update(
            {ApprovalStep.status: StepStatus.SKIPPED.value, ApprovalStep.action_at: utcnow()},
            synchronize_session="fetch",
        )
        if skipped:
            logger.debug("Skipped %d step(s) of order %s on request %s", skipped, order, request.id)
        return skipped

    def _next_workflow_step(self, workflow_id: UUID, *, after: int) -> Optional[WorkflowStep]:
        return self.db.query(WorkflowStep).filter(
            and_(WorkflowStep.workflow_id == workflow_id, WorkflowStep.step_order > after)
        ).order_by(WorkflowStep.step_order.asc()).first()

    def _required_for(self, step: WorkflowStep, approvers: FrozenSet[UUID]) -> int:
        required = required_approvals(step.quorum, len(approvers))
        if required > len(approvers):
            logger.warning(
                "Quorum %s unreachable for step %s of workflow %s", required, step.step_order, step.workflow_id
            )
            raise QuorumUnreachableError(step.workflow_id, step.step_order, required, len(approvers))
        return required

    def _open_batch(self, request: ApprovalRequest, order: int, approvers: FrozenSet[UUID]) -> None:
        for approver_id in sorted(approvers):
            self.db.add(ApprovalStep(
                id=uuid.uuid4(),
                request=request,
                step_order=order,
                approver_id=approver_id,
                status=StepStatus.PENDING.value,
            ))
        self.db.flush()

    def _persist_transitions(self, request: ApprovalRequest, machine: ApprovalStateMachine) -> None:
        """Write the machine's transitions to the timeline and apply its final state."""
        sequence = self._next_sequence(request.id)
        for offset, record in enumerate(machine.get_history()):
            self._add_history(
                request,
                sequence=sequence + offset,
                from_state=record["from_state"],
                to_state=record["to_state"],
                transition=record["transition"],
                step_order=record["step_order"],
                user_id=record["user_id"],
                comment=record["comment"],
                extra_data=record["metadata"],
                created_at=record["timestamp"],
                history_id=record["id"],
            )
            if record["sets_completed_at"]:
                request.completed_at = record["timestamp"]

        request.status = machine.state.value
        request.updated_at = utcnow()

    def _next_sequence(self, request_id: UUID) -> int:
        current = self.db.query(func.max(ApprovalHistory.sequence)).filter(
            ApprovalHistory.request_id == request_id
        ).scalar()
        return 0 if current is None else current + 1

    def _add_history(
        self,
        request: ApprovalRequest,
        *,
        sequence: int,
        from_state: str,
        to_state: str,
        transition: str,
        step_order: Optional[int] = None,
        user_id: Optional[UUID] = None,
        comment: Optional[str] = None,
        extra_data: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
        history_id: Optional[UUID] = None,
    ) -> None:
        self.db.add(ApprovalHistory(
            id=history_id or uuid.uuid4(),
            request_id=request.id,
            sequence=sequence,
            from_state=from_state,
            to_state=to_state,
            transition=transition,
            step_order=step_order,
            user_id=user_id,
            comment=comment,
            extra_data=_storable(extra_data or {}),
            created_at=created_at or utcnow(),
        ))

    def _event(
        self,
        request: ApprovalRequest,
        event_type: NotificationEventType,
        recipients: List[UUID],
        *,
        actor_id: Optional[UUID] = None,
        step_order: Optional[int] = None,
        comments: Optional[str] = None,
    ) -> ApprovalEvent:
        return ApprovalEvent(
            event_type=event_type,
            org_id=self.org_id,
            request_id=request.id,
            entity_type=request.entity_type,
            entity_id=request.entity_id,
            recipients=list(recipients),
            actor_id=actor_id,
            step_order=step_order,
            comments=comments,
        )


def _validate_text(value: Any, name: str, max_length: int) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise InvalidInputError(f"{name} must be a string")
    text = str(value).strip()
    if not text:
        raise InvalidInputError(f"{name} must not be empty")
    if len(text) > max_length:
        raise InvalidInputError(f"{name} must be at most {max_length} characters")
    return text


def _as_uuid(value: Any, name: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        raise InvalidInputError(f"{name} is not a valid id: {value!r}")


def _storable(value: Any) -> Any:
    """Convert a snapshot into plain JSON values; decimals keep their exact text."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): _storable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_storable(v) for v in value]
    return value
