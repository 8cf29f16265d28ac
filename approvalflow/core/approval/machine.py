"""Approval state machine implementation.

Handles request-level transitions with validation and history records,
and derives the state of a step-order batch from its step statuses.
"""

import uuid
from typing import Any, Dict, Iterable, Optional
from uuid import UUID

from approvalflow.core.errors import InvalidApproverSpecError, RequestNotPendingError
from approvalflow.db.base import utcnow

from .states import (
    ApprovalTransition,
    RequestStatus,
    StepOrderState,
    StepStatus,
    TERMINAL_STATES,
    get_transition_rule,
)


class ApprovalStateMachine:
    """
    State machine for one approval request.

    Manages transitions between request states with:
    - Validation of valid transitions (terminal states are final)
    - A transition record per change, for the history table
    """

    def __init__(self, request_id: UUID, current_state: RequestStatus, org_id: UUID):
        self.request_id = request_id
        self._state = RequestStatus(current_state)
        self.org_id = org_id
        self._transition_history: list[Dict[str, Any]] = []

    @property
    def state(self) -> RequestStatus:
        """Current state of the request."""
        return self._state

    @property
    def is_terminal(self) -> bool:
        """Check if current state is terminal (no further transitions)."""
        return self._state in TERMINAL_STATES

    def ensure_pending(self) -> None:
        """Raise RequestNotPendingError unless the request accepts actions."""
        if self._state != RequestStatus.PENDING:
            raise RequestNotPendingError(self.request_id, self._state.value)

    def transition(
        self,
        transition: ApprovalTransition,
        *,
        user_id: Optional[UUID] = None,
        comment: Optional[str] = None,
        step_order: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RequestStatus:
        """
        Perform a state transition.

        Args:
            transition: The transition to perform
            user_id: ID of user performing the transition
            comment: Optional comment
            step_order: Step-order the transition concerns
            metadata: Additional metadata to record

        Returns:
            The new state after transition

        Raises:
            RequestNotPendingError: If the transition is invalid from the current state
        """
        rule = get_transition_rule(self._state, transition)
        if rule is None:
            raise RequestNotPendingError(self.request_id, self._state.value)

        from_state = self._state
        record = {
            "id": uuid.uuid4(),
            "request_id": self.request_id,
            "from_state": from_state.value,
            "to_state": rule.to_state.value,
            "transition": transition.value,
            "step_order": step_order,
            "user_id": user_id,
            "comment": comment,
            "metadata": metadata or {},
            "timestamp": utcnow(),
            "sets_completed_at": rule.sets_completed_at,
        }
        self._transition_history.append(record)
        self._state = rule.to_state
        return self._state

    def get_history(self) -> list[Dict[str, Any]]:
        """Get the transitions performed through this machine."""
        return self._transition_history.copy()


# ---------------------------------------------------------------------------
# Step-order batches
# ---------------------------------------------------------------------------


def evaluate_step_order(statuses: Iterable[str], required_approvals: int) -> StepOrderState:
    """
    Derive the state of a step-order batch.

    Any rejection fails the batch immediately (single-approver veto);
    otherwise the batch is satisfied once ``required_approvals`` steps
    are approved.
    """
    approved = 0
    for status in statuses:
        status = StepStatus(status)
        if status == StepStatus.REJECTED:
            return StepOrderState.FAILED
        if status == StepStatus.APPROVED:
            approved += 1
    if approved >= required_approvals:
        return StepOrderState.SATISFIED
    return StepOrderState.OPEN


def required_approvals(quorum: Optional[int], approver_count: int) -> int:
    """Number of approvals a batch needs; ``None`` quorum means all approvers."""
    if quorum is None:
        return approver_count
    return quorum


def normalize_quorum(
    quorum: Any = None,
    *,
    step_type: Optional[str] = None,
    min_approvals: Optional[int] = None,
) -> Optional[int]:
    """
    Translate the accepted quorum spellings into the stored column value.

    Accepts an integer, ``None``/``"all"`` (every approver), or the
    step types ``single``/``any`` (one approval) and ``parallel`` (uses
    ``min_approvals``, or all approvers when absent).

    Raises:
        InvalidApproverSpecError: If the value cannot be interpreted
    """
    if step_type is not None:
        kind = str(step_type).lower()
        if kind in ("single", "any"):
            return 1
        if kind == "parallel":
            return normalize_quorum(min_approvals)
        raise InvalidApproverSpecError(f"Unknown step type: {step_type!r}")

    if quorum is None or (isinstance(quorum, str) and quorum.lower() == "all"):
        return None
    if isinstance(quorum, bool):
        raise InvalidApproverSpecError(f"Invalid quorum: {quorum!r}")
    try:
        value = int(quorum)
    except (TypeError, ValueError):
        raise InvalidApproverSpecError(f"Invalid quorum: {quorum!r}")
    if value < 1:
        raise InvalidApproverSpecError(f"Quorum must be at least 1, got {value}")
    return value
