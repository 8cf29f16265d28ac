"""Approval request states and transitions.

Request-level state machine:

    ┌──────────┐  advance (next step-order opens)
    │ PENDING  │◄──────────┐
    └────┬─────┘───────────┘
         │
         ├──────────────┬───────────────┐
         │ complete     │ reject        │ cancel
    ┌────▼─────┐   ┌────▼─────┐   ┌─────▼─────┐
    │ APPROVED │   │ REJECTED │   │ CANCELLED │
    └──────────┘   └──────────┘   └───────────┘

Terminal states have no outgoing transitions.

Step instances move ``pending -> approved | rejected``; a pending step
left behind when its step-order is satisfied by quorum becomes
``skipped``.
"""

from enum import Enum
from typing import Dict, NamedTuple, Optional, Set


class RequestStatus(str, Enum):
    """States of an approval request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    """States of one approver's step instance."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"  # step-order satisfied without this approver


class ApprovalTransition(str, Enum):
    """Actions that change a request or one of its steps."""

    # Request-level
    SUBMIT = "submit"        # (new) -> PENDING
    ADVANCE = "advance"      # PENDING -> PENDING, next step-order opens
    COMPLETE = "complete"    # PENDING -> APPROVED
    REJECT = "reject"        # PENDING -> REJECTED
    CANCEL = "cancel"        # PENDING -> CANCELLED

    # Step-level, recorded in history without changing request state
    APPROVE_STEP = "approve_step"
    DELEGATE_STEP = "delegate_step"


class StepOrderState(str, Enum):
    """Derived state of one step-order batch."""

    OPEN = "open"
    SATISFIED = "satisfied"
    FAILED = "failed"


class TransitionRule(NamedTuple):
    """Defines a valid request transition."""
    from_state: RequestStatus
    to_state: RequestStatus
    transition: ApprovalTransition
    sets_completed_at: bool = False


TRANSITION_RULES: list[TransitionRule] = [
    TransitionRule(RequestStatus.PENDING, RequestStatus.PENDING, ApprovalTransition.APPROVE_STEP),
    TransitionRule(RequestStatus.PENDING, RequestStatus.PENDING, ApprovalTransition.DELEGATE_STEP),
    TransitionRule(RequestStatus.PENDING, RequestStatus.PENDING, ApprovalTransition.ADVANCE),
    TransitionRule(RequestStatus.PENDING, RequestStatus.APPROVED, ApprovalTransition.COMPLETE,
                   sets_completed_at=True),
    TransitionRule(RequestStatus.PENDING, RequestStatus.REJECTED, ApprovalTransition.REJECT,
                   sets_completed_at=True),
    TransitionRule(RequestStatus.PENDING, RequestStatus.CANCELLED, ApprovalTransition.CANCEL,
                   sets_completed_at=True),
]

TRANSITION_TARGETS: Dict[tuple[RequestStatus, ApprovalTransition], TransitionRule] = {}

for rule in TRANSITION_RULES:
    TRANSITION_TARGETS[(rule.from_state, rule.transition)] = rule


TERMINAL_STATES: Set[RequestStatus] = {
    RequestStatus.APPROVED,
    RequestStatus.REJECTED,
    RequestStatus.CANCELLED,
}


def get_transition_rule(from_state: RequestStatus, transition: ApprovalTransition) -> Optional[TransitionRule]:
    """Get the transition rule for a state/action combination."""
    return TRANSITION_TARGETS.get((from_state, transition))
