"""Approval lifecycle.

Request and step states, the request state machine, approver resolution,
the lifecycle service and the read-only query service.
"""

from .states import (
    ApprovalTransition,
    RequestStatus,
    StepOrderState,
    StepStatus,
    TERMINAL_STATES,
)
from .machine import ApprovalStateMachine, evaluate_step_order, normalize_quorum
from .resolver import ApproverResolver, EntityContext, parse_approver_spec
from .service import ActionResult, ApprovalService, SubmissionResult
from .queries import ApprovalQueryService

__all__ = [
    "ApprovalTransition",
    "RequestStatus",
    "StepOrderState",
    "StepStatus",
    "TERMINAL_STATES",
    "ApprovalStateMachine",
    "evaluate_step_order",
    "normalize_quorum",
    "ApproverResolver",
    "EntityContext",
    "parse_approver_spec",
    "ActionResult",
    "ApprovalService",
    "SubmissionResult",
    "ApprovalQueryService",
]
