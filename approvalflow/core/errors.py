"""Error taxonomy for the approval workflow engine.

Four families of failures, all fatal to the triggering call:

- configuration errors: the organization's workflow setup cannot carry
  the submission (no matching workflow, no steps, nobody to approve)
- state errors: the request or step is not in a state that allows the
  action, or the caller does not own the step
- authorization errors: the identity service vetoed the acting user
- duplicate submission: an in-flight request already exists for the entity

Every error carries a stable ``code`` so the HTTP layer and callers can
distinguish "not your turn" from "not allowed".
"""

from typing import Optional
from uuid import UUID


class ApprovalError(Exception):
    """Base class for all engine errors."""

    code = "approval_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInputError(ApprovalError):
    """Raised when caller-supplied arguments are malformed."""

    code = "invalid_input"


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------


class ApprovalConfigurationError(ApprovalError):
    """Raised when workflow configuration cannot carry a request."""

    code = "configuration_error"


class NoMatchingWorkflowError(ApprovalConfigurationError):
    code = "no_matching_workflow"

    def __init__(self, org_id: UUID, entity_type: str):
        super().__init__(
            f"No active workflow for entity type '{entity_type}' matches the submitted entity"
        )
        self.org_id = org_id
        self.entity_type = entity_type


class WorkflowHasNoStepsError(ApprovalConfigurationError):
    code = "workflow_has_no_steps"

    def __init__(self, workflow_id: UUID):
        super().__init__(f"Workflow {workflow_id} has no steps")
        self.workflow_id = workflow_id


class NoEligibleApproversError(ApprovalConfigurationError):
    code = "no_eligible_approvers"

    def __init__(self, workflow_id: UUID, step_order: int):
        super().__init__(
            f"Step {step_order} of workflow {workflow_id} has no eligible approvers"
        )
        self.workflow_id = workflow_id
        self.step_order = step_order


class QuorumUnreachableError(ApprovalConfigurationError):
    code = "quorum_unreachable"

    def __init__(self, workflow_id: UUID, step_order: int, quorum: int, approvers: int):
        super().__init__(
            f"Step {step_order} of workflow {workflow_id} requires {quorum} approvals "
            f"but only {approvers} approvers were resolved"
        )
        self.workflow_id = workflow_id
        self.step_order = step_order
        self.quorum = quorum
        self.approvers = approvers


class InvalidApproverSpecError(ApprovalConfigurationError):
    code = "invalid_approver_spec"


class InvalidConditionError(ApprovalConfigurationError):
    code = "invalid_condition"


# ---------------------------------------------------------------------------
# State errors
# ---------------------------------------------------------------------------


class ApprovalStateError(ApprovalError):
    """Raised when the request/step state does not allow the action."""

    code = "state_error"


class RequestNotFoundError(ApprovalStateError):
    code = "request_not_found"

    def __init__(self, request_id: UUID):
        super().__init__(f"Approval request {request_id} not found")
        self.request_id = request_id


class RequestNotPendingError(ApprovalStateError):
    code = "request_not_pending"

    def __init__(self, request_id: UUID, status: str):
        super().__init__(f"Approval request {request_id} is {status}, not pending")
        self.request_id = request_id
        self.status = status


class NoEligibleStepError(ApprovalStateError):
    code = "no_eligible_step"

    def __init__(self, request_id: UUID, user_id: Optional[UUID]):
        super().__init__(
            f"No pending approval step on request {request_id} for user {user_id}"
        )
        self.request_id = request_id
        self.user_id = user_id


# ---------------------------------------------------------------------------
# Authorization and duplicate submission
# ---------------------------------------------------------------------------


class InsufficientPermissionError(ApprovalError):
    code = "insufficient_permission"

    def __init__(self, user_id: UUID, entity_type: str, action: str = "approve"):
        super().__init__(
            f"User {user_id} is not permitted to {action} '{entity_type}' entities"
        )
        self.user_id = user_id
        self.entity_type = entity_type
        self.action = action


class DuplicateSubmissionError(ApprovalError):
    code = "duplicate_submission"

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(
            f"An approval request for {entity_type} {entity_id} is already pending"
        )
        self.entity_type = entity_type
        self.entity_id = entity_id
