"""Database models for the approval workflow engine."""

from approvalflow.db.models.org import Organization
from approvalflow.db.models.user import User
from approvalflow.db.models.role import Role
from approvalflow.db.models.workflow import ApprovalWorkflow, WorkflowStep
from approvalflow.db.models.approval import ApprovalRequest, ApprovalStep, ApprovalHistory

__all__ = [
    "Organization",
    "User",
    "Role",
    "ApprovalWorkflow",
    "WorkflowStep",
    "ApprovalRequest",
    "ApprovalStep",
    "ApprovalHistory",
]
