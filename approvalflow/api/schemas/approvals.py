"""Approval request/response schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class SubmitApprovalRequest(BaseModel):
    entity_type: str = Field(..., min_length=1, max_length=100)
    entity_id: str = Field(..., min_length=1, max_length=255)
    entity_snapshot: Dict[str, Any] = Field(default_factory=dict)


class SubmitApprovalResponse(BaseModel):
    request_id: UUID
    workflow_id: UUID
    status: str
    approver_count: int


class ApprovalActionRequest(BaseModel):
    comments: Optional[str] = Field(None, max_length=4000)


class DelegateRequest(BaseModel):
    delegate_user_id: UUID
    comments: Optional[str] = Field(None, max_length=4000)


class ApprovalActionResponse(BaseModel):
    success: bool = True
    request_id: UUID
    status: str
    current_step: Optional[int] = None


class ApprovalStepResponse(BaseModel):
    id: UUID
    step_order: int
    approver_id: UUID
    delegated_to: Optional[UUID] = None
    status: str
    comments: Optional[str] = None
    action_at: Optional[datetime] = None


class ApprovalRequestResponse(BaseModel):
    id: UUID
    org_id: UUID
    workflow_id: UUID
    entity_type: str
    entity_id: str
    entity_snapshot: Dict[str, Any]
    status: str
    current_step: Optional[int] = None
    total_steps: int
    required_approvals: Optional[int] = None
    requested_by: UUID
    submitted_at: datetime
    completed_at: Optional[datetime] = None
    steps: List[ApprovalStepResponse] = []


class ApprovalListResponse(BaseModel):
    items: List[ApprovalRequestResponse]
    page: int
    per_page: int


class ApprovalHistoryResponse(BaseModel):
    id: UUID
    sequence: int
    from_state: str
    to_state: str
    transition: str
    step_order: Optional[int] = None
    user_id: Optional[UUID] = None
    comment: Optional[str] = None
    metadata: Dict[str, Any] = {}
    created_at: Optional[datetime] = None
