"""Approval workflow API endpoints."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from approvalflow.api.deps import get_approval_service, get_current_user, get_db, get_query_service
from approvalflow.api.schemas.approvals import (
    ApprovalActionRequest,
    ApprovalActionResponse,
    ApprovalHistoryResponse,
    ApprovalListResponse,
    ApprovalRequestResponse,
    DelegateRequest,
    SubmitApprovalRequest,
    SubmitApprovalResponse,
)
from approvalflow.core.approval import ActionResult, ApprovalQueryService, ApprovalService
from approvalflow.core.config import get_settings
from approvalflow.core.rbac import has_permission, require_permission
from approvalflow.db.models import User


router = APIRouter(prefix="/approvals", tags=["approvals"])


def _action_response(result: ActionResult) -> ApprovalActionResponse:
    return ApprovalActionResponse(
        request_id=result.request_id,
        status=result.status,
        current_step=result.current_step,
    )


@router.post("/submit", response_model=SubmitApprovalResponse, status_code=status.HTTP_201_CREATED)
@require_permission("approvals:submit")
async def submit_for_approval(
    body: SubmitApprovalRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    """Submit an entity for approval."""
    result = service.submit(body.entity_type, body.entity_id, body.entity_snapshot, current_user.id)
    db.commit()
    return SubmitApprovalResponse(**result.to_dict())


@router.get("", response_model=ApprovalListResponse)
@require_permission("approvals:list")
async def list_my_approvals(
    current_user: User = Depends(get_current_user),
    queries: ApprovalQueryService = Depends(get_query_service),
    status_filter: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    per_page: Optional[int] = Query(None, ge=1),
):
    """List requests awaiting the current user, or involving them in a given status."""
    settings = get_settings()
    per_page = min(per_page or settings.default_page_size, settings.max_page_size)

    items = queries.list_for_approver(
        current_user.id,
        status=status_filter,
        limit=per_page,
        offset=(page - 1) * per_page,
    )
    return ApprovalListResponse(
        items=[ApprovalRequestResponse(**item) for item in items],
        page=page,
        per_page=per_page,
    )


@router.get("/history/{entity_type}/{entity_id}", response_model=List[ApprovalRequestResponse])
@require_permission("approvals:read")
async def get_entity_history(
    entity_type: str,
    entity_id: str,
    current_user: User = Depends(get_current_user),
    queries: ApprovalQueryService = Depends(get_query_service),
):
    """All approval requests for an entity, newest first."""
    return [ApprovalRequestResponse(**item) for item in queries.get_entity_history(entity_type, entity_id)]


@router.get("/{request_id}", response_model=ApprovalRequestResponse)
@require_permission("approvals:read")
async def get_approval_request(
    request_id: UUID,
    current_user: User = Depends(get_current_user),
    queries: ApprovalQueryService = Depends(get_query_service),
):
    """Get a request with all of its steps."""
    return ApprovalRequestResponse(**queries.get_request(request_id))


@router.get("/{request_id}/history", response_model=List[ApprovalHistoryResponse])
@require_permission("approvals:read")
async def get_request_timeline(
    request_id: UUID,
    current_user: User = Depends(get_current_user),
    queries: ApprovalQueryService = Depends(get_query_service),
):
    """Get the transition history of a request."""
    return [ApprovalHistoryResponse(**entry) for entry in queries.get_timeline(request_id)]


@router.post("/{request_id}/approve", response_model=ApprovalActionResponse)
async def approve_request(
    request_id: UUID,
    body: Optional[ApprovalActionRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    """Approve the current user's pending step."""
    result = service.approve(request_id, current_user.id, body.comments if body else None)
    db.commit()
    return _action_response(result)


@router.post("/{request_id}/reject", response_model=ApprovalActionResponse)
async def reject_request(
    request_id: UUID,
    body: Optional[ApprovalActionRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    """Reject the request through the current user's pending step."""
    result = service.reject(request_id, current_user.id, body.comments if body else None)
    db.commit()
    return _action_response(result)


@router.post("/{request_id}/delegate", response_model=ApprovalActionResponse)
async def delegate_request(
    request_id: UUID,
    body: DelegateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    """Delegate the current user's pending step to another user."""
    result = service.delegate(request_id, current_user.id, body.delegate_user_id, body.comments)
    db.commit()
    return _action_response(result)


@router.post("/{request_id}/cancel", response_model=ApprovalActionResponse)
async def cancel_request(
    request_id: UUID,
    body: Optional[ApprovalActionRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    """Cancel a pending request (requester, or holders of approvals:manage)."""
    result = service.cancel(
        request_id,
        current_user.id,
        body.comments if body else None,
        allow_any_actor=has_permission(current_user, "approvals:manage"),
    )
    db.commit()
    return _action_response(result)
