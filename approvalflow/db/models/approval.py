"""Approval request database models.

Stores approval requests, the per-approver step instances of each
request, and the transition history of both.
"""

import uuid
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey, Integer, Text, Uuid, Index, text
from sqlalchemy.orm import relationship

from approvalflow.db.base import Base, utcnow


class ApprovalRequest(Base):
    """
    One approval request per entity submission.

    At most one request per (org, entity_type, entity_id) may be pending
    at a time; the partial unique index enforces it at the store level.
    """
    __tablename__ = "approval_requests"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    workflow_id = Column(Uuid, ForeignKey("approval_workflows.id"), nullable=False, index=True)

    # Entity identification (the entity itself lives in another system)
    entity_type = Column(String(100), nullable=False)
    entity_id = Column(String(255), nullable=False)
    entity_snapshot = Column(JSON, nullable=False, default=dict)

    # Workflow state
    status = Column(String(20), nullable=False, default="pending", index=True)
    current_step_order = Column(Integer, nullable=True)
    required_approvals = Column(Integer, nullable=True)  # quorum of the open batch

    # Request tracking
    requested_by = Column(Uuid, nullable=False, index=True)
    submitted_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    organization = relationship("Organization")
    workflow = relationship("ApprovalWorkflow")
    steps = relationship(
        "ApprovalStep",
        back_populates="request",
        order_by=lambda: [ApprovalStep.step_order, ApprovalStep.created_at, ApprovalStep.id],
        cascade="all, delete-orphan",
    )
    history = relationship(
        "ApprovalHistory",
        back_populates="request",
        order_by=lambda: [ApprovalHistory.created_at, ApprovalHistory.sequence],
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_approval_requests_entity", "entity_type", "entity_id"),
        Index(
            "uq_approval_requests_pending_entity",
            "org_id", "entity_type", "entity_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<ApprovalRequest {self.entity_type}:{self.entity_id} [{self.status}]>"


class ApprovalStep(Base):
    """
    One approver's action within one step-order of a request.

    ``step_order`` is copied from the workflow step when the batch opens,
    so template edits never reach in-flight requests.
    """
    __tablename__ = "approval_steps"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id = Column(
        Uuid, ForeignKey("approval_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    step_order = Column(Integer, nullable=False)
    approver_id = Column(Uuid, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending")
    comments = Column(Text, nullable=True)
    action_at = Column(DateTime, nullable=True)
    delegated_to = Column(Uuid, nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    request = relationship("ApprovalRequest", back_populates="steps")

    __table_args__ = (
        Index("ix_approval_steps_request_order", "request_id", "step_order"),
        Index(
            "uq_approval_steps_pending_approver",
            "request_id", "approver_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    @property
    def acting_user_id(self) -> uuid.UUID:
        """The user currently entitled to act on this step."""
        return self.delegated_to or self.approver_id

    def __repr__(self) -> str:
        return f"<ApprovalStep order={self.step_order} approver={self.approver_id} [{self.status}]>"


class ApprovalHistory(Base):
    """
    Records every request transition and step action.

    Provides a complete audit trail of the approval workflow.
    """
    __tablename__ = "approval_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id = Column(
        Uuid, ForeignKey("approval_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Orders entries written within the same clock tick
    sequence = Column(Integer, nullable=False, default=0)

    # Transition details
    from_state = Column(String(20), nullable=False)
    to_state = Column(String(20), nullable=False)
    transition = Column(String(50), nullable=False)
    step_order = Column(Integer, nullable=True)

    # Actor
    user_id = Column(Uuid, nullable=True)
    comment = Column(Text, nullable=True)

    # Additional context
    extra_data = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=utcnow, index=True)

    # Relationships
    request = relationship("ApprovalRequest", back_populates="history")

    def __repr__(self) -> str:
        return f"<ApprovalHistory {self.transition}: {self.from_state} -> {self.to_state}>"
