"""Workflow template models.

A workflow is an organization-scoped template: which entities it governs
(``entity_type`` + ``conditions``) and the ordered steps they go through.
Templates are treated as immutable once a request references them; only
``is_active`` is expected to change afterwards.
"""

import uuid
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, ForeignKey, Integer, Text, Uuid,
    UniqueConstraint, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship

from approvalflow.db.base import Base, utcnow


class ApprovalWorkflow(Base):
    __tablename__ = "approval_workflows"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Matching
    entity_type = Column(String(100), nullable=False)
    conditions = Column(JSON, nullable=True)  # see approvalflow.core.rules.conditions
    priority = Column(Integer, nullable=False, default=0)  # higher wins
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    organization = relationship("Organization", back_populates="workflows")
    steps = relationship(
        "WorkflowStep",
        back_populates="workflow",
        order_by="WorkflowStep.step_order",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_approval_workflows_lookup", "org_id", "entity_type", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<ApprovalWorkflow {self.name} [{self.entity_type}] priority={self.priority}>"


class WorkflowStep(Base):
    """
    One ordered stage of a workflow.

    ``approver_spec`` is a tagged JSON object, e.g.::

        {"type": "users", "user_ids": ["..."]}
        {"type": "role", "role": "Finance Manager"}
        {"type": "entity_field", "field": "cost_center_owner"}
        {"type": "requester_manager", "levels": 1}

    ``quorum`` is the number of approvals that satisfies the step;
    NULL means every resolved approver must approve.
    """
    __tablename__ = "workflow_steps"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    workflow_id = Column(
        Uuid, ForeignKey("approval_workflows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    step_order = Column(Integer, nullable=False)
    name = Column(String(255), nullable=True)
    approver_spec = Column(JSON, nullable=False)
    quorum = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    workflow = relationship("ApprovalWorkflow", back_populates="steps")

    __table_args__ = (
        UniqueConstraint("workflow_id", "step_order", name="uq_workflow_steps_workflow_order"),
        CheckConstraint("step_order >= 1", name="step_order_positive"),
        CheckConstraint("quorum IS NULL OR quorum >= 1", name="quorum_positive"),
    )

    def __repr__(self) -> str:
        return f"<WorkflowStep {self.step_order} of {self.workflow_id}>"
