import uuid
from sqlalchemy import Column, String, DateTime, JSON, Uuid
from sqlalchemy.orm import relationship

from approvalflow.db.base import Base, utcnow


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    settings = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    users = relationship("User", back_populates="organization")
    roles = relationship("Role", back_populates="organization")
    workflows = relationship("ApprovalWorkflow", back_populates="organization")
