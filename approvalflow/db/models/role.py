import uuid
from sqlalchemy import Column, String, DateTime, JSON, Boolean, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from approvalflow.db.base import Base, utcnow


class Role(Base):
    __tablename__ = "roles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    permissions = Column(JSON, nullable=False, default=list)
    is_system = Column(Boolean, default=False)
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    organization = relationship("Organization", back_populates="roles")
    users = relationship("User", back_populates="role")
