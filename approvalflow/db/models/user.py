import uuid
from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from approvalflow.db.base import Base, utcnow


class User(Base):
    """Directory entry consulted by the identity service.

    ``manager_id`` links each user to their line manager so approver
    specs can resolve "the requester's manager chain".
    """
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255))
    org_id = Column(Uuid, ForeignKey("organizations.id"), nullable=False, index=True)
    role_id = Column(Uuid, ForeignKey("roles.id"), nullable=True)
    manager_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    organization = relationship("Organization", back_populates="users")
    role = relationship("Role", back_populates="users")
    manager = relationship("User", remote_side=[id])
