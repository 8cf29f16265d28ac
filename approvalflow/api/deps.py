from typing import Generator, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session, joinedload

from approvalflow.core.approval import ApprovalQueryService, ApprovalService
from approvalflow.core.config import get_settings
from approvalflow.core.security import decode_token
from approvalflow.db.models import User
from approvalflow.db.session import new_session
from approvalflow.services.identity import DirectoryIdentityService, IdentityService
from approvalflow.services.notifications import LoggingNotifier, Notifier, NullNotifier

bearer_scheme = HTTPBearer(auto_error=False)


def get_db() -> Generator:
    """Database session dependency."""
    db = new_session()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    db: Session = Depends(get_db),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> User:
    """Get the current user from the bearer token; the token's org must be the user's org."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if credentials is None:
        raise credentials_exception

    claims = decode_token(credentials.credentials)
    if claims is None:
        raise credentials_exception

    user = db.query(User).options(joinedload(User.role)).filter(User.id == claims.user_id).first()
    if user is None or not user.is_active or user.org_id != claims.org_id:
        raise credentials_exception

    return user


def get_identity_service(db: Session = Depends(get_db)) -> IdentityService:
    return DirectoryIdentityService(db)


def get_notifier() -> Notifier:
    if get_settings().notifications_enabled:
        return LoggingNotifier()
    return NullNotifier()


def get_approval_service(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    identity: IdentityService = Depends(get_identity_service),
    notifier: Notifier = Depends(get_notifier),
) -> ApprovalService:
    return ApprovalService(db, current_user.org_id, identity, notifier)


def get_query_service(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ApprovalQueryService:
    return ApprovalQueryService(db, current_user.org_id)
