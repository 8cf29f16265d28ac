from datetime import datetime, timedelta, timezone
from typing import NamedTuple, Optional
from uuid import UUID
import uuid

from jose import JWTError, jwt

from approvalflow.core.config import get_settings


class TokenClaims(NamedTuple):
    """Session context carried by a bearer token."""
    user_id: UUID
    org_id: UUID
    jti: Optional[str] = None


def create_access_token(
    user_id: UUID,
    org_id: UUID,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a JWT access token for a user acting within an organization."""
    settings = get_settings()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode = {
        "sub": str(user_id),
        "org": str(org_id),
        "exp": expire,
        "jti": str(uuid.uuid4()),
        "type": "access",
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> Optional[TokenClaims]:
    """Decode and validate a JWT token. Returns None if invalid or expired."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None

    if payload.get("type", "access") != "access":
        return None

    user_id = payload.get("sub")
    org_id = payload.get("org")
    if user_id is None or org_id is None:
        return None

    try:
        return TokenClaims(UUID(user_id), UUID(org_id), payload.get("jti"))
    except (TypeError, ValueError):
        return None
