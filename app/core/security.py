from datetime import datetime, timedelta, timezone
from typing import Optional, Any
import uuid

from jose import JWTError, jwt

from app.config import settings
from app.models.user import UserRole
from app.schemas.stock_reconciliation import Actor


def create_access_token(
    subject: str | uuid.UUID,
    role: UserRole,
    expires_delta: Optional[timedelta] = None,
    additional_claims: Optional[dict[str, Any]] = None
) -> str:
    """
    Create a JWT access token carrying the user's role.

    Tokens are normally issued by the identity provider; this is used by
    local tooling and tests that share its signing key.

    Args:
        subject: The subject of the token (user ID)
        role: Role claim
        expires_delta: Optional custom expiration time
        additional_claims: Optional additional claims to include

    Returns:
        Encoded JWT token string
    """
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = {
        "sub": str(subject),
        "role": UserRole(role).value,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "jti": str(uuid.uuid4()),
        "type": "access"
    }

    if additional_claims:
        to_encode.update(additional_claims)

    return jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )


def decode_token(token: str) -> Optional[dict[str, Any]]:
    """
    Decode and validate a JWT token.

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None


def verify_access_token(token: str) -> Optional[Actor]:
    """
    Verify an access token and return the acting identity.

    Returns:
        Actor or None if the token is invalid, expired, not an access
        token, or carries an unknown role
    """
    payload = decode_token(token)
    if payload is None:
        return None

    if payload.get("type") != "access":
        return None

    try:
        return Actor(user_id=uuid.UUID(str(payload.get("sub"))), role=UserRole(payload.get("role")))
    except ValueError:
        return None
