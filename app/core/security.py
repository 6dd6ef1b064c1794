"""
Security utilities for authentication and authorization
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from uuid import UUID
import logging

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.config import settings
from app.core.database import db_manager
from app.core.exceptions import AuthenticationError, ForbiddenError
from app.models.user import User

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token; ``data["sub"]`` carries the user id
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode = data.copy()
    to_encode.update({
        "exp": datetime.now(timezone.utc) + expires_delta,
        "type": "access",
    })
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and verify a JWT access token
    """
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        raise AuthenticationError("Could not validate credentials")

    if payload.get("type") != "access":
        raise AuthenticationError("Invalid token type. Expected access")
    return payload


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> User:
    """
    Resolve the bearer token to an active user
    """
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    payload = decode_token(credentials.credentials)
    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError:
        raise AuthenticationError("Could not validate credentials")

    async with db_manager.read_session() as session:
        user = await session.get(User, user_id)

    if user is None or not user.is_active:
        raise AuthenticationError("User not found or inactive")
    return user


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """
    Require admin role for endpoint
    """
    if not current_user.is_admin:
        raise ForbiddenError("Admin access required")
    return current_user
