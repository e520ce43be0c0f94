"""
Authentication dependencies for FastAPI routes.

Bearer tokens carry the user id; the user must exist locally. Administrators
are users whose e-mail is listed in ADMIN_EMAILS.
"""

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from streetpaddle.services import auth_service, user_service
from streetpaddle.database.db import get_db_session

security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def user_id_from_token(token: Optional[str]) -> Optional[str]:
    """Return the user id a token was issued for, or None if it is unusable."""
    if not token:
        return None
    payload = auth_service.verify_token(token)
    if payload is None or payload.get("user_id") is None:
        return None
    return str(payload["user_id"])


async def get_current_user(
    session: AsyncSession = Depends(get_db_session),
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    Resolve the caller from the bearer token.

    Returns:
        User dictionary (includes ``is_admin``)

    Raises:
        HTTPException: 401 if the token is invalid or the user is unknown
    """
    user_id = user_id_from_token(credentials.credentials)
    if user_id is None:
        raise _unauthorized("Invalid authentication token")

    user = await user_service.get_user_by_id(session, user_id)
    if user is None:
        raise _unauthorized("User not found")
    return user


async def require_user(user: dict = Depends(get_current_user)) -> dict:
    """Require any authenticated user."""
    return user


async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    """Require a tournament administrator."""
    if not user.get("is_admin"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user
