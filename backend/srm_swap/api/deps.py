"""
API dependencies for authentication and authorization.
"""
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from srm_swap.core.roles import can_supervise
from srm_swap.db.session import get_db
from srm_swap.models.user import User
from srm_swap.services.auth import decode_access_token, get_user_by_id

# Security scheme for JWT bearer tokens
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    db: Annotated[AsyncSession, Depends(get_db)],
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> User:
    """
    Get the current authenticated user from the JWT token.

    Raises HTTPException 401 if token is invalid or user not found.
    """
    if not credentials:
        raise _unauthorized("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise _unauthorized("Invalid or expired token")

    try:
        user_id = int(payload.sub)
    except (ValueError, TypeError):
        raise _unauthorized("Invalid token payload")

    user = await get_user_by_id(db, user_id)
    if not user:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise _unauthorized("User account is disabled")

    return user


async def get_current_member(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """
    Get the current user and verify they may supervise trades.

    Raises HTTPException 403 for students.
    """
    if not can_supervise(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only members can supervise trades",
        )
    return current_user


# Type aliases for cleaner dependency injection
CurrentUser = Annotated[User, Depends(get_current_user)]
MemberUser = Annotated[User, Depends(get_current_member)]
