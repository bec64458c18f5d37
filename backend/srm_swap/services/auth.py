"""
Identity helpers for the trade engine.

Login, registration and password storage belong to the external auth
service. This module only shares its token format: it decodes the bearer
tokens that service issues and resolves them to users. create_access_token
mirrors the issuer and is used by tooling and tests.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from srm_swap.core.config import settings
from srm_swap.models.user import User
from srm_swap.schemas.auth import TokenPayload

logger = structlog.get_logger()


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes))

    payload = {
        "sub": str(user_id),
        "exp": expire,
        "iat": now,
        "type": "access",
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[TokenPayload]:
    """
    Decode and validate a JWT access token.

    Validates signature, expiration and token type.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
        token_data = TokenPayload(**payload)
    except (JWTError, ValidationError) as e:
        logger.warning("JWT decode error", error=str(e))
        return None

    if token_data.type != "access":
        logger.warning("Invalid token type", token_type=token_data.type)
        return None

    return token_data


async def get_user_by_id(db: AsyncSession, user_id: int) -> Optional[User]:
    """Get a user by ID."""
    return await db.get(User, user_id)


async def resolve_token_user(db: AsyncSession, token: str) -> Optional[User]:
    """Resolve a bearer token to an active user, or None."""
    payload = decode_access_token(token)
    if payload is None:
        return None
    try:
        user_id = int(payload.sub)
    except (TypeError, ValueError):
        return None

    user = await get_user_by_id(db, user_id)
    if user is None or not user.is_active:
        return None
    return user
