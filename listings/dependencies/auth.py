import uuid

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from listings.database import get_session
from listings.models.user import User, UserStatus
from listings.security import decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)
logger = get_logger()

BLOCKED_STATUSES = {UserStatus.SUSPENDED.value, UserStatus.INACTIVE.value}


async def get_optional_user(
    token: str | None = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_session),
) -> User | None:
    """Resolve the bearer token to a user; anonymous callers get None.

    A token that is present but invalid is still rejected, so a client with a
    stale token learns about it instead of silently browsing anonymously.
    """
    if not token:
        return None
    try:
        payload = decode_access_token(token)
        user_id = uuid.UUID(str(payload.get("sub")))
    except (jwt.PyJWTError, ValueError) as e:
        logger.warning("Rejected bearer token", error=str(e))
        raise HTTPException(status_code=401, detail="Invalid token")
    user = await session.get(User, user_id)
    if user is None:
        logger.warning("Token subject no longer exists", user_id=str(user_id))
        raise HTTPException(status_code=401, detail="Invalid token")
    if user.status in BLOCKED_STATUSES:
        raise HTTPException(status_code=403, detail=f"Account is {user.status}")
    return user


async def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


async def get_current_agent(user: User = Depends(get_current_user)) -> User:
    if not (user.is_agent or user.is_superadmin):
        raise HTTPException(status_code=403, detail="Agent role required")
    return user


async def get_current_superadmin(user: User = Depends(get_current_user)) -> User:
    if not user.is_superadmin:
        logger.warning("Superadmin access denied", user_id=str(user.id), role=user.role)
        raise HTTPException(status_code=403, detail="Forbidden: superadmin role required")
    return user
