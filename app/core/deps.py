import logging
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.security import decode_token
from app.db.session import get_db
from app.models.user import User
from app.services.user_service import get_user_by_id

logger = logging.getLogger(__name__)

# Tokens are issued by the main app; this service only verifies them.
bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def _access_token_subject(token: str) -> int:
    try:
        payload = decode_token(token)
    except JWTError:
        raise _unauthorized()
    if payload.get("type") != "access":
        raise _unauthorized()
    try:
        return int(payload.get("sub"))
    except (TypeError, ValueError):
        raise _unauthorized()


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
    db: AsyncSession = Depends(get_db),
) -> User:
    if credentials is None:
        raise _unauthorized()
    user = await get_user_by_id(db, _access_token_subject(credentials.credentials))
    if not user or not user.is_active:
        raise _unauthorized()
    return user


async def require_admin(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    if current_user.role != "admin":
        logger.warning("catalog admin access refused for user %s", current_user.id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


AdminUser = Annotated[User, Depends(require_admin)]
