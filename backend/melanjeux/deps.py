from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .models import UserRole
from .utils.auth import Principal, decode_access_token


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_principal(authorization: str | None = Header(default=None)) -> Principal:
    """Trust boundary: the bearer token is verified here, credentials never are."""
    if authorization is None:
        raise _unauthorized("missing_authorization")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise _unauthorized("invalid_authorization")
    settings = get_settings()
    try:
        return decode_access_token(
            token.strip(),
            secret=settings.auth_secret,
            algorithms=[settings.auth_algorithm],
        )
    except ValueError as exc:
        raise _unauthorized("invalid_token") from exc


async def require_player(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != UserRole.PLAYER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="only_players_allowed")
    return principal


async def require_escape_owner(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != UserRole.ESCAPE_OWNER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
    return principal
