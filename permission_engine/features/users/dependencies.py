"""
FastAPI dependencies for identifying the caller.

Authentication happens in front of this service; here the bearer token is
only read for its ``sub`` (the user id) and its permission claims.
"""
from typing import Annotated, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from permission_engine.core.database.engine import get_db
from permission_engine.core.exceptions import NotFoundError
from permission_engine.features.users.claims import Claims, decode_token, extract_claims
from permission_engine.features.users.models import User
from permission_engine.features.users.service import get_user


security = HTTPBearer(auto_error=False)


async def get_token(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)]
) -> str:
    """Bearer token from the Authorization header, or 401."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


async def get_claims(token: Annotated[str, Depends(get_token)]) -> Claims:
    """Claims of the caller's token; empty when they cannot be read."""
    return extract_claims(token)


async def get_current_user(
    token: Annotated[str, Depends(get_token)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> User:
    """
    Get the caller as a stored user.

    Usage:
        @router.get("/session")
        async def read_session(user: User = Depends(get_current_user)):
            ...
    """
    try:
        payload = decode_token(token)
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    try:
        return await get_user(db, str(user_id))
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown user",
        )


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
