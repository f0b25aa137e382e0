"""Minimal auth dependency.

Identity-provider flows live outside this service; requests carry the
already-authenticated user id as ``Bearer <user_id>``. No header means an
anonymous prospect.
"""

import uuid
from typing import Annotated

from fastapi import Header, HTTPException, status


async def get_current_user_id(
    authorization: Annotated[str | None, Header()] = None,
) -> uuid.UUID | None:
    """Extract the user id from the authorization header.

    Args:
        authorization: Authorization header (e.g., "Bearer <user_id>")

    Returns:
        User id, or None for an anonymous request

    Raises:
        HTTPException: If authorization is invalid
    """
    if not authorization:
        return None

    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = authorization[7:]  # Strip "Bearer "
    try:
        return uuid.UUID(token)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid bearer token (expected user id)",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def require_user_id(
    authorization: Annotated[str | None, Header()] = None,
) -> uuid.UUID:
    """Like get_current_user_id, but anonymous requests are rejected."""
    user_id = await get_current_user_id(authorization)
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id
