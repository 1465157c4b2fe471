"""
Caller identity for LifeOS routes.

Authentication happens in front of this service. The gateway forwards the
authenticated user's id in the X-User-Id header, and every route scopes its
reads and writes to that id.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Header, HTTPException, status

MAX_USER_ID_LENGTH = 128


async def get_user_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """
    FastAPI dependency: the caller's user id.

    Raises:
        HTTPException: 401 if the header is missing or blank
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header.",
        )
    if len(user_id) > MAX_USER_ID_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-Id header.",
        )
    return user_id
