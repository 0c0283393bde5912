"""Simple JWT authentication helpers."""
from __future__ import annotations

from typing import Any, Dict
from uuid import UUID

import jwt
from fastapi import Header, HTTPException, status

from agenda.core.config import settings


def require_auth(authorization: str = Header(default="")) -> Dict[str, Any]:
    """Validate a bearer token and return the caller's user id and claims."""

    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )

    token = authorization.split(" ", 1)[1].strip()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALG],
            options={"verify_aud": False},
        )
    except jwt.InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc

    if "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User missing in token",
        )

    try:
        user_uuid = UUID(str(payload["sub"]))
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identifier",
        ) from exc

    return {"user_id": user_uuid, "claims": payload}
