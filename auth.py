"""
Request principal resolution.
Tokens are issued elsewhere; this module only decodes an optional bearer
token into the caller's id and role.
"""

import logging
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from pydantic import BaseModel

from config import settings

logger = logging.getLogger(__name__)


class Principal(BaseModel):
    """The authenticated caller."""
    id: int
    role: str = "user"


def decode_principal(token: str) -> Optional[Principal]:
    """Decode a JWT into a Principal, or None if it is invalid or auth is not configured."""
    if not settings.jwt_secret:
        return None
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        return Principal(id=int(payload["id"]), role=payload.get("role", "user"))
    except (jwt.PyJWTError, KeyError, TypeError, ValueError) as exc:
        logger.info("Ignoring invalid bearer token: %s", exc)
        return None


def get_optional_principal(authorization: Optional[str] = Header(None)) -> Optional[Principal]:
    """
    Dependency that yields the caller when a valid bearer token is present.
    Missing or invalid tokens make the request anonymous rather than failing it.
    """
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return decode_principal(authorization.split(" ", 1)[1].strip())


def require_principal(principal: Optional[Principal] = Depends(get_optional_principal)) -> Principal:
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal
