"""Operator sessions using JWT tokens.

The host application issues the tokens; this module only verifies them and
gates the backup endpoints on the ``is_owner`` claim.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from pydantic import BaseModel

from snapsync.config import get_session_secret, get_settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
SESSION_COOKIE_NAME = "session"


class Operator(BaseModel):
    """Authenticated operator, decoded from the session token."""
    operator_id: int
    email: str
    is_owner: bool = False
    exp: datetime


def create_session_token(operator_id: int, email: str, is_owner: bool = False) -> str:
    """Create a JWT session token."""
    settings = get_settings()
    secret = get_session_secret()

    expire = datetime.utcnow() + timedelta(days=settings.session_expire_days)
    data = {
        "operator_id": operator_id,
        "email": email,
        "is_owner": is_owner,
        "exp": expire,
    }

    return jwt.encode(data, secret, algorithm=ALGORITHM)


def verify_session_token(token: str) -> Optional[Operator]:
    """Verify and decode a session token."""
    try:
        secret = get_session_secret()
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
        return Operator(**payload)
    except (JWTError, ValueError) as e:
        logger.warning(f"Invalid session token: {e}")
        return None


def _request_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.cookies.get(SESSION_COOKIE_NAME)


async def get_current_operator_optional(request: Request) -> Optional[Operator]:
    """Get current operator from the bearer header or session cookie."""
    token = _request_token(request)
    if not token:
        return None
    return verify_session_token(token)


async def get_current_operator(request: Request) -> Operator:
    """Get current operator, raises 401 if not authenticated."""
    operator = await get_current_operator_optional(request)
    if not operator:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return operator


async def require_owner(operator: Operator = Depends(get_current_operator)) -> Operator:
    """Require owner privileges."""
    if not operator.is_owner:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Owner privileges required",
        )
    return operator
