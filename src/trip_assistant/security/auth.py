"""Request authentication.

Callers present ``Authorization: Bearer <jwt>``. A missing or invalid token
resolves to no user; routes that need one depend on ``require_current_user``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from jose import JWTError

from ..chat.errors import ChatError, ChatErrorCode
from .tokens import decode_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    id: str
    email: Optional[str] = None
    name: Optional[str] = None


def _authenticate_jwt(token: str) -> Optional[CurrentUser]:
    try:
        payload = decode_token(token)
    except JWTError as exc:
        logger.debug("Rejected bearer token: %s", exc)
        return None

    # Only accept access tokens
    if payload.get("type") != "access":
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None

    return CurrentUser(id=str(user_id), email=payload.get("email"), name=payload.get("name"))


async def get_current_user(request: Request) -> Optional[CurrentUser]:
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return _authenticate_jwt(auth_header[7:])


async def require_current_user(
    user: Optional[CurrentUser] = Depends(get_current_user),
) -> CurrentUser:
    """Raises:
        ChatError: UNAUTHORIZED when no valid token was presented
    """
    if user is None:
        raise ChatError(ChatErrorCode.UNAUTHORIZED)
    return user
