"""JWT token creation and validation.

Uses python-jose for JWT encoding/decoding. Tokens are signed with the
application SECRET_KEY using HS256. Identity is issued by the surrounding
application; this service only verifies access tokens.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import jwt

from ..config import get_settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


def create_access_token(
    user_id: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed access token.

    Args:
        user_id: Value for the ``sub`` claim.
        email: Optional user email included in payload.
        name: Optional display name included in payload.
        expires_delta: Custom expiry. Falls back to config ``access_token_expire_minutes``.

    Returns:
        Encoded JWT string.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)

    payload: Dict[str, Any] = {
        "sub": user_id,
        "type": "access",
        "iat": now,
        "exp": now + expires_delta,
    }
    if email:
        payload["email"] = email
    if name:
        payload["name"] = name
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT token.

    Validates signature and expiry. Returns the full payload dict on success.

    Raises:
        JWTError: On invalid signature, expired token, or malformed JWT.
    """
    settings = get_settings()
    return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
