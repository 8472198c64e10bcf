"""Security module for Trip Assistant: bearer token authentication."""

from .auth import CurrentUser, get_current_user, require_current_user
from .tokens import create_access_token, decode_token

__all__ = [
    "CurrentUser",
    "get_current_user",
    "require_current_user",
    "create_access_token",
    "decode_token",
]
