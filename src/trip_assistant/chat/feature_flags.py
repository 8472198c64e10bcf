"""Chatbot rollout flags."""

from typing import Optional

from ..config import Settings, get_settings


def hash_user_id(value: str) -> int:
    """Stable non-negative 32-bit string hash (``h = h * 31 + c``)."""
    h = 0
    for char in value:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def is_chatbot_enabled(user_id: Optional[str] = None, settings: Optional[Settings] = None) -> bool:
    """Kill switch, then beta allow-list, then percentage rollout.

    With a 0% rollout and no beta list the chatbot is on for everyone who
    passes the kill switch.
    """
    settings = settings or get_settings()
    if not settings.chatbot_enabled:
        return False
    if not user_id:
        return True

    beta_users = settings.get_beta_users()
    if user_id in beta_users:
        return True

    percent = settings.chatbot_rollout_percent
    if percent >= 100:
        return True
    if percent <= 0:
        return not beta_users

    return hash_user_id(user_id) % 100 < percent


def is_function_calling_enabled(settings: Optional[Settings] = None) -> bool:
    settings = settings or get_settings()
    return settings.chatbot_function_calling_enabled
