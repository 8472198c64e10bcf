"""Chat error taxonomy.

Every user-facing chat failure maps to a ``ChatErrorCode`` with a localized
message and an HTTP status. Messages never include upstream bodies, stack
traces or filter pattern names.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from ..services.usage_limit import LimitCheckResult, LimitKind


class ChatErrorCode(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    FEATURE_DISABLED = "FEATURE_DISABLED"
    NO_ACCESS = "NO_ACCESS"
    PROJECT_NOT_FOUND = "PROJECT_NOT_FOUND"
    INVALID_REQUEST = "INVALID_REQUEST"
    DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
    MINUTE_LIMIT_EXCEEDED = "MINUTE_LIMIT_EXCEEDED"
    GLOBAL_LIMIT_EXCEEDED = "GLOBAL_LIMIT_EXCEEDED"
    PROMPT_INJECTION_DETECTED = "PROMPT_INJECTION_DETECTED"
    CONTENT_FILTERED = "CONTENT_FILTERED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    STREAM_ERROR = "STREAM_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


CHAT_ERROR_MESSAGES: Dict[ChatErrorCode, str] = {
    ChatErrorCode.DAILY_LIMIT_EXCEEDED: "오늘 사용량을 초과했습니다. 내일 다시 이용해 주세요.",
    ChatErrorCode.MINUTE_LIMIT_EXCEEDED: "잠시 후 다시 시도해 주세요. (분당 요청 제한)",
    ChatErrorCode.GLOBAL_LIMIT_EXCEEDED: "서비스 일일 한도를 초과했습니다. 내일 다시 이용해 주세요.",
    ChatErrorCode.UNAUTHORIZED: "로그인이 필요합니다.",
    ChatErrorCode.FEATURE_DISABLED: "챗봇 기능이 비활성화되어 있습니다.",
    ChatErrorCode.PROJECT_NOT_FOUND: "프로젝트를 찾을 수 없습니다.",
    ChatErrorCode.NO_ACCESS: "이 프로젝트에 접근 권한이 없습니다.",
    ChatErrorCode.SERVICE_UNAVAILABLE: "AI 서비스가 일시적으로 사용 불가합니다. 잠시 후 다시 시도해 주세요.",
    ChatErrorCode.STREAM_ERROR: "응답을 받는 중 오류가 발생했습니다.",
    ChatErrorCode.INVALID_REQUEST: "잘못된 요청입니다.",
    ChatErrorCode.PROMPT_INJECTION_DETECTED: "허용되지 않는 요청입니다.",
    ChatErrorCode.CONTENT_FILTERED: "응답이 필터링되었습니다.",
    ChatErrorCode.UNKNOWN_ERROR: "오류가 발생했습니다. 다시 시도해 주세요.",
}

CHAT_ERROR_STATUS: Dict[ChatErrorCode, int] = {
    ChatErrorCode.UNAUTHORIZED: 401,
    ChatErrorCode.FEATURE_DISABLED: 403,
    ChatErrorCode.NO_ACCESS: 403,
    ChatErrorCode.PROJECT_NOT_FOUND: 404,
    ChatErrorCode.INVALID_REQUEST: 400,
    ChatErrorCode.DAILY_LIMIT_EXCEEDED: 429,
    ChatErrorCode.MINUTE_LIMIT_EXCEEDED: 429,
    ChatErrorCode.GLOBAL_LIMIT_EXCEEDED: 429,
    ChatErrorCode.PROMPT_INJECTION_DETECTED: 400,
    ChatErrorCode.CONTENT_FILTERED: 400,
    ChatErrorCode.SERVICE_UNAVAILABLE: 503,
    ChatErrorCode.STREAM_ERROR: 500,
    ChatErrorCode.UNKNOWN_ERROR: 500,
}

_LIMIT_CODES = {
    LimitKind.GLOBAL: ChatErrorCode.GLOBAL_LIMIT_EXCEEDED,
    LimitKind.MINUTE: ChatErrorCode.MINUTE_LIMIT_EXCEEDED,
    LimitKind.DAILY: ChatErrorCode.DAILY_LIMIT_EXCEEDED,
}

# In-band message for failures after the stream has started
STREAM_FAILURE_MESSAGE = "AI 응답 중 오류가 발생했습니다."


def create_chat_error(code: ChatErrorCode, details: Optional[Any] = None) -> Dict[str, Any]:
    """Build the ``{"error": {code, message, details?}}`` response body."""
    error: Dict[str, Any] = {"code": code.value, "message": CHAT_ERROR_MESSAGES[code]}
    if details is not None:
        error["details"] = details
    return {"error": error}


class ChatError(Exception):
    """A chat request rejected before streaming started."""

    def __init__(
        self,
        code: ChatErrorCode,
        details: Optional[Any] = None,
        resets_at: Optional[datetime] = None,
    ):
        self.code = code
        self.details = details
        self.resets_at = resets_at
        super().__init__(CHAT_ERROR_MESSAGES[code])

    @property
    def message(self) -> str:
        return CHAT_ERROR_MESSAGES[self.code]

    @property
    def status_code(self) -> int:
        return CHAT_ERROR_STATUS[self.code]

    def to_body(self) -> Dict[str, Any]:
        body = create_chat_error(self.code, self.details)
        if self.resets_at is not None:
            body["error"]["resetsAt"] = _iso(self.resets_at)
        return body

    def headers(self, now: Optional[datetime] = None) -> Dict[str, str]:
        """Retry-After for rate-limit rejections with a known reset time."""
        if self.resets_at is None or self.status_code != 429:
            return {}
        now = now or datetime.now(timezone.utc)
        seconds = max(1, math.ceil((self.resets_at - now).total_seconds()))
        return {"Retry-After": str(seconds)}

    @classmethod
    def from_limit(cls, result: LimitCheckResult) -> "ChatError":
        code = _LIMIT_CODES.get(result.kind, ChatErrorCode.DAILY_LIMIT_EXCEEDED)
        details = {"remaining": result.remaining} if result.remaining is not None else None
        return cls(code, details=details, resets_at=result.resets_at)


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
