"""Chat usage limits.

Three independent caps are checked before a chat turn is accepted, in order:
global daily (all users), per-user per-minute (sliding 60s window over the
user's own messages) and per-user daily.

"Daily" means a calendar day in KST. The offset is a fixed +9h (no DST) and
is only applied inside ``get_next_reset_time`` / ``usage_day``.

Counters are read-then-incremented without isolation, so concurrent turns
from the same user can overshoot a cap by a few messages.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, Protocol

from ..observability.metrics import record_rate_limited

logger = logging.getLogger(__name__)

DAILY_LIMIT = 50
MINUTE_LIMIT = 10
GLOBAL_DAILY_LIMIT = 10000

RESET_TZ_OFFSET_MINUTES = 540
MINUTE_WINDOW = timedelta(seconds=60)

_RESET_OFFSET = timedelta(minutes=RESET_TZ_OFFSET_MINUTES)

GLOBAL_LIMIT_REASON = "서비스 일일 한도를 초과했습니다. 내일 다시 이용해 주세요."
MINUTE_LIMIT_REASON = "잠시 후 다시 시도해 주세요. (분당 요청 제한)"
DAILY_LIMIT_REASON = "오늘 사용량을 초과했습니다. 내일 다시 이용해 주세요."


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def usage_day(now: Optional[datetime] = None) -> date:
    """The KST calendar day that ``now`` falls into."""
    return (_as_utc(now or utcnow()) + _RESET_OFFSET).date()


def get_next_reset_time(now: Optional[datetime] = None) -> datetime:
    """Next KST midnight, as an aware UTC datetime."""
    local_day = usage_day(now)
    next_midnight = datetime.combine(local_day + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return next_midnight - _RESET_OFFSET


class UsageRepository(Protocol):
    async def get_usage_for_date(self, user_id: str, day: date) -> Optional[int]:
        """Message count for the user on ``day``, or None if no record exists."""
        ...

    async def increment_usage(self, user_id: str, day: date) -> int:
        """Increment the user's count for ``day`` and return the new value."""
        ...

    async def get_global_usage_for_date(self, day: date) -> int:
        ...

    async def count_recent_user_messages(self, user_id: str, since: datetime) -> int:
        ...


class LimitKind(str, Enum):
    GLOBAL = "global"
    MINUTE = "minute"
    DAILY = "daily"


@dataclass(frozen=True)
class UsageLimits:
    daily: int = DAILY_LIMIT
    minute: int = MINUTE_LIMIT
    global_daily: int = GLOBAL_DAILY_LIMIT


@dataclass(frozen=True)
class LimitCheckResult:
    allowed: bool
    reason: Optional[str] = None
    remaining: Optional[int] = None
    resets_at: Optional[datetime] = None
    kind: Optional[LimitKind] = None


@dataclass(frozen=True)
class UsageInfo:
    used: int
    limit: int
    remaining: int
    resets_at: datetime
    minute_used: int
    minute_limit: int

    def to_dict(self) -> dict:
        return {
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "resetsAt": self.resets_at.isoformat().replace("+00:00", "Z"),
            "minuteUsed": self.minute_used,
            "minuteLimit": self.minute_limit,
        }


class UsageLimitService:
    """Enforces the global, per-minute and daily chat caps."""

    def __init__(
        self,
        repository: UsageRepository,
        limits: Optional[UsageLimits] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.limits = limits or UsageLimits()
        self._clock = clock

    async def check_limit(self, user_id: str) -> LimitCheckResult:
        """Evaluate the caps in order; the first one exhausted rejects."""
        now = _as_utc(self._clock())
        day = usage_day(now)

        global_usage = await self.repository.get_global_usage_for_date(day)
        if global_usage >= self.limits.global_daily:
            logger.warning("Global daily chat limit reached (%d)", global_usage)
            record_rate_limited(LimitKind.GLOBAL.value)
            return LimitCheckResult(allowed=False, reason=GLOBAL_LIMIT_REASON, kind=LimitKind.GLOBAL)

        minute_used = await self._minute_usage(user_id, now)
        if minute_used >= self.limits.minute:
            logger.info("Minute chat limit reached for user %s", user_id)
            record_rate_limited(LimitKind.MINUTE.value)
            return LimitCheckResult(
                allowed=False,
                reason=MINUTE_LIMIT_REASON,
                resets_at=now + MINUTE_WINDOW,
                kind=LimitKind.MINUTE,
            )

        current = await self.repository.get_usage_for_date(user_id, day) or 0
        if current >= self.limits.daily:
            logger.info("Daily chat limit reached for user %s", user_id)
            record_rate_limited(LimitKind.DAILY.value)
            return LimitCheckResult(
                allowed=False,
                reason=DAILY_LIMIT_REASON,
                remaining=0,
                resets_at=get_next_reset_time(now),
                kind=LimitKind.DAILY,
            )

        return LimitCheckResult(
            allowed=True,
            remaining=self.limits.daily - current,
            resets_at=get_next_reset_time(now),
        )

    async def get_usage_info(self, user_id: str) -> UsageInfo:
        """Read-only usage projection for display."""
        now = _as_utc(self._clock())
        used = await self.repository.get_usage_for_date(user_id, usage_day(now)) or 0
        minute_used = await self._minute_usage(user_id, now)

        return UsageInfo(
            used=used,
            limit=self.limits.daily,
            remaining=max(0, self.limits.daily - used),
            resets_at=get_next_reset_time(now),
            minute_used=minute_used,
            minute_limit=self.limits.minute,
        )

    async def record_usage(self, user_id: str) -> int:
        """Charge one message to today's counter; call once per accepted turn."""
        day = usage_day(self._clock())
        count = await self.repository.increment_usage(user_id, day)
        logger.debug("Recorded chat usage for user %s (%d today)", user_id, count)
        return count

    async def _minute_usage(self, user_id: str, now: datetime) -> int:
        return await self.repository.count_recent_user_messages(user_id, now - MINUTE_WINDOW)
