"""SQL implementation of the chat usage counters."""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from ..database.connection import get_db_context
from ..models.chat import ChatMessage, ChatSession, ChatUsage
from ..services.usage_limit import usage_day, utcnow

logger = logging.getLogger(__name__)


class SqlUsageRepository:
    """Backs ``UsageLimitService`` with the ``chat_usage`` and ``chat_messages`` tables."""

    def __init__(self, session_factory: Callable = get_db_context):
        self._session_factory = session_factory

    async def get_usage_for_date(self, user_id: str, day: date) -> Optional[int]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ChatUsage.count).where(ChatUsage.user_id == user_id, ChatUsage.date == day)
            )
            return result.scalar_one_or_none()

    async def increment_usage(self, user_id: str, day: date) -> int:
        """Add one to the (user, day) counter, creating the row on first use."""
        count = await self._try_increment(user_id, day)
        if count is not None:
            return count

        try:
            async with self._session_factory() as session:
                session.add(ChatUsage(user_id=user_id, date=day, count=1))
            return 1
        except IntegrityError:
            # Another request created the row first
            logger.debug("Usage row for %s on %s created concurrently", user_id, day)

        count = await self._try_increment(user_id, day)
        if count is None:
            raise RuntimeError(f"Usage row for {user_id} on {day} disappeared")
        return count

    async def _try_increment(self, user_id: str, day: date) -> Optional[int]:
        async with self._session_factory() as session:
            result = await session.execute(
                update(ChatUsage)
                .where(ChatUsage.user_id == user_id, ChatUsage.date == day)
                .values(count=ChatUsage.count + 1, updated_at=utcnow())
            )
            if result.rowcount == 0:
                return None
            count = await session.execute(
                select(ChatUsage.count).where(ChatUsage.user_id == user_id, ChatUsage.date == day)
            )
            return count.scalar_one()

    async def get_global_usage_for_date(self, day: date) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.coalesce(func.sum(ChatUsage.count), 0)).where(ChatUsage.date == day)
            )
            return int(result.scalar_one())

    async def count_recent_user_messages(self, user_id: str, since: datetime) -> int:
        """User-role messages across all of the user's sessions since ``since``."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(ChatMessage.id))
                .join(ChatSession, ChatMessage.session_id == ChatSession.id)
                .where(
                    ChatSession.user_id == user_id,
                    ChatMessage.role == "user",
                    ChatMessage.created_at >= since,
                )
            )
            return int(result.scalar_one())

    async def get_user_usage_stats(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Totals for today, the last 7 days and the last 30 days (KST days)."""
        today = usage_day(now)

        async def _sum_since(start: date) -> int:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(func.coalesce(func.sum(ChatUsage.count), 0)).where(
                        ChatUsage.user_id == user_id,
                        ChatUsage.date >= start,
                        ChatUsage.date <= today,
                    )
                )
                return int(result.scalar_one())

        return {
            "today": await _sum_since(today),
            "thisWeek": await _sum_since(today - timedelta(days=6)),
            "thisMonth": await _sum_since(today - timedelta(days=29)),
        }
