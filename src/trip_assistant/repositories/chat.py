"""Chat session and message persistence."""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError

from ..database.connection import get_db_context
from ..models.chat import ChatMessage, ChatSession

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def _uuid(value: Any) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class ChatRepository:
    def __init__(self, session_factory: Callable = get_db_context):
        self._session_factory = session_factory

    async def get_session(self, project_id: str, user_id: str) -> Optional[ChatSession]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ChatSession).where(
                    ChatSession.project_id == _uuid(project_id),
                    ChatSession.user_id == user_id,
                )
            )
            return result.scalar_one_or_none()

    async def find_or_create_session(self, project_id: str, user_id: str) -> ChatSession:
        existing = await self.get_session(project_id, user_id)
        if existing is not None:
            return existing

        try:
            async with self._session_factory() as session:
                chat_session = ChatSession(project_id=_uuid(project_id), user_id=user_id)
                session.add(chat_session)
                await session.flush()
            logger.info("Created chat session %s for project %s", chat_session.id, project_id)
            return chat_session
        except IntegrityError:
            logger.debug("Chat session for project %s created concurrently", project_id)

        existing = await self.get_session(project_id, user_id)
        if existing is None:
            raise RuntimeError(f"Chat session for project {project_id} disappeared")
        return existing

    async def add_message(
        self,
        session_id: Any,
        role: str,
        content: str,
        places: Optional[Sequence[dict]] = None,
    ) -> ChatMessage:
        async with self._session_factory() as session:
            message = ChatMessage(
                session_id=_uuid(session_id),
                role=role,
                content=content,
                places=list(places) if places else None,
            )
            session.add(message)
            await session.flush()
            return message

    async def get_messages(
        self,
        session_id: Any,
        limit: int = DEFAULT_PAGE_SIZE,
        before: Optional[datetime] = None,
    ) -> List[ChatMessage]:
        """Page of messages older than ``before``, returned oldest first."""
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        query = select(ChatMessage).where(ChatMessage.session_id == _uuid(session_id))
        if before is not None:
            query = query.where(ChatMessage.created_at < before)
        query = query.order_by(ChatMessage.created_at.desc()).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            messages = list(result.scalars().all())
        messages.reverse()
        return messages

    async def get_recent_messages(self, session_id: Any, limit: int = 10) -> List[ChatMessage]:
        return await self.get_messages(session_id, limit=limit)

    async def count_messages(self, session_id: Any) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count(ChatMessage.id)).where(ChatMessage.session_id == _uuid(session_id))
            )
            return int(result.scalar_one())

    async def clear_session(self, session_id: Any) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ChatMessage).where(ChatMessage.session_id == _uuid(session_id))
            )
            return result.rowcount or 0
