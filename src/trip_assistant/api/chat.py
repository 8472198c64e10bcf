"""Chat API endpoints."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..chat.errors import ChatError, ChatErrorCode
from ..chat.feature_flags import is_chatbot_enabled
from ..chat.send_message import SendMessageUseCase
from ..chat.streaming import sse_response
from ..repositories.chat import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, ChatRepository
from ..repositories.projects import ProjectRepository
from ..security.auth import CurrentUser, require_current_user
from ..services.usage_limit import UsageLimitService
from .dependencies import (
    get_chat_repository,
    get_project_repository,
    get_send_message,
    get_usage_service,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequest(_CamelModel):
    message: str
    message_id: Optional[str] = None


class ChatMessageResponse(_CamelModel):
    id: str
    role: str
    content: str
    places: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: str


class ChatHistoryResponse(_CamelModel):
    messages: List[ChatMessageResponse]
    session_id: Optional[str] = None


class UsageResponse(_CamelModel):
    used: int
    limit: int
    remaining: int
    resets_at: str
    minute_used: int
    minute_limit: int


class ChatUsageResponse(_CamelModel):
    enabled: bool
    usage: UsageResponse


class ClearHistoryResponse(_CamelModel):
    success: bool
    message: str


async def _ensure_access(projects: ProjectRepository, project_id: str, user_id: str) -> None:
    access = await projects.check_access(project_id, user_id)
    if not access.found:
        raise ChatError(ChatErrorCode.PROJECT_NOT_FOUND)
    if not access.has_access:
        raise ChatError(ChatErrorCode.NO_ACCESS)


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@router.post("/projects/{project_id}/chat")
async def send_message(
    project_id: str,
    body: ChatRequest,
    request: Request,
    user: CurrentUser = Depends(require_current_user),
    use_case: SendMessageUseCase = Depends(get_send_message),
):
    """Send a chat message; the reply streams back as server-sent events."""
    turn = await use_case.execute(project_id, user.id, body.message)
    return sse_response(turn.stream, request)


@router.get(
    "/projects/{project_id}/chat/history",
    response_model=ChatHistoryResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def get_history(
    project_id: str,
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    before: Optional[datetime] = Query(default=None),
    user: CurrentUser = Depends(require_current_user),
    chats: ChatRepository = Depends(get_chat_repository),
    projects: ProjectRepository = Depends(get_project_repository),
):
    if not is_chatbot_enabled(user.id):
        raise ChatError(ChatErrorCode.FEATURE_DISABLED)
    await _ensure_access(projects, project_id, user.id)

    session = await chats.get_session(project_id, user.id)
    if session is None:
        return ChatHistoryResponse(messages=[])

    messages = await chats.get_messages(session.id, limit=limit, before=before)
    return ChatHistoryResponse(
        session_id=str(session.id),
        messages=[
            ChatMessageResponse(
                id=str(m.id),
                role=m.role,
                content=m.content,
                places=m.places or [],
                created_at=_iso(m.created_at),
            )
            for m in messages
        ],
    )


@router.delete(
    "/projects/{project_id}/chat/history",
    response_model=ClearHistoryResponse,
)
async def clear_history(
    project_id: str,
    user: CurrentUser = Depends(require_current_user),
    chats: ChatRepository = Depends(get_chat_repository),
    projects: ProjectRepository = Depends(get_project_repository),
):
    await _ensure_access(projects, project_id, user.id)

    session = await chats.get_session(project_id, user.id)
    if session is None:
        return ClearHistoryResponse(success=True, message="삭제할 대화가 없습니다.")

    deleted = await chats.clear_session(session.id)
    logger.info("Chat history cleared (session %s, %d messages)", session.id, deleted)
    return ClearHistoryResponse(success=True, message="대화 내용이 삭제되었습니다.")


@router.get(
    "/chat/usage",
    response_model=ChatUsageResponse,
    response_model_by_alias=True,
)
async def get_usage(
    user: CurrentUser = Depends(require_current_user),
    usage_service: UsageLimitService = Depends(get_usage_service),
):
    info = await usage_service.get_usage_info(user.id)
    return ChatUsageResponse(
        enabled=is_chatbot_enabled(user.id),
        usage=UsageResponse.model_validate(info.to_dict()),
    )
