"""Chat turn orchestration.

A turn runs strictly in order: feature flag, project access, usage limits,
prompt filter, then the model stream. Every step before the stream can
reject the request with a ``ChatError``; once the first model chunk has
arrived the request is committed and later failures are reported in-band
as an ``error`` event.
"""

import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List, Optional

from ..config import Settings, get_settings
from ..observability.logging import set_log_context
from ..observability.metrics import record_chat_message
from ..repositories.chat import ChatRepository
from ..repositories.projects import ProjectRepository
from ..services.prompt_filter import PromptInjectionFilter
from ..services.usage_limit import UsageLimitService
from .context_builder import ChatContextBuilder
from .errors import STREAM_FAILURE_MESSAGE, ChatError, ChatErrorCode
from .feature_flags import is_chatbot_enabled
from .llm import ChatContext, LLMStreamClient, StreamChunk, StreamEventType
from .tool_executor import TOOL_FAILURE_MESSAGE, ToolExecutionContext, ToolExecutor
from .tools import ToolName

logger = logging.getLogger(__name__)

SKIPPED_PLACES_NOTE = "\n(참고: 다음 장소는 프로젝트에 저장되지 않아 일정에 포함되지 않았습니다: {names})"


@dataclass
class ChatTurn:
    session_id: str
    stream: AsyncGenerator[StreamChunk, None]


async def _chain(first: StreamChunk, rest: AsyncIterator[StreamChunk]) -> AsyncIterator[StreamChunk]:
    yield first
    async for chunk in rest:
        yield chunk


class SendMessageUseCase:
    def __init__(
        self,
        chat_repository: ChatRepository,
        project_repository: ProjectRepository,
        usage_service: UsageLimitService,
        llm: LLMStreamClient,
        tool_executor: ToolExecutor,
        prompt_filter: Optional[PromptInjectionFilter] = None,
        context_builder: Optional[ChatContextBuilder] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.chat_repository = chat_repository
        self.project_repository = project_repository
        self.usage_service = usage_service
        self.llm = llm
        self.tool_executor = tool_executor
        self.prompt_filter = prompt_filter or PromptInjectionFilter(
            max_length=self.settings.chat_max_message_length
        )
        self.context_builder = context_builder or ChatContextBuilder(
            chat_repository, project_repository, history_window=self.settings.chat_history_window
        )

    async def execute(self, project_id: str, user_id: str, message: str) -> ChatTurn:
        """Run the pre-stream checks and return the committed response stream.

        Raises:
            ChatError: when the turn is rejected before streaming starts
        """
        set_log_context(user_id=user_id, project_id=project_id)

        if not is_chatbot_enabled(user_id, self.settings):
            raise ChatError(ChatErrorCode.FEATURE_DISABLED)

        access = await self.project_repository.check_access(project_id, user_id)
        if not access.found:
            raise ChatError(ChatErrorCode.PROJECT_NOT_FOUND)
        if not access.has_access:
            raise ChatError(ChatErrorCode.NO_ACCESS)
        project = access.project

        limit = await self.usage_service.check_limit(user_id)
        if not limit.allowed:
            record_chat_message("rate_limited")
            raise ChatError.from_limit(limit)

        verdict = self.prompt_filter.filter(message)
        if not verdict.is_clean:
            record_chat_message("filtered")
            if verdict.matched_pattern in ("length_exceeded", "empty_message"):
                raise ChatError(ChatErrorCode.INVALID_REQUEST, details={"reason": verdict.reason})
            raise ChatError(ChatErrorCode.PROMPT_INJECTION_DETECTED)

        clean_message = self.prompt_filter.sanitize(message)
        if not clean_message:
            raise ChatError(ChatErrorCode.INVALID_REQUEST)

        session = await self.chat_repository.find_or_create_session(project_id, user_id)
        session_id = str(session.id)
        places = await self.project_repository.list_places(project_id)

        # History is read before the new message is stored so it is not sent twice
        context = await self.context_builder.build(
            project_id, session_id, project.destination, project.country, places
        )
        await self.chat_repository.add_message(session_id, "user", clean_message)

        stream = self.llm.stream_chat(clean_message, context)
        try:
            first = await stream.__anext__()
        except StopAsyncIteration:
            first = StreamChunk.done()
        except Exception:
            logger.exception("Chat model unavailable for project %s", project_id)
            await stream.aclose()
            record_chat_message("unavailable")
            raise ChatError(ChatErrorCode.SERVICE_UNAVAILABLE)

        try:
            await self.usage_service.record_usage(user_id)
        except Exception:
            logger.exception("Failed to record chat usage for user %s", user_id)

        logger.info("Chat message accepted (session %s)", session_id)
        tool_context = ToolExecutionContext(
            project_id=project_id,
            user_id=user_id,
            destination=project.destination,
            country=project.country,
            existing_places=places,
            itinerary=context.itinerary,
            itinerary_id=context.itinerary.id if context.itinerary else None,
        )
        return ChatTurn(
            session_id=session_id,
            stream=self._relay(session_id, first, stream, tool_context),
        )

    async def _relay(
        self,
        session_id: str,
        first: StreamChunk,
        stream: AsyncGenerator[StreamChunk, None],
        tool_context: ToolExecutionContext,
    ) -> AsyncGenerator[StreamChunk, None]:
        """Route tool calls, persist the reply on ``done`` and relay everything else."""
        text_parts: List[str] = []
        places: List[Dict[str, Any]] = []

        try:
            async for chunk in _chain(first, stream):
                if chunk.type is StreamEventType.TOOL_CALL:
                    async for event in self._run_tool(chunk, tool_context):
                        if event.type is StreamEventType.TEXT:
                            text_parts.append(event.content or "")
                        elif event.type is StreamEventType.PLACE:
                            places.append(event.place)
                        yield event
                    continue

                if chunk.type is StreamEventType.TEXT and chunk.content:
                    text_parts.append(chunk.content)
                elif chunk.type is StreamEventType.PLACE and chunk.place:
                    places.append(chunk.place)
                elif chunk.type is StreamEventType.DONE:
                    await self._save_reply(session_id, "".join(text_parts), places)
                    record_chat_message("success")
                yield chunk
        except Exception:
            logger.exception("Chat stream failed (session %s)", session_id)
            record_chat_message("stream_error")
            yield StreamChunk.error(STREAM_FAILURE_MESSAGE)
        finally:
            await stream.aclose()

    async def _run_tool(
        self, chunk: StreamChunk, tool_context: ToolExecutionContext
    ) -> AsyncIterator[StreamChunk]:
        call = chunk.tool_call or {}
        name = call.get("name", "")
        yield StreamChunk(
            StreamEventType.TOOL_CALL,
            tool_call={"id": call.get("id"), "name": name, "status": "executing"},
        )

        result = await self.tool_executor.execute(name, call.get("args") or {}, tool_context)
        if not result.success:
            logger.warning("Tool %s failed: %s", name, result.error)
            yield StreamChunk.text(f"\n({result.error or TOOL_FAILURE_MESSAGE})\n")
            return

        data = result.data or {}
        tool = ToolName(name)
        if tool is ToolName.RECOMMEND_PLACES or tool is ToolName.SEARCH_NEARBY_PLACES:
            for place in data.get("places", []):
                yield StreamChunk.for_place(place)
        elif tool is ToolName.GENERATE_ITINERARY:
            yield StreamChunk(StreamEventType.ITINERARY_PREVIEW, itinerary_preview=data.get("preview"))
            skipped = data.get("skippedPlaces") or []
            if skipped:
                yield StreamChunk.text(SKIPPED_PLACES_NOTE.format(names=", ".join(skipped)))

    async def _save_reply(self, session_id: str, content: str, places: List[Dict[str, Any]]) -> None:
        if not content and not places:
            return
        unique: Dict[str, Dict[str, Any]] = {}
        for place in places:
            unique[place.get("name", "")] = place
        await self.chat_repository.add_message(
            session_id, "assistant", content, list(unique.values()) or None
        )
        logger.debug("Assistant reply saved (session %s)", session_id)
