"""Streaming LLM client.

``GeminiService.stream_chat`` yields ``StreamChunk`` events. In
function-calling mode the model's tool calls come out as ``tool_call``
chunks and are executed by the caller; in legacy mode place recommendations
are parsed out of fenced ``json:place`` blocks in the text.

Errors are raised, not yielded: the caller decides whether a failure
happened before or after the response started streaming.
"""

import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Tuple

from google import genai
from google.genai import types
from pydantic import ValidationError

from ..services.place_validation import RecommendedPlace
from .circuit_breaker import CircuitBreaker
from .prompts import build_enhanced_system_prompt, build_system_prompt, build_user_prompt
from .tool_executor import ToolContextItinerary, ToolContextPlace
from .tools import CHAT_TOOL_DECLARATIONS

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
MAX_OUTPUT_TOKENS = 8192
TEMPERATURE = 0.7


class StreamEventType(str, Enum):
    TEXT = "text"
    PLACE = "place"
    TOOL_CALL = "tool_call"
    ITINERARY_PREVIEW = "itinerary_preview"
    DONE = "done"
    ERROR = "error"


@dataclass
class StreamChunk:
    type: StreamEventType
    content: Optional[str] = None
    place: Optional[Dict[str, Any]] = None
    tool_call: Optional[Dict[str, Any]] = None
    itinerary_preview: Optional[Dict[str, Any]] = None
    message_id: Optional[str] = None

    @classmethod
    def text(cls, content: str) -> "StreamChunk":
        return cls(StreamEventType.TEXT, content=content)

    @classmethod
    def for_place(cls, place: Dict[str, Any]) -> "StreamChunk":
        return cls(StreamEventType.PLACE, place=place)

    @classmethod
    def done(cls, message_id: Optional[str] = None) -> "StreamChunk":
        return cls(StreamEventType.DONE, message_id=message_id or f"msg-{uuid.uuid4().hex[:12]}")

    @classmethod
    def error(cls, content: str) -> "StreamChunk":
        return cls(StreamEventType.ERROR, content=content)

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape of one SSE event."""
        data: Dict[str, Any] = {"type": self.type.value}
        if self.content is not None:
            data["content"] = self.content
        if self.place is not None:
            data["place"] = self.place
        if self.tool_call is not None:
            data["toolCall"] = self.tool_call
        if self.itinerary_preview is not None:
            data["itineraryPreview"] = self.itinerary_preview
        if self.message_id is not None:
            data["messageId"] = self.message_id
        return data


@dataclass
class ChatContext:
    project_id: str
    destination: str
    country: Optional[str] = None
    existing_places: Tuple[ToolContextPlace, ...] = ()
    conversation_history: List[Dict[str, str]] = field(default_factory=list)
    conversation_summary: Optional[str] = None
    itinerary: Optional[ToolContextItinerary] = None
    top_categories: List[str] = field(default_factory=list)


class LLMStreamClient(Protocol):
    def stream_chat(self, message: str, context: ChatContext) -> AsyncIterator[StreamChunk]:
        ...


class LLMConfigurationError(RuntimeError):
    """The LLM provider is not configured (missing API key)."""


# ---------------------------------------------------------------------------
# Legacy text parsing
# ---------------------------------------------------------------------------

_PLACE_BLOCK = re.compile(r"```json:place\s*([\s\S]*?)```")
_PLACE_NO_BACKTICKS = re.compile(r"json:place\s*(\{[\s\S]*?\})", re.IGNORECASE)
_PLACE_COLON = re.compile(r":place\s*(\{[\s\S]*?\})", re.IGNORECASE)
_GENERIC_JSON_BLOCK = re.compile(r"```json\s*([\s\S]*?)```")

_CLEANUP_PATTERNS = (
    re.compile(r"```json:place\s*[\s\S]*?```"),
    re.compile(r"json:place\s*\{[\s\S]*?\}\s*", re.IGNORECASE),
    re.compile(r":place\s*\{[\s\S]*?\}\s*", re.IGNORECASE),
    # Unterminated blocks, up to the next paragraph break
    re.compile(r"json:place\s*\{[^}]*?(?=\n\n)", re.IGNORECASE),
    re.compile(r":place\s*\{[^}]*?(?=\n\n)", re.IGNORECASE),
    re.compile(r"^:place\s*$", re.IGNORECASE | re.MULTILINE),
    re.compile(r"```json\s*[\s\S]*?```"),
    re.compile(r"```(?:javascript|typescript|js|ts|python|py)?\s*[\s\S]*?```"),
    re.compile(r"\{\s*\"name\"\s*:\s*\"[^\"]*\"\s*,\s*\"(?:name_en|address|category|description)\"[\s\S]*?\}"),
    re.compile(r"\{\s*\"name\"\s*:\s*\"[^\"]*\"[^}]*?(?=\n\n)"),
)
_DANGLING_JSON_STARTS = ('{"name"', '{"name_en"')
_ORPHAN_FENCE = re.compile(r"```\w*\n?")
_BACKTICK_RUN = re.compile(r"`{3,}")
_EXTRA_NEWLINES = re.compile(r"\n{3,}")


def clean_chat_response(text: str) -> str:
    """Strip place JSON, code fences and half-written JSON from display text."""
    if not text:
        return ""

    cleaned = text
    for pattern in _CLEANUP_PATTERNS:
        cleaned = pattern.sub("", cleaned)

    for start in _DANGLING_JSON_STARTS:
        index = cleaned.rfind(start)
        if index != -1 and "}" not in cleaned[index:]:
            cleaned = cleaned[:index]

    cleaned = _ORPHAN_FENCE.sub("", cleaned)
    cleaned = _BACKTICK_RUN.sub("", cleaned)
    return _EXTRA_NEWLINES.sub("\n\n", cleaned).strip()


def _to_place(data: Any) -> Optional[RecommendedPlace]:
    if not isinstance(data, dict):
        return None
    name, category = data.get("name"), data.get("category")
    if not (isinstance(name, str) and name and isinstance(category, str) and category):
        return None
    try:
        return RecommendedPlace.model_validate(
            {k: data.get(k) for k in RecommendedPlace.model_fields if data.get(k) is not None}
        )
    except ValidationError:
        logger.warning("Discarding malformed place recommendation %r", name)
        return None


def parse_places(text: str) -> Tuple[str, List[RecommendedPlace]]:
    """Extract place recommendations embedded in model text.

    Returns the cleaned display text and the places, deduplicated by name
    in order of first appearance.
    """
    places: List[RecommendedPlace] = []
    seen = set()

    def _add(candidate: Any) -> None:
        place = _to_place(candidate)
        if place is not None and place.name not in seen:
            seen.add(place.name)
            places.append(place)

    for pattern in (_PLACE_BLOCK, _PLACE_NO_BACKTICKS, _PLACE_COLON):
        for match in pattern.finditer(text):
            try:
                _add(json.loads(match.group(1).strip()))
            except json.JSONDecodeError:
                logger.warning("Failed to parse place JSON block")

    for match in _GENERIC_JSON_BLOCK.finditer(text):
        try:
            parsed = json.loads(match.group(1).strip())
        except json.JSONDecodeError:
            logger.warning("Failed to parse generic JSON block")
            continue
        for candidate in parsed if isinstance(parsed, list) else [parsed]:
            _add(candidate)

    return clean_chat_response(text), places


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


class GeminiService:
    """Gemini streaming client with optional function calling."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        function_calling: bool = False,
        circuit_breaker: Optional[CircuitBreaker] = None,
        client: Optional[genai.Client] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.function_calling = function_calling
        self.circuit_breaker = circuit_breaker or CircuitBreaker("gemini")
        self._client = client

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self.api_key:
                raise LLMConfigurationError("GEMINI_API_KEY is not configured")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def stream_chat(self, message: str, context: ChatContext) -> AsyncIterator[StreamChunk]:
        if self.function_calling:
            stream = self._stream_with_tools(message, context)
        else:
            stream = self._stream_legacy(message, context)

        self.circuit_breaker.before_call()
        try:
            async for chunk in stream:
                yield chunk
        except Exception:
            self.circuit_breaker.record_failure()
            raise
        finally:
            await stream.aclose()
        self.circuit_breaker.record_success()

    async def _open_stream(self, contents: str, config: types.GenerateContentConfig):
        client = self._get_client()
        return await client.aio.models.generate_content_stream(
            model=self.model, contents=contents, config=config
        )

    async def _stream_with_tools(self, message: str, context: ChatContext) -> AsyncIterator[StreamChunk]:
        config = types.GenerateContentConfig(
            system_instruction=build_enhanced_system_prompt(context),
            tools=[types.Tool(function_declarations=CHAT_TOOL_DECLARATIONS)],
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
            max_output_tokens=MAX_OUTPUT_TOKENS,
            temperature=TEMPERATURE,
        )
        stream = await self._open_stream(
            build_user_prompt(message, context.conversation_history), config
        )

        accumulated = ""
        had_function_call = False
        async for chunk in stream:
            candidate = chunk.candidates[0] if chunk.candidates else None
            if candidate is None or candidate.content is None or not candidate.content.parts:
                continue

            for part in candidate.content.parts:
                if part.text:
                    accumulated += part.text
                    yield StreamChunk.text(part.text)
                if part.function_call is not None:
                    had_function_call = True
                    logger.info(
                        "Gemini function call %s (project %s)", part.function_call.name, context.project_id
                    )
                    yield StreamChunk(
                        StreamEventType.TOOL_CALL,
                        tool_call={
                            "id": f"tc-{uuid.uuid4().hex[:12]}",
                            "name": part.function_call.name,
                            "args": dict(part.function_call.args or {}),
                            "status": "executing",
                        },
                    )

            if candidate.finish_reason:
                logger.debug("Gemini finish reason %s (project %s)", candidate.finish_reason, context.project_id)

        if not had_function_call and accumulated:
            _, places = parse_places(accumulated)
            if places:
                logger.info(
                    "No function call; parsed %d places from text (project %s)", len(places), context.project_id
                )
            for place in places:
                yield StreamChunk.for_place(place.to_wire())

        yield StreamChunk.done()

    async def _stream_legacy(self, message: str, context: ChatContext) -> AsyncIterator[StreamChunk]:
        system_prompt = build_system_prompt(context.destination, context.country, context.existing_places)
        prompt = build_user_prompt(message, context.conversation_history)
        config = types.GenerateContentConfig(
            max_output_tokens=MAX_OUTPUT_TOKENS,
            temperature=TEMPERATURE,
        )
        stream = await self._open_stream(f"{system_prompt}\n\n---\n\n{prompt}", config)

        accumulated = ""
        yielded_length = 0
        yielded_places = 0
        async for chunk in stream:
            if chunk.text:
                accumulated += chunk.text
                clean_text, places = parse_places(accumulated)

                for place in places[yielded_places:]:
                    yield StreamChunk.for_place(place.to_wire())
                yielded_places = len(places)

                new_text = clean_text[yielded_length:]
                if new_text:
                    yield StreamChunk.text(new_text)
                yielded_length = max(yielded_length, len(clean_text))

            candidate = chunk.candidates[0] if chunk.candidates else None
            if candidate is not None and candidate.finish_reason and candidate.finish_reason != types.FinishReason.STOP:
                logger.warning(
                    "Gemini stream ended with %s (project %s)", candidate.finish_reason, context.project_id
                )

        clean_text, places = parse_places(accumulated)
        for place in places[yielded_places:]:
            yield StreamChunk.for_place(place.to_wire())
        remaining = clean_text[yielded_length:]
        if remaining:
            yield StreamChunk.text(remaining)

        yield StreamChunk.done()

