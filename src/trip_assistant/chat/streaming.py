"""Server-sent events framing for chat responses."""

import json
import logging
from typing import Any, AsyncGenerator, AsyncIterator, Dict, Optional

from fastapi import Request
from fastapi.responses import StreamingResponse

from .errors import CHAT_ERROR_MESSAGES, ChatErrorCode
from .llm import StreamChunk

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(data: Dict[str, Any]) -> str:
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


async def sse_events(
    chunks: AsyncGenerator[StreamChunk, None],
    request: Optional[Request] = None,
) -> AsyncIterator[str]:
    """Frame chunks as ``data: <json>`` events until done or the client leaves."""
    try:
        async for chunk in chunks:
            if request is not None and await request.is_disconnected():
                logger.info("Client disconnected mid-stream")
                break
            yield format_sse(chunk.to_dict())
    except Exception:
        logger.exception("SSE stream error")
        yield format_sse(
            {"type": "error", "content": CHAT_ERROR_MESSAGES[ChatErrorCode.STREAM_ERROR]}
        )
    finally:
        await chunks.aclose()


def sse_response(
    chunks: AsyncGenerator[StreamChunk, None],
    request: Optional[Request] = None,
) -> StreamingResponse:
    return StreamingResponse(
        sse_events(chunks, request),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
