"""Builds the per-turn ``ChatContext`` handed to the LLM."""

import logging
import re
from collections import Counter
from typing import Dict, List, Mapping, Optional, Sequence

from ..repositories.chat import ChatRepository
from ..repositories.projects import ProjectRepository
from .llm import ChatContext
from .tool_executor import ToolContextPlace

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 10
SUMMARY_SCAN_LIMIT = 100
MAX_MENTIONED_PLACES = 5
TOP_CATEGORY_COUNT = 3

TOPIC_KEYWORDS: Dict[str, str] = {
    "맛집": "맛집",
    "레스토랑": "맛집",
    "식당": "맛집",
    "라멘": "맛집",
    "스시": "맛집",
    "카페": "카페",
    "커피": "카페",
    "관광": "관광",
    "명소": "관광",
    "관광지": "관광",
    "쇼핑": "쇼핑",
    "백화점": "쇼핑",
    "숙소": "숙소",
    "호텔": "숙소",
    "교통": "교통",
    "지하철": "교통",
    "버스": "교통",
    "날씨": "날씨",
    "환율": "환율",
}

_QUOTED = (
    re.compile(r"[「『\"'](.*?)[」』\"']"),
    re.compile(r"[“”](.*?)[“”]"),
)


def summarize_conversation(messages: Sequence[Mapping[str, str]]) -> str:
    """Keyword summary of older turns; no model call involved."""
    topics: List[str] = []
    mentioned: List[str] = []

    for message in messages:
        content = message["content"]
        for keyword, topic in TOPIC_KEYWORDS.items():
            if keyword in content and topic not in topics:
                topics.append(topic)
        for pattern in _QUOTED:
            for match in pattern.finditer(content):
                name = match.group(1)
                if 1 < len(name) < 50:
                    mentioned.append(name)

    parts = []
    if topics:
        parts.append(f"논의 주제: {', '.join(topics)}")
    if mentioned:
        unique = list(dict.fromkeys(mentioned))[:MAX_MENTIONED_PLACES]
        parts.append(f"언급된 장소: {', '.join(unique)}")
    parts.append(f"이전 대화 {len(messages)}개 메시지")
    return ". ".join(parts)


def top_categories(places: Sequence[ToolContextPlace], limit: int = TOP_CATEGORY_COUNT) -> List[str]:
    counts = Counter(p.category for p in places)
    return [category for category, _ in counts.most_common(limit)]


class ChatContextBuilder:
    def __init__(
        self,
        chat_repository: ChatRepository,
        project_repository: ProjectRepository,
        history_window: int = HISTORY_WINDOW,
    ):
        self.chat_repository = chat_repository
        self.project_repository = project_repository
        self.history_window = history_window

    async def build(
        self,
        project_id: str,
        session_id: str,
        destination: str,
        country: Optional[str],
        existing_places: Sequence[ToolContextPlace],
    ) -> ChatContext:
        scanned = await self.chat_repository.get_messages(session_id, limit=SUMMARY_SCAN_LIMIT)
        itinerary = await self.project_repository.get_itinerary(project_id)
        recent = scanned[-self.history_window :] if self.history_window else []

        summary = None
        if self.history_window and len(scanned) > self.history_window:
            older = scanned[: -self.history_window]
            summary = summarize_conversation([{"role": m.role, "content": m.content} for m in older])

        return ChatContext(
            project_id=project_id,
            destination=destination,
            country=country,
            existing_places=tuple(existing_places),
            conversation_history=[{"role": m.role, "content": m.content} for m in recent],
            conversation_summary=summary,
            itinerary=itinerary,
            top_categories=top_categories(existing_places),
        )
