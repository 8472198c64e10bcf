"""System prompts and conversation formatting for the chat model."""

from typing import Iterable, Mapping, Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .llm import ChatContext
    from .tool_executor import ToolContextPlace

NO_SAVED_PLACES = "(아직 저장된 장소가 없습니다)"

_BASE_PROMPT = """당신은 친절하고 전문적인 여행 어시스턴트입니다.
사용자의 여행 계획을 도와주는 것이 역할입니다.

## 현재 여행 정보
- 목적지: {location}
- 저장된 장소:
{places}

## 응답 규칙

### 핵심 원칙 (반드시 준수)
1. **응답은 간결하게**: 한 번에 최대 2개 장소만 추천
2. **JSON은 완전하게**: JSON 블록은 반드시 닫는 괄호 `}}`로 끝내기
3. **텍스트 먼저**: 설명 텍스트를 먼저 쓰고, JSON은 마지막에

### 장소 추천 형식
장소를 추천할 때 이 형식을 정확히 따르세요:
```json:place
{{"name":"장소명","name_en":"English Name","address":"주소","category":"restaurant","description":"설명"}}
```

### 카테고리 옵션
restaurant, cafe, attraction, shopping, accommodation, transport, etc

### 일반 대화
- 친절하고 자연스러운 한국어로 응답
- 여행 관련 팁 제공

### 제한사항
- 정치, 종교, 불법 활동 등 민감한 주제 금지
- 불확실한 정보는 "확인이 필요합니다"라고 명시

## 응답 형식 예시

**올바른 예시**:
도쿄에서 추천드리는 맛집이에요!

```json:place
{{"name":"스시 사이토","name_en":"Sushi Saito","address":"도쿄도 미나토구","category":"restaurant","description":"미슐랭 3스타 스시"}}
```

예약이 어렵지만 꼭 방문해보세요!

**금지 사항**:
- :place 또는 json:place만 쓰고 백틱 생략 금지
- JSON을 여러 줄로 나눠 쓰지 말고 한 줄로
- 한 번에 3개 이상 장소 추천 금지"""

_TOOL_RULES = """
## 도구 사용 규칙
- 장소를 추천할 때는 반드시 recommend_places 도구를 사용하세요.
- 일정을 생성할 때는 반드시 generate_itinerary 도구를 사용하세요.
- 주변 장소 검색 시 search_nearby_places 도구를 사용하세요.
- 텍스트 응답에는 JSON을 포함하지 마세요.
- 도구 호출 전후로 자연스러운 설명을 추가하세요."""


def build_system_prompt(
    destination: str,
    country: Optional[str],
    existing_places: Sequence["ToolContextPlace"],
) -> str:
    location = f"{destination}, {country}" if country else destination
    if existing_places:
        places = "\n".join(f"- {p.name} ({p.category})" for p in existing_places)
    else:
        places = NO_SAVED_PLACES
    return _BASE_PROMPT.format(location=location, places=places)


def build_conversation_context(history: Iterable[Mapping[str, str]]) -> str:
    """Render prior turns as ``사용자: ...`` / ``어시스턴트: ...`` lines."""
    lines = []
    for message in history:
        speaker = "사용자" if message["role"] == "user" else "어시스턴트"
        lines.append(f"{speaker}: {message['content']}")
    return "\n\n".join(lines)


def build_user_prompt(message: str, history: Iterable[Mapping[str, str]]) -> str:
    conversation = build_conversation_context(history)
    if conversation:
        return f"{conversation}\n\n사용자: {message}"
    return f"사용자: {message}"


def build_enhanced_system_prompt(context: "ChatContext") -> str:
    """Base prompt plus summary, itinerary, preferences and tool rules."""
    sections = [build_system_prompt(context.destination, context.country, context.existing_places)]

    if context.conversation_summary:
        sections.append(f"\n## 이전 대화 요약\n{context.conversation_summary}")

    if context.itinerary and context.itinerary.days:
        days = []
        for day in context.itinerary.days:
            items = "\n".join(
                f"  {item.start_time} {item.place_name}" if item.start_time else f"  - {item.place_name}"
                for item in day.items
            )
            days.append(f"Day {day.day_number} ({day.date}):\n{items}")
        sections.append("\n## 현재 일정\n" + "\n".join(days))

    if context.top_categories:
        sections.append(f"\n## 사용자 선호\n선호 카테고리: {', '.join(context.top_categories)}")

    sections.append(_TOOL_RULES)
    return "\n".join(sections)
