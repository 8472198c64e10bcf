"""Function-calling tools offered to the chat model.

Each tool has a Gemini ``FunctionDeclaration`` (what the model sees) and a
pydantic model (what the arguments are validated against before anything
runs).
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional, Type

from google.genai import types
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


class ToolName(str, Enum):
    RECOMMEND_PLACES = "recommend_places"
    GENERATE_ITINERARY = "generate_itinerary"
    SEARCH_NEARBY_PLACES = "search_nearby_places"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value):
        return cls.UNKNOWN


PlaceCategory = Literal[
    "restaurant", "cafe", "attraction", "shopping", "accommodation", "transport", "etc"
]
NearbyCategory = Literal["restaurant", "cafe", "attraction", "shopping"]


# ---------------------------------------------------------------------------
# Argument schemas
# ---------------------------------------------------------------------------


class _ToolArgs(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlaceItemArgs(_ToolArgs):
    name: str = Field(min_length=1, max_length=200)
    name_en: Optional[str] = Field(default=None, max_length=200, alias="name_en")
    address: Optional[str] = Field(default=None, max_length=500)
    category: PlaceCategory
    description: Optional[str] = Field(default=None, max_length=200)


class RecommendPlacesArgs(_ToolArgs):
    places: List[PlaceItemArgs] = Field(min_length=1, max_length=5)
    reasoning: Optional[str] = Field(default=None, max_length=500)


class ItineraryItemArgs(_ToolArgs):
    place_name: str = Field(min_length=1, max_length=200)
    start_time: Optional[str] = Field(default=None, pattern=r"^\d{2}:\d{2}$")
    duration: Optional[str] = Field(default=None, max_length=20)
    note: Optional[str] = Field(default=None, max_length=300)


class ItineraryDayArgs(_ToolArgs):
    day_number: int = Field(ge=1, le=30)
    items: List[ItineraryItemArgs] = Field(min_length=1, max_length=20)


class GenerateItineraryArgs(_ToolArgs):
    title: str = Field(min_length=1, max_length=100)
    days: List[ItineraryDayArgs] = Field(min_length=1, max_length=30)


class SearchNearbyArgs(_ToolArgs):
    reference_place_name: str = Field(min_length=1, max_length=200)
    category: Optional[NearbyCategory] = None
    keyword: Optional[str] = Field(default=None, max_length=100)
    max_results: Optional[int] = Field(default=None, ge=1, le=5)


TOOL_ARG_MODELS: Dict[ToolName, Type[_ToolArgs]] = {
    ToolName.RECOMMEND_PLACES: RecommendPlacesArgs,
    ToolName.GENERATE_ITINERARY: GenerateItineraryArgs,
    ToolName.SEARCH_NEARBY_PLACES: SearchNearbyArgs,
}


class ToolArgsError(ValueError):
    """Tool arguments failed validation, or the tool is unknown."""


def validate_tool_args(tool_name: str, args: Mapping[str, Any]) -> _ToolArgs:
    """Parse ``args`` for ``tool_name``.

    Raises:
        ToolArgsError: "Unknown tool: X" or "Validation failed: path: msg, ...".
    """
    model = TOOL_ARG_MODELS.get(ToolName(tool_name))
    if model is None:
        raise ToolArgsError(f"Unknown tool: {tool_name}")

    try:
        payload = dict(args)
    except (TypeError, ValueError) as exc:
        raise ToolArgsError(
            f"Validation failed: arguments must be an object, got {type(args).__name__}"
        ) from exc

    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        messages = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ToolArgsError(f"Validation failed: {', '.join(messages)}") from exc


# ---------------------------------------------------------------------------
# Gemini function declarations
# ---------------------------------------------------------------------------

RECOMMEND_PLACES_DECLARATION = types.FunctionDeclaration(
    name=ToolName.RECOMMEND_PLACES.value,
    description="여행지에서 조건에 맞는 장소를 추천합니다. 장소를 추천할 때는 반드시 이 도구를 사용하세요.",
    parameters={
        "type": "OBJECT",
        "properties": {
            "places": {
                "type": "ARRAY",
                "description": "추천 장소 목록 (최대 3개)",
                "items": {
                    "type": "OBJECT",
                    "properties": {
                        "name": {"type": "STRING", "description": "장소명 (현지어)"},
                        "name_en": {"type": "STRING", "description": "영문명"},
                        "address": {"type": "STRING", "description": "주소"},
                        "category": {
                            "type": "STRING",
                            "description": "카테고리: restaurant, cafe, attraction, shopping, accommodation, transport, etc",
                        },
                        "description": {"type": "STRING", "description": "간단한 설명 (50자 이내)"},
                    },
                    "required": ["name", "category"],
                },
            },
            "reasoning": {"type": "STRING", "description": "추천 이유를 간단히 설명"},
        },
        "required": ["places"],
    },
)

GENERATE_ITINERARY_DECLARATION = types.FunctionDeclaration(
    name=ToolName.GENERATE_ITINERARY.value,
    description="저장된 장소를 기반으로 여행 일정을 자동 생성합니다. 일정을 만들어달라는 요청에 사용하세요.",
    parameters={
        "type": "OBJECT",
        "properties": {
            "title": {"type": "STRING", "description": '일정 제목 (예: "도쿄 3박 4일")'},
            "days": {
                "type": "ARRAY",
                "description": "날짜별 일정",
                "items": {
                    "type": "OBJECT",
                    "properties": {
                        "dayNumber": {"type": "INTEGER", "description": "일차 (1부터 시작)"},
                        "items": {
                            "type": "ARRAY",
                            "description": "해당 일차의 방문 장소 목록",
                            "items": {
                                "type": "OBJECT",
                                "properties": {
                                    "placeName": {
                                        "type": "STRING",
                                        "description": "저장된 장소명 (정확히 일치해야 함)",
                                    },
                                    "startTime": {"type": "STRING", "description": "HH:mm 형식의 시작 시간"},
                                    "duration": {"type": "STRING", "description": "예상 체류 시간 (예: 1.5h)"},
                                    "note": {"type": "STRING", "description": "방문 팁이나 메모"},
                                },
                                "required": ["placeName"],
                            },
                        },
                    },
                    "required": ["dayNumber", "items"],
                },
            },
        },
        "required": ["title", "days"],
    },
)

SEARCH_NEARBY_DECLARATION = types.FunctionDeclaration(
    name=ToolName.SEARCH_NEARBY_PLACES.value,
    description="특정 장소 근처의 다른 장소를 검색합니다.",
    parameters={
        "type": "OBJECT",
        "properties": {
            "referencePlaceName": {
                "type": "STRING",
                "description": "기준이 되는 장소명 (저장된 장소 중 하나)",
            },
            "category": {
                "type": "STRING",
                "description": "검색할 카테고리: restaurant, cafe, attraction, shopping",
            },
            "keyword": {"type": "STRING", "description": "추가 검색 키워드 (선택)"},
            "maxResults": {"type": "INTEGER", "description": "최대 결과 수 (기본 3, 최대 5)"},
        },
        "required": ["referencePlaceName"],
    },
)

CHAT_TOOL_DECLARATIONS: List[types.FunctionDeclaration] = [
    RECOMMEND_PLACES_DECLARATION,
    GENERATE_ITINERARY_DECLARATION,
    SEARCH_NEARBY_DECLARATION,
]
