"""Executes function-calling tool invocations issued by the chat model.

A bad tool call never raises: unknown tools, invalid arguments and upstream
failures all come back as ``ToolExecutionResult(success=False, error=...)``
so the surrounding chat stream can continue.
"""

import logging
import time
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from ..geo import Coordinates, calculate_distance
from ..observability.metrics import record_tool_call
from ..services.duplicate_detection import DuplicateDetectionService
from ..services.place_validation import PlaceValidationService, RecommendedPlace, ValidatedPlace
from .tools import (
    GenerateItineraryArgs,
    RecommendPlacesArgs,
    SearchNearbyArgs,
    ToolArgsError,
    ToolName,
    validate_tool_args,
)

logger = logging.getLogger(__name__)

TOOL_FAILURE_MESSAGE = "도구 실행 중 오류가 발생했습니다."
DEFAULT_NEARBY_RESULTS = 3


@dataclass(frozen=True)
class ToolContextPlace:
    name: str
    category: str = "etc"
    id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    google_place_id: Optional[str] = None

    @property
    def coordinates(self) -> Optional[Coordinates]:
        if self.latitude is None or self.longitude is None:
            return None
        return Coordinates(self.latitude, self.longitude)


@dataclass(frozen=True)
class ToolContextItineraryItem:
    place_name: str
    start_time: Optional[str] = None


@dataclass(frozen=True)
class ToolContextItineraryDay:
    day_number: int
    date: str
    items: Tuple[ToolContextItineraryItem, ...] = ()


@dataclass(frozen=True)
class ToolContextItinerary:
    id: str
    start_date: str
    end_date: str
    days: Tuple[ToolContextItineraryDay, ...] = ()


@dataclass(frozen=True)
class ToolExecutionContext:
    """Per-turn snapshot of the project the tools operate on."""

    project_id: str
    user_id: str
    destination: str
    existing_places: Tuple[ToolContextPlace, ...] = ()
    itinerary: Optional[ToolContextItinerary] = None
    country: Optional[str] = None
    itinerary_id: Optional[str] = None


@dataclass(frozen=True)
class ToolExecutionResult:
    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Dict[str, Any]) -> "ToolExecutionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ToolExecutionResult":
        return cls(success=False, error=error)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        return result


def _centroid(places: Sequence[ToolContextPlace]) -> Optional[Coordinates]:
    points = [p.coordinates for p in places if p.coordinates is not None]
    if not points:
        return None
    return Coordinates(
        sum(p.latitude for p in points) / len(points),
        sum(p.longitude for p in points) / len(points),
    )


def _place_coordinates(place: ValidatedPlace) -> Optional[Coordinates]:
    if place.latitude is None or place.longitude is None:
        return None
    return Coordinates(place.latitude, place.longitude)


def _day_date(itinerary: Optional[ToolContextItinerary], day_number: int) -> str:
    if itinerary is None or not itinerary.start_date:
        return ""
    try:
        start = date.fromisoformat(itinerary.start_date[:10])
    except ValueError:
        return ""
    return (start + timedelta(days=day_number - 1)).isoformat()


class ToolExecutor:
    """Single entry point for running a tool call against a project context."""

    def __init__(
        self,
        place_validation: PlaceValidationService,
        duplicate_detection: Optional[DuplicateDetectionService] = None,
    ):
        self.place_validation = place_validation
        self.duplicate_detection = duplicate_detection or DuplicateDetectionService()

    async def execute(
        self,
        tool_name: str,
        args: Mapping[str, Any],
        context: ToolExecutionContext,
    ) -> ToolExecutionResult:
        tool = ToolName(tool_name)
        start = time.monotonic()
        result = await self._execute(tool, tool_name, args, context)
        record_tool_call(tool.value, "success" if result.success else "error", time.monotonic() - start)
        return result

    async def _execute(
        self,
        tool: ToolName,
        tool_name: str,
        args: Mapping[str, Any],
        context: ToolExecutionContext,
    ) -> ToolExecutionResult:
        if tool is ToolName.UNKNOWN:
            logger.warning("Unknown tool requested: %s", tool_name)
            return ToolExecutionResult.fail(f"Unknown tool: {tool_name}")

        try:
            parsed = validate_tool_args(tool_name, args or {})
        except ToolArgsError as exc:
            logger.warning("Tool args validation failed for %s: %s", tool_name, exc)
            return ToolExecutionResult.fail(str(exc))

        try:
            if tool is ToolName.RECOMMEND_PLACES:
                return await self._recommend_places(parsed, context)
            elif tool is ToolName.GENERATE_ITINERARY:
                return self._generate_itinerary(parsed, context)
            elif tool is ToolName.SEARCH_NEARBY_PLACES:
                return await self._search_nearby(parsed, context)
            else:
                return ToolExecutionResult.fail(f"Unknown tool: {tool_name}")
        except Exception:
            logger.exception("Tool execution failed: %s (project %s)", tool_name, context.project_id)
            return ToolExecutionResult.fail(TOOL_FAILURE_MESSAGE)

    async def _recommend_places(
        self, args: RecommendPlacesArgs, context: ToolExecutionContext
    ) -> ToolExecutionResult:
        seen: Set[str] = set()
        candidates: List[RecommendedPlace] = []
        for item in args.places:
            if self.duplicate_detection.is_in_set(seen, item.name):
                continue
            self.duplicate_detection.add_to_set(seen, item.name)
            candidates.append(RecommendedPlace(**item.model_dump()))

        validated = await self.place_validation.validate_and_enrich(
            candidates, context.destination, context.country
        )

        centroid = _centroid(context.existing_places)
        places: List[ValidatedPlace] = []
        for place in validated:
            coordinates = _place_coordinates(place)
            duplicate = self.duplicate_detection.find_duplicate(
                context.existing_places, place.name, place.google_place_id, coordinates
            )
            update: Dict[str, Any] = {"already_exists": duplicate.is_duplicate}
            if centroid is not None and coordinates is not None:
                update["distance_from_reference"] = calculate_distance(centroid, coordinates)
            places.append(place.model_copy(update=update))

        if centroid is not None:
            places.sort(
                key=lambda p: p.distance_from_reference
                if p.distance_from_reference is not None
                else float("inf")
            )

        data: Dict[str, Any] = {"places": [p.to_wire() for p in places]}
        if args.reasoning:
            data["reasoning"] = args.reasoning
        return ToolExecutionResult.ok(data)

    def _generate_itinerary(
        self, args: GenerateItineraryArgs, context: ToolExecutionContext
    ) -> ToolExecutionResult:
        saved = {p.name.lower(): p for p in context.existing_places}
        skipped: List[str] = []
        days = []

        for day in args.days:
            items = []
            for order, item in enumerate(day.items, start=1):
                matched = saved.get(item.place_name.lower())
                if matched is None:
                    skipped.append(item.place_name)
                entry: Dict[str, Any] = {
                    "order": order,
                    "placeName": item.place_name,
                    "category": matched.category if matched else "etc",
                    "matched": matched is not None,
                }
                if item.start_time:
                    entry["startTime"] = item.start_time
                if item.duration:
                    entry["duration"] = item.duration
                if item.note:
                    entry["note"] = item.note
                items.append(entry)

            days.append({
                "dayNumber": day.day_number,
                "date": _day_date(context.itinerary, day.day_number),
                "items": items,
            })

        return ToolExecutionResult.ok({
            "preview": {"title": args.title, "days": days},
            "skippedPlaces": skipped,
            "requiresConfirmation": True,
        })

    async def _search_nearby(
        self, args: SearchNearbyArgs, context: ToolExecutionContext
    ) -> ToolExecutionResult:
        name = args.reference_place_name.lower()
        reference = next((p for p in context.existing_places if p.name.lower() == name), None)
        origin = reference.coordinates if reference else None
        if origin is None:
            return ToolExecutionResult.fail(
                f'장소 "{args.reference_place_name}"의 좌표를 찾을 수 없습니다. '
                "저장된 장소 중에서 선택해주세요."
            )

        nearby = await self.place_validation.search_nearby(
            origin.latitude,
            origin.longitude,
            args.category,
            args.keyword,
            args.max_results or DEFAULT_NEARBY_RESULTS,
        )

        places = []
        for place in nearby:
            coordinates = _place_coordinates(place)
            if coordinates is not None:
                place = place.model_copy(
                    update={"distance_from_reference": calculate_distance(origin, coordinates)}
                )
            places.append(place.to_wire())

        return ToolExecutionResult.ok({
            "referencePlace": reference.name,
            "places": places,
        })
