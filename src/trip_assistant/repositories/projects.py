"""Read-only project lookups for the chat pipeline."""

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from sqlalchemy import or_, select
from sqlalchemy.orm import selectinload

from ..chat.tool_executor import (
    ToolContextItinerary,
    ToolContextItineraryDay,
    ToolContextItineraryItem,
    ToolContextPlace,
)
from ..database.connection import get_db_context
from ..models.project import (
    Itinerary,
    ItineraryDay,
    ItineraryItem,
    Place,
    Project,
    ProjectMember,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectAccess:
    """Outcome of a membership check; ``project`` is set only when access is granted."""

    found: bool
    has_access: bool
    project: Optional[Project] = None


def _parse_uuid(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class ProjectRepository:
    def __init__(self, session_factory: Callable = get_db_context):
        self._session_factory = session_factory

    async def check_access(self, project_id: str, user_id: str) -> ProjectAccess:
        """Owners and members have access; anything else is denied."""
        pid = _parse_uuid(project_id)
        if pid is None:
            return ProjectAccess(found=False, has_access=False)

        async with self._session_factory() as session:
            project = await session.get(Project, pid)
            if project is None:
                return ProjectAccess(found=False, has_access=False)
            if project.owner_id == user_id:
                return ProjectAccess(found=True, has_access=True, project=project)

            member = await session.execute(
                select(ProjectMember.id).where(
                    ProjectMember.project_id == pid,
                    ProjectMember.user_id == user_id,
                )
            )
            if member.scalar_one_or_none() is None:
                return ProjectAccess(found=True, has_access=False)
            return ProjectAccess(found=True, has_access=True, project=project)

    async def list_places(self, project_id: str) -> Tuple[ToolContextPlace, ...]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Place)
                .where(Place.project_id == _parse_uuid(project_id))
                .order_by(Place.created_at)
            )
            places = result.scalars().all()

        return tuple(
            ToolContextPlace(
                name=p.name,
                category=p.category,
                id=str(p.id),
                latitude=p.latitude,
                longitude=p.longitude,
                google_place_id=p.google_place_id,
            )
            for p in places
        )

    async def get_place(self, place_id: str) -> Optional[Place]:
        pid = _parse_uuid(place_id)
        if pid is None:
            return None
        async with self._session_factory() as session:
            return await session.get(Place, pid)

    async def get_itinerary(self, project_id: str) -> Optional[ToolContextItinerary]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(Itinerary)
                .where(Itinerary.project_id == _parse_uuid(project_id))
                .options(
                    selectinload(Itinerary.days)
                    .selectinload(ItineraryDay.items)
                    .selectinload(ItineraryItem.place)
                )
            )
            itinerary = result.scalar_one_or_none()
            if itinerary is None:
                return None

            days: List[ToolContextItineraryDay] = [
                ToolContextItineraryDay(
                    day_number=day.day_number,
                    date=day.date.isoformat(),
                    items=tuple(
                        ToolContextItineraryItem(
                            place_name=item.place.name,
                            start_time=item.start_time,
                        )
                        for item in day.items
                    ),
                )
                for day in itinerary.days
            ]
            return ToolContextItinerary(
                id=str(itinerary.id),
                start_date=itinerary.start_date.isoformat(),
                end_date=itinerary.end_date.isoformat(),
                days=tuple(days),
            )
