"""Place details endpoint."""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..chat.errors import ChatError, ChatErrorCode
from ..repositories.projects import ProjectRepository
from ..security.auth import CurrentUser, require_current_user
from ..services.place_validation import PlaceValidationService
from .dependencies import get_place_validation, get_project_repository

logger = logging.getLogger(__name__)

router = APIRouter()


def _stored_fields(place) -> Dict[str, Any]:
    return {
        "id": str(place.id),
        "name": place.name,
        "category": place.category,
        "comment": place.comment,
        "latitude": place.latitude,
        "longitude": place.longitude,
    }


@router.get("/places/{place_id}/details")
async def get_place_details(
    place_id: str,
    user: CurrentUser = Depends(require_current_user),
    projects: ProjectRepository = Depends(get_project_repository),
    validation: PlaceValidationService = Depends(get_place_validation),
):
    """Saved place merged with live Google details when available."""
    place = await projects.get_place(place_id)
    if place is None:
        raise ChatError(ChatErrorCode.PROJECT_NOT_FOUND)
    access = await projects.check_access(str(place.project_id), user.id)
    if not access.has_access:
        # Do not reveal places in projects the caller cannot see
        raise ChatError(ChatErrorCode.PROJECT_NOT_FOUND)

    details = None
    if place.google_place_id:
        details = await validation.get_place_details(place.google_place_id)

    if details is None:
        return {
            "hasGoogleData": False,
            "place": {
                **_stored_fields(place),
                "formattedAddress": place.formatted_address,
                "googleMapsUrl": place.google_maps_url,
                "rating": place.rating,
                "userRatingsTotal": place.user_ratings_total,
                "priceLevel": place.price_level,
            },
        }

    wire = details.model_dump(by_alias=True, exclude={"name"})
    return {"hasGoogleData": True, "place": {**_stored_fields(place), **wire}}
