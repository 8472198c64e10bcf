"""Integration tests for the place details endpoint."""

import uuid
from unittest.mock import AsyncMock

from trip_assistant.services.place_validation import OpeningHours, PlaceDetails

from conftest import auth_headers

OWNER = "user-owner"

SAVED = {
    "name": "센소지",
    "category": "attraction",
    "comment": "아침 일찍",
    "latitude": 35.7148,
    "longitude": 139.7967,
    "google_place_id": "ChIJ8T1GpMGOGGARDYGSgpooDWw",
    "formatted_address": "2 Chome-3-1 Asakusa, Taito City, Tokyo",
    "rating": 4.5,
}


def _place_id(client, run, project_id):
    [place] = run(client.app.state.project_repository.list_places, project_id)
    return place.id


def test_details_without_google_data(client, run, seed_project):
    project_id = run(seed_project, OWNER, places=[SAVED])
    place_id = _place_id(client, run, project_id)

    response = client.get(f"/api/v1/places/{place_id}/details", headers=auth_headers(OWNER))

    assert response.status_code == 200
    body = response.json()
    assert body["hasGoogleData"] is False
    assert body["place"] == {
        "id": place_id,
        "name": "센소지",
        "category": "attraction",
        "comment": "아침 일찍",
        "latitude": 35.7148,
        "longitude": 139.7967,
        "formattedAddress": "2 Chome-3-1 Asakusa, Taito City, Tokyo",
        "googleMapsUrl": None,
        "rating": 4.5,
        "userRatingsTotal": None,
        "priceLevel": None,
    }


def test_details_merges_google_data(client, run, seed_project):
    project_id = run(seed_project, OWNER, members=["friend"], places=[SAVED])
    place_id = _place_id(client, run, project_id)
    lookup = AsyncMock(return_value=PlaceDetails(
        name="Senso-ji",
        formatted_address="2-3-1 Asakusa",
        opening_hours=OpeningHours(open_now=True, weekday_text=["월요일: 06:00~17:00"]),
        rating=4.6,
        user_ratings_total=80000,
        google_maps_url="https://maps.google.com/?cid=1",
    ))
    client.app.state.place_validation.get_place_details = lookup

    response = client.get(f"/api/v1/places/{place_id}/details", headers=auth_headers("friend"))

    assert response.status_code == 200
    body = response.json()
    assert body["hasGoogleData"] is True
    place = body["place"]
    # Stored name wins over the Google name
    assert place["name"] == "센소지"
    assert place["comment"] == "아침 일찍"
    assert place["formattedAddress"] == "2-3-1 Asakusa"
    assert place["rating"] == 4.6
    assert place["userRatingsTotal"] == 80000
    assert place["openingHours"]["openNow"] is True
    lookup.assert_awaited_once_with("ChIJ8T1GpMGOGGARDYGSgpooDWw")


def test_place_without_google_id_skips_lookup(client, run, seed_project):
    project_id = run(seed_project, OWNER, places=[{"name": "호텔", "category": "accommodation"}])
    place_id = _place_id(client, run, project_id)
    lookup = AsyncMock()
    client.app.state.place_validation.get_place_details = lookup

    response = client.get(f"/api/v1/places/{place_id}/details", headers=auth_headers(OWNER))

    assert response.json()["hasGoogleData"] is False
    lookup.assert_not_awaited()


def test_stranger_cannot_see_place(client, run, seed_project):
    project_id = run(seed_project, OWNER, places=[SAVED])
    place_id = _place_id(client, run, project_id)

    response = client.get(f"/api/v1/places/{place_id}/details", headers=auth_headers("stranger"))

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "PROJECT_NOT_FOUND"


def test_unknown_place(client):
    for place_id in (str(uuid.uuid4()), "not-a-uuid"):
        response = client.get(f"/api/v1/places/{place_id}/details", headers=auth_headers(OWNER))
        assert response.status_code == 404


def test_requires_auth(client):
    response = client.get(f"/api/v1/places/{uuid.uuid4()}/details")
    assert response.status_code == 401
