"""Tests for app.py routes and presentation helpers.

Backend access is replaced by patching app._get_client with a
MagicMock(spec=SupabaseClient).  Child birth dates are chosen so their age
band stays the same for years: born 2024-03 is in band 25-48 until 2028.
"""

from unittest.mock import MagicMock, patch

import pytest

from age_calculator import Child
from app import (
    ERR_BIRTH_DATE_INVALID,
    ERR_BIRTH_DATE_REQUIRED,
    ERR_NICKNAME_REQUIRED,
    operating_hours_lines,
    place_card,
)
from supabase_client import BackendError, SupabaseClient


def _place(**overrides):
    place = {
        "id": 1,
        "name": "한밭수목원",
        "category": "공원",
        "address": "대전 서구 둔산대로 169",
        "region": "서구",
        "lat": 36.3668,
        "lng": 127.3886,
        "is_indoor": False,
        "is_outdoor": True,
        "place_age_suitability": [{"age_0_12_months": 3.0, "age_25_48_months": 4.5}],
        "place_filter_scores": {"parent_energy_required": 4.6, "child_energy_consumption": 2.0},
        "place_amenities": {"parking_available": True},
        "place_details": {"is_free": True},
    }
    place.update(overrides)
    return place


PROFILE = {
    "user_id": "u1",
    "home_lat": 36.3621,
    "home_lng": 127.3563,
    "home_address": "대전 유성구",
    "user_children": [{"id": "c1", "nickname": "콩이", "birth_year": 2024, "birth_month": 3}],
}


@pytest.fixture()
def backend():
    mock = MagicMock(spec=SupabaseClient)
    mock.get_places.return_value = [_place()]
    mock.get_places_with_distance.return_value = [_place(distance_km=2.5, travel_time_car=5)]
    mock.get_user_profile.return_value = PROFILE
    with patch("app._get_client", return_value=mock):
        yield mock


# ============================================================================
# Presentation helpers
# ============================================================================

class TestPlaceCard:
    def test_population_rating_without_children(self):
        card = place_card(_place(), ())
        assert card["expected_rating"] == 3.8
        assert card["recommended_ages"] == ["2-4세"]
        assert card["category_emoji"] == "🌳"
        assert card["parent_energy"] == {"text": "매우 편함", "color": "#4CAF50"}
        assert card["child_energy"] == {"text": "활발한 활동", "emoji": "🤸"}
        assert card["parking_available"] is True
        assert card["is_free"] is True
        assert card["distance_text"] is None

    def test_personalized_rating(self):
        card = place_card(_place(), (Child(2024, 3, "콩이"),))
        assert card["expected_rating"] == 4.5

    def test_distance_and_time_text(self):
        card = place_card(_place(distance_km=0.85, travel_time_car=90), ())
        assert card["distance_text"] == "850m"
        assert card["travel_time_text"] == "1시간 30분"

    def test_missing_joins(self):
        card = place_card({"id": 2, "name": "x", "category": "기타"}, ())
        assert card["expected_rating"] == 3.5
        assert card["recommended_ages"] == []
        assert card["category_emoji"] == "📍"
        assert card["parent_energy"] is None
        assert card["parking_available"] is False


class TestOperatingHours:
    def test_lines(self):
        hours = {
            "mon": {"closed": True},
            "tue": {"open": "09:00", "close": "18:00"},
            "sun": {"open": "10:00"},
        }
        assert operating_hours_lines(hours) == ["월: 휴무", "화: 09:00 - 18:00"]

    def test_empty(self):
        assert operating_hours_lines(None) == []


# ============================================================================
# Service routes
# ============================================================================

class TestHealth:
    def test_ok(self, client):
        resp = client.get("/healthz")
        assert resp.status_code == 200
        assert resp.get_json() == {"status": "ok", "missing_keys": []}
        assert resp.headers.get("X-Request-ID")

    def test_degraded(self, client, monkeypatch):
        monkeypatch.delenv("SUPABASE_ANON_KEY")
        resp = client.get("/healthz")
        assert resp.status_code == 503
        assert resp.get_json()["missing_keys"] == ["SUPABASE_ANON_KEY"]

    def test_unknown_route_is_json(self, client):
        resp = client.get("/no-such-page")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "Not found"


class TestLocations:
    def test_presets(self, client):
        data = client.get("/api/locations").get_json()
        assert [r["name"] for r in data["regions"]] == ["유성구", "서구", "중구", "동구", "대덕구"]
        assert data["regions"][0]["address"] == "대전 유성구"
        assert len(data["landmarks"]) == 5

    def test_korean_not_escaped(self, client):
        resp = client.get("/api/locations")
        assert "유성구" in resp.get_data(as_text=True)

    def test_set_location_by_coordinates(self, client, backend):
        backend.update_user_location.return_value = {"user_id": "u1"}
        resp = client.put("/api/location", json={"user_id": "u1", "lat": 36.35, "lng": 127.38})
        assert resp.status_code == 200
        backend.update_user_location.assert_called_once_with("u1", 36.35, 127.38, None)

    def test_set_location_by_address(self, client, backend):
        backend.update_user_location.return_value = {"user_id": "u1"}
        resp = client.put("/api/location", json={"user_id": "u1", "address": "대전 서구 둔산동"})
        assert resp.status_code == 200
        backend.update_user_location.assert_called_once_with("u1", 36.3546, 127.3835, "대전 서구 둔산동")

    @pytest.mark.parametrize("body", [
        {"lat": 36.0, "lng": 127.0},
        {"user_id": "u1"},
        {"user_id": "u1", "lat": 200, "lng": 127.0},
        {"user_id": "u1", "lat": "north", "lng": 127.0},
    ])
    def test_set_location_bad_request(self, client, backend, body):
        resp = client.put("/api/location", json=body)
        assert resp.status_code == 400
        backend.update_user_location.assert_not_called()

    def test_set_location_backend_failure(self, client, backend):
        backend.update_user_location.side_effect = BackendError("down", 500)
        resp = client.put("/api/location", json={"user_id": "u1", "lat": 36.35, "lng": 127.38})
        assert resp.status_code == 502


# ============================================================================
# Places
# ============================================================================

class TestListPlaces:
    def test_anonymous(self, client, backend):
        data = client.get("/api/places").get_json()
        assert data["total"] == 1
        assert data["has_location"] is False
        assert data["needs_child_info"] is False
        assert data["children_summary"] == ""
        assert data["places"][0]["expected_rating"] == 3.8
        backend.get_places.assert_called_once()
        backend.get_places_with_distance.assert_not_called()

    def test_energy_filters_forwarded(self, client, backend):
        client.get("/api/places", query_string={"energy": "낮음", "condition": "저조함"})
        query = backend.get_places.call_args[0][0]
        assert query["parent_energy"] == "낮음"
        assert query["child_condition"] == "저조함"

    def test_signed_in_with_location(self, client, backend):
        data = client.get("/api/places?user_id=u1").get_json()
        assert data["has_location"] is True
        assert data["children_summary"].endswith("콩이와 함께")
        card = data["places"][0]
        assert card["expected_rating"] == 4.5
        assert card["distance_text"] == "2.5km"
        assert card["travel_time_text"] == "5분"

        user_id, query = backend.get_places_with_distance.call_args[0]
        assert user_id == "u1"
        assert query["max_travel_time"] == 30

    def test_client_side_filters(self, client, backend):
        backend.get_places.return_value = [
            _place(id=1, is_indoor=True, is_outdoor=False),
            _place(id=2),
        ]
        data = client.get("/api/places", query_string={"environment": "실내"}).get_json()
        assert [p["id"] for p in data["places"]] == [1]

    def test_new_user_needs_child_info(self, client, backend):
        backend.get_user_profile.return_value = None
        backend.upsert_user_profile.return_value = {"user_id": "u2"}
        data = client.get("/api/places?user_id=u2").get_json()
        assert data["needs_child_info"] is True
        assert data["has_location"] is False

    def test_profile_failure(self, client, backend):
        backend.get_user_profile.return_value = None
        backend.upsert_user_profile.side_effect = BackendError("down", 500)
        resp = client.get("/api/places?user_id=u2")
        assert resp.status_code == 503


class TestPlaceDetail:
    def test_not_found(self, client, backend):
        backend.get_place_by_id.return_value = None
        resp = client.get("/api/places/999")
        assert resp.status_code == 404

    def test_detail(self, client, backend):
        backend.get_place_by_id.return_value = _place(
            operating_hours={"mon": {"open": "09:00", "close": "18:00"}},
            place_blog_mentions=[{"title": "후기"}],
        )
        data = client.get("/api/places/1?user_id=u1").get_json()
        assert data["expected_rating"] == 4.5
        assert data["age_suitability"] == [
            {"key": "0-12", "label": "0-12개월", "score": 3.0},
            {"key": "25-48", "label": "2-4세", "score": 4.5},
        ]
        assert data["operating_hours"] == ["월: 09:00 - 18:00"]
        assert data["blog_mentions"] == [{"title": "후기"}]

    def test_backend_unconfigured(self, client):
        with patch("app._get_client", side_effect=BackendError("not configured")):
            resp = client.get("/api/places/1")
        assert resp.status_code == 503
        assert resp.get_json()["error"] == "Backend unavailable"


class TestSavePlace:
    def test_requires_user(self, client, backend):
        resp = client.post("/api/places/1/save", json={})
        assert resp.status_code == 400

    def test_toggle(self, client, backend):
        backend.toggle_save_place.return_value = True
        resp = client.post("/api/places/1/save", json={"user_id": "u1"})
        assert resp.status_code == 200
        assert resp.get_json() == {"ok": True}
        backend.toggle_save_place.assert_called_once_with("u1", "1")

    def test_failure(self, client, backend):
        backend.toggle_save_place.return_value = False
        resp = client.post("/api/places/1/save", json={"user_id": "u1"})
        assert resp.status_code == 502


# ============================================================================
# Events
# ============================================================================

class TestEvents:
    def test_age_range_text(self, client, backend):
        backend.get_events.return_value = [
            {"id": 1, "target_age_min": 12, "target_age_max": 48},
            {"id": 2, "target_age_min": None, "target_age_max": None},
            {"id": 3, "target_age_min": 36, "target_age_max": None, "target_age_note": "보호자 동반"},
        ]
        data = client.get("/api/events?target_age=36").get_json()
        assert data["total"] == 3
        assert [e["age_range_text"] for e in data["events"]] == ["12개월 ~ 4세", "전연령", "보호자 동반"]
        backend.get_events.assert_called_once_with({"target_age": 36})

    def test_bad_target_age_ignored(self, client, backend):
        backend.get_events.return_value = []
        client.get("/api/events?target_age=abc")
        backend.get_events.assert_called_once_with({})


# ============================================================================
# Children
# ============================================================================

class TestAddChild:
    def test_created(self, client, backend):
        backend.add_child.return_value = {"id": "c2", "nickname": "팥이"}
        resp = client.post("/api/children", json={
            "user_id": "u1", "nickname": " 팥이 ", "birth_year": 2024, "birth_month": 3,
        })
        assert resp.status_code == 201
        assert resp.get_json()["child"]["id"] == "c2"
        backend.add_child.assert_called_once_with(
            "u1", {"nickname": "팥이", "birth_year": 2024, "birth_month": 3},
        )

    @pytest.mark.parametrize("body,error", [
        ({"user_id": "u1", "birth_year": 2024, "birth_month": 3}, ERR_NICKNAME_REQUIRED),
        ({"user_id": "u1", "nickname": "팥이", "birth_year": 2024}, ERR_BIRTH_DATE_REQUIRED),
        ({"user_id": "u1", "nickname": "팥이", "birth_year": 2099, "birth_month": 1}, ERR_BIRTH_DATE_INVALID),
        ({"user_id": "u1", "nickname": "팥이", "birth_year": 2024, "birth_month": 13}, ERR_BIRTH_DATE_INVALID),
    ])
    def test_validation(self, client, backend, body, error):
        resp = client.post("/api/children", json=body)
        assert resp.status_code == 400
        assert resp.get_json()["error"] == error
        backend.add_child.assert_not_called()

    def test_backend_failure(self, client, backend):
        backend.add_child.side_effect = BackendError("down", 500)
        resp = client.post("/api/children", json={
            "user_id": "u1", "nickname": "팥이", "birth_year": 2024, "birth_month": 3,
        })
        assert resp.status_code == 502


# ============================================================================
# Saved places and visits
# ============================================================================

class TestMyPage:
    def test_saved_requires_user(self, client, backend):
        assert client.get("/api/saved").status_code == 400

    def test_saved(self, client, backend):
        backend.get_saved_places.return_value = [{"id": "s1", "places": {"name": "한밭수목원"}}]
        data = client.get("/api/saved?user_id=u1").get_json()
        assert data["total"] == 1
        backend.get_saved_places.assert_called_once_with("u1")

    def test_visits(self, client, backend):
        backend.get_visits.return_value = []
        data = client.get("/api/visits?user_id=u1").get_json()
        assert data == {"total": 0, "visits": []}

    def test_record_visit(self, client, backend):
        backend.add_visit.return_value = {"id": "v1"}
        resp = client.post("/api/visits", json={"user_id": "u1", "place_id": 7, "rating": 5})
        assert resp.status_code == 201
        backend.add_visit.assert_called_once_with({"user_id": "u1", "place_id": 7, "rating": 5})

    def test_record_visit_requires_place(self, client, backend):
        resp = client.post("/api/visits", json={"user_id": "u1"})
        assert resp.status_code == 400
        backend.add_visit.assert_not_called()

    def test_record_visit_backend_failure(self, client, backend):
        backend.add_visit.side_effect = BackendError("down", 500)
        resp = client.post("/api/visits", json={"user_id": "u1", "place_id": 7})
        assert resp.status_code == 502


class TestMalformedBodies:
    @pytest.mark.parametrize("method,path", [
        ("post", "/api/children"),
        ("post", "/api/visits"),
        ("post", "/api/places/1/save"),
        ("put", "/api/location"),
    ])
    def test_array_body_is_bad_request(self, client, backend, method, path):
        resp = getattr(client, method)(path, json=[1, 2])
        assert resp.status_code == 400

    def test_numeric_user_id_accepted(self, client, backend):
        backend.add_child.return_value = {"id": "c3"}
        resp = client.post("/api/children", json={
            "user_id": 42, "nickname": "팥이", "birth_year": 2024, "birth_month": 3,
        })
        assert resp.status_code == 201
        assert backend.add_child.call_args[0][0] == "42"

    def test_numeric_nickname_coerced(self, client, backend):
        backend.add_child.return_value = {"id": "c4"}
        resp = client.post("/api/children", json={
            "user_id": "u1", "nickname": 7, "birth_year": 2024, "birth_month": 3,
        })
        assert resp.status_code == 201
        assert backend.add_child.call_args[0][1]["nickname"] == "7"
