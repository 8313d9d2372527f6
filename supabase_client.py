"""
Passthrough client for the hosted Supabase backend (PostgREST row API).

All table reads and writes in the application go through SupabaseClient.
The backend contract (tables, views, column names) is owned by the hosted
project; this module only shapes queries and joins results.

Error policy, matching how callers use each helper:
  - Reads (get_*) log a warning and return [] / None.  A missing list of
    places must never take the home screen down.
  - Writes (upsert_*, add_*, update_*) raise BackendError so the caller can
    tell the user the save failed.
  - toggle_save_place() returns False on any failure.

Configuration: SUPABASE_URL and SUPABASE_ANON_KEY (see from_env()).
"""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from api_trace import get_trace, set_trace
from place_filters import energy_query_params

logger = logging.getLogger(__name__)

PLACE_DETAIL_SELECT = (
    "*,place_details(*),place_amenities(*),place_filter_scores(*),place_age_suitability(*)"
)
PLACE_WITH_MENTIONS_SELECT = PLACE_DETAIL_SELECT + ",place_blog_mentions(*)"
EVENT_SELECT = "*,event_organizers(*),places(*)"
SAVED_PLACE_SELECT = "*,places(*,place_details(*),place_amenities(*))"
VISIT_SELECT = "*,places(id,name,category,address,region,place_amenities(*))"

# PostgREST error code for "no rows" on a single-object request
NO_ROWS_CODE = "PGRST116"


class BackendError(Exception):
    """Raised when a backend request fails or returns a non-2xx status."""

    def __init__(self, message: str, status_code: int = 0, code: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.code = code


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _eq(value: Any) -> str:
    if isinstance(value, bool):
        value = "true" if value else "false"
    return f"eq.{value}"


class SupabaseClient:
    """Client for the Supabase REST API"""

    # Per-call timeout in seconds.
    DEFAULT_TIMEOUT = 10

    def __init__(self, url: str, anon_key: str, access_token: Optional[str] = None):
        self.base_url = url.rstrip("/") + "/rest/v1"
        self.anon_key = anon_key
        self.access_token = access_token
        self.session = requests.Session()
        self.session.trust_env = False

    @classmethod
    def from_env(cls, access_token: Optional[str] = None) -> "SupabaseClient":
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_ANON_KEY")
        if not url or not key:
            raise BackendError("SUPABASE_URL and SUPABASE_ANON_KEY must be set")
        return cls(url, key, access_token=access_token)

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _headers(self, prefer: Optional[str] = None, single: bool = False) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token or self.anon_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        if single:
            headers["Accept"] = "application/vnd.pgrst.object+json"
        return headers

    def _request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        prefer: Optional[str] = None,
        single: bool = False,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Raises BackendError on transport failures and non-2xx responses.
        """
        url = f"{self.base_url}/{table}"
        t0 = time.time()
        status_code = 0
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(prefer, single),
                timeout=self.DEFAULT_TIMEOUT,
            )
            status_code = response.status_code
        except requests.RequestException as e:
            raise BackendError(f"{method} {table} failed: {e}") from e
        finally:
            trace = get_trace()
            if trace:
                trace.record_api_call(
                    service="supabase",
                    endpoint=table,
                    method=method,
                    elapsed_ms=int((time.time() - t0) * 1000),
                    status_code=status_code,
                )

        if not response.ok:
            code = ""
            message = response.text
            try:
                body = response.json()
                code = body.get("code", "") or ""
                message = body.get("message", message)
            except ValueError:
                pass
            raise BackendError(
                f"{method} {table} returned {response.status_code}: {message}",
                status_code=response.status_code,
                code=code,
            )

        if not response.content:
            return None
        return response.json()

    # ------------------------------------------------------------------
    # Places
    # ------------------------------------------------------------------

    def get_places(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict]:
        """Active places with their joined detail rows.

        filters: region, category, parent_energy, child_condition.
        """
        filters = filters or {}
        params = {"select": PLACE_DETAIL_SELECT, "is_active": _eq(True)}
        if filters.get("region"):
            params["region"] = _eq(filters["region"])
        if filters.get("category"):
            params["category"] = _eq(filters["category"])
        energy = energy_query_params(filters.get("parent_energy"), filters.get("child_condition"))
        for column, minimum in energy.items():
            params[f"place_filter_scores.{column}"] = f"gte.{minimum}"

        try:
            return self._request("GET", "places", params=params) or []
        except BackendError:
            logger.warning("Error fetching places", exc_info=True)
            return []

    def get_place_by_id(self, place_id: Any) -> Optional[Dict]:
        params = {"select": PLACE_WITH_MENTIONS_SELECT, "id": _eq(place_id)}
        try:
            return self._request("GET", "places", params=params, single=True)
        except BackendError as e:
            if e.code != NO_ROWS_CODE:
                logger.warning("Error fetching place %s", place_id, exc_info=True)
            return None

    def get_places_with_distance(self, user_id: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict]:
        """Places with server-computed distance from the user's home.

        filters: max_distance (km), max_travel_time (car minutes), region,
        category, parent_energy, child_condition.  Sorted nearest first.
        """
        filters = filters or {}
        params = {"select": "*", "user_id": _eq(user_id), "order": "distance_km.asc"}
        if filters.get("max_distance"):
            params["distance_km"] = f"lte.{filters['max_distance']}"
        if filters.get("max_travel_time"):
            params["travel_time_car"] = f"lte.{filters['max_travel_time']}"
        if filters.get("region"):
            params["region"] = _eq(filters["region"])
        if filters.get("category"):
            params["category"] = _eq(filters["category"])
        energy = energy_query_params(filters.get("parent_energy"), filters.get("child_condition"))
        for column, minimum in energy.items():
            params[column] = f"gte.{minimum}"

        try:
            places = self._request("GET", "places_with_distance", params=params) or []
        except BackendError:
            logger.warning("Error fetching places with distance", exc_info=True)
            return []

        if not places:
            return []
        return self._join_place_rows(places)

    def _join_place_rows(self, places: List[Dict]) -> List[Dict]:
        """Attach details, amenities, filter scores and age suitability."""
        id_list = ",".join(str(p["id"]) for p in places)
        tables = ("place_details", "place_amenities", "place_filter_scores", "place_age_suitability")
        trace = get_trace()

        def fetch(table):
            # Trace context is thread-local; carry it into the pool thread
            set_trace(trace)
            try:
                return self._request(
                    "GET", table, params={"select": "*", "place_id": f"in.({id_list})"},
                ) or []
            except BackendError:
                logger.warning("Error fetching %s for %d places", table, len(places), exc_info=True)
                return []

        with ThreadPoolExecutor(max_workers=len(tables)) as pool:
            details, amenities, scores, suitability = pool.map(fetch, tables)

        def first(rows, place_id):
            return next((r for r in rows if r.get("place_id") == place_id), None)

        return [
            {
                **place,
                "place_details": first(details, place["id"]),
                "place_amenities": first(amenities, place["id"]),
                "place_filter_scores": first(scores, place["id"]),
                "place_age_suitability": [r for r in suitability if r.get("place_id") == place["id"]],
            }
            for place in places
        ]

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def get_events(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict]:
        """Upcoming events, soonest first.

        filters: target_age (months), organizer_category.
        """
        filters = filters or {}
        params = {
            "select": EVENT_SELECT,
            "status": _eq("upcoming"),
            "order": "start_date.asc",
        }
        target_age = filters.get("target_age")
        if target_age is not None:
            params["target_age_min"] = f"lte.{target_age}"
            params["target_age_max"] = f"gte.{target_age}"
        if filters.get("organizer_category"):
            params["event_organizers.category"] = _eq(filters["organizer_category"])

        try:
            return self._request("GET", "events", params=params) or []
        except BackendError:
            logger.warning("Error fetching events", exc_info=True)
            return []

    # ------------------------------------------------------------------
    # User profile and children
    # ------------------------------------------------------------------

    def get_user_profile(self, user_id: str) -> Optional[Dict]:
        """Profile row with ``user_children`` attached, or None if absent."""
        profile = None
        try:
            profile = self._request(
                "GET", "user_profiles",
                params={"select": "*", "user_id": _eq(user_id)},
                single=True,
            )
        except BackendError as e:
            if e.code != NO_ROWS_CODE:
                logger.warning("Error fetching user profile %s", user_id, exc_info=True)

        try:
            children = self._request(
                "GET", "user_children",
                params={"select": "*", "user_id": _eq(user_id), "order": "created_at.asc"},
            ) or []
        except BackendError:
            logger.warning("Error fetching children for %s", user_id, exc_info=True)
            children = []

        if not profile:
            return None
        return {**profile, "user_children": children}

    def upsert_user_profile(self, user_id: str, profile_data: Dict[str, Any]) -> Dict:
        row = {"user_id": user_id, **profile_data, "updated_at": _now_iso()}
        return self._request(
            "POST", "user_profiles",
            params={"on_conflict": "user_id"},
            json=row,
            prefer="resolution=merge-duplicates,return=representation",
            single=True,
        )

    def add_child(self, user_id: str, child_data: Dict[str, Any]) -> Dict:
        return self._request(
            "POST", "user_children",
            json={"user_id": user_id, **child_data},
            prefer="return=representation",
            single=True,
        )

    def update_user_location(
        self,
        user_id: str,
        lat: float,
        lng: float,
        address: Optional[str] = None,
    ) -> Dict:
        """Store the user's home location, creating the profile if needed."""
        location = {
            "home_lat": lat,
            "home_lng": lng,
            "home_address": address,
            "home_location": f"POINT({lng} {lat})",
        }
        existing = self._request(
            "GET", "user_profiles",
            params={"select": "id", "user_id": _eq(user_id)},
        ) or []

        if existing:
            return self._request(
                "PATCH", "user_profiles",
                params={"user_id": _eq(user_id)},
                json={**location, "updated_at": _now_iso()},
                prefer="return=representation",
                single=True,
            )
        return self._request(
            "POST", "user_profiles",
            json={"user_id": user_id, **location},
            prefer="return=representation",
            single=True,
        )

    # ------------------------------------------------------------------
    # Saved places and visits
    # ------------------------------------------------------------------

    def toggle_save_place(self, user_id: str, place_id: Any) -> bool:
        """Save the place, or un-save it if already saved.  True on success."""
        try:
            existing = self._request(
                "GET", "user_saved_places",
                params={"select": "id", "user_id": _eq(user_id), "place_id": _eq(place_id)},
            ) or []
            if existing:
                self._request("DELETE", "user_saved_places", params={"id": _eq(existing[0]["id"])})
            else:
                self._request(
                    "POST", "user_saved_places",
                    json={"user_id": user_id, "place_id": place_id},
                )
            return True
        except BackendError:
            logger.warning("Error toggling saved place %s for %s", place_id, user_id, exc_info=True)
            return False

    def get_saved_places(self, user_id: str) -> List[Dict]:
        params = {"select": SAVED_PLACE_SELECT, "user_id": _eq(user_id), "order": "created_at.desc"}
        try:
            return self._request("GET", "user_saved_places", params=params) or []
        except BackendError:
            logger.warning("Error fetching saved places for %s", user_id, exc_info=True)
            return []

    def get_visits(self, user_id: str) -> List[Dict]:
        """Visit history, most recent first."""
        params = {"select": VISIT_SELECT, "user_id": _eq(user_id), "order": "visited_at.desc"}
        try:
            return self._request("GET", "user_visits", params=params) or []
        except BackendError:
            logger.warning("Error fetching visits for %s", user_id, exc_info=True)
            return []

    def add_visit(self, visit_data: Dict[str, Any]) -> Dict:
        return self._request(
            "POST", "user_visits",
            json=visit_data,
            prefer="return=representation",
            single=True,
        )
