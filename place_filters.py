"""
Home-screen place filters.

Two kinds of filter exist:
  - Server-side: parent energy / child condition and the max travel time
    are pushed into the backend query (see energy_query_params and
    parse_travel_time_filter).
  - Client-side: environment, parking, cost and the open-ended
    "1시간 이상" travel bucket are applied to the fetched list by
    filter_places().
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

# Travel-time bucket labels (car) -> max minutes.  None = no upper bound.
TRAVEL_TIME_FILTERS: Dict[str, Optional[int]] = {
    "10분 이내": 10,
    "30분 이내": 30,
    "1시간 이내": 60,
    "1시간 이상": None,
}
TRAVEL_TIME_OVER_HOUR = "1시간 이상"
OVER_HOUR_MIN_MINUTES = 60

ENVIRONMENT_OPTIONS = ("실내", "실외", "모두")
PARKING_OPTIONS = ("필수", "상관없음")
COST_OPTIONS = ("무료", "상관없음")
PARENT_ENERGY_OPTIONS = ("낮음", "보통", "높음")
CHILD_CONDITION_OPTIONS = ("보통", "저조함")

# A tired parent only sees easy places; a low-energy child only calm ones.
LOW_PARENT_ENERGY = "낮음"
LOW_CHILD_CONDITION = "저조함"
LOW_PARENT_ENERGY_MIN_SCORE = 4.0
LOW_CHILD_CONDITION_MIN_SCORE = 3.5


@dataclass
class PlaceFilters:
    """Detail-filter state.  Defaults match the home screen's initial state."""
    environment: str = "모두"
    parking: str = "상관없음"
    travel_time: str = "30분 이내"
    cost: str = "상관없음"

    @classmethod
    def from_args(cls, args: Dict[str, Any]) -> "PlaceFilters":
        """Build from request args, ignoring unknown option values."""
        defaults = cls()
        return cls(
            environment=_pick(args.get("environment"), ENVIRONMENT_OPTIONS, defaults.environment),
            parking=_pick(args.get("parking"), PARKING_OPTIONS, defaults.parking),
            travel_time=_pick(args.get("travel_time"), tuple(TRAVEL_TIME_FILTERS), defaults.travel_time),
            cost=_pick(args.get("cost"), COST_OPTIONS, defaults.cost),
        )

    @property
    def max_travel_minutes(self) -> Optional[int]:
        return parse_travel_time_filter(self.travel_time)


def _pick(value: Optional[str], options: tuple, default: str) -> str:
    return value if value in options else default


def parse_travel_time_filter(label: Optional[str]) -> Optional[int]:
    """Max car minutes for a bucket label; None when unbounded or unknown."""
    return TRAVEL_TIME_FILTERS.get(label or "")


def energy_query_params(parent_energy: Optional[str], child_condition: Optional[str]) -> Dict[str, float]:
    """Minimum filter scores implied by the parent/child condition chips."""
    params = {}
    if parent_energy == LOW_PARENT_ENERGY:
        params["parent_energy_required"] = LOW_PARENT_ENERGY_MIN_SCORE
    if child_condition == LOW_CHILD_CONDITION:
        params["child_energy_consumption"] = LOW_CHILD_CONDITION_MIN_SCORE
    return params


def first_row(place: Dict[str, Any], key: str) -> Dict[str, Any]:
    # Joined rows come back as a dict, a list of dicts, or null
    value = place.get(key)
    if isinstance(value, list):
        value = value[0] if value else None
    return value or {}


def filter_places(
    places: List[Dict[str, Any]],
    filters: PlaceFilters,
    has_location: bool,
) -> List[Dict[str, Any]]:
    """Apply the client-side detail filters.  Returns a new list."""
    filtered = list(places)

    if has_location and filters.travel_time == TRAVEL_TIME_OVER_HOUR:
        filtered = [
            p for p in filtered
            if p.get("travel_time_car") and p["travel_time_car"] > OVER_HOUR_MIN_MINUTES
        ]

    if filters.environment == "실내":
        filtered = [p for p in filtered if p.get("is_indoor")]
    elif filters.environment == "실외":
        filtered = [p for p in filtered if p.get("is_outdoor")]

    if filters.parking == "필수":
        filtered = [
            p for p in filtered
            if first_row(p, "place_amenities").get("parking_available") is True
        ]

    if filters.cost == "무료":
        filtered = [
            p for p in filtered
            if first_row(p, "place_details").get("is_free") is True
        ]

    return filtered
