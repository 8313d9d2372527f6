"""
Geo engine: great-circle distances, rough travel times and their labels.

Travel times use fixed average speeds per mode (see scoring_config).  They
are for "within N minutes" filtering, not navigation-grade ETAs.

current_location() is the only asynchronous call here.  The device's
location capability is injected as a LocationProvider so this module never
depends on a particular host.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from scoring_config import SCORING_MODEL, round_half_up

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = SCORING_MODEL.travel.earth_radius_km
TRAVEL_SPEEDS_KMH = SCORING_MODEL.travel.speeds_kmh
DEFAULT_TRAVEL_MODE = SCORING_MODEL.travel.default_mode

LOCATION_TIMEOUT_S = 5.0
LOCATION_MAX_AGE_S = 0   # always request a fresh fix

# Minutes below this are float noise from the speed division
_MINUTE_EPSILON_DIGITS = 6


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def __post_init__(self):
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"latitude out of range: {self.lat}")
        if not -180.0 <= self.lng <= 180.0:
            raise ValueError(f"longitude out of range: {self.lng}")


@dataclass(frozen=True)
class TravelEstimate:
    minutes: int
    mode: str                     # "car" | "transit" | "walk"


@dataclass(frozen=True)
class Position:
    """A raw fix as reported by the host's location service."""
    lat: float
    lng: float
    accuracy_m: Optional[float] = None


@dataclass(frozen=True)
class NamedLocation:
    """A preset the user can pick instead of sharing their position."""
    name: str
    coordinate: Coordinate
    address: str = ""


# =============================================================================
# ERRORS
# =============================================================================

class LocationError(Exception):
    """Base class for current_location() failures."""


class LocationUnavailable(LocationError):
    """The host has no location capability."""


class LocationDenied(LocationError):
    """The location request errored or was refused by the user."""


class LocationTimeout(LocationError):
    """No fix arrived within the timeout."""


class LocationProvider(Protocol):
    async def request_position(self, high_accuracy: bool, maximum_age: float) -> Position:
        ...


# =============================================================================
# DISTANCE AND TIME
# =============================================================================

def distance_km(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance in km, rounded to one decimal."""
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)

    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat))
        * math.sin(d_lng / 2) ** 2
    )
    # Float error can push h just past 1 for antipodal points
    h = min(1.0, h)
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return round_half_up(EARTH_RADIUS_KM * c, 1)


def travel_minutes(distance: float, mode: str = DEFAULT_TRAVEL_MODE) -> int:
    """Estimated minutes to cover *distance* km, rounded up.

    Unknown modes fall back to the car speed.
    """
    speed = TRAVEL_SPEEDS_KMH.get(mode) or TRAVEL_SPEEDS_KMH[DEFAULT_TRAVEL_MODE]
    minutes = round(distance * 60 / speed, _MINUTE_EPSILON_DIGITS)
    return math.ceil(minutes)


def travel_estimate(distance: float, mode: str = DEFAULT_TRAVEL_MODE) -> TravelEstimate:
    if mode not in TRAVEL_SPEEDS_KMH:
        mode = DEFAULT_TRAVEL_MODE
    return TravelEstimate(minutes=travel_minutes(distance, mode), mode=mode)


def _format_km(km: float) -> str:
    text = f"{round_half_up(km, 1):.1f}"
    if text.endswith(".0"):
        text = text[:-2]
    return text


def format_distance(km: float) -> str:
    """Display text: "850m" below 1 km, otherwise "12.3km" ("3km" for whole values)."""
    metres = int(round_half_up(km * 1000, 0))
    if metres < 1000:
        return f"{metres}m"
    return f"{_format_km(km)}km"


def format_travel_time(minutes: int) -> str:
    """Display text: "45분", "1시간", "1시간 30분"."""
    if minutes < 60:
        return f"{minutes}분"
    hours, mins = divmod(minutes, 60)
    return f"{hours}시간 {mins}분" if mins > 0 else f"{hours}시간"


def attach_travel_estimates(places: List[Dict[str, Any]], origin: Coordinate) -> List[Dict[str, Any]]:
    """Fill ``distance_km`` and ``travel_time_car`` on place dicts in place.

    Places that already carry a distance (joined server-side) are left
    alone, as are places without usable coordinates.
    """
    for place in places:
        if place.get("distance_km") is not None:
            continue
        lat, lng = place.get("lat"), place.get("lng")
        if lat is None or lng is None:
            continue
        try:
            dest = Coordinate(float(lat), float(lng))
        except (TypeError, ValueError):
            logger.warning("Skipping place %s with bad coordinates (%r, %r)",
                           place.get("id"), lat, lng)
            continue
        km = distance_km(origin, dest)
        place["distance_km"] = km
        place["travel_time_car"] = travel_minutes(km, "car")
    return places


# =============================================================================
# CURRENT LOCATION
# =============================================================================

async def current_location(
    provider: Optional[LocationProvider],
    timeout: float = LOCATION_TIMEOUT_S,
) -> Coordinate:
    """Ask the host for a fresh position fix.

    Raises:
        LocationUnavailable: no provider (the host has no location service).
        LocationDenied: the provider raised, e.g. permission refused.
        LocationTimeout: no answer within *timeout* seconds; the pending
            request is cancelled.

    Not retried here; the caller decides whether to re-prompt or fall back
    to a region preset.
    """
    if provider is None:
        raise LocationUnavailable("This device does not provide a location service")

    logger.info("Requesting current location (timeout=%.1fs)", timeout)
    try:
        position = await asyncio.wait_for(
            provider.request_position(high_accuracy=True, maximum_age=LOCATION_MAX_AGE_S),
            timeout,
        )
    except asyncio.TimeoutError as e:
        logger.warning("Location request timed out after %.1fs", timeout)
        raise LocationTimeout(f"No location fix within {timeout:.1f}s") from e
    except LocationError:
        raise
    except Exception as e:
        logger.warning("Location request failed: %s", e)
        raise LocationDenied(str(e) or e.__class__.__name__) from e

    logger.info(
        "Position received: lat=%.5f lng=%.5f accuracy=%s",
        position.lat, position.lng, position.accuracy_m,
    )
    return Coordinate(position.lat, position.lng)


# =============================================================================
# PRESETS: Daejeon districts and landmarks
# =============================================================================

DAEJEON_CITY_HALL = Coordinate(36.3504, 127.3845)

DAEJEON_REGIONS = (
    NamedLocation("유성구", Coordinate(36.3621, 127.3563)),
    NamedLocation("서구", Coordinate(36.3546, 127.3835)),
    NamedLocation("중구", Coordinate(36.3253, 127.4217)),
    NamedLocation("동구", Coordinate(36.3370, 127.4548)),
    NamedLocation("대덕구", Coordinate(36.4466, 127.4188)),
)

DAEJEON_LANDMARKS = (
    NamedLocation("대전역", Coordinate(36.3320, 127.4349), "대전 동구 중앙로 215"),
    NamedLocation("유성온천역", Coordinate(36.3550, 127.3380), "대전 유성구 온천로 104"),
    NamedLocation("대전시청", DAEJEON_CITY_HALL, "대전 서구 둔산로 100"),
    NamedLocation("충남대학교", Coordinate(36.3699, 127.3438), "대전 유성구 대학로 99"),
    NamedLocation("KAIST", Coordinate(36.3721, 127.3604), "대전 유성구 대학로 291"),
)


def geocode_address(address: str) -> Coordinate:
    """Resolve an address to its district centre.

    Offline lookup only: the first district name found in the address
    wins, and anything else resolves to City Hall.
    """
    for region in DAEJEON_REGIONS:
        if region.name in (address or ""):
            return region.coordinate
    logger.debug("No district match for %r, using City Hall", address)
    return DAEJEON_CITY_HALL


def region_address(region: NamedLocation) -> str:
    """Display address for a district preset, e.g. "대전 유성구"."""
    return region.address or f"대전 {region.name}"
