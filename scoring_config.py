"""
Scoring model configuration for Ainadeul.

Owns every numeric constant and label table that affects age banding,
travel estimates, expected ratings and place-card displays.  Filter
presets that only the home screen uses remain in place_filters.py.

Frozen dataclasses provide type checking and IDE support without
the indirection of YAML/JSON config files.
"""

import math
from dataclasses import dataclass
from typing import Dict, Tuple, Optional


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass(frozen=True)
class AgeBand:
    """One age bracket used by place suitability ratings.

    Bands are evaluated in order: the first band whose max_months is
    >= the child's age wins.  max_months=None marks the open-ended last band.
    """
    key: str                      # "0-12", "13-24", ... "85+"
    column: str                   # backend column, e.g. "age_0_12_months"
    max_months: Optional[int]     # inclusive upper bound
    card_label: str               # short label for place cards
    detail_label: str             # label for the place detail page
    order: int


@dataclass(frozen=True)
class EnergyDisplay:
    """Maps a minimum filter score to a display label."""
    min_score: float
    text: str
    color: str = ""
    emoji: str = ""


@dataclass(frozen=True)
class RatingModel:
    """Thresholds for the expected-rating and recommended-band logic."""
    recommend_min_score: float = 4.0
    neutral_rating: float = 3.5
    max_score: float = 5.0


@dataclass(frozen=True)
class TravelModel:
    """Average door-to-door speeds (km/h).  No live traffic or routing."""
    speeds_kmh: Dict[str, float]
    default_mode: str = "car"
    earth_radius_km: float = 6371.0


@dataclass(frozen=True)
class BirthDateRules:
    """Bounds for accepting a child's birth year/month."""
    max_years_back: int = 20
    label_years_threshold_months: int = 24


@dataclass(frozen=True)
class ScoringModel:
    """Top-level container for all scoring parameters.

    A single module-level instance (SCORING_MODEL) is the source of truth.
    Bump `version` on every change that alters rating outputs.
    """
    version: str
    age_bands: Tuple[AgeBand, ...]
    rating: RatingModel
    travel: TravelModel
    birth_dates: BirthDateRules
    parent_energy: Tuple[EnergyDisplay, ...]
    child_energy: Tuple[EnergyDisplay, ...]


# =============================================================================
# Pure helpers
# =============================================================================

def round_half_up(value: float, digits: int = 1) -> float:
    """Round *value* to *digits* decimals, halves away from zero.

    Uses floor(x + 0.5) instead of Python's round() to avoid banker's
    rounding (round-half-to-even), which produces unintuitive results
    at .5 boundaries (e.g. round(0.25, 1) -> 0.2).
    """
    factor = 10 ** digits
    if value < 0:
        return -round_half_up(-value, digits)
    return math.floor(value * factor + 0.5) / factor


def pick_energy_display(
    bands: Tuple[EnergyDisplay, ...],
    score: Optional[float],
) -> Optional[EnergyDisplay]:
    """Return the first display whose min_score <= score.

    Bands are assumed sorted highest min_score first; the last band
    should have min_score 0 so every non-None score matches.
    """
    if score is None:
        return None
    for band in bands:
        if score >= band.min_score:
            return band
    return bands[-1] if bands else None


# =============================================================================
# SCORING_MODEL: current production values
# =============================================================================

_AGE_BANDS = (
    AgeBand("0-12", "age_0_12_months", 12, "0-12개월", "0-12개월", 0),
    AgeBand("13-24", "age_13_24_months", 24, "1-2세", "1-2세", 1),
    AgeBand("25-48", "age_25_48_months", 48, "2-4세", "2-4세", 2),
    AgeBand("49-72", "age_49_72_months", 72, "4-6세", "4-6세", 3),
    AgeBand("73-84", "age_73_84_months", 84, "6-7세", "6-7세", 4),
    AgeBand("85+", "age_over_84_months", None, "7세+", "7세 이상", 5),
)

# Speeds are city averages; transit includes waiting time.
_TRAVEL = TravelModel(
    speeds_kmh={
        "car": 30.0,
        "transit": 25.0,
        "walk": 4.0,
    },
)

# parent_energy_required: higher = less effort needed from the parent
_PARENT_ENERGY = (
    EnergyDisplay(4.5, "매우 편함", color="#4CAF50"),
    EnergyDisplay(3.5, "편함", color="#8BC34A"),
    EnergyDisplay(2.5, "보통", color="#FFC107"),
    EnergyDisplay(1.5, "활동적", color="#FF9800"),
    EnergyDisplay(0.0, "매우 활동적", color="#F44336"),
)

# child_energy_consumption: higher = calmer activity
_CHILD_ENERGY = (
    EnergyDisplay(4.5, "조용한 활동", emoji="😌"),
    EnergyDisplay(3.5, "가벼운 활동", emoji="🙂"),
    EnergyDisplay(2.5, "적당한 활동", emoji="😊"),
    EnergyDisplay(1.5, "활발한 활동", emoji="🤸"),
    EnergyDisplay(0.0, "매우 활발", emoji="🏃"),
)

SCORING_MODEL = ScoringModel(
    version="1.0.0",
    age_bands=_AGE_BANDS,
    rating=RatingModel(),
    travel=_TRAVEL,
    birth_dates=BirthDateRules(),
    parent_energy=_PARENT_ENERGY,
    child_energy=_CHILD_ENERGY,
)

AGE_BANDS_BY_KEY: Dict[str, AgeBand] = {b.key: b for b in _AGE_BANDS}
