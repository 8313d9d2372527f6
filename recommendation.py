"""
Recommendation scorer: expected ratings and recommended age bands.

A place carries one suitability score (0-5) per age band.  The expected
rating blends those scores with the signed-in user's children:

  1. Personalized: average the scores of each child's band.
  2. Population: no children, or none of their bands is rated -> mean of
     every non-zero band score.
  3. Neutral: nothing rated at all -> 3.5.

Also hosts the small presentation helpers used by place cards and the
place detail page (energy displays, event age ranges).
"""

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from age_calculator import Child, age_band, months_since
from scoring_config import (
    SCORING_MODEL,
    AgeBand,
    EnergyDisplay,
    pick_energy_display,
    round_half_up,
)

RECOMMEND_MIN_SCORE = SCORING_MODEL.rating.recommend_min_score
NEUTRAL_RATING = SCORING_MODEL.rating.neutral_rating

AgeSuitability = Mapping[str, float]


@dataclass(frozen=True)
class RecommendationResult:
    expected_rating: float
    recommended_bands: Tuple[AgeBand, ...]

    @property
    def recommended_labels(self) -> List[str]:
        return [b.card_label for b in self.recommended_bands]


def _score(suitability: Mapping[str, Any], band: AgeBand) -> float:
    """Score for *band*, accepting either band keys or backend columns.

    Missing, null and non-numeric values all read as 0 ("not rated").
    """
    value = suitability.get(band.key)
    if value is None:
        value = suitability.get(band.column)
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def suitability_from_row(
    row: Union[Mapping[str, Any], Sequence[Mapping[str, Any]], None],
) -> Dict[str, float]:
    """Normalize a backend ``place_age_suitability`` value to band keys.

    The backend returns a dict for single-row joins and a list for batch
    joins; only the first row of a list is used.  Unrated bands are omitted.
    """
    if not row:
        return {}
    if not isinstance(row, Mapping):
        row = row[0]
    scores = {}
    for band in SCORING_MODEL.age_bands:
        score = _score(row, band)
        if score > 0:
            scores[band.key] = score
    return scores


def expected_rating(
    suitability: Optional[AgeSuitability],
    children: Sequence[Child],
    as_of: Optional[date] = None,
) -> float:
    """Expected 0-5 rating for this family, rounded to one decimal."""
    if not suitability:
        return NEUTRAL_RATING

    if children:
        found = []
        for child in children:
            band = age_band(months_since(child.birth_year, child.birth_month, as_of))
            score = _score(suitability, band)
            if score > 0:
                found.append(score)
        if found:
            return round_half_up(sum(found) / len(found), 1)

    rated = [s for s in (_score(suitability, b) for b in SCORING_MODEL.age_bands) if s > 0]
    if not rated:
        return NEUTRAL_RATING
    return round_half_up(sum(rated) / len(rated), 1)


def recommended_bands(suitability: Optional[AgeSuitability]) -> Tuple[AgeBand, ...]:
    """Bands scoring >= 4.0, youngest first.  Independent of the user."""
    if not suitability:
        return ()
    bands = [b for b in SCORING_MODEL.age_bands if _score(suitability, b) >= RECOMMEND_MIN_SCORE]
    return tuple(sorted(bands, key=lambda b: b.order))


def recommend(
    suitability: Optional[AgeSuitability],
    children: Sequence[Child],
    as_of: Optional[date] = None,
) -> RecommendationResult:
    return RecommendationResult(
        expected_rating=expected_rating(suitability, children, as_of),
        recommended_bands=recommended_bands(suitability),
    )


# =============================================================================
# Presentation helpers
# =============================================================================

def age_suitability_breakdown(suitability: Optional[AgeSuitability]) -> List[Dict[str, Any]]:
    """Rated bands for the detail page, as {"key", "label", "score"} rows."""
    if not suitability:
        return []
    rows = []
    for band in SCORING_MODEL.age_bands:
        score = _score(suitability, band)
        if score > 0:
            rows.append({
                "key": band.key,
                "label": band.detail_label,
                "score": round_half_up(score, 1),
            })
    return rows


def _energy_dict(display: Optional[EnergyDisplay]) -> Optional[Dict[str, str]]:
    if display is None:
        return None
    out = {"text": display.text}
    if display.color:
        out["color"] = display.color
    if display.emoji:
        out["emoji"] = display.emoji
    return out


def parent_energy_display(score: Optional[float]) -> Optional[Dict[str, str]]:
    """How much effort a visit takes from the parent (higher score = easier)."""
    return _energy_dict(pick_energy_display(SCORING_MODEL.parent_energy, score))


def child_energy_display(score: Optional[float]) -> Optional[Dict[str, str]]:
    """How active the child will be (higher score = calmer)."""
    return _energy_dict(pick_energy_display(SCORING_MODEL.child_energy, score))


def _event_age(months: int) -> str:
    # Events print bare years, unlike age_label()'s "만 N세"
    if months < 24:
        return f"{months}개월"
    return f"{months // 12}세"


def format_age_range(
    min_months: Optional[int],
    max_months: Optional[int],
    note: Optional[str] = None,
) -> str:
    """Target-age text for an event listing.

    A free-text note from the organizer always wins.
    """
    if note:
        return note
    if not min_months and not max_months:
        return "전연령"
    if not max_months:
        return f"{_event_age(min_months)} 이상"
    if not min_months:
        return f"{_event_age(max_months)} 이하"
    return f"{_event_age(min_months)} ~ {_event_age(max_months)}"
