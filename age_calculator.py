"""
Age engine: child ages in months, display labels and age bands.

Every function takes an optional ``as_of`` date so results are
deterministic in tests.  When omitted, today's date is used; results are
therefore never cached across calls.

Validation and computation are deliberately split: months_since() does not
check the month range.  Callers run is_valid_birth_date() on user input
before storing a child.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterable, Optional, Sequence

from scoring_config import SCORING_MODEL, AgeBand

logger = logging.getLogger(__name__)

_LABEL_YEARS_THRESHOLD = SCORING_MODEL.birth_dates.label_years_threshold_months
_MAX_YEARS_BACK = SCORING_MODEL.birth_dates.max_years_back


@dataclass(frozen=True)
class Child:
    """A registered child.  Only the birth year/month drive any scoring."""
    birth_year: int
    birth_month: int              # 1-12
    nickname: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Child":
        """Build a Child from a backend ``user_children`` row."""
        return cls(
            birth_year=row.get("birth_year") or 0,
            birth_month=row.get("birth_month") or 0,
            nickname=row.get("nickname"),
            id=row.get("id"),
        )


def _today(as_of: Optional[date]) -> date:
    return as_of if as_of is not None else date.today()


def months_since(birth_year: int, birth_month: int, as_of: Optional[date] = None) -> int:
    """Whole months from the birth month to ``as_of``'s month.

    Future birth dates clamp to 0.  A missing year or month also yields 0.
    """
    if not birth_year or not birth_month:
        return 0
    today = _today(as_of)
    total = (today.year - birth_year) * 12 + (today.month - birth_month)
    return max(0, total)


def is_valid_birth_date(year: Optional[int], month: Optional[int], as_of: Optional[date] = None) -> bool:
    """True if (year, month) is a plausible birth month for a child.

    Rejects months outside 1-12, dates after ``as_of``'s month, and years
    more than 20 years before ``as_of``'s year.  Never raises.
    """
    if not year or not month:
        return False

    today = _today(as_of)

    if month < 1 or month > 12:
        return False

    if year > today.year or (year == today.year and month > today.month):
        return False

    if year < today.year - _MAX_YEARS_BACK:
        return False

    return True


def age_label(months: int) -> str:
    """Display label: "18개월" below 24 months, "만 3세" from 24 months on."""
    if months < _LABEL_YEARS_THRESHOLD:
        return f"{months}개월"
    return f"만 {months // 12}세"


def age_label_from_birth_date(birth_date: Optional[str], as_of: Optional[date] = None) -> str:
    """Age label for a "YYYY-MM" string, or "" when it can't be parsed."""
    if not birth_date:
        return ""
    try:
        year_str, month_str = birth_date.split("-")[:2]
        year, month = int(year_str), int(month_str)
    except ValueError:
        logger.debug("Unparseable birth date %r", birth_date)
        return ""
    return age_label(months_since(year, month, as_of))


def age_band(months: int) -> AgeBand:
    """The unique band whose inclusive upper bound is the smallest >= months."""
    for band in SCORING_MODEL.age_bands:
        if band.max_months is None or months <= band.max_months:
            return band
    # The last configured band is open-ended, so this is unreachable
    return SCORING_MODEL.age_bands[-1]


def youngest_months(children: Sequence[Child], as_of: Optional[date] = None) -> Optional[int]:
    """Age in months of the youngest child, or None with no children."""
    if not children:
        return None
    return min(months_since(c.birth_year, c.birth_month, as_of) for c in children)


def child_age_label(child: Child, as_of: Optional[date] = None) -> str:
    return age_label(months_since(child.birth_year, child.birth_month, as_of))


def children_summary(children: Iterable[Child], as_of: Optional[date] = None) -> str:
    """Greeting fragment for the home screen.

    One child: "18개월 콩이와 함께".  Several: "2명의 아이와 함께".
    """
    children = list(children)
    if not children:
        return ""
    if len(children) == 1:
        child = children[0]
        name = " ".join(p for p in (child_age_label(child, as_of), child.nickname) if p)
        return f"{name}와 함께"
    return f"{len(children)}명의 아이와 함께"
