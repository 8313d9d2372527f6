"""Unit tests for recommendation.py: expected ratings and age-band picks.

Children are pinned against AS_OF = 2026-10-01:
  born 2025-04 -> 18 months -> band "13-24"
  born 2023-01 -> 45 months -> band "25-48"
  born 2018-01 -> 105 months -> band "85+"
"""

from datetime import date

import pytest

from age_calculator import Child
from recommendation import (
    age_suitability_breakdown,
    child_energy_display,
    expected_rating,
    format_age_range,
    parent_energy_display,
    recommend,
    recommended_bands,
    suitability_from_row,
)

AS_OF = date(2026, 10, 1)

TODDLER = Child(2025, 4, "콩이")
PRESCHOOLER = Child(2023, 1, "팥이")
SCHOOLKID = Child(2018, 1, "별이")

SUITABILITY = {"13-24": 4.2, "25-48": 3.0}


# =========================================================================
# expected_rating
# =========================================================================

class TestExpectedRating:
    def test_no_suitability_is_neutral(self):
        assert expected_rating({}, [TODDLER], AS_OF) == 3.5
        assert expected_rating(None, [], AS_OF) == 3.5

    def test_single_child_uses_their_band(self):
        assert expected_rating(SUITABILITY, [TODDLER], AS_OF) == 4.2

    def test_several_children_averaged(self):
        assert expected_rating(SUITABILITY, [TODDLER, PRESCHOOLER], AS_OF) == 3.6

    def test_unrated_child_band_is_ignored(self):
        assert expected_rating(SUITABILITY, [TODDLER, SCHOOLKID], AS_OF) == 4.2

    def test_no_children_uses_population_mean(self):
        assert expected_rating(SUITABILITY, [], AS_OF) == 3.6

    def test_no_child_band_rated_uses_population_mean(self):
        assert expected_rating(SUITABILITY, [SCHOOLKID], AS_OF) == 3.6

    def test_all_zero_is_neutral(self):
        assert expected_rating({"0-12": 0, "85+": 0}, [], AS_OF) == 3.5

    def test_rounds_half_up(self):
        assert expected_rating({"0-12": 4.0, "13-24": 4.5}, [], AS_OF) == 4.3

    def test_accepts_backend_columns(self):
        suitability = {"age_13_24_months": 4.8}
        assert expected_rating(suitability, [TODDLER], AS_OF) == 4.8


# =========================================================================
# recommended_bands
# =========================================================================

class TestRecommendedBands:
    def test_threshold_and_order(self):
        bands = recommended_bands({"85+": 4.5, "0-12": 4.0, "25-48": 3.9})
        assert [b.key for b in bands] == ["0-12", "85+"]

    def test_empty(self):
        assert recommended_bands({}) == ()
        assert recommended_bands(None) == ()

    def test_recommend_combines_both(self):
        result = recommend({"13-24": 4.6, "25-48": 4.0}, [PRESCHOOLER], AS_OF)
        assert result.expected_rating == 4.0
        assert result.recommended_labels == ["1-2세", "2-4세"]

    def test_independent_of_children(self):
        a = recommend(SUITABILITY, [TODDLER], AS_OF)
        b = recommend(SUITABILITY, [], AS_OF)
        assert a.recommended_bands == b.recommended_bands


# =========================================================================
# suitability_from_row
# =========================================================================

class TestSuitabilityFromRow:
    def test_dict_row(self):
        row = {
            "place_id": 1,
            "age_0_12_months": 4.5,
            "age_13_24_months": 0,
            "age_25_48_months": "3.5",
            "age_over_84_months": None,
        }
        assert suitability_from_row(row) == {"0-12": 4.5, "25-48": 3.5}

    def test_list_uses_first_row(self):
        rows = [{"age_73_84_months": 4.1}, {"age_73_84_months": 1.0}]
        assert suitability_from_row(rows) == {"73-84": 4.1}

    @pytest.mark.parametrize("row", [None, [], {}])
    def test_empty(self, row):
        assert suitability_from_row(row) == {}

    def test_non_numeric_reads_as_unrated(self):
        assert suitability_from_row({"age_0_12_months": "n/a"}) == {}


# =========================================================================
# Presentation helpers
# =========================================================================

class TestBreakdown:
    def test_rated_bands_with_detail_labels(self):
        rows = age_suitability_breakdown({"13-24": 4.25, "85+": 3.0})
        assert rows == [
            {"key": "13-24", "label": "1-2세", "score": 4.3},
            {"key": "85+", "label": "7세 이상", "score": 3.0},
        ]

    def test_empty(self):
        assert age_suitability_breakdown(None) == []


class TestEnergyDisplays:
    @pytest.mark.parametrize("score,text", [
        (5.0, "매우 편함"),
        (4.5, "매우 편함"),
        (3.5, "편함"),
        (2.9, "보통"),
        (1.5, "활동적"),
        (0.0, "매우 활동적"),
    ])
    def test_parent_text(self, score, text):
        assert parent_energy_display(score)["text"] == text

    def test_parent_has_color(self):
        assert parent_energy_display(4.6) == {"text": "매우 편함", "color": "#4CAF50"}

    def test_child_has_emoji(self):
        assert child_energy_display(2.0) == {"text": "활발한 활동", "emoji": "🤸"}

    def test_missing_score(self):
        assert parent_energy_display(None) is None
        assert child_energy_display(None) is None


class TestFormatAgeRange:
    def test_note_wins(self):
        assert format_age_range(12, 48, "보호자 동반 필수") == "보호자 동반 필수"

    @pytest.mark.parametrize("lo,hi", [(None, None), (0, 0), (0, None)])
    def test_all_ages(self, lo, hi):
        assert format_age_range(lo, hi) == "전연령"

    def test_min_only(self):
        assert format_age_range(36, None) == "3세 이상"

    def test_max_only(self):
        assert format_age_range(None, 12) == "12개월 이하"

    def test_range(self):
        assert format_age_range(12, 48) == "12개월 ~ 4세"
