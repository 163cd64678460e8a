"""
Tests for community signal aggregation: per-slice means, counts, the
statistics fallback and the neutral baseline.
"""

from datetime import timedelta

import pytest

from safepath.exceptions import InsufficientDataError
from safepath.models.domain import AreaStatistics, DemographicTag, DemographicType
from safepath.services.signal_aggregator import (
    SignalAggregator, area_statistics_score, data_confidence, time_bucket,
)

from helpers import ORIGIN, T0, make_review

WOMAN = DemographicTag(DemographicType.GENDER, "woman")
LGBTQ = DemographicTag(DemographicType.LGBTQ, "true")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _reviews():
    return [
        make_review("r1", ORIGIN, 4.0, T0, location_id="loc-a", tags=[WOMAN]),
        make_review("r2", ORIGIN, 2.0, T0 + timedelta(hours=1), location_id="loc-a", tags=[WOMAN, LGBTQ]),
        make_review("r3", ORIGIN, 3.0, T0 + timedelta(hours=2), location_id="loc-a"),
        make_review("r4", ORIGIN, 1.0, T0, location_id="loc-b"),
    ]


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------

class TestAggregate:

    def test_overall_row_first_with_mean_and_count(self, settings):
        rows = SignalAggregator(settings).aggregate("loc-a", _reviews())
        overall = rows[0]
        assert overall.demographic_type == DemographicType.OVERALL
        assert overall.avg_overall_score == pytest.approx(3.0)
        assert overall.review_count == 3

    def test_multi_tag_review_counts_toward_each_slice(self, settings):
        rows = SignalAggregator(settings).aggregate("loc-a", _reviews())
        by_slice = {(r.demographic_type, r.demographic_value): r for r in rows}

        woman = by_slice[(DemographicType.GENDER, "woman")]
        assert woman.avg_overall_score == pytest.approx(3.0)
        assert woman.review_count == 2
        assert not woman.low_confidence

        lgbtq = by_slice[(DemographicType.LGBTQ, "true")]
        assert lgbtq.review_count == 1
        assert lgbtq.low_confidence

    def test_other_locations_ignored(self, settings):
        rows = SignalAggregator(settings).aggregate("loc-b", _reviews())
        assert len(rows) == 1
        assert rows[0].avg_overall_score == pytest.approx(1.0)

    def test_since_window(self, settings):
        rows = SignalAggregator(settings).aggregate("loc-a", _reviews(), since=T0 + timedelta(minutes=30))
        assert rows[0].review_count == 2
        assert rows[0].avg_overall_score == pytest.approx(2.5)

    def test_no_reviews_gives_no_rows(self, settings):
        assert SignalAggregator(settings).aggregate("loc-z", _reviews()) == []


class TestOverallSignal:

    def test_reviews_win(self, settings):
        signal = SignalAggregator(settings).overall_signal("loc-a", _reviews())
        assert signal.source == "reviews"
        assert signal.review_count == 3
        assert signal.confidence == pytest.approx(0.3)

    def test_statistics_fallback(self, settings):
        stats = AreaStatistics(crime_rate_per_1000=40.0, hate_crime_incidents=2, data_point_count=4)
        signal = SignalAggregator(settings).overall_signal("loc-z", [], area_statistics=stats)
        assert signal.source == "statistics"
        assert signal.score == pytest.approx(2.0)
        assert signal.confidence == pytest.approx(0.4)

    def test_neutral_when_optional(self, settings):
        signal = SignalAggregator(settings).overall_signal("loc-z", [])
        assert signal.source == "neutral"
        assert signal.score == pytest.approx(3.5)
        assert signal.confidence == pytest.approx(0.15)

    def test_required_slice_without_data_raises(self, settings):
        with pytest.raises(InsufficientDataError) as exc_info:
            SignalAggregator(settings).overall_signal("loc-z", [], required=True)
        assert exc_info.value.location_id == "loc-z"


class TestConfidenceAndStatistics:

    @pytest.mark.parametrize("points,expected", [(0, 0.15), (1, 0.15), (5, 0.5), (8, 0.8), (50, 0.8)])
    def test_confidence_curve(self, settings, points, expected):
        assert data_confidence(settings, points) == pytest.approx(expected)

    def test_diversity_blends_in(self):
        stats = AreaStatistics(crime_rate_per_1000=40.0, hate_crime_incidents=2, diversity_index=60.0)
        assert area_statistics_score(stats) == pytest.approx(2.5)

    def test_score_clamped_to_scale(self):
        stats = AreaStatistics(crime_rate_per_1000=500.0, hate_crime_incidents=10)
        assert area_statistics_score(stats) == pytest.approx(1.0)

    @pytest.mark.parametrize("hour,bucket", [
        (5, "night"), (6, "morning"), (12, "afternoon"), (18, "evening"), (22, "night"),
    ])
    def test_time_bucket(self, hour, bucket):
        assert time_bucket(hour) == bucket
