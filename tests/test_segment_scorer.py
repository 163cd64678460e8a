"""
Tests for polyline slicing, segment scoring and the time-of-day penalty.
"""

import math

import pytest

from safepath.models.domain import AreaStatistics, DemographicType, SafetyScore
from safepath.services import geomath
from safepath.services.segment_scorer import SegmentScorer, expected_segment_count, slice_polyline

from helpers import ORIGIN, east, make_profile, north, northbound_polyline


class TestSlicePolyline:

    @pytest.mark.parametrize("length", [350.0, 999.0, 1500.0, 2350.0, 4720.0])
    def test_count_is_ceil_of_length(self, length):
        slices = slice_polyline(northbound_polyline(length, spacing_m=130), 1000.0)
        assert len(slices) == math.ceil(length / 1000.0)
        assert len(slices) == expected_segment_count(length, 1000.0)

    def test_long_edge_is_cut_inside(self):
        slices = slice_polyline([ORIGIN, north(3500)], 1000.0)
        assert len(slices) == 4
        assert geomath.distance(ORIGIN, slices[0].end) == pytest.approx(1000, abs=0.01)
        assert slices[-1].length_m == pytest.approx(500, abs=0.01)

    def test_slices_are_contiguous(self):
        slices = slice_polyline(northbound_polyline(2600, spacing_m=70), 1000.0)
        for a, b in zip(slices, slices[1:]):
            assert a.end == b.start
        assert sum(s.length_m for s in slices) == pytest.approx(2600, abs=0.05)

    def test_single_point_has_no_slices(self):
        assert slice_polyline([ORIGIN], 1000.0) == []


class TestTimePenalty:

    @pytest.mark.parametrize("hour,multiplier", [
        (0, 1.5), (5, 1.5), (6, 1.0), (12, 1.0), (17, 1.0), (18, 1.2), (21, 1.2), (22, 1.5), (23, 1.5),
    ])
    def test_multiplier_by_hour(self, settings, hour, multiplier):
        assert SegmentScorer(settings).time_multiplier(hour) == pytest.approx(multiplier)

    def test_night_penalty(self, settings):
        scorer = SegmentScorer(settings)
        assert scorer.apply_time_penalty(2.0, 23) == pytest.approx(0.5)
        assert scorer.apply_time_penalty(3.0, 19) == pytest.approx(2.6)

    def test_safe_segments_unchanged(self, settings):
        scorer = SegmentScorer(settings)
        assert scorer.apply_time_penalty(4.5, 23) == pytest.approx(4.5)
        assert scorer.apply_time_penalty(4.0, 23) == pytest.approx(4.0)

    @pytest.mark.parametrize("raw", [0.5, 1.0, 2.2, 3.1, 3.99, 4.0, 4.8])
    def test_day_evening_night_ordering(self, settings, raw):
        scorer = SegmentScorer(settings)
        day = scorer.apply_time_penalty(raw, 12)
        evening = scorer.apply_time_penalty(raw, 19)
        night = scorer.apply_time_penalty(raw, 23)
        assert day >= evening >= night >= 0.0


class TestScoreRoute:

    def test_mixed_route_at_night(self, settings):
        profiles = [
            make_profile("a", north(500), score=4.5),
            make_profile("b", north(1500), score=2.0),
            make_profile("c", north(2450), score=4.0),
        ]
        segments = SegmentScorer(settings).score_route([ORIGIN, north(2900)], profiles, hour=23)

        assert [s.score for s in segments] == pytest.approx([4.5, 0.5, 4.0])
        assert sum(s.score for s in segments) / len(segments) == pytest.approx(3.0)
        assert "Night travel time" in segments[1].risk_factors
        assert all(s.nearby_location_count == 1 for s in segments)

    def test_empty_segment_inherits_running_average(self, settings):
        profiles = [make_profile("a", north(500), score=2.0)]
        segments = SegmentScorer(settings).score_route([ORIGIN, north(2000)], profiles, hour=12)

        assert segments[0].score == pytest.approx(2.0)
        assert segments[1].score == pytest.approx(2.0)
        assert segments[1].nearby_location_count == 0
        assert segments[1].confidence == pytest.approx(settings.fallback_confidence)
        assert "Limited safety data - stay alert" in segments[1].risk_factors

    def test_no_data_anywhere_uses_neutral(self, settings):
        segments = SegmentScorer(settings).score_route([ORIGIN, north(1500)], [], hour=12)
        assert [s.score for s in segments] == pytest.approx([3.5, 3.5])

    def test_locations_outside_radius_ignored(self, settings):
        profiles = [make_profile("far", east(800, north(500)), score=1.0)]
        segments = SegmentScorer(settings).score_route([ORIGIN, north(1000)], profiles, hour=12)
        assert segments[0].nearby_location_count == 0

    def test_unreviewed_location_is_predicted(self, settings):
        stats = AreaStatistics(crime_rate_per_1000=40.0, hate_crime_incidents=2, data_point_count=5)
        profiles = [make_profile("park", north(500), area_statistics=stats)]
        segments = SegmentScorer(settings).score_route([ORIGIN, north(1000)], profiles, hour=12)
        assert segments[0].score == pytest.approx(2.75)
        assert segments[0].confidence == pytest.approx(0.5)

    def test_contributing_demographics(self, settings):
        profile = make_profile(
            "a", north(500), score=3.0,
            slices=[SafetyScore("a", DemographicType.GENDER, "woman", 2.0, 3)],
        )
        segments = SegmentScorer(settings).score_route([ORIGIN, north(1000)], [profile], hour=12)
        assert segments[0].contributing_demographics == ("gender: woman",)
