"""Unit tests for the structural analysis module."""

import numpy as np
import pytest

from cdc_signals.analysis.structural import (
    _extrema_core,
    _trendline_search_core,
    find_horizontal_level,
    find_peaks,
    find_trendline,
    find_troughs,
    group_by_price_level,
    round_half_up,
    warmup_jit,
)
from cdc_signals.config import ScoringConfig
from cdc_signals.domain.schemas import TrendDirection


@pytest.fixture
def zigzag():
    """Highs with clear peaks at 4 and 12 and a trough at 8."""
    return np.array(
        [1, 2, 3, 4, 9, 4, 3, 2, 0.5, 2, 3, 4, 8, 4, 3, 2, 1], dtype=np.float64
    )


class TestExtrema:
    def test_finds_peaks(self, zigzag):
        assert list(find_peaks(zigzag)) == [4, 12]

    def test_finds_troughs(self, zigzag):
        assert list(find_troughs(zigzag)) == [8]

    def test_edges_are_never_extrema(self):
        values = np.array([10, 1, 1, 1, 1, 1, 1, 10], dtype=np.float64)
        assert len(find_peaks(values)) == 0

    def test_plateau_is_not_a_peak(self):
        values = np.array([1, 2, 3, 5, 5, 3, 2, 1, 0], dtype=np.float64)
        assert len(find_peaks(values)) == 0

    def test_window_parameter(self, zigzag):
        assert list(_extrema_core(zigzag, 1, True)) == [4, 12]
        assert list(_extrema_core(zigzag, 4, True)) == [4, 12]
        # Both peaks sit too close to an edge for a 5-bar window
        assert len(_extrema_core(zigzag, 5, True)) == 0

    def test_short_input(self):
        assert len(find_peaks(np.array([1.0, 2.0, 1.0]))) == 0


class TestPriceLevels:
    def test_groups_relative_to_seed(self):
        prices = np.array([100.0, 0, 101.5, 0, 103.0, 0, 100.5], dtype=np.float64)
        indices = np.array([0, 2, 4, 6])
        groups = group_by_price_level(indices, prices, 0.02)
        # 103 is 3% from the seed 100 even though it is close to 101.5
        assert groups == [[0, 2, 6]]

    def test_singletons_are_dropped(self):
        prices = np.array([100.0, 150.0, 200.0])
        assert group_by_price_level(np.array([0, 1, 2]), prices, 0.02) == []

    def test_horizontal_level(self):
        prices = np.array([110.0, 0, 110.0, 0, 111.0, 0, 90.0], dtype=np.float64)
        level = find_horizontal_level(np.array([0, 2, 4, 6]), prices, 0.02, 3)

        assert level is not None
        assert level.price == pytest.approx(110.3333, rel=1e-4)
        assert level.start_index == 0
        assert level.end_index == 4
        assert level.touch_count == 3
        assert level.touch_points[2].deviation == pytest.approx(0.6667 / 110.3333, rel=1e-3)

    def test_horizontal_level_needs_min_touches(self):
        prices = np.array([110.0, 110.0, 90.0])
        assert find_horizontal_level(np.array([0, 1, 2]), prices, 0.02, 3) is None


class TestTrendline:
    @pytest.fixture
    def rising_lows(self):
        lows = np.full(60, 200.0)
        for idx, price in [(14, 89.5), (26, 93.5), (38, 97.5), (50, 101.5)]:
            lows[idx] = price
        return np.array([14, 26, 38, 50]), lows

    def test_ascending_fit(self, rising_lows):
        indices, lows = rising_lows
        line = find_trendline(indices, lows, TrendDirection.ASCENDING, 0.02, 3)

        assert line is not None
        assert line.slope == pytest.approx(1 / 3)
        assert line.start_index == 14
        assert line.touch_count == 4
        # 4 touches * 20 + perfect fit 30 + slope bonus 3.33
        assert line.score == 113
        assert line.price_at(59) == pytest.approx(104.5)

    def test_direction_mismatch(self, rising_lows):
        indices, lows = rising_lows
        assert find_trendline(indices, lows, TrendDirection.DESCENDING, 0.02, 3) is None

    def test_flat_points_have_no_sloped_line(self):
        prices = np.full(10, 100.0)
        indices = np.array([1, 4, 7])
        assert find_trendline(indices, prices, TrendDirection.ASCENDING, 0.02, 3) is None

    def test_too_few_candidates(self, rising_lows):
        _, lows = rising_lows
        assert find_trendline(np.array([14, 26]), lows, TrendDirection.ASCENDING, 0.02, 3) is None

    def test_first_best_pair_is_kept(self, rising_lows):
        indices, lows = rising_lows
        best_i, best_j, score = _trendline_search_core(
            indices, lows, True, 0.02, 3, 20.0, 30.0, 10.0, 20.0
        )
        # Every pair lies on the same line, only a strictly better score replaces
        assert (best_i, best_j) == (0, 1)
        assert score == 113.0

    def test_custom_weights(self, rising_lows):
        indices, lows = rising_lows
        scoring = ScoringConfig(trendline_touch_weight=10.0)
        line = find_trendline(indices, lows, TrendDirection.ASCENDING, 0.02, 3, scoring)
        assert line.score == 73


def test_round_half_up():
    assert round_half_up(84.5) == 85
    assert round_half_up(84.49) == 84
    assert round_half_up(2.5) == 3


def test_warmup_jit_runs():
    warmup_jit()
