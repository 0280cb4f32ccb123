"""Unit tests for the triangle pattern analyzer."""

import json

import numpy as np
import pandas as pd
import pytest

from cdc_signals.analysis.patterns import PatternAnalyzer
from cdc_signals.config import PatternConfig, ScoringConfig
from cdc_signals.domain.enums import PatternRejection
from cdc_signals.domain.schemas import (
    AlertType,
    AscendingTriangle,
    BreakoutStatus,
    DescendingTriangle,
    PatternDirection,
    PatternResult,
    PatternType,
    Reliability,
    SymmetricalTriangle,
)
from tests.candle_helpers import (
    ASCENDING_ANCHORS,
    SYMMETRICAL_LATE_RESISTANCE_ANCHORS,
    build_candles,
)


@pytest.fixture
def analyzer():
    return PatternAnalyzer()


class TestAscendingTriangle:
    def test_detects_pattern(self, analyzer, ascending_candles):
        result = analyzer.detect_triangles(ascending_candles, "BTC/USDT")
        pattern = result.pattern

        assert isinstance(pattern, AscendingTriangle)
        assert pattern.pattern_type == PatternType.ASCENDING
        assert pattern.direction == PatternDirection.BULLISH
        assert pattern.symbol == "BTC/USDT"
        assert result.confidence == pattern.confidence == 84
        assert pattern.reliability == Reliability.HIGH
        assert result.reason is None

    def test_geometry(self, analyzer, ascending_candles):
        pattern = analyzer.detect_triangles(ascending_candles).pattern

        assert pattern.resistance.price == pytest.approx(110.5)
        assert pattern.resistance.touch_count == 4
        assert pattern.resistance.start_index == 8
        assert pattern.support.slope == pytest.approx(1 / 3)
        assert pattern.support.touch_count == 4
        assert pattern.formation_bars == 52
        assert pattern.window_bars == 60

    def test_breakout_state(self, analyzer, ascending_candles):
        breakout = analyzer.detect_triangles(ascending_candles).pattern.breakout

        assert breakout.status == BreakoutStatus.FORMING
        assert breakout.direction is None
        assert breakout.resistance_price == pytest.approx(110.5)
        assert breakout.support_price == pytest.approx(104.5)
        assert breakout.upper_breakout == pytest.approx(112.1575)
        assert breakout.lower_breakout == pytest.approx(102.9325)
        assert breakout.current_price == pytest.approx(107.0)
        assert breakout.distance_to_upper_pct == pytest.approx(5.1175 / 107 * 100)

    def test_trading_plan(self, analyzer, ascending_candles):
        plan = analyzer.detect_triangles(ascending_candles).pattern.trading_plan

        assert plan.long.trigger == pytest.approx(112.1575)
        assert plan.long.stop_loss == pytest.approx(102.9325)
        assert plan.long.target_1 == pytest.approx(115.8655)
        assert plan.long.target_2 == pytest.approx(118.1575)
        assert plan.long.risk_reward == pytest.approx(3.708 / 9.225)

        assert plan.short.trigger == pytest.approx(102.9325)
        assert plan.short.stop_loss == pytest.approx(112.1575)
        assert plan.short.target_1 == pytest.approx(99.2245)
        assert plan.short.target_2 == pytest.approx(96.9325)
        assert plan.short.risk_reward == pytest.approx(3.708 / 9.225)

        assert [a.type for a in plan.alerts] == [AlertType.BULLISH_BIAS]
        assert "Watch for breakout above 112.1575" in plan.alerts[0].message

    def test_breakout_up(self, analyzer, ascending_breakout_candles):
        pattern = analyzer.detect_triangles(ascending_breakout_candles).pattern

        assert pattern.breakout.status == BreakoutStatus.BREAKOUT_UP
        assert pattern.breakout.direction == PatternDirection.BULLISH
        alert_types = [a.type for a in pattern.trading_plan.alerts]
        assert AlertType.RESISTANCE_APPROACH in alert_types

    def test_breakout_down(self, analyzer):
        # Bounce to 106 sits inside the edge bars, so the extrema are unchanged
        candles = build_candles(ASCENDING_ANCHORS[:-1] + [(57, 106), (59, 100)])
        pattern = analyzer.detect_triangles(candles).pattern

        assert pattern.confidence == 84
        assert pattern.breakout.status == BreakoutStatus.BREAKOUT_DOWN
        assert pattern.breakout.direction == PatternDirection.BEARISH
        assert pattern.breakout.distance_to_lower_pct == pytest.approx(-2.9325)
        alert_types = [a.type for a in pattern.trading_plan.alerts]
        assert alert_types == [AlertType.BULLISH_BIAS, AlertType.SUPPORT_APPROACH]

    def test_approaching_resistance(self, analyzer):
        candles = build_candles(ASCENDING_ANCHORS[:-1] + [(59, 111)])
        pattern = analyzer.detect_triangles(candles).pattern

        assert pattern.confidence == 84
        assert pattern.breakout.status == BreakoutStatus.APPROACHING_RESISTANCE
        assert pattern.breakout.direction is None
        assert pattern.breakout.distance_to_upper_pct == pytest.approx(1.1575 / 111 * 100)
        alert_types = [a.type for a in pattern.trading_plan.alerts]
        assert alert_types == [AlertType.BULLISH_BIAS, AlertType.RESISTANCE_APPROACH]
        assert "at 112.1575 (1.0% away)" in pattern.trading_plan.alerts[1].message

    def test_approaching_support(self, analyzer):
        candles = build_candles(ASCENDING_ANCHORS[:-1] + [(57, 106), (59, 104)])
        pattern = analyzer.detect_triangles(candles).pattern

        assert pattern.breakout.status == BreakoutStatus.APPROACHING_SUPPORT
        assert pattern.breakout.direction is None
        assert pattern.breakout.distance_to_lower_pct == pytest.approx(1.0675 / 104 * 100)
        alert_types = [a.type for a in pattern.trading_plan.alerts]
        assert alert_types == [AlertType.BULLISH_BIAS, AlertType.SUPPORT_APPROACH]

    def test_without_volume_confirmation(self, ascending_candles):
        analyzer = PatternAnalyzer(PatternConfig(volume_confirmation=False))
        pattern = analyzer.detect_triangles(ascending_candles).pattern

        # The 4-point volume contraction bonus is gone
        assert pattern.confidence == 80
        assert pattern.reliability == Reliability.MEDIUM

    def test_accepts_raw_rows(self, analyzer, ascending_candles):
        rows = [
            [int(ts.timestamp() * 1000), r.open, r.high, r.low, r.close, r.volume]
            for ts, r in ascending_candles.iterrows()
        ]
        from_rows = analyzer.detect_triangles(rows)
        from_frame = analyzer.detect_triangles(ascending_candles)
        assert from_rows.model_dump() == from_frame.model_dump()


class TestOtherTriangles:
    def test_descending(self, analyzer, descending_candles):
        pattern = analyzer.detect_triangles(descending_candles, "ETH/USDT").pattern

        assert isinstance(pattern, DescendingTriangle)
        assert pattern.direction == PatternDirection.BEARISH
        assert pattern.confidence == 82
        assert pattern.support.price == pytest.approx(89.5)
        assert pattern.resistance.slope == pytest.approx(-1 / 3)
        assert pattern.breakout.status == BreakoutStatus.FORMING
        assert pattern.breakout.resistance_price == pytest.approx(95.5)
        assert pattern.trading_plan.alerts[0].type == AlertType.BEARISH_BIAS
        assert "breakdown below 88.1575" in pattern.trading_plan.alerts[0].message

    def test_symmetrical(self, analyzer, symmetrical_candles):
        pattern = analyzer.detect_triangles(symmetrical_candles).pattern

        assert isinstance(pattern, SymmetricalTriangle)
        assert pattern.direction == PatternDirection.NEUTRAL
        assert pattern.confidence == 74
        assert pattern.reliability == Reliability.MEDIUM
        assert pattern.resistance.slope == pytest.approx(-1 / 6)
        assert pattern.support.slope == pytest.approx(1 / 12)
        assert pattern.breakout.resistance_price == pytest.approx(102.0)
        assert pattern.breakout.support_price == pytest.approx(93.25)
        assert pattern.breakout.status == BreakoutStatus.FORMING
        assert pattern.trading_plan.alerts[0].type == AlertType.NEUTRAL_BIAS

    def test_symmetrical_support_uses_troughs_before_resistance(self, analyzer):
        candles = build_candles(SYMMETRICAL_LATE_RESISTANCE_ANCHORS)
        pattern = analyzer.detect_triangles(candles).pattern

        assert isinstance(pattern, SymmetricalTriangle)
        assert pattern.confidence == 80
        assert pattern.resistance.start_index == 26
        assert pattern.support.start_index == 8
        assert [t.index for t in pattern.support.touch_points] == [8, 20, 32, 44]
        assert pattern.support.slope == pytest.approx(1 / 6)
        assert pattern.resistance.slope == pytest.approx(-1 / 6)
        assert pattern.formation_bars == 52
        assert pattern.breakout.status == BreakoutStatus.FORMING


class TestRejections:
    def test_insufficient_data(self, analyzer, ascending_candles):
        result = analyzer.detect_triangles(ascending_candles.iloc[:19])
        assert result.pattern is None
        assert result.confidence == 0
        assert result.reason == PatternRejection.INSUFFICIENT_DATA.value

    def test_no_pattern_on_flat_data(self, analyzer, flat_candles):
        result = analyzer.detect_triangles(flat_candles)
        assert result.pattern is None
        assert result.reason == "No triangle patterns detected"

    def test_too_wide(self, analyzer, too_wide_candles):
        result = analyzer.detect_triangles(too_wide_candles)
        assert result.pattern is None
        assert result.confidence == 0
        assert "too wide" in result.reason

    def test_below_threshold(self, ascending_candles):
        config = PatternConfig(scoring=ScoringConfig(ascending_threshold=90))
        result = PatternAnalyzer(config).detect_triangles(ascending_candles)
        assert result.pattern is None
        assert result.reason == PatternRejection.NO_PATTERN.value

    def test_empty_input(self, analyzer):
        assert analyzer.detect_triangles([]).reason == "Insufficient data"


class TestScoringHelpers:
    def test_time_score_buckets(self):
        assert PatternAnalyzer.time_score(20) == 10
        assert PatternAnalyzer.time_score(60) == 10
        assert PatternAnalyzer.time_score(61) == 7
        assert PatternAnalyzer.time_score(15) == 7
        assert PatternAnalyzer.time_score(95) == 4
        assert PatternAnalyzer.time_score(9) == 0
        assert PatternAnalyzer.time_score(101) == 0

    def test_volume_score(self, analyzer):
        contracting = np.linspace(2000, 820, 60)
        assert analyzer.volume_score(contracting) == 20
        assert analyzer.volume_score(np.full(60, 1000.0)) == 0
        assert analyzer.volume_score(np.linspace(100, 2000, 60)) == 0
        # Fewer than 10 positive volumes
        assert analyzer.volume_score(np.array([0.0] * 50 + [5.0] * 9)) == 0

    def test_volume_score_partial(self, analyzer):
        volumes = np.array([100.0] * 10 + [95.0] * 10)
        assert analyzer.volume_score(volumes) == pytest.approx(5.0)


@pytest.mark.parametrize(
    "fixture_name",
    ["ascending_candles", "descending_candles", "symmetrical_candles", "too_wide_candles"],
)
def test_confidence_bounds(request, analyzer, fixture_name):
    result = analyzer.detect_triangles(request.getfixturevalue(fixture_name))
    assert 0 <= result.confidence <= 95


def test_result_round_trips_through_json(analyzer):
    result = analyzer.detect_triangles(build_candles(ASCENDING_ANCHORS), "SOL/USDT")
    payload = json.loads(result.model_dump_json())

    assert payload["pattern"]["pattern_type"] == "ASCENDING_TRIANGLE"
    assert payload["pattern"]["resistance"]["kind"] == "horizontal"
    assert payload["pattern"]["support"]["kind"] == "sloped"

    restored = PatternResult.model_validate(payload)
    assert isinstance(restored.pattern, AscendingTriangle)
    assert restored.pattern.confidence == result.confidence


def test_latest_max_bars_only(ascending_candles):
    # Noise older than the analysed window must not matter
    noise = pd.DataFrame(
        {
            "open": [500.0] * 10,
            "high": [900.0] * 10,
            "low": [10.0] * 10,
            "close": [500.0] * 10,
            "volume": [1.0] * 10,
        },
        index=pd.date_range(end="2023-12-31", periods=10, freq="D", tz="UTC"),
    )
    candles = pd.concat([noise, ascending_candles])
    analyzer = PatternAnalyzer(PatternConfig(max_bars=60))

    assert analyzer.detect_triangles(candles).model_dump() == (
        analyzer.detect_triangles(ascending_candles).model_dump()
    )
