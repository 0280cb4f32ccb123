"""Pattern analysis module for detecting triangle chart patterns."""

from dataclasses import dataclass
from typing import Any, List, Optional, Union

import numpy as np
from loguru import logger

from cdc_signals.analysis.structural import (
    find_horizontal_level,
    find_peaks,
    find_trendline,
    find_troughs,
    round_half_up,
)
from cdc_signals.config import PatternConfig
from cdc_signals.domain.enums import AlertMessages, PatternRejection
from cdc_signals.domain.schemas import (
    AlertType,
    AscendingTriangle,
    BreakoutState,
    BreakoutStatus,
    Convergence,
    DescendingTriangle,
    HorizontalLine,
    PatternAlert,
    PatternDirection,
    PatternResult,
    PatternType,
    Reliability,
    SlopedLine,
    SymmetricalTriangle,
    TradeLevels,
    TradingPlan,
    TrendDirection,
)
from cdc_signals.market.data_processor import to_ohlcv_frame

Line = Union[HorizontalLine, SlopedLine]

_TRIANGLE_MODELS = {
    PatternType.ASCENDING: AscendingTriangle,
    PatternType.DESCENDING: DescendingTriangle,
    PatternType.SYMMETRICAL: SymmetricalTriangle,
}


@dataclass
class _Window:
    """Arrays of the analysed window plus its extrema positions."""

    highs: np.ndarray
    lows: np.ndarray
    closes: np.ndarray
    volumes: np.ndarray
    peaks: np.ndarray
    troughs: np.ndarray

    @property
    def size(self) -> int:
        return len(self.closes)


@dataclass
class _Candidate:
    """A triangle that passed its acceptance threshold."""

    pattern_type: PatternType
    resistance: Line
    support: Line
    confidence: int
    convergence: Convergence


class PatternAnalyzer:
    """
    Triangle recognizer over the most recent ``max_bars`` candles.

    Ascending, descending and symmetrical triangles are fitted independently
    from the same extrema. The most confident accepted candidate is checked for
    width, evaluated for breakout and turned into a trading plan.
    """

    def __init__(self, config: Optional[PatternConfig] = None):
        self.config = config or PatternConfig()
        self.scoring = self.config.scoring

    def detect_triangles(self, candles: Any, symbol: Optional[str] = None) -> PatternResult:
        """
        Detect the most confident triangle in the candle window.

        Args:
            candles: OHLCV candles (any shape accepted by ``to_ohlcv_frame``)
            symbol: Instrument identifier, carried into logs and the pattern

        Returns:
            PatternResult with the pattern, or with ``pattern=None`` and a reason
        """
        df = to_ohlcv_frame(candles)
        if len(df) < self.config.min_bars:
            return PatternResult(reason=PatternRejection.INSUFFICIENT_DATA.value)

        window = self._build_window(df.iloc[-self.config.max_bars :])

        candidates = [
            c
            for c in (
                self._detect_ascending(window),
                self._detect_descending(window),
                self._detect_symmetrical(window),
            )
            if c is not None
        ]
        if not candidates:
            return PatternResult(reason=PatternRejection.NO_PATTERN.value)

        best = candidates[0]
        for candidate in candidates[1:]:
            if candidate.confidence > best.confidence:
                best = candidate

        breakout = self._analyze_breakout(window, best)
        support_price = breakout.support_price
        height_ratio = (
            abs(breakout.resistance_price - support_price) / support_price
            if support_price > 0
            else float("inf")
        )
        if height_ratio > self.scoring.max_height_ratio:
            logger.info(
                f"[PATTERN] {symbol}: {best.pattern_type.value} rejected - "
                f"triangle too wide ({height_ratio * 100:.1f}% height)"
            )
            return PatternResult(reason=PatternRejection.TOO_WIDE.value)

        trading_plan = self._generate_trading_plan(best, breakout)
        formation_start = min(best.resistance.start_index, best.support.start_index)

        model = _TRIANGLE_MODELS[best.pattern_type]
        pattern = model(
            symbol=symbol,
            confidence=best.confidence,
            reliability=self._reliability(best.confidence),
            convergence=best.convergence,
            breakout=breakout,
            trading_plan=trading_plan,
            formation_bars=window.size - formation_start,
            window_bars=window.size,
            resistance=best.resistance,
            support=best.support,
        )

        logger.info(
            f"[PATTERN] {symbol}: {best.pattern_type.value} detected "
            f"({best.confidence}% confidence, {breakout.status.value})"
        )
        return PatternResult(pattern=pattern, confidence=best.confidence)

    # =========================================================================
    # TRIANGLE CANDIDATES
    # =========================================================================

    def _build_window(self, df) -> _Window:
        highs = df["high"].to_numpy(dtype=np.float64)
        lows = df["low"].to_numpy(dtype=np.float64)
        window_size = self.config.extremum_window
        return _Window(
            highs=highs,
            lows=lows,
            closes=df["close"].to_numpy(dtype=np.float64),
            volumes=df["volume"].to_numpy(dtype=np.float64),
            peaks=find_peaks(highs, window_size),
            troughs=find_troughs(lows, window_size),
        )

    def _horizontal(self, indices: np.ndarray, prices: np.ndarray) -> Optional[HorizontalLine]:
        return find_horizontal_level(
            indices, prices, self.config.tolerance, self.config.min_touch_points
        )

    def _sloped(
        self,
        indices: np.ndarray,
        prices: np.ndarray,
        direction: TrendDirection,
        min_start_index: int = 0,
    ) -> Optional[SlopedLine]:
        return find_trendline(
            indices[indices >= min_start_index],
            prices,
            direction,
            self.config.tolerance,
            self.config.min_touch_points,
            self.scoring,
        )

    def _detect_ascending(self, window: _Window) -> Optional[_Candidate]:
        """Horizontal resistance from peaks over rising support from troughs."""
        resistance = self._horizontal(window.peaks, window.highs)
        if resistance is None:
            return None
        support = self._sloped(
            window.troughs, window.lows, TrendDirection.ASCENDING, resistance.start_index
        )
        if support is None:
            return None
        return self._accept(
            PatternType.ASCENDING,
            resistance,
            support,
            window,
            self.scoring.ascending_threshold,
        )

    def _detect_descending(self, window: _Window) -> Optional[_Candidate]:
        """Falling resistance from peaks over horizontal support from troughs."""
        support = self._horizontal(window.troughs, window.lows)
        if support is None:
            return None
        resistance = self._sloped(
            window.peaks, window.highs, TrendDirection.DESCENDING, support.start_index
        )
        if resistance is None:
            return None
        return self._accept(
            PatternType.DESCENDING,
            resistance,
            support,
            window,
            self.scoring.descending_threshold,
        )

    def _detect_symmetrical(self, window: _Window) -> Optional[_Candidate]:
        """Falling resistance converging with rising support, both fitted on every extremum."""
        resistance = self._sloped(window.peaks, window.highs, TrendDirection.DESCENDING)
        if resistance is None:
            return None
        support = self._sloped(window.troughs, window.lows, TrendDirection.ASCENDING)
        if support is None:
            return None
        return self._accept(
            PatternType.SYMMETRICAL,
            resistance,
            support,
            window,
            self.scoring.symmetrical_threshold,
        )

    def _accept(
        self,
        pattern_type: PatternType,
        resistance: Line,
        support: Line,
        window: _Window,
        threshold: float,
    ) -> Optional[_Candidate]:
        convergence = self.calculate_convergence(resistance, support, window.size)
        confidence = self.calculate_confidence(resistance, support, window.volumes)
        if confidence < threshold:
            logger.debug(
                f"[PATTERN] {pattern_type.value} below threshold "
                f"({confidence} < {threshold:g})"
            )
            return None
        return _Candidate(pattern_type, resistance, support, confidence, convergence)

    # =========================================================================
    # SCORING
    # =========================================================================

    def touch_quality(self, line: Line) -> float:
        """More touches and a tighter fit score higher, capped per line."""
        if not line.touch_points:
            return 0.0
        quality = (
            line.touch_count * self.scoring.touch_point_weight
            + (1 - line.avg_deviation) * self.scoring.touch_accuracy_weight
        )
        return min(quality, self.scoring.touch_quality_cap)

    def calculate_convergence(self, resistance: Line, support: Line, window_size: int) -> Convergence:
        latest_index = window_size - 1
        resistance_price = resistance.price_at(latest_index)
        support_price = support.price_at(latest_index)
        avg_price = (resistance_price + support_price) / 2
        distance = abs(resistance_price - support_price) / avg_price if avg_price > 0 else 0.0
        quality = max(0.0, 1 - distance * self.scoring.convergence_decay)
        return Convergence(
            distance=distance,
            quality=min(quality, 1.0),
            resistance_price=resistance_price,
            support_price=support_price,
            avg_price=avg_price,
        )

    def volume_score(self, volumes: np.ndarray) -> float:
        """Volume contraction between the first and second half of the window."""
        positive = volumes[volumes > 0]
        if len(positive) < self.scoring.min_volume_samples:
            return 0.0
        half = len(positive) // 2
        first_avg = float(positive[:half].mean())
        second_avg = float(positive[half:].mean())
        decrease = (first_avg - second_avg) / first_avg
        return max(0.0, min(decrease * 100, self.scoring.volume_cap))

    @staticmethod
    def time_score(formation_bars: int) -> float:
        if 20 <= formation_bars <= 60:
            return 10.0
        if 15 <= formation_bars <= 80:
            return 7.0
        if 10 <= formation_bars <= 100:
            return 4.0
        return 0.0

    def calculate_confidence(self, resistance: Line, support: Line, volumes: np.ndarray) -> int:
        """
        Combine touch quality, convergence, volume contraction and duration.

        Result is rounded half-up and lies in ``[0, max_confidence]``.
        """
        scoring = self.scoring
        window_size = len(volumes)
        confidence = scoring.base_confidence

        confidence += (
            self.touch_quality(resistance) + self.touch_quality(support)
        ) * scoring.touch_quality_factor

        convergence = self.calculate_convergence(resistance, support, window_size)
        if convergence.distance > 0:
            confidence += min(
                convergence.quality * scoring.convergence_weight, scoring.convergence_cap
            )

        if self.config.volume_confirmation:
            confidence += self.volume_score(volumes) * scoring.volume_factor

        formation_start = min(resistance.start_index, support.start_index)
        confidence += self.time_score(window_size - formation_start) * scoring.time_factor

        return max(0, round_half_up(min(confidence, scoring.max_confidence)))

    def _reliability(self, confidence: int) -> Reliability:
        if confidence > self.scoring.high_reliability:
            return Reliability.HIGH
        if confidence > self.scoring.medium_reliability:
            return Reliability.MEDIUM
        return Reliability.LOW

    # =========================================================================
    # BREAKOUT & TRADING PLAN
    # =========================================================================

    def _analyze_breakout(self, window: _Window, candidate: _Candidate) -> BreakoutState:
        latest_index = window.size - 1
        close = float(window.closes[-1])
        resistance_price = candidate.resistance.price_at(latest_index)
        support_price = candidate.support.price_at(latest_index)
        threshold = self.config.breakout_threshold
        approach = self.scoring.approach_ratio

        upper = resistance_price * (1 + threshold)
        lower = support_price * (1 - threshold)

        direction = None
        if close > upper:
            status = BreakoutStatus.BREAKOUT_UP
            direction = PatternDirection.BULLISH
        elif close < lower:
            status = BreakoutStatus.BREAKOUT_DOWN
            direction = PatternDirection.BEARISH
        elif close > resistance_price * (1 - approach):
            status = BreakoutStatus.APPROACHING_RESISTANCE
        elif close < support_price * (1 + approach):
            status = BreakoutStatus.APPROACHING_SUPPORT
        else:
            status = BreakoutStatus.FORMING

        return BreakoutState(
            status=status,
            direction=direction,
            resistance_price=resistance_price,
            support_price=support_price,
            upper_breakout=upper,
            lower_breakout=lower,
            current_price=close,
            distance_to_upper_pct=(upper - close) / close * 100,
            distance_to_lower_pct=(close - lower) / close * 100,
        )

    def _generate_trading_plan(self, candidate: _Candidate, breakout: BreakoutState) -> TradingPlan:
        scoring = self.scoring
        upper = breakout.upper_breakout
        lower = breakout.lower_breakout
        height = abs(breakout.resistance_price - breakout.support_price)
        risk = upper - lower

        long_target_1 = upper + height * scoring.fib_extension
        long = TradeLevels(
            trigger=upper,
            stop_loss=lower,
            target_1=long_target_1,
            target_2=upper + height,
            risk_reward=(long_target_1 - upper) / risk if risk else 0.0,
        )

        # Short targets are percentage moves so they never go negative
        height_pct = height / lower
        short_target_1 = lower * (1 - min(height_pct * scoring.fib_extension, scoring.short_target_1_cap))
        short = TradeLevels(
            trigger=lower,
            stop_loss=upper,
            target_1=short_target_1,
            target_2=lower * (1 - min(height_pct, scoring.short_target_2_cap)),
            risk_reward=(lower - short_target_1) / risk if risk else 0.0,
        )

        return TradingPlan(
            long=long,
            short=short,
            alerts=self._build_alerts(candidate.pattern_type, breakout),
        )

    def _build_alerts(self, pattern_type: PatternType, breakout: BreakoutState) -> List[PatternAlert]:
        upper = breakout.upper_breakout
        lower = breakout.lower_breakout
        name = pattern_type.value

        if pattern_type == PatternType.ASCENDING:
            alerts = [
                PatternAlert(
                    type=AlertType.BULLISH_BIAS,
                    message=AlertMessages.BULLISH_BIAS.value.format(pattern=name, level=upper),
                )
            ]
        elif pattern_type == PatternType.DESCENDING:
            alerts = [
                PatternAlert(
                    type=AlertType.BEARISH_BIAS,
                    message=AlertMessages.BEARISH_BIAS.value.format(pattern=name, level=lower),
                )
            ]
        else:
            alerts = [
                PatternAlert(
                    type=AlertType.NEUTRAL_BIAS,
                    message=AlertMessages.NEUTRAL_BIAS.value.format(pattern=name),
                )
            ]

        proximity = self.scoring.alert_proximity_pct
        if breakout.distance_to_upper_pct < proximity:
            alerts.append(
                PatternAlert(
                    type=AlertType.RESISTANCE_APPROACH,
                    message=AlertMessages.RESISTANCE_APPROACH.value.format(
                        level=upper, distance=breakout.distance_to_upper_pct
                    ),
                )
            )
        if breakout.distance_to_lower_pct < proximity:
            alerts.append(
                PatternAlert(
                    type=AlertType.SUPPORT_APPROACH,
                    message=AlertMessages.SUPPORT_APPROACH.value.format(
                        level=lower, distance=breakout.distance_to_lower_pct
                    ),
                )
            )
        return alerts
