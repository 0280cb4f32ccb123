"""Structural analysis module for extremum extraction and trendline fitting.

This module implements the geometric primitives the triangle recognizer is
built on. Every routine works on index arrays into one shared price buffer
(the highs or lows of the analysed window), so no point objects are created
inside the O(N^2) trendline search.

Key Algorithms:
- Extremum scan: strict local maxima/minima within +/- ``window`` bars
- Price-level clustering: greedy grouping of extrema within a tolerance
- Trendline search: exhaustive pair search scored by touches, fit and slope
"""

import math
from typing import List, Optional

import numpy as np
from numba import njit

from cdc_signals.config import ScoringConfig
from cdc_signals.domain.schemas import (
    HorizontalLine,
    LinePoint,
    SlopedLine,
    TouchPoint,
    TrendDirection,
)


def warmup_jit() -> None:
    """Pre-compile Numba JIT functions to avoid first-call latency.

    Call this during application startup (e.g., in main.py) so the
    compilation happens before the first scan.

    Example:
        >>> from cdc_signals.analysis.structural import warmup_jit
        >>> warmup_jit()  # Call once during startup
    """
    dummy_prices = np.array(
        [100.0, 101.0, 103.0, 108.0, 103.0, 101.0, 100.0, 102.0, 99.0], dtype=np.float64
    )
    dummy_indices = np.array([1, 3, 7], dtype=np.int64)

    _extrema_core(dummy_prices, 3, True)
    _extrema_core(dummy_prices, 3, False)
    _trendline_search_core(
        dummy_indices, dummy_prices, True, 0.02, 2, 20.0, 30.0, 10.0, 20.0
    )


@njit(cache=True)
def _extrema_core(values: np.ndarray, window: int, find_peaks: bool) -> np.ndarray:
    """Return the positions of strict local extrema.

    A bar is a peak when its value is strictly greater than every other value
    within ``window`` bars on each side (strictly lower for troughs). Bars
    closer than ``window`` to either edge are never extrema.

    Args:
        values: Highs (for peaks) or lows (for troughs)
        window: Bars that must be dominated on each side
        find_peaks: True for peaks, False for troughs

    Returns:
        int64 array of bar positions in ascending order
    """
    n = len(values)
    out = np.empty(n, dtype=np.int64)
    count = 0

    for i in range(window, n - window):
        current = values[i]
        is_extremum = True
        for j in range(i - window, i + window + 1):
            if j == i:
                continue
            if find_peaks:
                if values[j] >= current:
                    is_extremum = False
                    break
            else:
                if values[j] <= current:
                    is_extremum = False
                    break
        if is_extremum:
            out[count] = i
            count += 1

    return out[:count]


@njit(cache=True)
def _trendline_search_core(
    indices: np.ndarray,
    prices: np.ndarray,
    ascending: bool,
    tolerance: float,
    min_touches: int,
    touch_weight: float,
    accuracy_weight: float,
    slope_weight: float,
    slope_cap: float,
):
    """Exhaustive pair search for the best-scoring trendline.

    Every pair (i < j) of candidate extrema defines a line. Pairs whose slope
    sign does not match ``ascending`` are skipped. Candidates within
    ``tolerance`` of the projected line count as touches; a line projecting a
    non-positive price at a candidate never touches it. Lines with at least
    ``min_touches`` touches are scored as::

        round(touch_weight * touches
              + accuracy_weight * (1 - mean_deviation)
              + min(slope_weight * |slope|, slope_cap))

    and only a strictly higher score replaces the current best.

    Args:
        indices: Bar positions of the candidate extrema, ascending
        prices: Shared price buffer indexed by bar position

    Returns:
        Tuple (best_i, best_j, best_score) where best_i/best_j index into
        ``indices``; (-1, -1, 0.0) when no line qualifies.
    """
    m = len(indices)
    best_i = -1
    best_j = -1
    best_score = 0.0

    for i in range(m - 1):
        x1 = indices[i]
        y1 = prices[x1]
        for j in range(i + 1, m):
            x2 = indices[j]
            slope = (prices[x2] - y1) / (x2 - x1)
            if ascending and slope <= 0.0:
                continue
            if not ascending and slope >= 0.0:
                continue

            touches = 0
            deviation_sum = 0.0
            for k in range(m):
                xk = indices[k]
                expected = y1 + slope * (xk - x1)
                if expected <= 0.0:
                    continue
                deviation = abs(prices[xk] - expected) / expected
                if deviation <= tolerance:
                    touches += 1
                    deviation_sum += deviation

            if touches < min_touches:
                continue

            raw = touch_weight * touches
            raw += accuracy_weight * (1.0 - deviation_sum / touches)
            raw += min(slope_weight * abs(slope), slope_cap)
            score = np.floor(raw + 0.5)

            if score > best_score:
                best_score = score
                best_i = i
                best_j = j

    return best_i, best_j, best_score


def find_peaks(highs: np.ndarray, window: int = 3) -> np.ndarray:
    """Bar positions of strict local maxima of ``highs``."""
    return _extrema_core(np.ascontiguousarray(highs, dtype=np.float64), window, True)


def find_troughs(lows: np.ndarray, window: int = 3) -> np.ndarray:
    """Bar positions of strict local minima of ``lows``."""
    return _extrema_core(np.ascontiguousarray(lows, dtype=np.float64), window, False)


def group_by_price_level(
    indices: np.ndarray, prices: np.ndarray, tolerance: float
) -> List[List[int]]:
    """Greedy clustering of extrema by price.

    Each unassigned extremum seeds a group and absorbs every later-visited
    unassigned extremum whose relative distance to the seed is within
    ``tolerance``. Only groups with at least two members are returned.
    """
    groups: List[List[int]] = []
    used = set()

    for seed in indices:
        seed = int(seed)
        if seed in used:
            continue
        used.add(seed)
        group = [seed]
        seed_price = prices[seed]

        for other in indices:
            other = int(other)
            if other in used:
                continue
            if abs(prices[other] - seed_price) / seed_price <= tolerance:
                group.append(other)
                used.add(other)

        if len(group) >= 2:
            groups.append(group)

    return groups


def find_horizontal_level(
    indices: np.ndarray,
    prices: np.ndarray,
    tolerance: float,
    min_touch_points: int,
) -> Optional[HorizontalLine]:
    """Build a flat support/resistance level from the densest price cluster.

    The largest cluster wins (the first one on ties) and must hold at least
    ``min_touch_points`` extrema. The level sits at the cluster mean; each
    touch records its deviation from that mean.
    """
    if len(indices) < min_touch_points:
        return None

    best: List[int] = []
    for group in group_by_price_level(indices, prices, tolerance):
        if len(group) > len(best):
            best = group

    if len(best) < min_touch_points:
        return None

    level = float(sum(prices[i] for i in best) / len(best))
    touches = [
        TouchPoint(
            index=i,
            price=float(prices[i]),
            expected_price=level,
            deviation=abs(float(prices[i]) - level) / level,
        )
        for i in best
    ]
    return HorizontalLine(
        price=level,
        touch_points=touches,
        start_index=min(best),
        end_index=max(best),
    )


def find_trendline(
    indices: np.ndarray,
    prices: np.ndarray,
    direction: TrendDirection,
    tolerance: float,
    min_touch_points: int,
    scoring: Optional[ScoringConfig] = None,
) -> Optional[SlopedLine]:
    """Fit the best ascending or descending trendline through extrema.

    Args:
        indices: Bar positions of candidate extrema (peaks or troughs)
        prices: Window highs or lows the positions point into
        direction: Required slope sign
        tolerance: Relative distance counted as a touch
        min_touch_points: Touches required for a valid line
        scoring: Trendline score weights

    Returns:
        SlopedLine or None when no pair yields enough touches
    """
    if len(indices) < min_touch_points:
        return None

    scoring = scoring or ScoringConfig()
    candidates = np.ascontiguousarray(indices, dtype=np.int64)
    buffer = np.ascontiguousarray(prices, dtype=np.float64)

    best_i, best_j, best_score = _trendline_search_core(
        candidates,
        buffer,
        direction == TrendDirection.ASCENDING,
        float(tolerance),
        int(min_touch_points),
        scoring.trendline_touch_weight,
        scoring.trendline_accuracy_weight,
        scoring.trendline_slope_weight,
        scoring.trendline_slope_cap,
    )
    if best_i < 0:
        return None

    start = LinePoint(index=int(candidates[best_i]), price=float(buffer[candidates[best_i]]))
    end = LinePoint(index=int(candidates[best_j]), price=float(buffer[candidates[best_j]]))
    slope = (end.price - start.price) / (end.index - start.index)

    touches = []
    for idx in candidates:
        expected = start.price + slope * (int(idx) - start.index)
        if expected <= 0:
            continue
        deviation = abs(float(buffer[idx]) - expected) / expected
        if deviation <= tolerance:
            touches.append(
                TouchPoint(
                    index=int(idx),
                    price=float(buffer[idx]),
                    expected_price=expected,
                    deviation=deviation,
                )
            )

    return SlopedLine(
        direction=direction,
        slope=slope,
        start_point=start,
        end_point=end,
        touch_points=touches,
        score=int(best_score),
    )


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards positive infinity."""
    return int(math.floor(value + 0.5))
