"""
Signal Generator Module.

This module orchestrates market data preparation, the CDC Action Zone
indicator and triangle pattern recognition to generate trading signal events.
Crossover and pattern results are reported as independent events; they are
never merged into a single verdict.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

import pandas as pd
from loguru import logger

from cdc_signals.analysis.indicators import TechnicalIndicators
from cdc_signals.analysis.patterns import PatternAnalyzer
from cdc_signals.config import IndicatorConfig
from cdc_signals.domain.schemas import (
    BreakoutStatus,
    CrossoverSignal,
    MarketType,
    PatternDirection,
    PatternResult,
    SignalEvent,
    SignalType,
    SignalValue,
    get_deterministic_id,
)
from cdc_signals.market.data_processor import MarketDataProcessor, ProcessingStats

# Confirmed crossovers are reported with a fixed confidence
CROSSOVER_CONFIDENCE = 85.0


class Instrument(NamedTuple):
    """Candles of one instrument queued for a scan."""

    symbol: str
    candles: Any
    market_type: MarketType = MarketType.CRYPTO


@dataclass
class ScanReport:
    """Outcome of a multi-instrument scan."""

    events: List[SignalEvent] = field(default_factory=list)
    stats: ProcessingStats = field(default_factory=ProcessingStats)
    errors: Dict[str, str] = field(default_factory=dict)


def determine_pattern_signal(pattern: Any) -> Optional[SignalValue]:
    """
    Map a triangle's breakout state to a signal.

    A breakout counts only when it agrees with the pattern's bias (neutral
    patterns accept both directions); a breakout against the bias is WATCH.
    Price approaching either line is WATCH. A pattern still forming gives None.
    """
    if pattern is None:
        return None

    status = pattern.breakout.status
    direction = pattern.direction

    if status == BreakoutStatus.BREAKOUT_UP:
        if direction in (PatternDirection.BULLISH, PatternDirection.NEUTRAL):
            return SignalValue.BUY
        return SignalValue.WATCH
    if status == BreakoutStatus.BREAKOUT_DOWN:
        if direction in (PatternDirection.BEARISH, PatternDirection.NEUTRAL):
            return SignalValue.SELL
        return SignalValue.WATCH
    if status in (
        BreakoutStatus.APPROACHING_RESISTANCE,
        BreakoutStatus.APPROACHING_SUPPORT,
    ):
        return SignalValue.WATCH
    return None


def aggregate(
    symbol: str,
    crossover: CrossoverSignal,
    pattern_result: Optional[PatternResult],
    price: float,
    market_type: MarketType = MarketType.CRYPTO,
    timestamp: Optional[datetime] = None,
) -> List[SignalEvent]:
    """
    Combine a crossover and a pattern result into zero, one or two events.

    Args:
        symbol: Instrument identifier
        crossover: Result of the EMA crossover check
        pattern_result: Result of the triangle scan (may be None)
        price: Latest price of the instrument
        market_type: Market the instrument trades on
        timestamp: Event time (defaults to UTC now); part of the event id

    Returns:
        List[SignalEvent]: crossover event first, then the pattern event
    """
    timestamp = timestamp or datetime.now(timezone.utc)
    events: List[SignalEvent] = []

    def _event_id(event_type: SignalType, signal: SignalValue) -> str:
        return get_deterministic_id(
            f"{symbol}|{event_type.value}|{signal.value}|{timestamp.isoformat()}"
        )

    if crossover.value != SignalValue.HOLD:
        events.append(
            SignalEvent(
                event_id=_event_id(SignalType.CDC_ACTION_ZONE, crossover.value),
                event_type=SignalType.CDC_ACTION_ZONE,
                signal=crossover.value,
                symbol=symbol,
                market_type=market_type,
                price=price,
                confidence=CROSSOVER_CONFIDENCE,
                crossover=crossover,
                timestamp=timestamp,
            )
        )

    pattern = pattern_result.pattern if pattern_result is not None else None
    pattern_signal = determine_pattern_signal(pattern)
    if pattern_signal is not None:
        events.append(
            SignalEvent(
                event_id=_event_id(SignalType.PATTERN_ALERT, pattern_signal),
                event_type=SignalType.PATTERN_ALERT,
                signal=pattern_signal,
                symbol=symbol,
                market_type=market_type,
                price=price,
                confidence=pattern.confidence,
                pattern_type=pattern.pattern_type,
                pattern_direction=pattern.direction,
                breakout_status=pattern.breakout.status,
                timestamp=timestamp,
            )
        )

    return events


class SignalGenerator:
    """Orchestrates signal generation from market data."""

    def __init__(
        self,
        indicators: Optional[TechnicalIndicators] = None,
        pattern_analyzer: Optional[PatternAnalyzer] = None,
        processor: Optional[MarketDataProcessor] = None,
        indicator_config: Optional[IndicatorConfig] = None,
    ):
        """
        Initialize the SignalGenerator.

        Args:
            indicators: Crossover engine (dependency injection). Defaults to
                a new TechnicalIndicators instance.
            pattern_analyzer: Triangle recognizer (dependency injection).
            processor: Windowing rules applied before analysis.
            indicator_config: EMA periods.
        """
        self.indicators = indicators or TechnicalIndicators()
        self.pattern_analyzer = pattern_analyzer or PatternAnalyzer()
        self.processor = processor or MarketDataProcessor()
        self.indicator_config = indicator_config or IndicatorConfig()

    def generate_signals(
        self,
        symbol: str,
        candles: Any,
        market_type: MarketType = MarketType.CRYPTO,
        now: Optional[datetime] = None,
    ) -> Tuple[List[SignalEvent], ProcessingStats]:
        """
        Generate signal events for one instrument.

        Process:
        1. Prepare the analysis window (drop incomplete candle, limit length).
        2. Run the EMA crossover check on complete closes.
        3. Run the triangle scan on complete candles.
        4. Aggregate both results into events priced at the latest close.

        Returns:
            Tuple of (events, processing stats of this call)
        """
        now = now or datetime.now(timezone.utc)
        prepared, stats = self.processor.prepare_for_analysis(
            candles, market_type, symbol, now=now
        )
        if prepared is None:
            return [], stats

        logger.debug(
            f"[SIGNALS] {symbol} ({prepared.market_type.value}) - {prepared.data_source} "
            f"({prepared.processed_length}/{prepared.original_length} points)"
        )

        crossover = self.indicators.analyze(
            prepared.closes,
            self.indicator_config.fast_period,
            self.indicator_config.slow_period,
        )
        pattern_result = self.pattern_analyzer.detect_triangles(prepared.candles, symbol)

        index = prepared.candles.index
        if isinstance(index, pd.DatetimeIndex) and len(index):
            timestamp = index[-1].to_pydatetime()
        else:
            timestamp = now

        events = aggregate(
            symbol,
            crossover,
            pattern_result,
            prepared.latest_price,
            prepared.market_type,
            timestamp,
        )
        for event in events:
            logger.info(
                f"[SIGNALS] {symbol}: {event.event_type.value} {event.signal.value} "
                f"@ {event.price} ({event.confidence:g}%)"
            )
        return events, stats

    def scan(
        self,
        universe: Iterable[Instrument],
        max_workers: int = 4,
        now: Optional[datetime] = None,
    ) -> ScanReport:
        """
        Analyse many instruments concurrently.

        Each instrument runs on its own worker with no shared mutable state.
        An instrument whose analysis raises is recorded in ``errors`` and the
        remaining instruments still complete. Events keep the input order.
        """
        instruments = list(universe)
        now = now or datetime.now(timezone.utc)
        results: Dict[str, List[SignalEvent]] = {}
        report = ScanReport()

        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            future_to_symbol = {
                executor.submit(
                    self.generate_signals, inst.symbol, inst.candles, inst.market_type, now
                ): inst.symbol
                for inst in instruments
            }
            for future in as_completed(future_to_symbol):
                symbol = future_to_symbol[future]
                try:
                    events, stats = future.result()
                except Exception as e:
                    logger.opt(exception=True).error(
                        f"[SIGNALS] Error detecting signals for {symbol}: {e}"
                    )
                    report.errors[symbol] = str(e)
                    continue
                results[symbol] = events
                report.stats = report.stats.merge(stats)

        for inst in instruments:
            report.events.extend(results.get(inst.symbol, []))

        logger.info(
            f"[SIGNALS] Scan complete: {len(report.events)} events from "
            f"{len(instruments)} instruments ({len(report.errors)} errors) | "
            f"stats={report.stats.to_dict()}"
        )
        return report
