"""
Market Data Processing.

Normalizes raw candle payloads into validated OHLCV DataFrames and prepares
per-instrument analysis windows. Exchange and stock-market adapters live
outside this package; they hand over candles in any of the accepted shapes:

- a pandas DataFrame with open/high/low/close[/volume] columns
- a list of dicts with the same keys (plus an optional timestamp/time/date)
- a list of ``Candle`` models
- a list of ``[timestamp, open, high, low, close, volume]`` rows

Numeric timestamps are interpreted as epoch milliseconds (UTC).
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from loguru import logger

from cdc_signals.config import ProcessorConfig
from cdc_signals.domain.schemas import Candle, MarketType
from cdc_signals.market.exceptions import DataError, MarketDataError

OHLCV_COLUMNS = ["open", "high", "low", "close", "volume"]
TIME_COLUMNS = ("timestamp", "time", "date", "datetime")
ROW_COLUMNS = ["timestamp", "open", "high", "low", "close", "volume"]


# =============================================================================
# NORMALIZATION
# =============================================================================


def _parse_timestamps(values: pd.Series) -> pd.DatetimeIndex:
    """Parse a timestamp column; numbers are epoch milliseconds."""
    try:
        if pd.api.types.is_numeric_dtype(values):
            parsed = pd.to_datetime(values, unit="ms", utc=True)
        else:
            parsed = pd.to_datetime(values, utc=True)
    except (ValueError, TypeError, OverflowError) as e:
        raise DataError(f"Unparseable timestamps: {e}") from e
    return pd.DatetimeIndex(parsed, name="timestamp")


def _frame_from_records(candles: Sequence[Any]) -> pd.DataFrame:
    first = candles[0]
    if isinstance(first, Candle):
        return pd.DataFrame([c.model_dump() for c in candles])
    if isinstance(first, dict):
        return pd.DataFrame(list(candles))
    if isinstance(first, (list, tuple, np.ndarray)):
        width = len(first)
        if width < 5 or any(len(row) != width for row in candles):
            raise DataError(
                "Candle rows must be [timestamp, open, high, low, close(, volume)]"
            )
        return pd.DataFrame([list(row) for row in candles], columns=ROW_COLUMNS[:width])
    raise DataError(f"Unsupported candle type: {type(first).__name__}")


def to_ohlcv_frame(candles: Any) -> pd.DataFrame:
    """
    Normalize candles into a validated OHLCV DataFrame.

    The result has float64 ``open/high/low/close/volume`` columns. The index is
    a UTC DatetimeIndex when timestamps are available, otherwise a RangeIndex.
    A missing volume column is filled with zeros.

    Raises:
        DataError: Missing columns, non-numeric or non-finite prices,
            non-positive prices, or timestamps that are not strictly increasing
    """
    if isinstance(candles, pd.DataFrame):
        df = candles.copy()
    elif candles is None or len(candles) == 0:
        return pd.DataFrame(columns=OHLCV_COLUMNS, dtype=np.float64)
    else:
        df = _frame_from_records(candles)

    df.columns = [str(c).lower() for c in df.columns]

    time_column = next((c for c in TIME_COLUMNS if c in df.columns), None)
    if time_column is not None:
        df.index = _parse_timestamps(df[time_column])
    elif isinstance(df.index, pd.DatetimeIndex):
        index = df.index if df.index.tz is not None else df.index.tz_localize("UTC")
        df.index = index.rename("timestamp")
    else:
        df = df.reset_index(drop=True)

    missing = [c for c in OHLCV_COLUMNS[:4] if c not in df.columns]
    if missing:
        raise DataError(f"Missing OHLCV columns: {missing}")
    if "volume" not in df.columns:
        df["volume"] = 0.0

    try:
        df = df[OHLCV_COLUMNS].apply(pd.to_numeric).astype(np.float64)
    except (ValueError, TypeError) as e:
        raise DataError(f"Non-numeric OHLCV values: {e}") from e

    if df.empty:
        return df

    values = df.to_numpy()
    if not np.isfinite(values).all():
        raise DataError("OHLCV data contains NaN or infinite values")
    if (df[["open", "high", "low", "close"]] <= 0).any().any():
        raise DataError("OHLCV prices must be positive")

    if isinstance(df.index, pd.DatetimeIndex):
        if not (df.index.is_monotonic_increasing and df.index.is_unique):
            raise DataError("Candle timestamps must be strictly increasing")

    return df


def to_price_array(prices: Any) -> np.ndarray:
    """Convert a closing-price sequence to a validated float64 array."""
    try:
        array = np.asarray(prices, dtype=np.float64)
    except (ValueError, TypeError) as e:
        raise DataError(f"Non-numeric prices: {e}") from e
    if array.ndim != 1:
        raise DataError(f"Expected a 1-D price series, got shape {array.shape}")
    if not np.isfinite(array).all():
        raise DataError("Price series contains non-finite values")
    return array


def load_candles_csv(path: Path | str) -> pd.DataFrame:
    """Read a CSV export (timestamp/time/date + OHLCV columns) into a frame."""
    path = Path(path)
    try:
        raw = pd.read_csv(path)
    except FileNotFoundError as e:
        raise MarketDataError(f"Candle file not found: {path}") from e
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
        raise MarketDataError(f"Unreadable candle file {path}: {e}") from e

    logger.debug(f"[PROCESSOR] Loaded {len(raw)} rows from {path}")
    return to_ohlcv_frame(raw)


# =============================================================================
# ANALYSIS WINDOWS
# =============================================================================


@dataclass(frozen=True)
class ProcessingStats:
    """
    Counters produced by one or more ``prepare_for_analysis`` calls.

    Each call returns its own stats value; callers combine them with ``merge``.
    Rates are rounded percentages of processed symbols.
    """

    processed_symbols: int = 0
    total_data_points: int = 0
    limited_symbols: int = 0
    rejected_symbols: int = 0

    def merge(self, other: "ProcessingStats") -> "ProcessingStats":
        return ProcessingStats(
            processed_symbols=self.processed_symbols + other.processed_symbols,
            total_data_points=self.total_data_points + other.total_data_points,
            limited_symbols=self.limited_symbols + other.limited_symbols,
            rejected_symbols=self.rejected_symbols + other.rejected_symbols,
        )

    @property
    def average_data_points(self) -> int:
        if self.processed_symbols == 0:
            return 0
        return round(self.total_data_points / self.processed_symbols)

    @property
    def limiting_rate(self) -> int:
        if self.processed_symbols == 0:
            return 0
        return round(self.limited_symbols / self.processed_symbols * 100)

    @property
    def rejection_rate(self) -> int:
        if self.processed_symbols == 0:
            return 0
        return round(self.rejected_symbols / self.processed_symbols * 100)

    def to_dict(self) -> dict:
        return {
            "processed_symbols": self.processed_symbols,
            "total_data_points": self.total_data_points,
            "limited_symbols": self.limited_symbols,
            "rejected_symbols": self.rejected_symbols,
            "average_data_points": self.average_data_points,
            "limiting_rate": self.limiting_rate,
            "rejection_rate": self.rejection_rate,
        }


@dataclass(frozen=True)
class PreparedMarketData:
    """Analysis window for one instrument."""

    symbol: str
    market_type: MarketType
    candles: pd.DataFrame
    latest_price: float
    data_source: str
    original_length: int

    @property
    def closes(self) -> np.ndarray:
        return self.candles["close"].to_numpy(dtype=np.float64)

    @property
    def processed_length(self) -> int:
        return len(self.candles)


class MarketDataProcessor:
    """
    Windowing and market-timing rules applied before analysis.

    - fewer than ``min_required_data`` candles: rejected
    - more than ``processing_window`` candles: keep the most recent ones
    - crypto: the latest candle is still forming and is dropped
    - stocks: the latest candle is dropped only during US trading hours
    """

    def __init__(self, config: Optional[ProcessorConfig] = None):
        self.config = config or ProcessorConfig()

    def is_stock_trading_hours(self, now: datetime) -> bool:
        """Weekday between the configured UTC open and close hours (inclusive)."""
        now = now.astimezone(timezone.utc) if now.tzinfo else now
        if now.weekday() >= 5:
            return False
        return (
            self.config.market_open_hour_utc
            <= now.hour
            <= self.config.market_close_hour_utc
        )

    def prepare_for_analysis(
        self,
        candles: Any,
        market_type: MarketType,
        symbol: str,
        now: Optional[datetime] = None,
    ) -> Tuple[Optional[PreparedMarketData], ProcessingStats]:
        """
        Build the analysis window for one instrument.

        Args:
            candles: Raw candles in any accepted shape, oldest first
            market_type: Decides whether the latest candle is complete
            symbol: Instrument identifier (for logging and the result)
            now: Clock used for the stock trading-hours rule (defaults to UTC now)

        Returns:
            Tuple of (PreparedMarketData or None when rejected, stats of this call)
        """
        df = to_ohlcv_frame(candles)
        stats = ProcessingStats(processed_symbols=1)
        original_length = len(df)

        if original_length < self.config.min_required_data:
            logger.info(
                f"[PROCESSOR] Insufficient data for {symbol}: {original_length} points "
                f"(need {self.config.min_required_data})"
            )
            return None, replace(stats, rejected_symbols=1)

        if original_length > self.config.processing_window:
            df = df.iloc[-self.config.processing_window :]
            stats = replace(stats, limited_symbols=1)
            logger.debug(
                f"[PROCESSOR] {symbol}: Limited from {original_length} to "
                f"{self.config.processing_window} points"
            )

        latest_price = float(df["close"].iloc[-1])
        market_type = MarketType(market_type)
        if market_type == MarketType.CRYPTO:
            df = df.iloc[:-1]
            data_source = "crypto_previous_close"
        elif self.is_stock_trading_hours(now or datetime.now(timezone.utc)):
            df = df.iloc[:-1]
            data_source = "stock_intraday_incomplete"
        else:
            data_source = "stock_complete_afterhours"

        stats = replace(stats, total_data_points=len(df))
        logger.debug(f"[PROCESSOR] {symbol}: Final analysis data: {len(df)} points")

        prepared = PreparedMarketData(
            symbol=symbol,
            market_type=market_type,
            candles=df,
            latest_price=latest_price,
            data_source=data_source,
            original_length=original_length,
        )
        return prepared, stats
