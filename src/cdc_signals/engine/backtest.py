"""
Backtest Engine Module.

Replays the CDC Action Zone crossover over historical candles as a
single-position (FLAT/LONG) strategy:

- FLAT -> LONG when the fast EMA crosses above the slow EMA: all capital buys
  at the close
- LONG -> FLAT when the fast EMA crosses below the slow EMA: the whole
  position sells at the close

Every simulated bar is marked to market to track the peak value and the
maximum drawdown. Short selling is not simulated.
"""

from datetime import datetime
from typing import Any, List, Optional, Union

import numpy as np
import pandas as pd
from loguru import logger

from cdc_signals.analysis.indicators import TechnicalIndicators
from cdc_signals.config import BacktestConfig
from cdc_signals.domain.schemas import (
    BacktestPeriod,
    BacktestRequest,
    BacktestResult,
    BacktestTrade,
    TradeType,
)
from cdc_signals.market.data_processor import to_ohlcv_frame


class BacktestValidationError(ValueError):
    """Raised when a backtest cannot run on the given input."""


def parse_backtest_args(
    raw_args: Optional[str], config: Optional[BacktestConfig] = None
) -> Optional[BacktestRequest]:
    """
    Parse a ``SYMBOL DAYS`` command string (e.g. ``"btc 365"``).

    The symbol is upper-cased; days must be an integer within the configured
    range (30 to 1000 by default).

    Returns:
        BacktestRequest, or None when the arguments are invalid
    """
    config = config or BacktestConfig()
    args = raw_args.split() if raw_args else []
    if len(args) < 2:
        return None

    try:
        days = int(args[1])
    except ValueError:
        return None

    if days < config.min_days or days > config.max_days:
        return None
    return BacktestRequest(symbol=args[0].upper(), days=days)


def _candle_time(index: pd.Index, position: int) -> Union[datetime, int]:
    if isinstance(index, pd.DatetimeIndex):
        return index[position].to_pydatetime()
    return position


class BacktestEngine:
    """EMA crossover backtest simulator."""

    def __init__(self, config: Optional[BacktestConfig] = None):
        self.config = config or BacktestConfig()

    def run(
        self,
        candles: Any,
        days: int,
        initial_capital: Optional[float] = None,
        symbol: Optional[str] = None,
    ) -> BacktestResult:
        """
        Simulate the crossover strategy over the last ``days`` candles.

        EMAs are computed over the entire history so the simulated window
        starts with warmed-up averages.

        Args:
            candles: OHLCV candles, oldest first
            days: Number of trailing candles to simulate
            initial_capital: Starting capital (defaults to the configured value)
            symbol: Optional instrument identifier copied into the result

        Returns:
            BacktestResult with money and percentages rounded to 2 decimals

        Raises:
            BacktestValidationError: Empty or too-short input, or invalid
                days / initial_capital
        """
        capital = self.config.initial_capital if initial_capital is None else float(initial_capital)
        if capital <= 0:
            raise BacktestValidationError(f"Initial capital must be positive, got {capital}")
        if days < 1:
            raise BacktestValidationError(f"days must be >= 1, got {days}")

        df = to_ohlcv_frame(candles)
        if df.empty:
            raise BacktestValidationError("No candle data provided.")

        min_candles = self.config.min_candles
        if len(df) < min_candles:
            raise BacktestValidationError(
                f"Not enough data. Need at least {min_candles} candles, got {len(df)}."
            )

        fast_period = self.config.fast_period
        slow_period = self.config.slow_period
        df = TechnicalIndicators.add_ema_columns(df, fast_period, slow_period)
        closes = df["close"].to_numpy(dtype=np.float64)
        fast = df[f"EMA_{fast_period}"].to_numpy()
        slow = df[f"EMA_{slow_period}"].to_numpy()

        last_idx = len(df) - 1
        start_idx = max(slow_period - 1, last_idx - days + 1)

        initial = capital
        position = 0.0
        entry_price = 0.0
        in_position = False
        trades: List[BacktestTrade] = []
        peak_value = initial
        max_drawdown = 0.0

        for i in range(start_idx, last_idx + 1):
            # Crossovers need the previous bar's slow EMA
            if np.isnan(slow[i - 1]):
                continue

            prev_fast, cur_fast = fast[i - 1], fast[i]
            prev_slow, cur_slow = slow[i - 1], slow[i]
            price = float(closes[i])

            if not in_position and prev_fast <= prev_slow and cur_fast > cur_slow:
                position = capital / price
                entry_price = price
                in_position = True
                trades.append(
                    BacktestTrade(
                        type=TradeType.BUY,
                        price=price,
                        time=_candle_time(df.index, i),
                        capital=round(capital, 2),
                    )
                )
            elif in_position and prev_fast >= prev_slow and cur_fast < cur_slow:
                capital = position * price
                pnl = (price - entry_price) / entry_price * 100
                trades.append(
                    BacktestTrade(
                        type=TradeType.SELL,
                        price=price,
                        time=_candle_time(df.index, i),
                        capital=round(capital, 2),
                        pnl=round(pnl, 2),
                    )
                )
                in_position = False
                position = 0.0
                entry_price = 0.0

            current_value = position * price if in_position else capital
            if current_value > peak_value:
                peak_value = current_value
            drawdown = (peak_value - current_value) / peak_value * 100
            if drawdown > max_drawdown:
                max_drawdown = drawdown

        last_price = float(closes[-1])
        final_value = position * last_price if in_position else capital
        unrealized_pnl = (
            round((last_price - entry_price) / entry_price * 100, 2) if in_position else None
        )

        sells = [t for t in trades if t.type == TradeType.SELL]
        wins = sum(1 for t in sells if t.pnl > 0)
        losses = len(sells) - wins
        win_rate = wins / len(sells) * 100 if sells else 0.0

        result = BacktestResult(
            symbol=symbol,
            days=days,
            initial_capital=initial,
            final_value=round(final_value, 2),
            total_pnl=round((final_value - initial) / initial * 100, 2),
            total_trades=len(trades),
            completed_trades=len(sells),
            wins=wins,
            losses=losses,
            win_rate=round(win_rate, 2),
            max_drawdown=round(max_drawdown, 2),
            still_in_position=in_position,
            unrealized_pnl=unrealized_pnl,
            trades=trades,
            period=BacktestPeriod(
                from_=_candle_time(df.index, start_idx),
                to=_candle_time(df.index, last_idx),
            ),
        )

        logger.info(
            f"[BACKTEST] {symbol or 'series'}: {result.total_trades} trades, "
            f"pnl={result.total_pnl}%, max_drawdown={result.max_drawdown}%"
        )
        return result
