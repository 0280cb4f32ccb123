"""CDC Action Zone indicator module (EMA 12/26 crossover)."""

from typing import List, Sequence

import numpy as np
import pandas as pd
import pandas_ta_classic as ta

from cdc_signals.domain.schemas import CrossoverSignal, SignalValue
from cdc_signals.market.data_processor import to_price_array


class TechnicalIndicators:
    """
    Exponential moving averages and the crossover rule built on them.

    All methods are pure functions of their inputs. Prices may be any sequence
    of floats, a numpy array or a pandas Series of closes.
    """

    @staticmethod
    def calculate_ema(prices: Sequence[float], period: int) -> List[float]:
        """
        Calculate an SMA-seeded exponential moving average.

        The first value is the simple mean of the first ``period`` prices, each
        following value is ``(price - prev) * 2 / (period + 1) + prev``. The
        result has ``len(prices) - period + 1`` values, or none when the series
        is shorter than the period. Element ``k`` belongs to price
        ``k + period - 1``.

        Args:
            prices: Closing prices, oldest first
            period: EMA length

        Returns:
            List[float]: EMA values

        Raises:
            ValueError: If period is lower than 1
            DataError: If a price is NaN or infinite
        """
        if period < 1:
            raise ValueError(f"EMA period must be >= 1, got {period}")

        values = to_price_array(prices)
        if len(values) < period:
            return []

        # sma=True seeds the recurrence with the mean of the first ``period`` closes
        ema = ta.ema(pd.Series(values), length=period, sma=True, talib=False)
        return ema.iloc[period - 1 :].tolist()

    @staticmethod
    def detect_crossover(
        fast_ema: Sequence[float], slow_ema: Sequence[float]
    ) -> SignalValue:
        """
        Compare the last two (fast, slow) pairs.

        BUY when the fast EMA moves from strictly below to strictly above the
        slow EMA, SELL on the mirror case, HOLD otherwise (including series
        with fewer than two values).
        """
        if len(fast_ema) < 2 or len(slow_ema) < 2:
            return SignalValue.HOLD

        prev_fast, cur_fast = fast_ema[-2], fast_ema[-1]
        prev_slow, cur_slow = slow_ema[-2], slow_ema[-1]

        if prev_fast < prev_slow and cur_fast > cur_slow:
            return SignalValue.BUY
        if prev_fast > prev_slow and cur_fast < cur_slow:
            return SignalValue.SELL
        return SignalValue.HOLD

    @classmethod
    def analyze(
        cls,
        prices: Sequence[float],
        fast_period: int = 12,
        slow_period: int = 26,
    ) -> CrossoverSignal:
        """
        Run the CDC Action Zone check on a closing price series.

        Fewer than ``slow_period + 2`` prices yields HOLD with no EMA values.
        """
        if len(prices) < slow_period + 2:
            return CrossoverSignal(value=SignalValue.HOLD)

        fast = cls.calculate_ema(prices, fast_period)
        slow = cls.calculate_ema(prices, slow_period)
        cur_fast, cur_slow = fast[-1], slow[-1]

        return CrossoverSignal(
            value=cls.detect_crossover(fast, slow),
            fast_ema=cur_fast,
            slow_ema=cur_slow,
            is_bull=cur_fast > cur_slow,
            is_bear=cur_fast < cur_slow,
        )

    @classmethod
    def add_ema_columns(
        cls, df: pd.DataFrame, fast_period: int = 12, slow_period: int = 26
    ) -> pd.DataFrame:
        """
        Add ``EMA_{fast}`` and ``EMA_{slow}`` columns aligned to the bars.

        Bars before each EMA's first value hold NaN. Returns the same frame.
        """
        closes = df["close"].to_numpy(dtype=np.float64)
        for period in (fast_period, slow_period):
            values = cls.calculate_ema(closes, period)
            column = np.full(len(closes), np.nan, dtype=np.float64)
            if values:
                column[period - 1 :] = values
            df[f"EMA_{period}"] = column
        return df
