"""Market Data Exceptions."""


class MarketDataError(Exception):
    """Raised when market data loading or normalization fails."""


class DataError(MarketDataError):
    """Raised when candle data violates its invariants.

    Examples: missing OHLCV columns, non-finite prices, timestamps that are
    not strictly increasing.
    """
