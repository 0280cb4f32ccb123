"""
Data Schemas for CDC Signals.

This module defines the data contract shared by the indicator engine, the
triangle recognizer, the signal aggregator and the backtest simulator. All
models use Pydantic for validation and serialization, so every result can be
emitted with ``model_dump(mode="json")``.

Polymorphic results are tagged unions:
- TrendLine: discriminated on ``kind`` (horizontal or sloped)
- TrianglePattern: discriminated on ``pattern_type``
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# CONSTANTS
# =============================================================================

# Fixed namespace for deterministic UUID generation (uuid5)
# Using DNS namespace as a stable, well-known base
NAMESPACE_CDC = uuid.NAMESPACE_DNS


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================


def get_deterministic_id(key: str) -> str:
    """
    Generate a deterministic UUID5 from a key string.

    Uses a fixed namespace to ensure the same key always produces
    the same UUID across all executions.

    Args:
        key: A unique string to hash (e.g., "BTC/USDT|CDC_ACTION_ZONE|BUY|2024-01-15")

    Returns:
        str: A deterministic UUID string
    """
    return str(uuid.uuid5(NAMESPACE_CDC, key))


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================


class SignalValue(str, Enum):
    """Discrete trading signal."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    WATCH = "WATCH"


class SignalType(str, Enum):
    """Origin of a signal event."""

    CDC_ACTION_ZONE = "CDC_ACTION_ZONE"
    PATTERN_ALERT = "PATTERN_ALERT"


class MarketType(str, Enum):
    """Market the instrument trades on. Decides the incomplete-candle rule."""

    CRYPTO = "crypto"
    STOCKS = "stocks"


class PatternType(str, Enum):
    """Triangle classification."""

    ASCENDING = "ASCENDING_TRIANGLE"
    DESCENDING = "DESCENDING_TRIANGLE"
    SYMMETRICAL = "SYMMETRICAL_TRIANGLE"


class PatternDirection(str, Enum):
    """Expected breakout bias of a pattern."""

    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"


class Reliability(str, Enum):
    """Confidence bucket of a pattern."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class TrendDirection(str, Enum):
    """Direction of a sloped trendline."""

    ASCENDING = "ASCENDING"
    DESCENDING = "DESCENDING"


class BreakoutStatus(str, Enum):
    """Position of the latest close relative to the pattern boundaries."""

    FORMING = "FORMING"
    BREAKOUT_UP = "BREAKOUT_UP"
    BREAKOUT_DOWN = "BREAKOUT_DOWN"
    APPROACHING_RESISTANCE = "APPROACHING_RESISTANCE"
    APPROACHING_SUPPORT = "APPROACHING_SUPPORT"


class AlertType(str, Enum):
    """Trading plan alert category."""

    BULLISH_BIAS = "BULLISH_BIAS"
    BEARISH_BIAS = "BEARISH_BIAS"
    NEUTRAL_BIAS = "NEUTRAL_BIAS"
    RESISTANCE_APPROACH = "RESISTANCE_APPROACH"
    SUPPORT_APPROACH = "SUPPORT_APPROACH"


class TradeType(str, Enum):
    """Side of a simulated backtest trade."""

    BUY = "BUY"
    SELL = "SELL"


# =============================================================================
# MARKET DATA
# =============================================================================


class Candle(BaseModel):
    """A single OHLCV bar."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(..., description="Bar open time (UTC)")
    open: float = Field(..., description="Opening price")
    high: float = Field(..., description="Highest price")
    low: float = Field(..., description="Lowest price")
    close: float = Field(..., description="Closing price")
    volume: float = Field(default=0.0, ge=0, description="Traded volume")


# =============================================================================
# INDICATORS
# =============================================================================


class CrossoverSignal(BaseModel):
    """
    Result of the CDC Action Zone EMA crossover check.

    EMA values are None when the price series is too short to evaluate.
    """

    value: SignalValue = Field(..., description="BUY, SELL or HOLD")
    fast_ema: Optional[float] = Field(default=None, description="Latest fast EMA")
    slow_ema: Optional[float] = Field(default=None, description="Latest slow EMA")
    is_bull: bool = Field(default=False, description="Fast EMA above slow EMA")
    is_bear: bool = Field(default=False, description="Fast EMA below slow EMA")


# =============================================================================
# PATTERN GEOMETRY
# =============================================================================


class TouchPoint(BaseModel):
    """An extremum lying within tolerance of a trendline."""

    index: int = Field(..., description="Bar offset inside the analysed window")
    price: float
    expected_price: float = Field(..., description="Line value at this bar")
    deviation: float = Field(..., ge=0, description="|price - expected| / expected")


class LinePoint(BaseModel):
    """Anchor of a sloped trendline."""

    index: int
    price: float


class HorizontalLine(BaseModel):
    """Flat support or resistance level built from clustered extrema."""

    kind: Literal["horizontal"] = "horizontal"
    price: float = Field(..., description="Mean price of the clustered extrema")
    touch_points: List[TouchPoint]
    start_index: int
    end_index: int

    @property
    def touch_count(self) -> int:
        return len(self.touch_points)

    @property
    def avg_deviation(self) -> float:
        if not self.touch_points:
            return 0.0
        return sum(t.deviation for t in self.touch_points) / len(self.touch_points)

    def price_at(self, index: int) -> float:
        return self.price


class SlopedLine(BaseModel):
    """Ascending or descending trendline fitted through two extrema."""

    kind: Literal["sloped"] = "sloped"
    direction: TrendDirection
    slope: float = Field(..., description="Price change per bar")
    start_point: LinePoint
    end_point: LinePoint
    touch_points: List[TouchPoint]
    score: int = Field(..., description="Fit score of the winning pair")

    @property
    def start_index(self) -> int:
        return self.start_point.index

    @property
    def touch_count(self) -> int:
        return len(self.touch_points)

    @property
    def avg_deviation(self) -> float:
        if not self.touch_points:
            return 0.0
        return sum(t.deviation for t in self.touch_points) / len(self.touch_points)

    def price_at(self, index: int) -> float:
        return self.start_point.price + self.slope * (index - self.start_point.index)


TrendLine = Annotated[Union[HorizontalLine, SlopedLine], Field(discriminator="kind")]


class Convergence(BaseModel):
    """How close the two pattern lines are at the latest bar."""

    distance: float = Field(..., description="|resistance - support| / average price")
    quality: float = Field(..., ge=0, le=1)
    resistance_price: float
    support_price: float
    avg_price: float


class BreakoutState(BaseModel):
    """Breakout evaluation of the latest close."""

    status: BreakoutStatus
    direction: Optional[PatternDirection] = None
    resistance_price: float
    support_price: float
    upper_breakout: float
    lower_breakout: float
    current_price: float
    distance_to_upper_pct: float
    distance_to_lower_pct: float


class TradeLevels(BaseModel):
    """Entry, stop and targets for one side of a pattern trade."""

    trigger: float
    stop_loss: float
    target_1: float
    target_2: float
    risk_reward: float


class PatternAlert(BaseModel):
    type: AlertType
    message: str


class TradingPlan(BaseModel):
    """Long and short setups derived from the pattern boundaries."""

    long: TradeLevels
    short: TradeLevels
    alerts: List[PatternAlert] = Field(default_factory=list)


# =============================================================================
# TRIANGLE PATTERNS
# =============================================================================


class TriangleBase(BaseModel):
    """Fields shared by every triangle variant."""

    symbol: Optional[str] = None
    confidence: int = Field(..., ge=0, le=95, description="Pattern confidence")
    reliability: Reliability
    convergence: Convergence
    breakout: BreakoutState
    trading_plan: TradingPlan
    formation_bars: int = Field(..., description="Bars since the earliest line start")
    window_bars: int = Field(..., description="Length of the analysed window")


class AscendingTriangle(TriangleBase):
    """Flat resistance over rising support."""

    pattern_type: Literal[PatternType.ASCENDING] = PatternType.ASCENDING
    direction: Literal[PatternDirection.BULLISH] = PatternDirection.BULLISH
    resistance: HorizontalLine
    support: SlopedLine


class DescendingTriangle(TriangleBase):
    """Falling resistance over flat support."""

    pattern_type: Literal[PatternType.DESCENDING] = PatternType.DESCENDING
    direction: Literal[PatternDirection.BEARISH] = PatternDirection.BEARISH
    resistance: SlopedLine
    support: HorizontalLine


class SymmetricalTriangle(TriangleBase):
    """Falling resistance converging with rising support."""

    pattern_type: Literal[PatternType.SYMMETRICAL] = PatternType.SYMMETRICAL
    direction: Literal[PatternDirection.NEUTRAL] = PatternDirection.NEUTRAL
    resistance: SlopedLine
    support: SlopedLine


TrianglePattern = Annotated[
    Union[AscendingTriangle, DescendingTriangle, SymmetricalTriangle],
    Field(discriminator="pattern_type"),
]


class PatternResult(BaseModel):
    """Outcome of a triangle scan. ``reason`` explains an empty result."""

    pattern: Optional[TrianglePattern] = None
    confidence: int = Field(default=0, ge=0, le=95)
    reason: Optional[str] = None


# =============================================================================
# SIGNAL EVENTS
# =============================================================================


class SignalEvent(BaseModel):
    """
    A typed, directional signal produced by the aggregator.

    Crossover and pattern events are emitted independently for the same
    instrument; they are never merged into one event.
    """

    event_id: str = Field(..., description="Deterministic UUID5 of the event key")
    event_type: SignalType
    signal: SignalValue
    symbol: str
    market_type: MarketType = MarketType.CRYPTO
    price: float = Field(..., description="Latest close when the event was produced")
    confidence: float = Field(..., ge=0, le=100)
    crossover: Optional[CrossoverSignal] = None
    pattern_type: Optional[PatternType] = None
    pattern_direction: Optional[PatternDirection] = None
    breakout_status: Optional[BreakoutStatus] = None
    timestamp: datetime


# =============================================================================
# BACKTEST
# =============================================================================


class BacktestRequest(BaseModel):
    """Parsed ``SYMBOL DAYS`` backtest command."""

    symbol: str
    days: int


class BacktestTrade(BaseModel):
    """A simulated fill. ``pnl`` is only present on SELL trades."""

    type: TradeType
    price: float
    time: Union[datetime, int] = Field(
        ..., description="Candle timestamp, or bar position when none is known"
    )
    capital: float = Field(..., description="Capital committed or realized (2 dp)")
    pnl: Optional[float] = Field(default=None, description="Trade return in percent")


class BacktestPeriod(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: Union[datetime, int] = Field(..., alias="from")
    to: Union[datetime, int]


class BacktestResult(BaseModel):
    """Summary of a crossover backtest. Money and percentages use 2 decimals."""

    symbol: Optional[str] = None
    days: int
    initial_capital: float
    final_value: float
    total_pnl: float = Field(..., description="Total return in percent")
    total_trades: int
    completed_trades: int
    wins: int
    losses: int
    win_rate: float
    max_drawdown: float = Field(..., ge=0, description="Peak-to-trough drop in percent")
    still_in_position: bool
    unrealized_pnl: Optional[float] = None
    trades: List[BacktestTrade]
    period: BacktestPeriod
