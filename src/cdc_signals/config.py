"""
Unified Configuration Module for CDC Signals.

This module provides a single source of truth for all configuration settings using
pydantic-settings for validation and environment variable loading. The analysis
components never read the environment themselves; they receive the frozen
parameter models built here (IndicatorConfig, PatternConfig, BacktestConfig,
ProcessorConfig).
"""

from functools import lru_cache
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# ANALYSIS PARAMETERS
# =============================================================================


class IndicatorConfig(BaseModel):
    """EMA periods for the CDC Action Zone crossover."""

    model_config = ConfigDict(frozen=True)

    fast_period: int = Field(default=12, ge=1, description="Fast EMA period")
    slow_period: int = Field(default=26, ge=2, description="Slow EMA period")

    @model_validator(mode="after")
    def validate_periods(self) -> "IndicatorConfig":
        if self.fast_period >= self.slow_period:
            raise ValueError(
                f"fast_period ({self.fast_period}) must be lower than "
                f"slow_period ({self.slow_period})"
            )
        return self


class ScoringConfig(BaseModel):
    """
    Heuristic weights used by the triangle recognizer.

    Defaults reproduce the production scoring: a base of 50 points, touch quality
    weighted at 0.2 per line, up to 30 points of convergence, up to 4 points of
    volume contraction and up to 1 point of formation duration, capped at 95.
    """

    model_config = ConfigDict(frozen=True)

    # Confidence
    base_confidence: float = 50.0
    max_confidence: float = Field(
        default=95.0, ge=0, le=95, description="Confidence cap, never above the triangle model bound"
    )
    touch_point_weight: float = 15.0
    touch_accuracy_weight: float = 20.0
    touch_quality_cap: float = 40.0
    touch_quality_factor: float = 0.2
    convergence_weight: float = 30.0
    convergence_cap: float = 30.0
    convergence_decay: float = 10.0
    volume_cap: float = 20.0
    volume_factor: float = 0.2
    min_volume_samples: int = 10
    time_factor: float = 0.1

    # Trendline scoring
    trendline_touch_weight: float = 20.0
    trendline_accuracy_weight: float = 30.0
    trendline_slope_weight: float = 10.0
    trendline_slope_cap: float = 20.0

    # Acceptance thresholds per pattern type
    ascending_threshold: float = 60.0
    descending_threshold: float = 60.0
    symmetrical_threshold: float = 65.0

    # Reliability buckets (strictly greater than)
    high_reliability: float = 80.0
    medium_reliability: float = 70.0

    # Geometry and trade plan
    max_height_ratio: float = 0.40
    approach_ratio: float = 0.01
    alert_proximity_pct: float = 2.0
    fib_extension: float = 0.618
    short_target_1_cap: float = 0.5
    short_target_2_cap: float = 0.7


class PatternConfig(BaseModel):
    """Parameters of the triangle pattern recognizer."""

    model_config = ConfigDict(frozen=True)

    min_bars: int = Field(default=20, ge=7, description="Minimum window length")
    max_bars: int = Field(default=100, ge=20, description="Most recent bars analysed")
    tolerance: float = Field(
        default=0.02, gt=0, lt=1, description="Relative distance counted as a touch"
    )
    min_touch_points: int = Field(default=3, ge=2, description="Touches per line")
    volume_confirmation: bool = Field(
        default=True, description="Score volume contraction during the formation"
    )
    breakout_threshold: float = Field(
        default=0.015, ge=0, lt=1, description="Breakout buffer beyond the lines"
    )
    extremum_window: int = Field(
        default=3, ge=1, description="Bars on each side a peak or trough must dominate"
    )
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)

    @model_validator(mode="after")
    def validate_window(self) -> "PatternConfig":
        if self.min_bars > self.max_bars:
            raise ValueError(
                f"min_bars ({self.min_bars}) cannot exceed max_bars ({self.max_bars})"
            )
        return self


class BacktestConfig(BaseModel):
    """Parameters of the crossover backtest simulator."""

    model_config = ConfigDict(frozen=True)

    initial_capital: float = Field(default=10000.0, gt=0)
    fast_period: int = Field(default=12, ge=1)
    slow_period: int = Field(default=26, ge=2)
    min_days: int = Field(default=30, ge=1, description="Smallest accepted lookback")
    max_days: int = Field(default=1000, ge=1, description="Largest accepted lookback")
    warmup_buffer: int = Field(
        default=5, ge=0, description="Candles required beyond slow_period"
    )

    @model_validator(mode="after")
    def validate_ranges(self) -> "BacktestConfig":
        if self.fast_period >= self.slow_period:
            raise ValueError("fast_period must be lower than slow_period")
        if self.min_days > self.max_days:
            raise ValueError("min_days cannot exceed max_days")
        return self

    @property
    def min_candles(self) -> int:
        return self.slow_period + self.warmup_buffer


class ProcessorConfig(BaseModel):
    """Windowing rules applied before analysis."""

    model_config = ConfigDict(frozen=True)

    min_required_data: int = Field(default=28, ge=2)
    processing_window: int = Field(default=150, ge=2)
    market_open_hour_utc: int = Field(default=14, ge=0, le=23)
    market_close_hour_utc: int = Field(default=21, ge=0, le=23)


# =============================================================================
# APPLICATION SETTINGS
# =============================================================================


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every value has a production default, so an empty environment is valid.
    List values accept either JSON arrays or comma-separated strings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Indicator
    FAST_PERIOD: int = Field(default=12, description="Fast EMA period")
    SLOW_PERIOD: int = Field(default=26, description="Slow EMA period")

    # Pattern recognition
    PATTERN_MIN_BARS: int = Field(default=20)
    PATTERN_MAX_BARS: int = Field(default=100)
    PATTERN_TOLERANCE: float = Field(default=0.02)
    PATTERN_MIN_TOUCH_POINTS: int = Field(default=3)
    PATTERN_VOLUME_CONFIRMATION: bool = Field(default=True)
    PATTERN_BREAKOUT_THRESHOLD: float = Field(default=0.015)

    # Backtest
    BACKTEST_INITIAL_CAPITAL: float = Field(
        default=10000.0, description="Starting capital for simulated runs"
    )

    # Market data processing
    MIN_REQUIRED_DATA: int = Field(
        default=28, description="Candles required before an instrument is analysed"
    )
    PROCESSING_WINDOW: int = Field(
        default=150, description="Most recent candles kept for analysis"
    )

    # Runtime
    MAX_WORKERS: int = Field(
        default=4, ge=1, description="Worker threads for multi-instrument scans"
    )
    LOG_LEVEL: str = Field(default="INFO", description="Loguru log level")

    # Portfolio Configuration (Optional - defaults to hardcoded lists)
    CRYPTO_SYMBOLS: List[str] | str = Field(
        default=[
            "BTC/USDT",
            "ETH/USDT",
            "SOL/USDT",
            "AVAX/USDT",
            "LINK/USDT",
            "BNB/USDT",
            "ARB/USDT",
            "INJ/USDT",
            "ONDO/USDT",
            "STX/USDT",
        ],
        description="Crypto pairs monitored on the daily timeframe",
    )
    STOCK_SYMBOLS: List[str] | str = Field(
        default=[
            "NVDA",
            "TSLA",
            "BKNG",
            "META",
            "PLTR",
            "AMZN",
            "GOOG",
            "LLY",
            "COST",
            "CCJ",
            "RTX",
            "GEV",
            "GC=F",
        ],
        description="Stock and futures tickers monitored on the daily timeframe",
    )

    @field_validator("CRYPTO_SYMBOLS", "STOCK_SYMBOLS", mode="before")
    @classmethod
    def parse_list_from_str(cls, v: Any) -> Any:
        """Parse comma-separated string into list."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("LOG_LEVEL", mode="after")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.strip().upper()

    def indicator_config(self) -> IndicatorConfig:
        return IndicatorConfig(
            fast_period=self.FAST_PERIOD, slow_period=self.SLOW_PERIOD
        )

    def pattern_config(self) -> PatternConfig:
        return PatternConfig(
            min_bars=self.PATTERN_MIN_BARS,
            max_bars=self.PATTERN_MAX_BARS,
            tolerance=self.PATTERN_TOLERANCE,
            min_touch_points=self.PATTERN_MIN_TOUCH_POINTS,
            volume_confirmation=self.PATTERN_VOLUME_CONFIRMATION,
            breakout_threshold=self.PATTERN_BREAKOUT_THRESHOLD,
        )

    def backtest_config(self) -> BacktestConfig:
        return BacktestConfig(
            initial_capital=self.BACKTEST_INITIAL_CAPITAL,
            fast_period=self.FAST_PERIOD,
            slow_period=self.SLOW_PERIOD,
        )

    def processor_config(self) -> ProcessorConfig:
        return ProcessorConfig(
            min_required_data=self.MIN_REQUIRED_DATA,
            processing_window=self.PROCESSING_WINDOW,
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once. Call
    ``get_settings.cache_clear()`` after changing the environment in tests.

    Returns:
        Settings: Validated application settings
    """
    return Settings()
