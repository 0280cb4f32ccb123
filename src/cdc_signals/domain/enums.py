from enum import Enum


class PatternRejection(str, Enum):
    """Enumeration of the reasons a pattern scan returns no pattern."""

    INSUFFICIENT_DATA = "Insufficient data"
    NO_PATTERN = "No triangle patterns detected"
    TOO_WIDE = "Triangle pattern too wide for reliable trading"


class AlertMessages(str, Enum):
    """Enumeration of trading plan alert message templates."""

    BULLISH_BIAS = (
        "{pattern} forming - Bullish bias. Watch for breakout above {level:.4f}"
    )
    BEARISH_BIAS = (
        "{pattern} forming - Bearish bias. Watch for breakdown below {level:.4f}"
    )
    NEUTRAL_BIAS = (
        "{pattern} forming - Neutral bias. Breakout direction will determine trend"
    )
    RESISTANCE_APPROACH = (
        "Price approaching triangle resistance at {level:.4f} ({distance:.1f}% away)"
    )
    SUPPORT_APPROACH = (
        "Price approaching triangle support at {level:.4f} ({distance:.1f}% away)"
    )
