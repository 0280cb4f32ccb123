"""Global pytest fixtures."""

import pytest

from cdc_signals.config import get_settings
from tests.candle_helpers import (
    ASCENDING_ANCHORS,
    DESCENDING_ANCHORS,
    SYMMETRICAL_ANCHORS,
    TOO_WIDE_ANCHORS,
    build_candles,
    build_from_closes,
    ramp_closes,
)


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Settings are cached per process; tests that touch the env need a fresh read."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def ascending_candles():
    return build_candles(ASCENDING_ANCHORS)


@pytest.fixture
def ascending_breakout_candles():
    return build_candles(ASCENDING_ANCHORS[:-1] + [(59, 113)])


@pytest.fixture
def descending_candles():
    return build_candles(DESCENDING_ANCHORS)


@pytest.fixture
def symmetrical_candles():
    return build_candles(SYMMETRICAL_ANCHORS)


@pytest.fixture
def too_wide_candles():
    return build_candles(TOO_WIDE_ANCHORS)


@pytest.fixture
def flat_candles():
    return build_from_closes([100.0] * 200)


@pytest.fixture
def round_trip_candles():
    return build_from_closes(ramp_closes())
