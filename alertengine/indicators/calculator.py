"""
Technical indicator calculations.

All functions take closing prices ordered oldest first and return None when
the series is shorter than the indicator needs. Nothing here touches the
database.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from alertengine.errors import UnknownIndicatorTypeError

PRECISION = 2


class IndicatorType(str, Enum):
    """Indicator names as stored in the indicator store."""

    RSI = "RSI"
    SMA = "SMA"
    EMA = "EMA"
    MACD = "MACD"
    BOLLINGER_BANDS = "bollinger_bands"


def parse_indicator_type(name: str) -> IndicatorType:
    """
    Resolve an indicator name.

    Raises:
        UnknownIndicatorTypeError: If the name is not a known indicator
    """
    try:
        return IndicatorType(name)
    except ValueError:
        for member in IndicatorType:
            if member.value.lower() == str(name).lower():
                return member
        raise UnknownIndicatorTypeError(f"Unknown indicator type: {name}") from None


@dataclass(frozen=True)
class MACDResult:
    """MACD line. The signal period is kept as metadata only."""

    line: float
    fast_period: int
    slow_period: int
    signal_period: int


@dataclass(frozen=True)
class BollingerResult:
    """Bollinger middle, upper and lower bands."""

    middle: float
    upper: float
    lower: float
    std_dev_multiplier: float


def _ema_exact(closes: Sequence[float], period: int) -> Optional[float]:
    if period <= 0 or len(closes) < period:
        return None
    ema_value = sum(closes[:period]) / period
    multiplier = 2 / (period + 1)
    for close in closes[period:]:
        ema_value = (close - ema_value) * multiplier + ema_value
    return ema_value


def sma(closes: Sequence[float], period: int) -> Optional[float]:
    """Arithmetic mean of the last ``period`` closes."""
    if period <= 0 or len(closes) < period:
        return None
    window = closes[-period:]
    return round(sum(window) / period, PRECISION)


def ema(closes: Sequence[float], period: int) -> Optional[float]:
    """
    Exponential moving average.

    Seeded with the mean of the first ``period`` closes, then smoothed with
    ``2 / (period + 1)`` over every later close in order.
    """
    value = _ema_exact(closes, period)
    return None if value is None else round(value, PRECISION)


def rsi(closes: Sequence[float], period: int = 14) -> Optional[float]:
    """
    Relative strength index over a simple sliding window.

    Uses plain averages of the last ``period`` gains and losses (no Wilder
    smoothing). Needs ``period + 1`` closes.

    Returns:
        Value in [0, 100], or None for a short series
    """
    if period <= 0 or len(closes) < period + 1:
        return None

    window = closes[-(period + 1):]
    gains = 0.0
    losses = 0.0
    for previous, current in zip(window, window[1:]):
        change = current - previous
        if change > 0:
            gains += change
        elif change < 0:
            losses -= change

    avg_gain = gains / period
    avg_loss = losses / period
    if avg_loss == 0:
        return 100.0

    rs = avg_gain / avg_loss
    return round(100 - (100 / (1 + rs)), PRECISION)


def macd(
    closes: Sequence[float],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> Optional[MACDResult]:
    """
    MACD line: EMA(fast) minus EMA(slow).

    ``signal_period`` is accepted and recorded but no signal line is
    calculated. Requires ``slow_period + signal_period`` closes.
    """
    if len(closes) < slow_period + signal_period:
        return None

    fast = _ema_exact(closes, fast_period)
    slow = _ema_exact(closes, slow_period)
    if fast is None or slow is None:
        return None

    return MACDResult(
        line=round(fast - slow, PRECISION),
        fast_period=fast_period,
        slow_period=slow_period,
        signal_period=signal_period,
    )


def bollinger_bands(
    closes: Sequence[float],
    period: int = 20,
    std_dev_multiplier: float = 2.0,
) -> Optional[BollingerResult]:
    """
    Bollinger Bands over the last ``period`` closes.

    Middle band is the SMA; the bands sit ``std_dev_multiplier`` population
    standard deviations above and below it.

    Raises:
        ValueError: If ``std_dev_multiplier`` is negative
    """
    if std_dev_multiplier < 0:
        raise ValueError("std_dev_multiplier must be non-negative")
    if period <= 0 or len(closes) < period:
        return None

    window = closes[-period:]
    middle = sum(window) / period
    variance = sum((close - middle) ** 2 for close in window) / period
    deviation = math.sqrt(variance) * std_dev_multiplier

    return BollingerResult(
        middle=round(middle, PRECISION),
        upper=round(middle + deviation, PRECISION),
        lower=round(middle - deviation, PRECISION),
        std_dev_multiplier=std_dev_multiplier,
    )
