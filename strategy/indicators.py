"""
Indicator calculations over a daily close series (oldest -> newest).

Every function is pure and never raises on short history: each returns a
documented neutral value when there are fewer closes than its lookback.

MACD signal line: approximated as MACD * 0.8, not a 9-period EMA of MACD
history. Strategy thresholds assume this approximation.
"""

import numpy as np

from config import PIPELINE_CONFIG
from pipeline_types import IndicatorSet, MACDResult


def calculate_rsi(closes: list[float], period: int | None = None) -> float:
    """
    Calculate RSI from the average gain/loss of the last `period` deltas.

    Args:
        closes: Closing prices (needs at least period + 1 values)
        period: RSI lookback period (default 14)

    Returns:
        RSI value between 0 and 100. Returns 50.0 (neutral) if insufficient
        data, and 100.0 when there were no losses in the window.
    """
    if period is None:
        period = PIPELINE_CONFIG["rsi_period"]

    if len(closes) < period + 1:
        return 50.0

    deltas = np.diff(closes[-(period + 1):])
    gains = np.where(deltas > 0, deltas, 0.0)
    losses = np.where(deltas < 0, -deltas, 0.0)

    avg_gain = float(np.mean(gains))
    avg_loss = float(np.mean(losses))

    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return round(100.0 - (100.0 / (1.0 + rs)), 2)


def calculate_sma(closes: list[float], period: int) -> float:
    """Simple moving average of the last `period` closes. Passes the last close through on short history."""
    if not closes:
        return 0.0
    if len(closes) < period:
        return float(closes[-1])
    return float(np.mean(closes[-period:]))


def calculate_ema(closes: list[float], period: int) -> float:
    """
    Exponential moving average seeded with the SMA of the first `period` closes.

    Returns the last close unchanged when there is not enough history
    (0.0 for an empty series).
    """
    if not closes:
        return 0.0
    if len(closes) < period:
        return float(closes[-1])

    multiplier = 2.0 / (period + 1)
    ema = float(np.mean(closes[:period]))
    for price in closes[period:]:
        ema = (price - ema) * multiplier + ema
    return ema


def calculate_macd(
    closes: list[float],
    fast: int | None = None,
    slow: int | None = None,
    signal_ratio: float | None = None,
) -> MACDResult:
    """
    MACD = EMA(fast) - EMA(slow), signal = MACD * signal_ratio.

    Returns a zeroed MACDResult when there are fewer than `slow` closes.
    """
    if fast is None:
        fast = PIPELINE_CONFIG["macd_fast"]
    if slow is None:
        slow = PIPELINE_CONFIG["macd_slow"]
    if signal_ratio is None:
        signal_ratio = PIPELINE_CONFIG["macd_signal_ratio"]

    if len(closes) < slow:
        return MACDResult()

    macd = calculate_ema(closes, fast) - calculate_ema(closes, slow)
    signal = macd * signal_ratio
    return MACDResult(macd=macd, signal=signal, histogram=macd - signal)


def calculate_stddev(closes: list[float], period: int | None = None) -> float:
    """Population standard deviation (divide by N) of the last `period` closes. 0.0 on short history."""
    if period is None:
        period = PIPELINE_CONFIG["bollinger_period"]

    if len(closes) < period:
        return 0.0
    return float(np.std(closes[-period:], ddof=0))


def compute_indicators(closes: list[float]) -> IndicatorSet:
    """Compute the full indicator set consumed by the strategy evaluators."""
    period = PIPELINE_CONFIG["bollinger_period"]
    return IndicatorSet(
        rsi=calculate_rsi(closes),
        macd=calculate_macd(closes),
        sma_20=calculate_sma(closes, period),
        stddev_20=calculate_stddev(closes, period),
        ema_12=calculate_ema(closes, PIPELINE_CONFIG["macd_fast"]),
        ema_26=calculate_ema(closes, PIPELINE_CONFIG["macd_slow"]),
    )
