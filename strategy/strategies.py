"""
Strategy evaluators: momentum, mean reversion, and a rule-based ML placeholder.

Each evaluator is a pure function of a MarketSnapshot (plus its indicators)
and returns exactly one StrategySignal. HOLD always carries confidence 0.
"""

from config import PIPELINE_CONFIG
from pipeline_types import (
    BUY, SELL, HOLD,
    MOMENTUM, MEAN_REVERSION, ML,
    IndicatorSet,
    MarketSnapshot,
    StrategySignal,
)
from strategy.indicators import compute_indicators


def momentum_strategy(snapshot: MarketSnapshot, indicators: IndicatorSet | None = None) -> StrategySignal:
    """
    RSI extreme confirmed by MACD histogram direction and above-average volume.

    BUY:  RSI < 30, histogram > 0, volume ratio > 1.2
    SELL: RSI > 70, histogram < 0, volume ratio > 1.2
    """
    if indicators is None:
        indicators = compute_indicators(snapshot.closes)

    cfg = PIPELINE_CONFIG
    rsi = indicators.rsi
    hist = indicators.macd.histogram
    volume_ratio = snapshot.volume_ratio
    volume_ok = volume_ratio > cfg["momentum_volume_ratio"]

    if rsi < cfg["momentum_rsi_oversold"] and hist > 0 and volume_ok:
        return StrategySignal(
            MOMENTUM, BUY, cfg["momentum_confidence"],
            f"RSI {rsi:.1f} oversold, MACD histogram {hist:+.3f}, volume {volume_ratio:.2f}x average",
        )
    if rsi > cfg["momentum_rsi_overbought"] and hist < 0 and volume_ok:
        return StrategySignal(
            MOMENTUM, SELL, cfg["momentum_confidence"],
            f"RSI {rsi:.1f} overbought, MACD histogram {hist:+.3f}, volume {volume_ratio:.2f}x average",
        )
    return StrategySignal(MOMENTUM, HOLD, 0)


def bollinger_position(price: float, sma: float, stddev: float, num_std: float | None = None) -> float | None:
    """
    Position of price inside the (SMA - k*sigma, SMA + k*sigma) band, 0 = lower, 1 = upper.

    Returns None when the band has zero width.
    """
    if num_std is None:
        num_std = PIPELINE_CONFIG["bollinger_std"]
    width = 2 * num_std * stddev
    if width <= 0:
        return None
    lower = sma - num_std * stddev
    return (price - lower) / width


def mean_reversion_strategy(snapshot: MarketSnapshot, indicators: IndicatorSet | None = None) -> StrategySignal:
    """BUY near the lower band (position < 0.2), SELL near the upper band (position > 0.8)."""
    if indicators is None:
        indicators = compute_indicators(snapshot.closes)

    cfg = PIPELINE_CONFIG
    position = bollinger_position(snapshot.price, indicators.sma_20, indicators.stddev_20)
    if position is None:
        return StrategySignal(MEAN_REVERSION, HOLD, 0, "Flat band, no reversion signal")

    if position < cfg["mean_reversion_lower"]:
        return StrategySignal(
            MEAN_REVERSION, BUY, cfg["mean_reversion_confidence"],
            f"Price at {position:.2f} of band, below SMA20 {indicators.sma_20:.2f}",
        )
    if position > cfg["mean_reversion_upper"]:
        return StrategySignal(
            MEAN_REVERSION, SELL, cfg["mean_reversion_confidence"],
            f"Price at {position:.2f} of band, above SMA20 {indicators.sma_20:.2f}",
        )
    return StrategySignal(MEAN_REVERSION, HOLD, 0)


def ml_strategy(snapshot: MarketSnapshot, indicators: IndicatorSet | None = None) -> StrategySignal:
    """
    Simple rule substitute for a prediction model.

    BUY:  RSI < 35 and volume ratio > 1.5
    SELL: RSI > 65 and day change < -2%
    """
    if indicators is None:
        indicators = compute_indicators(snapshot.closes)

    cfg = PIPELINE_CONFIG
    rsi = indicators.rsi
    volume_ratio = snapshot.volume_ratio
    change_pct = snapshot.change_pct

    if rsi < cfg["ml_rsi_buy"] and volume_ratio > cfg["ml_volume_ratio"]:
        return StrategySignal(
            ML, BUY, cfg["ml_confidence"],
            f"Model: RSI {rsi:.1f} with {volume_ratio:.2f}x volume",
        )
    if rsi > cfg["ml_rsi_sell"] and change_pct < cfg["ml_change_pct_sell"]:
        return StrategySignal(
            ML, SELL, cfg["ml_confidence"],
            f"Model: RSI {rsi:.1f} with {change_pct:+.2f}% day change",
        )
    return StrategySignal(ML, HOLD, 0)


def evaluate_strategies(snapshot: MarketSnapshot) -> list[StrategySignal]:
    """Run all three evaluators against one snapshot, sharing a single indicator computation."""
    indicators = compute_indicators(snapshot.closes)
    return [
        momentum_strategy(snapshot, indicators),
        mean_reversion_strategy(snapshot, indicators),
        ml_strategy(snapshot, indicators),
    ]
