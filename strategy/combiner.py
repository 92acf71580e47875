"""
Signal combiner: weighted vote of the three strategies for one symbol.

buy_score  = sum(confidence * weight) over strategies voting BUY
sell_score = sum(confidence * weight) over strategies voting SELL

The side whose score exceeds the action threshold (50) wins and its score
becomes the combined confidence. Otherwise HOLD with confidence 0.
"""

from config import PIPELINE_CONFIG
from pipeline_types import BUY, SELL, HOLD, COMBINED, STRATEGIES, CombinedSignal, StrategySignal

WEIGHT_TOLERANCE = 1e-9


def validate_weights(weights: dict[str, float]) -> None:
    """Raise ValueError unless weights cover every strategy and sum to 1.0."""
    missing = [name for name in STRATEGIES if name not in weights]
    if missing:
        raise ValueError(f"Missing strategy weights: {missing}")
    if any(w < 0 for w in weights.values()):
        raise ValueError(f"Strategy weights must be non-negative: {weights}")
    total = sum(weights.values())
    if abs(total - 1.0) > WEIGHT_TOLERANCE:
        raise ValueError(f"Strategy weights must sum to 1.0, got {total}")


def combine_signals(
    symbol: str,
    signals: list[StrategySignal],
    weights: dict[str, float] | None = None,
    threshold: float | None = None,
) -> CombinedSignal:
    if weights is None:
        weights = PIPELINE_CONFIG["strategy_weights"]
    if threshold is None:
        threshold = PIPELINE_CONFIG["combined_action_threshold"]
    validate_weights(weights)

    buy_score = 0.0
    sell_score = 0.0
    for s in signals:
        if s.action == BUY:
            buy_score += s.confidence * weights.get(s.strategy, 0.0)
        elif s.action == SELL:
            sell_score += s.confidence * weights.get(s.strategy, 0.0)

    if buy_score > threshold:
        action, confidence = BUY, buy_score
    elif sell_score > threshold:
        action, confidence = SELL, sell_score
    else:
        action, confidence = HOLD, 0.0

    votes = ", ".join(f"{s.strategy}={s.action}/{s.confidence:.0f}" for s in signals)
    return CombinedSignal(
        symbol=symbol,
        action=action,
        confidence=min(100.0, confidence),
        buy_score=buy_score,
        sell_score=sell_score,
        reasoning=f"Combined {action} (buy {buy_score:.1f}, sell {sell_score:.1f}) from {votes}",
    )


def select_persistable(
    signals: list[StrategySignal],
    combined: CombinedSignal,
    min_confidence: float | None = None,
) -> list[StrategySignal]:
    """
    Signals worth writing to the store this run.

    Every non-HOLD strategy signal at or above min_confidence (70) qualifies
    on its own, and so does the combined signal. Both can qualify together.
    """
    if min_confidence is None:
        min_confidence = PIPELINE_CONFIG["persist_min_confidence"]

    selected = [s for s in signals if s.action != HOLD and s.confidence >= min_confidence]
    if combined.action != HOLD and combined.confidence >= min_confidence:
        selected.append(StrategySignal(COMBINED, combined.action, combined.confidence, combined.reasoning))
    return selected
