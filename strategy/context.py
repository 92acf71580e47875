"""
Sector context resolver.

Adjusts strategy confidence using the symbol's sector relative strength and
whether strongly correlated symbols point the same way this run. Lookups
that fail degrade to a neutral context so one symbol never stops the run.
"""

import logging
import sqlite3
from dataclasses import replace
from datetime import datetime

import pytz

from config import PIPELINE_CONFIG
from db.models import get_correlated_symbols, get_sector, get_sector_strength
from pipeline_types import BUY, SELL, HOLD, SectorContext, StrategySignal

logger = logging.getLogger(__name__)

ET = pytz.timezone("America/New_York")


def neutral_context() -> SectorContext:
    return SectorContext(relative_strength=PIPELINE_CONFIG["sector_neutral_strength"])


def sector_multiplier(relative_strength: float) -> float:
    """1.2 for a strong sector (> 0.8), 0.8 for a weak one (< 0.2), else 1.0."""
    cfg = PIPELINE_CONFIG
    if relative_strength > cfg["sector_strong_threshold"]:
        return cfg["sector_strong_multiplier"]
    if relative_strength < cfg["sector_weak_threshold"]:
        return cfg["sector_weak_multiplier"]
    return 1.0


def dominant_action(signals: list[StrategySignal]) -> str:
    """Direction with the larger total confidence across strategies. HOLD on a tie or no votes."""
    buy = sum(s.confidence for s in signals if s.action == BUY)
    sell = sum(s.confidence for s in signals if s.action == SELL)
    if buy > sell:
        return BUY
    if sell > buy:
        return SELL
    return HOLD


def confirmation_score(action: str, correlated: list[str], peer_actions: dict[str, str]) -> float:
    """Fraction of correlated symbols whose current direction matches `action`."""
    if action == HOLD or not correlated:
        return 0.0
    agreeing = sum(1 for sym in correlated if peer_actions.get(sym) == action)
    return agreeing / len(correlated)


def resolve_sector_context(
    symbol: str,
    action: str = HOLD,
    peer_actions: dict[str, str] | None = None,
    performance_date: str | None = None,
    conn: sqlite3.Connection | None = None,
) -> SectorContext:
    """
    Build the SectorContext for one symbol.

    Args:
        symbol: Ticker being evaluated
        action: This symbol's dominant raw direction this run
        peer_actions: symbol -> direction for other symbols (this run's raw
            directions, falling back to recently stored signals)
        performance_date: Sector performance date (default today, Eastern)

    Returns:
        Neutral context (multiplier 1.0, strength 0.5) for unmapped symbols
        or when the context store cannot be read.
    """
    cfg = PIPELINE_CONFIG
    if peer_actions is None:
        peer_actions = {}
    if performance_date is None:
        performance_date = datetime.now(ET).date().isoformat()

    try:
        sector = get_sector(symbol, conn=conn)
        if sector is None:
            logger.info(f"{symbol}: no sector mapping, neutral context")
            return neutral_context()

        strength = get_sector_strength(sector, performance_date, conn=conn)
        correlated = get_correlated_symbols(symbol, conn=conn)
    except sqlite3.Error as e:
        logger.warning(f"{symbol}: context lookup failed ({e}), neutral context")
        return neutral_context()

    if strength is None:
        strength = cfg["sector_neutral_strength"]
    strength = max(0.0, min(1.0, strength))

    multiplier = sector_multiplier(strength)
    score = confirmation_score(action, correlated, peer_actions)
    if score > cfg["correlation_confirmation_threshold"]:
        multiplier *= cfg["correlation_confirmation_boost"]

    return SectorContext(
        sector=sector,
        relative_strength=strength,
        multiplier=multiplier,
        correlated_symbols=correlated,
        confirmation_score=score,
    )


def apply_context(signals: list[StrategySignal], context: SectorContext) -> list[StrategySignal]:
    """Multiply every strategy's confidence by the context multiplier, clamped to [0, 100]."""
    adjusted = []
    for s in signals:
        confidence = max(0.0, min(100.0, s.confidence * context.multiplier))
        adjusted.append(replace(s, confidence=confidence))
    return adjusted
