"""
Correlation and sector-strength refresh, run separately from signal generation.

Writes the context store read by strategy.context:
- correlation_matrix: Pearson r of close series per symbol pair, upserted
  when |r| > correlation_store_threshold
- sector_performance: today's relative strength per sector, the percentile
  rank of the sector's mean day change among all sectors
"""

import logging
import sqlite3
from itertools import combinations

import numpy as np

from config import PIPELINE_CONFIG
from db.models import get_sector_mappings, upsert_correlation, upsert_sector_performance
from pipeline_types import MarketSnapshot

logger = logging.getLogger(__name__)


def pearson_correlation(a: list[float], b: list[float]) -> float | None:
    """
    Pearson r over the overlapping tail of two series.

    Returns None with fewer than 3 aligned points or when either series is flat.
    """
    n = min(len(a), len(b))
    if n < 3:
        return None
    x = np.asarray(a[-n:], dtype=float)
    y = np.asarray(b[-n:], dtype=float)
    if np.std(x) == 0 or np.std(y) == 0:
        return None
    return float(np.corrcoef(x, y)[0, 1])


def refresh_correlations(
    snapshots: dict[str, MarketSnapshot],
    store_threshold: float | None = None,
    timeframe: str | None = None,
    conn: sqlite3.Connection | None = None,
) -> dict:
    """
    Recompute pair correlations for every symbol pair.

    Returns:
        {"processed": int, "stored": int, "strong": int}
    """
    if store_threshold is None:
        store_threshold = PIPELINE_CONFIG["correlation_store_threshold"]
    if timeframe is None:
        timeframe = PIPELINE_CONFIG["correlation_timeframe"]
    strong_threshold = PIPELINE_CONFIG["correlation_threshold"]

    processed = stored = strong = 0
    for sym_a, sym_b in combinations(sorted(snapshots), 2):
        processed += 1
        r = pearson_correlation(snapshots[sym_a].closes, snapshots[sym_b].closes)
        if r is None or abs(r) <= store_threshold:
            continue
        upsert_correlation(sym_a, sym_b, r, timeframe, conn=conn)
        stored += 1
        if abs(r) >= strong_threshold:
            strong += 1
            logger.info(f"Strong correlation {sym_a}-{sym_b}: {r:.3f}")

    logger.info(f"Correlations: {processed} pairs, {stored} stored, {strong} strong")
    return {"processed": processed, "stored": stored, "strong": strong}


def rank_sectors(day_changes: dict[str, float]) -> dict[str, float]:
    """Percentile rank in [0, 1] of each sector's day change. A lone sector is neutral (0.5)."""
    if not day_changes:
        return {}
    if len(day_changes) == 1:
        return {sector: PIPELINE_CONFIG["sector_neutral_strength"] for sector in day_changes}
    ordered = sorted(day_changes, key=lambda s: day_changes[s])
    last = len(ordered) - 1
    return {sector: i / last for i, sector in enumerate(ordered)}


def refresh_sector_performance(
    snapshots: dict[str, MarketSnapshot],
    performance_date: str,
    conn: sqlite3.Connection | None = None,
) -> dict[str, float]:
    """
    Derive and store today's relative strength per sector.

    Sector day change is the mean change_pct of its mapped symbols present
    in `snapshots`. Returns sector -> relative strength.
    """
    mappings = get_sector_mappings(conn=conn)
    by_sector: dict[str, list[float]] = {}
    for symbol, snap in snapshots.items():
        sector = mappings.get(symbol)
        if sector:
            by_sector.setdefault(sector, []).append(snap.change_pct)

    day_changes = {sector: float(np.mean(changes)) for sector, changes in by_sector.items()}
    strengths = rank_sectors(day_changes)
    for sector, strength in strengths.items():
        upsert_sector_performance(sector, performance_date, strength, day_changes[sector], conn=conn)
        logger.info(f"Sector {sector}: {day_changes[sector]:+.2f}% day change, strength {strength:.2f}")
    return strengths
