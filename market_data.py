"""
Market data provider for the generation pass.

Builds one MarketSnapshot per symbol from an Alpaca snapshot plus daily
bars. Fetches run in a bounded thread pool. Any symbol whose data cannot be
fetched gets a synthetic but structurally valid snapshot instead, flagged
with is_synthetic=True, so the run continues.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import numpy as np
import pytz

import alpaca_client
from config import PIPELINE_CONFIG
from pipeline_types import MarketSnapshot

logger = logging.getLogger(__name__)

ET = pytz.timezone("America/New_York")


def synthetic_snapshot(
    symbol: str,
    rng: np.random.Generator | None = None,
    base_price: float | None = None,
) -> MarketSnapshot:
    """Random-walk snapshot with the same shape as real data."""
    if rng is None:
        rng = np.random.default_rng()
    n = PIPELINE_CONFIG["history_closes"]
    if base_price is None:
        base_price = float(rng.uniform(50, 500))

    returns = rng.normal(0.0, 0.015, size=n)
    closes = base_price * np.cumprod(1 + returns)
    closes = [round(float(c), 2) for c in closes]

    price = closes[-1]
    avg_volume = float(rng.uniform(1_000_000, 20_000_000))
    volume = avg_volume * float(rng.uniform(0.5, 2.0))
    high = round(price * (1 + float(rng.uniform(0, 0.02))), 2)
    low = round(price * (1 - float(rng.uniform(0, 0.02))), 2)

    return MarketSnapshot(
        symbol=symbol,
        price=price,
        prev_close=closes[-2],
        volume=volume,
        avg_volume=avg_volume,
        closes=closes,
        high=high,
        low=low,
        is_synthetic=True,
    )


def build_snapshot(symbol: str, snap: dict | None, bars: list[dict]) -> MarketSnapshot | None:
    """
    Assemble a MarketSnapshot from a snapshot dict and daily bars (oldest first).

    Returns None when there is not enough data for a valid snapshot
    (fewer than 2 closes or no usable price).
    """
    cfg = PIPELINE_CONFIG
    snap = snap or {}
    closes = [b["close"] for b in bars][-cfg["history_closes"]:]
    if len(closes) < 2:
        return None

    price = snap.get("latest_trade_price") or snap.get("daily_bar_close") or closes[-1]
    if not price or price <= 0:
        return None

    prev_close = snap.get("prev_daily_bar_close") or closes[-2]
    volumes = [b["volume"] for b in bars][-cfg["avg_volume_period"]:]
    avg_volume = float(np.mean(volumes)) if volumes else 0.0
    volume = snap.get("daily_bar_volume") or (bars[-1]["volume"] if bars else 0)

    return MarketSnapshot(
        symbol=symbol,
        price=float(price),
        prev_close=float(prev_close),
        volume=float(volume),
        avg_volume=avg_volume,
        closes=[float(c) for c in closes],
        high=float(snap.get("daily_bar_high") or bars[-1]["high"]),
        low=float(snap.get("daily_bar_low") or bars[-1]["low"]),
    )


def _fetch_symbol(symbol: str, snap: dict | None, start: str, end: str) -> MarketSnapshot | None:
    try:
        bars = alpaca_client.get_bars(symbol, start, end)
        snapshot = build_snapshot(symbol, snap, bars)
        if snapshot is not None:
            return snapshot
        logger.warning(f"{symbol}: insufficient market data ({len(bars)} bars), using synthetic data")
    except Exception as e:
        logger.warning(f"{symbol}: market data fetch failed ({e}), using synthetic data")
    return None


def fetch_market_data(
    symbols: list[str] | None = None,
    seed: int | None = None,
) -> dict[str, MarketSnapshot]:
    """
    Fetch a snapshot for every symbol, shared by all users in the run.

    Args:
        symbols: Symbol universe (default PIPELINE_CONFIG["symbols"])
        seed: Seed for synthetic fallback data (reproducible runs/tests)

    Returns:
        symbol -> MarketSnapshot, in the order of `symbols`
    """
    if symbols is None:
        symbols = PIPELINE_CONFIG["symbols"]
    rng = np.random.default_rng(seed)

    if not alpaca_client.has_credentials():
        logger.warning("No broker credentials, using synthetic market data for all symbols")
        return {sym: synthetic_snapshot(sym, rng) for sym in symbols}

    logger.info(f"Fetching market data for {len(symbols)} symbols...")
    try:
        snapshots = alpaca_client.get_snapshot(symbols)
    except Exception as e:
        logger.warning(f"Snapshot fetch failed: {e}")
        snapshots = {}

    today = datetime.now(ET).date()
    start = (today - timedelta(days=PIPELINE_CONFIG["history_calendar_days"])).isoformat()
    end = today.isoformat()

    with ThreadPoolExecutor(max_workers=PIPELINE_CONFIG["market_data_workers"]) as pool:
        futures = {
            sym: pool.submit(_fetch_symbol, sym, snapshots.get(sym), start, end)
            for sym in symbols
        }
        fetched = {sym: futures[sym].result() for sym in symbols}

    # Synthetic fallback built after the pool so a seed reproduces the run
    result = {sym: fetched[sym] or synthetic_snapshot(sym, rng) for sym in symbols}

    synthetic = [sym for sym, s in result.items() if s.is_synthetic]
    if synthetic:
        logger.warning(f"Synthetic data used for: {', '.join(synthetic)}")
    return result
