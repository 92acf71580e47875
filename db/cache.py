"""
Symbol price cache shared between the two scheduled jobs.

The generation pass writes the latest price per symbol. The execution pass
only reads it, to size orders, mark positions to market and price paper
fills without another market-data call.
"""

import sqlite3
from datetime import datetime, timedelta

import pytz

from db.models import get_connection, to_iso

UTC = pytz.utc


def _ensure_cache_table(conn: sqlite3.Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS price_cache (
            symbol TEXT PRIMARY KEY,
            price REAL NOT NULL,
            prev_close REAL,
            is_synthetic INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL
        )
    """)
    conn.commit()


def update_price_cache(snapshots: list, conn: sqlite3.Connection | None = None) -> int:
    """Upsert the latest price of each MarketSnapshot. Returns number of rows upserted."""
    close_after = False
    if conn is None:
        conn = get_connection()
        close_after = True

    _ensure_cache_table(conn)

    if not snapshots:
        if close_after:
            conn.close()
        return 0

    now = to_iso(datetime.now(UTC))
    conn.executemany(
        "INSERT OR REPLACE INTO price_cache (symbol, price, prev_close, is_synthetic, updated_at) "
        "VALUES (?, ?, ?, ?, ?)",
        [
            (s.symbol, s.price, s.prev_close, 1 if s.is_synthetic else 0, now)
            for s in snapshots
        ],
    )
    conn.commit()

    count = len(snapshots)
    if close_after:
        conn.close()
    return count


def _read_cache(
    column: str,
    symbols: list[str] | None,
    max_age_hours: float | None,
    conn: sqlite3.Connection | None,
) -> dict[str, float]:
    close_after = False
    if conn is None:
        conn = get_connection()
        close_after = True

    _ensure_cache_table(conn)

    query = f"SELECT symbol, {column} AS value FROM price_cache WHERE {column} IS NOT NULL"
    params: list = []
    if symbols:
        query += f" AND symbol IN ({', '.join(['?'] * len(symbols))})"
        params.extend(symbols)
    if max_age_hours is not None:
        cutoff = datetime.now(UTC) - timedelta(hours=max_age_hours)
        query += " AND updated_at >= ?"
        params.append(to_iso(cutoff))

    rows = conn.execute(query, params).fetchall()

    if close_after:
        conn.close()

    return {r["symbol"]: float(r["value"]) for r in rows}


def get_cached_prices(
    symbols: list[str] | None = None,
    max_age_hours: float | None = None,
    conn: sqlite3.Connection | None = None,
) -> dict[str, float]:
    """
    symbol -> cached price.

    Filters to `symbols` when given, and drops entries older than
    `max_age_hours` when given.
    """
    return _read_cache("price", symbols, max_age_hours, conn)


def get_cached_prev_closes(
    symbols: list[str] | None = None,
    max_age_hours: float | None = None,
    conn: sqlite3.Connection | None = None,
) -> dict[str, float]:
    """symbol -> previous session close, the day-start mark for open positions."""
    return _read_cache("prev_close", symbols, max_age_hours, conn)


def get_cached_price(symbol: str, conn: sqlite3.Connection | None = None) -> float | None:
    prices = get_cached_prices([symbol], conn=conn)
    return prices.get(symbol)
