"""
Database schema and helpers for the signal pipeline.

Uses raw SQL with sqlite3. Tables:
- trading_signals: persisted signals with a fixed TTL (the signal store)
- positions: live-broker positions opened from executed signals
- risk_settings / user_algorithms: per-user inputs consumed by the execution pass
- sector_mappings / sector_performance / correlation_matrix: context store
- execution_log: append-only audit of per-user and per-signal outcomes
- paper_accounts / paper_positions / paper_transactions: paper ledger (see db/paper.py)

All timestamps are ISO-8601 UTC strings with microseconds, so string
comparison in SQL matches time order.
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path

import pytz

from config import DB_PATH, PIPELINE_CONFIG
from pipeline_types import RiskSettings

ET = pytz.timezone("America/New_York")
UTC = pytz.utc

SIGNAL_TERMINAL_STATUSES = ("executed", "expired", "cancelled")


class SignalStoreError(Exception):
    """The signal store could not be read or written. Fatal for a batch run."""


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_iso(dt: datetime) -> str:
    """Normalize a datetime to a fixed-width UTC ISO string."""
    if dt.tzinfo is None:
        dt = UTC.localize(dt)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def trading_day_start(now: datetime | None = None) -> str:
    """Midnight Eastern of the current trading date, as a UTC ISO string."""
    now = now or utc_now()
    et_date = now.astimezone(ET).date()
    midnight = ET.localize(datetime(et_date.year, et_date.month, et_date.day))
    return to_iso(midnight)


def get_connection(db_path: Path | str | None = None) -> sqlite3.Connection:
    """Get a SQLite connection with row factory enabled."""
    path = db_path or DB_PATH
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


@contextmanager
def get_db(conn: sqlite3.Connection | None = None):
    """Context manager for DB connections. Commits on success, closes if we opened it."""
    should_close = conn is None
    if should_close:
        conn = get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if should_close:
            conn.close()


def init_tables(conn: sqlite3.Connection | None = None) -> None:
    """Create all tables if they don't exist."""
    with get_db(conn) as c:
        c.executescript("""
        CREATE TABLE IF NOT EXISTS trading_signals (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            symbol TEXT NOT NULL,
            signal_type TEXT NOT NULL,
            strategy TEXT,
            confidence_score REAL NOT NULL,
            target_price REAL,
            stop_loss_price REAL,
            take_profit_price REAL,
            quantity INTEGER,
            reasoning TEXT,
            signal_data TEXT,
            status TEXT NOT NULL DEFAULT 'active',
            created_at TEXT NOT NULL,
            expires_at TEXT NOT NULL,
            executed_at TEXT
        );

        CREATE INDEX IF NOT EXISTS idx_signals_eligible
            ON trading_signals (user_id, status, expires_at);

        CREATE TABLE IF NOT EXISTS positions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            symbol TEXT NOT NULL,
            side TEXT NOT NULL,
            quantity INTEGER NOT NULL,
            entry_price REAL NOT NULL,
            current_price REAL,
            prev_close REAL,
            stop_loss_price REAL,
            take_profit_price REAL,
            signal_id TEXT,
            broker_order_id TEXT,
            status TEXT NOT NULL DEFAULT 'open',
            realized_pnl REAL DEFAULT 0,
            opened_at TEXT NOT NULL,
            closed_at TEXT
        );

        CREATE TABLE IF NOT EXISTS risk_settings (
            user_id TEXT PRIMARY KEY,
            max_position_size REAL NOT NULL,
            max_portfolio_risk REAL NOT NULL,
            daily_loss_limit REAL NOT NULL,
            max_open_positions INTEGER NOT NULL,
            stop_loss_percent REAL NOT NULL,
            take_profit_percent REAL NOT NULL,
            min_confidence_score REAL NOT NULL,
            trading_enabled INTEGER NOT NULL DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS user_algorithms (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            algorithm_name TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS sector_mappings (
            symbol TEXT PRIMARY KEY,
            sector TEXT NOT NULL,
            market_cap_category TEXT
        );

        CREATE TABLE IF NOT EXISTS sector_performance (
            sector TEXT NOT NULL,
            performance_date TEXT NOT NULL,
            day_change_percent REAL,
            relative_strength REAL NOT NULL,
            PRIMARY KEY (sector, performance_date)
        );

        CREATE TABLE IF NOT EXISTS correlation_matrix (
            symbol_a TEXT NOT NULL,
            symbol_b TEXT NOT NULL,
            timeframe TEXT NOT NULL DEFAULT 'daily',
            correlation_coefficient REAL NOT NULL,
            last_updated TEXT NOT NULL,
            PRIMARY KEY (symbol_a, symbol_b, timeframe)
        );

        CREATE TABLE IF NOT EXISTS execution_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            signal_id TEXT,
            symbol TEXT,
            side TEXT,
            quantity INTEGER,
            outcome TEXT NOT NULL,
            order_id TEXT,
            fill_price REAL,
            reason TEXT,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS paper_accounts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            initial_balance REAL NOT NULL,
            current_cash REAL NOT NULL,
            total_equity REAL NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE UNIQUE INDEX IF NOT EXISTS idx_paper_accounts_active
            ON paper_accounts (user_id) WHERE is_active = 1;

        CREATE TABLE IF NOT EXISTS paper_positions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            account_id INTEGER NOT NULL,
            symbol TEXT NOT NULL,
            side TEXT NOT NULL DEFAULT 'long',
            quantity INTEGER NOT NULL,
            average_cost REAL NOT NULL,
            market_value REAL NOT NULL,
            prev_close REAL,
            opened_at TEXT,
            updated_at TEXT NOT NULL,
            UNIQUE (account_id, symbol, side)
        );

        CREATE TABLE IF NOT EXISTS paper_transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            account_id INTEGER NOT NULL,
            symbol TEXT NOT NULL,
            transaction_type TEXT NOT NULL,
            quantity INTEGER NOT NULL,
            price REAL NOT NULL,
            total_amount REAL NOT NULL,
            order_type TEXT NOT NULL DEFAULT 'market',
            realized_pnl REAL DEFAULT 0,
            created_at TEXT NOT NULL
        );
    """)


# ── Signal store ──


def insert_signal(
    user_id: str,
    symbol: str,
    signal_type: str,
    confidence_score: float,
    target_price: float | None = None,
    stop_loss_price: float | None = None,
    take_profit_price: float | None = None,
    strategy: str | None = None,
    reasoning: str = "",
    signal_data: dict | None = None,
    quantity: int | None = None,
    now: datetime | None = None,
    conn: sqlite3.Connection | None = None,
) -> str:
    """Insert an active signal expiring after the fixed TTL. Returns the new signal id."""
    if signal_type not in ("BUY", "SELL"):
        raise ValueError(f"Only BUY/SELL signals are persisted, got {signal_type}")

    now = now or utc_now()
    expires = now + timedelta(hours=PIPELINE_CONFIG["signal_ttl_hours"])
    signal_id = uuid.uuid4().hex
    try:
        with get_db(conn) as c:
            c.execute(
                "INSERT INTO trading_signals (id, user_id, symbol, signal_type, strategy, confidence_score, "
                "target_price, stop_loss_price, take_profit_price, quantity, reasoning, signal_data, "
                "status, created_at, expires_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'active', ?, ?)",
                [
                    signal_id, user_id, symbol, signal_type, strategy,
                    max(0.0, min(100.0, float(confidence_score))),
                    target_price, stop_loss_price, take_profit_price, quantity,
                    reasoning, json.dumps(signal_data or {}),
                    to_iso(now), to_iso(expires),
                ],
            )
    except sqlite3.Error as e:
        raise SignalStoreError(f"insert_signal({symbol}) failed: {e}") from e
    return signal_id


def _signal_row_to_dict(row: sqlite3.Row) -> dict:
    data = dict(row)
    data["signal_data"] = json.loads(data["signal_data"]) if data.get("signal_data") else {}
    return data


def get_eligible_signals(
    user_id: str,
    min_confidence: float,
    limit: int | None = None,
    now: datetime | None = None,
    conn: sqlite3.Connection | None = None,
) -> list[dict]:
    """
    Active, unexpired signals for a user at or above min_confidence.

    Ordered by confidence descending and capped at `limit` (default
    signal_batch_limit). Expired rows are excluded even if still 'active'.
    """
    if limit is None:
        limit = PIPELINE_CONFIG["signal_batch_limit"]
    now_str = to_iso(now or utc_now())
    try:
        with get_db(conn) as c:
            rows = c.execute(
                "SELECT * FROM trading_signals "
                "WHERE user_id = ? AND status = 'active' AND expires_at > ? AND confidence_score >= ? "
                "ORDER BY confidence_score DESC, created_at ASC LIMIT ?",
                [user_id, now_str, min_confidence, limit],
            ).fetchall()
    except sqlite3.Error as e:
        raise SignalStoreError(f"get_eligible_signals({user_id}) failed: {e}") from e
    return [_signal_row_to_dict(r) for r in rows]


def get_signal(signal_id: str, conn: sqlite3.Connection | None = None) -> dict | None:
    with get_db(conn) as c:
        row = c.execute("SELECT * FROM trading_signals WHERE id = ?", [signal_id]).fetchone()
        return _signal_row_to_dict(row) if row else None


def _transition_signal(
    signal_id: str, new_status: str, now: datetime | None = None, conn: sqlite3.Connection | None = None
) -> bool:
    """Move an active signal to a terminal status. Returns False if it was already terminal."""
    if new_status not in SIGNAL_TERMINAL_STATUSES:
        raise ValueError(f"Not a terminal signal status: {new_status}")

    executed_at = to_iso(now or utc_now()) if new_status == "executed" else None
    try:
        with get_db(conn) as c:
            cursor = c.execute(
                "UPDATE trading_signals SET status = ?, executed_at = COALESCE(?, executed_at) "
                "WHERE id = ? AND status = 'active'",
                [new_status, executed_at, signal_id],
            )
            return cursor.rowcount == 1
    except sqlite3.Error as e:
        raise SignalStoreError(f"transition {signal_id} -> {new_status} failed: {e}") from e


def mark_signal_executed(signal_id: str, now: datetime | None = None, conn: sqlite3.Connection | None = None) -> bool:
    """Set status=executed and executed_at exactly once."""
    return _transition_signal(signal_id, "executed", now, conn)


def cancel_signal(signal_id: str, conn: sqlite3.Connection | None = None) -> bool:
    return _transition_signal(signal_id, "cancelled", conn=conn)


def expire_signals(now: datetime | None = None, conn: sqlite3.Connection | None = None) -> int:
    """Move every active signal past its expires_at to 'expired'. Returns rows updated."""
    try:
        with get_db(conn) as c:
            cursor = c.execute(
                "UPDATE trading_signals SET status = 'expired' WHERE status = 'active' AND expires_at <= ?",
                [to_iso(now or utc_now())],
            )
            return cursor.rowcount
    except sqlite3.Error as e:
        raise SignalStoreError(f"expire_signals failed: {e}") from e


def count_active_signals(user_id: str, now: datetime | None = None, conn: sqlite3.Connection | None = None) -> int:
    with get_db(conn) as c:
        row = c.execute(
            "SELECT COUNT(*) AS n FROM trading_signals WHERE user_id = ? AND status = 'active' AND expires_at > ?",
            [user_id, to_iso(now or utc_now())],
        ).fetchone()
        return row["n"]


def get_recent_signal_actions(
    symbols: list[str], now: datetime | None = None, conn: sqlite3.Connection | None = None
) -> dict[str, str]:
    """Latest unexpired signal direction per symbol (any user), for correlation confirmation."""
    if not symbols:
        return {}
    placeholders = ", ".join(["?"] * len(symbols))
    with get_db(conn) as c:
        rows = c.execute(
            f"SELECT symbol, signal_type FROM trading_signals "
            f"WHERE symbol IN ({placeholders}) AND expires_at > ? ORDER BY created_at ASC",
            [*symbols, to_iso(now or utc_now())],
        ).fetchall()
    # Later rows overwrite earlier ones
    return {r["symbol"]: r["signal_type"] for r in rows}


# ── Users and risk settings ──


def add_user_algorithm(
    user_id: str, algorithm_name: str, is_active: bool = True, conn: sqlite3.Connection | None = None
) -> int:
    with get_db(conn) as c:
        cursor = c.execute(
            "INSERT INTO user_algorithms (user_id, algorithm_name, is_active, created_at) VALUES (?, ?, ?, ?)",
            [user_id, algorithm_name, 1 if is_active else 0, to_iso(utc_now())],
        )
        return cursor.lastrowid


def get_active_user_ids(conn: sqlite3.Connection | None = None) -> list[str]:
    """Users with at least one active algorithm."""
    with get_db(conn) as c:
        rows = c.execute(
            "SELECT DISTINCT user_id FROM user_algorithms WHERE is_active = 1 ORDER BY user_id"
        ).fetchall()
        return [r["user_id"] for r in rows]


def save_risk_settings(user_id: str, settings: RiskSettings, conn: sqlite3.Connection | None = None) -> None:
    """Upsert a user's risk settings."""
    with get_db(conn) as c:
        c.execute(
            "INSERT INTO risk_settings (user_id, max_position_size, max_portfolio_risk, daily_loss_limit, "
            "max_open_positions, stop_loss_percent, take_profit_percent, min_confidence_score, trading_enabled) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(user_id) DO UPDATE SET max_position_size = excluded.max_position_size, "
            "max_portfolio_risk = excluded.max_portfolio_risk, daily_loss_limit = excluded.daily_loss_limit, "
            "max_open_positions = excluded.max_open_positions, stop_loss_percent = excluded.stop_loss_percent, "
            "take_profit_percent = excluded.take_profit_percent, "
            "min_confidence_score = excluded.min_confidence_score, trading_enabled = excluded.trading_enabled",
            [
                user_id, settings.max_position_size, settings.max_portfolio_risk, settings.daily_loss_limit,
                settings.max_open_positions, settings.stop_loss_percent, settings.take_profit_percent,
                settings.min_confidence_score, 1 if settings.trading_enabled else 0,
            ],
        )


def get_risk_settings(user_id: str, conn: sqlite3.Connection | None = None) -> RiskSettings | None:
    """A user's risk settings, or None if the user has none (callers must treat None as disabled)."""
    with get_db(conn) as c:
        row = c.execute("SELECT * FROM risk_settings WHERE user_id = ?", [user_id]).fetchone()
    if not row:
        return None
    return RiskSettings(
        max_position_size=float(row["max_position_size"]),
        max_portfolio_risk=float(row["max_portfolio_risk"]),
        daily_loss_limit=float(row["daily_loss_limit"]),
        max_open_positions=int(row["max_open_positions"]),
        stop_loss_percent=float(row["stop_loss_percent"]),
        take_profit_percent=float(row["take_profit_percent"]),
        min_confidence_score=float(row["min_confidence_score"]),
        trading_enabled=bool(row["trading_enabled"]),
    )


# ── Positions ──


def create_position(data: dict, conn: sqlite3.Connection | None = None) -> int:
    """Insert an open live-broker position. Returns the row ID."""
    data = {"status": "open", "opened_at": to_iso(utc_now()), **data}
    data.setdefault("current_price", data["entry_price"])
    with get_db(conn) as c:
        columns = list(data.keys())
        placeholders = ", ".join(["?"] * len(columns))
        col_str = ", ".join(columns)
        cursor = c.execute(
            f"INSERT INTO positions ({col_str}) VALUES ({placeholders})",
            [data[col] for col in columns],
        )
        return cursor.lastrowid


def get_open_positions(user_id: str, conn: sqlite3.Connection | None = None) -> list[dict]:
    with get_db(conn) as c:
        rows = c.execute(
            "SELECT * FROM positions WHERE user_id = ? AND status = 'open' ORDER BY id",
            [user_id],
        ).fetchall()
        return [dict(r) for r in rows]


def count_open_positions(user_id: str, conn: sqlite3.Connection | None = None) -> int:
    """Open live positions plus non-empty paper positions for a user."""
    with get_db(conn) as c:
        live = c.execute(
            "SELECT COUNT(*) AS n FROM positions WHERE user_id = ? AND status = 'open'",
            [user_id],
        ).fetchone()["n"]
        paper = c.execute(
            "SELECT COUNT(*) AS n FROM paper_positions p JOIN paper_accounts a ON p.account_id = a.id "
            "WHERE a.user_id = ? AND a.is_active = 1 AND p.quantity > 0",
            [user_id],
        ).fetchone()["n"]
        return live + paper


def mark_positions_to_market(
    prices: dict[str, float],
    prev_closes: dict[str, float] | None = None,
    conn: sqlite3.Connection | None = None,
) -> int:
    """
    Refresh current_price on open positions from a symbol -> price map.

    prev_closes (symbol -> previous session close) sets the day-start mark
    used by get_todays_pnl. Returns rows updated.
    """
    if not prices:
        return 0
    if prev_closes is None:
        prev_closes = {}
    updated = 0
    with get_db(conn) as c:
        for symbol, price in prices.items():
            if price is None or price <= 0:
                continue
            cursor = c.execute(
                "UPDATE positions SET current_price = ?, prev_close = COALESCE(?, prev_close) "
                "WHERE symbol = ? AND status = 'open'",
                [price, prev_closes.get(symbol), symbol],
            )
            updated += cursor.rowcount
    return updated


def day_start_basis(opened_at: str | None, cost: float, prev_close: float | None, since: str) -> float | None:
    """
    Reference price for today's unrealized P&L.

    Cost for a position opened today, else the previous close. None when an
    older position has no recorded previous close (no intraday move known).
    """
    if opened_at is not None and opened_at >= since:
        return cost
    return prev_close


def get_todays_pnl(user_id: str, now: datetime | None = None, conn: sqlite3.Connection | None = None) -> float:
    """
    Realized + unrealized P&L for the current trading day.

    Unrealized is measured from the day-start mark: cost for positions
    opened today, the previous close for older ones (see day_start_basis).
    Covers open live positions (signed by side) and paper positions.
    Realized: live positions closed today and paper sells booked today.
    """
    since = trading_day_start(now)
    with get_db(conn) as c:
        unrealized = 0.0
        for row in c.execute(
            "SELECT side, quantity, entry_price, current_price, prev_close, opened_at FROM positions "
            "WHERE user_id = ? AND status = 'open'",
            [user_id],
        ).fetchall():
            basis = day_start_basis(row["opened_at"], row["entry_price"], row["prev_close"], since)
            if basis is None:
                continue
            mark = row["current_price"] if row["current_price"] is not None else basis
            direction = 1 if row["side"] == "long" else -1
            unrealized += (mark - basis) * row["quantity"] * direction

        realized_live = c.execute(
            "SELECT COALESCE(SUM(realized_pnl), 0) AS pnl FROM positions "
            "WHERE user_id = ? AND status = 'closed' AND closed_at >= ?",
            [user_id, since],
        ).fetchone()["pnl"]

        paper_unrealized = 0.0
        for row in c.execute(
            "SELECT p.quantity, p.average_cost, p.market_value, p.prev_close, p.opened_at "
            "FROM paper_positions p JOIN paper_accounts a ON p.account_id = a.id "
            "WHERE a.user_id = ? AND a.is_active = 1 AND p.quantity > 0",
            [user_id],
        ).fetchall():
            basis = day_start_basis(row["opened_at"], row["average_cost"], row["prev_close"], since)
            if basis is None:
                continue
            paper_unrealized += row["market_value"] - basis * row["quantity"]

        paper_realized = c.execute(
            "SELECT COALESCE(SUM(t.realized_pnl), 0) AS pnl "
            "FROM paper_transactions t JOIN paper_accounts a ON t.account_id = a.id "
            "WHERE a.user_id = ? AND t.created_at >= ?",
            [user_id, since],
        ).fetchone()["pnl"]

    return float(unrealized + realized_live + paper_unrealized + paper_realized)


# ── Sector / correlation store ──


def seed_sector_mappings(mappings: dict, conn: sqlite3.Connection | None = None) -> int:
    """Insert symbol -> (sector, cap) mappings if the table is empty. Returns rows inserted."""
    with get_db(conn) as c:
        existing = c.execute("SELECT COUNT(*) AS n FROM sector_mappings").fetchone()["n"]
        if existing:
            return 0
        c.executemany(
            "INSERT INTO sector_mappings (symbol, sector, market_cap_category) VALUES (?, ?, ?)",
            [(sym, sector, cap) for sym, (sector, cap) in mappings.items()],
        )
        return len(mappings)


def get_sector_mappings(conn: sqlite3.Connection | None = None) -> dict[str, str]:
    with get_db(conn) as c:
        rows = c.execute("SELECT symbol, sector FROM sector_mappings").fetchall()
        return {r["symbol"]: r["sector"] for r in rows}


def get_sector(symbol: str, conn: sqlite3.Connection | None = None) -> str | None:
    with get_db(conn) as c:
        row = c.execute("SELECT sector FROM sector_mappings WHERE symbol = ?", [symbol]).fetchone()
        return row["sector"] if row else None


def get_sector_strength(sector: str, performance_date: str, conn: sqlite3.Connection | None = None) -> float | None:
    """Relative strength (0-1) of a sector on a date, or None if not recorded."""
    with get_db(conn) as c:
        row = c.execute(
            "SELECT relative_strength FROM sector_performance WHERE sector = ? AND performance_date = ?",
            [sector, performance_date],
        ).fetchone()
        return float(row["relative_strength"]) if row else None


def upsert_sector_performance(
    sector: str,
    performance_date: str,
    relative_strength: float,
    day_change_percent: float | None = None,
    conn: sqlite3.Connection | None = None,
) -> None:
    with get_db(conn) as c:
        c.execute(
            "INSERT INTO sector_performance (sector, performance_date, day_change_percent, relative_strength) "
            "VALUES (?, ?, ?, ?) "
            "ON CONFLICT(sector, performance_date) DO UPDATE SET "
            "day_change_percent = excluded.day_change_percent, relative_strength = excluded.relative_strength",
            [sector, performance_date, day_change_percent, relative_strength],
        )


def upsert_correlation(
    symbol_a: str,
    symbol_b: str,
    coefficient: float,
    timeframe: str | None = None,
    conn: sqlite3.Connection | None = None,
) -> None:
    """Upsert a pair correlation keyed by (symbol_a, symbol_b, timeframe) with the pair stored in sorted order."""
    if timeframe is None:
        timeframe = PIPELINE_CONFIG["correlation_timeframe"]
    a, b = sorted((symbol_a, symbol_b))
    with get_db(conn) as c:
        c.execute(
            "INSERT INTO correlation_matrix (symbol_a, symbol_b, timeframe, correlation_coefficient, last_updated) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(symbol_a, symbol_b, timeframe) DO UPDATE SET "
            "correlation_coefficient = excluded.correlation_coefficient, last_updated = excluded.last_updated",
            [a, b, timeframe, coefficient, to_iso(utc_now())],
        )


def get_correlated_symbols(
    symbol: str,
    threshold: float | None = None,
    timeframe: str | None = None,
    conn: sqlite3.Connection | None = None,
) -> list[str]:
    """Symbols whose stored correlation with `symbol` is >= threshold, strongest first."""
    if threshold is None:
        threshold = PIPELINE_CONFIG["correlation_threshold"]
    if timeframe is None:
        timeframe = PIPELINE_CONFIG["correlation_timeframe"]
    with get_db(conn) as c:
        rows = c.execute(
            "SELECT CASE WHEN symbol_a = ? THEN symbol_b ELSE symbol_a END AS other "
            "FROM correlation_matrix "
            "WHERE (symbol_a = ? OR symbol_b = ?) AND timeframe = ? AND correlation_coefficient >= ? "
            "ORDER BY correlation_coefficient DESC",
            [symbol, symbol, symbol, timeframe, threshold],
        ).fetchall()
        return [r["other"] for r in rows]


# ── Execution audit log ──


def log_execution(data: dict, conn: sqlite3.Connection | None = None) -> int:
    """Append an execution log record. Returns the row ID."""
    data = {"created_at": to_iso(utc_now()), **data}
    with get_db(conn) as c:
        columns = list(data.keys())
        placeholders = ", ".join(["?"] * len(columns))
        col_str = ", ".join(columns)
        cursor = c.execute(
            f"INSERT INTO execution_log ({col_str}) VALUES ({placeholders})",
            [data[col] for col in columns],
        )
        return cursor.lastrowid


def get_execution_log(run_id: str, conn: sqlite3.Connection | None = None) -> list[dict]:
    with get_db(conn) as c:
        rows = c.execute(
            "SELECT * FROM execution_log WHERE run_id = ? ORDER BY id", [run_id]
        ).fetchall()
        return [dict(r) for r in rows]
