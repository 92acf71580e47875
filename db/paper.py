"""
Paper trading ledger.

One active account per user, created on first use with a fixed starting
balance. Each fill updates cash, the (account, symbol, side) position and
the append-only transaction log inside a single transaction, so a failed
trade leaves the ledger untouched.

BUY:  cash -= price * qty; average_cost is volume-weighted across buys.
SELL: cash += price * qty; quantity is reduced at the unchanged average
      cost and the position row is removed when it reaches zero. Realized
      P&L = (price - average_cost) * qty is stored on the transaction.
"""

import logging
import sqlite3
from datetime import datetime

from config import PIPELINE_CONFIG
from db.models import get_db, to_iso, utc_now
from pipeline_types import BUY, SELL

logger = logging.getLogger(__name__)

LONG = "long"


class PaperTradeError(Exception):
    """A simulated trade could not be booked. The ledger is unchanged."""


class InsufficientFundsError(PaperTradeError):
    pass


class InsufficientPositionError(PaperTradeError):
    pass


def _get_active_account(c: sqlite3.Connection, user_id: str) -> sqlite3.Row | None:
    return c.execute(
        "SELECT * FROM paper_accounts WHERE user_id = ? AND is_active = 1", [user_id]
    ).fetchone()


def _create_account(c: sqlite3.Connection, user_id: str, balance: float, now_str: str) -> sqlite3.Row:
    cursor = c.execute(
        "INSERT INTO paper_accounts (user_id, initial_balance, current_cash, total_equity, is_active, "
        "created_at, updated_at) VALUES (?, ?, ?, ?, 1, ?, ?)",
        [user_id, balance, balance, balance, now_str, now_str],
    )
    logger.info(f"Created paper account for {user_id} with ${balance:,.2f}")
    return c.execute("SELECT * FROM paper_accounts WHERE id = ?", [cursor.lastrowid]).fetchone()


def get_or_create_account(
    user_id: str,
    starting_balance: float | None = None,
    conn: sqlite3.Connection | None = None,
) -> dict:
    """Return the user's active paper account, creating it with the starting balance if missing."""
    if starting_balance is None:
        starting_balance = PIPELINE_CONFIG["paper_starting_balance"]
    with get_db(conn) as c:
        account = _get_active_account(c, user_id)
        if account is None:
            account = _create_account(c, user_id, starting_balance, to_iso(utc_now()))
        return dict(account)


def get_account(user_id: str, conn: sqlite3.Connection | None = None) -> dict | None:
    with get_db(conn) as c:
        account = _get_active_account(c, user_id)
        return dict(account) if account else None


def get_paper_positions(user_id: str, conn: sqlite3.Connection | None = None) -> list[dict]:
    with get_db(conn) as c:
        rows = c.execute(
            "SELECT p.* FROM paper_positions p JOIN paper_accounts a ON p.account_id = a.id "
            "WHERE a.user_id = ? AND a.is_active = 1 ORDER BY p.symbol",
            [user_id],
        ).fetchall()
        return [dict(r) for r in rows]


def get_paper_quantity(user_id: str, symbol: str, conn: sqlite3.Connection | None = None) -> int:
    """Long quantity held in the user's paper account (0 if none)."""
    with get_db(conn) as c:
        row = c.execute(
            "SELECT p.quantity FROM paper_positions p JOIN paper_accounts a ON p.account_id = a.id "
            "WHERE a.user_id = ? AND a.is_active = 1 AND p.symbol = ? AND p.side = ?",
            [user_id, symbol, LONG],
        ).fetchone()
        return int(row["quantity"]) if row else 0


def get_transactions(user_id: str, conn: sqlite3.Connection | None = None) -> list[dict]:
    with get_db(conn) as c:
        rows = c.execute(
            "SELECT t.* FROM paper_transactions t JOIN paper_accounts a ON t.account_id = a.id "
            "WHERE a.user_id = ? ORDER BY t.id",
            [user_id],
        ).fetchall()
        return [dict(r) for r in rows]


def _refresh_equity(c: sqlite3.Connection, account_id: int, now_str: str) -> float:
    """total_equity = cash + sum of position market values."""
    row = c.execute(
        "SELECT a.current_cash + COALESCE((SELECT SUM(market_value) FROM paper_positions "
        "WHERE account_id = a.id), 0) AS equity FROM paper_accounts a WHERE a.id = ?",
        [account_id],
    ).fetchone()
    equity = float(row["equity"])
    c.execute(
        "UPDATE paper_accounts SET total_equity = ?, updated_at = ? WHERE id = ?",
        [equity, now_str, account_id],
    )
    return equity


def execute_paper_trade(
    user_id: str,
    symbol: str,
    side: str,
    quantity: int,
    price: float,
    order_type: str = "market",
    now: datetime | None = None,
    signal_id: str | None = None,
    conn: sqlite3.Connection | None = None,
) -> dict:
    """
    Book a simulated fill.

    When signal_id is given, the signal is marked executed in the same
    transaction as the fill, so a signal is never booked twice.

    Returns:
        Dict with transaction_id, account_id, cash, total_equity,
        position_quantity, average_cost and realized_pnl.

    Raises:
        InsufficientFundsError: BUY costs more than current cash
        InsufficientPositionError: SELL exceeds the held long quantity
        PaperTradeError: non-positive quantity/price, unknown side, or
            signal_id no longer active
    """
    if side not in (BUY, SELL):
        raise PaperTradeError(f"Unknown side {side}")
    if quantity <= 0:
        raise PaperTradeError(f"Quantity must be positive, got {quantity}")
    if price <= 0:
        raise PaperTradeError(f"Price must be positive, got {price}")

    now_str = to_iso(now or utc_now())
    total = price * quantity

    with get_db(conn) as c:
        account = _get_active_account(c, user_id)
        if account is None:
            account = _create_account(c, user_id, PIPELINE_CONFIG["paper_starting_balance"], now_str)
        account_id = account["id"]
        cash = float(account["current_cash"])

        position = c.execute(
            "SELECT * FROM paper_positions WHERE account_id = ? AND symbol = ? AND side = ?",
            [account_id, symbol, LONG],
        ).fetchone()
        held = int(position["quantity"]) if position else 0
        avg_cost = float(position["average_cost"]) if position else 0.0

        realized_pnl = 0.0
        if side == BUY:
            if cash < total:
                raise InsufficientFundsError(
                    f"{user_id}: BUY {quantity} {symbol} @ ${price:.2f} needs ${total:,.2f}, cash ${cash:,.2f}"
                )
            new_qty = held + quantity
            new_avg = (avg_cost * held + price * quantity) / new_qty
            cash -= total
        else:
            if quantity > held:
                raise InsufficientPositionError(
                    f"{user_id}: SELL {quantity} {symbol} but only {held} held"
                )
            new_qty = held - quantity
            new_avg = avg_cost
            realized_pnl = (price - avg_cost) * quantity
            cash += total

        if position is None:
            c.execute(
                "INSERT INTO paper_positions (account_id, symbol, side, quantity, average_cost, market_value, "
                "opened_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [account_id, symbol, LONG, new_qty, new_avg, new_qty * price, now_str, now_str],
            )
        elif new_qty == 0:
            c.execute("DELETE FROM paper_positions WHERE id = ?", [position["id"]])
        else:
            c.execute(
                "UPDATE paper_positions SET quantity = ?, average_cost = ?, market_value = ?, updated_at = ? "
                "WHERE id = ?",
                [new_qty, new_avg, new_qty * price, now_str, position["id"]],
            )

        c.execute(
            "UPDATE paper_accounts SET current_cash = ?, updated_at = ? WHERE id = ?",
            [cash, now_str, account_id],
        )
        cursor = c.execute(
            "INSERT INTO paper_transactions (account_id, symbol, transaction_type, quantity, price, "
            "total_amount, order_type, realized_pnl, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [account_id, symbol, side, quantity, price, total, order_type, realized_pnl, now_str],
        )
        transaction_id = cursor.lastrowid
        equity = _refresh_equity(c, account_id, now_str)

        if signal_id is not None:
            claimed = c.execute(
                "UPDATE trading_signals SET status = 'executed', executed_at = ? "
                "WHERE id = ? AND status = 'active'",
                [now_str, signal_id],
            ).rowcount
            if claimed != 1:
                raise PaperTradeError(f"Signal {signal_id} is no longer active")

    logger.info(
        f"Paper {side} {quantity} {symbol} @ ${price:.2f} for {user_id}: "
        f"cash ${cash:,.2f}, equity ${equity:,.2f}"
    )
    return {
        "transaction_id": transaction_id,
        "account_id": account_id,
        "cash": cash,
        "total_equity": equity,
        "position_quantity": new_qty,
        "average_cost": new_avg,
        "realized_pnl": realized_pnl,
    }


def mark_paper_positions(
    prices: dict[str, float],
    prev_closes: dict[str, float] | None = None,
    conn: sqlite3.Connection | None = None,
) -> int:
    """
    Revalue paper positions from a symbol -> price map and refresh account equity.

    prev_closes records each symbol's previous close as the day-start mark.
    Returns rows updated.
    """
    if not prices:
        return 0
    if prev_closes is None:
        prev_closes = {}
    now_str = to_iso(utc_now())
    updated = 0
    with get_db(conn) as c:
        for symbol, price in prices.items():
            if price is None or price <= 0:
                continue
            cursor = c.execute(
                "UPDATE paper_positions SET market_value = quantity * ?, "
                "prev_close = COALESCE(?, prev_close), updated_at = ? WHERE symbol = ?",
                [price, prev_closes.get(symbol), now_str, symbol],
            )
            updated += cursor.rowcount
        if updated:
            for row in c.execute("SELECT id FROM paper_accounts WHERE is_active = 1").fetchall():
                _refresh_equity(c, row["id"], now_str)
    return updated
