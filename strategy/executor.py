"""
Execution adapter: turns one stored signal into a broker order.

Outcomes are a closed set (Filled, Pending, Simulated, Rejected). Missing
credentials and "symbol not found / not tradable" answers are soft failures
routed to the paper ledger. Any other broker error rejects this one signal
only; the signal stays active and is retried next run.
"""

import logging
import sqlite3

from config import PIPELINE_CONFIG
from db.paper import PaperTradeError, execute_paper_trade, get_paper_quantity
from pipeline_types import (
    BUY, SELL,
    ExecutionResult, Filled, Pending, Rejected, Simulated,
)

logger = logging.getLogger(__name__)

NOT_FOUND_MARKERS = ("not found", "not tradable", "not tradeable")
FAILED_ORDER_STATUSES = ("rejected", "canceled", "cancelled", "expired", "suspended")


def is_soft_failure(error: Exception) -> bool:
    """Broker errors that mean "this symbol can't be traded here": 404 or a not-found/not-tradable message."""
    if getattr(error, "status_code", None) == 404:
        return True
    message = str(error).lower()
    return any(marker in message for marker in NOT_FOUND_MARKERS)


def simulate_fill(
    user_id: str,
    symbol: str,
    side: str,
    quantity: int,
    price: float,
    reason: str,
    order_type: str = "market",
    signal_id: str | None = None,
    conn: sqlite3.Connection | None = None,
) -> ExecutionResult:
    """
    Book the order on the paper ledger instead of the broker.

    A SELL is capped to the long quantity held on paper; with nothing held
    it is rejected rather than opening a short. With signal_id, the signal
    is marked executed in the same transaction as the fill.
    """
    if side == SELL:
        held = get_paper_quantity(user_id, symbol, conn=conn)
        if held <= 0:
            return Rejected(symbol, side, quantity, "no paper position to sell", simulated=True)
        quantity = min(quantity, held)

    try:
        fill = execute_paper_trade(
            user_id, symbol, side, quantity, price, order_type, signal_id=signal_id, conn=conn
        )
    except PaperTradeError as e:
        logger.warning(f"Paper {side} {quantity} {symbol} failed for {user_id}: {e}")
        return Rejected(symbol, side, quantity, str(e), simulated=True)

    logger.warning(f"{symbol}: {reason}, simulated {side} {quantity} @ ${price:.2f} for {user_id}")
    return Simulated(symbol, side, quantity, price, fill["transaction_id"], reason)


def execute_signal(
    user_id: str,
    signal: dict,
    quantity: int,
    price: float,
    broker,
    order_type: str | None = None,
    time_in_force: str | None = None,
    mark_executed: bool = False,
    conn: sqlite3.Connection | None = None,
) -> ExecutionResult:
    """
    Submit one order for a stored signal.

    Args:
        user_id: Owner of the signal
        signal: Stored signal row (symbol, signal_type, target/stop prices)
        quantity: Sized share quantity (> 0)
        price: Reference price for paper fills and limit defaults
        broker: Module exposing has_credentials, get_asset, submit_order
        order_type: "market", "limit" or "stop" (default from config)
        time_in_force: "day", "gtc", "ioc" or "fok" (default from config)
        mark_executed: Mark the signal executed together with a paper fill

    Returns:
        Filled | Pending | Simulated | Rejected
    """
    if order_type is None:
        order_type = PIPELINE_CONFIG["order_type"]
    if time_in_force is None:
        time_in_force = PIPELINE_CONFIG["time_in_force"]

    symbol = signal["symbol"]
    side = signal["signal_type"]
    if side not in (BUY, SELL):
        return Rejected(symbol, side, quantity, f"not an executable action: {side}")
    if quantity <= 0:
        return Rejected(symbol, side, quantity, "quantity must be positive")

    def _paper(reason: str) -> ExecutionResult:
        signal_id = signal["id"] if mark_executed else None
        return simulate_fill(user_id, symbol, side, quantity, price, reason, order_type, signal_id, conn)

    if not broker.has_credentials():
        return _paper("no broker credentials")

    # Tradability pre-check
    try:
        asset = broker.get_asset(symbol)
    except Exception as e:
        if is_soft_failure(e):
            return _paper(f"asset lookup: {e}")
        logger.error(f"{symbol}: asset lookup failed for {user_id}: {e}")
        return Rejected(symbol, side, quantity, f"asset lookup failed: {e}")

    if asset is None:
        return _paper("symbol not found at broker")
    if not asset.get("tradable") or asset.get("status", "active") != "active":
        return _paper("symbol not tradable at broker")

    limit_price = (signal.get("target_price") or price) if order_type == "limit" else None
    stop_price = signal.get("stop_loss_price") if order_type == "stop" else None

    try:
        order = broker.submit_order(
            symbol, quantity, side.lower(),
            order_type=order_type,
            time_in_force=time_in_force,
            limit_price=limit_price,
            stop_price=stop_price,
        )
    except Exception as e:
        if is_soft_failure(e):
            return _paper(f"order refused: {e}")
        logger.error(f"{symbol}: {side} {quantity} rejected for {user_id}: {e}")
        return Rejected(symbol, side, quantity, str(e))

    status = str(order.get("status", "")).lower()
    if status == "filled":
        fill_price = order.get("filled_avg_price")
        logger.info(f"{symbol}: {side} {quantity} filled @ {fill_price} for {user_id} (order {order['order_id']})")
        return Filled(order["order_id"], symbol, side, order.get("filled_qty") or quantity, fill_price)
    if status in FAILED_ORDER_STATUSES:
        logger.error(f"{symbol}: order {order['order_id']} came back {status} for {user_id}")
        return Rejected(symbol, side, quantity, f"order {status}")

    logger.info(f"{symbol}: {side} {quantity} accepted ({status}) for {user_id} (order {order['order_id']})")
    return Pending(order["order_id"], symbol, side, quantity, status)
