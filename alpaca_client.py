"""
Thin wrapper around alpaca-py for the signal pipeline.

Handles retries and provides clean dict interfaces for:
- Account info (equity, cash)
- Market data (snapshots, historical bars, calendar)
- Asset lookups (tradability)
- Order submission (market, limit, stop)
"""

import time
import logging
from datetime import datetime

from alpaca.common.exceptions import APIError
from alpaca.trading.client import TradingClient
from alpaca.trading.requests import (
    GetCalendarRequest,
    LimitOrderRequest,
    MarketOrderRequest,
    StopOrderRequest,
)
from alpaca.trading.enums import OrderSide, TimeInForce
from alpaca.data.historical import StockHistoricalDataClient
from alpaca.data.requests import StockBarsRequest, StockSnapshotRequest
from alpaca.data.timeframe import TimeFrame

import config

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_DELAY = 2

TIME_IN_FORCE = {
    "day": TimeInForce.DAY,
    "gtc": TimeInForce.GTC,
    "ioc": TimeInForce.IOC,
    "fok": TimeInForce.FOK,
}


def has_credentials() -> bool:
    return bool(config.ALPACA_API_KEY and config.ALPACA_SECRET_KEY)


def _get_trading_client() -> TradingClient:
    paper = "paper" in config.ALPACA_BASE_URL
    return TradingClient(config.ALPACA_API_KEY, config.ALPACA_SECRET_KEY, paper=paper)


def _get_data_client() -> StockHistoricalDataClient:
    return StockHistoricalDataClient(config.ALPACA_API_KEY, config.ALPACA_SECRET_KEY)


def error_status(error: Exception) -> int | None:
    """HTTP status code of a broker error, if it carries one."""
    return getattr(error, "status_code", None)


def _retry(fn, description: str = "API call"):
    """
    Retry a function up to MAX_RETRIES times with RETRY_DELAY between attempts.

    Broker client errors (4xx) are raised immediately.
    """
    last_error = None
    for attempt in range(1, MAX_RETRIES + 1):
        try:
            return fn()
        except APIError as e:
            status = error_status(e)
            if status is not None and 400 <= status < 500:
                logger.warning(f"{description} rejected ({status}): {e}")
                raise
            last_error = e
        except Exception as e:
            last_error = e
        logger.warning(f"{description} attempt {attempt}/{MAX_RETRIES} failed: {last_error}")
        if attempt < MAX_RETRIES:
            time.sleep(RETRY_DELAY)
    raise last_error


def get_account() -> dict:
    """Get account info: equity, cash, buying power."""
    def _call():
        client = _get_trading_client()
        acct = client.get_account()
        return {
            "equity": float(acct.equity),
            "cash": float(acct.cash),
            "buying_power": float(acct.buying_power),
        }
    return _retry(_call, "get_account")


def get_snapshot(symbols: list[str]) -> dict:
    """Get multi-symbol snapshot (latest trade, daily bar, previous daily bar)."""
    def _call():
        client = _get_data_client()
        request = StockSnapshotRequest(symbol_or_symbols=symbols)
        snapshots = client.get_stock_snapshot(request)
        result = {}
        for sym, snap in snapshots.items():
            result[sym] = {
                "latest_trade_price": float(snap.latest_trade.price) if snap.latest_trade else None,
                "daily_bar_close": float(snap.daily_bar.close) if snap.daily_bar else None,
                "daily_bar_high": float(snap.daily_bar.high) if snap.daily_bar else None,
                "daily_bar_low": float(snap.daily_bar.low) if snap.daily_bar else None,
                "daily_bar_volume": int(snap.daily_bar.volume) if snap.daily_bar else None,
                "prev_daily_bar_close": float(snap.previous_daily_bar.close) if snap.previous_daily_bar else None,
            }
        return result
    return _retry(_call, "get_snapshot")


def get_bars(symbol: str, start: str, end: str) -> list[dict]:
    """
    Get historical daily bars.

    Args:
        symbol: e.g. "AAPL"
        start: ISO date string e.g. "2025-01-01"
        end: ISO date string e.g. "2025-02-20"

    Returns:
        List of dicts with date, open, high, low, close, volume (oldest first)
    """
    def _call():
        client = _get_data_client()
        request = StockBarsRequest(
            symbol_or_symbols=symbol,
            timeframe=TimeFrame.Day,
            start=datetime.fromisoformat(start),
            end=datetime.fromisoformat(end),
        )
        bars = client.get_stock_bars(request)
        result = []
        bar_set = bars[symbol] if symbol in bars else []
        for bar in bar_set:
            result.append({
                "date": bar.timestamp.date().isoformat(),
                "open": float(bar.open),
                "high": float(bar.high),
                "low": float(bar.low),
                "close": float(bar.close),
                "volume": int(bar.volume),
            })
        return result
    return _retry(_call, f"get_bars({symbol})")


def get_calendar(target_date: str) -> dict | None:
    """
    Get market calendar for a specific date.

    Returns dict with open/close times, or None if market is closed.
    """
    def _call():
        client = _get_trading_client()
        day_value = datetime.fromisoformat(target_date).date()
        cal = client.get_calendar(GetCalendarRequest(start=day_value, end=day_value))
        if not cal:
            return None
        day = cal[0]
        if str(day.date) != target_date:
            return None
        return {
            "date": str(day.date),
            "open": str(day.open),
            "close": str(day.close),
        }
    return _retry(_call, "get_calendar")


def get_asset(symbol: str) -> dict | None:
    """
    Look up an asset's tradability.

    Returns None when the broker does not know the symbol (404).
    """
    def _call():
        client = _get_trading_client()
        asset = client.get_asset(symbol)
        status = getattr(asset.status, "value", asset.status)
        return {
            "symbol": asset.symbol,
            "tradable": bool(asset.tradable),
            "status": str(status),
        }
    try:
        return _retry(_call, f"get_asset({symbol})")
    except APIError as e:
        if error_status(e) == 404:
            return None
        raise


def submit_order(
    symbol: str,
    qty: int,
    side: str,
    order_type: str = "market",
    time_in_force: str = "day",
    limit_price: float | None = None,
    stop_price: float | None = None,
) -> dict:
    """
    Submit an order.

    Args:
        symbol: e.g. "AAPL"
        qty: number of shares (positive)
        side: "buy" or "sell"
        order_type: "market", "limit" or "stop"
        time_in_force: "day", "gtc", "ioc" or "fok"
        limit_price: required for limit orders
        stop_price: required for stop orders

    Returns:
        Dict with order_id, status, filled_qty, filled_avg_price
    """
    if order_type == "limit" and limit_price is None:
        raise ValueError("limit order requires limit_price")
    if order_type == "stop" and stop_price is None:
        raise ValueError("stop order requires stop_price")
    if order_type not in ("market", "limit", "stop"):
        raise ValueError(f"Unsupported order type {order_type}")

    def _call():
        client = _get_trading_client()
        params = {
            "symbol": symbol,
            "qty": qty,
            "side": OrderSide.BUY if side == "buy" else OrderSide.SELL,
            "time_in_force": TIME_IN_FORCE[time_in_force],
        }
        if order_type == "limit":
            request = LimitOrderRequest(limit_price=round(limit_price, 2), **params)
        elif order_type == "stop":
            request = StopOrderRequest(stop_price=round(stop_price, 2), **params)
        else:
            request = MarketOrderRequest(**params)
        order = client.submit_order(request)
        status = getattr(order.status, "value", order.status)
        return {
            "order_id": str(order.id),
            "status": str(status),
            "symbol": order.symbol,
            "qty": int(float(order.qty)) if order.qty else qty,
            "side": side,
            "filled_avg_price": float(order.filled_avg_price) if order.filled_avg_price else None,
            "filled_qty": int(float(order.filled_qty)) if order.filled_qty else 0,
        }
    return _retry(_call, f"submit_order({symbol} {side} {qty} {order_type})")
