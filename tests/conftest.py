"""
Shared fixtures for signal pipeline tests.

Provides in-memory DB, price series generators, and common fixtures.
"""

import sqlite3
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest

# Ensure project root is importable
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from db.models import init_tables
from pipeline_types import MarketSnapshot, RiskSettings


@pytest.fixture
def db_conn():
    """In-memory SQLite database with all tables created."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    init_tables(conn)
    yield conn
    conn.close()


@pytest.fixture
def uptrend_closes():
    """30 closes in a steady uptrend with small noise."""
    np.random.seed(42)
    prices = [100.0]
    for _ in range(29):
        prices.append(prices[-1] * (1 + np.random.normal(0.004, 0.005)))
    return prices


def make_pullback_closes():
    """
    Sharp rally (50 -> 200 over 16 days) then a steady 14-day pullback to 186.

    Every delta in the RSI window is a loss (RSI = 0) while EMA(12) is still
    well above EMA(26), so the MACD histogram is positive. Price sits mid-band
    (Bollinger position ~0.48).
    """
    prices = [50.0 + 10 * i for i in range(16)]
    prices += [200.0 - k for k in range(1, 15)]
    return prices


@pytest.fixture
def pullback_closes():
    return make_pullback_closes()


@pytest.fixture
def flat_closes():
    return [50.0] * 30


def make_snapshot(closes, symbol="AAPL", volume=1_600_000, avg_volume=1_000_000, prev_close=None, price=None):
    price = closes[-1] if price is None else price
    return MarketSnapshot(
        symbol=symbol,
        price=price,
        prev_close=closes[-2] if prev_close is None else prev_close,
        volume=volume,
        avg_volume=avg_volume,
        closes=list(closes),
        high=price * 1.01,
        low=price * 0.99,
    )


@pytest.fixture
def snapshot_factory():
    return make_snapshot


@pytest.fixture
def risk_settings():
    """Enabled user: $10k max position, 2% portfolio risk, $1k daily loss limit, 5 open max."""
    return RiskSettings(
        max_position_size=10_000.0,
        max_portfolio_risk=0.02,
        daily_loss_limit=1_000.0,
        max_open_positions=5,
        stop_loss_percent=0.02,
        take_profit_percent=0.04,
        min_confidence_score=70.0,
        trading_enabled=True,
    )


@pytest.fixture
def disabled_settings(risk_settings):
    risk_settings.trading_enabled = False
    return risk_settings


@pytest.fixture
def mock_broker():
    """Broker module double: credentials present, asset tradable, orders fill."""
    broker = MagicMock()
    broker.has_credentials.return_value = True
    broker.get_asset.return_value = {"symbol": "AAPL", "tradable": True, "status": "active"}
    broker.get_account.return_value = {"equity": 100_000.0, "cash": 100_000.0, "buying_power": 100_000.0}
    broker.submit_order.return_value = {
        "order_id": "order-123",
        "status": "filled",
        "symbol": "AAPL",
        "qty": 10,
        "side": "buy",
        "filled_avg_price": 150.25,
        "filled_qty": 10,
    }
    return broker


@pytest.fixture
def offline_broker():
    """Broker module double without credentials (paper path)."""
    broker = MagicMock()
    broker.has_credentials.return_value = False
    return broker
