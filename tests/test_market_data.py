"""Tests for market data snapshots and the synthetic fallback."""

import sys
from pathlib import Path
from unittest.mock import patch
sys.path.insert(0, str(Path(__file__).parent.parent))

import numpy as np
import pytest
from market_data import build_snapshot, synthetic_snapshot, fetch_market_data


def _bars(closes, volume=1_000_000):
    return [
        {"date": f"2025-01-{i + 1:02d}", "open": c, "high": c * 1.01, "low": c * 0.99, "close": c, "volume": volume}
        for i, c in enumerate(closes)
    ]


class TestSyntheticSnapshot:
    def test_shape(self):
        snap = synthetic_snapshot("AAPL", np.random.default_rng(1))
        assert snap.is_synthetic
        assert len(snap.closes) == 30
        assert snap.price == snap.closes[-1]
        assert snap.prev_close == snap.closes[-2]
        assert snap.low <= snap.price <= snap.high
        assert snap.avg_volume > 0
        assert all(c > 0 for c in snap.closes)

    def test_seed_reproducible(self):
        a = synthetic_snapshot("AAPL", np.random.default_rng(7))
        b = synthetic_snapshot("AAPL", np.random.default_rng(7))
        assert a.closes == b.closes

    def test_base_price(self):
        snap = synthetic_snapshot("AAPL", np.random.default_rng(3), base_price=100.0)
        assert 50 < snap.closes[0] < 150


class TestBuildSnapshot:
    def test_from_snapshot_and_bars(self):
        closes = [100.0 + i for i in range(40)]
        snap = build_snapshot("AAPL", {
            "latest_trade_price": 141.5,
            "daily_bar_close": 141.0,
            "daily_bar_high": 142.0,
            "daily_bar_low": 139.0,
            "daily_bar_volume": 2_000_000,
            "prev_daily_bar_close": 139.0,
        }, _bars(closes))
        assert snap.price == 141.5
        assert snap.prev_close == 139.0
        assert len(snap.closes) == 30
        assert snap.closes[-1] == 139.0
        assert snap.volume_ratio == pytest.approx(2.0)
        assert not snap.is_synthetic

    def test_bars_only(self):
        snap = build_snapshot("AAPL", None, _bars([10.0, 11.0, 12.0]))
        assert snap.price == 12.0
        assert snap.prev_close == 11.0
        assert snap.volume == 1_000_000

    def test_not_enough_bars(self):
        assert build_snapshot("AAPL", {"latest_trade_price": 10.0}, _bars([10.0])) is None


class TestFetchMarketData:
    def test_no_credentials_all_synthetic(self):
        with patch("market_data.alpaca_client.has_credentials", return_value=False):
            data = fetch_market_data(["AAPL", "MSFT"], seed=1)
        assert list(data) == ["AAPL", "MSFT"]
        assert all(s.is_synthetic for s in data.values())

    def test_failed_symbol_falls_back(self):
        def bars(symbol, start, end):
            if symbol == "MSFT":
                raise ConnectionError("timeout")
            return _bars([100.0 + i for i in range(30)])

        with patch("market_data.alpaca_client.has_credentials", return_value=True), \
             patch("market_data.alpaca_client.get_snapshot", return_value={}), \
             patch("market_data.alpaca_client.get_bars", side_effect=bars):
            data = fetch_market_data(["AAPL", "MSFT"], seed=1)

        assert not data["AAPL"].is_synthetic
        assert data["AAPL"].price == 129.0
        assert data["MSFT"].is_synthetic

    def test_snapshot_failure_uses_bars(self):
        with patch("market_data.alpaca_client.has_credentials", return_value=True), \
             patch("market_data.alpaca_client.get_snapshot", side_effect=RuntimeError("503")), \
             patch("market_data.alpaca_client.get_bars", return_value=_bars([50.0, 51.0, 52.0])):
            data = fetch_market_data(["AAPL"])
        assert data["AAPL"].price == 52.0
        assert not data["AAPL"].is_synthetic
