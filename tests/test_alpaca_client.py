"""Tests for the alpaca-py wrapper: retries, tradability lookups, order requests."""

import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch, MagicMock
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from alpaca.common.exceptions import APIError
from alpaca.trading.requests import LimitOrderRequest, MarketOrderRequest, StopOrderRequest
from alpaca.trading.enums import OrderSide, TimeInForce

import alpaca_client


def _api_error(status, message="error"):
    return APIError(message, http_error=MagicMock(response=MagicMock(status_code=status)))


@pytest.fixture(autouse=True)
def no_sleep():
    with patch("alpaca_client.time.sleep") as sleep:
        yield sleep


class TestRetry:
    def test_success_first_try(self):
        fn = MagicMock(return_value=42)
        assert alpaca_client._retry(fn) == 42
        assert fn.call_count == 1

    def test_transient_then_success(self, no_sleep):
        fn = MagicMock(side_effect=[ConnectionError("reset"), 7])
        assert alpaca_client._retry(fn) == 7
        assert fn.call_count == 2
        no_sleep.assert_called_once_with(alpaca_client.RETRY_DELAY)

    def test_gives_up_after_max(self):
        fn = MagicMock(side_effect=ConnectionError("down"))
        with pytest.raises(ConnectionError):
            alpaca_client._retry(fn)
        assert fn.call_count == alpaca_client.MAX_RETRIES

    def test_client_error_not_retried(self):
        fn = MagicMock(side_effect=_api_error(403, "forbidden"))
        with pytest.raises(APIError):
            alpaca_client._retry(fn)
        assert fn.call_count == 1

    def test_server_error_retried(self):
        fn = MagicMock(side_effect=[_api_error(503), "ok"])
        assert alpaca_client._retry(fn) == "ok"


class TestCredentials:
    def test_missing(self):
        with patch("config.ALPACA_API_KEY", ""), patch("config.ALPACA_SECRET_KEY", "s"):
            assert alpaca_client.has_credentials() is False

    def test_present(self):
        with patch("config.ALPACA_API_KEY", "k"), patch("config.ALPACA_SECRET_KEY", "s"):
            assert alpaca_client.has_credentials() is True


class TestGetAsset:
    def test_tradable(self):
        client = MagicMock()
        client.get_asset.return_value = SimpleNamespace(
            symbol="AAPL", tradable=True, status=SimpleNamespace(value="active")
        )
        with patch("alpaca_client._get_trading_client", return_value=client):
            assert alpaca_client.get_asset("AAPL") == {"symbol": "AAPL", "tradable": True, "status": "active"}

    def test_404_is_none(self):
        client = MagicMock()
        client.get_asset.side_effect = _api_error(404, "asset not found")
        with patch("alpaca_client._get_trading_client", return_value=client):
            assert alpaca_client.get_asset("ZZZZ") is None

    def test_other_errors_raise(self):
        client = MagicMock()
        client.get_asset.side_effect = _api_error(401, "unauthorized")
        with patch("alpaca_client._get_trading_client", return_value=client):
            with pytest.raises(APIError):
                alpaca_client.get_asset("AAPL")


class TestSubmitOrder:
    def _client(self):
        client = MagicMock()
        client.submit_order.return_value = SimpleNamespace(
            id="abc", status=SimpleNamespace(value="filled"), symbol="AAPL",
            qty="10", filled_qty="10", filled_avg_price="150.5",
        )
        return client

    def test_market(self):
        client = self._client()
        with patch("alpaca_client._get_trading_client", return_value=client):
            result = alpaca_client.submit_order("AAPL", 10, "buy")
        request = client.submit_order.call_args.args[0]
        assert isinstance(request, MarketOrderRequest)
        assert request.side == OrderSide.BUY
        assert request.time_in_force == TimeInForce.DAY
        assert result == {
            "order_id": "abc", "status": "filled", "symbol": "AAPL", "qty": 10,
            "side": "buy", "filled_avg_price": 150.5, "filled_qty": 10,
        }

    def test_limit(self):
        client = self._client()
        with patch("alpaca_client._get_trading_client", return_value=client):
            alpaca_client.submit_order("AAPL", 10, "sell", order_type="limit", time_in_force="gtc", limit_price=151.234)
        request = client.submit_order.call_args.args[0]
        assert isinstance(request, LimitOrderRequest)
        assert request.limit_price == 151.23
        assert request.time_in_force == TimeInForce.GTC

    def test_stop(self):
        client = self._client()
        with patch("alpaca_client._get_trading_client", return_value=client):
            alpaca_client.submit_order("AAPL", 10, "sell", order_type="stop", stop_price=140.0)
        assert isinstance(client.submit_order.call_args.args[0], StopOrderRequest)

    def test_limit_requires_price(self):
        with pytest.raises(ValueError):
            alpaca_client.submit_order("AAPL", 10, "buy", order_type="limit")

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            alpaca_client.submit_order("AAPL", 10, "buy", order_type="trailing")
