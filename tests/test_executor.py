"""Tests for the execution adapter and its paper-trading fallback."""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from unittest.mock import MagicMock
from pipeline_types import Filled, Pending, Simulated, Rejected
from db.paper import execute_paper_trade, get_account, get_or_create_account, get_paper_quantity, get_transactions
from db.models import insert_signal, cancel_signal, get_signal
from strategy.executor import execute_signal, is_soft_failure


class BrokerError(Exception):
    """Stands in for alpaca's APIError: message plus optional HTTP status."""

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


def _signal(symbol="AAPL", side="BUY", **extra):
    return {"id": "sig-1", "symbol": symbol, "signal_type": side, "target_price": 150.0,
            "stop_loss_price": 147.0, "take_profit_price": 156.0, "quantity": None, **extra}


class TestSoftFailure:
    def test_404(self):
        assert is_soft_failure(BrokerError("boom", status_code=404))

    def test_not_found_message(self):
        assert is_soft_failure(BrokerError('{"message": "asset not found"}', status_code=422))

    def test_not_tradable_message(self):
        assert is_soft_failure(Exception("ZZZZ is not tradable"))

    def test_other_errors(self):
        assert not is_soft_failure(BrokerError("insufficient buying power", status_code=403))
        assert not is_soft_failure(TimeoutError("read timed out"))


class TestLivePath:
    def test_filled(self, db_conn, mock_broker):
        result = execute_signal("u1", _signal(), 10, 150.0, mock_broker, conn=db_conn)
        assert isinstance(result, Filled)
        assert result.order_id == "order-123"
        assert result.fill_price == 150.25
        mock_broker.submit_order.assert_called_once_with(
            "AAPL", 10, "buy", order_type="market", time_in_force="day",
            limit_price=None, stop_price=None,
        )

    def test_pending(self, db_conn, mock_broker):
        mock_broker.submit_order.return_value = {
            "order_id": "order-9", "status": "accepted", "symbol": "AAPL",
            "qty": 10, "side": "sell", "filled_avg_price": None, "filled_qty": 0,
        }
        result = execute_signal("u1", _signal(side="SELL"), 10, 150.0, mock_broker, conn=db_conn)
        assert isinstance(result, Pending)
        assert result.order_status == "accepted"
        assert mock_broker.submit_order.call_args.args[2] == "sell"

    def test_order_rejected_status(self, db_conn, mock_broker):
        mock_broker.submit_order.return_value = {
            "order_id": "order-9", "status": "rejected", "symbol": "AAPL",
            "qty": 10, "side": "buy", "filled_avg_price": None, "filled_qty": 0,
        }
        result = execute_signal("u1", _signal(), 10, 150.0, mock_broker, conn=db_conn)
        assert isinstance(result, Rejected)
        assert result.simulated is False

    def test_limit_order_uses_target_price(self, db_conn, mock_broker):
        execute_signal("u1", _signal(), 10, 149.0, mock_broker, order_type="limit", conn=db_conn)
        assert mock_broker.submit_order.call_args.kwargs["limit_price"] == 150.0

    def test_stop_order_uses_stop_price(self, db_conn, mock_broker):
        execute_signal("u1", _signal(), 10, 149.0, mock_broker, order_type="stop", time_in_force="gtc", conn=db_conn)
        kwargs = mock_broker.submit_order.call_args.kwargs
        assert kwargs["stop_price"] == 147.0
        assert kwargs["time_in_force"] == "gtc"

    def test_hard_broker_error_rejects_signal_only(self, db_conn, mock_broker):
        mock_broker.submit_order.side_effect = BrokerError("insufficient buying power", status_code=403)
        result = execute_signal("u1", _signal(), 10, 150.0, mock_broker, conn=db_conn)
        assert isinstance(result, Rejected)
        assert "buying power" in result.reason
        assert get_account("u1", conn=db_conn) is None

    def test_network_error_on_asset_lookup_rejects(self, db_conn, mock_broker):
        mock_broker.get_asset.side_effect = ConnectionError("connection reset")
        result = execute_signal("u1", _signal(), 10, 150.0, mock_broker, conn=db_conn)
        assert isinstance(result, Rejected)
        mock_broker.submit_order.assert_not_called()

    def test_zero_quantity_rejected(self, db_conn, mock_broker):
        result = execute_signal("u1", _signal(), 0, 150.0, mock_broker, conn=db_conn)
        assert isinstance(result, Rejected)
        mock_broker.submit_order.assert_not_called()


class TestPaperFallback:
    def test_no_credentials(self, db_conn, offline_broker):
        result = execute_signal("u1", _signal(), 10, 150.0, offline_broker, conn=db_conn)
        assert isinstance(result, Simulated)
        assert result.fill_price == 150.0
        assert "credentials" in result.reason
        offline_broker.submit_order.assert_not_called()
        assert get_paper_quantity("u1", "AAPL", conn=db_conn) == 10
        assert get_account("u1", conn=db_conn)["current_cash"] == pytest.approx(98_500.0)

    def test_asset_not_found(self, db_conn, mock_broker):
        mock_broker.get_asset.return_value = None
        result = execute_signal("u1", _signal(), 10, 150.0, mock_broker, conn=db_conn)
        assert isinstance(result, Simulated)
        mock_broker.submit_order.assert_not_called()

    def test_asset_not_tradable(self, db_conn, mock_broker):
        mock_broker.get_asset.return_value = {"symbol": "AAPL", "tradable": False, "status": "active"}
        assert isinstance(execute_signal("u1", _signal(), 10, 150.0, mock_broker, conn=db_conn), Simulated)

    def test_asset_inactive(self, db_conn, mock_broker):
        mock_broker.get_asset.return_value = {"symbol": "AAPL", "tradable": True, "status": "inactive"}
        assert isinstance(execute_signal("u1", _signal(), 10, 150.0, mock_broker, conn=db_conn), Simulated)

    def test_order_404_routes_to_paper(self, db_conn, mock_broker):
        mock_broker.submit_order.side_effect = BrokerError("symbol not found", status_code=404)
        result = execute_signal("u1", _signal(), 10, 150.0, mock_broker, conn=db_conn)
        assert isinstance(result, Simulated)
        assert len(get_transactions("u1", conn=db_conn)) == 1

    def test_paper_insufficient_funds(self, db_conn, offline_broker):
        get_or_create_account("u1", conn=db_conn)
        result = execute_signal("u1", _signal(), 1_000, 150.0, offline_broker, conn=db_conn)
        assert isinstance(result, Rejected)
        assert result.simulated is True
        assert get_account("u1", conn=db_conn)["current_cash"] == 100_000

    def test_paper_sell_capped_to_holding(self, db_conn, offline_broker):
        execute_paper_trade("u1", "AAPL", "BUY", 4, 140.0, conn=db_conn)
        result = execute_signal("u1", _signal(side="SELL"), 10, 150.0, offline_broker, conn=db_conn)
        assert isinstance(result, Simulated)
        assert result.quantity == 4
        assert get_paper_quantity("u1", "AAPL", conn=db_conn) == 0

    def test_paper_sell_without_holding(self, db_conn, offline_broker):
        result = execute_signal("u1", _signal(side="SELL"), 10, 150.0, offline_broker, conn=db_conn)
        assert isinstance(result, Rejected)
        assert result.simulated is True
        assert get_transactions("u1", conn=db_conn) == []

    def test_mark_executed_claims_signal(self, db_conn, offline_broker):
        signal_id = insert_signal("u1", "AAPL", "BUY", 80, target_price=150.0, conn=db_conn)
        result = execute_signal("u1", get_signal(signal_id, conn=db_conn), 10, 150.0, offline_broker,
                                mark_executed=True, conn=db_conn)
        assert isinstance(result, Simulated)
        assert get_signal(signal_id, conn=db_conn)["status"] == "executed"

    def test_mark_executed_on_cancelled_signal_rejected(self, db_conn, offline_broker):
        signal_id = insert_signal("u1", "AAPL", "BUY", 80, target_price=150.0, conn=db_conn)
        signal = get_signal(signal_id, conn=db_conn)
        cancel_signal(signal_id, conn=db_conn)
        result = execute_signal("u1", signal, 10, 150.0, offline_broker, mark_executed=True, conn=db_conn)
        assert isinstance(result, Rejected)
        assert result.simulated is True
        assert get_paper_quantity("u1", "AAPL", conn=db_conn) == 0
        assert get_transactions("u1", conn=db_conn) == []
