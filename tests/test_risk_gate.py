"""Tests for the per-user risk gate."""

import sys
from pathlib import Path
from datetime import datetime, timedelta
from unittest.mock import patch
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
import pytz
from db.models import create_position, mark_positions_to_market, to_iso
from db.paper import execute_paper_trade, mark_paper_positions
from strategy.risk_gate import check_risk, evaluate_risk_gate, available_slots

NOW = pytz.utc.localize(datetime(2025, 3, 3, 15, 0, 0))


class TestCheckRisk:
    def test_clear(self, risk_settings):
        result = check_risk(risk_settings, open_positions=2, todays_pnl=-100.0)
        assert result.is_clear
        assert result.reason == ""

    def test_no_settings_blocked(self):
        result = check_risk(None, 0, 0.0)
        assert result.state == "blocked"
        assert result.reason == "trading disabled"

    def test_disabled_blocked(self, disabled_settings):
        assert check_risk(disabled_settings, 0, 0.0).reason == "trading disabled"

    def test_disabled_wins_over_everything(self, disabled_settings):
        result = check_risk(disabled_settings, open_positions=99, todays_pnl=-1_000_000.0)
        assert result.reason == "trading disabled"

    def test_max_positions(self, risk_settings):
        result = check_risk(risk_settings, open_positions=5, todays_pnl=0.0)
        assert result.reason == "max positions reached"

    def test_max_positions_before_loss_limit(self, risk_settings):
        result = check_risk(risk_settings, open_positions=5, todays_pnl=-5_000.0)
        assert result.reason == "max positions reached"

    def test_loss_limit_inclusive(self, risk_settings):
        result = check_risk(risk_settings, open_positions=0, todays_pnl=-1_000.0)
        assert result.reason == "daily loss limit reached"

    def test_just_inside_loss_limit(self, risk_settings):
        assert check_risk(risk_settings, 0, -999.99).is_clear


class TestEvaluateRiskGate:
    def test_disabled_skips_lookups(self, db_conn, disabled_settings):
        with patch("strategy.risk_gate.count_open_positions") as count, \
             patch("strategy.risk_gate.get_todays_pnl") as pnl:
            result = evaluate_risk_gate("u1", disabled_settings, conn=db_conn)
        assert result.reason == "trading disabled"
        count.assert_not_called()
        pnl.assert_not_called()

    def test_counts_live_and_paper_positions(self, db_conn, risk_settings):
        risk_settings.max_open_positions = 2
        create_position({"user_id": "u1", "symbol": "AAPL", "side": "long", "quantity": 5, "entry_price": 100.0}, conn=db_conn)
        execute_paper_trade("u1", "MSFT", "BUY", 1, 300.0, now=NOW, conn=db_conn)
        result = evaluate_risk_gate("u1", risk_settings, now=NOW, conn=db_conn)
        assert result.open_positions == 2
        assert result.reason == "max positions reached"

    def test_unrealized_loss_blocks(self, db_conn, risk_settings):
        create_position({"user_id": "u1", "symbol": "AAPL", "side": "long", "quantity": 100, "entry_price": 100.0}, conn=db_conn)
        mark_positions_to_market({"AAPL": 88.0}, conn=db_conn)
        result = evaluate_risk_gate("u1", risk_settings, now=NOW, conn=db_conn)
        assert result.todays_pnl == pytest.approx(-1_200.0)
        assert result.reason == "daily loss limit reached"

    def test_old_loss_does_not_carry_into_today(self, db_conn, risk_settings):
        create_position({"user_id": "u1", "symbol": "AAPL", "side": "long", "quantity": 100, "entry_price": 100.0,
                         "opened_at": to_iso(NOW - timedelta(days=10))}, conn=db_conn)
        mark_positions_to_market({"AAPL": 85.0}, conn=db_conn)
        result = evaluate_risk_gate("u1", risk_settings, now=NOW, conn=db_conn)
        assert result.todays_pnl == pytest.approx(0.0)
        assert result.is_clear

    def test_older_position_measured_from_prev_close(self, db_conn, risk_settings):
        create_position({"user_id": "u1", "symbol": "AAPL", "side": "long", "quantity": 100, "entry_price": 100.0,
                         "opened_at": to_iso(NOW - timedelta(days=10))}, conn=db_conn)
        mark_positions_to_market({"AAPL": 85.0}, {"AAPL": 90.0}, conn=db_conn)
        result = evaluate_risk_gate("u1", risk_settings, now=NOW, conn=db_conn)
        assert result.todays_pnl == pytest.approx(-500.0)
        assert result.is_clear

    def test_older_short_measured_from_prev_close(self, db_conn, risk_settings):
        create_position({"user_id": "u1", "symbol": "TSLA", "side": "short", "quantity": 10, "entry_price": 200.0,
                         "opened_at": to_iso(NOW - timedelta(days=3))}, conn=db_conn)
        mark_positions_to_market({"TSLA": 250.0}, {"TSLA": 240.0}, conn=db_conn)
        assert evaluate_risk_gate("u1", risk_settings, now=NOW, conn=db_conn).todays_pnl == pytest.approx(-100.0)

    def test_older_paper_position_measured_from_prev_close(self, db_conn, risk_settings):
        execute_paper_trade("u1", "AAPL", "BUY", 100, 90.0, now=NOW - timedelta(days=5), conn=db_conn)
        mark_paper_positions({"AAPL": 85.0}, {"AAPL": 86.0}, conn=db_conn)
        result = evaluate_risk_gate("u1", risk_settings, now=NOW, conn=db_conn)
        assert result.todays_pnl == pytest.approx(-100.0)

    def test_paper_position_opened_today_measured_from_cost(self, db_conn, risk_settings):
        execute_paper_trade("u1", "AAPL", "BUY", 100, 90.0, now=NOW - timedelta(hours=1), conn=db_conn)
        mark_paper_positions({"AAPL": 85.0}, {"AAPL": 95.0}, conn=db_conn)
        assert evaluate_risk_gate("u1", risk_settings, now=NOW, conn=db_conn).todays_pnl == pytest.approx(-500.0)

    def test_clear_user(self, db_conn, risk_settings):
        result = evaluate_risk_gate("u1", risk_settings, now=NOW, conn=db_conn)
        assert result.is_clear
        assert result.open_positions == 0


class TestAvailableSlots:
    def test_slots(self, risk_settings):
        assert available_slots(risk_settings, check_risk(risk_settings, 3, 0.0)) == 2

    def test_never_negative(self, risk_settings):
        assert available_slots(risk_settings, check_risk(risk_settings, 9, 0.0)) == 0
