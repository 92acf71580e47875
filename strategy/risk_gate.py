"""
Per-user risk gate, evaluated once per user per execution pass.

Rules in order, first match wins:
1. trading disabled (or no settings)   -> blocked "trading disabled"
2. open positions >= max_open_positions -> blocked "max positions reached"
3. today's P&L <= -daily_loss_limit     -> blocked "daily loss limit reached"
4. otherwise clear
"""

import logging
import sqlite3
from datetime import datetime

from db.models import count_open_positions, get_todays_pnl
from pipeline_types import RiskCheck, RiskSettings

logger = logging.getLogger(__name__)

TRADING_DISABLED = "trading disabled"
MAX_POSITIONS = "max positions reached"
DAILY_LOSS_LIMIT = "daily loss limit reached"


def check_risk(settings: RiskSettings | None, open_positions: int, todays_pnl: float) -> RiskCheck:
    """Pure gate decision from already-gathered metrics."""
    if settings is None or not settings.trading_enabled:
        return RiskCheck("blocked", TRADING_DISABLED, open_positions, todays_pnl)
    if open_positions >= settings.max_open_positions:
        return RiskCheck("blocked", MAX_POSITIONS, open_positions, todays_pnl)
    if todays_pnl <= -settings.daily_loss_limit:
        return RiskCheck("blocked", DAILY_LOSS_LIMIT, open_positions, todays_pnl)
    return RiskCheck("clear", "", open_positions, todays_pnl)


def evaluate_risk_gate(
    user_id: str,
    settings: RiskSettings | None,
    now: datetime | None = None,
    conn: sqlite3.Connection | None = None,
) -> RiskCheck:
    """
    Gather the user's open-position count and today's P&L, then apply the rules.

    A disabled user is blocked before any position or P&L lookup.
    """
    if settings is None or not settings.trading_enabled:
        logger.info(f"{user_id}: blocked, {TRADING_DISABLED}")
        return check_risk(settings, 0, 0.0)

    open_positions = count_open_positions(user_id, conn=conn)
    todays_pnl = get_todays_pnl(user_id, now=now, conn=conn)
    result = check_risk(settings, open_positions, todays_pnl)

    if result.is_clear:
        logger.info(f"{user_id}: clear ({open_positions}/{settings.max_open_positions} open, P&L ${todays_pnl:,.2f})")
    else:
        logger.info(f"{user_id}: blocked, {result.reason} ({open_positions} open, P&L ${todays_pnl:,.2f})")
    return result


def available_slots(settings: RiskSettings, check: RiskCheck) -> int:
    """Signals that may still be executed this pass without exceeding max_open_positions."""
    return max(0, settings.max_open_positions - check.open_positions)
