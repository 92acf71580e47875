"""
Position sizing for a stored signal.

quantity = floor(min(max_position_size, equity * max_portfolio_risk) / stop_distance)
capped at floor(max_position_size / price). An explicit quantity on the
signal overrides the computed size. A result <= 0 means skip the signal.
"""

import math

from config import PIPELINE_CONFIG
from pipeline_types import RiskSettings


def stop_loss_distance(price: float, stop_loss_price: float | None, stop_loss_percent: float) -> float:
    """|price - stop| when a stop price is set, else price * stop_loss_percent."""
    if stop_loss_price is not None:
        return abs(price - stop_loss_price)
    return price * stop_loss_percent


def calculate_position_size(
    price: float,
    settings: RiskSettings,
    equity: float | None = None,
    stop_loss_price: float | None = None,
    explicit_quantity: int | None = None,
) -> int:
    """
    Share quantity for one signal.

    Args:
        price: Current price of the symbol
        settings: User's risk settings
        equity: Account equity (default PIPELINE_CONFIG["default_account_equity"])
        stop_loss_price: Signal's stop price, if any
        explicit_quantity: Quantity set on the signal, overrides sizing

    Returns:
        Whole shares, 0 when the signal cannot be sized
    """
    if explicit_quantity is not None:
        return max(0, int(explicit_quantity))

    if equity is None:
        equity = PIPELINE_CONFIG["default_account_equity"]
    if price <= 0:
        return 0

    distance = stop_loss_distance(price, stop_loss_price, settings.stop_loss_percent)
    if distance <= 0:
        return 0

    risk_budget = min(settings.max_position_size, equity * settings.max_portfolio_risk)
    quantity = math.floor(risk_budget / distance)
    max_by_value = math.floor(settings.max_position_size / price)
    return max(0, min(quantity, max_by_value))
