#!/usr/bin/env python3
"""
CLI entry point for the signal pipeline.

Usage:
    python job.py generate              # Generate and store signals for the symbol universe
    python job.py generate --force      # Generate even if the market is closed today
    python job.py execute               # Turn stored signals into orders, per user
    python job.py correlations          # Refresh pair correlations and sector strength
    python job.py status                # Show signals, paper accounts and positions (no trading)
"""

import sys
import logging
import uuid
from datetime import datetime

import pytz

from config import PIPELINE_CONFIG, DEFAULT_SECTOR_MAPPINGS, LOG_DIR

ET = pytz.timezone("America/New_York")

# Log to file; cron captures stdout separately
LOG_DIR.mkdir(parents=True, exist_ok=True)
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[
        logging.FileHandler(LOG_DIR / "signal_pipeline.log"),
    ],
)
logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(ET).strftime("%Y-%m-%d %H:%M:%S %Z")


def _today_et() -> str:
    return datetime.now(ET).date().isoformat()


def _new_run_id() -> str:
    return f"{datetime.now(ET):%Y%m%d-%H%M%S}-{uuid.uuid4().hex[:6]}"


def _market_open_today() -> bool:
    """True when the broker calendar lists today. Without credentials the check is skipped."""
    import alpaca_client

    if not alpaca_client.has_credentials():
        logger.info("No broker credentials, skipping market-hours check")
        return True
    try:
        return alpaca_client.get_calendar(_today_et()) is not None
    except Exception as e:
        logger.warning(f"Calendar check failed ({e}), assuming market open")
        return True


def _signal_levels(action: str, price: float, stop_pct: float, take_pct: float) -> tuple[float, float]:
    """(stop_loss_price, take_profit_price) for a BUY or SELL at `price`."""
    if action == "BUY":
        return round(price * (1 - stop_pct), 2), round(price * (1 + take_pct), 2)
    return round(price * (1 + stop_pct), 2), round(price * (1 - take_pct), 2)


def generate_signals(snapshots: dict, conn=None, now: datetime | None = None) -> dict:
    """
    Evaluate every symbol and store qualifying signals for every active user.

    Raw strategy signals are computed for all symbols first so correlation
    confirmation sees the whole run regardless of symbol order.

    Returns:
        Summary dict for the run report.
    """
    from strategy.strategies import evaluate_strategies
    from strategy.context import resolve_sector_context, apply_context, dominant_action
    from strategy.combiner import combine_signals, select_persistable
    from db.models import (
        SignalStoreError, get_active_user_ids, get_risk_settings, get_recent_signal_actions,
        get_sector_mappings, insert_signal,
    )
    from db.cache import update_price_cache

    today = _today_et()

    # One bad symbol is logged and skipped; a store failure aborts the run
    failed = []
    raw = {}
    for sym, snap in snapshots.items():
        try:
            raw[sym] = evaluate_strategies(snap)
        except Exception:
            logger.exception(f"{sym}: strategy evaluation failed")
            failed.append(sym)
    directions = {sym: dominant_action(signals) for sym, signals in raw.items()}

    peer_symbols = sorted(set(get_sector_mappings(conn=conn)) | set(snapshots))
    peer_actions = get_recent_signal_actions(peer_symbols, now=now, conn=conn)
    peer_actions.update(directions)

    # Stop/take-profit percentages per user, config defaults when unset
    users = {}
    for user_id in get_active_user_ids(conn=conn):
        settings = get_risk_settings(user_id, conn=conn)
        if settings is None:
            users[user_id] = (PIPELINE_CONFIG["default_stop_loss_pct"], PIPELINE_CONFIG["default_take_profit_pct"])
        else:
            users[user_id] = (settings.stop_loss_percent, settings.take_profit_percent)

    combined_summary = []
    persisted = 0
    for sym, signals in raw.items():
        snap = snapshots[sym]
        try:
            context = resolve_sector_context(sym, directions[sym], peer_actions, today, conn=conn)
            adjusted = apply_context(signals, context)
            combined = combine_signals(sym, adjusted)
            to_store = select_persistable(adjusted, combined)
        except SignalStoreError:
            raise
        except Exception:
            logger.exception(f"{sym}: signal combination failed")
            failed.append(sym)
            continue

        logger.info(
            f"{sym}: ${snap.price:.2f} {combined.action} {combined.confidence:.1f} "
            f"(buy {combined.buy_score:.1f} / sell {combined.sell_score:.1f}, "
            f"context x{context.multiplier:.2f}, {len(to_store)} to store)"
        )
        combined_summary.append({"symbol": sym, "action": combined.action, "confidence": combined.confidence})

        for signal in to_store:
            signal_data = {
                "strategy": signal.strategy,
                "current_price": snap.price,
                "context_multiplier": context.multiplier,
                "sector": context.sector,
                "sector_strength": context.relative_strength,
                "confirmation_score": context.confirmation_score,
                "buy_score": combined.buy_score,
                "sell_score": combined.sell_score,
                "synthetic_data": snap.is_synthetic,
            }
            for user_id, (stop_pct, take_pct) in users.items():
                stop, take = _signal_levels(signal.action, snap.price, stop_pct, take_pct)
                insert_signal(
                    user_id, sym, signal.action, signal.confidence,
                    target_price=snap.price,
                    stop_loss_price=stop,
                    take_profit_price=take,
                    strategy=signal.strategy,
                    reasoning=signal.reasoning,
                    signal_data=signal_data,
                    now=now,
                    conn=conn,
                )
                persisted += 1

    update_price_cache(list(snapshots.values()), conn=conn)

    return {
        "symbols": len(snapshots),
        "synthetic": [sym for sym, s in snapshots.items() if s.is_synthetic],
        "combined": combined_summary,
        "persisted": persisted,
        "users": len(users),
        "failed": failed,
    }


def _account_equity(user_id: str, broker, conn=None) -> float:
    """Broker equity when live, else the paper account's equity, else the configured default."""
    from db.paper import get_account

    default = PIPELINE_CONFIG["default_account_equity"]
    if broker.has_credentials():
        try:
            return float(broker.get_account()["equity"])
        except Exception as e:
            logger.warning(f"{user_id}: account lookup failed ({e}), using default equity")
            return default
    account = get_account(user_id, conn=conn)
    return float(account["total_equity"]) if account else default


def execute_user(user_id: str, run_id: str, prices: dict, broker, conn=None, now: datetime | None = None):
    """
    Run the risk gate and execute eligible signals for one user.

    Returns:
        UserRunResult
    """
    from pipeline_types import Filled, Pending, Simulated, UserRunResult
    from strategy.risk_gate import evaluate_risk_gate, available_slots
    from strategy.sizing import calculate_position_size
    from strategy.executor import execute_signal
    from db.models import (
        get_risk_settings, get_eligible_signals, mark_signal_executed, cancel_signal,
        create_position, log_execution,
    )

    settings = get_risk_settings(user_id, conn=conn)
    check = evaluate_risk_gate(user_id, settings, now=now, conn=conn)
    if not check.is_clear:
        log_execution({"run_id": run_id, "user_id": user_id, "outcome": "blocked", "reason": check.reason}, conn=conn)
        return UserRunResult(user_id, "blocked", check.reason)

    slots = available_slots(settings, check)
    result = UserRunResult(user_id, "clear")
    if slots <= 0:
        logger.info(f"{user_id}: no open position slots")
        return result
    signals = get_eligible_signals(
        user_id, settings.min_confidence_score, limit=PIPELINE_CONFIG["signal_batch_limit"], now=now, conn=conn,
    )
    if not signals:
        logger.info(f"{user_id}: no eligible signals")
        return result

    equity = _account_equity(user_id, broker, conn)
    traded_symbols = set()
    placed = 0

    for sig in signals:
        # Slots are consumed by placed orders only
        if placed >= slots:
            break
        result.signals_considered += 1
        symbol = sig["symbol"]
        side = sig["signal_type"]
        entry = {"signal_id": sig["id"], "symbol": symbol, "side": side, "quantity": 0}

        def _record(outcome: str, reason: str = "", order_id=None, fill_price=None):
            log_execution({
                "run_id": run_id, "user_id": user_id, "signal_id": sig["id"],
                "symbol": symbol, "side": side, "quantity": entry["quantity"],
                "outcome": outcome, "order_id": order_id, "fill_price": fill_price, "reason": reason,
            }, conn=conn)

        if symbol in traded_symbols:
            cancel_signal(sig["id"], conn=conn)
            entry["reason"] = "symbol already traded this run"
            result.skipped.append(entry)
            _record("cancelled", entry["reason"])
            continue

        price = prices.get(symbol) or sig.get("target_price")
        if not price:
            entry["reason"] = "no price available"
            result.skipped.append(entry)
            _record("skipped", entry["reason"])
            continue

        quantity = calculate_position_size(
            price, settings, equity,
            stop_loss_price=sig.get("stop_loss_price"),
            explicit_quantity=sig.get("quantity"),
        )
        if quantity <= 0:
            entry["reason"] = "position size is zero"
            result.skipped.append(entry)
            _record("skipped", entry["reason"])
            continue
        entry["quantity"] = quantity

        outcome = execute_signal(user_id, sig, quantity, price, broker, mark_executed=True, conn=conn)

        if isinstance(outcome, (Filled, Pending)):
            fill_price = outcome.fill_price if isinstance(outcome, Filled) else None
            mark_signal_executed(sig["id"], now=now, conn=conn)
            create_position({
                "user_id": user_id,
                "symbol": symbol,
                "side": "long" if side == "BUY" else "short",
                "quantity": outcome.quantity,
                "entry_price": fill_price or price,
                "stop_loss_price": sig.get("stop_loss_price"),
                "take_profit_price": sig.get("take_profit_price"),
                "signal_id": sig["id"],
                "broker_order_id": outcome.order_id,
            }, conn=conn)
            status = "filled" if isinstance(outcome, Filled) else "pending"
            entry.update({"outcome": status, "quantity": outcome.quantity, "order_id": outcome.order_id})
            result.executed.append(entry)
            traded_symbols.add(symbol)
            placed += 1
            _record(status, order_id=outcome.order_id, fill_price=fill_price)
        elif isinstance(outcome, Simulated):
            # the paper fill already claimed the signal
            entry.update({"outcome": "simulated", "quantity": outcome.quantity, "reason": outcome.reason})
            result.executed.append(entry)
            traded_symbols.add(symbol)
            placed += 1
            _record("simulated", outcome.reason, fill_price=outcome.fill_price)
        else:
            entry.update({"outcome": "rejected", "reason": outcome.reason})
            result.rejected.append(entry)
            _record("rejected", outcome.reason)

    logger.info(
        f"{user_id}: {len(result.executed)} executed, {len(result.skipped)} skipped, "
        f"{len(result.rejected)} rejected of {result.signals_considered} considered"
    )
    return result


def run_execution(run_id: str, broker, conn=None, now: datetime | None = None) -> list:
    """
    Execute for every user with an active algorithm, isolating failures per user.

    Only SignalStoreError escapes: without the store the whole batch is moot.
    """
    from pipeline_types import UserRunResult
    from db.models import (
        SignalStoreError, get_active_user_ids, log_execution, mark_positions_to_market, expire_signals,
    )
    from db.cache import get_cached_prices, get_cached_prev_closes
    from db.paper import mark_paper_positions

    expired = expire_signals(now=now, conn=conn)
    if expired:
        logger.info(f"Expired {expired} stale signals")

    max_age = PIPELINE_CONFIG["signal_ttl_hours"]
    prices = get_cached_prices(max_age_hours=max_age, conn=conn)
    prev_closes = get_cached_prev_closes(max_age_hours=max_age, conn=conn)
    marked = mark_positions_to_market(prices, prev_closes, conn=conn)
    marked_paper = mark_paper_positions(prices, prev_closes, conn=conn)
    logger.info(f"Marked {marked} live and {marked_paper} paper positions to market from {len(prices)} cached prices")

    results = []
    for user_id in get_active_user_ids(conn=conn):
        try:
            results.append(execute_user(user_id, run_id, prices, broker, conn=conn, now=now))
        except SignalStoreError:
            raise
        except Exception as e:
            logger.exception(f"{user_id}: execution failed")
            results.append(UserRunResult(user_id, "error", str(e)))
            try:
                log_execution({"run_id": run_id, "user_id": user_id, "outcome": "error", "reason": str(e)}, conn=conn)
            except Exception as log_error:
                logger.error(f"{user_id}: could not record failure: {log_error}")
    return results


def cmd_generate(force: bool = False):
    """Generate and store signals for the symbol universe."""
    from market_data import fetch_market_data
    from strategy.correlation import refresh_sector_performance
    from db.models import get_connection, init_tables, seed_sector_mappings, SignalStoreError
    import notifications

    logger.info(f"{'='*50}")
    logger.info(f"Signal Pipeline - GENERATE - {_timestamp()}")
    logger.info(f"{'='*50}")

    if not force and not _market_open_today():
        logger.info("Market closed today, exiting (use --force to override)")
        return

    conn = get_connection()
    try:
        init_tables(conn)
        seed_sector_mappings(DEFAULT_SECTOR_MAPPINGS, conn=conn)

        snapshots = fetch_market_data()
        refresh_sector_performance(snapshots, _today_et(), conn=conn)

        try:
            summary = generate_signals(snapshots, conn=conn)
        except SignalStoreError as e:
            logger.error(f"Signal store unavailable: {e}")
            notifications.send_error("Signal Generation Failed", str(e))
            raise

        logger.info(f"Stored {summary['persisted']} signals for {summary['users']} users")
        notifications.send_generation_report(summary)
        logger.info("Generation run complete")
    finally:
        conn.close()


def cmd_execute():
    """Turn stored signals into orders for every active user."""
    from db.models import get_connection, init_tables, SignalStoreError
    import alpaca_client
    import notifications

    run_id = _new_run_id()
    logger.info(f"{'='*50}")
    logger.info(f"Signal Pipeline - EXECUTE {run_id} - {_timestamp()}")
    logger.info(f"{'='*50}")

    if not alpaca_client.has_credentials():
        logger.warning("No broker credentials, all orders go to the paper ledger")

    conn = get_connection()
    try:
        init_tables(conn)
        try:
            results = run_execution(run_id, alpaca_client, conn=conn)
        except SignalStoreError as e:
            logger.error(f"Signal store unavailable: {e}")
            notifications.send_error("Signal Execution Failed", str(e))
            raise

        errors = [r for r in results if r.status == "error"]
        for r in errors:
            notifications.send_error(f"Execution error for {r.user_id}", r.reason)
        notifications.send_execution_report(results, run_id)
        logger.info(f"Execution run {run_id} complete: {len(results)} users, {len(errors)} errors")
    finally:
        conn.close()


def cmd_correlations():
    """Refresh the correlation matrix and today's sector strength."""
    from market_data import fetch_market_data
    from strategy.correlation import refresh_correlations, refresh_sector_performance
    from db.models import get_connection, init_tables, seed_sector_mappings

    logger.info(f"Signal Pipeline - CORRELATIONS - {_timestamp()}")

    conn = get_connection()
    try:
        init_tables(conn)
        seed_sector_mappings(DEFAULT_SECTOR_MAPPINGS, conn=conn)
        snapshots = fetch_market_data()
        stats = refresh_correlations(snapshots, conn=conn)
        strengths = refresh_sector_performance(snapshots, _today_et(), conn=conn)
        print(f"Correlations: {stats['processed']} pairs, {stats['stored']} stored, {stats['strong']} strong")
        for sector, strength in sorted(strengths.items(), key=lambda kv: -kv[1]):
            print(f"  {sector:<25} {strength:.2f}")
    finally:
        conn.close()


def cmd_status():
    """Show current state without trading."""
    from db.models import (
        get_connection, init_tables, get_active_user_ids, count_active_signals,
        get_open_positions, get_risk_settings, get_todays_pnl,
    )
    from db.paper import get_account, get_paper_positions

    conn = get_connection()
    try:
        init_tables(conn)
        users = get_active_user_ids(conn=conn)

        print(f"\n{'='*50}")
        print(f"  Signal Pipeline - STATUS")
        print(f"  {_timestamp()}")
        print(f"{'='*50}\n")

        if not users:
            print("No users with active algorithms")
            return

        for user_id in users:
            settings = get_risk_settings(user_id, conn=conn)
            enabled = "enabled" if settings and settings.trading_enabled else "disabled"
            print(f"{user_id} (trading {enabled})")
            print(f"  Active signals: {count_active_signals(user_id, conn=conn)}")
            print(f"  Today's P&L: ${get_todays_pnl(user_id, conn=conn):,.2f}")

            for p in get_open_positions(user_id, conn=conn):
                print(f"  Live {p['side']} {p['quantity']} {p['symbol']} @ ${p['entry_price']:.2f} "
                      f"(now ${p['current_price'] or p['entry_price']:.2f})")

            account = get_account(user_id, conn=conn)
            if account:
                print(f"  Paper: cash ${account['current_cash']:,.2f}, equity ${account['total_equity']:,.2f}")
                for p in get_paper_positions(user_id, conn=conn):
                    print(f"    {p['quantity']} {p['symbol']} avg ${p['average_cost']:.2f} "
                          f"value ${p['market_value']:,.2f}")
            print()
    finally:
        conn.close()


def main():
    if len(sys.argv) < 2:
        print("Usage: python job.py {generate|execute|correlations|status}")
        print("  generate [--force]     Generate and store signals")
        print("  execute                Execute stored signals per user")
        print("  correlations           Refresh correlations and sector strength")
        print("  status                 Show current state (no trading)")
        sys.exit(1)

    command = sys.argv[1]

    if command == "generate":
        cmd_generate(force="--force" in sys.argv)
    elif command == "execute":
        cmd_execute()
    elif command == "correlations":
        cmd_correlations()
    elif command == "status":
        cmd_status()
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)


if __name__ == "__main__":
    main()
