"""
Telegram notification formatting and sending.

Sends generation and execution run reports and error alerts.
Uses httpx for direct Bot API calls.
"""

import logging

import httpx

from config import TELEGRAM_BOT_TOKEN, TELEGRAM_ADMIN_ID

logger = logging.getLogger(__name__)

TELEGRAM_API = f"https://api.telegram.org/bot{TELEGRAM_BOT_TOKEN}"
TIMEOUT = 15
RULE = "━" * 23


def _send_message(text: str, parse_mode: str = "") -> bool:
    """Send a message via Telegram Bot API."""
    if not TELEGRAM_BOT_TOKEN or not TELEGRAM_ADMIN_ID:
        logger.warning("Telegram not configured, skipping notification")
        print(text)  # Print to stdout as fallback
        return False

    try:
        with httpx.Client(timeout=TIMEOUT) as client:
            payload = {"chat_id": TELEGRAM_ADMIN_ID, "text": text}
            if parse_mode:
                payload["parse_mode"] = parse_mode
            resp = client.post(f"{TELEGRAM_API}/sendMessage", json=payload)
            resp.raise_for_status()
            return True
    except Exception as e:
        logger.error(f"Telegram send failed: {e}")
        print(f"[Telegram failed] {text}")
        return False


def send_generation_report(data: dict) -> bool:
    """
    Send the signal generation summary.

    data keys: symbols, synthetic (list), combined (list of dicts with
    symbol/action/confidence), persisted, users, failed (list).
    """
    symbols = data.get("symbols", 0)
    synthetic = data.get("synthetic", [])
    combined = data.get("combined", [])
    persisted = data.get("persisted", 0)
    users = data.get("users", 0)
    failed = data.get("failed", [])

    actionable = [c for c in combined if c.get("action") != "HOLD"]
    text = (
        f"\U0001f4e1 Signal Generation\n"
        f"{RULE}\n"
        f"Symbols: {symbols}"
    )
    if synthetic:
        text += f" ({len(synthetic)} synthetic: {', '.join(synthetic)})"
    text += "\n\n"

    if actionable:
        text += "Combined signals:\n"
        for c in actionable:
            emoji = "\U0001f7e2" if c["action"] == "BUY" else "\U0001f534"
            text += f"  {emoji} {c['symbol']} {c['action']} {c['confidence']:.0f}\n"
    else:
        text += "Combined signals: all HOLD\n"

    if failed:
        text += f"\u26a0\ufe0f Failed: {', '.join(failed)}\n"

    text += f"\nStored: {persisted} signals for {users} users\n{RULE}"
    return _send_message(text)


def send_execution_report(results: list, run_id: str = "") -> bool:
    """Send the execution pass summary, one line per user (UserRunResult list)."""
    status_emoji = {"clear": "✅", "blocked": "⛔", "error": "⚠️"}
    total_executed = sum(len(r.executed) for r in results)

    text = (
        f"\U0001f4bc Signal Execution {run_id}\n"
        f"{RULE}\n"
        f"Users: {len(results)} | Orders: {total_executed}\n\n"
    )
    for r in results:
        emoji = status_emoji.get(r.status, "⚪")
        line = f"{emoji} {r.user_id}: "
        if r.status == "clear":
            line += f"{len(r.executed)} executed, {len(r.skipped)} skipped, {len(r.rejected)} rejected"
        else:
            line += r.reason
        text += line + "\n"
        for e in r.executed:
            tag = " (paper)" if e.get("outcome") == "simulated" else ""
            text += f"    └ {e['side']} {e['quantity']} {e['symbol']}{tag}\n"

    text += RULE
    return _send_message(text)


def send_error(title: str, detail: str) -> bool:
    """Send error notification."""
    text = f"⚠️ {title}\n\n{detail}"
    return _send_message(text)
