"""
Configuration for the signal generation and execution pipeline.

All thresholds, strategy weights, risk defaults, and execution settings live here.
Loads API keys from a .env file in the repo root.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

_env_path = Path(__file__).parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

# API Keys
ALPACA_API_KEY = os.getenv("ALPACA_API_KEY", "")
ALPACA_SECRET_KEY = os.getenv("ALPACA_SECRET_KEY", "")
ALPACA_BASE_URL = os.getenv("ALPACA_BASE_URL", "https://paper-api.alpaca.markets")

TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_ADMIN_ID = os.getenv("TELEGRAM_ADMIN_ID", "")

# Paths
BASE_DIR = Path(__file__).parent
DATA_DIR = BASE_DIR / "data"
LOG_DIR = BASE_DIR / "logs"
DB_PATH = Path(os.getenv("SIGNAL_DB_PATH", str(DATA_DIR / "signal_pipeline.db")))

PIPELINE_CONFIG = {
    # Symbol universe (market data is fetched once per symbol, shared by all users)
    "symbols": ["AAPL", "GOOGL", "MSFT", "NVDA", "TSLA", "AMZN", "META", "NFLX", "CRM", "ADBE"],
    "market_data_workers": 4,
    "history_closes": 30,           # Daily closes kept per snapshot
    "history_calendar_days": 50,    # Calendar days requested to cover 30 trading days
    "avg_volume_period": 20,

    # Indicators
    "rsi_period": 14,
    "macd_fast": 12,
    "macd_slow": 26,
    "macd_signal_ratio": 0.8,       # Signal line approximated as MACD * 0.8
    "bollinger_period": 20,
    "bollinger_std": 2,

    # Momentum strategy
    "momentum_rsi_oversold": 30,
    "momentum_rsi_overbought": 70,
    "momentum_volume_ratio": 1.2,
    "momentum_confidence": 80,

    # Mean-reversion strategy (position inside the 2-sigma band, 0-1)
    "mean_reversion_lower": 0.2,
    "mean_reversion_upper": 0.8,
    "mean_reversion_confidence": 70,

    # Rule-based ML placeholder
    "ml_rsi_buy": 35,
    "ml_rsi_sell": 65,
    "ml_volume_ratio": 1.5,
    "ml_change_pct_sell": -2.0,
    "ml_confidence": 65,

    # Combiner
    "strategy_weights": {
        "momentum": 0.35,
        "mean_reversion": 0.35,
        "ml": 0.30,
    },
    "combined_action_threshold": 50,    # Side score must exceed this to act
    "persist_min_confidence": 70,       # Individual and combined signals at/above this are stored

    # Sector / correlation context
    "sector_strong_threshold": 0.8,
    "sector_weak_threshold": 0.2,
    "sector_strong_multiplier": 1.2,
    "sector_weak_multiplier": 0.8,
    "sector_neutral_strength": 0.5,
    "correlation_threshold": 0.7,           # |r| >= this counts as correlated
    "correlation_confirmation_threshold": 0.6,
    "correlation_confirmation_boost": 1.1,
    "correlation_store_threshold": 0.3,     # Refresh job only stores |r| > this
    "correlation_timeframe": "daily",

    # Signal store
    "signal_ttl_hours": 24,
    "signal_batch_limit": 20,

    # Risk defaults (used for signal levels when a user has no settings)
    "default_stop_loss_pct": 0.02,
    "default_take_profit_pct": 0.04,
    "default_account_equity": 100000,

    # Paper trading
    "paper_starting_balance": 100000,

    # Execution
    "order_type": "market",
    "time_in_force": "day",
}

# Seed data for the sector mapping table (used when the table is empty)
DEFAULT_SECTOR_MAPPINGS = {
    "AAPL": ("Technology", "mega"),
    "MSFT": ("Technology", "mega"),
    "GOOGL": ("Technology", "mega"),
    "NVDA": ("Technology", "mega"),
    "META": ("Technology", "mega"),
    "CRM": ("Technology", "large"),
    "ADBE": ("Technology", "large"),
    "NFLX": ("Communication Services", "large"),
    "AMZN": ("Consumer Discretionary", "mega"),
    "TSLA": ("Consumer Discretionary", "large"),
    "JPM": ("Financial Services", "mega"),
    "V": ("Financial Services", "mega"),
    "MA": ("Financial Services", "mega"),
}
