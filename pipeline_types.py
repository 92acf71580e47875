"""Typed dataclasses for the signal pipeline.

Replaces raw dicts flowing between market data, indicators, strategies,
context resolution, the combiner, the risk gate, and execution.
"""

from dataclasses import dataclass, field

BUY = "BUY"
SELL = "SELL"
HOLD = "HOLD"

MOMENTUM = "momentum"
MEAN_REVERSION = "mean_reversion"
ML = "ml"
COMBINED = "combined"

STRATEGIES = (MOMENTUM, MEAN_REVERSION, ML)


@dataclass
class MarketSnapshot:
    """Per-symbol market data for one run. Rebuilt every run, never persisted."""
    symbol: str
    price: float
    prev_close: float
    volume: float
    avg_volume: float
    closes: list[float]          # oldest -> newest
    high: float
    low: float
    is_synthetic: bool = False

    @property
    def volume_ratio(self) -> float:
        if self.avg_volume <= 0:
            return 0.0
        return self.volume / self.avg_volume

    @property
    def change_pct(self) -> float:
        if self.prev_close <= 0:
            return 0.0
        return (self.price - self.prev_close) / self.prev_close * 100


@dataclass
class MACDResult:
    macd: float = 0.0
    signal: float = 0.0
    histogram: float = 0.0


@dataclass
class IndicatorSet:
    """All indicator values derived from one snapshot's closes."""
    rsi: float
    macd: MACDResult
    sma_20: float
    stddev_20: float
    ema_12: float
    ema_26: float


@dataclass
class StrategySignal:
    strategy: str        # momentum | mean_reversion | ml
    action: str          # BUY | SELL | HOLD
    confidence: float    # 0-100
    reasoning: str = ""


@dataclass
class SectorContext:
    """Confidence adjustment derived from sector strength and correlated symbols."""
    sector: str | None = None
    relative_strength: float = 0.5
    multiplier: float = 1.0
    correlated_symbols: list[str] = field(default_factory=list)
    confirmation_score: float = 0.0


@dataclass
class CombinedSignal:
    symbol: str
    action: str
    confidence: float
    buy_score: float
    sell_score: float
    reasoning: str = ""


@dataclass
class RiskSettings:
    """Per-user risk preferences. Percentages are fractions (0.02 = 2%)."""
    max_position_size: float
    max_portfolio_risk: float
    daily_loss_limit: float
    max_open_positions: int
    stop_loss_percent: float
    take_profit_percent: float
    min_confidence_score: float
    trading_enabled: bool


@dataclass
class RiskCheck:
    """Outcome of the per-user risk gate."""
    state: str           # clear | blocked
    reason: str = ""
    open_positions: int = 0
    todays_pnl: float = 0.0

    @property
    def is_clear(self) -> bool:
        return self.state == "clear"


# ── Execution outcomes: a closed set callers branch on ──


@dataclass
class Filled:
    order_id: str
    symbol: str
    side: str
    quantity: int
    fill_price: float | None


@dataclass
class Pending:
    order_id: str
    symbol: str
    side: str
    quantity: int
    order_status: str


@dataclass
class Simulated:
    symbol: str
    side: str
    quantity: int
    fill_price: float
    transaction_id: int
    reason: str = ""


@dataclass
class Rejected:
    symbol: str
    side: str
    quantity: int
    reason: str
    simulated: bool = False


ExecutionResult = Filled | Pending | Simulated | Rejected


@dataclass
class UserRunResult:
    """Per-user outcome of one execution pass."""
    user_id: str
    status: str          # blocked | clear | error
    reason: str = ""
    signals_considered: int = 0
    executed: list[dict] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)
    rejected: list[dict] = field(default_factory=list)
