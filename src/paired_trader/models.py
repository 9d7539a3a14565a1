from pydantic import BaseModel, Field
from typing import Dict, List, Literal, Optional, Tuple

Coin = Literal["BTC", "ETH"]
Cadence = Literal["5m", "15m", "hourly", "other"]

MAX_PROCESSED_KEYS = 5000


class TapeTrade(BaseModel):
    condition_id: str
    title: str = ""
    slug: str = ""
    asset: str
    outcome: str
    price: float
    timestamp: int


class MarketToken(BaseModel):
    token_id: str = ""
    outcome: str = ""
    price: float = 0.0


class MarketMeta(BaseModel):
    condition_id: str = ""
    question: str = ""
    market_slug: str = ""
    active: bool = False
    closed: bool = False
    accepting_orders: bool = False
    enable_order_book: bool = False
    tokens: List[MarketToken] = Field(default_factory=list)


class Position(BaseModel):
    asset: str
    condition_id: str = ""
    size: float = 0.0
    cur_price: float = 0.0
    redeemable: bool = False


class OutcomeSnapshot(BaseModel):
    asset: str
    outcome: str
    price: float
    timestamp: int


class PairSignal(BaseModel):
    condition_id: str
    title: str
    slug: str = ""
    coin: Coin
    cadence: Cadence
    latest_timestamp: int
    pair_sum: float
    edge: float
    outcomes: Tuple[OutcomeSnapshot, OutcomeSnapshot]

    @property
    def key(self) -> str:
        return f"{self.condition_id}|{self.latest_timestamp}"


class SignalBreakdown(BaseModel):
    by_coin: Dict[str, int] = Field(default_factory=lambda: {"BTC": 0, "ETH": 0})
    by_cadence: Dict[str, int] = Field(default_factory=lambda: {"5m": 0, "15m": 0, "hourly": 0, "other": 0})

    def bump(self, signal: PairSignal) -> None:
        self.by_coin[signal.coin] = self.by_coin.get(signal.coin, 0) + 1
        self.by_cadence[signal.cadence] = self.by_cadence.get(signal.cadence, 0) + 1


class ActivityRecord(BaseModel):
    title: str
    outcome: str
    side: str
    amount_usd: float
    price: float
    asset: str
    timestamp: float


class StrategyResult(BaseModel):
    mode: str
    copied: int = 0
    failed: int = 0
    paper: int = 0
    simulated_volume_usd: float = 0.0
    budget_cap_usd: float = 0.0
    budget_used_usd: float = 0.0
    evaluated_signals: int = 0
    eligible_signals: int = 0
    rejected_reasons: Dict[str, int] = Field(default_factory=dict)
    evaluated_breakdown: SignalBreakdown = Field(default_factory=SignalBreakdown)
    eligible_breakdown: SignalBreakdown = Field(default_factory=SignalBreakdown)
    executed_breakdown: SignalBreakdown = Field(default_factory=SignalBreakdown)
    unresolved_exposure_assets: List[str] = Field(default_factory=list)
    circuit_breaker_tripped: bool = False
    last_timestamp: Optional[int] = None
    copied_keys: List[str] = Field(default_factory=list)
    copied_trades: List[ActivityRecord] = Field(default_factory=list)
    max_edge_cents: Optional[float] = None
    min_pair_sum: Optional[float] = None
    error: Optional[str] = None

    def reject(self, reason: str, count: int = 1) -> None:
        self.rejected_reasons[reason] = self.rejected_reasons.get(reason, 0) + count


class Diagnostics(BaseModel):
    mode: str
    evaluated_signals: int = 0
    eligible_signals: int = 0
    executed_signals: int = 0
    copied: int = 0
    paper: int = 0
    failed: int = 0
    rejected_reasons: Dict[str, int] = Field(default_factory=dict)
    evaluated_breakdown: SignalBreakdown = Field(default_factory=SignalBreakdown)
    eligible_breakdown: SignalBreakdown = Field(default_factory=SignalBreakdown)
    executed_breakdown: SignalBreakdown = Field(default_factory=SignalBreakdown)
    budget_cap_usd: float = 0.0
    budget_used_usd: float = 0.0
    max_edge_cents: Optional[float] = None
    min_pair_sum: Optional[float] = None
    unresolved_exposure_assets: List[str] = Field(default_factory=list)
    skipped: Optional[str] = None
    error: Optional[str] = None
    timestamp: float = 0.0


class SafetyLatch(BaseModel):
    active: bool = True
    reason: str
    triggered_at: float
    unresolved_assets: List[str] = Field(default_factory=list)
    attempt_count: int = 0
    last_attempt_at: Optional[float] = None
    last_alert_at: Optional[float] = None


class DailyRiskState(BaseModel):
    day_key: str
    day_start_balance_usd: float
    live_notional_usd: float = 0.0
    live_runs: int = 0
    last_run_at: Optional[float] = None
    alerted_drawdown_cap: bool = False
    alerted_notional_cap: bool = False


class RunState(BaseModel):
    last_timestamp: int = 0
    processed_keys: List[str] = Field(default_factory=list)
    safety_latch: Optional[SafetyLatch] = None
    daily_risk: Optional[DailyRiskState] = None
    last_strategy_diagnostics: Optional[Diagnostics] = None
    last_run_at: Optional[float] = None
    last_copied_at: Optional[float] = None
    last_error: Optional[str] = None


class PaperRun(BaseModel):
    timestamp: float
    simulated_trades: int
    simulated_volume_usd: float
    failed: int
    budget_cap_usd: float
    budget_used_usd: float
    error: Optional[str] = None


class PaperStats(BaseModel):
    runs: int = 0
    simulated_trades: int = 0
    simulated_volume_usd: float = 0.0
    failed: int = 0
    last_run_at: Optional[float] = None
    recent: List[PaperRun] = Field(default_factory=list)
