"""Per-signal execution: paper fill, or the live leg A / leg B / retry / unwind ladder."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Protocol

from paired_trader.engine.sizing import PairSizing
from paired_trader.execution.live import LiveOrderResult
from paired_trader.models import PairSignal

MIN_UNWIND_SHARES = 0.1


class OrderSession(Protocol):
    def buy(self, token_id: str, amount_usd: float, price: float) -> LiveOrderResult: ...

    def sell(self, token_id: str, shares: float, price: float) -> LiveOrderResult: ...


class PairOutcomeKind(str, Enum):
    REJECTED = "rejected"
    PAPER_FILLED = "paper_filled"
    LIVE_FILLED = "live_filled"
    LEG_A_FAILED = "leg_a_failed"
    RETRY_RECOVERED = "retry_recovered"
    UNWOUND = "unwound"
    UNRESOLVED_IMBALANCE = "unresolved_imbalance"


# Kinds whose signal key is marked processed and whose legs debit the run budget.
_FILLED = {PairOutcomeKind.PAPER_FILLED, PairOutcomeKind.LIVE_FILLED, PairOutcomeKind.RETRY_RECOVERED}


@dataclass
class PairOutcome:
    kind: PairOutcomeKind
    signal: PairSignal
    sizing: Optional[PairSizing] = None
    # Rejection-histogram reasons this pair contributes, in the order they occurred.
    reasons: List[str] = field(default_factory=list)
    error: Optional[str] = None
    residual_asset: Optional[str] = None

    @property
    def processed(self) -> bool:
        return self.kind in _FILLED

    @property
    def spent_usd(self) -> float:
        if not self.processed or self.sizing is None:
            return 0.0
        return self.sizing.total_usd


def unwind_order(leg_a_usd: float, leg_a_price: float, slippage: float, share_buffer: float):
    """(shares, min_price) for selling back a filled leg A."""
    shares = (leg_a_usd / max(0.001, leg_a_price)) * share_buffer
    return max(MIN_UNWIND_SHARES, shares), max(0.01, leg_a_price - slippage)


class PairExecutor:
    def __init__(self, session: Optional[OrderSession], unwind_slippage: float = 0.03, unwind_share_buffer: float = 0.99):
        self.session = session
        self.unwind_slippage = unwind_slippage
        self.unwind_share_buffer = unwind_share_buffer

    def execute(self, signal: PairSignal, sizing: PairSizing, mode: str) -> PairOutcome:
        if mode == "paper":
            return PairOutcome(PairOutcomeKind.PAPER_FILLED, signal, sizing)
        if self.session is None:
            return PairOutcome(
                PairOutcomeKind.LEG_A_FAILED,
                signal,
                sizing,
                reasons=["missing_clob_client_live"],
                error="Missing CLOB client in live mode",
            )
        return self._execute_live(signal, sizing)

    def _execute_live(self, signal: PairSignal, sizing: PairSizing) -> PairOutcome:
        outcome_a, outcome_b = signal.outcomes

        leg_a = self.session.buy(outcome_a.asset, sizing.leg_a_usd, outcome_a.price)
        if not leg_a.ok:
            return PairOutcome(
                PairOutcomeKind.LEG_A_FAILED,
                signal,
                sizing,
                reasons=["live_leg_a_rejected"],
                error=leg_a.error or "Leg A rejected",
            )

        leg_b = self.session.buy(outcome_b.asset, sizing.leg_b_usd, outcome_b.price)
        if leg_b.ok:
            return PairOutcome(PairOutcomeKind.LIVE_FILLED, signal, sizing)

        reasons = ["live_partial_fill_detected"]
        retry_b = self.session.buy(outcome_b.asset, sizing.leg_b_usd, outcome_b.price)
        if retry_b.ok:
            reasons.append("live_partial_recovered_leg_b_retry")
            return PairOutcome(PairOutcomeKind.RETRY_RECOVERED, signal, sizing, reasons=reasons)

        shares, min_price = unwind_order(sizing.leg_a_usd, outcome_a.price, self.unwind_slippage, self.unwind_share_buffer)
        unwind = self.session.sell(outcome_a.asset, shares, min_price)
        if unwind.ok:
            reasons.append("live_partial_unwound_leg_a")
            return PairOutcome(
                PairOutcomeKind.UNWOUND,
                signal,
                sizing,
                reasons=reasons,
                error=f"Leg B failed and retry failed ({leg_b.error}; {retry_b.error}); unwind of leg A succeeded",
            )

        reasons.append("live_partial_unwind_failed")
        return PairOutcome(
            PairOutcomeKind.UNRESOLVED_IMBALANCE,
            signal,
            sizing,
            reasons=reasons,
            error=f"leg B failed ({leg_b.error}); retry failed ({retry_b.error}); unwind failed ({unwind.error})",
            residual_asset=outcome_a.asset,
        )
