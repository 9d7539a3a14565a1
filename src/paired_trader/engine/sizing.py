from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from paired_trader.config import StrategyConfig
from paired_trader.models import PairSignal

# Exchange minimum for a market order, in USD.
POLYMARKET_MIN_ORDER_USD = 1.0


@dataclass
class PairSizing:
    pair_spend_usd: float
    leg_a_usd: float
    leg_b_usd: float

    @property
    def total_usd(self) -> float:
        return self.leg_a_usd + self.leg_b_usd


@dataclass
class SizingDecision:
    sizing: Optional[PairSizing] = None
    reason: str = "ok"

    @property
    def approved(self) -> bool:
        return self.sizing is not None


def run_budget_cap(balance_usd: float, cfg: StrategyConfig) -> float:
    return max(0.0, float(balance_usd)) * cfg.wallet_usage_percent / 100.0


def live_precheck(balance_usd: float, cfg: StrategyConfig) -> Optional[str]:
    """Reason the live run must not trade at all, or None."""
    cap = run_budget_cap(balance_usd, cfg)
    if balance_usd < 1.0:
        return "Low balance"
    if cfg.stop_loss_balance > 0 and balance_usd < cfg.stop_loss_balance:
        return f"Stop-loss: balance ${balance_usd:.2f} below threshold ${cfg.stop_loss_balance:.2f}"
    if cap < POLYMARKET_MIN_ORDER_USD * 2:
        return (
            f"Wallet usage cap too low: {cfg.wallet_usage_percent:.1f}% of ${balance_usd:.2f} "
            f"is ${cap:.2f} (< ${POLYMARKET_MIN_ORDER_USD * 2:.0f} for paired leg minimums)"
        )
    return None


def min_remaining_budget(live: bool) -> float:
    return POLYMARKET_MIN_ORDER_USD * 2 if live else 0.2


def size_pair(signal: PairSignal, remaining_usd: float, cfg: StrategyConfig, live: bool) -> SizingDecision:
    pair_spend = min(cfg.pair_chunk_usd, remaining_usd)
    if pair_spend <= 0:
        return SizingDecision(reason="pair_spend_non_positive")

    outcome_a, outcome_b = signal.outcomes
    shares = pair_spend / signal.pair_sum
    leg_a = shares * outcome_a.price
    leg_b = shares * outcome_b.price

    if leg_a < cfg.min_bet_usd or leg_b < cfg.min_bet_usd:
        return SizingDecision(reason="leg_below_min_bet")

    if live:
        if leg_a < POLYMARKET_MIN_ORDER_USD or leg_b < POLYMARKET_MIN_ORDER_USD:
            if not cfg.floor_to_polymarket_min:
                return SizingDecision(reason="leg_below_polymarket_min_no_floor")
            leg_a = max(POLYMARKET_MIN_ORDER_USD, leg_a)
            leg_b = max(POLYMARKET_MIN_ORDER_USD, leg_b)
        pair_spend = leg_a + leg_b
        if pair_spend > remaining_usd + 1e-9:
            return SizingDecision(reason="pair_exceeds_remaining_budget")

    return SizingDecision(sizing=PairSizing(pair_spend_usd=pair_spend, leg_a_usd=leg_a, leg_b_usd=leg_b))
