from __future__ import annotations

import time
from typing import Callable, List, Optional

from paired_trader.config import StrategyConfig
from paired_trader.engine.signals import SignalBuild
from paired_trader.engine.sizing import live_precheck, min_remaining_budget, run_budget_cap, size_pair
from paired_trader.execution.pairs import PairExecutor, PairOutcome, PairOutcomeKind
from paired_trader.models import MAX_PROCESSED_KEYS, ActivityRecord, PairSignal, RunState, StrategyResult

ERROR_CLIP = 500


def clip_error(current: Optional[str], message: str) -> str:
    nxt = f"{current}; {message}" if current else message
    return nxt if len(nxt) <= ERROR_CLIP else nxt[: ERROR_CLIP - 3] + "..."


def enabled_coins(cfg: StrategyConfig) -> List[str]:
    return [c for c, on in (("BTC", cfg.enable_btc), ("ETH", cfg.enable_eth)) if on]


def enabled_cadences(cfg: StrategyConfig) -> List[str]:
    flags = (("5m", cfg.enable_cadence_5m), ("15m", cfg.enable_cadence_15m), ("hourly", cfg.enable_cadence_hourly))
    return [c for c, on in flags if on]


def _pair_activity(signal: PairSignal, outcome: PairOutcome, paper: bool, now: float) -> List[ActivityRecord]:
    prefix = "PAPER BUY" if paper else "BUY"
    legs = zip(signal.outcomes, (outcome.sizing.leg_a_usd, outcome.sizing.leg_b_usd))
    return [
        ActivityRecord(
            title=signal.title,
            outcome=o.outcome,
            side=f"{prefix} ({signal.coin} pair)",
            amount_usd=usd,
            price=o.price,
            asset=o.asset,
            timestamp=now,
        )
        for o, usd in legs
    ]


def run_paired_strategy(
    cfg: StrategyConfig,
    state: RunState,
    balance_usd: float,
    build_signals: Callable[[StrategyConfig], SignalBuild],
    executor: PairExecutor,
    now: Optional[float] = None,
    on_outcome: Optional[Callable[[PairOutcome], None]] = None,
) -> StrategyResult:
    """Evaluate ranked pairs against the run gates and execute the survivors.

    Never raises for per-signal problems; those are tallied in
    ``rejected_reasons`` and folded into ``error``. Upstream failures from
    ``build_signals`` propagate.
    """
    now = time.time() if now is None else now
    mode = cfg.mode
    result = StrategyResult(mode=mode)

    if mode == "off":
        result.error = "Trading mode is off"
        return result

    cap = run_budget_cap(balance_usd, cfg)
    result.budget_cap_usd = cap
    remaining = cap
    live = mode == "live"

    if live:
        reason = live_precheck(balance_usd, cfg)
        if reason:
            result.error = reason
            return result

    if not enabled_coins(cfg):
        result.error = "Both BTC and ETH are disabled"
        result.reject("all_coins_disabled")
        return result
    if not enabled_cadences(cfg):
        result.error = "All cadences are disabled"
        result.reject("all_cadences_disabled")
        return result

    build = build_signals(cfg)
    for reason, count in build.rejected.items():
        result.reject(reason, count)
    signals = build.signals
    result.evaluated_signals = len(signals)
    for s in signals:
        result.evaluated_breakdown.bump(s)
    if not signals:
        result.reject("no_recent_signals")
    else:
        result.max_edge_cents = max(s.edge * 100 for s in signals)
        result.min_pair_sum = min(s.pair_sum for s in signals)

    watermark = state.last_timestamp
    last_timestamp = watermark
    processed = list(state.processed_keys)
    seen = set(processed)
    unresolved = 0

    for signal in signals:
        if result.eligible_signals >= cfg.pair_max_markets_per_run:
            result.reject("max_markets_per_run_reached")
            break
        if remaining < min_remaining_budget(live):
            result.reject("insufficient_remaining_budget")
            break
        if signal.edge < cfg.min_edge_for(signal.cadence):
            result.reject("edge_below_threshold" if signal.cadence == "other" else f"edge_below_threshold_{signal.cadence}")
            continue
        if signal.latest_timestamp <= watermark:
            result.reject("signal_not_new")
            continue
        if signal.key in seen:
            result.reject("already_processed_signal")
            continue
        if signal.pair_sum <= 0 or signal.pair_sum >= 2:
            result.reject("invalid_pair_sum")
            continue

        decision = size_pair(signal, remaining, cfg, live)
        if not decision.approved:
            result.reject(decision.reason)
            continue

        result.eligible_signals += 1
        result.eligible_breakdown.bump(signal)

        outcome = executor.execute(signal, decision.sizing, mode)
        for reason in outcome.reasons:
            result.reject(reason)
        if on_outcome is not None:
            on_outcome(outcome)

        if outcome.processed:
            seen.add(signal.key)
            processed.append(signal.key)
            result.copied += 1
            result.executed_breakdown.bump(signal)
            remaining = max(0.0, remaining - outcome.spent_usd)
            last_timestamp = max(last_timestamp, signal.latest_timestamp)
            result.copied_trades.extend(_pair_activity(signal, outcome, not live, now))
            if outcome.kind == PairOutcomeKind.PAPER_FILLED:
                result.paper += 1
                result.simulated_volume_usd += outcome.spent_usd
            continue

        result.failed += 1
        if outcome.kind == PairOutcomeKind.UNRESOLVED_IMBALANCE:
            unresolved += 1
            if outcome.residual_asset and outcome.residual_asset not in result.unresolved_exposure_assets:
                result.unresolved_exposure_assets.append(outcome.residual_asset)
            result.error = clip_error(
                result.error,
                f"CRITICAL unresolved one-leg exposure ({unresolved}/{cfg.max_unresolved_imbalances_per_run}): {outcome.error}",
            )
            if unresolved >= cfg.max_unresolved_imbalances_per_run:
                result.reject("circuit_breaker_unresolved_imbalance")
                result.circuit_breaker_tripped = True
                result.error = clip_error(result.error, "Circuit breaker tripped due to unresolved imbalance")
                break
        elif outcome.error:
            result.error = clip_error(result.error, outcome.error)

    result.last_timestamp = last_timestamp
    result.copied_keys = processed[-MAX_PROCESSED_KEYS:]
    result.budget_used_usd = max(0.0, cap - remaining)
    return result
