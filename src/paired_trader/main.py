import argparse
import time
from dataclasses import dataclass
from typing import Callable, Optional

from rich import print

from paired_trader.adapters.alerts import AlertSink
from paired_trader.adapters.clob import ClobAdapter
from paired_trader.adapters.data_api import DataApiAdapter
from paired_trader.config import StrategyConfig, apply_overrides, load_config, load_strategy_config, save_strategy_config
from paired_trader.engine.market_cache import MarketCache
from paired_trader.engine.signals import build_pair_signals
from paired_trader.engine.strategy import enabled_cadences, enabled_coins, run_paired_strategy
from paired_trader.errors import ConfigError, UpstreamDataError
from paired_trader.execution.live import LiveExecutor, RunCredentials
from paired_trader.execution.pairs import PairExecutor, PairOutcome
from paired_trader.models import Diagnostics, PaperRun, RunState, StrategyResult
from paired_trader.risk.guards import apply_daily_live_run, evaluate_daily_caps, init_daily_risk
from paired_trader.risk.latch import attempt_resolve_safety_latch, should_send_latch_alert, trip_latch
from paired_trader.utils.lock import RunLock
from paired_trader.utils.storage import (
    KeyValueStore,
    append_activity,
    append_event,
    get_diagnostics_history,
    get_paper_stats,
    load_state,
    open_store,
    record_diagnostics,
    record_paper_run,
    reset_paper_stats,
    reset_sync_state,
    save_state,
)

_MARKET_CACHE = None


@dataclass
class RunOutcome:
    ok: bool
    skipped: bool = False
    reason: Optional[str] = None
    error: Optional[str] = None
    result: Optional[StrategyResult] = None


def _ensure_market_cache(cfg: dict) -> MarketCache:
    global _MARKET_CACHE
    if _MARKET_CACHE is None:
        clob = ClobAdapter(cfg["data"]["clob_rest_base"])
        _MARKET_CACHE = MarketCache(clob.fetch_market, ttl_seconds=float(cfg["data"].get("market_cache_ttl_seconds", 60)))
    return _MARKET_CACHE


def _diagnostics(mode: str, now: float, result: Optional[StrategyResult] = None, skipped: Optional[str] = None, error: Optional[str] = None) -> Diagnostics:
    if result is None:
        return Diagnostics(mode=mode, skipped=skipped, error=error, timestamp=now)
    return Diagnostics(
        mode=result.mode,
        evaluated_signals=result.evaluated_signals,
        eligible_signals=result.eligible_signals,
        executed_signals=result.copied,
        copied=result.copied,
        paper=result.paper,
        failed=result.failed,
        rejected_reasons=result.rejected_reasons,
        evaluated_breakdown=result.evaluated_breakdown,
        eligible_breakdown=result.eligible_breakdown,
        executed_breakdown=result.executed_breakdown,
        budget_cap_usd=result.budget_cap_usd,
        budget_used_usd=result.budget_used_usd,
        max_edge_cents=result.max_edge_cents,
        min_pair_sum=result.min_pair_sum,
        unresolved_exposure_assets=result.unresolved_exposure_assets,
        skipped=skipped,
        error=result.error,
        timestamp=now,
    )


def _persist_skip(store: KeyValueStore, state: RunState, diag: Diagnostics, now: float) -> None:
    state.last_run_at = now
    state.last_error = diag.error
    state.last_strategy_diagnostics = diag
    save_state(store, state)
    record_diagnostics(store, diag)


def _fail_run(store: KeyValueStore, state: RunState, events_path: str, mode: str, now: float, error: str) -> RunOutcome:
    _persist_skip(store, state, _diagnostics(mode, now, error=error), now)
    append_event(events_path, {"type": "run_error", "mode": mode, "error": error})
    print(f"[red]Run failed[/red] {error}")
    return RunOutcome(ok=False, error=error)


def _alert(alerts: AlertSink, events_path: str, title: str, severity: str, details: dict) -> bool:
    sent = alerts.send(title, severity=severity, details=details)
    if not sent and alerts.webhook_url:
        append_event(events_path, {"type": "alert_failed", "title": title, "severity": severity})
    return sent


def _outcome_event(events_path: str, mode: str) -> Callable[[PairOutcome], None]:
    def _log(o: PairOutcome) -> None:
        append_event(events_path, {
            "type": "pair_outcome",
            "mode": mode,
            "kind": o.kind.value,
            "key": o.signal.key,
            "coin": o.signal.coin,
            "cadence": o.signal.cadence,
            "edge_cents": round(o.signal.edge * 100, 3),
            "spent_usd": round(o.spent_usd, 4),
            "reasons": o.reasons,
            "error": o.error,
            "residual_asset": o.residual_asset,
        })
    return _log


def run_once(
    cfg: dict,
    store: Optional[KeyValueStore] = None,
    data_api: Optional[DataApiAdapter] = None,
    market_cache: Optional[MarketCache] = None,
    alerts: Optional[AlertSink] = None,
    creds: Optional[RunCredentials] = None,
    session_factory: Callable = LiveExecutor,
    now: Optional[float] = None,
) -> RunOutcome:
    """One serialized strategy run: lock, risk gates, signals, execution, persistence."""
    now = time.time() if now is None else now
    events_path = cfg["storage"]["events_path"]
    store = store or open_store(cfg)
    data_api = data_api or DataApiAdapter(cfg["data"]["data_api_base"])
    market_cache = market_cache or _ensure_market_cache(cfg)
    alerts = alerts or AlertSink.from_env()
    creds = creds or RunCredentials.from_env(int(cfg.get("live", {}).get("signature_type", 1)))

    lock = RunLock(store, ttl_seconds=float(cfg.get("lock", {}).get("ttl_seconds", 120)))
    token = lock.acquire()
    if token is None:
        append_event(events_path, {"type": "run_skipped", "reason": "busy"})
        return RunOutcome(ok=True, skipped=True, reason="busy")

    mode = "unknown"
    try:
        strat = load_strategy_config(store, cfg.get("strategy"))
        state = load_state(store)
        mode = strat.mode

        if mode == "off":
            _persist_skip(store, state, _diagnostics(mode, now, skipped="mode_off"), now)
            append_event(events_path, {"type": "run_skipped", "reason": "mode_off"})
            return RunOutcome(ok=True, skipped=True, reason="mode_off")

        live = mode == "live"
        error = None
        if not creds.address:
            error = "POLYMARKET_FUNDER not configured"
        elif live and not creds.private_key:
            error = "POLYMARKET_PRIVATE_KEY not configured for live mode"
        if error:
            return _fail_run(store, state, events_path, mode, now, error)

        data_api.reset_call_count()
        try:
            balance = data_api.get_cash_balance(creds.address)
        except UpstreamDataError as e:
            return _fail_run(store, state, events_path, mode, now, str(e))

        # One signed session serves latch resolution and every order in this run.
        session = session_factory(cfg, creds) if live else None

        if live and state.safety_latch is not None and state.safety_latch.active:
            latch = state.safety_latch
            resolution = attempt_resolve_safety_latch(
                latch,
                lambda: data_api.get_positions(creds.address, limit=200),
                session,
                strat.unwind_slippage,
                strat.unwind_share_buffer,
            )
            latch.attempt_count += 1
            latch.last_attempt_at = now
            append_event(events_path, {
                "type": "safety_latch",
                "action": "resolve_attempt",
                "resolved": resolution.resolved,
                "message": resolution.message,
                "attempted": resolution.attempted_assets,
                "remaining": resolution.remaining_assets,
            })
            if resolution.resolved:
                state.safety_latch = None
                print(f"[green]{resolution.message}[/green]")
            else:
                latch.unresolved_assets = resolution.remaining_assets or latch.unresolved_assets
                if should_send_latch_alert(latch, now):
                    _alert(alerts, events_path, "Paired trader safety latch still active", "critical", {
                        "reason": latch.reason,
                        "unresolved_assets": latch.unresolved_assets,
                        "attempt_count": latch.attempt_count,
                        "message": resolution.message,
                    })
                    latch.last_alert_at = now
                diag = _diagnostics(mode, now, skipped="safety_latch_active", error=resolution.message)
                diag.unresolved_exposure_assets = list(latch.unresolved_assets)
                _persist_skip(store, state, diag, now)
                append_event(events_path, {"type": "run_skipped", "reason": "safety_latch_active"})
                print(f"[red]Safety latch active[/red] {resolution.message}")
                return RunOutcome(ok=True, skipped=True, reason="safety_latch_active", error=resolution.message)

        if live:
            check = evaluate_daily_caps(init_daily_risk(state.daily_risk, balance, now), balance, strat)
            state.daily_risk = check.daily_risk
            if check.blocked:
                if check.should_alert:
                    _alert(alerts, events_path, check.message, "critical", {
                        "reason": check.reason,
                        "day_key": check.daily_risk.day_key,
                        "drawdown_usd": round(check.drawdown_usd, 2),
                        "live_notional_usd": round(check.daily_risk.live_notional_usd, 2),
                    })
                _persist_skip(store, state, _diagnostics(mode, now, skipped=check.reason, error=check.message), now)
                append_event(events_path, {"type": "daily_risk", "blocked": True, "reason": check.reason, "message": check.message})
                print(f"[yellow]{check.message}[/yellow]")
                return RunOutcome(ok=True, skipped=True, reason=check.reason, error=check.message)

        executor = PairExecutor(session, strat.unwind_slippage, strat.unwind_share_buffer)

        def build_signals(c: StrategyConfig):
            trades = data_api.fetch_recent_trades()
            return build_pair_signals(
                trades,
                market_cache.get_many,
                c.pair_lookback_seconds,
                int(now),
                coins=enabled_coins(c),
                cadences=enabled_cadences(c),
            )

        try:
            result = run_paired_strategy(strat, state, balance, build_signals, executor, now=now, on_outcome=_outcome_event(events_path, mode))
        except UpstreamDataError as e:
            return _fail_run(store, state, events_path, mode, now, str(e))

        if live:
            state.daily_risk = apply_daily_live_run(state.daily_risk, result.budget_used_usd, now)
            append_event(events_path, {"type": "daily_risk", "blocked": False, **state.daily_risk.model_dump()})

        if result.circuit_breaker_tripped:
            state.safety_latch = trip_latch(
                state.safety_latch,
                result.unresolved_exposure_assets,
                "circuit_breaker_unresolved_imbalance",
                now,
            )
            _alert(alerts, events_path, "Paired trader circuit breaker tripped", "critical", {
                "unresolved_assets": state.safety_latch.unresolved_assets,
                "error": result.error,
            })
            state.safety_latch.last_alert_at = now
            append_event(events_path, {"type": "safety_latch", "action": "tripped", "assets": state.safety_latch.unresolved_assets})

        diag = _diagnostics(mode, now, result=result)
        if result.last_timestamp is not None:
            state.last_timestamp = result.last_timestamp
        if result.copied_keys:
            state.processed_keys = result.copied_keys
        state.last_run_at = now
        if result.copied > 0:
            state.last_copied_at = now
        state.last_error = result.error
        state.last_strategy_diagnostics = diag
        save_state(store, state)
        record_diagnostics(store, diag)
        append_activity(store, result.copied_trades)
        if mode == "paper":
            record_paper_run(store, PaperRun(
                timestamp=now,
                simulated_trades=result.paper,
                simulated_volume_usd=result.simulated_volume_usd,
                failed=result.failed,
                budget_cap_usd=result.budget_cap_usd,
                budget_used_usd=result.budget_used_usd,
                error=result.error,
            ))

        append_event(events_path, {
            "type": "run_complete",
            "mode": mode,
            "copied": result.copied,
            "paper": result.paper,
            "failed": result.failed,
            "evaluated": result.evaluated_signals,
            "eligible": result.eligible_signals,
            "budget_cap_usd": round(result.budget_cap_usd, 4),
            "budget_used_usd": round(result.budget_used_usd, 4),
            "rejected_reasons": result.rejected_reasons,
            "data_api_calls": data_api.call_count,
            "error": result.error,
        })
        print(
            f"[bold]Run[/bold] mode={mode} copied={result.copied} paper={result.paper} failed={result.failed} "
            f"budget=${result.budget_used_usd:.2f}/${result.budget_cap_usd:.2f}"
            + (f" [red]error={result.error}[/red]" if result.error else "")
        )
        return RunOutcome(ok=True, result=result, error=result.error)
    except ConfigError as e:
        return _fail_run(store, load_state(store), events_path, mode, now, str(e))
    except Exception as e:
        # Reload so a half-updated in-memory state is never written back.
        return _fail_run(store, load_state(store), events_path, mode, now, f"Run failed: {type(e).__name__}: {e}")
    finally:
        lock.release(token)


def show_status(cfg: dict, store: KeyValueStore) -> None:
    strat = load_strategy_config(store, cfg.get("strategy"))
    state = load_state(store)
    print("[bold]Config[/bold]", strat.model_dump())
    print("[bold]State[/bold]", {
        "last_timestamp": state.last_timestamp,
        "processed_keys": len(state.processed_keys),
        "last_run_at": state.last_run_at,
        "last_copied_at": state.last_copied_at,
        "last_error": state.last_error,
    })
    if state.safety_latch:
        print("[red]Safety latch[/red]", state.safety_latch.model_dump())
    if state.daily_risk:
        print("[bold]Daily risk[/bold]", state.daily_risk.model_dump())
    print("[bold]Paper stats[/bold]", get_paper_stats(store).model_dump(exclude={"recent"}))
    for d in get_diagnostics_history(store)[:5]:
        print(f"  mode={d.mode} eval={d.evaluated_signals} elig={d.eligible_signals} exec={d.executed_signals} "
              f"failed={d.failed} skipped={d.skipped} error={d.error}")


def main():
    parser = argparse.ArgumentParser(description="BTC/ETH paired-outcome trader")
    parser.add_argument("--config", default="config/default.yaml")
    parser.add_argument("--status", action="store_true")
    parser.add_argument("--reset-sync", action="store_true")
    parser.add_argument("--reset-paper-stats", action="store_true")
    parser.add_argument("--set", dest="overrides", action="append", default=[], metavar="KEY=VALUE")
    args = parser.parse_args()

    cfg = load_config(args.config)
    store = open_store(cfg)

    if args.overrides:
        strat = apply_overrides(load_strategy_config(store, cfg.get("strategy")), args.overrides)
        save_strategy_config(store, strat)
        print(f"[green]Config updated[/green] {', '.join(args.overrides)}")
    if args.reset_sync:
        reset_sync_state(store)
        append_event(cfg["storage"]["events_path"], {"type": "safety_latch", "action": "manual_reset"})
        print("[green]Sync state reset[/green] watermark, processed keys and safety latch cleared")
    if args.reset_paper_stats:
        reset_paper_stats(store)
        print("[green]Paper stats reset[/green]")
    if args.status:
        show_status(cfg, store)
        return
    if args.overrides or args.reset_sync or args.reset_paper_stats:
        return

    outcome = run_once(cfg, store=store)
    if outcome.skipped:
        print(f"[yellow]Skipped[/yellow] {outcome.reason}")
    if not outcome.ok:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
