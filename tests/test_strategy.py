import pytest

from conftest import FakeSession, make_signal
from paired_trader.config import StrategyConfig
from paired_trader.engine.signals import SignalBuild
from paired_trader.engine.strategy import clip_error, run_paired_strategy
from paired_trader.errors import UpstreamDataError
from paired_trader.execution.pairs import PairExecutor
from paired_trader.models import RunState


def _builder(*signals, rejected=None):
    return lambda cfg: SignalBuild(signals=list(signals), rejected=dict(rejected or {}))


def _run(cfg, signals, balance=100.0, state=None, session=None, rejected=None):
    return run_paired_strategy(
        cfg,
        state or RunState(),
        balance,
        _builder(*signals, rejected=rejected),
        PairExecutor(session, cfg.unwind_slippage, cfg.unwind_share_buffer),
        now=1_700_000_000.0,
    )


def test_live_pair_executes_and_debits_budget():
    cfg = StrategyConfig(mode="live", wallet_usage_percent=25, pair_chunk_usd=3, pair_min_edge_cents=0.5)
    session = FakeSession()
    result = _run(cfg, [make_signal(price_a=0.48, price_b=0.50)], session=session)

    assert result.budget_cap_usd == pytest.approx(25.0)
    assert result.copied == 1 and result.failed == 0 and result.paper == 0
    assert result.budget_cap_usd - result.budget_used_usd == pytest.approx(22.0)
    assert [t.side for t in result.copied_trades] == ["BUY (BTC pair)", "BUY (BTC pair)"]
    assert result.copied_keys == ["c1|1000"]
    assert result.last_timestamp == 1000
    assert result.executed_breakdown.by_cadence["5m"] == 1
    assert result.max_edge_cents == pytest.approx(2.0)
    assert len(session.calls) == 2


def test_paper_run_simulates_without_orders():
    cfg = StrategyConfig(mode="paper", pair_chunk_usd=3)
    result = _run(cfg, [make_signal()])
    assert result.paper == 1 and result.copied == 1
    assert result.simulated_volume_usd == pytest.approx(3.0)
    assert result.copied_trades[0].side == "PAPER BUY (BTC pair)"
    assert result.copied_trades[0].amount_usd == pytest.approx(3.0 / 0.98 * 0.48)


def test_circuit_breaker_halts_run_on_unresolved_imbalance():
    cfg = StrategyConfig(mode="live", max_unresolved_imbalances_per_run=1)
    session = FakeSession(buys=[True, False, False], sells=[False])
    signals = [make_signal("c1", price_a=0.45), make_signal("c2", price_a=0.46)]
    result = _run(cfg, signals, session=session, state=RunState(last_timestamp=500))

    assert result.circuit_breaker_tripped
    assert result.unresolved_exposure_assets == ["c1-up"]
    assert result.rejected_reasons["circuit_breaker_unresolved_imbalance"] == 1
    assert result.rejected_reasons["live_partial_unwind_failed"] == 1
    assert result.failed == 1 and result.copied == 0
    assert len(session.calls) == 4
    assert result.last_timestamp == 500
    assert result.copied_keys == []
    assert result.budget_used_usd == 0.0
    assert "Circuit breaker tripped" in result.error


def test_unwound_pair_counts_as_failed_only():
    cfg = StrategyConfig(mode="live")
    session = FakeSession(buys=[True, False, False], sells=[True])
    result = _run(cfg, [make_signal("c1"), make_signal("c2")], session=session)
    assert result.failed == 1 and result.copied == 1
    assert not result.circuit_breaker_tripped
    assert result.unresolved_exposure_assets == []
    assert result.rejected_reasons["live_partial_unwound_leg_a"] == 1


def test_run_gates_are_tallied():
    cfg = StrategyConfig(mode="paper", pair_min_edge_cents_5m=5.0, pair_max_markets_per_run=1)
    state = RunState(last_timestamp=1000, processed_keys=["seen|2000"])
    signals = [
        make_signal("thin", ts=3000),                          # 2c edge vs 5c threshold
        make_signal("old", cadence="15m", ts=900),             # at or before watermark
        make_signal("seen", cadence="15m", ts=2000),
        make_signal("fresh", cadence="15m", ts=2500),
        make_signal("extra", cadence="15m", ts=2600),
    ]
    result = _run(cfg, signals, state=state)

    assert result.rejected_reasons == {
        "edge_below_threshold_5m": 1,
        "signal_not_new": 1,
        "already_processed_signal": 1,
        "max_markets_per_run_reached": 1,
    }
    assert result.copied_keys == ["seen|2000", "fresh|2500"]
    assert result.last_timestamp == 2500


def test_insufficient_budget_stops_the_run():
    cfg = StrategyConfig(mode="paper", wallet_usage_percent=25)
    result = _run(cfg, [make_signal()], balance=0.5)
    assert result.rejected_reasons == {"insufficient_remaining_budget": 1}
    assert result.eligible_signals == 0


def test_budget_used_never_exceeds_cap():
    cfg = StrategyConfig(mode="paper", wallet_usage_percent=25, pair_chunk_usd=3, pair_max_markets_per_run=20)
    signals = [make_signal(f"c{i}") for i in range(5)]
    result = _run(cfg, signals, balance=40.0)
    assert result.copied == 4
    assert result.budget_used_usd <= result.budget_cap_usd + 1e-9
    assert result.rejected_reasons["insufficient_remaining_budget"] == 1


def test_failed_leg_a_does_not_advance_watermark():
    cfg = StrategyConfig(mode="live")
    session = FakeSession(buys=[False, True, True])
    result = _run(cfg, [make_signal("late", ts=2000, price_a=0.45), make_signal("early", ts=1500)], session=session)
    assert result.failed == 1 and result.copied == 1
    assert result.copied_keys == ["early|1500"]
    assert result.last_timestamp == 1500
    assert result.error == "FOK order killed"


def test_processed_keys_are_bounded():
    cfg = StrategyConfig(mode="paper")
    state = RunState(processed_keys=[f"k{i}|1" for i in range(5000)])
    result = _run(cfg, [make_signal()], state=state)
    assert len(result.copied_keys) == 5000
    assert result.copied_keys[-1] == "c1|1000"
    assert "k0|1" not in result.copied_keys


def test_early_exits():
    assert _run(StrategyConfig(mode="off"), [make_signal()]).error == "Trading mode is off"

    result = _run(StrategyConfig(mode="paper", enable_btc=False, enable_eth=False), [make_signal()])
    assert result.rejected_reasons == {"all_coins_disabled": 1}

    cadences_off = StrategyConfig(mode="paper", enable_cadence_5m=False, enable_cadence_15m=False, enable_cadence_hourly=False)
    assert _run(cadences_off, [make_signal()]).rejected_reasons == {"all_cadences_disabled": 1}


def test_live_precheck_skips_signal_fetch():
    def build(cfg):
        raise AssertionError("signals should not be fetched")

    result = run_paired_strategy(StrategyConfig(mode="live"), RunState(), 0.5, build, PairExecutor(FakeSession()))
    assert result.error == "Low balance"


def test_builder_rejections_are_merged():
    result = _run(StrategyConfig(mode="paper"), [], rejected={"market_closed": 2})
    assert result.rejected_reasons == {"market_closed": 2, "no_recent_signals": 1}
    assert result.max_edge_cents is None


def test_upstream_errors_propagate():
    def build(cfg):
        raise UpstreamDataError("Trades fetch failed: 503")

    with pytest.raises(UpstreamDataError):
        run_paired_strategy(StrategyConfig(mode="paper"), RunState(), 100.0, build, PairExecutor(None))


def test_clip_error_joins_and_truncates():
    assert clip_error(None, "a") == "a"
    assert clip_error("a", "b") == "a; b"
    clipped = clip_error("x" * 499, "yyy")
    assert len(clipped) == 500 and clipped.endswith("...")
