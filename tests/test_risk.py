from datetime import datetime, timezone

import pytest

from conftest import FakeSession
from paired_trader.config import StrategyConfig
from paired_trader.errors import UpstreamDataError
from paired_trader.models import DailyRiskState, Position, SafetyLatch
from paired_trader.risk.guards import apply_daily_live_run, evaluate_daily_caps, init_daily_risk, utc_day_key
from paired_trader.risk.latch import attempt_resolve_safety_latch, should_send_latch_alert, trip_latch

OCT_18 = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc).timestamp()


def test_utc_day_key():
    assert utc_day_key(0) == "1970-01-01"
    assert utc_day_key(OCT_18) == "2026-10-18"


def test_daily_state_resets_on_rollover():
    yesterday = DailyRiskState(day_key="2026-10-17", day_start_balance_usd=300, live_notional_usd=80, live_runs=7)
    today = init_daily_risk(yesterday, 250.0, OCT_18)
    assert today.day_key == "2026-10-18"
    assert today.day_start_balance_usd == 250.0
    assert today.live_notional_usd == 0.0 and today.live_runs == 0

    same_day = init_daily_risk(today.model_copy(update={"live_runs": 3}), 999.0, OCT_18 + 60)
    assert same_day.live_runs == 3
    assert same_day.day_start_balance_usd == 250.0


def test_apply_daily_live_run_accumulates():
    daily = DailyRiskState(day_key="2026-10-18", day_start_balance_usd=100)
    daily = apply_daily_live_run(daily, 6.5, OCT_18)
    daily = apply_daily_live_run(daily, 3.5, OCT_18 + 15)
    assert daily.live_notional_usd == pytest.approx(10.0)
    assert daily.live_runs == 2
    assert daily.last_run_at == OCT_18 + 15


def test_drawdown_cap_blocks_and_alerts_once_per_activation():
    cfg = StrategyConfig(max_daily_drawdown_usd=50)
    daily = DailyRiskState(day_key="2026-10-18", day_start_balance_usd=500)

    first = evaluate_daily_caps(daily, 440.0, cfg)
    assert first.blocked and first.reason == "daily_drawdown_cap"
    assert first.drawdown_usd == pytest.approx(60.0)
    assert first.should_alert

    second = evaluate_daily_caps(first.daily_risk, 440.0, cfg)
    assert second.blocked and not second.should_alert

    recovered = evaluate_daily_caps(second.daily_risk, 480.0, cfg)
    assert not recovered.blocked
    assert not recovered.daily_risk.alerted_drawdown_cap

    again = evaluate_daily_caps(recovered.daily_risk, 440.0, cfg)
    assert again.blocked and again.should_alert


def test_notional_cap_is_checked_first():
    cfg = StrategyConfig(max_daily_live_notional_usd=20, max_daily_drawdown_usd=10)
    daily = DailyRiskState(day_key="2026-10-18", day_start_balance_usd=500, live_notional_usd=25)
    check = evaluate_daily_caps(daily, 400.0, cfg)
    assert check.reason == "daily_notional_cap"
    assert check.daily_risk.alerted_notional_cap
    assert not check.daily_risk.alerted_drawdown_cap


def test_zero_caps_never_block():
    daily = DailyRiskState(day_key="2026-10-18", day_start_balance_usd=500, live_notional_usd=1e6)
    assert not evaluate_daily_caps(daily, 0.0, StrategyConfig()).blocked


def test_latch_alert_cooldown():
    assert should_send_latch_alert(None, 100.0)
    latch = SafetyLatch(reason="x", triggered_at=0.0, last_alert_at=100.0)
    assert not should_send_latch_alert(latch, 100.0 + 899)
    assert should_send_latch_alert(latch, 100.0 + 900)


def test_trip_latch_merges_assets():
    latch = trip_latch(None, ["a"], "circuit_breaker_unresolved_imbalance", 10.0)
    latch.attempt_count = 2
    merged = trip_latch(latch, ["a", "b"], "circuit_breaker_unresolved_imbalance", 20.0)
    assert merged.unresolved_assets == ["a", "b"]
    assert merged.triggered_at == 10.0
    assert merged.attempt_count == 2


def _latch(*assets):
    return SafetyLatch(reason="circuit_breaker_unresolved_imbalance", triggered_at=0.0, unresolved_assets=list(assets))


def test_resolution_sells_open_positions():
    positions = [
        Position(asset="b", size=4.0, redeemable=True),
        Position(asset="c", size=5.0, cur_price=0.6),
    ]
    session = FakeSession(sells=[True])
    res = attempt_resolve_safety_latch(_latch("a", "b", "c"), lambda: positions, session, 0.03, 0.99)

    assert res.resolved
    assert res.attempted_assets == ["c"]
    assert res.resolved_assets == ["a", "b", "c"]
    side, token, shares, price = session.calls[0]
    assert (side, token) == ("SELL", "c")
    assert shares == pytest.approx(4.95)
    assert price == pytest.approx(0.57)


def test_resolution_keeps_failed_assets():
    positions = [Position(asset="c", size=5.0)]
    session = FakeSession(sells=[False])
    res = attempt_resolve_safety_latch(_latch("c"), lambda: positions, session, 0.03, 0.99)
    assert not res.resolved
    assert res.remaining_assets == ["c"]
    assert session.calls[0][3] == pytest.approx(0.47)


def test_resolution_fails_closed_when_positions_unavailable():
    def positions():
        raise UpstreamDataError("Positions fetch failed: timeout")

    res = attempt_resolve_safety_latch(_latch("a", "b"), positions, FakeSession(), 0.03, 0.99)
    assert not res.resolved
    assert res.remaining_assets == ["a", "b"]
    assert res.message == "Safety latch preflight failed: Positions fetch failed: timeout"


def test_empty_latch_resolves_immediately():
    res = attempt_resolve_safety_latch(_latch(), lambda: [], FakeSession(), 0.03, 0.99)
    assert res.resolved
