from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from paired_trader.config import StrategyConfig
from paired_trader.models import DailyRiskState


def utc_day_key(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d")


def init_daily_risk(current: Optional[DailyRiskState], balance_usd: float, now: float) -> DailyRiskState:
    """Today's risk state; a new UTC day starts fresh from the current balance."""
    day = utc_day_key(now)
    if current is None or current.day_key != day:
        return DailyRiskState(day_key=day, day_start_balance_usd=max(0.0, float(balance_usd)))
    return current.model_copy()


def apply_daily_live_run(daily: DailyRiskState, budget_used_usd: float, now: float) -> DailyRiskState:
    return daily.model_copy(
        update={
            "live_notional_usd": max(0.0, daily.live_notional_usd + max(0.0, float(budget_used_usd))),
            "live_runs": daily.live_runs + 1,
            "last_run_at": now,
        }
    )


@dataclass
class DailyCapCheck:
    blocked: bool
    daily_risk: DailyRiskState
    drawdown_usd: float = 0.0
    reason: Optional[str] = None
    message: Optional[str] = None
    should_alert: bool = False


def evaluate_daily_caps(daily: DailyRiskState, balance_usd: float, cfg: StrategyConfig) -> DailyCapCheck:
    """Block live trading once today's notional or drawdown cap is reached.

    The notional cap is checked first. Each cap alerts once per activation;
    its flag re-arms as soon as the cap is no longer breached.
    """
    drawdown = max(0.0, daily.day_start_balance_usd - max(0.0, float(balance_usd)))
    notional_cap = cfg.max_daily_live_notional_usd
    drawdown_cap = cfg.max_daily_drawdown_usd

    notional_hit = notional_cap > 0 and daily.live_notional_usd >= notional_cap
    drawdown_hit = drawdown_cap > 0 and drawdown >= drawdown_cap

    nxt = daily.model_copy(
        update={
            "alerted_notional_cap": daily.alerted_notional_cap and notional_hit,
            "alerted_drawdown_cap": daily.alerted_drawdown_cap and drawdown_hit,
        }
    )

    if notional_hit:
        should_alert = not nxt.alerted_notional_cap
        nxt.alerted_notional_cap = True
        return DailyCapCheck(
            blocked=True,
            daily_risk=nxt,
            drawdown_usd=drawdown,
            reason="daily_notional_cap",
            message=f"Daily live notional cap reached: ${daily.live_notional_usd:.2f} / ${notional_cap:.2f}",
            should_alert=should_alert,
        )

    if drawdown_hit:
        should_alert = not nxt.alerted_drawdown_cap
        nxt.alerted_drawdown_cap = True
        return DailyCapCheck(
            blocked=True,
            daily_risk=nxt,
            drawdown_usd=drawdown,
            reason="daily_drawdown_cap",
            message=f"Daily drawdown cap reached: ${drawdown:.2f} / ${drawdown_cap:.2f}",
            should_alert=should_alert,
        )

    return DailyCapCheck(blocked=False, daily_risk=nxt, drawdown_usd=drawdown)
