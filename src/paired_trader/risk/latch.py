from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional

from paired_trader.errors import UpstreamDataError
from paired_trader.execution.pairs import MIN_UNWIND_SHARES, OrderSession
from paired_trader.models import Position, SafetyLatch

LATCH_ALERT_COOLDOWN_SECONDS = 15 * 60


def trip_latch(existing: Optional[SafetyLatch], assets: List[str], reason: str, now: float) -> SafetyLatch:
    """Activate the latch for ``assets``, merging with a latch already in place."""
    merged = list(existing.unresolved_assets) if existing else []
    for a in assets:
        if a and a not in merged:
            merged.append(a)
    return SafetyLatch(
        active=True,
        reason=reason,
        triggered_at=existing.triggered_at if existing else now,
        unresolved_assets=merged,
        attempt_count=existing.attempt_count if existing else 0,
        last_attempt_at=existing.last_attempt_at if existing else None,
        last_alert_at=existing.last_alert_at if existing else None,
    )


def should_send_latch_alert(latch: Optional[SafetyLatch], now: float, cooldown_seconds: float = LATCH_ALERT_COOLDOWN_SECONDS) -> bool:
    if latch is None or latch.last_alert_at is None:
        return True
    return now - latch.last_alert_at >= cooldown_seconds


@dataclass
class LatchResolution:
    resolved: bool
    message: str
    attempted_assets: List[str] = field(default_factory=list)
    resolved_assets: List[str] = field(default_factory=list)
    remaining_assets: List[str] = field(default_factory=list)


def attempt_resolve_safety_latch(
    latch: SafetyLatch,
    get_positions: Callable[[], List[Position]],
    session: OrderSession,
    unwind_slippage: float,
    unwind_share_buffer: float,
) -> LatchResolution:
    """Try to flatten every residual asset the latch tracks.

    An asset counts as resolved when no open, non-redeemable position with a
    positive size remains, or when a sell of that position fills.
    """
    assets = list(dict.fromkeys(a.strip() for a in latch.unresolved_assets if a and a.strip()))
    if not assets:
        return LatchResolution(resolved=True, message="Safety latch had no tracked unresolved assets")

    try:
        positions = get_positions()
    except UpstreamDataError as e:
        return LatchResolution(
            resolved=False,
            message=f"Safety latch preflight failed: {e}",
            remaining_assets=assets,
        )

    attempted: List[str] = []
    resolved: List[str] = []
    failed: List[str] = []
    for asset in assets:
        pos = next((p for p in positions if p.asset == asset and not p.redeemable and p.size > 0), None)
        if pos is None:
            resolved.append(asset)
            continue
        attempted.append(asset)
        shares = max(MIN_UNWIND_SHARES, pos.size * unwind_share_buffer)
        ref_price = pos.cur_price if pos.cur_price > 0 else 0.5
        sell = session.sell(asset, shares, ref_price - unwind_slippage)
        (resolved if sell.ok else failed).append(asset)

    if failed:
        message = f"Safety latch preflight still blocked: {len(failed)} unresolved asset(s)"
    else:
        message = f"Safety latch preflight resolved ({len(resolved)}/{len(assets)} assets)"
    return LatchResolution(
        resolved=not failed,
        message=message,
        attempted_assets=attempted,
        resolved_assets=resolved,
        remaining_assets=failed,
    )
