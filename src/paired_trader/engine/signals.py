"""Build ranked paired signals from the global trade tape."""

from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from paired_trader.models import MarketMeta, OutcomeSnapshot, PairSignal, TapeTrade

MAX_CONDITIONS_TO_INSPECT = 120

_HOURLY_SLUG = re.compile(r"\d{1,2}(?:am|pm)-et\b")

_COIN_MARKERS = {
    "BTC": ("bitcoin up or down", "btc up or down", "bitcoin-up-or-down", "btc-updown"),
    "ETH": ("ethereum up or down", "eth up or down", "ethereum-up-or-down", "eth-updown"),
}


@dataclass
class ConditionSnapshot:
    latest_timestamp: int = 0
    by_outcome: Dict[str, OutcomeSnapshot] = field(default_factory=dict)


@dataclass
class SignalBuild:
    signals: List[PairSignal]
    rejected: Dict[str, int]


def _bump(d: Dict[str, int], reason: str) -> None:
    d[reason] = d.get(reason, 0) + 1


def classify_market(question: str, slug: str = "") -> Optional[Tuple[str, str]]:
    """Return (coin, cadence) for BTC/ETH up-or-down markets, else None."""
    s = (slug or "").lower()
    hay = f"{(question or '').lower()} {s}"

    coin = next((c for c, markers in _COIN_MARKERS.items() if any(m in hay for m in markers)), None)
    if coin is None:
        return None

    if "updown-5m" in s:
        cadence = "5m"
    elif "updown-15m" in s:
        cadence = "15m"
    elif "up-or-down" in s and _HOURLY_SLUG.search(s):
        cadence = "hourly"
    else:
        cadence = "other"
    return coin, cadence


def group_trades(trades: Iterable[TapeTrade], lookback_seconds: int, now_ts: int) -> Dict[str, ConditionSnapshot]:
    """Latest (price, timestamp) per outcome label for each condition in the window."""
    grouped: Dict[str, ConditionSnapshot] = {}
    for t in trades:
        if not t.condition_id or not t.outcome or not t.asset:
            continue
        ts = int(t.timestamp or 0)
        if ts <= 0 or now_ts - ts > lookback_seconds:
            continue
        if t.price <= 0 or t.price >= 1:
            continue

        bucket = grouped.setdefault(t.condition_id, ConditionSnapshot())
        current = bucket.by_outcome.get(t.outcome)
        if current is None or ts > current.timestamp:
            bucket.by_outcome[t.outcome] = OutcomeSnapshot(asset=t.asset, outcome=t.outcome, price=t.price, timestamp=ts)
        bucket.latest_timestamp = max(bucket.latest_timestamp, ts)
    return grouped


def _resolve_outcomes(market: MarketMeta, snap: ConditionSnapshot) -> List[OutcomeSnapshot]:
    out: List[OutcomeSnapshot] = []
    for token in market.tokens[:2]:
        seen = snap.by_outcome.get(token.outcome)
        price = seen.price if seen else token.price
        ts = seen.timestamp if seen else snap.latest_timestamp
        if not token.outcome or not token.token_id or price <= 0 or price >= 1:
            continue
        out.append(OutcomeSnapshot(asset=token.token_id, outcome=token.outcome, price=price, timestamp=ts))
    return out


def build_pair_signals(
    trades: Iterable[TapeTrade],
    lookup_markets: Callable[[List[str]], Dict[str, Optional[MarketMeta]]],
    lookback_seconds: int,
    now_ts: int,
    coins: Iterable[str] = ("BTC", "ETH"),
    cadences: Iterable[str] = ("5m", "15m", "hourly"),
    max_conditions: int = MAX_CONDITIONS_TO_INSPECT,
) -> SignalBuild:
    """Rank tradeable pairs by edge (desc), then recency (desc).

    ``lookup_markets`` maps condition ids to metadata, ``None`` meaning the
    lookup failed.
    """
    enabled_coins = set(coins)
    enabled_cadences = set(cadences)
    rejected: Dict[str, int] = {}

    grouped = group_trades(trades, lookback_seconds, now_ts)
    ranked = sorted(grouped.items(), key=lambda kv: kv[1].latest_timestamp, reverse=True)
    condition_ids = [cid for cid, _ in ranked[:max_conditions]]
    markets = lookup_markets(condition_ids) if condition_ids else {}

    signals: List[PairSignal] = []
    for cid in condition_ids:
        snap = grouped[cid]
        if not snap.by_outcome:
            _bump(rejected, "missing_any_outcome")
            continue

        market = markets.get(cid)
        if market is None:
            _bump(rejected, "market_lookup_failed")
            continue
        if market.closed:
            _bump(rejected, "market_closed")
            continue
        if not market.active:
            _bump(rejected, "market_inactive")
            continue
        if not market.accepting_orders:
            _bump(rejected, "market_not_accepting_orders")
            continue
        if not market.enable_order_book:
            _bump(rejected, "market_orderbook_disabled")
            continue

        identity = classify_market(market.question, market.market_slug)
        if identity is None:
            _bump(rejected, "market_not_btc_eth_updown")
            continue
        coin, cadence = identity
        if coin not in enabled_coins:
            _bump(rejected, "coin_disabled")
            continue
        if cadence == "other" or cadence not in enabled_cadences:
            _bump(rejected, "cadence_disabled")
            continue

        if len(market.tokens) < 2:
            _bump(rejected, "market_missing_tokens")
            continue
        outcomes = _resolve_outcomes(market, snap)
        if len(outcomes) < 2:
            _bump(rejected, "missing_valid_token_snapshot")
            continue
        first, second = outcomes
        if first.asset == second.asset:
            _bump(rejected, "duplicate_token_assets")
            continue

        pair_sum = first.price + second.price
        signals.append(
            PairSignal(
                condition_id=cid,
                title=market.question,
                slug=market.market_slug,
                coin=coin,
                cadence=cadence,
                latest_timestamp=max(first.timestamp, second.timestamp),
                pair_sum=pair_sum,
                edge=1.0 - pair_sum,
                outcomes=(first, second),
            )
        )

    signals.sort(key=lambda s: (s.edge, s.latest_timestamp), reverse=True)
    return SignalBuild(signals=signals, rejected=rejected)
