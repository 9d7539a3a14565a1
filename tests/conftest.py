import io
import zipfile
from typing import Dict, List, Optional

import httpx
import pytest

from paired_trader.engine.market_cache import MarketCache
from paired_trader.errors import UpstreamDataError
from paired_trader.execution.live import LiveOrderResult, RunCredentials
from paired_trader.models import MarketMeta, MarketToken, OutcomeSnapshot, PairSignal, Position, TapeTrade
from paired_trader.utils.storage import MemoryKVStore


def make_signal(cid="c1", coin="BTC", cadence="5m", ts=1000, price_a=0.48, price_b=0.50) -> PairSignal:
    return PairSignal(
        condition_id=cid,
        title=f"{'Bitcoin' if coin == 'BTC' else 'Ethereum'} Up or Down {cid}",
        slug=f"{coin.lower()}-updown-{cadence}-{cid}",
        coin=coin,
        cadence=cadence,
        latest_timestamp=ts,
        pair_sum=price_a + price_b,
        edge=1.0 - (price_a + price_b),
        outcomes=(
            OutcomeSnapshot(asset=f"{cid}-up", outcome="Up", price=price_a, timestamp=ts),
            OutcomeSnapshot(asset=f"{cid}-down", outcome="Down", price=price_b, timestamp=ts),
        ),
    )


def make_market(cid="c1", question="Bitcoin Up or Down - 5m", slug="btc-updown-5m-1700000000", up=0.5, down=0.5, **overrides) -> MarketMeta:
    fields = dict(
        condition_id=cid,
        question=question,
        market_slug=slug,
        active=True,
        closed=False,
        accepting_orders=True,
        enable_order_book=True,
        tokens=[
            MarketToken(token_id=f"{cid}-up", outcome="Up", price=up),
            MarketToken(token_id=f"{cid}-down", outcome="Down", price=down),
        ],
    )
    fields.update(overrides)
    return MarketMeta(**fields)


def make_trade(cid="c1", outcome="Up", price=0.48, ts=990) -> TapeTrade:
    return TapeTrade(condition_id=cid, asset=f"{cid}-{outcome.lower()}", outcome=outcome, price=price, timestamp=ts)


class FakeSession:
    """Scripted order session; unscripted orders fill."""

    def __init__(self, buys=(), sells=()):
        self.buys = list(buys)
        self.sells = list(sells)
        self.calls = []

    def _result(self, script: List[bool]) -> LiveOrderResult:
        ok = script.pop(0) if script else True
        return LiveOrderResult(ok=ok, order_id="oid" if ok else None, error=None if ok else "FOK order killed")

    def buy(self, token_id, amount_usd, price):
        self.calls.append(("BUY", token_id, amount_usd, price))
        return self._result(self.buys)

    def sell(self, token_id, shares, price):
        self.calls.append(("SELL", token_id, shares, price))
        return self._result(self.sells)


class FakeDataApi:
    def __init__(self, balance=100.0, trades=None, positions=None, balance_error=None, trades_error=None):
        self.balance = balance
        self.trades = list(trades or [])
        self.positions: List[Position] = list(positions or [])
        self.balance_error = balance_error
        self.trades_error = trades_error
        self.call_count = 0

    def reset_call_count(self):
        self.call_count = 0

    def get_cash_balance(self, address):
        self.call_count += 1
        if self.balance_error:
            raise UpstreamDataError(self.balance_error)
        return self.balance

    def fetch_recent_trades(self, limit=5000):
        self.call_count += 1
        if self.trades_error:
            raise self.trades_error
        return list(self.trades)

    def get_positions(self, address, limit=200):
        self.call_count += 1
        return list(self.positions)


class FakeAlerts:
    def __init__(self):
        self.webhook_url = "https://alerts.test/hook"
        self.sent = []

    def send(self, title, severity="warning", details=None):
        self.sent.append({"title": title, "severity": severity, "details": details or {}})
        return True


def fake_market_cache(markets: Dict[str, Optional[MarketMeta]]) -> MarketCache:
    return MarketCache(markets.get, ttl_seconds=60)


@pytest.fixture
def cfg(tmp_path):
    return {
        "data": {"data_api_base": "https://data-api.test", "clob_rest_base": "https://clob.test"},
        "storage": {"kv_path": str(tmp_path / "kv.json"), "events_path": str(tmp_path / "events.jsonl")},
        "live": {"clob_host": "https://clob.test", "chain_id": 137, "signature_type": 1},
        "lock": {"ttl_seconds": 120},
        "worker": {"interval_seconds": 0, "min_sleep_seconds": 0},
        "strategy": {},
    }


@pytest.fixture
def store():
    return MemoryKVStore()


@pytest.fixture
def creds():
    return RunCredentials(private_key="0xabc123", address="0xfunder")


def snapshot_zip(files: dict) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, text in files.items():
            zf.writestr(name, text)
    return buf.getvalue()


@pytest.fixture
def mock_http(monkeypatch):
    """Route every httpx.Client the adapters open through a handler."""
    real_client = httpx.Client
    seen = []

    def install(handler):
        def recording(request):
            seen.append(request)
            return handler(request)

        transport = httpx.MockTransport(recording)
        monkeypatch.setattr(httpx, "Client", lambda *a, **kw: real_client(*a, transport=transport, **kw))
        monkeypatch.setattr(httpx, "post", lambda url, **kw: real_client(transport=transport).post(url, **kw))
        return seen

    return install
