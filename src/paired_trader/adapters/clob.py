from __future__ import annotations
from typing import Optional

import httpx

from paired_trader.models import MarketMeta, MarketToken


class ClobAdapter:
    """Read-only CLOB market metadata lookups."""

    def __init__(self, base_url: str = "https://clob.polymarket.com", timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @staticmethod
    def _to_meta(condition_id: str, m: dict) -> MarketMeta:
        tokens = []
        for t in m.get("tokens") or []:
            try:
                price = float((t or {}).get("price") or 0.0)
            except (TypeError, ValueError):
                price = 0.0
            tokens.append(
                MarketToken(
                    token_id=str((t or {}).get("token_id") or ""),
                    outcome=str((t or {}).get("outcome") or ""),
                    price=price,
                )
            )
        return MarketMeta(
            condition_id=str(m.get("condition_id") or condition_id),
            question=str(m.get("question") or ""),
            market_slug=str(m.get("market_slug") or ""),
            active=bool(m.get("active", False)),
            closed=bool(m.get("closed", False)),
            accepting_orders=bool(m.get("accepting_orders", False)),
            enable_order_book=bool(m.get("enable_order_book", False)),
            tokens=tokens,
        )

    def fetch_market(self, condition_id: str) -> Optional[MarketMeta]:
        url = f"{self.base_url}/markets/{condition_id}"
        with httpx.Client(timeout=self.timeout) as client:
            r = client.get(url)
            if r.status_code != 200:
                return None
            data = r.json()
        if not isinstance(data, dict):
            return None
        return self._to_meta(condition_id, data)
