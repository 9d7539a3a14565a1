from __future__ import annotations
import csv
import io
import zipfile
from typing import List, Optional

import httpx

from paired_trader.errors import UpstreamDataError
from paired_trader.models import Position, TapeTrade


def _as_float(x, default: float = 0.0) -> float:
    try:
        return float(x)
    except (TypeError, ValueError):
        return default


class DataApiAdapter:
    """Public data API: global trade tape, positions, and cash balance."""

    def __init__(self, base_url: str = "https://data-api.polymarket.com", timeout: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.call_count = 0

    def reset_call_count(self):
        self.call_count = 0

    def _counted_get(self, client: httpx.Client, url: str, **kwargs):
        self.call_count += 1
        return client.get(url, **kwargs)

    @staticmethod
    def _to_trade(t: dict) -> Optional[TapeTrade]:
        condition_id = str(t.get("conditionId") or "")
        asset = str(t.get("asset") or "")
        outcome = str(t.get("outcome") or "")
        if not condition_id or not asset or not outcome:
            return None
        return TapeTrade(
            condition_id=condition_id,
            title=str(t.get("title") or ""),
            slug=str(t.get("slug") or ""),
            asset=asset,
            outcome=outcome,
            price=_as_float(t.get("price")),
            timestamp=int(_as_float(t.get("timestamp"))),
        )

    def fetch_recent_trades(self, limit: int = 5000) -> List[TapeTrade]:
        try:
            with httpx.Client(timeout=self.timeout) as client:
                r = self._counted_get(client, f"{self.base_url}/trades", params={"limit": str(limit)})
                r.raise_for_status()
                arr = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamDataError(f"Trades fetch failed: {e}") from e

        out: List[TapeTrade] = []
        for t in arr if isinstance(arr, list) else []:
            trade = self._to_trade(t or {})
            if trade:
                out.append(trade)
        return out

    def get_positions(self, address: str, limit: int = 200) -> List[Position]:
        params = {"user": address, "limit": str(limit), "sortBy": "TOKENS", "sortDirection": "DESC"}
        try:
            with httpx.Client(timeout=self.timeout) as client:
                r = self._counted_get(client, f"{self.base_url}/positions", params=params)
                r.raise_for_status()
                arr = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamDataError(f"Positions fetch failed: {e}") from e

        out: List[Position] = []
        for p in arr if isinstance(arr, list) else []:
            if not isinstance(p, dict) or not p.get("asset"):
                continue
            out.append(
                Position(
                    asset=str(p["asset"]),
                    condition_id=str(p.get("conditionId") or ""),
                    size=_as_float(p.get("size")),
                    cur_price=_as_float(p.get("curPrice")),
                    redeemable=bool(p.get("redeemable", False)),
                )
            )
        return out

    def get_cash_balance(self, address: str) -> float:
        """Cash balance from the accounting snapshot (a zip holding equity.csv)."""
        try:
            with httpx.Client(timeout=self.timeout) as client:
                r = self._counted_get(client, f"{self.base_url}/v1/accounting/snapshot", params={"user": address})
                r.raise_for_status()
                payload = r.content
        except httpx.HTTPError as e:
            raise UpstreamDataError(f"Snapshot failed: {e}") from e

        try:
            with zipfile.ZipFile(io.BytesIO(payload)) as zf:
                if "equity.csv" not in zf.namelist():
                    return 0.0
                text = zf.read("equity.csv").decode("utf-8")
            rows = list(csv.DictReader(io.StringIO(text.strip())))
        except zipfile.BadZipFile as e:
            raise UpstreamDataError(f"Snapshot is not a zip archive: {e}") from e
        except (ValueError, csv.Error) as e:
            raise UpstreamDataError(f"Snapshot equity.csv unreadable: {e}") from e

        if not rows:
            return 0.0
        return _as_float(rows[0].get("cashBalance"))
