from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass
class LiveOrderResult:
    ok: bool
    order_id: Optional[str] = None
    error: Optional[str] = None
    raw: Optional[dict] = None


@dataclass
class RunCredentials:
    private_key: str
    address: str
    signature_type: int = 1

    @classmethod
    def from_env(cls, signature_type: int = 1) -> "RunCredentials":
        return cls(
            private_key=os.getenv("POLYMARKET_PRIVATE_KEY", "").strip(),
            address=os.getenv("POLYMARKET_FUNDER", "").strip(),
            signature_type=int(os.getenv("POLYMARKET_SIGNATURE_TYPE", str(signature_type))),
        )


def response_error(resp, fallback: str) -> str:
    if not isinstance(resp, dict):
        return fallback
    for k in ("errorMsg", "message", "error"):
        v = resp.get(k)
        if isinstance(v, str) and v.strip():
            return v
    if isinstance(resp.get("error"), dict):
        return json.dumps(resp["error"])[:160]
    if isinstance(resp.get("status"), int):
        return f"HTTP {resp['status']}"
    return fallback


class LiveExecutor:
    """Signed Polymarket CLOB session for one live run.

    The client (and its API credentials) is created on first use and reused
    for every order placed through this instance. All orders are FOK market
    orders bounded by a clearing price.
    """

    def __init__(self, cfg: dict, creds: RunCredentials):
        live = cfg.get("live", {})
        self.host = str(live.get("clob_host") or cfg.get("data", {}).get("clob_rest_base") or "https://clob.polymarket.com")
        self.chain_id = int(live.get("chain_id", 137))
        self.creds = creds
        self.sessions_created = 0

        self._client = None

    def _ensure_client(self) -> Tuple[bool, Optional[str]]:
        if self._client is not None:
            return True, None

        if not self.creds.private_key:
            return False, "POLYMARKET_PRIVATE_KEY is missing"

        try:
            from py_clob_client.client import ClobClient
        except ImportError as e:
            return False, f"py_clob_client_missing: {e}"

        api_key = os.getenv("POLYMARKET_API_KEY", "").strip()
        api_secret = os.getenv("POLYMARKET_API_SECRET", "").strip()
        api_passphrase = os.getenv("POLYMARKET_API_PASSPHRASE", "").strip()

        try:
            c = ClobClient(
                self.host,
                key=self.creds.private_key,
                chain_id=self.chain_id,
                signature_type=self.creds.signature_type,
                funder=self.creds.address or None,
            )
            # Prefer provided API creds; fallback to derive/create.
            if api_key and api_secret and api_passphrase:
                from py_clob_client.clob_types import ApiCreds

                c.set_api_creds(ApiCreds(api_key=api_key, api_secret=api_secret, api_passphrase=api_passphrase))
            else:
                c.set_api_creds(c.create_or_derive_api_creds())
        except Exception as e:
            return False, f"clob_init_failed: {e}"
        self._client = c
        self.sessions_created += 1
        return True, None

    def _post_fok(self, token_id: str, side: str, amount: float, price: float) -> LiveOrderResult:
        if not token_id:
            return LiveOrderResult(ok=False, error="token_id_missing")
        if price <= 0 or amount <= 0:
            return LiveOrderResult(ok=False, error="invalid_price_or_size")

        ok, err = self._ensure_client()
        if not ok:
            return LiveOrderResult(ok=False, error=err)

        from py_clob_client.clob_types import MarketOrderArgs, OrderType

        try:
            args = MarketOrderArgs(
                token_id=token_id,
                amount=float(amount),
                side=side,
                price=float(price),
                order_type=OrderType.FOK,
            )
            signed = self._client.create_market_order(args)
            resp = self._client.post_order(signed, OrderType.FOK)
        except Exception as e:
            # An FOK kill surfaces as an API exception.
            return LiveOrderResult(ok=False, error=f"post_order_failed: {e}")

        raw = resp if isinstance(resp, dict) else {"resp": str(resp)}
        if not raw.get("success"):
            return LiveOrderResult(ok=False, error=response_error(raw, f"{side} order rejected"), raw=raw)
        return LiveOrderResult(ok=True, order_id=raw.get("orderID") or raw.get("id"), raw=raw)

    def buy(self, token_id: str, amount_usd: float, price: float) -> LiveOrderResult:
        """Immediate-or-cancel buy of ``amount_usd`` notional, capped at ``price``."""
        return self._post_fok(token_id, "BUY", amount_usd, max(0.001, min(0.999, price)))

    def sell(self, token_id: str, shares: float, price: float) -> LiveOrderResult:
        """Immediate-or-cancel sell of ``shares``, floored at ``price``."""
        return self._post_fok(token_id, "SELL", shares, max(0.01, min(0.99, price)))
