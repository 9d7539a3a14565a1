from __future__ import annotations
import os
from datetime import datetime, timezone
from typing import Optional

import httpx
from rich import print

ALERT_SOURCE = "polymarket-paired-trader"


class AlertSink:
    """Fire-and-forget webhook for critical notifications.

    Delivery failures are reported on the console and never raised.
    """

    def __init__(self, webhook_url: Optional[str] = None, token: Optional[str] = None, timeout: float = 10.0):
        self.webhook_url = (webhook_url or "").strip()
        self.token = (token or "").strip()
        self.timeout = timeout
        self.sent = 0

    @classmethod
    def from_env(cls) -> "AlertSink":
        return cls(os.getenv("ALERT_WEBHOOK_URL"), os.getenv("ALERT_WEBHOOK_TOKEN"))

    def send(self, title: str, severity: str = "warning", details: Optional[dict] = None) -> bool:
        if not self.webhook_url:
            return False
        body = {
            "source": ALERT_SOURCE,
            "severity": severity,
            "title": title,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details or {},
        }
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["authorization"] = f"Bearer {self.token}"
        try:
            r = httpx.post(self.webhook_url, json=body, headers=headers, timeout=self.timeout)
        except httpx.HTTPError as e:
            print(f"[red]Alert webhook request failed[/red] {e}")
            return False
        if r.status_code >= 400:
            print(f"[red]Alert webhook error[/red] {r.status_code} {r.reason_phrase}")
            return False
        self.sent += 1
        return True
