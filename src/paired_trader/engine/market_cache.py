from __future__ import annotations
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, Optional, Tuple

import httpx

from paired_trader.models import MarketMeta

LOOKUP_BATCH_SIZE = 15


class MarketCache:
    """Per-condition metadata cache with a fixed TTL.

    Failed lookups are cached as ``None`` for the same TTL so a broken market
    is not re-fetched on every run. Last writer wins.
    """

    def __init__(
        self,
        fetch: Callable[[str], Optional[MarketMeta]],
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        batch_size: int = LOOKUP_BATCH_SIZE,
    ):
        self._fetch = fetch
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self.batch_size = max(1, int(batch_size))
        self._entries: Dict[str, Tuple[float, Optional[MarketMeta]]] = {}
        self._lock = threading.Lock()

    def peek(self, condition_id: str) -> Tuple[bool, Optional[MarketMeta]]:
        with self._lock:
            hit = self._entries.get(condition_id)
        if hit and (self._clock() - hit[0]) < self.ttl_seconds:
            return True, hit[1]
        return False, None

    def get(self, condition_id: str) -> Optional[MarketMeta]:
        fresh, market = self.peek(condition_id)
        if fresh:
            return market
        fetched_at = self._clock()
        try:
            market = self._fetch(condition_id)
        except (httpx.HTTPError, ValueError):
            market = None
        with self._lock:
            self._entries[condition_id] = (fetched_at, market)
        return market

    def get_many(self, condition_ids: Iterable[str]) -> Dict[str, Optional[MarketMeta]]:
        ids = list(condition_ids)
        out: Dict[str, Optional[MarketMeta]] = {}
        with ThreadPoolExecutor(max_workers=self.batch_size) as pool:
            for i in range(0, len(ids), self.batch_size):
                batch = ids[i:i + self.batch_size]
                for cid, market in zip(batch, pool.map(self.get, batch)):
                    out[cid] = market
        return out
