from __future__ import annotations
import uuid
from typing import Optional

RUN_LOCK_KEY = "paired_trader_run_lock"


class RunLock:
    """Time-bounded mutual exclusion on top of a KV set-if-absent primitive.

    The TTL bounds how long a crashed holder can block other runs; there is no
    heartbeat.
    """

    def __init__(self, store, key: str = RUN_LOCK_KEY, ttl_seconds: float = 120.0):
        self.store = store
        self.key = key
        self.ttl_seconds = float(ttl_seconds)

    def acquire(self) -> Optional[str]:
        token = uuid.uuid4().hex
        if self.store.set_if_absent(self.key, token, self.ttl_seconds):
            return token
        return None

    def release(self, token: Optional[str]) -> bool:
        if not token:
            return False
        # Compare and delete in one store operation so an expired lock taken over
        # by another run is left in place.
        return self.store.delete_if_equals(self.key, token)
