from __future__ import annotations
import fcntl
import json
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

from paired_trader.models import ActivityRecord, Diagnostics, PaperRun, PaperStats, RunState

STATE_KEY = "paired_trader_state"
ACTIVITY_KEY = "paired_trader_activity"
DIAGNOSTICS_KEY = "paired_trader_diagnostics"
PAPER_STATS_KEY = "paired_trader_paper_stats"

ACTIVITY_LIMIT = 50
DIAGNOSTICS_LIMIT = 100
PAPER_RUNS_LIMIT = 50


class KeyValueStore(Protocol):
    """get/set/delete plus atomic set-if-absent and delete-if-equals."""

    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None: ...

    def delete(self, key: str) -> None: ...

    def set_if_absent(self, key: str, value: Any, ttl_seconds: float) -> bool: ...

    def delete_if_equals(self, key: str, value: Any) -> bool: ...


def _live(entry: Optional[dict], now: float) -> bool:
    if not entry:
        return False
    exp = entry.get("expires_at")
    return exp is None or float(exp) > now


class MemoryKVStore:
    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._data.get(key)
            if not _live(entry, self._clock()):
                self._data.pop(key, None)
                return None
            return json.loads(entry["value"])

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        with self._lock:
            self._data[key] = self._entry(value, ttl_seconds)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def set_if_absent(self, key: str, value: Any, ttl_seconds: float) -> bool:
        with self._lock:
            if _live(self._data.get(key), self._clock()):
                return False
            self._data[key] = self._entry(value, ttl_seconds)
            return True

    def delete_if_equals(self, key: str, value: Any) -> bool:
        with self._lock:
            entry = self._data.get(key)
            if not _live(entry, self._clock()) or json.loads(entry["value"]) != value:
                return False
            del self._data[key]
            return True

    def _entry(self, value: Any, ttl_seconds: Optional[float]) -> dict:
        # Stored as JSON so callers never share mutable references with the store.
        exp = self._clock() + float(ttl_seconds) if ttl_seconds else None
        return {"value": json.dumps(value), "expires_at": exp}


class FileKVStore:
    """Single JSON document on disk, guarded by an flock'd sidecar file.

    Safe across processes on one host; every operation is a full
    read-modify-write under the lock.
    """

    def __init__(self, path: str, clock: Callable[[], float] = time.time):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock_path = self.path.with_suffix(self.path.suffix + ".lock")
        self._clock = clock

    @contextmanager
    def _locked(self):
        with self._lock_path.open("a") as fh:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)

    def _read(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        text = self.path.read_text()
        return json.loads(text) if text.strip() else {}

    def _write(self, data: Dict[str, dict]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        os.replace(tmp, self.path)

    def get(self, key: str) -> Any:
        with self._locked():
            entry = self._read().get(key)
        if not _live(entry, self._clock()):
            return None
        return entry["value"]

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        with self._locked():
            data = self._read()
            data[key] = {"value": value, "expires_at": self._clock() + float(ttl_seconds) if ttl_seconds else None}
            self._write(data)

    def delete(self, key: str) -> None:
        with self._locked():
            data = self._read()
            if data.pop(key, None) is not None:
                self._write(data)

    def set_if_absent(self, key: str, value: Any, ttl_seconds: float) -> bool:
        with self._locked():
            data = self._read()
            now = self._clock()
            if _live(data.get(key), now):
                return False
            data[key] = {"value": value, "expires_at": now + float(ttl_seconds)}
            self._write(data)
            return True

    def delete_if_equals(self, key: str, value: Any) -> bool:
        with self._locked():
            data = self._read()
            entry = data.get(key)
            if not _live(entry, self._clock()) or entry["value"] != value:
                return False
            del data[key]
            self._write(data)
            return True


def open_store(cfg: dict) -> KeyValueStore:
    return FileKVStore(cfg["storage"]["kv_path"])


def load_state(store: KeyValueStore) -> RunState:
    data = store.get(STATE_KEY)
    if not data:
        return RunState()
    return RunState.model_validate(data)


def save_state(store: KeyValueStore, state: RunState) -> None:
    store.set(STATE_KEY, state.model_dump(mode="json"))


def reset_sync_state(store: KeyValueStore) -> RunState:
    """Forget the watermark, processed keys and any safety latch."""
    state = load_state(store)
    state.last_timestamp = 0
    state.processed_keys = []
    state.safety_latch = None
    save_state(store, state)
    return state


def get_recent_activity(store: KeyValueStore) -> List[ActivityRecord]:
    return [ActivityRecord.model_validate(a) for a in (store.get(ACTIVITY_KEY) or [])]


def append_activity(store: KeyValueStore, trades: List[ActivityRecord]) -> None:
    if not trades:
        return
    current = store.get(ACTIVITY_KEY) or []
    updated = [t.model_dump(mode="json") for t in trades] + current
    store.set(ACTIVITY_KEY, updated[:ACTIVITY_LIMIT])


def get_diagnostics_history(store: KeyValueStore) -> List[Diagnostics]:
    return [Diagnostics.model_validate(d) for d in (store.get(DIAGNOSTICS_KEY) or [])]


def record_diagnostics(store: KeyValueStore, diag: Diagnostics) -> None:
    current = store.get(DIAGNOSTICS_KEY) or []
    store.set(DIAGNOSTICS_KEY, ([diag.model_dump(mode="json")] + current)[:DIAGNOSTICS_LIMIT])


def get_paper_stats(store: KeyValueStore) -> PaperStats:
    data = store.get(PAPER_STATS_KEY)
    return PaperStats.model_validate(data) if data else PaperStats()


def record_paper_run(store: KeyValueStore, run: PaperRun) -> PaperStats:
    stats = get_paper_stats(store)
    stats.runs += 1
    stats.simulated_trades += run.simulated_trades
    stats.simulated_volume_usd += run.simulated_volume_usd
    stats.failed += run.failed
    stats.last_run_at = run.timestamp
    stats.recent = ([run] + stats.recent)[:PAPER_RUNS_LIMIT]
    store.set(PAPER_STATS_KEY, stats.model_dump(mode="json"))
    return stats


def reset_paper_stats(store: KeyValueStore) -> None:
    store.delete(PAPER_STATS_KEY)


def append_event(path: str, event: dict) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    event = {"ts": datetime.now(timezone.utc).isoformat(), **event}
    with p.open("a") as f:
        f.write(json.dumps(event, default=str) + "\n")
