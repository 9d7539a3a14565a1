import json
import threading

from paired_trader.loop import run_forever
from paired_trader.main import RunOutcome


def test_poller_runs_until_stopped(cfg):
    stop = threading.Event()
    calls = []

    def run(c):
        calls.append(c)
        if len(calls) == 3:
            stop.set()
        return RunOutcome(ok=True, skipped=len(calls) == 2, reason="busy")

    assert run_forever(cfg, run=run, stop=stop) == 3
    assert all(c is cfg for c in calls)


def test_poller_survives_cycle_errors(cfg):
    stop = threading.Event()
    calls = []

    def run(c):
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("kv unavailable")
        stop.set()
        return RunOutcome(ok=False, error="Trades fetch failed")

    assert run_forever(cfg, run=run, stop=stop) == 2
    with open(cfg["storage"]["events_path"]) as f:
        events = [json.loads(line) for line in f]
    assert events == [{"ts": events[0]["ts"], "type": "loop_error", "error": "kv unavailable"}]
