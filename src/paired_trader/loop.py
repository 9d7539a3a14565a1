import argparse
import signal
import threading
import time
from typing import Callable, Optional

from rich import print

from paired_trader.config import load_config
from paired_trader.main import run_once
from paired_trader.utils.storage import append_event


def run_forever(cfg: dict, run: Callable = run_once, stop: Optional[threading.Event] = None) -> int:
    """Call ``run`` every ``worker.interval_seconds`` until ``stop`` is set.

    Returns the number of completed cycles.
    """
    stop = stop or threading.Event()
    interval = float(cfg.get("worker", {}).get("interval_seconds", 15))
    min_sleep = float(cfg.get("worker", {}).get("min_sleep_seconds", 0.25))
    cycles = 0

    while not stop.is_set():
        cycle_start = time.time()
        try:
            outcome = run(cfg)
            elapsed_ms = int((time.time() - cycle_start) * 1000)
            if outcome.skipped:
                print(f"[worker] skipped={outcome.reason} ({elapsed_ms}ms)")
            elif not outcome.ok:
                print(f"[red][worker] ERROR {outcome.error}[/red] ({elapsed_ms}ms)")
        except Exception as e:
            append_event(cfg["storage"]["events_path"], {"type": "loop_error", "error": str(e)})
            print(f"[red][worker] ERROR {e}[/red]")
        cycles += 1

        elapsed = time.time() - cycle_start
        stop.wait(max(min_sleep, interval - elapsed))

    return cycles


def main():
    parser = argparse.ArgumentParser(description="Persistent paired-trader poller")
    parser.add_argument("--config", default="config/default.yaml")
    args = parser.parse_args()

    cfg = load_config(args.config)
    stop = threading.Event()

    def _stop(signum, _frame):
        print(f"[worker] Received {signal.Signals(signum).name}. Stopping after current cycle...")
        stop.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    print(f"[worker] Starting paired-trader worker interval={cfg.get('worker', {}).get('interval_seconds', 15)}s")
    run_forever(cfg, stop=stop)
    print("[worker] Stopped")


if __name__ == "__main__":
    main()
