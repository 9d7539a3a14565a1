#!/usr/bin/env python3
"""Quick health snapshot of the paired trader.

Reads the local KV store and event log and prints compact, actionable status:
- freshness (last run / last fill)
- safety latch and daily risk
- last run diagnostics and recent run errors
"""

from __future__ import annotations

import json
import sys
import time
from pathlib import Path

from paired_trader.config import load_config
from paired_trader.utils.storage import FileKVStore, get_diagnostics_history, load_state


def fmt_age(ts: float | None) -> str:
    if not ts:
        return "n/a"
    return f"{time.time() - ts:.1f}s"


def recent_events(path: str, limit: int = 200) -> list[dict]:
    p = Path(path)
    if not p.exists():
        return []
    out = []
    for line in p.read_text().splitlines()[-limit:]:
        try:
            out.append(json.loads(line))
        except json.JSONDecodeError:
            continue
    return out


def main() -> None:
    cfg = load_config(sys.argv[1] if len(sys.argv) > 1 else "config/default.yaml")
    store = FileKVStore(cfg["storage"]["kv_path"])
    state = load_state(store)

    print("=== PAIRED TRADER HEALTH SNAPSHOT ===")
    print(f"freshness: last_run={fmt_age(state.last_run_at)} last_fill={fmt_age(state.last_copied_at)}")
    print(f"watermark: {state.last_timestamp} processed_keys={len(state.processed_keys)}")

    latch = state.safety_latch
    if latch and latch.active:
        print(f"SAFETY LATCH ACTIVE reason={latch.reason} assets={latch.unresolved_assets} attempts={latch.attempt_count}")
    else:
        print("safety_latch: clear")

    if state.daily_risk:
        d = state.daily_risk
        print(f"daily_risk: day={d.day_key} start=${d.day_start_balance_usd:.2f} notional=${d.live_notional_usd:.2f} runs={d.live_runs}")

    history = get_diagnostics_history(store)
    if history:
        last = history[0]
        print(
            f"last_run: mode={last.mode} eval={last.evaluated_signals} elig={last.eligible_signals}"
            f" exec={last.executed_signals} failed={last.failed} skipped={last.skipped}"
            f" max_edge={last.max_edge_cents} min_sum={last.min_pair_sum}"
        )
        top = sorted(last.rejected_reasons.items(), key=lambda kv: kv[1], reverse=True)[:5]
        for reason, count in top:
            print(f"  REJECT {reason}={count}")

    errors = [e for e in recent_events(cfg["storage"]["events_path"]) if e.get("type") in ("run_error", "loop_error", "alert_failed")]
    print(f"recent_errors: {len(errors)}")
    for e in errors[-3:]:
        print(f"  {e.get('ts')} {e.get('type')} {e.get('error') or e.get('title')}")

    print(f"last_error: {state.last_error}")


if __name__ == "__main__":
    main()
