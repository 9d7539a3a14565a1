from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, Literal, Optional, Tuple

import yaml
from pydantic import BaseModel, ValidationError, model_validator

from paired_trader.errors import ConfigError

CONFIG_KEY = "paired_trader_config"
CONFIG_SCHEMA_VERSION = 2

TradingMode = Literal["off", "paper", "live"]


def load_config(path: str) -> dict:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(path)
    return yaml.safe_load(p.read_text()) or {}


class StrategyConfig(BaseModel):
    """Runtime-tunable strategy settings, persisted in the KV store."""

    schema_version: int = CONFIG_SCHEMA_VERSION
    mode: TradingMode = "off"
    wallet_usage_percent: float = 25.0
    pair_chunk_usd: float = 3.0
    min_bet_usd: float = 0.1
    stop_loss_balance: float = 0.0
    floor_to_polymarket_min: bool = True
    pair_min_edge_cents: float = 0.5
    # None falls back to pair_min_edge_cents
    pair_min_edge_cents_5m: Optional[float] = None
    pair_min_edge_cents_15m: Optional[float] = None
    pair_min_edge_cents_hourly: Optional[float] = None
    pair_lookback_seconds: int = 120
    pair_max_markets_per_run: int = 4
    enable_btc: bool = True
    enable_eth: bool = True
    enable_cadence_5m: bool = True
    enable_cadence_15m: bool = True
    enable_cadence_hourly: bool = True
    max_unresolved_imbalances_per_run: int = 1
    unwind_sell_slippage_cents: float = 3.0
    unwind_share_buffer_pct: float = 99.0
    max_daily_live_notional_usd: float = 0.0
    max_daily_drawdown_usd: float = 0.0

    @model_validator(mode="after")
    def _clamp(self):
        for name, (lo, hi) in _BOUNDS.items():
            v = getattr(self, name)
            if v is None:
                continue
            if lo is not None:
                v = max(lo, v)
            if hi is not None:
                v = min(hi, v)
            setattr(self, name, type(getattr(self, name))(v))
        return self

    def min_edge_for(self, cadence: str) -> float:
        """Minimum edge (as a price fraction) for a cadence."""
        per_cadence = {
            "5m": self.pair_min_edge_cents_5m,
            "15m": self.pair_min_edge_cents_15m,
            "hourly": self.pair_min_edge_cents_hourly,
        }.get(cadence)
        cents = self.pair_min_edge_cents if per_cadence is None else per_cadence
        return cents / 100.0

    @property
    def unwind_slippage(self) -> float:
        return self.unwind_sell_slippage_cents / 100.0

    @property
    def unwind_share_buffer(self) -> float:
        return self.unwind_share_buffer_pct / 100.0


_BOUNDS: Dict[str, Tuple[Optional[float], Optional[float]]] = {
    "wallet_usage_percent": (1.0, 100.0),
    "pair_chunk_usd": (1.0, None),
    "min_bet_usd": (0.1, None),
    "stop_loss_balance": (0.0, None),
    "pair_min_edge_cents": (0.0, 50.0),
    "pair_min_edge_cents_5m": (0.0, 50.0),
    "pair_min_edge_cents_15m": (0.0, 50.0),
    "pair_min_edge_cents_hourly": (0.0, 50.0),
    "pair_lookback_seconds": (20, None),
    "pair_max_markets_per_run": (1, 20),
    "max_unresolved_imbalances_per_run": (1, 10),
    "unwind_sell_slippage_cents": (0.0, 20.0),
    "unwind_share_buffer_pct": (50.0, 100.0),
    "max_daily_live_notional_usd": (0.0, None),
    "max_daily_drawdown_usd": (0.0, None),
}

# Unversioned documents written by the dashboard era used camelCase keys.
_LEGACY_FIELDS = {
    "mode": "mode",
    "walletUsagePercent": "wallet_usage_percent",
    "pairChunkUsd": "pair_chunk_usd",
    "minBetUsd": "min_bet_usd",
    "stopLossBalance": "stop_loss_balance",
    "floorToPolymarketMin": "floor_to_polymarket_min",
    "pairMinEdgeCents": "pair_min_edge_cents",
    "pairMinEdgeCents5m": "pair_min_edge_cents_5m",
    "pairMinEdgeCents15m": "pair_min_edge_cents_15m",
    "pairMinEdgeCentsHourly": "pair_min_edge_cents_hourly",
    "pairLookbackSeconds": "pair_lookback_seconds",
    "pairMaxMarketsPerRun": "pair_max_markets_per_run",
    "enableBtc": "enable_btc",
    "enableEth": "enable_eth",
    "enableCadence5m": "enable_cadence_5m",
    "enableCadence15m": "enable_cadence_15m",
    "enableCadenceHourly": "enable_cadence_hourly",
    "maxUnresolvedImbalancesPerRun": "max_unresolved_imbalances_per_run",
    "unwindSellSlippageCents": "unwind_sell_slippage_cents",
    "unwindShareBufferPct": "unwind_share_buffer_pct",
    "maxDailyLiveNotionalUsd": "max_daily_live_notional_usd",
    "maxDailyDrawdownUsd": "max_daily_drawdown_usd",
}


def _migrate_v1(raw: dict) -> dict:
    out = {}
    for old, new in _LEGACY_FIELDS.items():
        v = raw.get(old)
        if v is None:
            v = raw.get(new)
        if v is not None:
            out[new] = v
    # copyPercent/maxBetUsd/minPercent belonged to the single-leg copier and are dropped.
    if raw.get("enabled") is False:
        out["mode"] = "off"
    out["schema_version"] = CONFIG_SCHEMA_VERSION
    return out


def migrate_config(raw: Optional[dict], defaults: Optional[dict] = None) -> Tuple[StrategyConfig, bool]:
    """Parse a stored config document, upgrading old schemas.

    Returns the config and whether the stored document needs rewriting.
    """
    if not raw:
        try:
            return StrategyConfig.model_validate(defaults or {}), True
        except ValidationError as e:
            raise ConfigError(f"invalid strategy defaults: {e}") from e

    migrated = False
    doc = dict(raw)
    version = int(doc.get("schema_version") or 1)
    if version < 2:
        doc = _migrate_v1(doc)
        migrated = True
    elif version > CONFIG_SCHEMA_VERSION:
        raise ConfigError(f"config schema_version {version} is newer than supported {CONFIG_SCHEMA_VERSION}")

    try:
        return StrategyConfig.model_validate(doc), migrated
    except ValidationError as e:
        raise ConfigError(f"invalid strategy config: {e}") from e


def load_strategy_config(store, defaults: Optional[dict] = None) -> StrategyConfig:
    cfg, migrated = migrate_config(store.get(CONFIG_KEY), defaults)
    if migrated:
        save_strategy_config(store, cfg)
    return cfg


def save_strategy_config(store, cfg: StrategyConfig) -> None:
    store.set(CONFIG_KEY, cfg.model_dump(mode="json"))


def apply_overrides(cfg: StrategyConfig, pairs: Iterable[str]) -> StrategyConfig:
    """Apply CLI-style ``key=value`` updates and re-validate."""
    doc = cfg.model_dump()
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or key not in StrategyConfig.model_fields or key == "schema_version":
            raise ConfigError(f"unknown config override: {pair}")
        value = value.strip()
        if value.lower() in ("none", "null", ""):
            doc[key] = None
        elif value.lower() in ("true", "false"):
            doc[key] = value.lower() == "true"
        else:
            doc[key] = value
    try:
        return StrategyConfig.model_validate(doc)
    except ValidationError as e:
        raise ConfigError(f"invalid config override: {e}") from e
