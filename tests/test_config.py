import pytest

from paired_trader.config import (
    CONFIG_KEY,
    CONFIG_SCHEMA_VERSION,
    StrategyConfig,
    apply_overrides,
    load_config,
    load_strategy_config,
    migrate_config,
)
from paired_trader.errors import ConfigError
from paired_trader.utils.storage import MemoryKVStore


def test_values_are_clamped():
    cfg = StrategyConfig(
        wallet_usage_percent=500,
        pair_max_markets_per_run=99,
        unwind_share_buffer_pct=10,
        pair_lookback_seconds=5,
        pair_min_edge_cents_hourly=80,
    )
    assert cfg.wallet_usage_percent == 100
    assert cfg.pair_max_markets_per_run == 20
    assert cfg.unwind_share_buffer_pct == 50
    assert cfg.pair_lookback_seconds == 20
    assert cfg.pair_min_edge_cents_hourly == 50


def test_min_edge_falls_back_to_default():
    cfg = StrategyConfig(pair_min_edge_cents=1.0, pair_min_edge_cents_15m=2.5)
    assert cfg.min_edge_for("5m") == pytest.approx(0.01)
    assert cfg.min_edge_for("15m") == pytest.approx(0.025)
    assert cfg.min_edge_for("other") == pytest.approx(0.01)


def test_legacy_document_is_migrated():
    legacy = {
        "enabled": False,
        "mode": "live",
        "walletUsagePercent": 40,
        "pairChunkUsd": 5,
        "copyPercent": 10,
        "maxBetUsd": 3,
        "pairMinEdgeCents5m": 1.5,
    }
    cfg, migrated = migrate_config(legacy)
    assert migrated
    assert cfg.mode == "off"
    assert cfg.wallet_usage_percent == 40
    assert cfg.pair_chunk_usd == 5
    assert cfg.pair_min_edge_cents_5m == 1.5
    assert cfg.schema_version == CONFIG_SCHEMA_VERSION


def test_current_document_is_not_rewritten():
    cfg, migrated = migrate_config(StrategyConfig(mode="paper").model_dump())
    assert not migrated and cfg.mode == "paper"


def test_newer_schema_is_refused():
    with pytest.raises(ConfigError):
        migrate_config({"schema_version": CONFIG_SCHEMA_VERSION + 1})


def test_invalid_document_raises_config_error():
    with pytest.raises(ConfigError):
        migrate_config({"schema_version": 2, "mode": "turbo"})


def test_load_seeds_from_defaults_and_writes_back():
    store = MemoryKVStore()
    cfg = load_strategy_config(store, {"mode": "paper", "pair_chunk_usd": 4})
    assert cfg.mode == "paper" and cfg.pair_chunk_usd == 4
    assert store.get(CONFIG_KEY)["schema_version"] == CONFIG_SCHEMA_VERSION

    store.set(CONFIG_KEY, {"walletUsagePercent": 60})
    assert load_strategy_config(store).wallet_usage_percent == 60
    assert store.get(CONFIG_KEY)["wallet_usage_percent"] == 60


def test_apply_overrides():
    cfg = apply_overrides(StrategyConfig(), ["mode=live", "pair_min_edge_cents_5m=1.5", "enable_eth=false", "pair_max_markets_per_run=8"])
    assert cfg.mode == "live"
    assert cfg.pair_min_edge_cents_5m == 1.5
    assert cfg.enable_eth is False
    assert cfg.pair_max_markets_per_run == 8

    assert apply_overrides(cfg, ["pair_min_edge_cents_5m=none"]).pair_min_edge_cents_5m is None

    with pytest.raises(ConfigError):
        apply_overrides(cfg, ["no_such_field=1"])
    with pytest.raises(ConfigError):
        apply_overrides(cfg, ["mode=turbo"])


def test_load_config_reads_yaml(tmp_path):
    path = tmp_path / "app.yaml"
    path.write_text("storage:\n  kv_path: data/kv.json\nworker:\n  interval_seconds: 15\n")
    cfg = load_config(str(path))
    assert cfg["worker"]["interval_seconds"] == 15
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "missing.yaml"))
