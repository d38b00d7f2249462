"""Configuration model tests."""

from __future__ import annotations

import importlib
import os
import sys

import pytest

from arbengine.config import ConfigError, Settings, creds_for, validate_settings


def _reload_config(monkeypatch, **env):
    """Import a fresh ``arbengine.config`` with *env* applied."""
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    original = sys.modules.get("arbengine.config")
    sys.modules.pop("arbengine.config", None)
    cfg = importlib.import_module("arbengine.config")
    if original is not None:
        sys.modules["arbengine.config"] = original
    else:
        sys.modules.pop("arbengine.config", None)
    return cfg


def test_exchanges_json(monkeypatch):
    cfg = _reload_config(monkeypatch, EXCHANGES='["Binance", "kraken"]')
    assert cfg.settings.exchanges == ["binance", "kraken"]


def test_exchanges_csv(monkeypatch):
    cfg = _reload_config(monkeypatch, EXCHANGES="binance, kraken")
    assert cfg.settings.exchanges == ["binance", "kraken"]


def test_start_assets_and_amounts(monkeypatch):
    cfg = _reload_config(
        monkeypatch,
        START_ASSETS="usd,usdt",
        TRADE_AMOUNT="50",
        TRADE_AMOUNT_BY_ASSET='{"btc": 0.01}',
    )
    s = cfg.settings
    assert s.start_assets == ["USD", "USDT"]
    assert s.capital_for("BTC") == 0.01
    assert s.capital_for("usd") == 50.0


def test_monitoring_thresholds(monkeypatch):
    cfg = _reload_config(
        monkeypatch,
        MAX_CONSECUTIVE_ERRORS="3",
        BALANCE_WARNING='{"usd": 500}',
        BALANCE_CRITICAL='{"usd": 100}',
    )
    s = cfg.settings
    assert s.max_consecutive_errors == 3
    assert s.balance_warning == {"USD": 500.0}
    assert s.balance_critical == {"USD": 100.0}
    assert s.high_profit_alert_pct == 0.0


def test_venue_fees_accept_bps(monkeypatch):
    cfg = _reload_config(
        monkeypatch, VENUE_FEES='{"Kraken": {"taker_bps": 26}, "binance": 0.001}'
    )
    s = cfg.settings
    assert s.fee_for("kraken") == pytest.approx(0.0026)
    assert s.fee_for("binance") == 0.001
    assert s.fee_for("coinbase") == s.default_fee


def test_load_env_file_strips_quotes(monkeypatch, tmp_path):
    env_path = tmp_path / ".env"
    env_path.write_text('FOO="bar"\n# comment\n')
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("FOO", raising=False)
    _reload_config(monkeypatch)
    assert os.environ["FOO"] == "bar"
    monkeypatch.delenv("FOO", raising=False)


def test_creds_for_prefers_venue_keys(monkeypatch) -> None:
    """``creds_for`` should pull venue-specific keys when available."""

    cfg = Settings(arbengine_api_key="shared", arbengine_api_secret="shh")
    monkeypatch.setenv("KRAKEN_API_KEY", "key")
    monkeypatch.setenv("KRAKEN_API_SECRET", "secret")
    monkeypatch.setenv("KRAKEN_API_PASSWORD", "pw")
    assert creds_for("kraken", cfg) == ("key", "secret", "pw")
    monkeypatch.delenv("BINANCE_API_KEY", raising=False)
    monkeypatch.delenv("BINANCE_API_SECRET", raising=False)
    monkeypatch.delenv("BINANCE_API_PASSWORD", raising=False)
    assert creds_for("binance", cfg) == ("shared", "shh", None)


def test_validate_settings_accepts_defaults() -> None:
    cfg = Settings(dry_run=True, exchanges=["kraken"])
    assert validate_settings(cfg) is cfg


def test_validate_settings_requires_live_credentials(monkeypatch) -> None:
    for suffix in ("KEY", "SECRET"):
        monkeypatch.delenv(f"KRAKEN_API_{suffix}", raising=False)
    cfg = Settings(
        dry_run=False,
        exchanges=["kraken"],
        arbengine_api_key=None,
        arbengine_api_secret=None,
    )
    with pytest.raises(ConfigError, match="missing API credentials for kraken"):
        validate_settings(cfg)


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"max_path_length": 2}, "max_path_length"),
        ({"max_slippage_tolerance": 1.5}, "max_slippage_tolerance"),
        ({"confirm_max_attempts": 0}, "confirm_max_attempts"),
        ({"order_type": "stop"}, "order_type"),
        ({"exchanges": []}, "no exchanges"),
        ({"max_consecutive_errors": -1}, "max_consecutive_errors"),
    ],
)
def test_validate_settings_rejects_bad_values(overrides, message) -> None:
    cfg = Settings(dry_run=True, **overrides)
    with pytest.raises(ConfigError, match=message):
        validate_settings(cfg)
