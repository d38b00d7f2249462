"""Configuration management and credential helpers.

This module loads environment variables from a local ``.env`` file if one is
present so that credentials such as API keys are available without manual
exports.  Values in the real environment take precedence over those in the
file.
"""

import json
import os
from pathlib import Path
from typing import Annotated, Any, List

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class ConfigError(RuntimeError):
    """Raised when settings are unusable and the engine must not start."""


def _load_env_file(path: str = ".env") -> None:
    """Populate :mod:`os.environ` with key/value pairs from *path*.

    Lines starting with ``#`` or lacking an ``=`` separator are ignored.
    Existing keys are not overwritten. Values wrapped in single or double
    quotes are unquoted to match typical ``.env`` file behavior.
    """

    try:
        for line in Path(path).read_text().splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            value = value.strip()
            if (value.startswith('"') and value.endswith('"')) or (
                value.startswith("'") and value.endswith("'")
            ):
                value = value[1:-1]
            os.environ.setdefault(key.strip(), value)
    except FileNotFoundError:
        pass


_load_env_file()


def _split_list(value: Any) -> list[str]:
    """Return a cleaned list of identifiers from a JSON or comma string."""

    if value is None:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
        except ValueError:
            items = raw.split(",")
        else:
            if isinstance(parsed, str):
                items = parsed.split(",")
            elif isinstance(parsed, (list, tuple)):
                items = list(parsed)
            else:
                items = [parsed]
    elif isinstance(value, (list, tuple, set)):
        items = list(value)
    else:
        items = [value]

    cleaned: list[str] = []
    for entry in items:
        if entry is None:
            continue
        s = str(entry).strip().strip("[] ").strip("\"'").strip()
        if s:
            cleaned.append(s)
    return cleaned


def _coerce_fee_value(value: Any, *, assume_bps: bool) -> float | None:
    """Return a decimal fee rate parsed from *value*.

    When *assume_bps* is ``True`` the number is read as basis points and
    scaled by ``1/10_000``; otherwise it is taken as a decimal rate.
    """

    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if assume_bps:
        number /= 10_000.0
    return max(number, 0.0)


def _normalize_venue_fees(data: Any) -> dict[str, float]:
    """Return ``{venue: fee_fraction}`` derived from *data*.

    Accepts a mapping or JSON string. Each value may be a bare decimal rate
    (``0.001``) or a mapping with ``fee``/``taker`` (decimal) or
    ``fee_bps``/``taker_bps`` (basis points).
    """

    if data is None:
        return {}
    if isinstance(data, str):
        raw = data.strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            return {}
    if not isinstance(data, dict):
        return {}

    out: dict[str, float] = {}
    for venue_key, entry in data.items():
        venue = str(venue_key).strip().lower()
        if not venue:
            continue
        fee: float | None
        if isinstance(entry, dict):
            fee = _coerce_fee_value(
                entry.get("fee_bps", entry.get("taker_bps")), assume_bps=True
            )
            if fee is None:
                fee = _coerce_fee_value(
                    entry.get("fee", entry.get("taker")), assume_bps=False
                )
        else:
            fee = _coerce_fee_value(entry, assume_bps=False)
        if fee is not None:
            out[venue] = fee
    return out


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="", extra="ignore")

    env: str = "dev"
    log_level: str = "INFO"
    # Optional log file path; when set, logs also write to this file.
    log_file: str | None = "data/arbengine.log"
    log_max_bytes: int = 1_000_000
    log_backup_count: int = 3

    exchanges: Annotated[List[str], NoDecode] = ["binance", "kraken"]
    # Legacy fallback used for any venue without its own keys
    arbengine_api_key: str | None = None
    arbengine_api_secret: str | None = None

    dry_run: bool = True

    # Detection
    min_profit_pct: float = 0.5
    max_path_length: int = 3
    start_assets: Annotated[List[str], NoDecode] = []
    trade_amount: float = 100.0
    trade_amount_by_asset: dict[str, float] = {}
    default_fee: float = 0.001
    venue_fees: dict[str, float] | None = None

    # Risk gating
    liquidity_ratio: float = 3.0
    book_depth: int = 20
    risk_low_volatility: float = 0.002
    risk_high_volatility: float = 0.01
    risk_low_slippage: float = 0.001
    risk_high_slippage: float = 0.005
    max_slippage_estimate: float = 0.05
    max_opportunity_age_ms: int = 5000

    # Execution
    max_slippage_tolerance: float = 0.5
    order_type: str = "limit"
    scan_interval_secs: float = 5.0
    confirm_poll_interval_secs: float = 1.0
    confirm_max_attempts: int = 10

    # Monitoring: 0 or empty disables each check
    max_consecutive_errors: int = 5
    health_check_every_ticks: int = 12
    balance_warning: dict[str, float] = {}
    balance_critical: dict[str, float] = {}
    high_profit_alert_pct: float = 0.0

    prom_port: int = 9109
    sqlite_path: str = "arbengine.db"
    discord_webhook_url: str | None = None

    @field_validator("exchanges", mode="before")
    @classmethod
    def _validate_exchanges(cls, value: Any) -> list[str]:
        return [v.lower() for v in _split_list(value)]

    @field_validator("start_assets", mode="before")
    @classmethod
    def _validate_start_assets(cls, value: Any) -> list[str]:
        return [v.upper() for v in _split_list(value)]

    @field_validator("venue_fees", mode="before")
    @classmethod
    def _validate_venue_fees(cls, value: Any) -> dict[str, float]:
        return _normalize_venue_fees(value)

    @field_validator(
        "trade_amount_by_asset", "balance_warning", "balance_critical", mode="before"
    )
    @classmethod
    def _validate_asset_amounts(cls, value: Any) -> dict[str, float]:
        if isinstance(value, str):
            value = json.loads(value) if value.strip() else {}
        if not isinstance(value, dict):
            return {}
        return {str(k).upper(): float(v) for k, v in value.items()}

    @field_validator("order_type", mode="before")
    @classmethod
    def _validate_order_type(cls, value: Any) -> str:
        return str(value or "limit").strip().lower()

    def fee_for(self, venue: str) -> float:
        """Return the per-trade fee fraction configured for *venue*."""

        fees = self.venue_fees or {}
        return float(fees.get(venue.lower(), self.default_fee))

    def capital_for(self, asset: str) -> float:
        """Return the trade size, in *asset* units, for cycles starting at it."""

        return float(self.trade_amount_by_asset.get(asset.upper(), self.trade_amount))


# Singleton settings instance populated on import.
settings = Settings()


def creds_for(
    ex_id: str, _settings: Settings | None = None
) -> tuple[str | None, str | None, str | None]:
    """Return ``(key, secret, password)`` for *ex_id*.

    Per-venue ``<VENUE>_API_KEY``/``<VENUE>_API_SECRET``/``<VENUE>_API_PASSWORD``
    environment variables win; the ``ARBENGINE_*`` pair is the fallback.
    """

    cfg = _settings or settings
    prefix = ex_id.strip().upper()
    key = os.environ.get(f"{prefix}_API_KEY") or cfg.arbengine_api_key
    secret = os.environ.get(f"{prefix}_API_SECRET") or cfg.arbengine_api_secret
    password = os.environ.get(f"{prefix}_API_PASSWORD")
    return key, secret, password


def validate_settings(cfg: Settings | None = None) -> Settings:
    """Return *cfg* after checking it is safe to start the scan loop.

    Raises
    ------
    ConfigError
        When a live venue lacks credentials or a numeric knob is out of range.
    """

    cfg = cfg or settings
    problems: list[str] = []
    if not cfg.exchanges:
        problems.append("no exchanges configured")
    if not cfg.dry_run:
        for venue in cfg.exchanges:
            key, secret, _ = creds_for(venue, cfg)
            if not key or not secret:
                problems.append(f"missing API credentials for {venue}")
    if cfg.max_path_length < 3:
        problems.append("max_path_length must be >= 3")
    if cfg.min_profit_pct < 0:
        problems.append("min_profit_pct must be >= 0")
    if cfg.liquidity_ratio <= 0:
        problems.append("liquidity_ratio must be > 0")
    if not 0.0 <= cfg.max_slippage_tolerance <= 1.0:
        problems.append("max_slippage_tolerance must be within [0, 1]")
    if cfg.scan_interval_secs <= 0:
        problems.append("scan_interval_secs must be > 0")
    if cfg.confirm_max_attempts < 1:
        problems.append("confirm_max_attempts must be >= 1")
    if cfg.confirm_poll_interval_secs < 0:
        problems.append("confirm_poll_interval_secs must be >= 0")
    if cfg.trade_amount <= 0:
        problems.append("trade_amount must be > 0")
    if cfg.order_type not in ("limit", "market"):
        problems.append(f"unsupported order_type {cfg.order_type!r}")
    if cfg.max_consecutive_errors < 0:
        problems.append("max_consecutive_errors must be >= 0")
    if problems:
        raise ConfigError("; ".join(problems))
    return cfg
