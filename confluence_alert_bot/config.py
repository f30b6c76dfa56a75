from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional
import os
import yaml

from .timeframes import DEFAULT_TIMEFRAMES, normalize_timeframe


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


def _env_list(env_key: str) -> Optional[List[str]]:
    raw = os.getenv(env_key)
    if not raw:
        return None
    return [x.strip() for x in raw.split(",") if x.strip()]


@dataclass
class AppConfig:
    name: str = "Confluence Sentinel"
    log_level: str = "INFO"


@dataclass
class ProviderConfig:
    type: str = "twelvedata"
    api_key: str = ""
    base_url: str = "https://api.twelvedata.com"
    symbols: List[str] = None
    history_candles: int = 100
    rest_timeout_s: int = 20
    rest_max_retries: int = 3
    rest_backoff_s: float = 1.0


@dataclass
class ScannerConfig:
    timeframes: List[str] = None
    fetch_limit: int = 50
    min_candles: int = 10
    admission_floor: int = 65
    signal_floor: int = 75
    scan_interval_s: int = 60
    max_history: int = 1000
    enabled_strategies: Optional[List[str]] = None  # None -> all detectors


@dataclass
class SessionsConfig:
    enabled: bool = False
    allowed: Optional[List[str]] = None  # LONDON | NY | ASIA


@dataclass
class TelegramConfig:
    enabled: bool = True
    token: str = ""
    chat_ids: List[str] = None
    disable_web_page_preview: bool = True


@dataclass
class BroadcastConfig:
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8765
    path: str = "/ws"
    publish_prices: bool = True


@dataclass
class AlertsConfig:
    parse_mode: str = "HTML"  # HTML | MarkdownV2
    footer: str = ""
    include_confluences: bool = True
    include_description: bool = True
    dedupe: bool = True


@dataclass
class Config:
    app: AppConfig
    provider: ProviderConfig
    scanner: ScannerConfig
    sessions: SessionsConfig
    telegram: TelegramConfig
    broadcast: BroadcastConfig
    alerts: AlertsConfig


def _finalize(cfg: Config) -> Config:
    # env overrides (useful on servers)
    cfg.provider.api_key = _env_override(cfg.provider.api_key, "TWELVE_DATA_API_KEY")
    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_BOT_TOKEN")
    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_TOKEN")

    if cfg.provider.symbols is None:
        cfg.provider.symbols = []
    if cfg.scanner.timeframes is None:
        cfg.scanner.timeframes = list(DEFAULT_TIMEFRAMES)
    # store keys are canonical labels; unknown ones fail here
    cfg.scanner.timeframes = [normalize_timeframe(t) for t in cfg.scanner.timeframes]
    if cfg.telegram.chat_ids is None:
        cfg.telegram.chat_ids = []

    # Allow TELEGRAM_CHAT_IDS="id1,id2"
    chat_env = _env_list("TELEGRAM_CHAT_IDS")
    if chat_env:
        cfg.telegram.chat_ids = chat_env

    if not 0 <= int(cfg.scanner.admission_floor) <= 100:
        raise ValueError(f"scanner.admission_floor out of range: {cfg.scanner.admission_floor}")
    if not 0 <= int(cfg.scanner.signal_floor) <= 100:
        raise ValueError(f"scanner.signal_floor out of range: {cfg.scanner.signal_floor}")
    if int(cfg.scanner.fetch_limit) < int(cfg.scanner.min_candles):
        raise ValueError("scanner.fetch_limit must be >= scanner.min_candles")
    return cfg


def default_config() -> Config:
    return _finalize(Config(
        app=AppConfig(),
        provider=ProviderConfig(),
        scanner=ScannerConfig(),
        sessions=SessionsConfig(),
        telegram=TelegramConfig(),
        broadcast=BroadcastConfig(),
        alerts=AlertsConfig(),
    ))


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    cfg = Config(
        app=AppConfig(**raw.get("app", {})),
        provider=ProviderConfig(**raw.get("provider", {})),
        scanner=ScannerConfig(**raw.get("scanner", {})),
        sessions=SessionsConfig(**raw.get("sessions", {})),
        telegram=TelegramConfig(**raw.get("telegram", {})),
        broadcast=BroadcastConfig(**raw.get("broadcast", {})),
        alerts=AlertsConfig(**raw.get("alerts", {})),
    )
    return _finalize(cfg)
