import pytest

from confluence_alert_bot.config import default_config, load_config
from confluence_alert_bot.timeframes import normalize_timeframe, provider_interval, timeframe_minutes


def test_timeframe_helpers():
    assert normalize_timeframe("m5") == "M5"
    assert normalize_timeframe("5m") == "M5"
    assert normalize_timeframe("1h") == "H1"
    assert normalize_timeframe("1d") == "D1"
    assert timeframe_minutes("H4") == 240
    assert provider_interval("M15") == "15min"
    assert provider_interval("H1") == "1h"
    with pytest.raises(ValueError):
        normalize_timeframe("M7")


def test_defaults(monkeypatch):
    monkeypatch.delenv("TWELVE_DATA_API_KEY", raising=False)
    cfg = default_config()
    assert cfg.scanner.timeframes == ["M1", "M5", "M15", "M30", "H1"]
    assert cfg.scanner.fetch_limit == 50
    assert cfg.scanner.admission_floor == 65
    assert cfg.scanner.signal_floor == 75
    assert cfg.scanner.scan_interval_s == 60
    assert cfg.provider.api_key == ""


def test_load_config_with_env_overrides(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text(
        "app:\n"
        "  log_level: DEBUG\n"
        "provider:\n"
        "  symbols: [XAU/USD, BTC/USD]\n"
        "scanner:\n"
        "  timeframes: [M5, H1]\n"
        "  signal_floor: 80\n"
        "telegram:\n"
        "  chat_ids: ['1']\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("TWELVE_DATA_API_KEY", "td-key")
    monkeypatch.setenv("TELEGRAM_TOKEN", "tg-token")
    monkeypatch.setenv("TELEGRAM_CHAT_IDS", "10, 20")

    cfg = load_config(str(path))

    assert cfg.app.log_level == "DEBUG"
    assert cfg.provider.symbols == ["XAU/USD", "BTC/USD"]
    assert cfg.provider.api_key == "td-key"
    assert cfg.scanner.timeframes == ["M5", "H1"]
    assert cfg.scanner.signal_floor == 80
    assert cfg.scanner.admission_floor == 65
    assert cfg.telegram.token == "tg-token"
    assert cfg.telegram.chat_ids == ["10", "20"]


def test_invalid_floor_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("scanner:\n  signal_floor: 120\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(str(path))


def test_timeframe_aliases_normalized_on_load(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("scanner:\n  timeframes: [m5, 1h, M15]\n", encoding="utf-8")
    cfg = load_config(str(path))
    assert cfg.scanner.timeframes == ["M5", "H1", "M15"]


def test_unknown_timeframe_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("scanner:\n  timeframes: [M5, M7]\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(str(path))
