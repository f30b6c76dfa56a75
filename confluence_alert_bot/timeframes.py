from __future__ import annotations

from typing import Dict, List

DEFAULT_TIMEFRAMES: List[str] = ["M1", "M5", "M15", "M30", "H1"]

_MINUTES: Dict[str, int] = {
    "M1": 1,
    "M5": 5,
    "M15": 15,
    "M30": 30,
    "H1": 60,
    "H4": 240,
    "D1": 1440,
}

_PROVIDER_INTERVALS: Dict[str, str] = {
    "M1": "1min",
    "M5": "5min",
    "M15": "15min",
    "M30": "30min",
    "H1": "1h",
    "H4": "4h",
    "D1": "1day",
}


def normalize_timeframe(tf: str) -> str:
    """Canonical label: 'm5' / '5m' -> 'M5', '1h' -> 'H1', '1d' -> 'D1'."""
    s = (tf or "").strip().upper()
    if s in _MINUTES:
        return s
    if len(s) >= 2 and s[:-1].isdigit() and s[-1] in ("M", "H", "D"):
        cand = s[-1] + s[:-1]
        if cand in _MINUTES:
            return cand
    raise ValueError(f"Unsupported timeframe: {tf}")


def timeframe_minutes(tf: str) -> int:
    return _MINUTES[normalize_timeframe(tf)]


def provider_interval(tf: str) -> str:
    """Twelve Data interval name for a canonical timeframe."""
    return _PROVIDER_INTERVALS[normalize_timeframe(tf)]
