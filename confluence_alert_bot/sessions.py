from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Tuple

LONDON = "LONDON"
NY = "NY"
ASIA = "ASIA"
SESSIONS = (LONDON, NY, ASIA)

# UTC hour windows, end exclusive. Asia wraps midnight.
LONDON_HOURS = (8, 17)
NY_HOURS = (13, 22)
ASIA_HOURS = (23, 8)


def _utc(ts_ms: int) -> datetime:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc)


def _in_window(hour: int, window: Tuple[int, int]) -> bool:
    s, e = window
    if s < e:
        return s <= hour < e
    return hour >= s or hour < e


def current_session(ts_ms: int) -> str:
    """London takes the London/NY overlap; the 22:00 hour falls through to Asia."""
    h = _utc(ts_ms).hour
    if _in_window(h, LONDON_HOURS):
        return LONDON
    if _in_window(h, NY_HOURS):
        return NY
    return ASIA


def session_status(ts_ms: int) -> Dict[str, object]:
    h = _utc(ts_ms).hour
    london = _in_window(h, LONDON_HOURS)
    ny = _in_window(h, NY_HOURS)
    asia = _in_window(h, ASIA_HOURS)
    return {
        "current": current_session(ts_ms),
        "london": {"active": london, "status": "ACTIVE" if london else "CLOSED"},
        "ny": {
            "active": ny,
            "status": "ACTIVE" if ny else ("OPENING" if h < NY_HOURS[0] else "CLOSED"),
        },
        "asia": {"active": asia, "status": "ACTIVE" if asia else "OPENING"},
        "high_volatility": is_high_volatility(ts_ms),
        "next_change": next_session_change(ts_ms),
    }


def is_high_volatility(ts_ms: int) -> bool:
    """London open or the London/NY overlap open."""
    h = _utc(ts_ms).hour
    return 8 <= h < 10 or 13 <= h < 15


def next_session_change(ts_ms: int) -> Dict[str, object]:
    dt = _utc(ts_ms)
    h = dt.hour
    if h < 8:
        nxt, hours = LONDON, 8 - h
    elif h < 13:
        nxt, hours = NY, 13 - h
    elif h < 23:
        nxt, hours = ASIA, 23 - h
    else:
        nxt, hours = LONDON, 24 - h + 8
    minutes = hours * 60 - dt.minute
    return {"session": nxt, "time_until_ms": minutes * 60 * 1000}


@dataclass
class SessionFilter:
    enabled: bool
    sessions: Optional[Iterable[str]] = None

    def allows(self, session: str) -> bool:
        if not self.enabled or not self.sessions:
            return True
        return session.upper() in {s.upper() for s in self.sessions}
