from __future__ import annotations
from typing import List, Sequence

from .models import Candle


def true_range(high: float, low: float, prev_close: float) -> float:
    return max(high - low, abs(high - prev_close), abs(low - prev_close))


def compute_atr(candles: Sequence[Candle], period: int = 14) -> float:
    """Simple-mean ATR over the trailing `period` adjacent pairs.

    Uses fewer pairs when the series is shorter. Returns 0.0 with fewer than
    two candles; callers read 0 as "cannot size stops".

    The window is anchored at the newest bar, not the oldest. The two agree for
    series of up to period + 1 candles; on the 20-bar sweep window this reads
    the volatility around the sweep rather than the quiet bars before it.
    """
    if period <= 0 or len(candles) < 2:
        return 0.0
    start = max(1, len(candles) - period)
    trs: List[float] = []
    for i in range(start, len(candles)):
        cur = candles[i]
        trs.append(true_range(cur.high, cur.low, candles[i - 1].close))
    return sum(trs) / len(trs)
