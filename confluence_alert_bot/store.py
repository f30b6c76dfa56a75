from __future__ import annotations

import dataclasses
import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Protocol, Sequence, Tuple

from .models import Candle, DataConsistencyError, Signal

log = logging.getLogger("store")


class CandleStore(Protocol):
    def get_recent_candles(self, symbol: str, timeframe: str, limit: int) -> Sequence[Candle]:
        ...


class SignalSink(Protocol):
    def accept(self, signal: Signal) -> None:
        ...


class MemoryCandleStore:
    """Rolling per (symbol, timeframe) candle history.

    Candles are validated on the way in so detectors can assume sane OHLC.
    """

    def __init__(self, max_history: int = 1000) -> None:
        self.max_history = max(1, int(max_history))
        self._series: Dict[Tuple[str, str], Deque[Candle]] = {}

    def add(self, c: Candle) -> bool:
        """Store a candle. Returns False when it is older than the last one held."""
        if not c.is_consistent():
            raise DataConsistencyError(
                f"inconsistent candle {c.symbol} {c.timeframe} ts={c.timestamp_ms} "
                f"o={c.open} h={c.high} l={c.low} c={c.close}"
            )
        series = self._series.setdefault((c.symbol, c.timeframe), deque())
        if series:
            last_ts = series[-1].timestamp_ms
            if c.timestamp_ms < last_ts:
                return False
            if c.timestamp_ms == last_ts:
                # live bar update
                series[-1] = c
                return True
        series.append(c)
        while len(series) > self.max_history:
            series.popleft()
        return True

    def extend(self, candles: Sequence[Candle]) -> int:
        added = 0
        for c in sorted(candles, key=lambda x: x.timestamp_ms):
            try:
                if self.add(c):
                    added += 1
            except DataConsistencyError as e:
                log.warning("candle_rejected err=%s", e)
        return added

    def get_recent_candles(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        """Newest `limit` candles, newest first."""
        series = self._series.get((symbol, timeframe))
        if not series or limit <= 0:
            return []
        out = list(series)[-int(limit):]
        out.reverse()
        return out

    def latest(self, symbol: str, timeframe: str) -> Optional[Candle]:
        series = self._series.get((symbol, timeframe))
        return series[-1] if series else None


class MemorySignalStore:
    """In-memory SignalSink keeping the most recent signals."""

    def __init__(self, max_history: int = 500) -> None:
        self.max_history = max(1, int(max_history))
        self._signals: Deque[Signal] = deque()

    def accept(self, signal: Signal) -> None:
        self._signals.append(signal)
        while len(self._signals) > self.max_history:
            self._signals.popleft()

    def recent(self, limit: int = 10) -> List[Signal]:
        return list(reversed(self._signals))[: max(0, int(limit))]

    def mark_sent(self, signal_id: str) -> Optional[Signal]:
        for i, s in enumerate(self._signals):
            if s.signal_id == signal_id:
                updated = dataclasses.replace(s, sent_to_telegram=True)
                self._signals[i] = updated
                return updated
        return None

    def __len__(self) -> int:
        return len(self._signals)
