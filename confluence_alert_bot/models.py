from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Optional, Tuple

BUY = "BUY"
SELL = "SELL"


class DataConsistencyError(ValueError):
    """Candle violates low <= open,close <= high."""


@dataclass(frozen=True)
class Candle:
    symbol: str
    timeframe: str
    open: float
    high: float
    low: float
    close: float
    timestamp_ms: int
    volume: Optional[float] = None

    def is_consistent(self) -> bool:
        return self.low <= min(self.open, self.close) and max(self.open, self.close) <= self.high


@dataclass(frozen=True)
class Detection:
    strategy: str
    probability: int
    confluences: Tuple[str, ...]
    entry: float
    stop_loss: float
    take_profit: float
    timeframe: str
    description: str
    symbol: Optional[str] = None
    bar_time_ms: Optional[int] = None  # latest candle of the detector window

    @property
    def direction(self) -> str:
        return BUY if self.take_profit > self.entry else SELL

    def to_dict(self) -> dict:
        d = asdict(self)
        d["confluences"] = list(self.confluences)
        d["direction"] = self.direction
        return d


@dataclass(frozen=True)
class Signal:
    signal_id: str
    symbol: str
    direction: str  # BUY or SELL
    entry_price: str
    stop_loss: str
    take_profit: str
    probability: int
    strategies: Tuple[str, ...]
    confluences: Tuple[str, ...]
    timeframe: str
    session: str  # LONDON | NY | ASIA
    created_at_ms: int
    description: str = ""
    sent_to_telegram: bool = False

    def to_dict(self) -> dict:
        d = asdict(self)
        d["strategies"] = list(self.strategies)
        d["confluences"] = list(self.confluences)
        return d
