from __future__ import annotations

import dataclasses
import hashlib
import logging
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Sequence, Tuple

from .models import Detection, Signal
from .detectors import DETECTORS, DetectorFn
from .store import CandleStore
from .timeframes import DEFAULT_TIMEFRAMES, normalize_timeframe

log = logging.getLogger("scanner")

FETCH_LIMIT = 50
MIN_CANDLES = 10
ADMISSION_FLOOR = 65

_PRICE_QUANT = Decimal("0.00001")  # decimal(10, 5) storage


def price_str(x: float) -> str:
    return str(Decimal(repr(float(x))).quantize(_PRICE_QUANT, rounding=ROUND_HALF_UP))


def signal_id(symbol: str, d: Detection) -> str:
    base = f"{symbol}:{d.timeframe}:{d.strategy}:{d.direction}:{d.bar_time_ms}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


class MarketScanner:
    """Runs every registered detector over each timeframe of a symbol.

    Holds no state between calls: every pass reads fresh candles from the store.
    """

    def __init__(
        self,
        store: CandleStore,
        *,
        timeframes: Optional[Sequence[str]] = None,
        fetch_limit: int = FETCH_LIMIT,
        min_candles: int = MIN_CANDLES,
        admission_floor: int = ADMISSION_FLOOR,
        detectors: Sequence[Tuple[str, DetectorFn]] = DETECTORS,
        enabled_strategies: Optional[Iterable[str]] = None,
    ):
        self.store = store
        self.timeframes = [normalize_timeframe(t) for t in (timeframes or DEFAULT_TIMEFRAMES)]
        self.fetch_limit = int(fetch_limit)
        self.min_candles = int(min_candles)
        self.admission_floor = int(admission_floor)
        if enabled_strategies is not None:
            wanted = set(enabled_strategies)
            detectors = [(name, fn) for name, fn in detectors if name in wanted]
        self.detectors = list(detectors)

    def analyze_market(self, symbol: str, timeframes: Optional[Sequence[str]] = None) -> List[Detection]:
        detections: List[Detection] = []
        tfs = [normalize_timeframe(t) for t in timeframes] if timeframes else self.timeframes
        for tf in tfs:
            try:
                candles = list(self.store.get_recent_candles(symbol, tf, self.fetch_limit))
            except Exception:
                log.exception("candles_fetch_failed symbol=%s tf=%s", symbol, tf)
                continue
            if len(candles) < self.min_candles:
                log.debug("scan_skip symbol=%s tf=%s candles=%d", symbol, tf, len(candles))
                continue
            candles.sort(key=lambda c: c.timestamp_ms)

            for name, fn in self.detectors:
                try:
                    d = fn(candles, tf)
                except Exception:
                    log.exception("detector_failed symbol=%s tf=%s detector=%s", symbol, tf, name)
                    continue
                if d is None:
                    continue
                detections.append(dataclasses.replace(d, symbol=symbol))

        admitted = [d for d in detections if d.probability >= self.admission_floor]
        if admitted:
            log.info(
                "scan_done symbol=%s detections=%d admitted=%d",
                symbol,
                len(detections),
                len(admitted),
            )
        return admitted

    def generate_signal(self, detection: Detection, symbol: str, session: str, *, now_ms: Optional[int] = None) -> Signal:
        return generate_signal(detection, symbol, session, now_ms=now_ms)


def generate_signal(detection: Detection, symbol: str, session: str, *, now_ms: Optional[int] = None) -> Signal:
    """Pure Detection -> Signal transform. Delivery state starts unsent."""
    created = int(time.time() * 1000) if now_ms is None else int(now_ms)
    return Signal(
        signal_id=signal_id(symbol, detection),
        symbol=symbol,
        direction=detection.direction,
        entry_price=price_str(detection.entry),
        stop_loss=price_str(detection.stop_loss),
        take_profit=price_str(detection.take_profit),
        probability=int(detection.probability),
        strategies=(detection.strategy,),
        confluences=tuple(detection.confluences),
        timeframe=detection.timeframe,
        session=session,
        created_at_ms=created,
        description=detection.description,
        sent_to_telegram=False,
    )
