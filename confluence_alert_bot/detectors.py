from __future__ import annotations

from typing import Callable, Optional, Sequence, Tuple

from .models import Candle, Detection
from .indicators import compute_atr

DetectorFn = Callable[[Sequence[Candle], str], Optional[Detection]]

LIQUIDITY_SWEEP = "ICT Liquidity Sweep"
ORDER_BLOCK = "SMC Order Block"
IMBALANCE_SNAPBACK = "Fusion LVS Setup"
STRUCTURE_BREAK = "BOS Detection"

# Fixed per-strategy confidence, kept exactly as tuned.
SWEEP_PROBABILITY = 87
ORDER_BLOCK_PROBABILITY = 72
SNAPBACK_PROBABILITY = 94
BOS_PROBABILITY = 78

SWEEP_WINDOW = 20
SWEEP_LOOKBACK = 5
SWEEP_STOP_ATR = 0.5
SWEEP_TARGET_ATR = 2.0

ORDER_BLOCK_WINDOW = 15
ORDER_BLOCK_BODY_RATIO = 0.7
ORDER_BLOCK_STOP_ATR = 0.8
ORDER_BLOCK_TARGET_ATR = 2.5

SNAPBACK_WINDOW = 10
SNAPBACK_GAP_ATR = 0.3
SNAPBACK_NEAR_LOW = 0.99
SNAPBACK_NEAR_HIGH = 1.01
SNAPBACK_STOP_ATR = 0.3
SNAPBACK_TARGET_ATR = 1.5

BOS_WINDOW = 10
BOS_STOP_ATR = 0.5
BOS_TARGET_ATR = 2.0


def _tail(candles: Sequence[Candle], n: int) -> Optional[Sequence[Candle]]:
    if len(candles) < n:
        return None
    return candles[-n:]


def detect_liquidity_sweep(candles: Sequence[Candle], timeframe: str) -> Optional[Detection]:
    """Wick through the window extreme followed by a close beyond the sweep candle."""
    recent = _tail(candles, SWEEP_WINDOW)
    if recent is None:
        return None

    sweep: Optional[str] = None
    n = len(recent)
    for i in range(n - SWEEP_LOOKBACK, n - 1):
        cur = recent[i]
        nxt = recent[i + 1]

        max_high = max(c.high for c in recent[:i])
        if cur.high > max_high and nxt.close < cur.low:
            sweep = "high"
            break

        min_low = min(c.low for c in recent[:i])
        if cur.low < min_low and nxt.close > cur.high:
            sweep = "low"
            break

    if sweep is None:
        return None

    atr = compute_atr(recent)
    if atr <= 0:
        return None

    latest = recent[-1]
    entry = latest.close
    if sweep == "high":
        stop = entry + atr * SWEEP_STOP_ATR
        target = entry - atr * SWEEP_TARGET_ATR
        bias = "Bearish"
    else:
        stop = entry - atr * SWEEP_STOP_ATR
        target = entry + atr * SWEEP_TARGET_ATR
        bias = "Bullish"

    return Detection(
        strategy=LIQUIDITY_SWEEP,
        probability=SWEEP_PROBABILITY,
        confluences=("Liquidity Sweep", "BOS Confirmed", "High Volume"),
        entry=entry,
        stop_loss=stop,
        take_profit=target,
        timeframe=timeframe,
        description=f"{bias} liquidity sweep detected with BOS confirmation",
        bar_time_ms=latest.timestamp_ms,
    )


def _is_institutional(c: Candle) -> bool:
    rng = c.high - c.low
    if rng <= 0:
        return False
    return abs(c.close - c.open) / rng > ORDER_BLOCK_BODY_RATIO


def detect_order_block(candles: Sequence[Candle], timeframe: str) -> Optional[Detection]:
    """Strong-bodied candle that later price pulls back into."""
    recent = _tail(candles, ORDER_BLOCK_WINDOW)
    if recent is None:
        return None

    block: Optional[str] = None
    n = len(recent)
    for i in range(n - 8, n - 3):
        cur = recent[i]
        if not _is_institutional(cur):
            continue
        after = recent[i + 1:]
        if cur.close > cur.open:
            if any(cur.open <= c.low <= cur.high for c in after):
                block = "bullish"
                break
        elif cur.close < cur.open:
            if any(cur.low <= c.high <= cur.open for c in after):
                block = "bearish"
                break

    if block is None:
        return None

    atr = compute_atr(recent)
    if atr <= 0:
        return None

    latest = recent[-1]
    entry = latest.close
    if block == "bullish":
        stop = entry - atr * ORDER_BLOCK_STOP_ATR
        target = entry + atr * ORDER_BLOCK_TARGET_ATR
    else:
        stop = entry + atr * ORDER_BLOCK_STOP_ATR
        target = entry - atr * ORDER_BLOCK_TARGET_ATR

    return Detection(
        strategy=ORDER_BLOCK,
        probability=ORDER_BLOCK_PROBABILITY,
        confluences=("Order Block Respected", "Institutional Candle", "Pullback Entry"),
        entry=entry,
        stop_loss=stop,
        take_profit=target,
        timeframe=timeframe,
        description=f"{block.capitalize()} order block entry opportunity",
        bar_time_ms=latest.timestamp_ms,
    )


def detect_imbalance_snapback(candles: Sequence[Candle], timeframe: str) -> Optional[Detection]:
    """Price returning into the first body-to-body gap of the window."""
    recent = _tail(candles, SNAPBACK_WINDOW)
    if recent is None:
        return None

    gap: Optional[Tuple[float, float]] = None  # (bottom, top)
    for i in range(1, len(recent) - 1):
        prev_close = recent[i - 1].close
        cur_open = recent[i].open
        if cur_open == prev_close:
            continue
        # strict: a gap of exactly the threshold does not count
        threshold = compute_atr(recent[: i + 1]) * SNAPBACK_GAP_ATR
        if cur_open > prev_close and cur_open - prev_close > threshold:
            gap = (prev_close, cur_open)
            break
        if cur_open < prev_close and prev_close - cur_open > threshold:
            gap = (cur_open, prev_close)
            break

    if gap is None:
        return None

    gap_bottom, gap_top = gap
    latest = recent[-1]
    price = latest.close
    if not (gap_bottom * SNAPBACK_NEAR_LOW <= price <= gap_top * SNAPBACK_NEAR_HIGH):
        return None

    atr = compute_atr(recent)
    if atr <= 0:
        return None

    bullish = price < (gap_top + gap_bottom) / 2
    if bullish:
        stop = gap_bottom - atr * SNAPBACK_STOP_ATR
        target = gap_top + atr * SNAPBACK_TARGET_ATR
    else:
        stop = gap_top + atr * SNAPBACK_STOP_ATR
        target = gap_bottom - atr * SNAPBACK_TARGET_ATR

    return Detection(
        strategy=IMBALANCE_SNAPBACK,
        probability=SNAPBACK_PROBABILITY,
        confluences=("Liquidity Void Gap", "Imbalance Zone", "Snapback Potential", "FVG Entry"),
        entry=price,
        stop_loss=stop,
        take_profit=target,
        timeframe=timeframe,
        description=f"Liquidity void snapback setup with {'bullish' if bullish else 'bearish'} bias",
        bar_time_ms=latest.timestamp_ms,
    )


def detect_structure_break(candles: Sequence[Candle], timeframe: str) -> Optional[Detection]:
    recent = _tail(candles, BOS_WINDOW)
    if recent is None:
        return None

    ref = recent[:-2]
    recent_high = max(c.high for c in ref)
    recent_low = min(c.low for c in ref)
    latest = recent[-1]

    # Bullish is evaluated first; it wins if both sides break on one bar.
    if latest.high > recent_high:
        bullish = True
    elif latest.low < recent_low:
        bullish = False
    else:
        return None

    atr = compute_atr(recent)
    if atr <= 0:
        return None

    entry = latest.close
    if bullish:
        stop = recent_high - atr * BOS_STOP_ATR
        target = entry + atr * BOS_TARGET_ATR
    else:
        stop = recent_low + atr * BOS_STOP_ATR
        target = entry - atr * BOS_TARGET_ATR

    return Detection(
        strategy=STRUCTURE_BREAK,
        probability=BOS_PROBABILITY,
        confluences=("Break of Structure", "New High/Low", "Momentum Shift"),
        entry=entry,
        stop_loss=stop,
        take_profit=target,
        timeframe=timeframe,
        description=f"{'Bullish' if bullish else 'Bearish'} break of structure confirmed",
        bar_time_ms=latest.timestamp_ms,
    )


# Scan order is part of the output order.
DETECTORS: Tuple[Tuple[str, DetectorFn], ...] = (
    (LIQUIDITY_SWEEP, detect_liquidity_sweep),
    (ORDER_BLOCK, detect_order_block),
    (IMBALANCE_SNAPBACK, detect_imbalance_snapback),
    (STRUCTURE_BREAK, detect_structure_break),
)
