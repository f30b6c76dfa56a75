from __future__ import annotations

from confluence_alert_bot.indicators import compute_atr
from confluence_alert_bot.models import Candle
from confluence_alert_bot.scanner import MarketScanner, generate_signal
from confluence_alert_bot.store import MemoryCandleStore


def candle(idx: int, open_p: float, high: float, low: float, close: float, tf: str = "M5") -> Candle:
    return Candle(
        symbol="XAU/USD",
        timeframe=tf,
        open=open_p,
        high=high,
        low=low,
        close=close,
        timestamp_ms=idx * 300_000,
    )


def sweep_sequence():
    """Quiet range, a wick through the high, then a close under the sweep bar."""
    out = [candle(i, 100, 100, 100, 100) for i in range(18)]
    out.append(candle(18, 100, 108, 99, 99.5))
    out.append(candle(19, 99.5, 99.6, 95, 96))
    return out


def gap_sequence():
    """Gap up of 3.1 on an ATR of 10, then price drifts back into the void."""
    out = [candle(0, 100, 100, 100, 100, "H1"), candle(1, 103.1, 110, 103.1, 108, "H1"), candle(2, 108, 108, 104, 104, "H1")]
    out += [candle(i, 104, 104, 104, 104, "H1") for i in range(3, 9)]
    out.append(candle(9, 104, 104, 101, 101, "H1"))
    return out


def main():
    store = MemoryCandleStore()
    store.extend(sweep_sequence())
    store.extend(gap_sequence())
    print("ATR(sweep window) =", compute_atr(sweep_sequence()))

    scanner = MarketScanner(store)
    detections = scanner.analyze_market("XAU/USD")
    for d in detections:
        print(f"{d.timeframe:>4} {d.strategy:<20} p={d.probability} {d.direction} entry={d.entry} sl={d.stop_loss:.5f} tp={d.take_profit:.5f}")

    again = scanner.analyze_market("XAU/USD")
    print("idempotent:", again == detections)

    for d in detections:
        if d.probability >= 75:
            sig = generate_signal(d, "XAU/USD", "LONDON", now_ms=0)
            print("signal", sig.direction, sig.entry_price, sig.stop_loss, sig.take_profit, sig.strategies)


if __name__ == "__main__":
    main()
