import pytest

from confluence_alert_bot.detectors import (
    DETECTORS,
    detect_imbalance_snapback,
    detect_liquidity_sweep,
    detect_order_block,
    detect_structure_break,
)
from confluence_alert_bot.indicators import compute_atr
from confluence_alert_bot.models import BUY, SELL, Candle


def _c(idx: int, o: float, h: float, l: float, c: float) -> Candle:
    return Candle(
        symbol="XAUUSD",
        timeframe="M5",
        open=o,
        high=h,
        low=l,
        close=c,
        timestamp_ms=idx * 300_000,
    )


def _flat(n: int, price: float = 100.0, start: int = 0):
    return [_c(start + i, price, price, price, price) for i in range(n)]


def sweep_window():
    return _flat(18) + [
        _c(18, 100, 108, 99, 99.5),
        _c(19, 99.5, 99.6, 95, 96),
    ]


# --- short windows -----------------------------------------------------------

@pytest.mark.parametrize("name,fn", DETECTORS)
def test_short_windows_never_detect(name, fn):
    for n in range(0, 10):
        assert fn(sweep_window()[:n], "M5") is None


def test_minimum_lengths():
    assert detect_liquidity_sweep(sweep_window()[1:], "M5") is None  # 19 candles
    assert detect_order_block(_flat(14), "M5") is None


# --- liquidity sweep ---------------------------------------------------------

def test_liquidity_sweep_high_sweep_scenario():
    window = sweep_window()
    d = detect_liquidity_sweep(window, "M5")
    assert d is not None
    atr = compute_atr(window)
    assert atr == pytest.approx((9 + 4.6) / 14)
    assert d.probability == 87
    assert d.entry == 96
    assert d.stop_loss == pytest.approx(96 + 0.5 * atr)
    assert d.take_profit == pytest.approx(96 - 2 * atr)
    assert d.stop_loss > d.entry
    assert d.direction == SELL
    assert d.timeframe == "M5"
    assert d.description.startswith("Bearish")
    assert d.bar_time_ms == window[-1].timestamp_ms


def test_liquidity_sweep_low_sweep_is_bullish():
    window = _flat(18) + [
        _c(18, 100, 101, 92, 100.5),
        _c(19, 100.5, 104, 100.4, 103),
    ]
    d = detect_liquidity_sweep(window, "M15")
    assert d is not None
    atr = compute_atr(window)
    assert d.direction == BUY
    assert d.stop_loss == pytest.approx(103 - 0.5 * atr)
    assert d.take_profit == pytest.approx(103 + 2 * atr)


def test_liquidity_sweep_first_match_wins():
    window = _flat(16) + [
        _c(16, 100, 100.5, 95, 100),      # low sweep, confirmed by next close
        _c(17, 100, 102, 99.8, 101.5),
        _c(18, 101.5, 106, 101, 101.2),   # high sweep, confirmed by next close
        _c(19, 101.2, 101.3, 99, 99.5),
    ]
    d = detect_liquidity_sweep(window, "M5")
    assert d is not None
    assert d.direction == BUY
    assert d.entry == 99.5


def test_liquidity_sweep_needs_reversal_close():
    window = _flat(18) + [
        _c(18, 100, 108, 99, 107),
        _c(19, 107, 108, 106, 107.5),
    ]
    assert detect_liquidity_sweep(window, "M5") is None


# --- order block -------------------------------------------------------------

def test_order_block_bullish_pullback():
    window = _flat(7) + [
        _c(7, 100, 110, 99.5, 109.5),   # institutional bullish candle
        _c(8, 109.5, 112, 108, 111),    # low back inside [open, high]
    ] + _flat(6, 111, start=9)
    d = detect_order_block(window, "M30")
    assert d is not None
    atr = compute_atr(window)
    assert atr == pytest.approx(14.5 / 14)
    assert d.probability == 72
    assert d.direction == BUY
    assert d.entry == 111
    assert d.stop_loss == pytest.approx(111 - 0.8 * atr)
    assert d.take_profit == pytest.approx(111 + 2.5 * atr)


def test_order_block_bearish_pullback():
    window = _flat(7) + [
        _c(7, 100, 100.5, 90, 90.5),
        _c(8, 90.5, 92, 88, 89),
    ] + _flat(6, 89, start=9)
    d = detect_order_block(window, "M30")
    assert d is not None
    atr = compute_atr(window)
    assert d.direction == SELL
    assert d.stop_loss == pytest.approx(89 + 0.8 * atr)
    assert d.take_profit == pytest.approx(89 - 2.5 * atr)


def test_order_block_ignores_candidates_outside_scan_range():
    # institutional candle at len-3 is too recent to count
    window = _flat(12) + [
        _c(12, 100, 110, 99.5, 109.5),
        _c(13, 109.5, 112, 108, 111),
        _c(14, 111, 111, 111, 111),
    ]
    assert detect_order_block(window, "M30") is None


def test_order_block_flat_window_no_detection():
    assert detect_order_block(_flat(15), "M30") is None


# --- imbalance snapback ------------------------------------------------------

def gap_window(gap_open: float, last_close: float):
    # one pair of ATR = 10 up to the gap candle; no other body gaps
    return [
        _c(0, 100, 100, 100, 100),
        _c(1, gap_open, 110, gap_open, 108),
        _c(2, 108, 108, 104, 104),
    ] + _flat(6, 104, start=3) + [
        _c(9, 104, 104, min(104, last_close), last_close),
    ]


def test_snapback_gap_of_exactly_threshold_does_not_trigger():
    assert detect_imbalance_snapback(gap_window(103, 101), "H1") is None


def test_snapback_gap_above_threshold_triggers_bullish():
    window = gap_window(103.1, 101)  # gap 3.1 = 0.31 x ATR(10)
    d = detect_imbalance_snapback(window, "H1")
    assert d is not None
    atr = compute_atr(window)
    assert d.probability == 94
    assert d.direction == BUY
    assert d.entry == 101
    assert d.stop_loss == pytest.approx(100 - 0.3 * atr)
    assert d.take_profit == pytest.approx(103.1 + 1.5 * atr)


def test_snapback_bearish_bias_above_midpoint():
    window = gap_window(103.1, 103)
    d = detect_imbalance_snapback(window, "H1")
    assert d is not None
    atr = compute_atr(window)
    assert d.direction == SELL
    assert d.stop_loss == pytest.approx(103.1 + 0.3 * atr)
    assert d.take_profit == pytest.approx(100 - 1.5 * atr)


def test_snapback_requires_price_back_near_void():
    assert detect_imbalance_snapback(gap_window(103.1, 90), "H1") is None


def test_snapback_bearish_gap():
    window = [
        _c(0, 100, 100, 100, 100),
        _c(1, 96, 96, 90, 92),      # gap down of 4, tr = 10
        _c(2, 92, 97, 92, 97),
    ] + _flat(7, 97, start=3)
    d = detect_imbalance_snapback(window, "H1")
    assert d is not None
    # zone [96, 100], price 97 below midpoint 98
    assert d.direction == BUY
    assert d.stop_loss == pytest.approx(96 - 0.3 * compute_atr(window))


# --- structure break ---------------------------------------------------------

def _range_bars(n: int = 9):
    return [_c(i, 100, 101, 99, 100) for i in range(n)]


def test_structure_break_bullish_on_global_high():
    window = _range_bars() + [_c(9, 100, 103, 99.5, 102.5)]
    d = detect_structure_break(window, "H1")
    assert d is not None
    atr = compute_atr(window)
    assert d.probability == 78
    assert d.direction == BUY
    assert d.take_profit == pytest.approx(102.5 + 2 * atr)
    assert d.stop_loss == pytest.approx(101 - 0.5 * atr)


def test_structure_break_bearish():
    window = _range_bars() + [_c(9, 100, 100.5, 97, 97.5)]
    d = detect_structure_break(window, "H1")
    assert d is not None
    atr = compute_atr(window)
    assert d.direction == SELL
    assert d.stop_loss == pytest.approx(99 + 0.5 * atr)
    assert d.take_profit == pytest.approx(97.5 - 2 * atr)


def test_structure_break_bullish_wins_when_both_sides_break():
    # documented tie-break: the high check runs first
    window = _range_bars() + [_c(9, 100, 103, 97, 100)]
    d = detect_structure_break(window, "H1")
    assert d is not None
    assert d.description.startswith("Bullish")


def test_structure_break_ignores_last_two_bars_for_reference():
    window = _range_bars(8) + [_c(8, 100, 105, 99, 100), _c(9, 100, 103, 99.5, 102)]
    d = detect_structure_break(window, "H1")
    assert d is not None
    assert d.description.startswith("Bullish")


def test_structure_break_inside_range():
    window = _range_bars() + [_c(9, 100, 100.8, 99.2, 100.5)]
    assert detect_structure_break(window, "H1") is None
