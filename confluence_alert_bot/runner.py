from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Callable, Deque, List, Optional, Set

from .config import Config
from .models import Signal
from .scanner import MarketScanner
from .sessions import SessionFilter, current_session, session_status
from .timeframes import timeframe_minutes
from .store import MemoryCandleStore, MemorySignalStore, SignalSink
from .formatters import format_signal
from .broadcast import Broadcaster
from .notifier.telegram import TelegramNotifier
from .providers.twelvedata import TwelveDataProvider

log = logging.getLogger("runner")

_DEDUPE_CAP = 5000
_STALE_BARS = 3


def _telegram_parse_mode(mode: str) -> str:
    return "MarkdownV2" if (mode or "").upper() == "MARKDOWNV2" else "HTML"


class ScanRunner:
    """Periodic scan loop: refresh candles, detect, emit signals, notify, broadcast."""

    def __init__(
        self,
        cfg: Config,
        *,
        provider=None,
        store: Optional[MemoryCandleStore] = None,
        sink: Optional[SignalSink] = None,
        notifier: Optional[TelegramNotifier] = None,
        broadcaster: Optional[Broadcaster] = None,
        clock_ms: Optional[Callable[[], int]] = None,
    ):
        self.cfg = cfg
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))
        self.provider = provider if provider is not None else TwelveDataProvider(
            cfg.provider.api_key,
            base_url=cfg.provider.base_url,
            rest_timeout_s=cfg.provider.rest_timeout_s,
            rest_max_retries=cfg.provider.rest_max_retries,
            rest_backoff_s=cfg.provider.rest_backoff_s,
        )
        self.store = store if store is not None else MemoryCandleStore(cfg.scanner.max_history)
        self.sink = sink if sink is not None else MemorySignalStore()
        self.scanner = MarketScanner(
            self.store,
            timeframes=cfg.scanner.timeframes,
            fetch_limit=cfg.scanner.fetch_limit,
            min_candles=cfg.scanner.min_candles,
            admission_floor=cfg.scanner.admission_floor,
            enabled_strategies=cfg.scanner.enabled_strategies,
        )
        self.tg = notifier if notifier is not None else TelegramNotifier(
            token=cfg.telegram.token if cfg.telegram.enabled else "",
            chat_ids=cfg.telegram.chat_ids,
            disable_web_page_preview=cfg.telegram.disable_web_page_preview,
        )
        self.broadcaster = broadcaster if broadcaster is not None else Broadcaster(
            enabled=cfg.broadcast.enabled,
            host=cfg.broadcast.host,
            port=cfg.broadcast.port,
            path=cfg.broadcast.path,
            clock_ms=self._clock_ms,
        )
        self.session_filter = SessionFilter(enabled=cfg.sessions.enabled, sessions=cfg.sessions.allowed)

        self._dedupe: Set[str] = set()
        self._dedupe_order: Deque[str] = deque()
        self._metrics = {
            "signals_emitted_total": 0,
            "signals_deduped_total": 0,
            "symbol_failures_total": 0,
        }

    @property
    def symbols(self) -> List[str]:
        return [s.strip().upper() for s in (self.cfg.provider.symbols or []) if s.strip()]

    async def refresh(self, symbol: str) -> int:
        """Pull history for every scanned timeframe into the store."""
        n = int(self.cfg.provider.history_candles)
        added = 0
        for tf in self.scanner.timeframes:
            try:
                candles = await self.provider.fetch_candles(symbol, tf, n)
            except Exception as e:
                log.warning("refresh_failed symbol=%s tf=%s err=%s", symbol, tf, e)
                continue
            added += self.store.extend(candles)
        log.debug("refresh_done symbol=%s added=%d", symbol, added)
        return added

    def stale_timeframes(self, symbol: str, now_ms: int) -> List[str]:
        """Timeframes whose newest stored bar is more than a few bars behind `now_ms`."""
        out: List[str] = []
        for tf in self.scanner.timeframes:
            last = self.store.latest(symbol, tf)
            if last is None:
                continue
            if now_ms - last.timestamp_ms > _STALE_BARS * timeframe_minutes(tf) * 60_000:
                out.append(tf)
        return out

    async def _publish_price(self, symbol: str, now_ms: int) -> None:
        if not (self.broadcaster.enabled and self.cfg.broadcast.publish_prices):
            return
        try:
            price = await self.provider.fetch_price(symbol)
        except Exception as e:
            log.warning("price_fetch_failed symbol=%s err=%s", symbol, e)
            return
        if price is None:
            return
        await self.broadcaster.publish("price_update", {"symbol": symbol, "price": price, "timestamp_ms": now_ms})

    def _admit(self, sig: Signal) -> bool:
        if not self.cfg.alerts.dedupe:
            return True
        if sig.signal_id in self._dedupe:
            self._metrics["signals_deduped_total"] += 1
            log.debug("signal_dedupe symbol=%s tf=%s strategy=%s", sig.symbol, sig.timeframe, sig.strategies[0])
            return False
        self._dedupe.add(sig.signal_id)
        self._dedupe_order.append(sig.signal_id)
        # cap to avoid unbounded growth
        while len(self._dedupe_order) > _DEDUPE_CAP:
            self._dedupe.discard(self._dedupe_order.popleft())
        return True

    async def _notify(self, sig: Signal) -> None:
        if not self.tg.enabled():
            return
        text = format_signal(sig, self.cfg.alerts)
        delivered = await self.tg.send(text, parse_mode=_telegram_parse_mode(self.cfg.alerts.parse_mode))
        if delivered:
            mark_sent = getattr(self.sink, "mark_sent", None)
            if mark_sent is not None:
                mark_sent(sig.signal_id)
        else:
            log.warning("telegram_delivery_incomplete signal_id=%s", sig.signal_id)

    async def scan_symbol(self, symbol: str, now_ms: int) -> List[Signal]:
        await self.refresh(symbol)
        stale = self.stale_timeframes(symbol, now_ms)
        if stale:
            log.warning("stale_candles symbol=%s tfs=%s", symbol, stale)
        await self._publish_price(symbol, now_ms)

        detections = self.scanner.analyze_market(symbol)
        session = current_session(now_ms)
        floor = int(self.cfg.scanner.signal_floor)

        emitted: List[Signal] = []
        for d in detections:
            if d.probability < floor:
                continue
            if not self.session_filter.allows(session):
                log.info("signal_outside_session symbol=%s tf=%s session=%s", symbol, d.timeframe, session)
                continue
            sig = self.scanner.generate_signal(d, symbol, session, now_ms=now_ms)
            if not self._admit(sig):
                continue

            self.sink.accept(sig)
            self._metrics["signals_emitted_total"] += 1
            log.info(
                "signal %s %s %s strategy=%s prob=%d entry=%s sl=%s tp=%s session=%s signal_id=%s",
                sig.symbol,
                sig.timeframe,
                sig.direction,
                d.strategy,
                sig.probability,
                sig.entry_price,
                sig.stop_loss,
                sig.take_profit,
                sig.session,
                sig.signal_id,
            )
            await self._notify(sig)
            await self.broadcaster.publish("strategy_detection", d.to_dict())
            await self.broadcaster.publish("signal", sig.to_dict())
            emitted.append(sig)
        return emitted

    async def scan_once(self, now_ms: Optional[int] = None) -> List[Signal]:
        now = self._clock_ms() if now_ms is None else int(now_ms)
        out: List[Signal] = []
        for sym in self.symbols:
            try:
                out.extend(await self.scan_symbol(sym, now))
            except Exception as e:
                self._metrics["symbol_failures_total"] += 1
                log.exception("scan_failed symbol=%s err=%s", sym, e)
        return out

    async def run_forever(self) -> None:
        if not self.symbols or not self.scanner.timeframes:
            raise ValueError("No symbols/timeframes configured.")
        enabled = getattr(self.provider, "enabled", None)
        if enabled is not None and not enabled():
            raise ValueError("provider.api_key is required (or set TWELVE_DATA_API_KEY).")

        await self.broadcaster.start()
        log.info(
            "scanner_start symbols=%s timeframes=%s interval=%ss floor=%d/%d",
            self.symbols,
            self.scanner.timeframes,
            self.cfg.scanner.scan_interval_s,
            self.cfg.scanner.admission_floor,
            self.cfg.scanner.signal_floor,
        )
        if self.tg.enabled():
            await self.tg.send(
                f"✅ {self.cfg.app.name}: scanner started. Monitoring {len(self.symbols)} symbols × {len(self.scanner.timeframes)} TFs.",
                parse_mode=None,
            )

        interval = max(1, int(self.cfg.scanner.scan_interval_s))
        try:
            while True:
                started = time.monotonic()
                await self.scan_once()
                await self.broadcaster.publish("session_status", session_status(self._clock_ms()))
                elapsed = time.monotonic() - started
                await asyncio.sleep(max(0.0, interval - elapsed))
        finally:
            await self.broadcaster.stop()
