from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiohttp

from ..models import Candle
from ..timeframes import normalize_timeframe, provider_interval

log = logging.getLogger("twelvedata")


class ProviderError(RuntimeError):
    pass


class RateLimited(ProviderError):
    pass


def parse_datetime_ms(value: str) -> int:
    """Twelve Data datetimes are 'YYYY-MM-DD HH:MM:SS' (intraday) or 'YYYY-MM-DD'."""
    value = (value or "").strip()
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d"):
        try:
            dt = datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
            return int(dt.timestamp() * 1000)
        except ValueError:
            continue
    raise ProviderError(f"Unparseable datetime: {value!r}")


def _opt_float(v: Any) -> Optional[float]:
    if v is None or v == "":
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def parse_time_series(symbol: str, timeframe: str, payload: Dict[str, Any]) -> List[Candle]:
    """Convert a /time_series payload into ascending candles.

    Numeric strings are parsed here once; downstream code only sees floats.
    """
    out: List[Candle] = []
    for row in payload.get("values") or []:
        out.append(Candle(
            symbol=symbol,
            timeframe=timeframe,
            open=float(row["open"]),
            high=float(row["high"]),
            low=float(row["low"]),
            close=float(row["close"]),
            timestamp_ms=parse_datetime_ms(row["datetime"]),
            volume=_opt_float(row.get("volume")),
        ))
    out.sort(key=lambda c: c.timestamp_ms)
    return out


class TwelveDataProvider:
    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.twelvedata.com",
        rest_timeout_s: int = 20,
        rest_max_retries: int = 3,
        rest_backoff_s: float = 1.0,
    ):
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.rest_timeout_s = rest_timeout_s
        self.rest_max_retries = max(1, int(rest_max_retries))
        self.rest_backoff_s = rest_backoff_s
        self._session: Optional[aiohttp.ClientSession] = None

    def enabled(self) -> bool:
        return bool(self.api_key)

    async def close(self) -> None:
        """Close the shared aiohttp session (best-effort)."""
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(
            total=self.rest_timeout_s,
            connect=min(10, self.rest_timeout_s),
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout())
        return self._session

    async def _get_json(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = self.base_url + path
        query = dict(params)
        query["apikey"] = self.api_key
        sess = await self._get_session()

        backoff = float(self.rest_backoff_s)
        last_err: Optional[BaseException] = None
        for attempt in range(1, self.rest_max_retries + 1):
            try:
                async with sess.get(url, params=query) as resp:
                    txt = await resp.text()
                    # Rate limiting sometimes comes back as an HTML page.
                    if resp.status == 429 or txt.lstrip().startswith("<"):
                        raise RateLimited(f"rate limited status={resp.status}")
                    if resp.status != 200:
                        raise ProviderError(f"Twelve Data {path} failed: {resp.status} {txt[:500]}")
                    data = await resp.json(content_type=None)
                if isinstance(data, dict) and data.get("status") == "error":
                    if data.get("code") == 429:
                        raise RateLimited(str(data.get("message")))
                    raise ProviderError(f"Twelve Data {path} error: {data.get('code')} {data.get('message')}")
                return data

            except (asyncio.TimeoutError, aiohttp.ClientError, RateLimited) as e:
                last_err = e
                if attempt >= self.rest_max_retries:
                    break
                log.warning(
                    "rest_retry attempt=%d/%d path=%s symbol=%s backoff=%.1fs err=%s",
                    attempt,
                    self.rest_max_retries,
                    path,
                    params.get("symbol"),
                    backoff,
                    e,
                )
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2.0, 30.0)

        raise ProviderError(f"Twelve Data {path} gave up after {self.rest_max_retries} attempts: {last_err}") from last_err

    async def fetch_candles(self, symbol: str, timeframe: str, limit: int) -> List[Candle]:
        tf = normalize_timeframe(timeframe)
        data = await self._get_json(
            "/time_series",
            {
                "symbol": symbol,
                "interval": provider_interval(tf),
                "outputsize": int(limit),
                "timezone": "UTC",
            },
        )
        return parse_time_series(symbol, tf, data)

    async def fetch_price(self, symbol: str) -> Optional[float]:
        data = await self._get_json("/price", {"symbol": symbol})
        return _opt_float(data.get("price"))
