"""Exchange klines REST client (Binance / MEXC).

Fetches historical OHLCV candles with time-based pagination, an explicit
delay between pages, and retry on transient failures.  Both exchanges
expose the same ``/api/v3/klines`` contract.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

import httpx

from ictbacktest.config import Config
from ictbacktest.errors import FetchError
from ictbacktest.market.models import (
    KLINE_INTERVALS,
    Candle,
    normalize_timeframe,
    parse_timestamp,
)

logger = logging.getLogger("ictbacktest")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}

_PAGE_LIMIT = 1000  # exchange maximum per request


class ExchangeClient:
    """Async client wrapping the public klines endpoint.

    Args:
        config: Application configuration (data source).
        request_delay: Pause between paginated requests, in seconds.
        retry_base_delay: First retry back-off, doubled on each attempt.
    """

    def __init__(
        self,
        config: Config,
        request_delay: float = 0.2,
        retry_base_delay: float = _RETRY_BASE_DELAY,
    ) -> None:
        self._config = config
        self._base_url = config.exchange_base_url
        self._source = config.data_source
        self._request_delay = request_delay
        self._retry_base_delay = retry_base_delay
        self._headers = {"Accept": "application/json"}

    @property
    def source(self) -> str:
        return self._source

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        **kwargs,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Other HTTP errors raise ``FetchError`` immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers,
                        timeout=15.0,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = self._retry_base_delay * (2 ** attempt)
                    logger.warning(
                        "%s %s %s returned %d — retry %d/%d in %.1fs",
                        self._source, method.upper(), url, resp.status_code,
                        attempt + 1, _MAX_RETRIES, delay,
                    )
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    await asyncio.sleep(delay)
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = self._retry_base_delay * (2 ** attempt)
                logger.warning(
                    "%s %s %s transport error (%s) — retry %d/%d in %.1fs",
                    self._source, method.upper(), url, exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)
            except httpx.HTTPStatusError as exc:
                raise FetchError(
                    f"{self._source} request failed with status "
                    f"{exc.response.status_code}: {url}"
                ) from exc

        raise FetchError(
            f"{self._source} request failed after {_MAX_RETRIES} attempts: {last_exc}"
        ) from last_exc

    # ── Candle data ──────────────────────────────────────────────────────

    async def _fetch_page(self, params: dict) -> list[Candle]:
        url = f"{self._base_url}/api/v3/klines"
        resp = await self._request_with_retry("get", url, params=params)
        try:
            rows = resp.json()
        except ValueError as exc:
            raise FetchError(f"{self._source} returned a non-JSON body") from exc
        if not isinstance(rows, list):
            raise FetchError(f"{self._source} returned unexpected payload: {rows!r}")
        return [self._parse_kline(row) for row in rows]

    @staticmethod
    def _parse_kline(row: list) -> Candle:
        # [openTime, open, high, low, close, volume, closeTime, ...]
        try:
            return Candle(
                timestamp=parse_timestamp(int(row[0])),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5] or 0.0),
            )
        except (IndexError, TypeError, ValueError) as exc:
            raise FetchError(f"Malformed kline row: {row!r}") from exc

    async def fetch_candles(
        self,
        symbol: str,
        timeframe: str,
        start: datetime,
        end: datetime,
    ) -> list[Candle]:
        """Fetch every candle of *symbol* between *start* and *end*.

        Args:
            symbol: e.g. ``"BTCUSDT"``
            timeframe: e.g. ``"5M"``, ``"1H"``, ``"D"``
            start: Inclusive start (aware or naive UTC).
            end: Inclusive end.

        Returns:
            Candles ordered oldest-first, de-duplicated by timestamp.
            Gaps in the exchange's history simply yield fewer candles.

        Raises:
            FetchError: On network failure or a malformed response.
        """
        tf = normalize_timeframe(timeframe)
        cursor = int(parse_timestamp(start).timestamp() * 1000)
        end_ms = int(parse_timestamp(end).timestamp() * 1000)

        candles: dict[datetime, Candle] = {}
        while cursor <= end_ms:
            page = await self._fetch_page({
                "symbol": symbol.upper(),
                "interval": KLINE_INTERVALS[tf],
                "startTime": cursor,
                "endTime": end_ms,
                "limit": _PAGE_LIMIT,
            })
            if not page:
                break

            for candle in page:
                candles[candle.timestamp] = candle
            logger.debug(
                "%s %s %s: fetched %d candles (total %d)",
                self._source, symbol, tf, len(page), len(candles),
            )

            next_cursor = int(page[-1].timestamp.timestamp() * 1000) + 1
            if next_cursor <= cursor or len(page) < _PAGE_LIMIT:
                break
            cursor = next_cursor
            await asyncio.sleep(self._request_delay)

        ordered = [candles[ts] for ts in sorted(candles)]
        logger.info(
            "%s %s %s: %d candles from %s to %s",
            self._source, symbol, tf, len(ordered),
            parse_timestamp(start).date(), parse_timestamp(end).date(),
        )
        return ordered

    async def fetch_recent(
        self,
        symbol: str,
        timeframe: str,
        limit: int = 100,
    ) -> list[Candle]:
        """Fetch the latest *limit* candles (max 1000), oldest-first."""
        tf = normalize_timeframe(timeframe)
        return await self._fetch_page({
            "symbol": symbol.upper(),
            "interval": KLINE_INTERVALS[tf],
            "limit": min(limit, _PAGE_LIMIT),
        })
