"""Market data models — typed OHLCV candles and series validation."""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping

from ictbacktest.errors import InputValidationError


# ── Timeframes ───────────────────────────────────────────────────────────

TIMEFRAME_DURATIONS: dict[str, timedelta] = {
    "1M": timedelta(minutes=1),
    "5M": timedelta(minutes=5),
    "15M": timedelta(minutes=15),
    "30M": timedelta(minutes=30),
    "1H": timedelta(hours=1),
    "4H": timedelta(hours=4),
    "D": timedelta(days=1),
    "W": timedelta(weeks=1),
}

# Exchange kline interval codes (Binance and MEXC share them)
KLINE_INTERVALS: dict[str, str] = {
    "1M": "1m",
    "5M": "5m",
    "15M": "15m",
    "30M": "30m",
    "1H": "1h",
    "4H": "4h",
    "D": "1d",
    "W": "1w",
}


def normalize_timeframe(timeframe: str) -> str:
    """Upper-case *timeframe* and check it is supported.

    Raises ``ValueError`` for unknown timeframes.
    """
    tf = timeframe.upper()
    if tf not in TIMEFRAME_DURATIONS:
        raise ValueError(
            f"Unsupported timeframe '{timeframe}'. "
            f"Available: {', '.join(TIMEFRAME_DURATIONS)}"
        )
    return tf


def parse_timestamp(value: Any) -> datetime:
    """Coerce epoch milliseconds, ISO strings or datetimes to aware UTC."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        dt = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return parse_timestamp(int(text))
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    else:
        raise InputValidationError(f"Unsupported timestamp value: {value!r}")
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class Candle:
    """A single OHLCV bar.  Prices are floats fixed at ingestion."""

    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "Candle":
        """Build a candle from a loosely-typed mapping.

        Accepts string or numeric prices and any timestamp understood by
        ``parse_timestamp``.  Raises ``InputValidationError`` on missing
        or non-numeric fields.
        """
        try:
            timestamp = parse_timestamp(raw["timestamp"])
            prices = {k: float(raw[k]) for k in ("open", "high", "low", "close")}
            volume = float(raw.get("volume") or 0.0)
        except (KeyError, TypeError, ValueError) as exc:
            raise InputValidationError(f"Malformed candle {dict(raw)!r}: {exc}") from exc
        candle = cls(timestamp=timestamp, volume=volume, **prices)
        validate_candle(candle)
        return candle

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


def validate_candle(candle: Candle) -> None:
    """Reject non-finite prices and open/close outside the high/low range."""
    values = (candle.open, candle.high, candle.low, candle.close, candle.volume)
    if not all(math.isfinite(v) for v in values):
        raise InputValidationError(f"Non-finite price in candle at {candle.timestamp}")
    if candle.high < candle.low:
        raise InputValidationError(
            f"Candle at {candle.timestamp} has high {candle.high} below low {candle.low}"
        )
    body_low, body_high = sorted((candle.open, candle.close))
    if body_low < candle.low or body_high > candle.high:
        raise InputValidationError(
            f"Candle at {candle.timestamp} has open/close outside "
            f"[{candle.low}, {candle.high}]"
        )
    if min(candle.open, candle.close, candle.low) <= 0:
        raise InputValidationError(f"Non-positive price in candle at {candle.timestamp}")


def validate_series(candles: Iterable[Candle], name: str = "candles") -> list[Candle]:
    """Check a series is non-empty, well-formed and strictly ascending.

    Returns the series as a list.
    """
    series = list(candles)
    if not series:
        raise InputValidationError(f"{name} series is empty")
    previous = None
    for candle in series:
        validate_candle(candle)
        if previous is not None and candle.timestamp <= previous.timestamp:
            raise InputValidationError(
                f"{name} timestamps must be strictly increasing: "
                f"{candle.timestamp.isoformat()} follows {previous.timestamp.isoformat()}"
            )
        previous = candle
    return series
