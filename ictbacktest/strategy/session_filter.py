"""Session and bias classification — pure functions over UTC timestamps.

Killzones use a fixed New York offset of UTC-5 with no daylight-saving
adjustment.  Calendar days for the daily bias are UTC days.
"""

from datetime import datetime, timezone
from typing import Optional

from ictbacktest.market.models import Candle
from ictbacktest.strategy.models import Session, Side

NY_UTC_OFFSET_HOURS = 5


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def killzone(ts: datetime) -> Optional[Session]:
    """Return the killzone *ts* falls in, or ``None`` outside all three.

    With ``ny = utc_hour - 5`` (minutes ignored):

    - ``ny >= 20 or ny < 0`` → ASIA   (UTC 00:00–04:59)
    - ``2 <= ny < 5``        → LONDON (UTC 07:00–09:59)
    - ``7 <= ny < 10``       → NY     (UTC 12:00–14:59)
    """
    ny_hour = _as_utc(ts).hour - NY_UTC_OFFSET_HOURS
    if ny_hour >= 20 or ny_hour < 0:
        return Session.ASIA
    if 2 <= ny_hour < 5:
        return Session.LONDON
    if 7 <= ny_hour < 10:
        return Session.NY
    return None


def daily_bias(daily_candles: list[Candle], as_of: datetime) -> Optional[Side]:
    """Direction of the latest daily candle from a UTC day before *as_of*.

    LONG when that candle closed above its open, otherwise SHORT.
    Returns ``None`` when no earlier day exists.  *daily_candles* must be
    ordered oldest-first.
    """
    today = _as_utc(as_of).date()
    for candle in reversed(daily_candles):
        if _as_utc(candle.timestamp).date() < today:
            return Side.LONG if candle.close > candle.open else Side.SHORT
    return None
