"""Candle-size averages used by the pattern detectors. Pure functions, no I/O."""

from ictbacktest.market.models import Candle


def average_range(candles: list[Candle], period: int = 20) -> float:
    """Mean ``high - low`` of the last *period* candles.

    Returns ``0.0`` for an empty list.
    """
    recent = candles[-period:]
    if not recent:
        return 0.0
    return sum(c.range for c in recent) / len(recent)


def average_body(candles: list[Candle], period: int = 20) -> float:
    """Mean ``|close - open|`` of the last *period* candles.

    Returns ``0.0`` for an empty list.
    """
    recent = candles[-period:]
    if not recent:
        return 0.0
    return sum(c.body for c in recent) / len(recent)
