"""Signal adapter protocol.

Defines the interface an external signal source (an LLM, a rules file,
a test double) must implement to be plugged into the backtest engine.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from ictbacktest.strategy.models import FeatureSet, MarketContext, Signal


@runtime_checkable
class SignalAdapter(Protocol):
    """Interface that all signal adapters must satisfy."""

    async def evaluate(
        self, context: MarketContext, features: FeatureSet,
    ) -> Optional[Signal]:
        """Return a trade recommendation for *context*, or ``None``.

        May raise ``EvaluationError``; the engine treats that as no
        signal for the candle.
        """
        ...
