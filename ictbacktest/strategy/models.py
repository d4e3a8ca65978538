"""Strategy data models — pattern objects, feature sets and signals."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Union


class Side(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class Session(str, Enum):
    ASIA = "ASIA"
    LONDON = "LONDON"
    NY = "NY"


class Quality(str, Enum):
    A_PLUS = "A+"
    A = "A"
    B = "B"
    C = "C"


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


# Polarity strings carried by pattern objects
BULLISH = "bullish"
BEARISH = "bearish"
DEMAND = "demand"
SUPPLY = "supply"

_POLARITY_SIDE: dict[str, Side] = {
    BULLISH: Side.LONG,
    DEMAND: Side.LONG,
    BEARISH: Side.SHORT,
    SUPPLY: Side.SHORT,
}


def polarity_side(polarity: str) -> Side:
    """Map a pattern polarity (bullish/demand, bearish/supply) to a side."""
    return _POLARITY_SIDE[polarity]


# ── Pattern objects ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class OrderBlock:
    """Last opposite-direction candle before a strong breakout."""

    type: str  # "bullish" or "bearish"
    high: float
    low: float
    timestamp: datetime
    strength: float


@dataclass(frozen=True)
class FairValueGap:
    """Three-candle imbalance left open by the middle candle."""

    type: str
    top: float
    bottom: float
    timestamp: datetime

    @property
    def size(self) -> float:
        return self.top - self.bottom


@dataclass(frozen=True)
class SwingPoint:
    """A liquidity level confirmed on both sides."""

    type: str  # "swing_high" or "swing_low"
    price: float
    timestamp: datetime


@dataclass(frozen=True)
class MarketStructureShift:
    type: str
    break_level: float
    timestamp: datetime
    description: str


@dataclass(frozen=True)
class SupplyDemandZone:
    """Consolidation base followed by an impulse candle."""

    type: str  # "supply" or "demand"
    top: float
    bottom: float
    timestamp: datetime
    base_candles: int
    strength: float


@dataclass(frozen=True)
class BreakerBlock:
    """An order block whose level was broken, flipped to the other side."""

    type: str
    high: float
    low: float
    timestamp: datetime  # time of the breaching close
    origin_timestamp: datetime


Pattern = Union[OrderBlock, FairValueGap, MarketStructureShift, SupplyDemandZone, BreakerBlock]

DIRECTIONAL_KINDS: tuple[str, ...] = (
    "order_blocks",
    "fair_value_gaps",
    "market_structure_shifts",
    "supply_demand_zones",
    "breaker_blocks",
)


@dataclass(frozen=True)
class FeatureSet:
    """Everything the detectors found in one lookback window."""

    order_blocks: list[OrderBlock] = field(default_factory=list)
    fair_value_gaps: list[FairValueGap] = field(default_factory=list)
    swing_highs: list[SwingPoint] = field(default_factory=list)
    swing_lows: list[SwingPoint] = field(default_factory=list)
    market_structure_shifts: list[MarketStructureShift] = field(default_factory=list)
    supply_demand_zones: list[SupplyDemandZone] = field(default_factory=list)
    breaker_blocks: list[BreakerBlock] = field(default_factory=list)

    def directional(self, kinds: Optional[Iterable[str]] = None) -> list[Pattern]:
        """Polarity-carrying patterns (swing points excluded).

        *kinds* restricts the result to the named attributes, e.g.
        ``("order_blocks", "fair_value_gaps")``.
        """
        names = DIRECTIONAL_KINDS if kinds is None else tuple(kinds)
        unknown = set(names) - set(DIRECTIONAL_KINDS)
        if unknown:
            raise ValueError(f"Unknown pattern kind(s): {', '.join(sorted(unknown))}")
        patterns: list[Pattern] = []
        for name in names:
            patterns.extend(getattr(self, name))
        return patterns

    def aligned(self, side: Side, kinds: Optional[Iterable[str]] = None) -> list[Pattern]:
        """Patterns whose polarity agrees with *side*."""
        return [p for p in self.directional(kinds) if polarity_side(p.type) == side]

    def to_dict(self) -> dict:
        def _rows(items) -> list[dict]:
            rows = []
            for item in items:
                row = asdict(item)
                for key, value in row.items():
                    if isinstance(value, datetime):
                        row[key] = value.isoformat()
                rows.append(row)
            return rows

        return {
            "orderBlocks": _rows(self.order_blocks),
            "fairValueGaps": _rows(self.fair_value_gaps),
            "liquidityLevels": {
                "highs": _rows(self.swing_highs),
                "lows": _rows(self.swing_lows),
            },
            "marketStructureShifts": _rows(self.market_structure_shifts),
            "supplyDemandZones": _rows(self.supply_demand_zones),
            "breakerBlocks": _rows(self.breaker_blocks),
        }


@dataclass(frozen=True)
class Signal:
    """An actionable trade setup for one candle."""

    side: Side
    entry_price: float
    stop_loss: float
    take_profit: float
    confidence: Confidence
    quality: Quality
    confluence: int
    reason: str
    session: Optional[Session] = None


@dataclass(frozen=True)
class MarketContext:
    """What a signal adapter is told about the candle being evaluated."""

    symbol: str
    timeframe: str
    timestamp: datetime
    current_price: float
    bias: Side
    session: Session
