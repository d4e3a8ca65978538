"""ICT pattern detection — pure functions over an ordered candle slice.

Every detector reads only the candles it is given, so a caller that
passes data ending before the decision point gets no lookahead.  Each
detector keeps only its most recent matches.
"""

from ictbacktest.market.models import Candle
from ictbacktest.strategy.indicators import average_body, average_range
from ictbacktest.strategy.models import (
    BEARISH,
    BULLISH,
    DEMAND,
    SUPPLY,
    BreakerBlock,
    FairValueGap,
    FeatureSet,
    MarketStructureShift,
    OrderBlock,
    SupplyDemandZone,
    SwingPoint,
)

# Output caps (most recent kept)
MAX_ORDER_BLOCKS = 10
MAX_FAIR_VALUE_GAPS = 10
MAX_SWING_POINTS = 10
MAX_STRUCTURE_SHIFTS = 5
MAX_ZONES = 5
MAX_BREAKERS = 5

_IMPULSE_MULTIPLIER = 1.5
_BASE_BODY_MULTIPLIER = 0.6


# ── Order blocks ─────────────────────────────────────────────────────────


def _block_strength(candle: Candle, breakout: Candle, polarity: str) -> float:
    """Blend close proximity with breakout size, clamped to [0, 100]."""
    size = candle.range
    if size == 0:
        return 0.0
    position = (candle.close - candle.low) / size
    proximity = 1 - position if polarity == BULLISH else position
    score = proximity * 50 + (breakout.range / size) * 50
    return max(0.0, min(100.0, score))


def find_order_blocks(candles: list[Candle]) -> list[OrderBlock]:
    """Find the last opposite candle before each strong breakout.

    A down candle followed by an up candle whose range exceeds 1.5x the
    trailing average range is a bullish block; the mirror is bearish.
    """
    avg = average_range(candles)
    blocks: list[OrderBlock] = []
    for i in range(len(candles) - 1):
        current = candles[i]
        nxt = candles[i + 1]
        if nxt.range <= avg * _IMPULSE_MULTIPLIER:
            continue
        if current.is_bearish and nxt.is_bullish:
            polarity = BULLISH
        elif current.is_bullish and nxt.is_bearish:
            polarity = BEARISH
        else:
            continue
        blocks.append(
            OrderBlock(
                type=polarity,
                high=current.high,
                low=current.low,
                timestamp=current.timestamp,
                strength=_block_strength(current, nxt, polarity),
            )
        )
    return blocks[-MAX_ORDER_BLOCKS:]


# ── Fair value gaps ──────────────────────────────────────────────────────


def find_fair_value_gaps(candles: list[Candle]) -> list[FairValueGap]:
    """Find three-candle imbalances, stamped with the middle candle."""
    gaps: list[FairValueGap] = []
    for i in range(1, len(candles) - 1):
        prev = candles[i - 1]
        nxt = candles[i + 1]
        if prev.high < nxt.low:
            gaps.append(
                FairValueGap(BULLISH, top=nxt.low, bottom=prev.high,
                             timestamp=candles[i].timestamp)
            )
        if prev.low > nxt.high:
            gaps.append(
                FairValueGap(BEARISH, top=prev.low, bottom=nxt.high,
                             timestamp=candles[i].timestamp)
            )
    return gaps[-MAX_FAIR_VALUE_GAPS:]


# ── Liquidity levels ─────────────────────────────────────────────────────


def _find_swing_highs(candles: list[Candle], lookback: int) -> list[SwingPoint]:
    """A swing high beats every high *lookback* candles on each side."""
    highs: list[SwingPoint] = []
    for i in range(lookback, len(candles) - lookback):
        high = candles[i].high
        is_swing = True
        for j in range(1, lookback + 1):
            if candles[i - j].high >= high or candles[i + j].high >= high:
                is_swing = False
                break
        if is_swing:
            highs.append(SwingPoint("swing_high", high, candles[i].timestamp))
    return highs


def _find_swing_lows(candles: list[Candle], lookback: int) -> list[SwingPoint]:
    """A swing low undercuts every low *lookback* candles on each side."""
    lows: list[SwingPoint] = []
    for i in range(lookback, len(candles) - lookback):
        low = candles[i].low
        is_swing = True
        for j in range(1, lookback + 1):
            if candles[i - j].low <= low or candles[i + j].low <= low:
                is_swing = False
                break
        if is_swing:
            lows.append(SwingPoint("swing_low", low, candles[i].timestamp))
    return lows


def find_liquidity_levels(
    candles: list[Candle], lookback: int = 20,
) -> tuple[list[SwingPoint], list[SwingPoint]]:
    """Return ``(swing_highs, swing_lows)``, uncapped.

    Only interior candles with *lookback* neighbours on both sides can
    qualify, so the newest *lookback* candles never produce a swing.
    """
    if lookback < 1:
        raise ValueError(f"lookback must be at least 1, got {lookback}")
    return _find_swing_highs(candles, lookback), _find_swing_lows(candles, lookback)


# ── Market structure ─────────────────────────────────────────────────────


def find_structure_shifts(swing_points: list[SwingPoint]) -> list[MarketStructureShift]:
    """Detect higher lows and lower highs over time-ordered swing points.

    ``(low, high, low)`` with the last low above the first is bullish;
    ``(high, low, high)`` with the last high below the first is bearish.
    """
    ordered = sorted(swing_points, key=lambda p: p.timestamp)
    shifts: list[MarketStructureShift] = []
    for i in range(2, len(ordered)):
        first, middle, last = ordered[i - 2], ordered[i - 1], ordered[i]
        if (
            first.type == "swing_low"
            and middle.type == "swing_high"
            and last.type == "swing_low"
            and last.price > first.price
        ):
            shifts.append(
                MarketStructureShift(
                    type=BULLISH,
                    break_level=first.price,
                    timestamp=last.timestamp,
                    description="Bullish shift - higher low above previous swing low",
                )
            )
        elif (
            first.type == "swing_high"
            and middle.type == "swing_low"
            and last.type == "swing_high"
            and last.price < first.price
        ):
            shifts.append(
                MarketStructureShift(
                    type=BEARISH,
                    break_level=first.price,
                    timestamp=last.timestamp,
                    description="Bearish shift - lower high below previous swing high",
                )
            )
    return shifts[-MAX_STRUCTURE_SHIFTS:]


# ── Supply / demand ──────────────────────────────────────────────────────


def find_supply_demand_zones(
    candles: list[Candle], min_base: int = 1,
) -> list[SupplyDemandZone]:
    """Find consolidation bases that end in an impulse candle.

    A base is a maximal run of candles whose body is below 0.6x the
    trailing average body.  When the candle right after the run has a
    range above 1.5x the trailing average range, the base becomes a
    demand zone (bullish impulse) or a supply zone (otherwise).
    """
    avg_body = average_body(candles)
    avg_range = average_range(candles)
    if avg_range == 0:
        return []

    zones: list[SupplyDemandZone] = []
    i = 0
    n = len(candles)
    while i < n:
        if candles[i].body >= avg_body * _BASE_BODY_MULTIPLIER:
            i += 1
            continue
        start = i
        while i < n and candles[i].body < avg_body * _BASE_BODY_MULTIPLIER:
            i += 1
        base = candles[start:i]
        if i >= n or len(base) < min_base:
            continue
        impulse = candles[i]
        if impulse.range <= avg_range * _IMPULSE_MULTIPLIER:
            continue
        zones.append(
            SupplyDemandZone(
                type=DEMAND if impulse.is_bullish else SUPPLY,
                top=max(c.high for c in base),
                bottom=min(c.low for c in base),
                timestamp=base[0].timestamp,
                base_candles=len(base),
                strength=min(100.0, impulse.range / avg_range * 40),
            )
        )
    return zones[-MAX_ZONES:]


# ── Breaker blocks ───────────────────────────────────────────────────────


def find_breaker_blocks(
    candles: list[Candle], order_blocks: list[OrderBlock],
) -> list[BreakerBlock]:
    """Flip each order block whose level a later close breaks through.

    A bullish block closed below its low becomes a bearish breaker, a
    bearish block closed above its high a bullish one.  The breaker is
    stamped with the first breaching candle.
    """
    breakers: list[BreakerBlock] = []
    for block in order_blocks:
        for candle in candles:
            if candle.timestamp <= block.timestamp:
                continue
            if block.type == BULLISH and candle.close < block.low:
                flipped = BEARISH
            elif block.type == BEARISH and candle.close > block.high:
                flipped = BULLISH
            else:
                continue
            breakers.append(
                BreakerBlock(
                    type=flipped,
                    high=block.high,
                    low=block.low,
                    timestamp=candle.timestamp,
                    origin_timestamp=block.timestamp,
                )
            )
            break
    breakers.sort(key=lambda b: b.timestamp)
    return breakers[-MAX_BREAKERS:]


# ── Public API ───────────────────────────────────────────────────────────


def extract_features(candles: list[Candle], swing_lookback: int = 20) -> FeatureSet:
    """Run every detector over *candles* and bundle the results."""
    if not candles:
        return FeatureSet()

    order_blocks = find_order_blocks(candles)
    highs, lows = find_liquidity_levels(candles, swing_lookback)
    shifts = find_structure_shifts(highs + lows)

    return FeatureSet(
        order_blocks=order_blocks,
        fair_value_gaps=find_fair_value_gaps(candles),
        swing_highs=highs[-MAX_SWING_POINTS:],
        swing_lows=lows[-MAX_SWING_POINTS:],
        market_structure_shifts=shifts,
        supply_demand_zones=find_supply_demand_zones(candles),
        breaker_blocks=find_breaker_blocks(candles, order_blocks),
    )


def summarize_features(candles: list[Candle], features: FeatureSet) -> dict:
    """Condense a feature set into counts and a directional read.

    Scoring: +2 per recent order block (last 5), +3 per recent shift
    (last 3), +1 when price sits near the latest swing high (bullish) or
    swing low (bearish).
    """
    current_price = candles[-1].close if candles else 0.0

    bullish = bearish = 0
    for block in features.order_blocks[-5:]:
        if block.type == BULLISH:
            bullish += 2
        else:
            bearish += 2
    for shift in features.market_structure_shifts[-3:]:
        if shift.type == BULLISH:
            bullish += 3
        else:
            bearish += 3
    if features.swing_highs and current_price > features.swing_highs[-1].price * 0.99:
        bullish += 1
    if features.swing_lows and current_price < features.swing_lows[-1].price * 1.01:
        bearish += 1

    if bullish > bearish:
        bias = "BULLISH"
    elif bearish > bullish:
        bias = "BEARISH"
    else:
        bias = "NEUTRAL"

    return {
        "currentPrice": current_price,
        "totalOrderBlocks": len(features.order_blocks),
        "bullishOrderBlocks": sum(1 for b in features.order_blocks if b.type == BULLISH),
        "bearishOrderBlocks": sum(1 for b in features.order_blocks if b.type == BEARISH),
        "totalLiquidityLevels": len(features.swing_highs) + len(features.swing_lows),
        "fairValueGaps": len(features.fair_value_gaps),
        "marketStructureShifts": len(features.market_structure_shifts),
        "supplyDemandZones": len(features.supply_demand_zones),
        "breakerBlocks": len(features.breaker_blocks),
        "bias": bias,
    }
