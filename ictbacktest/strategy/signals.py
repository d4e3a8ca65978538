"""Entry signal decisions — pure functions, no I/O.

A trade needs three things on the same candle: a killzone session, a
daily bias, and enough structure-timeframe patterns pointing the same
way as the bias.  Direction always follows the bias.
"""

from typing import Optional

from ictbacktest.config import BacktestSettings
from ictbacktest.market.models import Candle
from ictbacktest.risk.sl_tp import default_levels, levels_are_consistent
from ictbacktest.strategy.models import (
    Confidence,
    FeatureSet,
    Quality,
    Session,
    Side,
    Signal,
)

_CONFIDENCE_BY_QUALITY = {
    Quality.A_PLUS: Confidence.HIGH,
    Quality.A: Confidence.MEDIUM,
    Quality.B: Confidence.LOW,
    Quality.C: Confidence.LOW,
}


def grade_quality(confluence: int) -> Quality:
    """Map an aligned-pattern count to a grade.

    ``>= 3`` → A+, ``2`` → A, ``1`` → B, ``0`` → C.
    """
    if confluence >= 3:
        return Quality.A_PLUS
    if confluence == 2:
        return Quality.A
    if confluence == 1:
        return Quality.B
    return Quality.C


def has_setup(
    bias: Optional[Side],
    features: FeatureSet,
    session: Optional[Session],
    settings: BacktestSettings,
) -> bool:
    """True when a killzone candle has at least one pattern aligned with the bias.

    This is the flip-exit trigger: any grade closes an open position,
    while opening one still needs ``min_confluence_for_trade``.
    """
    if session is None or bias is None:
        return False
    return len(features.aligned(bias, settings.confluence_patterns)) > 0


def decide(
    bias: Optional[Side],
    features: FeatureSet,
    session: Optional[Session],
    candle: Candle,
    settings: BacktestSettings,
) -> Optional[Signal]:
    """Turn bias, session and confluence into a signal, or ``None``.

    Gates, in order: a session is required, a bias is required, at least
    one pattern must align with the bias, and the aligned count must
    reach ``settings.min_confluence_for_trade``.  Entry is the candle
    close; stop and target use the default percentage offsets.
    """
    if session is None or bias is None:
        return None

    confluence = len(features.aligned(bias, settings.confluence_patterns))
    if confluence == 0 or confluence < settings.min_confluence_for_trade:
        return None

    quality = grade_quality(confluence)
    entry = candle.close
    stop_loss, take_profit = default_levels(
        entry, bias, settings.stop_loss_pct, settings.take_profit_pct,
    )
    return Signal(
        side=bias,
        entry_price=entry,
        stop_loss=stop_loss,
        take_profit=take_profit,
        confidence=_CONFIDENCE_BY_QUALITY[quality],
        quality=quality,
        confluence=confluence,
        reason=(
            f"{bias.value} bias with {confluence} aligned pattern(s) "
            f"in {session.value} killzone, grade {quality.value}"
        ),
        session=session,
    )


def reconcile_external_signal(
    external: Optional[Signal],
    baseline: Signal,
    candle: Candle,
    settings: BacktestSettings,
) -> tuple[Optional[Signal], bool]:
    """Check an adapter's signal against the confluence decision.

    Returns ``(signal, violated)``.  A signal whose side disagrees with
    the bias is rejected and reported as a rule violation.  An accepted
    signal keeps the baseline grade and session, fills at the candle
    close, and falls back to the default stop/target whenever the
    adapter's levels are missing or on the wrong side of entry.
    """
    if external is None:
        return None, False
    if external.side != baseline.side:
        return None, True

    entry = candle.close
    stop_loss, take_profit = external.stop_loss, external.take_profit
    if not levels_are_consistent(entry, baseline.side, stop_loss, take_profit):
        stop_loss, take_profit = default_levels(
            entry, baseline.side, settings.stop_loss_pct, settings.take_profit_pct,
        )

    return Signal(
        side=baseline.side,
        entry_price=entry,
        stop_loss=stop_loss,
        take_profit=take_profit,
        confidence=external.confidence,
        quality=baseline.quality,
        confluence=baseline.confluence,
        reason=external.reason or baseline.reason,
        session=baseline.session,
    ), False
