"""Stop-loss, take-profit and slippage arithmetic — pure math, no I/O.

Levels are percentage offsets from the entry price:

- **LONG**:  SL = entry × (1 − sl%),  TP = entry × (1 + tp%)
- **SHORT**: SL = entry × (1 + sl%),  TP = entry × (1 − tp%)
"""

from ictbacktest.strategy.models import Side


def default_levels(
    entry_price: float,
    side: Side,
    stop_loss_pct: float = 2.0,
    take_profit_pct: float = 5.0,
) -> tuple[float, float]:
    """Return ``(stop_loss, take_profit)`` for a trade entered at *entry_price*.

    Raises:
        ValueError: If *entry_price* is not positive or a percentage is
            negative.
    """
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")
    if stop_loss_pct < 0 or take_profit_pct < 0:
        raise ValueError(
            f"stop_loss_pct and take_profit_pct must not be negative, "
            f"got {stop_loss_pct} / {take_profit_pct}"
        )
    sl_frac = stop_loss_pct / 100.0
    tp_frac = take_profit_pct / 100.0
    if side == Side.LONG:
        return entry_price * (1 - sl_frac), entry_price * (1 + tp_frac)
    return entry_price * (1 + sl_frac), entry_price * (1 - tp_frac)


def levels_are_consistent(
    entry_price: float, side: Side, stop_loss: float, take_profit: float,
) -> bool:
    """``True`` when the stop sits on the losing side and the target on the winning side."""
    if side == Side.LONG:
        return 0 < stop_loss < entry_price < take_profit
    return 0 < take_profit < entry_price < stop_loss


def apply_slippage(price: float, side: Side, slippage_pct: float) -> float:
    """Worsen an entry fill by *slippage_pct* (LONG pays up, SHORT sells lower)."""
    if slippage_pct == 0:
        return price
    frac = slippage_pct / 100.0
    if side == Side.LONG:
        return price * (1 + frac)
    return price * (1 - frac)
