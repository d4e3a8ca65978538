"""Position sizing — pure math, no I/O.

Two modes:

- fixed notional: a constant dollar amount per trade
- risk based: a quality-dependent share of the balance is lost if the
  stop is hit
"""


def fixed_notional_quantity(trade_size: float, entry_price: float) -> float:
    """Units bought with *trade_size* dollars at *entry_price*.

    Formula::

        quantity = trade_size / entry_price

    Raises:
        ValueError: If either input is non-positive.
    """
    if trade_size <= 0:
        raise ValueError(f"trade_size must be positive, got {trade_size}")
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")
    return trade_size / entry_price


def risk_based_quantity(
    balance: float,
    risk_pct: float,
    entry_price: float,
    stop_loss: float,
) -> float:
    """Units such that hitting the stop loses *risk_pct* of *balance*.

    Formula::

        risk_amount = balance × (risk_pct / 100)
        quantity    = risk_amount / |entry_price − stop_loss|

    Args:
        balance: Realised account balance.
        risk_pct: Percentage of balance to risk (e.g. 2.0 for 2 %).
        entry_price: Planned fill price.
        stop_loss: Stop-loss price.

    Returns:
        Position size in units.  ``0.0`` when the balance is not
        positive, the risk is zero, or the stop distance is zero; the
        caller skips the entry in that case.
    """
    if risk_pct < 0:
        raise ValueError(f"risk_pct must not be negative, got {risk_pct}")
    distance = abs(entry_price - stop_loss)
    if balance <= 0 or risk_pct == 0 or distance == 0:
        return 0.0
    risk_amount = balance * (risk_pct / 100.0)
    return risk_amount / distance
