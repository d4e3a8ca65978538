"""Backtest statistics — pure functions for trade-ledger analysis.

Every ratio is special-cased so that no NaN or infinity ever reaches a
report: an empty ledger gives zeros, and a ledger with wins but no
losses gives a profit factor of ``PROFIT_FACTOR_NO_LOSSES``.
"""

import math

from ictbacktest.backtest.account import EquityPoint, Trade
from ictbacktest.strategy.models import Quality, Session

PROFIT_FACTOR_NO_LOSSES = 999.0
TRADING_DAYS_PER_YEAR = 252


def calculate_stats(
    trades: list[Trade],
    equity_curve: list[EquityPoint],
    initial_capital: float,
    final_balance: float,
    max_drawdown_pct: float,
    annual_risk_free_rate: float = 0.02,
) -> dict:
    """Compute summary statistics for one run.

    Args:
        trades: Closed trades in ledger order.
        equity_curve: One point per processed candle.
        initial_capital: Starting balance.
        final_balance: Balance after the last trade closed.
        max_drawdown_pct: Worst drawdown tracked live during the run.
        annual_risk_free_rate: Risk-free rate for the Sharpe ratio.

    Returns:
        Dict with ``initial_capital``, ``final_balance``,
        ``total_profit``, ``total_return_pct``, ``max_drawdown_pct``,
        ``win_rate_pct``, ``profit_factor``, ``sharpe_ratio``,
        ``total_trades``, ``winning_trades``, ``losing_trades``,
        ``avg_win``, ``avg_loss``, ``quality_breakdown`` and
        ``session_breakdown``.
    """
    profits = [t.profit for t in trades]
    winners = [p for p in profits if p > 0]
    losers = [p for p in profits if p <= 0]
    total = len(profits)

    total_profit = final_balance - initial_capital
    equities = [p.equity for p in equity_curve]

    return {
        "initial_capital": initial_capital,
        "final_balance": round(final_balance, 2),
        "total_profit": round(total_profit, 2),
        "total_return_pct": round(_finite(total_profit / initial_capital * 100.0), 4),
        "max_drawdown_pct": round(_finite(max_drawdown_pct), 4),
        "win_rate_pct": round(len(winners) / total * 100.0, 4) if total else 0.0,
        "profit_factor": round(_profit_factor(winners, losers), 4),
        "sharpe_ratio": round(_sharpe(equities, annual_risk_free_rate), 4),
        "total_trades": total,
        "winning_trades": len(winners),
        "losing_trades": len(losers),
        "avg_win": round(sum(winners) / len(winners), 4) if winners else 0.0,
        "avg_loss": round(sum(losers) / len(losers), 4) if losers else 0.0,
        "quality_breakdown": quality_breakdown(trades),
        "session_breakdown": session_breakdown(trades),
    }


def quality_breakdown(trades: list[Trade]) -> dict[str, int]:
    counts = {q.value: 0 for q in Quality}
    for trade in trades:
        counts[trade.quality.value] += 1
    return counts


def session_breakdown(trades: list[Trade]) -> dict[str, int]:
    counts = {s.value: 0 for s in Session}
    for trade in trades:
        if trade.session is not None:
            counts[trade.session.value] += 1
    return counts


# ── Helpers ──────────────────────────────────────────────────────────────


def _finite(value: float) -> float:
    return value if math.isfinite(value) else 0.0


def _profit_factor(winners: list[float], losers: list[float]) -> float:
    """Gross profit over gross loss.

    0 with no wins, ``PROFIT_FACTOR_NO_LOSSES`` with wins and no losses.
    """
    gross_profit = sum(winners)
    gross_loss = abs(sum(losers))
    if gross_profit == 0:
        return 0.0
    if gross_loss == 0:
        return PROFIT_FACTOR_NO_LOSSES
    return _finite(gross_profit / gross_loss)


def _sharpe(equities: list[float], annual_risk_free_rate: float = 0.02) -> float:
    """Annualised Sharpe ratio from an equity series.

    Per-step returns ``(e[i] - e[i-1]) / e[i-1]`` with population
    standard deviation::

        (mean - rf / 252) / std × √252

    Returns 0.0 with fewer than 2 points, a zero-equity step, or zero
    variance.
    """
    if len(equities) < 2:
        return 0.0
    returns: list[float] = []
    for prev, curr in zip(equities, equities[1:]):
        if prev == 0:
            return 0.0
        returns.append((curr - prev) / prev)

    n = len(returns)
    mean = sum(returns) / n
    variance = sum((r - mean) ** 2 for r in returns) / n
    std = math.sqrt(variance)
    if std == 0:
        return 0.0
    daily_rf = annual_risk_free_rate / TRADING_DAYS_PER_YEAR
    return _finite((mean - daily_rf) / std * math.sqrt(TRADING_DAYS_PER_YEAR))
