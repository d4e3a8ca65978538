"""Tests for ictbacktest.backtest.stats — ledger statistics."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from ictbacktest.backtest.account import EquityPoint, ExitReason, Trade
from ictbacktest.backtest.stats import (
    PROFIT_FACTOR_NO_LOSSES,
    _sharpe,
    calculate_stats,
    quality_breakdown,
    session_breakdown,
)
from ictbacktest.strategy.models import Quality, Session, Side

_T0 = datetime(2024, 1, 2, 8, tzinfo=timezone.utc)


def _make_trade(profit, quality=Quality.A, session=Session.LONDON):
    return Trade(
        side=Side.LONG, entry_price=100.0, entry_time=_T0,
        exit_price=100.0 + profit, exit_time=_T0 + timedelta(hours=1),
        quantity=1.0, notional=100.0, profit=profit, profit_percent=profit,
        quality=quality, session=session, exit_reason=ExitReason.PERIOD_END,
        entry_reason="test",
    )


def _curve(*equities):
    return [
        EquityPoint(timestamp=_T0 + timedelta(minutes=5 * i), equity=e, balance=e)
        for i, e in enumerate(equities)
    ]


def _stats(trades, equities=(10_000.0,), max_dd=0.0):
    final = 10_000.0 + sum(t.profit for t in trades)
    return calculate_stats(trades, _curve(*equities), 10_000.0, final, max_dd)


class TestCalculateStats:
    def test_empty_ledger(self):
        stats = _stats([])
        assert stats["total_trades"] == 0
        assert stats["win_rate_pct"] == 0.0
        assert stats["profit_factor"] == 0.0
        assert stats["sharpe_ratio"] == 0.0
        assert stats["avg_win"] == 0.0
        assert stats["avg_loss"] == 0.0
        assert stats["total_profit"] == 0.0
        assert stats["final_balance"] == 10_000.0

    def test_wins_without_losses_use_sentinel(self):
        stats = _stats([_make_trade(10), _make_trade(20)])
        assert stats["profit_factor"] == PROFIT_FACTOR_NO_LOSSES
        assert stats["win_rate_pct"] == 100.0
        assert stats["losing_trades"] == 0

    def test_mixed_ledger(self):
        stats = _stats([_make_trade(30), _make_trade(-10), _make_trade(-20), _make_trade(10)])
        assert stats["total_trades"] == 4
        assert stats["winning_trades"] == 2
        assert stats["losing_trades"] == 2
        assert stats["win_rate_pct"] == 50.0
        assert stats["profit_factor"] == pytest.approx(40 / 30, abs=1e-4)
        assert stats["avg_win"] == 20.0
        assert stats["avg_loss"] == -15.0
        assert stats["total_profit"] == 10.0
        assert stats["total_return_pct"] == pytest.approx(0.1)

    def test_breakeven_counts_as_loss(self):
        stats = _stats([_make_trade(0.0)])
        assert stats["losing_trades"] == 1
        assert stats["profit_factor"] == 0.0

    def test_all_values_finite(self):
        stats = _stats([_make_trade(5)], equities=(10_000, 10_000, 10_005))
        for key, value in stats.items():
            if isinstance(value, float):
                assert math.isfinite(value), key

    def test_breakdowns(self):
        trades = [
            _make_trade(1, Quality.A_PLUS, Session.ASIA),
            _make_trade(1, Quality.A_PLUS, Session.NY),
            _make_trade(1, Quality.B, Session.NY),
            _make_trade(1, Quality.A, None),
        ]
        assert quality_breakdown(trades) == {"A+": 2, "A": 1, "B": 1, "C": 0}
        assert session_breakdown(trades) == {"ASIA": 1, "LONDON": 0, "NY": 2}


class TestSharpe:
    def test_too_few_points(self):
        assert _sharpe([10_000]) == 0.0
        assert _sharpe([]) == 0.0

    def test_zero_variance(self):
        assert _sharpe([100, 100, 100]) == 0.0

    def test_zero_equity_step(self):
        assert _sharpe([100, 0, 50]) == 0.0

    def test_known_value(self):
        equities = [100.0, 110.0, 99.0]
        returns = [0.1, -0.1]
        mean = sum(returns) / 2
        std = math.sqrt(sum((r - mean) ** 2 for r in returns) / 2)
        expected = (mean - 0.02 / 252) / std * math.sqrt(252)
        assert _sharpe(equities) == pytest.approx(expected)

    def test_rising_equity_positive(self):
        assert _sharpe([100, 101, 103, 104]) > 0
