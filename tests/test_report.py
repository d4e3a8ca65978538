"""Tests for ictbacktest.backtest.report and the CLI summary printer."""

import json
from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

from ictbacktest.backtest.account import EquityPoint, ExitReason, Trade
from ictbacktest.backtest.engine import BacktestResult, RunCounters
from ictbacktest.backtest.report import build_report, export_report, trades_frame
from ictbacktest.backtest.stats import calculate_stats
from ictbacktest.cli.summary import print_summary
from ictbacktest.strategy.models import Quality, Session, Side

_T0 = datetime(2024, 1, 2, 8, tzinfo=timezone.utc)


def _make_result(trades=None, counters=None):
    if trades is None:
        trades = [
            Trade(
                side=Side.LONG, entry_price=50000.0, entry_time=_T0,
                exit_price=51000.0, exit_time=_T0 + timedelta(hours=2),
                quantity=0.002, notional=100.0, profit=2.0, profit_percent=2.0,
                quality=Quality.A_PLUS, session=Session.LONDON,
                exit_reason=ExitReason.PERIOD_END, entry_reason="LONG bias",
            )
        ]
    final = 10_000.0 + sum(t.profit for t in trades)
    curve = [
        EquityPoint(_T0, 10_000.0, 10_000.0),
        EquityPoint(_T0 + timedelta(hours=2), final, final),
    ]
    return BacktestResult(
        trades=trades,
        equity_curve=curve,
        initial_capital=10_000.0,
        final_balance=final,
        peak_equity=max(10_000.0, final),
        max_drawdown_pct=0.0,
        counters=counters or RunCounters(signals_evaluated=4, rule_violations=1, entries_opened=1),
    )


def _make_report(result=None):
    result = result or _make_result()
    stats = calculate_stats(
        result.trades, result.equity_curve, result.initial_capital,
        result.final_balance, result.max_drawdown_pct,
    )
    return build_report(result, stats)


class TestBuildReport:
    def test_shape(self):
        report = _make_report()
        assert set(report) == {
            "summary", "trades", "equityCurve", "qualityBreakdown",
            "sessionBreakdown", "ruleCompliance",
        }
        assert report["summary"]["finalBalance"] == 10_002.0
        assert report["summary"]["totalTrades"] == 1
        assert report["qualityBreakdown"] == {"aPlus": 1, "a": 0, "b": 0}
        assert report["sessionBreakdown"] == {"asia": 0, "london": 1, "ny": 0}
        assert report["trades"][0]["side"] == "LONG"
        assert len(report["equityCurve"]) == 2

    def test_rule_compliance(self):
        compliance = _make_report()["ruleCompliance"]
        assert compliance["signalsEvaluated"] == 4
        assert compliance["ruleViolations"] == 1
        assert compliance["complianceRate"] == 75.0
        assert compliance["entriesOpened"] == 1

    def test_no_trades(self):
        report = _make_report(_make_result(trades=[], counters=RunCounters()))
        assert report["summary"]["totalTrades"] == 0
        assert report["summary"]["winRatePct"] == 0.0
        assert report["ruleCompliance"]["complianceRate"] == 100.0

    def test_json_serialisable(self):
        json.dumps(_make_report())


class TestExports:
    def test_trades_frame_columns(self):
        frame = trades_frame(_make_report()["trades"])
        assert list(frame.columns)[:3] == ["entryTime", "exitTime", "side"]
        assert frame.loc[0, "profit"] == 2.0

    def test_export_report(self, tmp_path):
        report = _make_report()
        out = tmp_path / "run"
        export_report(report, out)

        trades = pd.read_csv(out / "trades.csv")
        assert len(trades) == 1
        assert trades.loc[0, "exitReason"] == "PERIOD_END"
        equity = pd.read_csv(out / "equity.csv")
        assert list(equity.columns) == ["timestamp", "equity", "balance"]
        saved = json.loads((out / "report.json").read_text(encoding="utf-8"))
        assert saved["summary"] == report["summary"]

    def test_empty_ledger_exports_header(self, tmp_path):
        report = _make_report(_make_result(trades=[], counters=RunCounters()))
        export_report(report, tmp_path)
        assert pd.read_csv(tmp_path / "trades.csv").empty


class TestPrintSummary:
    def test_contains_headline_numbers(self, capsys):
        output = print_summary(_make_report(), title="BTCUSDT 5M")
        assert "BTCUSDT 5M" in output
        assert "$10,002.00" in output
        assert "∞ (no losses)" in output
        assert "75.0% compliant" in output
        assert capsys.readouterr().out.strip() == output.strip()

    def test_finite_profit_factor(self):
        report = _make_report()
        report["summary"]["profitFactor"] = 1.5
        assert "1.50" in print_summary(report)
