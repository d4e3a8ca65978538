"""Report assembly and file exports.

``build_report`` turns an engine result plus its statistics into the
JSON-serialisable structure served by the API and written by the CLI.
Trade lists and equity curves can also be exported as CSV via pandas.
"""

import json
import logging
from pathlib import Path

import pandas as pd

from ictbacktest.backtest.engine import BacktestResult

logger = logging.getLogger("ictbacktest")


def build_report(result: BacktestResult, stats: dict) -> dict:
    """Assemble the camelCase report for one run."""
    quality = stats["quality_breakdown"]
    session = stats["session_breakdown"]
    counters = result.counters
    return {
        "summary": {
            "initialCapital": stats["initial_capital"],
            "finalBalance": stats["final_balance"],
            "totalProfit": stats["total_profit"],
            "totalReturnPct": stats["total_return_pct"],
            "maxDrawdownPct": stats["max_drawdown_pct"],
            "winRatePct": stats["win_rate_pct"],
            "profitFactor": stats["profit_factor"],
            "sharpeRatio": stats["sharpe_ratio"],
            "totalTrades": stats["total_trades"],
            "winningTrades": stats["winning_trades"],
            "losingTrades": stats["losing_trades"],
            "avgWin": stats["avg_win"],
            "avgLoss": stats["avg_loss"],
        },
        "trades": [t.to_dict() for t in result.trades],
        "equityCurve": [p.to_dict() for p in result.equity_curve],
        "qualityBreakdown": {
            "aPlus": quality.get("A+", 0),
            "a": quality.get("A", 0),
            "b": quality.get("B", 0),
        },
        "sessionBreakdown": {
            "asia": session.get("ASIA", 0),
            "london": session.get("LONDON", 0),
            "ny": session.get("NY", 0),
        },
        "ruleCompliance": {
            "signalsEvaluated": counters.signals_evaluated,
            "ruleViolations": counters.rule_violations,
            "complianceRate": round(counters.compliance_rate, 2),
            "entriesOpened": counters.entries_opened,
            "evaluationFailures": counters.evaluation_failures,
        },
    }


# ── Exports ──────────────────────────────────────────────────────────────


_TRADE_COLUMNS = [
    "entryTime", "exitTime", "side", "entryPrice", "exitPrice", "quantity",
    "notional", "profit", "profitPercent", "quality", "session",
    "exitReason", "entryReason",
]
_EQUITY_COLUMNS = ["timestamp", "equity", "balance"]


def trades_frame(trades: list[dict]) -> pd.DataFrame:
    """One row per trade, in ledger order.  Takes ``report["trades"]``."""
    return pd.DataFrame(trades, columns=_TRADE_COLUMNS)


def equity_frame(equity_curve: list[dict]) -> pd.DataFrame:
    return pd.DataFrame(equity_curve, columns=_EQUITY_COLUMNS)


def export_trades_csv(trades: list[dict], path: Path) -> Path:
    """Write the trade ledger to *path*, creating directories as needed."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    trades_frame(trades).to_csv(path, index=False)
    logger.info("Saved %d trades → %s", len(trades), path)
    return path


def export_equity_csv(equity_curve: list[dict], path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    equity_frame(equity_curve).to_csv(path, index=False)
    logger.info("Saved %d equity points → %s", len(equity_curve), path)
    return path


def save_report_json(report: dict, path: Path) -> Path:
    """Write *report* as indented JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(report, indent=2), encoding="utf-8")
    logger.info("Saved report → %s", path)
    return path


def export_report(report: dict, out_dir: Path) -> None:
    """Write ``trades.csv``, ``equity.csv`` and ``report.json`` to *out_dir*."""
    out_dir = Path(out_dir)
    export_trades_csv(report["trades"], out_dir / "trades.csv")
    export_equity_csv(report["equityCurve"], out_dir / "equity.csv")
    save_report_json(report, out_dir / "report.json")
