"""Backtest run repository — persists reports, trades and equity to SQLite."""

import json
from typing import Optional

from ictbacktest.repos.db import get_connection


class BacktestRepo:
    """Data access layer for ``backtest_runs``, ``backtest_trades`` and
    ``equity_points``.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def save_run(self, meta: dict, report: dict) -> int:
        """Persist one run and its ledger in a single transaction.

        Args:
            meta: ``symbol``, ``execution_timeframe``, ``start_date``,
                ``end_date`` and optionally ``structure_timeframe``,
                ``data_source`` and ``settings`` (a JSON-able dict).
            report: Output of ``build_report``.

        Returns:
            The new run id.
        """
        summary = report["summary"]
        compliance = report.get("ruleCompliance", {})
        conn = get_connection(self._db_path)
        try:
            with conn:
                cur = conn.execute(
                    """
                    INSERT INTO backtest_runs
                        (symbol, data_source, execution_timeframe,
                         structure_timeframe, start_date, end_date,
                         settings_json, initial_capital, final_balance,
                         total_profit, total_return_pct, max_drawdown_pct,
                         win_rate_pct, profit_factor, sharpe_ratio,
                         total_trades, winning_trades, losing_trades,
                         signals_evaluated, rule_violations)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        meta["symbol"],
                        meta.get("data_source"),
                        meta["execution_timeframe"],
                        meta.get("structure_timeframe"),
                        meta["start_date"],
                        meta["end_date"],
                        json.dumps(meta.get("settings", {}), default=str),
                        summary["initialCapital"],
                        summary["finalBalance"],
                        summary["totalProfit"],
                        summary["totalReturnPct"],
                        summary["maxDrawdownPct"],
                        summary["winRatePct"],
                        summary["profitFactor"],
                        summary["sharpeRatio"],
                        summary["totalTrades"],
                        summary["winningTrades"],
                        summary["losingTrades"],
                        compliance.get("signalsEvaluated", 0),
                        compliance.get("ruleViolations", 0),
                    ),
                )
                run_id = cur.lastrowid
                conn.executemany(
                    """
                    INSERT INTO backtest_trades
                        (run_id, side, entry_price, entry_time, exit_price,
                         exit_time, quantity, notional, profit, profit_percent,
                         quality, session, exit_reason, entry_reason)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            run_id, t["side"], t["entryPrice"], t["entryTime"],
                            t["exitPrice"], t["exitTime"], t["quantity"],
                            t["notional"], t["profit"], t["profitPercent"],
                            t["quality"], t["session"], t["exitReason"],
                            t["entryReason"],
                        )
                        for t in report["trades"]
                    ],
                )
                conn.executemany(
                    "INSERT INTO equity_points (run_id, timestamp, equity, balance) "
                    "VALUES (?, ?, ?, ?)",
                    [
                        (run_id, p["timestamp"], p["equity"], p["balance"])
                        for p in report["equityCurve"]
                    ],
                )
            return run_id
        finally:
            conn.close()

    def get_runs(self, limit: int = 10) -> list[dict]:
        """Return recent run summaries, newest first."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM backtest_runs ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def get_run(self, run_id: int) -> Optional[dict]:
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM backtest_runs WHERE id = ?", (run_id,),
            ).fetchone()
            return dict(row) if row else None
        finally:
            conn.close()

    def get_trades(self, run_id: int) -> list[dict]:
        """Return the trades of *run_id* in ledger order."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM backtest_trades WHERE run_id = ? ORDER BY id",
                (run_id,),
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def get_equity_curve(self, run_id: int) -> list[dict]:
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT timestamp, equity, balance FROM equity_points "
                "WHERE run_id = ? ORDER BY id",
                (run_id,),
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()
