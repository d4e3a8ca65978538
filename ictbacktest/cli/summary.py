"""CLI summary — prints a backtest report to the console."""


def print_summary(report: dict, title: str = "Backtest") -> str:
    """Format and print the headline numbers of a report.

    Args:
        report: Output of ``build_report``.
        title: Shown in the header line.

    Returns:
        The formatted string (also printed to stdout).
    """
    summary = report.get("summary", {})
    quality = report.get("qualityBreakdown", {})
    sessions = report.get("sessionBreakdown", {})
    compliance = report.get("ruleCompliance", {})

    profit_factor = summary.get("profitFactor", 0.0)
    pf_str = f"{profit_factor:.2f}" if profit_factor < 999 else "∞ (no losses)"

    lines = [
        f"──────────────── {title} ────────────────",
        f"  Initial Capital:  ${summary.get('initialCapital', 0.0):,.2f}",
        f"  Final Balance:    ${summary.get('finalBalance', 0.0):,.2f}",
        f"  Total Profit:     ${summary.get('totalProfit', 0.0):,.2f} "
        f"({summary.get('totalReturnPct', 0.0):.2f}%)",
        f"  Max Drawdown:     {summary.get('maxDrawdownPct', 0.0):.2f}%",
        f"  Sharpe Ratio:     {summary.get('sharpeRatio', 0.0):.2f}",
        f"  Trades:           {summary.get('totalTrades', 0)} "
        f"({summary.get('winningTrades', 0)} W / {summary.get('losingTrades', 0)} L)",
        f"  Win Rate:         {summary.get('winRatePct', 0.0):.2f}%",
        f"  Profit Factor:    {pf_str}",
        f"  Avg Win / Loss:   ${summary.get('avgWin', 0.0):,.2f} / "
        f"${summary.get('avgLoss', 0.0):,.2f}",
        f"  Quality:          A+ {quality.get('aPlus', 0)}  A {quality.get('a', 0)}  "
        f"B {quality.get('b', 0)}",
        f"  Sessions:         Asia {sessions.get('asia', 0)}  "
        f"London {sessions.get('london', 0)}  NY {sessions.get('ny', 0)}",
        f"  Signals:          {compliance.get('signalsEvaluated', 0)} evaluated, "
        f"{compliance.get('ruleViolations', 0)} violations "
        f"({compliance.get('complianceRate', 100.0):.1f}% compliant)",
        "─" * (len(title) + 34),
    ]
    output = "\n".join(lines)
    print(output)
    return output
