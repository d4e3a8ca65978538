"""ICT Backtest — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
running a single backtest from the terminal.
"""

import logging

from fastapi import FastAPI

from ictbacktest.api.routers import router

app = FastAPI(title="ICT Backtest API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("ictbacktest")


@app.get("/health")
async def health():
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _build_parser():
    import argparse

    from ictbacktest.config import ExitMode, SizingMode

    parser = argparse.ArgumentParser(description="ICT strategy backtester")
    parser.add_argument("--env", default=None, help="Path to a .env file")
    sub = parser.add_subparsers(dest="command", required=True)

    bt = sub.add_parser("backtest", help="Run one backtest and print the summary")
    bt.add_argument("--symbol", help="Instrument, e.g. BTCUSDT (default: SYMBOL)")
    bt.add_argument("--start", required=True, help="Start date (ISO-8601)")
    bt.add_argument("--end", required=True, help="End date (ISO-8601)")
    bt.add_argument("--execution-timeframe", help="Default: EXECUTION_TIMEFRAME")
    bt.add_argument("--structure-timeframe", help="Default: STRUCTURE_TIMEFRAME")
    bt.add_argument(
        "--no-structure", action="store_true",
        help="Derive confluence from the execution candles only",
    )
    bt.add_argument(
        "--from-cache", action="store_true",
        help="Read candles from the local database instead of the exchange",
    )
    bt.add_argument("--llm", action="store_true", help="Confirm signals with Claude")
    bt.add_argument(
        "--exit-mode", choices=[m.value for m in ExitMode],
        default=ExitMode.SIGNAL_FLIP.value,
    )
    bt.add_argument(
        "--sizing-mode", choices=[m.value for m in SizingMode],
        default=SizingMode.FIXED_NOTIONAL.value,
    )
    bt.add_argument("--min-confluence", type=int, default=2)
    bt.add_argument("--trade-size", type=float, default=100.0)
    bt.add_argument("--warmup", type=int, default=100)
    bt.add_argument("--slippage", type=float, default=0.0, help="Entry slippage in percent")
    bt.add_argument(
        "--output-dir", default=None,
        help="Write trades.csv, equity.csv and report.json here",
    )

    serve = sub.add_parser("serve", help="Start the API server")
    serve.add_argument("--port", type=int, default=None, help="Default: API_PORT")
    return parser


def _run_cli(argv=None) -> int:
    """Parse CLI arguments and dispatch.  Returns the exit code."""
    from ictbacktest.config import load_config
    from ictbacktest.repos.db import init_db

    args = _build_parser().parse_args(argv)
    config = load_config(args.env)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    init_db(config.db_path)

    if args.command == "serve":
        _serve(config, args.port or config.api_port)
        return 0
    return _run_backtest(config, args)


def _signal_adapter(config, enabled: bool):
    from ictbacktest.strategy.llm_signal import ClaudeSignalAdapter

    if not enabled:
        return None
    if not config.llm_enabled:
        raise SystemExit("--llm requires ANTHROPIC_API_KEY to be set")
    return ClaudeSignalAdapter.from_config(config)


def _serve(config, port: int) -> None:
    """Wire the routers and run uvicorn in the foreground."""
    import uvicorn

    from ictbacktest.api.routers import configure_routers
    from ictbacktest.market.exchange_client import ExchangeClient
    from ictbacktest.repos.backtest_repo import BacktestRepo
    from ictbacktest.repos.candle_repo import CandleRepo

    configure_routers(
        config,
        client=ExchangeClient(config),
        backtest_repo=BacktestRepo(config.db_path),
        candle_repo=CandleRepo(config.db_path),
        signal_adapter=_signal_adapter(config, config.llm_enabled),
    )
    logger.info("API available at http://localhost:%d", port)
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")


def _run_backtest(config, args) -> int:
    """Run one backtest, print its summary and optionally export files."""
    import asyncio
    from pathlib import Path

    from ictbacktest.backtest.report import export_report
    from ictbacktest.cli.summary import print_summary
    from ictbacktest.config import BacktestSettings
    from ictbacktest.errors import BacktestError
    from ictbacktest.repos.backtest_repo import BacktestRepo
    from ictbacktest.repos.candle_repo import CandleRepo
    from ictbacktest.runner import BacktestRequest, BacktestRunner

    try:
        request = BacktestRequest(
            symbol=args.symbol or config.symbol,
            start=args.start,
            end=args.end,
            execution_timeframe=args.execution_timeframe or config.execution_timeframe,
            structure_timeframe=args.structure_timeframe or config.structure_timeframe,
            use_structure=not args.no_structure,
            from_cache=args.from_cache,
        )
        settings = BacktestSettings.from_config(
            config,
            exit_mode=args.exit_mode,
            sizing_mode=args.sizing_mode,
            min_confluence_for_trade=args.min_confluence,
            trade_size=args.trade_size,
            warmup_candles=args.warmup,
            slippage_pct=args.slippage,
        )
    except (ValueError, BacktestError) as exc:
        logger.error("Invalid backtest arguments: %s", exc)
        return 1

    runner = BacktestRunner(
        config,
        backtest_repo=BacktestRepo(config.db_path),
        candle_repo=CandleRepo(config.db_path),
        signal_adapter=_signal_adapter(config, args.llm),
    )

    try:
        outcome = asyncio.run(runner.run(request, settings))
    except BacktestError as exc:
        logger.error("%s", exc)
        return 1

    report = outcome.report
    print_summary(report, title=f"{request.symbol} {request.execution_timeframe} Backtest")

    if args.output_dir:
        export_report(report, Path(args.output_dir))
    return 0


if __name__ == "__main__":
    raise SystemExit(_run_cli())
