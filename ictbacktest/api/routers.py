"""Internal API routers — /backtest and /analysis endpoints.

No business logic, no DB access.  Delegates to the runner, the repos and
the exchange client injected at startup.
"""

import logging
from dataclasses import fields
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse

from ictbacktest.config import BacktestSettings, Config
from ictbacktest.errors import BacktestPhaseError, FetchError, InputValidationError
from ictbacktest.market.exchange_client import ExchangeClient
from ictbacktest.market.models import normalize_timeframe
from ictbacktest.repos.backtest_repo import BacktestRepo
from ictbacktest.repos.candle_repo import CandleRepo
from ictbacktest.runner import BacktestRequest, BacktestRunner
from ictbacktest.strategy.base import SignalAdapter
from ictbacktest.strategy.features import extract_features, summarize_features

logger = logging.getLogger("ictbacktest")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_config: Optional[Config] = None                 # Set via configure_routers()
_client: Optional[ExchangeClient] = None         # Set via configure_routers()
_backtest_repo: Optional[BacktestRepo] = None    # Set via configure_routers()
_candle_repo: Optional[CandleRepo] = None        # Set via configure_routers()
_signal_adapter: Optional[SignalAdapter] = None  # Set via configure_routers()

_SETTINGS_FIELDS = {f.name for f in fields(BacktestSettings)}


def configure_routers(
    config: Config,
    client: Optional[ExchangeClient] = None,
    backtest_repo: Optional[BacktestRepo] = None,
    candle_repo: Optional[CandleRepo] = None,
    signal_adapter: Optional[SignalAdapter] = None,
) -> None:
    """Inject dependencies from the application startup.

    Args:
        config: Application configuration.
        client: Exchange client (or duck-type for tests).
        backtest_repo: Run storage; ``None`` disables history endpoints.
        candle_repo: Candle cache used by ``fromCache`` runs.
        signal_adapter: Adapter used when a request sets ``useLlm``.
    """
    global _config, _client, _backtest_repo, _candle_repo, _signal_adapter  # noqa: PLW0603
    _config = config
    _client = client or ExchangeClient(config)
    _backtest_repo = backtest_repo
    _candle_repo = candle_repo
    _signal_adapter = signal_adapter


def _error(status_code: int, *errors: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "errors": list(errors), **extra},
    )


def _parse_run_body(body: dict) -> tuple[BacktestRequest, BacktestSettings]:
    """Build the request and settings; raises ``ValueError`` on bad input."""
    missing = [k for k in ("symbol", "startDate", "endDate") if not body.get(k)]
    if missing:
        raise ValueError(f"Missing required field(s): {', '.join(missing)}")

    request = BacktestRequest(
        symbol=body["symbol"],
        start=body["startDate"],
        end=body["endDate"],
        execution_timeframe=body.get("executionTimeframe", _config.execution_timeframe),
        structure_timeframe=body.get("structureTimeframe", _config.structure_timeframe),
        use_structure=bool(body.get("useStructure", True)),
        from_cache=bool(body.get("fromCache", False)),
    )

    overrides = dict(body.get("settings") or {})
    unknown = sorted(set(overrides) - _SETTINGS_FIELDS)
    if unknown:
        raise ValueError(f"Unknown setting(s): {', '.join(unknown)}")
    if "initialCapital" in body:
        overrides.setdefault("initial_capital", float(body["initialCapital"]))
    return request, BacktestSettings.from_config(_config, **overrides)


# ── Backtests ────────────────────────────────────────────────────────────


@router.post("/backtest/run")
async def run_backtest(body: dict):
    """Run a backtest synchronously and return its report.

    Body: ``symbol``, ``startDate``, ``endDate`` (ISO-8601 or epoch ms),
    optional ``executionTimeframe``, ``structureTimeframe``,
    ``useStructure``, ``fromCache``, ``useLlm``, ``initialCapital`` and
    a ``settings`` object with ``BacktestSettings`` field names.
    """
    if _config is None:
        return _error(503, "API not configured")

    try:
        request, settings = _parse_run_body(body)
    except (ValueError, TypeError, InputValidationError) as exc:
        return _error(422, str(exc))

    adapter = None
    if body.get("useLlm"):
        if _signal_adapter is None:
            return _error(422, "useLlm requested but no signal adapter is configured")
        adapter = _signal_adapter

    runner = BacktestRunner(
        _config,
        client=_client,
        backtest_repo=_backtest_repo,
        candle_repo=_candle_repo,
        signal_adapter=adapter,
    )
    try:
        outcome = await runner.run(request, settings)
    except BacktestPhaseError as exc:
        status_code = 502 if isinstance(exc.cause, FetchError) else 500
        if isinstance(exc.cause, InputValidationError):
            status_code = 422
        return _error(status_code, str(exc), phase=exc.phase)

    return {"status": "ok", "runId": outcome.run_id, **outcome.report}


@router.get("/backtest/runs")
async def list_runs(limit: int = Query(default=10, ge=1, le=100)):
    """Return recent run summaries, newest first."""
    if _backtest_repo is None:
        return {"runs": []}
    return {"runs": _backtest_repo.get_runs(limit=limit)}


@router.get("/backtest/runs/{run_id}/trades")
async def get_run_trades(run_id: int):
    """Return the trade ledger of one stored run."""
    if _backtest_repo is None or _backtest_repo.get_run(run_id) is None:
        return _error(404, f"Backtest run {run_id} not found")
    trades = _backtest_repo.get_trades(run_id)
    return {"runId": run_id, "trades": trades, "total": len(trades)}


# ── Analysis ─────────────────────────────────────────────────────────────


@router.get("/analysis/{symbol}/{timeframe}")
async def get_analysis(
    symbol: str,
    timeframe: str,
    limit: int = Query(default=100, ge=10, le=1000),
):
    """Detect ICT patterns on the latest *limit* candles."""
    if _client is None:
        return _error(503, "API not configured")
    try:
        tf = normalize_timeframe(timeframe)
    except ValueError as exc:
        return _error(422, str(exc))

    try:
        candles = await _client.fetch_recent(symbol, tf, limit=limit)
    except FetchError as exc:
        logger.warning("Analysis fetch for %s %s failed: %s", symbol, tf, exc)
        return _error(502, str(exc))

    features = extract_features(candles)
    return {
        "symbol": symbol.upper(),
        "timeframe": tf,
        "candles": len(candles),
        "summary": summarize_features(candles, features),
        **features.to_dict(),
    }
