"""Backtest orchestration — fetch, simulate, aggregate, persist.

A run either returns a complete report or raises one
``BacktestPhaseError`` naming the phase that failed.  Persistence runs
last and its failures are logged, never raised.
"""

import asyncio
import logging
import sqlite3
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Optional

from ictbacktest.backtest.engine import BacktestEngine
from ictbacktest.backtest.report import build_report
from ictbacktest.backtest.stats import calculate_stats
from ictbacktest.config import BacktestSettings, Config
from ictbacktest.errors import (
    BacktestCancelledError,
    BacktestPhaseError,
    InsufficientDataError,
)
from ictbacktest.market.exchange_client import ExchangeClient
from ictbacktest.market.models import (
    TIMEFRAME_DURATIONS,
    Candle,
    normalize_timeframe,
    parse_timestamp,
)
from ictbacktest.repos.backtest_repo import BacktestRepo
from ictbacktest.repos.candle_repo import CandleRepo
from ictbacktest.strategy.base import SignalAdapter

logger = logging.getLogger("ictbacktest")


@dataclass(frozen=True)
class BacktestRequest:
    """What to backtest.

    ``use_structure=False`` derives confluence from the execution candles
    alone.  ``from_cache=True`` reads candles from the local
    ``market_data`` table instead of the exchange.
    """

    symbol: str
    start: datetime
    end: datetime
    execution_timeframe: str = "5M"
    structure_timeframe: str = "1H"
    use_structure: bool = True
    from_cache: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "symbol", self.symbol.upper())
        object.__setattr__(self, "start", parse_timestamp(self.start))
        object.__setattr__(self, "end", parse_timestamp(self.end))
        object.__setattr__(
            self, "execution_timeframe", normalize_timeframe(self.execution_timeframe),
        )
        object.__setattr__(
            self, "structure_timeframe", normalize_timeframe(self.structure_timeframe),
        )
        if self.end <= self.start:
            raise ValueError(
                f"end ({self.end.isoformat()}) must be after start ({self.start.isoformat()})"
            )


@dataclass(frozen=True)
class RunOutcome:
    report: dict
    run_id: Optional[int] = None


@dataclass(frozen=True)
class _MarketData:
    execution: list[Candle]
    daily: list[Candle]
    structure: Optional[list[Candle]]


class BacktestRunner:
    """Runs one backtest end to end.

    Args:
        config: Application configuration.
        client: Exchange client (built from *config* when omitted).
        backtest_repo: Where finished runs are stored; ``None`` skips it.
        candle_repo: Candle cache, read with ``from_cache`` and written
            after every exchange fetch; ``None`` disables both.
        signal_adapter: Optional external signal source.
    """

    def __init__(
        self,
        config: Config,
        client: Optional[ExchangeClient] = None,
        backtest_repo: Optional[BacktestRepo] = None,
        candle_repo: Optional[CandleRepo] = None,
        signal_adapter: Optional[SignalAdapter] = None,
    ) -> None:
        self._config = config
        self._client = client or ExchangeClient(config)
        self._backtest_repo = backtest_repo
        self._candle_repo = candle_repo
        self._adapter = signal_adapter

    # ── Public API ───────────────────────────────────────────────────────

    async def run(
        self,
        request: BacktestRequest,
        settings: BacktestSettings,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunOutcome:
        """Fetch → simulate → aggregate → persist.

        Raises:
            BacktestPhaseError: ``phase`` is ``"fetch"``, ``"simulate"`` or
                ``"aggregate"``; ``cause`` holds the original error.  An
                empty execution series fails the fetch phase with an
                ``InsufficientDataError`` cause.
            BacktestCancelledError: If *cancel_event* was set mid-run.
        """
        try:
            data = await self._load(request, settings)
        except Exception as exc:
            logger.error("Backtest fetch failed: %s", exc)
            raise BacktestPhaseError("fetch", exc) from exc

        engine = BacktestEngine(
            settings,
            symbol=request.symbol,
            execution_timeframe=request.execution_timeframe,
            structure_timeframe=request.structure_timeframe,
            signal_adapter=self._adapter,
        )
        try:
            result = await engine.run(
                data.execution, data.daily, data.structure, cancel_event=cancel_event,
            )
        except BacktestCancelledError:
            logger.info("Backtest %s cancelled", request.symbol)
            raise
        except Exception as exc:
            logger.error("Backtest simulation failed: %s", exc)
            raise BacktestPhaseError("simulate", exc) from exc

        try:
            stats = calculate_stats(
                result.trades,
                result.equity_curve,
                result.initial_capital,
                result.final_balance,
                result.max_drawdown_pct,
                settings.annual_risk_free_rate,
            )
            report = build_report(result, stats)
        except Exception as exc:
            logger.error("Backtest aggregation failed: %s", exc)
            raise BacktestPhaseError("aggregate", exc) from exc

        run_id = self._persist(request, settings, report)
        return RunOutcome(report=report, run_id=run_id)

    # ── Fetch ────────────────────────────────────────────────────────────

    async def _load(self, request: BacktestRequest, settings: BacktestSettings) -> _MarketData:
        # Enough history before the start for the first bias and window
        daily_start = request.start - timedelta(days=2)
        structure_start = request.start - (
            TIMEFRAME_DURATIONS[request.structure_timeframe] * settings.feature_lookback
        )

        execution = await self._candles(
            request, request.execution_timeframe, request.start, request.end,
        )
        if not execution:
            raise InsufficientDataError(
                f"No {request.execution_timeframe} candles for {request.symbol} "
                f"between {request.start.isoformat()} and {request.end.isoformat()}"
            )
        daily = await self._candles(request, "D", daily_start, request.end)
        structure = None
        if request.use_structure:
            structure = await self._candles(
                request, request.structure_timeframe, structure_start, request.end,
            )
        return _MarketData(execution=execution, daily=daily, structure=structure)

    async def _candles(
        self, request: BacktestRequest, timeframe: str, start: datetime, end: datetime,
    ) -> list[Candle]:
        if request.from_cache:
            if self._candle_repo is None:
                raise ValueError("from_cache requires a candle repository")
            candles = self._candle_repo.get_candles(request.symbol, timeframe, start, end)
            logger.info(
                "Loaded %d cached %s %s candles", len(candles), request.symbol, timeframe,
            )
            return candles

        candles = await self._client.fetch_candles(request.symbol, timeframe, start, end)
        if self._candle_repo is not None and candles:
            try:
                self._candle_repo.upsert_candles(request.symbol, timeframe, candles)
            except (sqlite3.Error, OSError) as exc:
                logger.warning("Could not cache %s %s candles: %s", request.symbol, timeframe, exc)
        return candles

    # ── Persist ──────────────────────────────────────────────────────────

    def _persist(
        self, request: BacktestRequest, settings: BacktestSettings, report: dict,
    ) -> Optional[int]:
        if self._backtest_repo is None:
            return None
        meta = {
            "symbol": request.symbol,
            "data_source": "cache" if request.from_cache else self._client.source,
            "execution_timeframe": request.execution_timeframe,
            "structure_timeframe": request.structure_timeframe if request.use_structure else None,
            "start_date": request.start.isoformat(),
            "end_date": request.end.isoformat(),
            "settings": asdict(settings),
        }
        try:
            run_id = self._backtest_repo.save_run(meta, report)
        except (sqlite3.Error, OSError, KeyError) as exc:
            logger.error("Failed to persist backtest run: %s", exc)
            return None
        logger.info("Backtest run %d saved", run_id)
        return run_id
