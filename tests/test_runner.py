"""Tests for ictbacktest.runner — fetch, simulate, aggregate, persist."""

import asyncio
import math
import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from ictbacktest.config import BacktestSettings, Config
from ictbacktest.errors import (
    BacktestCancelledError,
    BacktestPhaseError,
    FetchError,
    InputValidationError,
    InsufficientDataError,
)
from ictbacktest.market.models import Candle
from ictbacktest.repos.backtest_repo import BacktestRepo
from ictbacktest.repos.candle_repo import CandleRepo
from ictbacktest.repos.db import init_db
from ictbacktest.runner import BacktestRequest, BacktestRunner

_DAY1 = datetime(2024, 1, 1, tzinfo=timezone.utc)
_DAY2 = datetime(2024, 1, 2, tzinfo=timezone.utc)


def _make_config(db_path: str = "data/test.db") -> Config:
    return Config(
        data_source="binance",
        symbol="BTCUSDT",
        execution_timeframe="5M",
        structure_timeframe="1H",
        initial_capital=10_000.0,
        db_path=db_path,
        log_level="INFO",
        api_port=8080,
        anthropic_api_key="",
        anthropic_model="claude-sonnet-4-5",
        signal_timeout_seconds=30.0,
    )


def _series(start, step, n, base=50000.0):
    candles = []
    for k in range(n):
        mid = base + 600 * math.sin(k / 7) + 200 * math.sin(k / 2.1)
        o = mid - 30 * math.cos(k)
        c = mid + 30 * math.cos(k / 1.3)
        candles.append(
            Candle(start + step * k, o, max(o, c) + 20, min(o, c) - 20, c, 1.0)
        )
    return candles


def _market():
    return {
        "5M": _series(_DAY2, timedelta(minutes=5), 288),
        "1H": _series(_DAY1 - timedelta(days=4), timedelta(hours=1), 24 * 6),
        "D": [
            Candle(_DAY1 - timedelta(days=1), 100, 120, 90, 110),
            Candle(_DAY1, 100, 120, 90, 115),
            Candle(_DAY2, 100, 120, 90, 95),
        ],
    }


class _FakeClient:
    source = "binance"

    def __init__(self, series=None, error=None):
        self.series = series if series is not None else _market()
        self.error = error
        self.calls = []

    async def fetch_candles(self, symbol, timeframe, start, end):
        self.calls.append((timeframe, start, end))
        if self.error is not None:
            raise self.error
        return [c for c in self.series.get(timeframe, []) if start <= c.timestamp <= end]


def _request(**overrides):
    values = {
        "symbol": "btcusdt",
        "start": "2024-01-02T00:00:00Z",
        "end": "2024-01-02T23:55:00Z",
    }
    values.update(overrides)
    return BacktestRequest(**values)


def _settings(**overrides):
    values = {"warmup_candles": 20, "swing_lookback": 3, "min_confluence_for_trade": 1}
    values.update(overrides)
    return BacktestSettings(**values)


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "runner.db")
    init_db(path)
    return path


# ── Request ──────────────────────────────────────────────────────────────


class TestBacktestRequest:
    def test_normalises_fields(self):
        request = _request(execution_timeframe="15m", structure_timeframe="4h")
        assert request.symbol == "BTCUSDT"
        assert request.start == _DAY2
        assert request.execution_timeframe == "15M"
        assert request.structure_timeframe == "4H"

    def test_end_must_follow_start(self):
        with pytest.raises(ValueError, match="must be after"):
            _request(end="2024-01-01T00:00:00Z")

    def test_unknown_timeframe(self):
        with pytest.raises(ValueError, match="Unsupported timeframe"):
            _request(execution_timeframe="2M")


# ── Runner ───────────────────────────────────────────────────────────────


class TestBacktestRunner:
    @pytest.mark.asyncio
    async def test_full_run_persists(self, db_path):
        client = _FakeClient()
        repo = BacktestRepo(db_path)
        runner = BacktestRunner(
            _make_config(db_path), client=client,
            backtest_repo=repo, candle_repo=CandleRepo(db_path),
        )
        outcome = await runner.run(_request(), _settings())

        assert outcome.run_id is not None
        report = outcome.report
        assert len(report["equityCurve"]) == 288
        assert report["summary"]["totalTrades"] == len(report["trades"])

        run = repo.get_run(outcome.run_id)
        assert run["symbol"] == "BTCUSDT"
        assert run["data_source"] == "binance"
        assert run["total_trades"] == report["summary"]["totalTrades"]
        assert len(repo.get_trades(outcome.run_id)) == len(report["trades"])

        # every fetched series lands in the cache
        cached = CandleRepo(db_path).get_candles("BTCUSDT", "5M")
        assert len(cached) == 288

    @pytest.mark.asyncio
    async def test_fetch_windows(self):
        client = _FakeClient()
        settings = _settings(feature_lookback=50)
        await BacktestRunner(_make_config(), client=client).run(_request(), settings)

        windows = {tf: (start, end) for tf, start, end in client.calls}
        assert windows["5M"][0] == _DAY2
        assert windows["D"][0] == _DAY2 - timedelta(days=2)
        assert windows["1H"][0] == _DAY2 - timedelta(hours=50)

    @pytest.mark.asyncio
    async def test_without_structure(self):
        client = _FakeClient()
        await BacktestRunner(_make_config(), client=client).run(
            _request(use_structure=False), _settings(),
        )
        assert [tf for tf, _, _ in client.calls] == ["5M", "D"]

    @pytest.mark.asyncio
    async def test_no_execution_candles(self):
        client = _FakeClient(series={"5M": [], "D": [], "1H": []})
        with pytest.raises(BacktestPhaseError) as excinfo:
            await BacktestRunner(_make_config(), client=client).run(_request(), _settings())
        assert excinfo.value.phase == "fetch"
        assert isinstance(excinfo.value.cause, InsufficientDataError)

    @pytest.mark.asyncio
    async def test_fetch_error(self):
        client = _FakeClient(error=FetchError("binance down"))
        with pytest.raises(BacktestPhaseError) as excinfo:
            await BacktestRunner(_make_config(), client=client).run(_request(), _settings())
        assert excinfo.value.phase == "fetch"
        assert isinstance(excinfo.value.cause, FetchError)

    @pytest.mark.asyncio
    async def test_simulation_error(self):
        market = _market()
        market["5M"] = market["5M"][:3] + [market["5M"][1]]
        client = _FakeClient(series=market)

        # the fake filters but keeps order, so the duplicate survives
        with pytest.raises(BacktestPhaseError) as excinfo:
            await BacktestRunner(_make_config(), client=client).run(_request(), _settings())
        assert excinfo.value.phase == "simulate"
        assert isinstance(excinfo.value.cause, InputValidationError)

    @pytest.mark.asyncio
    async def test_cancellation_is_not_wrapped(self):
        event = asyncio.Event()
        event.set()
        with pytest.raises(BacktestCancelledError):
            await BacktestRunner(_make_config(), client=_FakeClient()).run(
                _request(), _settings(), cancel_event=event,
            )

    @pytest.mark.asyncio
    async def test_from_cache(self, db_path):
        cache = CandleRepo(db_path)
        for tf, candles in _market().items():
            cache.upsert_candles("BTCUSDT", tf, candles)
        client = _FakeClient(error=AssertionError("exchange must not be called"))

        outcome = await BacktestRunner(
            _make_config(db_path), client=client,
            backtest_repo=BacktestRepo(db_path), candle_repo=cache,
        ).run(_request(from_cache=True), _settings())

        assert client.calls == []
        assert len(outcome.report["equityCurve"]) == 288
        assert BacktestRepo(db_path).get_run(outcome.run_id)["data_source"] == "cache"

    @pytest.mark.asyncio
    async def test_from_cache_requires_repo(self):
        with pytest.raises(BacktestPhaseError) as excinfo:
            await BacktestRunner(_make_config(), client=_FakeClient()).run(
                _request(from_cache=True), _settings(),
            )
        assert isinstance(excinfo.value.cause, ValueError)

    @pytest.mark.asyncio
    async def test_persistence_failure_is_logged(self):
        repo = MagicMock()
        repo.save_run.side_effect = sqlite3.OperationalError("disk I/O error")
        outcome = await BacktestRunner(
            _make_config(), client=_FakeClient(), backtest_repo=repo,
        ).run(_request(), _settings())
        assert outcome.run_id is None
        assert "summary" in outcome.report
