"""Backtest engine — walks execution candles forward through the strategy.

For every execution candle, in order: evaluate a signal from data that
was closed by the candle's close, apply exits, apply an entry when
flat, then record equity.  Any position still open after the last
candle is closed at its close.  No real orders are placed.
"""

import asyncio
import logging
from bisect import bisect_right
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ictbacktest.backtest.account import Account, EquityPoint, ExitReason, Position, Trade
from ictbacktest.config import BacktestSettings, ExitMode, SizingMode
from ictbacktest.errors import (
    BacktestCancelledError,
    EvaluationError,
    InputValidationError,
)
from ictbacktest.market.models import (
    TIMEFRAME_DURATIONS,
    Candle,
    normalize_timeframe,
    validate_series,
)
from ictbacktest.risk.position_sizer import fixed_notional_quantity, risk_based_quantity
from ictbacktest.risk.sl_tp import apply_slippage
from ictbacktest.strategy.base import SignalAdapter
from ictbacktest.strategy.features import extract_features
from ictbacktest.strategy.models import MarketContext, Side, Signal
from ictbacktest.strategy.session_filter import daily_bias, killzone
from ictbacktest.strategy.signals import decide, has_setup, reconcile_external_signal

logger = logging.getLogger("ictbacktest")


@dataclass
class RunCounters:
    """Per-run bookkeeping reported under ``ruleCompliance``."""

    signals_evaluated: int = 0
    rule_violations: int = 0
    entries_opened: int = 0
    evaluation_failures: int = 0

    @property
    def compliance_rate(self) -> float:
        """Share of evaluated signals that agreed with the bias, in percent."""
        if self.signals_evaluated == 0:
            return 100.0
        return (
            (self.signals_evaluated - self.rule_violations)
            / self.signals_evaluated * 100.0
        )


@dataclass(frozen=True)
class BacktestResult:
    """Everything one run produced, before statistics."""

    trades: list[Trade]
    equity_curve: list[EquityPoint]
    initial_capital: float
    final_balance: float
    peak_equity: float
    max_drawdown_pct: float
    counters: RunCounters = field(default_factory=RunCounters)


class BacktestEngine:
    """Simulates the ICT strategy on historical candles.

    Each ``run`` call owns a fresh ``Account``, so one engine can serve
    several concurrent runs.

    Args:
        settings: Strategy and simulation rules.
        symbol: Instrument name passed to the signal adapter.
        execution_timeframe: Timeframe of the candles being walked.
        structure_timeframe: Timeframe of the candles used for confluence.
        signal_adapter: Optional external signal source (e.g. an LLM).
    """

    def __init__(
        self,
        settings: BacktestSettings,
        symbol: str = "BTCUSDT",
        execution_timeframe: str = "5M",
        structure_timeframe: str = "1H",
        signal_adapter: Optional[SignalAdapter] = None,
    ) -> None:
        self._settings = settings
        self._symbol = symbol
        self._execution_tf = normalize_timeframe(execution_timeframe)
        self._structure_tf = normalize_timeframe(structure_timeframe)
        self._adapter = signal_adapter

    @property
    def settings(self) -> BacktestSettings:
        return self._settings

    # ── Public API ───────────────────────────────────────────────────────

    async def run(
        self,
        execution_candles: list[Candle],
        daily_candles: list[Candle],
        structure_candles: Optional[list[Candle]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BacktestResult:
        """Execute a full backtest.

        Args:
            execution_candles: Candles walked one by one (entries/exits
                fill at their close).
            daily_candles: Daily candles for the previous-day bias.  An
                empty list means no bias, hence no trades.
            structure_candles: Higher-timeframe candles for confluence.
                When omitted, the execution candles before the current
                one are used instead.
            cancel_event: Checked once per candle; when set the run
                stops with ``BacktestCancelledError``.

        Raises:
            InputValidationError: If any series is empty where required,
                malformed, or not strictly ascending.
            BacktestCancelledError: If *cancel_event* was set.
            InvariantViolationError: On an account state-machine bug.
        """
        s = self._settings
        execution = validate_series(execution_candles, "execution")
        daily = validate_series(daily_candles, "daily") if daily_candles else []
        structure = (
            validate_series(structure_candles, "structure") if structure_candles else None
        )

        # A structure candle is usable once it has closed by the
        # execution candle's close.
        structure_closes: list[datetime] = []
        if structure is not None:
            duration = TIMEFRAME_DURATIONS[self._structure_tf]
            structure_closes = [c.timestamp + duration for c in structure]

        logger.info(
            "Backtest %s: %d %s candles (%s → %s), %d daily, %s structure, "
            "exit=%s sizing=%s adapter=%s",
            self._symbol, len(execution), self._execution_tf,
            execution[0].timestamp.isoformat(), execution[-1].timestamp.isoformat(),
            len(daily), len(structure) if structure is not None else "no",
            s.exit_mode.value, s.sizing_mode.value,
            type(self._adapter).__name__ if self._adapter else "none",
        )

        account = Account(s.initial_capital)
        counters = RunCounters()

        for i, candle in enumerate(execution):
            if cancel_event is not None and cancel_event.is_set():
                raise BacktestCancelledError(
                    f"Backtest cancelled at candle {i} ({candle.timestamp.isoformat()})"
                )

            flip = False
            signal: Optional[Signal] = None
            if i >= s.warmup_candles:
                try:
                    flip, signal = await self._evaluate(
                        i, execution, daily, structure, structure_closes, counters,
                    )
                except (EvaluationError, InputValidationError, ValueError, ArithmeticError) as exc:
                    counters.evaluation_failures += 1
                    logger.warning(
                        "Skipping candle %s: evaluation failed (%s)",
                        candle.timestamp.isoformat(), exc,
                    )

            # 1 — Exit
            self._apply_exit(account, candle, flip)

            # 2 — Entry (only when flat, possibly right after an exit)
            if signal is not None and account.is_flat:
                self._apply_entry(account, candle, signal, counters)

            # 3 — Equity / drawdown
            account.mark(candle.timestamp, candle.close)

        if not account.is_flat:
            last = execution[-1]
            account.close(last.close, last.timestamp, ExitReason.PERIOD_END)

        logger.info(
            "Backtest %s complete: %d trades, balance %.2f, max drawdown %.2f%%",
            self._symbol, len(account.trades), account.balance, account.max_drawdown_pct,
        )
        return BacktestResult(
            trades=account.trades,
            equity_curve=account.equity_curve,
            initial_capital=s.initial_capital,
            final_balance=account.balance,
            peak_equity=account.peak_equity,
            max_drawdown_pct=account.max_drawdown_pct,
            counters=counters,
        )

    # ── Signal evaluation ────────────────────────────────────────────────

    def _structure_window(
        self,
        i: int,
        execution: list[Candle],
        structure: Optional[list[Candle]],
        structure_closes: list[datetime],
    ) -> list[Candle]:
        lookback = self._settings.feature_lookback
        if structure is None:
            return execution[max(0, i - lookback):i]
        cutoff = execution[i].timestamp + TIMEFRAME_DURATIONS[self._execution_tf]
        end = bisect_right(structure_closes, cutoff)
        return structure[max(0, end - lookback):end]

    async def _evaluate(
        self,
        i: int,
        execution: list[Candle],
        daily: list[Candle],
        structure: Optional[list[Candle]],
        structure_closes: list[datetime],
        counters: RunCounters,
    ) -> tuple[bool, Optional[Signal]]:
        """Return ``(flip, signal)`` for candle *i*.

        *flip* is set whenever the candle carries a setup of any grade;
        *signal* is the entry candidate, present only when the setup
        reaches ``min_confluence_for_trade`` (and the adapter agrees).
        """
        s = self._settings
        candle = execution[i]

        session = killzone(candle.timestamp)
        if session is None:
            return False, None
        bias = daily_bias(daily, candle.timestamp)
        if bias is None:
            return False, None

        window = self._structure_window(i, execution, structure, structure_closes)
        if len(window) < s.min_structure_candles:
            return False, None

        features = extract_features(window, s.swing_lookback)
        flip = has_setup(bias, features, session, s)
        baseline = decide(bias, features, session, candle, s)
        if baseline is None:
            return flip, None
        counters.signals_evaluated += 1

        if self._adapter is None:
            return flip, baseline

        context = MarketContext(
            symbol=self._symbol,
            timeframe=self._execution_tf,
            timestamp=candle.timestamp,
            current_price=candle.close,
            bias=bias,
            session=session,
        )
        recent = extract_features(
            execution[max(0, i - s.feature_lookback):i], s.swing_lookback,
        )
        try:
            external = await asyncio.wait_for(
                self._adapter.evaluate(context, recent),
                timeout=s.signal_timeout_seconds,
            )
        except asyncio.TimeoutError:
            counters.evaluation_failures += 1
            logger.warning(
                "Signal adapter timed out after %.1fs at %s — treating as no signal",
                s.signal_timeout_seconds, candle.timestamp.isoformat(),
            )
            return flip, None
        except Exception as exc:
            counters.evaluation_failures += 1
            logger.warning(
                "Signal adapter failed at %s: %s — treating as no signal",
                candle.timestamp.isoformat(), exc,
            )
            return flip, None
        if external is not None and not isinstance(external, Signal):
            counters.evaluation_failures += 1
            logger.warning(
                "Signal adapter returned %s at %s — treating as no signal",
                type(external).__name__, candle.timestamp.isoformat(),
            )
            return flip, None

        signal, violated = reconcile_external_signal(external, baseline, candle, s)
        if violated:
            counters.rule_violations += 1
            logger.debug(
                "Adapter signal %s against %s bias at %s skipped",
                external.side.value, bias.value, candle.timestamp.isoformat(),
            )
        return flip, signal

    # ── State transitions ────────────────────────────────────────────────

    @staticmethod
    def _stop_or_target(position: Position, price: float) -> Optional[ExitReason]:
        """Stop first, then target, both judged on the close."""
        if position.side == Side.LONG:
            if price <= position.stop_loss:
                return ExitReason.STOP_LOSS
            if price >= position.take_profit:
                return ExitReason.TAKE_PROFIT
        else:
            if price >= position.stop_loss:
                return ExitReason.STOP_LOSS
            if price <= position.take_profit:
                return ExitReason.TAKE_PROFIT
        return None

    def _apply_exit(
        self, account: Account, candle: Candle, flip: bool,
    ) -> None:
        position = account.position
        if position is None:
            return

        mode = self._settings.exit_mode
        reason: Optional[ExitReason] = None
        if mode in (ExitMode.STOP_TAKE_PROFIT, ExitMode.STOP_TAKE_PROFIT_OR_FLIP):
            reason = self._stop_or_target(position, candle.close)
        if (
            reason is None
            and flip
            and mode in (ExitMode.SIGNAL_FLIP, ExitMode.STOP_TAKE_PROFIT_OR_FLIP)
        ):
            reason = ExitReason.SIGNAL_REVERSAL

        if reason is not None:
            trade = account.close(candle.close, candle.timestamp, reason)
            logger.debug(
                "Closed %s at %.2f (%s): profit %.4f",
                trade.side.value, trade.exit_price, reason.value, trade.profit,
            )

    def _apply_entry(
        self,
        account: Account,
        candle: Candle,
        signal: Signal,
        counters: RunCounters,
    ) -> None:
        s = self._settings
        if account.balance <= 0:
            logger.debug(
                "Entry at %s skipped: balance %.2f is not positive",
                candle.timestamp.isoformat(), account.balance,
            )
            return

        entry = apply_slippage(signal.entry_price, signal.side, s.slippage_pct)
        if s.sizing_mode == SizingMode.FIXED_NOTIONAL:
            quantity = fixed_notional_quantity(s.trade_size, entry)
            notional = s.trade_size
        else:
            risk_pct = s.risk_percent_by_quality.get(signal.quality.value, 0.0)
            quantity = risk_based_quantity(account.balance, risk_pct, entry, signal.stop_loss)
            notional = entry * quantity

        if quantity <= 0:
            logger.debug(
                "Entry at %s skipped: zero size for grade %s",
                candle.timestamp.isoformat(), signal.quality.value,
            )
            return

        account.open(
            Position(
                side=signal.side,
                entry_price=entry,
                entry_time=candle.timestamp,
                stop_loss=signal.stop_loss,
                take_profit=signal.take_profit,
                quantity=quantity,
                notional=notional,
                quality=signal.quality,
                session=signal.session,
                entry_reason=signal.reason,
            )
        )
        counters.entries_opened += 1
        logger.debug(
            "Opened %s %.6f @ %.2f (%s, %s)",
            signal.side.value, quantity, entry, signal.quality.value,
            signal.session.value if signal.session else "-",
        )
