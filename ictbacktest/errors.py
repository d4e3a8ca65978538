"""Backtest error taxonomy.

Input errors reject a run before simulation starts.  Collaborator errors
(fetch, evaluation) are recovered per candle by the engine.  Invariant
violations mean a logic bug and are never caught inside the engine.
"""


class BacktestError(Exception):
    """Base class for every error raised by the backtester."""


class InputValidationError(BacktestError):
    """Malformed candle, non-increasing timestamps, or an empty series."""


class FetchError(BacktestError):
    """Historical data could not be fetched from the exchange."""


class EvaluationError(BacktestError):
    """A signal adapter failed to evaluate one candle."""


class InsufficientDataError(BacktestError):
    """The initial fetch produced no candles to simulate on."""


class InvariantViolationError(BacktestError):
    """The account state machine was asked to do something impossible."""


class BacktestCancelledError(BacktestError):
    """The run was cancelled cooperatively between two candles."""


class BacktestPhaseError(BacktestError):
    """Wraps the failure of one top-level phase of a run.

    Args:
        phase: ``"fetch"``, ``"simulate"`` or ``"aggregate"``.
        cause: The underlying exception.
    """

    def __init__(self, phase: str, cause: Exception) -> None:
        super().__init__(f"Backtest failed during {phase}: {cause}")
        self.phase = phase
        self.cause = cause
