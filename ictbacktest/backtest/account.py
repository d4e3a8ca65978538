"""Simulated account — one optional position, a trade ledger and equity curve.

The account is the only mutable state of a backtest run.  It holds at
most one open position; asking it to open a second one, or to close a
position that does not exist, raises ``InvariantViolationError``.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from ictbacktest.errors import InvariantViolationError
from ictbacktest.risk.drawdown import DrawdownTracker
from ictbacktest.strategy.models import Quality, Session, Side


class ExitReason(str, Enum):
    STOP_LOSS = "STOP_LOSS"
    TAKE_PROFIT = "TAKE_PROFIT"
    SIGNAL_REVERSAL = "SIGNAL_REVERSAL"
    PERIOD_END = "PERIOD_END"


def calc_pnl(side: Side, entry_price: float, exit_price: float, quantity: float) -> float:
    """Profit of *quantity* units moved from *entry_price* to *exit_price*."""
    if side == Side.LONG:
        return (exit_price - entry_price) * quantity
    return (entry_price - exit_price) * quantity


@dataclass(frozen=True)
class Position:
    """The currently open trade."""

    side: Side
    entry_price: float
    entry_time: datetime
    stop_loss: float
    take_profit: float
    quantity: float
    notional: float
    quality: Quality
    session: Optional[Session]
    entry_reason: str

    def unrealized_pnl(self, price: float) -> float:
        return calc_pnl(self.side, self.entry_price, price, self.quantity)


@dataclass(frozen=True)
class Trade:
    """A closed position.  Never mutated after creation."""

    side: Side
    entry_price: float
    entry_time: datetime
    exit_price: float
    exit_time: datetime
    quantity: float
    notional: float
    profit: float
    profit_percent: float
    quality: Quality
    session: Optional[Session]
    exit_reason: ExitReason
    entry_reason: str

    def to_dict(self) -> dict:
        return {
            "side": self.side.value,
            "entryPrice": self.entry_price,
            "entryTime": self.entry_time.isoformat(),
            "exitPrice": self.exit_price,
            "exitTime": self.exit_time.isoformat(),
            "quantity": self.quantity,
            "notional": self.notional,
            "profit": self.profit,
            "profitPercent": self.profit_percent,
            "quality": self.quality.value,
            "session": self.session.value if self.session else None,
            "exitReason": self.exit_reason.value,
            "entryReason": self.entry_reason,
        }


@dataclass(frozen=True)
class EquityPoint:
    timestamp: datetime
    equity: float
    balance: float

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "equity": self.equity,
            "balance": self.balance,
        }


class Account:
    """Balance, open position, trade ledger and equity curve of one run.

    The balance only changes when a position is closed.  Equity is the
    balance plus the open position's unrealised P&L and is recorded once
    per processed candle by ``mark``.  Balances may go negative; there
    is no liquidation floor.

    Args:
        initial_capital: Starting balance (must be positive).
    """

    def __init__(self, initial_capital: float) -> None:
        self._initial_capital = initial_capital
        self._balance: float = initial_capital
        self._equity: float = initial_capital
        self._position: Optional[Position] = None
        self._trades: list[Trade] = []
        self._equity_curve: list[EquityPoint] = []
        self._entries_opened = 0
        self._tracker = DrawdownTracker(initial_capital)

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def initial_capital(self) -> float:
        return self._initial_capital

    @property
    def balance(self) -> float:
        return self._balance

    @property
    def equity(self) -> float:
        """Equity as of the last ``mark`` call."""
        return self._equity

    @property
    def position(self) -> Optional[Position]:
        return self._position

    @property
    def is_flat(self) -> bool:
        return self._position is None

    @property
    def trades(self) -> list[Trade]:
        return list(self._trades)

    @property
    def equity_curve(self) -> list[EquityPoint]:
        return list(self._equity_curve)

    @property
    def entries_opened(self) -> int:
        return self._entries_opened

    @property
    def peak_equity(self) -> float:
        return self._tracker.peak_equity

    @property
    def max_drawdown_pct(self) -> float:
        return self._tracker.max_drawdown_pct

    # ── Transitions ──────────────────────────────────────────────────────

    def open(self, position: Position) -> None:
        """FLAT → IN_POSITION."""
        if self._position is not None:
            raise InvariantViolationError(
                f"Cannot open {position.side.value} at {position.entry_time.isoformat()}: "
                f"a {self._position.side.value} position from "
                f"{self._position.entry_time.isoformat()} is still open"
            )
        if position.quantity <= 0:
            raise InvariantViolationError(
                f"Position quantity must be positive, got {position.quantity}"
            )
        self._position = position
        self._entries_opened += 1

    def close(self, price: float, timestamp: datetime, reason: ExitReason) -> Trade:
        """IN_POSITION → FLAT.  Realises P&L into the balance."""
        position = self._position
        if position is None:
            raise InvariantViolationError(
                f"Cannot close at {timestamp.isoformat()}: no position is open"
            )
        profit = position.unrealized_pnl(price)
        trade = Trade(
            side=position.side,
            entry_price=position.entry_price,
            entry_time=position.entry_time,
            exit_price=price,
            exit_time=timestamp,
            quantity=position.quantity,
            notional=position.notional,
            profit=profit,
            profit_percent=profit / position.notional * 100.0,
            quality=position.quality,
            session=position.session,
            exit_reason=reason,
            entry_reason=position.entry_reason,
        )
        self._balance += profit
        self._trades.append(trade)
        self._position = None
        return trade

    def mark(self, timestamp: datetime, price: float) -> EquityPoint:
        """Record equity at *price* and update the drawdown tracker."""
        unrealized = self._position.unrealized_pnl(price) if self._position else 0.0
        self._equity = self._balance + unrealized
        self._tracker.update(self._equity)
        point = EquityPoint(timestamp=timestamp, equity=self._equity, balance=self._balance)
        self._equity_curve.append(point)
        return point
