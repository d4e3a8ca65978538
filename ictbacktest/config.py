"""ICT Backtest — application configuration.

Loads .env variables into a typed config object and derives the
strategy settings used by the backtest engine.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from dotenv import load_dotenv

from ictbacktest.strategy.models import DIRECTIONAL_KINDS


_SUPPORTED_SOURCES = ("binance", "mexc")


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    data_source: str  # "binance" or "mexc"
    symbol: str
    execution_timeframe: str
    structure_timeframe: str
    initial_capital: float
    db_path: str
    log_level: str
    api_port: int
    anthropic_api_key: str
    anthropic_model: str
    signal_timeout_seconds: float

    @property
    def exchange_base_url(self) -> str:
        """Return the REST base URL for the configured data source."""
        if self.data_source == "mexc":
            return "https://api.mexc.com"
        return "https://api.binance.com"

    @property
    def llm_enabled(self) -> bool:
        return bool(self.anthropic_api_key)


def _float_var(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Environment variable {name} must be a number, got {raw!r}")


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Every variable has a default; ``ValueError`` names the offending
    variable when a value cannot be parsed or is out of range.
    """
    load_dotenv(dotenv_path=env_path)

    data_source = os.environ.get("DATA_SOURCE", "binance").lower()
    if data_source not in _SUPPORTED_SOURCES:
        raise ValueError(
            f"DATA_SOURCE must be one of {', '.join(_SUPPORTED_SOURCES)}, "
            f"got {data_source!r}"
        )

    initial_capital = _float_var("INITIAL_CAPITAL", "10000")
    if initial_capital <= 0:
        raise ValueError(f"INITIAL_CAPITAL must be positive, got {initial_capital}")

    return Config(
        data_source=data_source,
        symbol=os.environ.get("SYMBOL", "BTCUSDT").upper(),
        execution_timeframe=os.environ.get("EXECUTION_TIMEFRAME", "5M").upper(),
        structure_timeframe=os.environ.get("STRUCTURE_TIMEFRAME", "1H").upper(),
        initial_capital=initial_capital,
        db_path=os.environ.get("DB_PATH", "data/ictbacktest.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=int(os.environ.get("API_PORT", "8080")),
        anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
        anthropic_model=os.environ.get("ANTHROPIC_MODEL", "claude-sonnet-4-5"),
        signal_timeout_seconds=_float_var("SIGNAL_TIMEOUT_SECONDS", "30"),
    )


# ── Strategy settings ────────────────────────────────────────────────────


class SizingMode(str, Enum):
    FIXED_NOTIONAL = "fixed_notional"
    RISK_BASED = "risk_based"


class ExitMode(str, Enum):
    SIGNAL_FLIP = "signal_flip"
    STOP_TAKE_PROFIT = "stop_take_profit"
    STOP_TAKE_PROFIT_OR_FLIP = "stop_take_profit_or_flip"


def _default_risk_percents() -> dict[str, float]:
    return {"A+": 3.0, "A": 2.0, "B": 0.5, "C": 0.0}


@dataclass(frozen=True)
class BacktestSettings:
    """Every rule on which the historical backtest scripts disagreed.

    Percentages are expressed as percent (``2.0`` means 2 %).
    """

    initial_capital: float = 10_000.0
    min_confluence_for_trade: int = 2
    sizing_mode: SizingMode = SizingMode.FIXED_NOTIONAL
    exit_mode: ExitMode = ExitMode.SIGNAL_FLIP
    trade_size: float = 100.0
    risk_percent_by_quality: dict[str, float] = field(default_factory=_default_risk_percents)
    stop_loss_pct: float = 2.0
    take_profit_pct: float = 5.0
    slippage_pct: float = 0.0
    warmup_candles: int = 100
    feature_lookback: int = 100
    min_structure_candles: int = 20
    swing_lookback: int = 20
    signal_timeout_seconds: float = 30.0
    annual_risk_free_rate: float = 0.02
    # Pattern lists counted towards confluence; None counts every directional one
    confluence_patterns: Optional[tuple[str, ...]] = None

    def __post_init__(self) -> None:
        if self.initial_capital <= 0:
            raise ValueError(
                f"initial_capital must be positive, got {self.initial_capital}"
            )
        if self.min_confluence_for_trade < 1:
            raise ValueError(
                "min_confluence_for_trade must be at least 1, "
                f"got {self.min_confluence_for_trade}"
            )
        if self.trade_size <= 0:
            raise ValueError(f"trade_size must be positive, got {self.trade_size}")
        if self.warmup_candles < 0:
            raise ValueError(
                f"warmup_candles must not be negative, got {self.warmup_candles}"
            )
        if self.stop_loss_pct <= 0 or self.take_profit_pct <= 0:
            raise ValueError(
                "stop_loss_pct and take_profit_pct must be positive, "
                f"got {self.stop_loss_pct} / {self.take_profit_pct}"
            )
        if self.slippage_pct < 0:
            raise ValueError(f"slippage_pct must not be negative, got {self.slippage_pct}")
        if self.signal_timeout_seconds <= 0:
            raise ValueError(
                f"signal_timeout_seconds must be positive, got {self.signal_timeout_seconds}"
            )
        if self.confluence_patterns is not None:
            if isinstance(self.confluence_patterns, str):
                raise ValueError(
                    "confluence_patterns must be a list of pattern names, "
                    f"got the string {self.confluence_patterns!r}"
                )
            patterns = tuple(self.confluence_patterns)
            unknown = sorted(set(patterns) - set(DIRECTIONAL_KINDS))
            if unknown:
                raise ValueError(
                    f"Unknown confluence pattern(s): {', '.join(unknown)}; "
                    f"expected any of {', '.join(DIRECTIONAL_KINDS)}"
                )
            object.__setattr__(self, "confluence_patterns", patterns)
        # Accept plain strings from API payloads
        object.__setattr__(self, "sizing_mode", SizingMode(self.sizing_mode))
        object.__setattr__(self, "exit_mode", ExitMode(self.exit_mode))

    @classmethod
    def from_config(cls, config: Config, **overrides) -> "BacktestSettings":
        """Build settings from the app config, then apply *overrides*."""
        values = {
            "initial_capital": config.initial_capital,
            "signal_timeout_seconds": config.signal_timeout_seconds,
        }
        values.update(overrides)
        return cls(**values)
