"""Tests for ictbacktest.config — environment loading and strategy settings."""

import pytest

from ictbacktest.config import BacktestSettings, ExitMode, SizingMode, load_config

_ENV_VARS = [
    "DATA_SOURCE",
    "SYMBOL",
    "EXECUTION_TIMEFRAME",
    "STRUCTURE_TIMEFRAME",
    "INITIAL_CAPITAL",
    "DB_PATH",
    "LOG_LEVEL",
    "API_PORT",
    "ANTHROPIC_API_KEY",
    "ANTHROPIC_MODEL",
    "SIGNAL_TIMEOUT_SECONDS",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure backtester env vars are cleared between tests.

    The setenv call makes monkeypatch restore the original state on
    teardown, which also undoes values loaded from a .env file.
    """
    for var in _ENV_VARS:
        monkeypatch.setenv(var, "")
        monkeypatch.delenv(var)


def _load(tmp_path):
    # A non-existent env_path keeps load_dotenv away from a real .env file
    return load_config(str(tmp_path / "missing.env"))


class TestLoadConfig:
    def test_defaults(self, tmp_path):
        cfg = _load(tmp_path)
        assert cfg.data_source == "binance"
        assert cfg.symbol == "BTCUSDT"
        assert cfg.execution_timeframe == "5M"
        assert cfg.structure_timeframe == "1H"
        assert cfg.initial_capital == 10_000.0
        assert cfg.db_path == "data/ictbacktest.db"
        assert cfg.log_level == "INFO"
        assert cfg.api_port == 8080
        assert cfg.signal_timeout_seconds == 30.0
        assert cfg.llm_enabled is False
        assert cfg.exchange_base_url == "https://api.binance.com"

    def test_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATA_SOURCE", "MEXC")
        monkeypatch.setenv("SYMBOL", "ethusdt")
        monkeypatch.setenv("INITIAL_CAPITAL", "2500")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        cfg = _load(tmp_path)
        assert cfg.data_source == "mexc"
        assert cfg.exchange_base_url == "https://api.mexc.com"
        assert cfg.symbol == "ETHUSDT"
        assert cfg.initial_capital == 2500.0
        assert cfg.llm_enabled is True

    def test_reads_env_file(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("SYMBOL=SOLUSDT\nAPI_PORT=9090\n", encoding="utf-8")
        cfg = load_config(str(env_file))
        assert cfg.symbol == "SOLUSDT"
        assert cfg.api_port == 9090

    def test_unknown_data_source(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATA_SOURCE", "kraken")
        with pytest.raises(ValueError, match="DATA_SOURCE"):
            _load(tmp_path)

    def test_non_numeric_capital(self, monkeypatch, tmp_path):
        monkeypatch.setenv("INITIAL_CAPITAL", "lots")
        with pytest.raises(ValueError, match="INITIAL_CAPITAL"):
            _load(tmp_path)

    def test_non_positive_capital(self, monkeypatch, tmp_path):
        monkeypatch.setenv("INITIAL_CAPITAL", "0")
        with pytest.raises(ValueError, match="INITIAL_CAPITAL"):
            _load(tmp_path)


class TestBacktestSettings:
    def test_defaults(self):
        s = BacktestSettings()
        assert s.min_confluence_for_trade == 2
        assert s.sizing_mode == SizingMode.FIXED_NOTIONAL
        assert s.exit_mode == ExitMode.SIGNAL_FLIP
        assert s.trade_size == 100.0
        assert s.risk_percent_by_quality == {"A+": 3.0, "A": 2.0, "B": 0.5, "C": 0.0}
        assert s.stop_loss_pct == 2.0
        assert s.take_profit_pct == 5.0
        assert s.warmup_candles == 100
        assert s.confluence_patterns is None

    def test_string_modes_accepted(self):
        s = BacktestSettings(sizing_mode="risk_based", exit_mode="stop_take_profit_or_flip")
        assert s.sizing_mode == SizingMode.RISK_BASED
        assert s.exit_mode == ExitMode.STOP_TAKE_PROFIT_OR_FLIP

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            BacktestSettings(exit_mode="trailing")

    @pytest.mark.parametrize(
        "field, value",
        [
            ("initial_capital", 0),
            ("min_confluence_for_trade", 0),
            ("trade_size", -1),
            ("warmup_candles", -1),
            ("stop_loss_pct", 0),
            ("slippage_pct", -0.1),
            ("signal_timeout_seconds", 0),
        ],
    )
    def test_invalid_values(self, field, value):
        with pytest.raises(ValueError, match=field):
            BacktestSettings(**{field: value})

    def test_from_config(self, tmp_path, monkeypatch):
        monkeypatch.setenv("INITIAL_CAPITAL", "5000")
        monkeypatch.setenv("SIGNAL_TIMEOUT_SECONDS", "12")
        cfg = _load(tmp_path)
        s = BacktestSettings.from_config(cfg, trade_size=250)
        assert s.initial_capital == 5000.0
        assert s.signal_timeout_seconds == 12.0
        assert s.trade_size == 250

    def test_confluence_patterns_coerced_to_tuple(self):
        s = BacktestSettings(confluence_patterns=["order_blocks"])
        assert s.confluence_patterns == ("order_blocks",)

    def test_unknown_confluence_pattern_rejected(self):
        with pytest.raises(ValueError, match="order_block"):
            BacktestSettings(confluence_patterns=("order_block",))

    def test_bare_string_confluence_pattern_rejected(self):
        with pytest.raises(ValueError, match="list of pattern names"):
            BacktestSettings(confluence_patterns="order_blocks")
