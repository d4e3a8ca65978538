"""Tests for ictbacktest.strategy.signals — grading and entry decisions."""

from datetime import datetime, timezone

import pytest

from ictbacktest.config import BacktestSettings
from ictbacktest.market.models import Candle
from ictbacktest.strategy.models import (
    BEARISH,
    BULLISH,
    DEMAND,
    Confidence,
    FairValueGap,
    FeatureSet,
    OrderBlock,
    Quality,
    Session,
    Side,
    Signal,
    SupplyDemandZone,
)
from ictbacktest.strategy.signals import (
    decide,
    grade_quality,
    has_setup,
    reconcile_external_signal,
)

_T0 = datetime(2024, 1, 2, 8, tzinfo=timezone.utc)
_CANDLE = Candle(timestamp=_T0, open=49900, high=50100, low=49800, close=50000)


def _features(bullish=0, bearish=0):
    blocks = [OrderBlock(BULLISH, 101, 99, _T0, 50) for _ in range(bullish)]
    gaps = [FairValueGap(BEARISH, 101, 99, _T0) for _ in range(bearish)]
    return FeatureSet(order_blocks=blocks, fair_value_gaps=gaps)


class TestGradeQuality:
    @pytest.mark.parametrize(
        "confluence, expected",
        [(0, Quality.C), (1, Quality.B), (2, Quality.A), (3, Quality.A_PLUS), (7, Quality.A_PLUS)],
    )
    def test_grades(self, confluence, expected):
        assert grade_quality(confluence) == expected


class TestHasSetup:
    def test_single_aligned_pattern_is_a_setup(self):
        settings = BacktestSettings()
        assert has_setup(Side.LONG, _features(bullish=1), Session.LONDON, settings)
        assert decide(Side.LONG, _features(bullish=1), Session.LONDON, _CANDLE, settings) is None

    def test_counter_bias_patterns_are_not_a_setup(self):
        assert not has_setup(Side.LONG, _features(bearish=3), Session.LONDON, BacktestSettings())

    @pytest.mark.parametrize("bias, session", [(None, Session.NY), (Side.LONG, None)])
    def test_needs_bias_and_session(self, bias, session):
        assert not has_setup(bias, _features(bullish=2), session, BacktestSettings())


class TestDecide:
    def test_long_signal(self):
        signal = decide(Side.LONG, _features(bullish=2), Session.LONDON, _CANDLE, BacktestSettings())
        assert signal is not None
        assert signal.side == Side.LONG
        assert signal.entry_price == 50000
        assert signal.stop_loss == pytest.approx(49000)
        assert signal.take_profit == pytest.approx(52500)
        assert signal.quality == Quality.A
        assert signal.confidence == Confidence.MEDIUM
        assert signal.confluence == 2
        assert signal.session == Session.LONDON
        assert "LONDON" in signal.reason

    def test_short_signal_levels(self):
        signal = decide(Side.SHORT, _features(bearish=3), Session.NY, _CANDLE, BacktestSettings())
        assert signal.side == Side.SHORT
        assert signal.stop_loss == pytest.approx(51000)
        assert signal.take_profit == pytest.approx(47500)
        assert signal.quality == Quality.A_PLUS

    def test_direction_follows_bias_only(self):
        # plenty of bearish patterns but the bias is long
        assert decide(Side.LONG, _features(bearish=5), Session.NY, _CANDLE, BacktestSettings()) is None

    def test_no_session(self):
        assert decide(Side.LONG, _features(bullish=3), None, _CANDLE, BacktestSettings()) is None

    def test_no_bias(self):
        assert decide(None, _features(bullish=3), Session.ASIA, _CANDLE, BacktestSettings()) is None

    def test_below_minimum_confluence(self):
        settings = BacktestSettings(min_confluence_for_trade=2)
        assert decide(Side.LONG, _features(bullish=1), Session.ASIA, _CANDLE, settings) is None

    def test_single_pattern_allowed_when_minimum_is_one(self):
        settings = BacktestSettings(min_confluence_for_trade=1)
        signal = decide(Side.LONG, _features(bullish=1), Session.ASIA, _CANDLE, settings)
        assert signal.quality == Quality.B
        assert signal.confidence == Confidence.LOW

    def test_restricted_pattern_kinds(self):
        features = FeatureSet(
            order_blocks=[OrderBlock(BULLISH, 101, 99, _T0, 50)],
            supply_demand_zones=[SupplyDemandZone(DEMAND, 101, 99, _T0, 2, 60)],
        )
        everything = decide(Side.LONG, features, Session.NY, _CANDLE, BacktestSettings())
        assert everything.confluence == 2
        only_blocks = BacktestSettings(
            min_confluence_for_trade=1, confluence_patterns=["order_blocks"],
        )
        assert decide(Side.LONG, features, Session.NY, _CANDLE, only_blocks).confluence == 1


def _external(side=Side.LONG, sl=49500.0, tp=51500.0, reason="LLM confirmed"):
    return Signal(
        side=side, entry_price=49990.0, stop_loss=sl, take_profit=tp,
        confidence=Confidence.HIGH, quality=Quality.C, confluence=0, reason=reason,
    )


class TestReconcileExternalSignal:
    def _baseline(self):
        return decide(Side.LONG, _features(bullish=2), Session.LONDON, _CANDLE, BacktestSettings())

    def test_none_is_not_a_violation(self):
        assert reconcile_external_signal(None, self._baseline(), _CANDLE, BacktestSettings()) == (None, False)

    def test_opposite_side_is_a_violation(self):
        signal, violated = reconcile_external_signal(
            _external(side=Side.SHORT), self._baseline(), _CANDLE, BacktestSettings(),
        )
        assert signal is None
        assert violated is True

    def test_accepted_signal_keeps_baseline_grade(self):
        signal, violated = reconcile_external_signal(
            _external(), self._baseline(), _CANDLE, BacktestSettings(),
        )
        assert violated is False
        assert signal.entry_price == 50000
        assert signal.stop_loss == 49500.0
        assert signal.take_profit == 51500.0
        assert signal.quality == Quality.A
        assert signal.confluence == 2
        assert signal.session == Session.LONDON
        assert signal.confidence == Confidence.HIGH
        assert signal.reason == "LLM confirmed"

    def test_inconsistent_levels_fall_back(self):
        signal, _ = reconcile_external_signal(
            _external(sl=51000.0, tp=49000.0), self._baseline(), _CANDLE, BacktestSettings(),
        )
        assert signal.stop_loss == pytest.approx(49000)
        assert signal.take_profit == pytest.approx(52500)
