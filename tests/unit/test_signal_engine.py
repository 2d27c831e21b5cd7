"""
Unit tests for core/signal_engine.py.

Tests verify the four independent readers and their aggregate:
- EntryScorer: drop-rule selection and additive component scoring
- OverheatDetector: majority of {RSI, %D, MA bias} above hot levels
- ReversalDetector: RSI / min(%K, %D) falling back, bearish crosses
- SellSignalDetector: take-profit events vs. "still overbought" state flags
- SignalEngine: price change, up/drop split, report assembly
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from core.signal_engine import (
    EntryScorer,
    OverheatDetector,
    ReversalDetector,
    SellSignalDetector,
    SignalEngine,
    price_change_percent,
)
from shared.types import MacdPoint, StochasticPoint

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _d(v) -> Decimal:
    return Decimal(str(v))


THREE_RULES = [
    {"min_drop": 40, "score": 5, "label": "bear"},
    {"min_drop": 30, "score": 4, "label": "deep"},
    {"min_drop": 20, "score": 2, "label": "correction"},
]


def _macd_flat(n: int = 12) -> list[MacdPoint]:
    return [MacdPoint(_d(0), _d(0), _d(0))] * n


def _kd_flat(n: int = 12, k: int = 50, d: int = 50) -> list[StochasticPoint]:
    return [StochasticPoint(_d(k), _d(d))] * n


# ===========================================================================
# Price change
# ===========================================================================


class TestPriceChange:
    def test_drop(self):
        assert price_change_percent(_d(68), _d(100)) == _d(-32)

    def test_rise(self):
        assert price_change_percent(_d(150), _d(100)) == _d(50)

    def test_zero_base_is_zero(self):
        assert price_change_percent(_d(68), _d(0)) == _d(0)


# ===========================================================================
# EntryScorer
# ===========================================================================


class TestDropRuleSelection:
    @pytest.fixture
    def scorer(self, strategy_factory):
        return EntryScorer(strategy_factory({"buy.drop_score_rules": THREE_RULES}))

    def test_32_percent_selects_score_4(self, scorer):
        rule = scorer.select_drop_rule(_d(32))
        assert rule.score == _d(4)

    def test_exact_threshold_matches(self, scorer):
        assert scorer.select_drop_rule(_d(40)).score == _d(5)

    def test_below_every_rule_is_none(self, scorer):
        assert scorer.select_drop_rule(_d(19.99)) is None

    @pytest.mark.parametrize("drop", [20, 25, 30, 35, 40, 45, 80])
    def test_greatest_min_drop_not_above_drop(self, scorer, drop):
        rule = scorer.select_drop_rule(_d(drop))
        eligible = [r for r in THREE_RULES if r["min_drop"] <= drop]
        assert rule.min_drop == _d(max(r["min_drop"] for r in eligible))

    def test_unrelated_lower_rule_does_not_change_higher_drop(self, strategy_factory):
        changed = [dict(r) for r in THREE_RULES]
        changed[2] = {"min_drop": 15, "score": 3, "label": "changed"}
        original = EntryScorer(strategy_factory({"buy.drop_score_rules": THREE_RULES}))
        modified = EntryScorer(strategy_factory({"buy.drop_score_rules": changed}))
        for drop in (30, 32, 41, 60):
            assert original.select_drop_rule(_d(drop)) == modified.select_drop_rule(_d(drop))


class TestEntryScore:
    def test_drop_only(self, strategy_config, series):
        score = EntryScorer(strategy_config).score(
            _d(32), series.neutral_rsi, series.neutral_macd, series.neutral_kd
        )
        assert score.total == _d(4)
        assert [c.label for c in score.components] == ["drop", "rsi", "macd", "kd"]

    def test_all_components(self, strategy_config, series):
        score = EntryScorer(strategy_config).score(
            _d(32), series.rsi_rebound, series.macd_bull_cross, series.kd_low_cross
        )
        assert score.rsi_rebound and score.macd_bull and score.kd_bull_low
        assert score.total == _d(4 + 2 + 1 + 1)

    def test_kd_cross_without_low_dip_scores_nothing(self, strategy_config):
        kd = _kd_flat(10) + [StochasticPoint(_d(40), _d(45)), StochasticPoint(_d(50), _d(45))]
        score = EntryScorer(strategy_config).score(_d(0), [_d(50)] * 12, _macd_flat(), kd)
        assert not score.kd_bull_low
        assert score.total == _d(0)

    def test_no_drop_component_points_zero(self, strategy_config, series):
        score = EntryScorer(strategy_config).score(
            _d(5), series.neutral_rsi, series.neutral_macd, series.neutral_kd
        )
        assert score.components[0].points == _d(0)


# ===========================================================================
# OverheatDetector
# ===========================================================================


class TestOverheat:
    def test_two_of_three_is_overheat(self, strategy_config, series):
        state = OverheatDetector(strategy_config).evaluate(series.rsi_hot, series.kd_hot, None)
        assert state.is_overheat
        assert state.factors == {"rsi_high": True, "kd_high": True, "bias_high": False}
        assert state.cool_count == 1

    def test_one_of_three_is_warm_not_overheat(self, strategy_config, series):
        state = OverheatDetector(strategy_config).evaluate(series.rsi_hot, series.neutral_kd, None)
        assert not state.is_overheat
        assert state.high_count == 1

    def test_bias_counts(self, strategy_config, series):
        state = OverheatDetector(strategy_config).evaluate(series.rsi_hot, series.neutral_kd, _d(30))
        assert state.is_overheat

    def test_levels_are_strict(self, strategy_config):
        rsi = [_d(80)]
        kd = [StochasticPoint(_d(85), _d(85))]
        state = OverheatDetector(strategy_config).evaluate(rsi, kd, _d(25))
        assert state.high_count == 0

    def test_missing_data_is_cool(self, strategy_config):
        state = OverheatDetector(strategy_config).evaluate([], [], None)
        assert state.high_count == 0 and not state.is_overheat


# ===========================================================================
# ReversalDetector
# ===========================================================================


class TestReversal:
    def test_rsi_and_kd_falling_back(self, strategy_config):
        rsi = [_d(50)] * 8 + [_d(65), _d(62), _d(58)]
        kd = _kd_flat(8) + [
            StochasticPoint(_d(75), _d(72)),
            StochasticPoint(_d(72), _d(71)),
            StochasticPoint(_d(66), _d(69)),
        ]
        state = ReversalDetector(strategy_config).evaluate(rsi, _macd_flat(), kd)
        assert state.rsi_drop
        assert state.kd_drop
        assert state.kd_bear_cross
        assert state.triggered_count == 3
        assert state.should_pause

    def test_kd_drop_uses_lower_of_k_and_d(self, strategy_config):
        # %D never left 71+, but %K dipped under 70
        kd = _kd_flat(9) + [StochasticPoint(_d(75), _d(74)), StochasticPoint(_d(68), _d(71))]
        state = ReversalDetector(strategy_config).evaluate([_d(50)] * 12, _macd_flat(), kd)
        assert state.kd_drop

    def test_macd_bear_cross(self, strategy_config, series):
        macd = _macd_flat(10) + [MacdPoint(_d(1), _d(0), _d(1)), MacdPoint(_d(-1), _d(0), _d(-1))]
        state = ReversalDetector(strategy_config).evaluate(series.neutral_rsi, macd, series.neutral_kd)
        assert state.macd_bear_cross
        assert state.triggered_count == 1
        assert not state.should_pause

    def test_neutral_is_quiet(self, strategy_config, series):
        state = ReversalDetector(strategy_config).evaluate(
            series.neutral_rsi, series.neutral_macd, series.neutral_kd
        )
        assert state.triggered_count == 0
        assert state.total_factor == 4


# ===========================================================================
# SellSignalDetector
# ===========================================================================


class TestSellSignals:
    def test_rsi_cross_today_counts(self, strategy_config, series):
        rsi = [_d(60)] * 10 + [_d(75), _d(68)]
        state = SellSignalDetector(strategy_config).evaluate(rsi, series.neutral_macd, series.neutral_kd)
        assert state.rsi_sell
        assert state.signal_count == 1

    def test_rsi_cross_on_earlier_bar_ignored_when_today_required(self, strategy_config, series):
        rsi = [_d(60)] * 9 + [_d(75), _d(68), _d(66)]
        state = SellSignalDetector(strategy_config).evaluate(rsi, series.neutral_macd, series.neutral_kd)
        assert not state.rsi_sell

    def test_rsi_cross_within_lookback_without_today_flag(self, strategy_factory, series):
        config = strategy_factory({"sell.require_cross_today": False})
        rsi = [_d(60)] * 9 + [_d(75), _d(68), _d(66)]
        state = SellSignalDetector(config).evaluate(rsi, series.neutral_macd, series.neutral_kd)
        assert state.rsi_sell

    def test_macd_diff_turns_negative(self, strategy_config, series):
        macd = _macd_flat(10) + [MacdPoint(_d(2), _d(1), _d(1)), MacdPoint(_d(1), _d(1), _d(0))]
        state = SellSignalDetector(strategy_config).evaluate(series.neutral_rsi, macd, series.neutral_kd)
        assert state.macd_sell

    def test_kd_bear_cross_inside_overbought_zone(self, strategy_config, series):
        kd = _kd_flat(10) + [StochasticPoint(_d(92), _d(88)), StochasticPoint(_d(85), _d(87))]
        state = SellSignalDetector(strategy_config).evaluate(series.neutral_rsi, series.neutral_macd, kd)
        assert state.kd_sell
        assert state.kd_state_overbought

    def test_d_falling_out_of_zone(self, strategy_config, series):
        kd = _kd_flat(10) + [StochasticPoint(_d(84), _d(82)), StochasticPoint(_d(70), _d(78))]
        state = SellSignalDetector(strategy_config).evaluate(series.neutral_rsi, series.neutral_macd, kd)
        assert state.kd_sell
        assert not state.kd_state_overbought

    def test_state_flags_are_separate_from_events(self, strategy_config, series):
        state = SellSignalDetector(strategy_config).evaluate(
            series.rsi_hot, series.neutral_macd, series.kd_hot
        )
        assert state.signal_count == 0
        assert state.rsi_state_overbought and state.kd_state_overbought
        assert state.state_count == 2


# ===========================================================================
# SignalEngine aggregate
# ===========================================================================


class TestSignalEngine:
    def test_drop_report(self, strategy_config, snapshot_factory, series):
        snapshot = snapshot_factory(
            leveraged_price=_d(68),
            rsi=series.rsi_rebound,
            macd=series.macd_bull_cross,
            stochastic=series.kd_low_cross,
        )
        report = SignalEngine(strategy_config).analyze(snapshot)
        assert report.drop_percent == _d(32)
        assert report.up_percent == _d(0)
        assert report.entry.total == _d(8)

    def test_rally_report(self, strategy_config, snapshot_factory):
        report = SignalEngine(strategy_config).analyze(snapshot_factory(leveraged_price=_d(160)))
        assert report.up_percent == _d(60)
        assert report.drop_percent == _d(0)
        assert report.entry.total == _d(0)

    def test_scorer_exposed(self, strategy_config):
        assert isinstance(SignalEngine(strategy_config).scorer, EntryScorer)
