"""
Unit tests for core/position_manager.py.

Tests verify:
- RebalanceEngine: borrow-limit and exposure breaches, checkpoint drift,
  minimum action amount, sell-repay-reinvest ordering
- TakeProfitEngine: rally confirmation and sizing back to the post-sale row
- AccumulationEngine: tier mapping, credit-line bound, cooldown anchor
- Panic buy: all three conditions, extreme multiplier capped at max leverage
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from core.position_manager import AccumulationEngine, RebalanceEngine, TakeProfitEngine
from core.signal_engine import SignalEngine
from shared.types import DecisionAction, MacdPoint, RebalancePlan, TradeKind

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _d(v) -> Decimal:
    return Decimal(str(v))


PANIC_RSI = [_d(30)] * 11 + [_d(15)]
SELL_RSI = [_d(60)] * 10 + [_d(75), _d(68)]
SELL_MACD = [MacdPoint(_d(0), _d(0), _d(0))] * 10 + [
    MacdPoint(_d(2), _d(1), _d(1)),
    MacdPoint(_d(1), _d(1), _d(0)),
]


@pytest.fixture
def rebalancer(strategy_config):
    return RebalanceEngine(strategy_config)


@pytest.fixture
def accumulator(strategy_config):
    return AccumulationEngine(strategy_config)


# ===========================================================================
# RebalanceEngine
# ===========================================================================


class TestHardBreach:
    def test_exposure_breach_sells_back_to_target(self, rebalancer, make_ledger, snapshot_factory):
        ledger = make_ledger(collateral_qty=7000, leveraged_qty=7000, loan=400000)
        metrics = ledger.metrics(_d(100), _d(100))
        plan = rebalancer.hard_breach(metrics)

        assert plan.trigger == "exposure"
        assert plan.hard
        assert plan.sell_amount == _d(200000)

        result = rebalancer.execute(ledger, plan, snapshot_factory())
        assert [t.kind for t in result.trades] == [TradeKind.SELL_LEVERAGED, TradeKind.REPAY]
        assert ledger.state.leveraged_qty == _d(5000)
        assert ledger.state.loan == _d(200000)
        assert result.details["repaid"] == _d(200000)

    def test_borrow_limit_checked_before_exposure(self, rebalancer, make_ledger):
        ledger = make_ledger(collateral_qty=5000, leveraged_qty=5000, loan=550000)
        plan = rebalancer.hard_breach(ledger.metrics(_d(100), _d(100)))

        # borrow 550k / 450k and exposure 500k / 450k both breach
        assert plan.trigger == "borrow_limit"
        assert plan.target_ratio == _d("0.9")
        assert plan.sell_amount == _d(145000)

    def test_healthy_book_has_no_plan(self, rebalancer, make_ledger):
        ledger = make_ledger(collateral_qty=10000, leveraged_qty=2000, loan=200000)
        assert rebalancer.hard_breach(ledger.metrics(_d(100), _d(100))) is None

    def test_below_min_action_skipped(self, rebalancer, make_ledger, snapshot_factory):
        ledger = make_ledger(collateral_qty=10000, leveraged_qty=2000, loan=200000)
        plan = RebalancePlan(trigger="exposure", target_ratio=_d("0.5"), sell_amount=_d(10000), hard=True)
        result = rebalancer.execute(ledger, plan, snapshot_factory())
        assert not result.executed
        assert result.details["sell_amount"] == _d(10000)
        assert ledger.state.leveraged_qty == _d(2000)

    def test_remainder_after_repay_buys_collateral(self, rebalancer, make_ledger, snapshot_factory):
        ledger = make_ledger(collateral_qty=5000, leveraged_qty=5000, loan=50000)
        plan = RebalancePlan(trigger="checkpoint", target_ratio=_d("0.2"), sell_amount=_d(100000), hard=False)
        result = rebalancer.execute(ledger, plan, snapshot_factory())

        assert [t.kind for t in result.trades] == [
            TradeKind.SELL_LEVERAGED,
            TradeKind.REPAY,
            TradeKind.BUY_COLLATERAL,
        ]
        assert ledger.state.loan == _d(0)
        assert ledger.state.collateral_qty == _d(5500)
        assert result.details["remainder"] == _d(50000)


class TestCheckpointDrift:
    def test_drift_beyond_band(self, rebalancer, make_ledger):
        ledger = make_ledger(collateral_qty=10000, leveraged_qty=4000, loan=400000)
        plan = rebalancer.checkpoint_drift(ledger.metrics(_d(100), _d(100)), _d("0.2"))
        assert plan.trigger == "checkpoint"
        assert not plan.hard
        assert plan.sell_amount == _d(200000)

    def test_within_band(self, rebalancer, make_ledger):
        ledger = make_ledger(collateral_qty=10000, leveraged_qty=4000, loan=400000)
        assert rebalancer.checkpoint_drift(ledger.metrics(_d(100), _d(100)), _d("0.3")) is None

    def test_floor_applies_to_low_targets(self, rebalancer, make_ledger):
        ledger = make_ledger(collateral_qty=10000, leveraged_qty=4000, loan=400000)
        plan = rebalancer.checkpoint_drift(ledger.metrics(_d(100), _d(100)), _d("0.05"))
        assert plan.target_ratio == _d("0.2")


# ===========================================================================
# TakeProfitEngine
# ===========================================================================


class TestTakeProfit:
    def test_rally_with_two_signals(self, strategy_config, snapshot_factory):
        report = SignalEngine(strategy_config).analyze(
            snapshot_factory(leveraged_price=_d(160), rsi=SELL_RSI, macd=SELL_MACD)
        )
        assert report.sell.signal_count == 2
        assert TakeProfitEngine(strategy_config).should_take_profit(report)

    def test_one_signal_is_not_enough(self, strategy_config, snapshot_factory):
        report = SignalEngine(strategy_config).analyze(
            snapshot_factory(leveraged_price=_d(160), rsi=SELL_RSI)
        )
        assert not TakeProfitEngine(strategy_config).should_take_profit(report)

    def test_small_rally_is_not_enough(self, strategy_config, snapshot_factory):
        report = SignalEngine(strategy_config).analyze(
            snapshot_factory(leveraged_price=_d(140), rsi=SELL_RSI, macd=SELL_MACD)
        )
        assert not TakeProfitEngine(strategy_config).should_take_profit(report)

    def test_sells_back_to_post_sale_row(self, strategy_config, make_ledger, snapshot_factory):
        ledger = make_ledger(collateral_qty=10000, leveraged_qty=5000, loan=50000)
        metrics = ledger.metrics(_d(100), _d(100))
        result = TakeProfitEngine(strategy_config).execute(ledger, metrics, snapshot_factory())

        # post-sale row is the second from the end: leverage 0.3
        assert result.details["post_leverage"] == _d("0.3")
        assert result.details["sell_amount"] == _d(65000)
        assert ledger.state.leveraged_qty == _d(4350)
        assert ledger.state.loan == _d(0)
        assert ledger.state.cash == _d(15000)

    def test_reinvest_moves_remainder_to_collateral(self, strategy_factory, make_ledger, snapshot_factory):
        config = strategy_factory({"sell.reinvest_proceeds": True})
        ledger = make_ledger(collateral_qty=10000, leveraged_qty=5000, loan=50000)
        metrics = ledger.metrics(_d(100), _d(100))
        TakeProfitEngine(config).execute(ledger, metrics, snapshot_factory())
        assert ledger.state.collateral_qty == _d(10150)
        assert ledger.state.cash == _d(0)

    def test_already_below_post_leverage(self, strategy_config, make_ledger, snapshot_factory):
        ledger = make_ledger(collateral_qty=10000, leveraged_qty=500, loan=50000)
        result = TakeProfitEngine(strategy_config).execute(
            ledger, ledger.metrics(_d(100), _d(100)), snapshot_factory()
        )
        assert not result.executed
        assert result.details["sell_amount"] == _d(0)


# ===========================================================================
# AccumulationEngine
# ===========================================================================


class TestAllocation:
    @pytest.mark.parametrize(
        "score,action",
        [
            (_d(9), DecisionAction.ACCUMULATE_AGGRESSIVE),
            (_d(6), DecisionAction.ACCUMULATE_AGGRESSIVE),
            (_d(5), DecisionAction.ACCUMULATE_ACTIVE),
            (_d(4), DecisionAction.ACCUMULATE_ACTIVE),
            (_d(3), DecisionAction.ACCUMULATE_BASE),
        ],
    )
    def test_tier_for_score(self, accumulator, score, action):
        assert accumulator.tier_for_score(score) == action

    @pytest.mark.parametrize(
        "score,ratio",
        [(_d(10), _d("0.8")), (_d(8), _d("0.6")), (_d(4), _d("0.4")), (_d(3), _d("0.3")), (_d(1), _d("0.2"))],
    )
    def test_target_ratio(self, accumulator, score, ratio):
        assert accumulator.target_ratio(score) == ratio


class TestAccumulate:
    def test_borrows_to_target(self, accumulator, make_ledger, snapshot_factory):
        ledger = make_ledger(collateral_qty=10000)
        snapshot = snapshot_factory(leveraged_price=_d(68))
        metrics = ledger.metrics(snapshot.collateral_price, snapshot.leveraged_price)
        result = accumulator.accumulate(ledger, metrics, _d("0.6"), snapshot)

        assert result.executed
        trade = result.trades[0]
        assert trade.kind == TradeKind.BUY_LEVERAGED
        assert trade.quantity == _d(8823)
        assert ledger.state.loan == _d(600000)
        assert ledger.state.cash == _d(36)
        assert ledger.state.last_buy_date == snapshot.date

    def test_credit_line_bounds_the_loan(self, accumulator, make_ledger, snapshot_factory):
        ledger = make_ledger(collateral_qty=10000, cash=500000, loan=500000)
        snapshot = snapshot_factory()
        metrics = ledger.metrics(_d(100), _d(100))
        result = accumulator.accumulate(ledger, metrics, _d("0.8"), snapshot)

        assert result.details["borrow"] == _d(100000)
        assert ledger.state.loan <= metrics.collateral_value * _d("0.6")

    @pytest.mark.parametrize("target", ["0.2", "0.4", "0.6", "0.8"])
    def test_loan_never_exceeds_credit_line(self, accumulator, make_ledger, snapshot_factory, target):
        ledger = make_ledger(collateral_qty=10000, leveraged_qty=1000, loan=150000)
        metrics = ledger.metrics(_d(100), _d(50))
        accumulator.accumulate(ledger, metrics, _d(target), snapshot_factory(leveraged_price=_d(50)))
        assert ledger.state.loan <= metrics.collateral_value * _d("0.6")

    def test_target_at_or_below_current_ratio_skips(self, accumulator, make_ledger, snapshot_factory):
        ledger = make_ledger(collateral_qty=10000, leveraged_qty=4000, loan=400000)
        metrics = ledger.metrics(_d(100), _d(100))
        result = accumulator.accumulate(ledger, metrics, _d("0.4"), snapshot_factory())
        assert not result.executed
        assert result.details["borrow"] == _d(0)

    def test_borrow_under_min_action_skips(self, accumulator, make_ledger, snapshot_factory):
        ledger = make_ledger(collateral_qty=10000, cash=1000000, loan=595000)
        metrics = ledger.metrics(_d(100), _d(100))
        result = accumulator.accumulate(ledger, metrics, _d("0.8"), snapshot_factory())
        assert result.details["borrow"] == _d(5000)
        assert not result.executed
        assert ledger.state.loan == _d(595000)


# ===========================================================================
# Panic buy
# ===========================================================================


class TestPanic:
    def _signal(self, config, snapshot_factory, **overrides):
        fields = {"leveraged_price": _d(60), "rsi": PANIC_RSI, "vix": _d(35)}
        fields.update(overrides)
        snapshot = snapshot_factory(**fields)
        report = SignalEngine(config).analyze(snapshot)
        return AccumulationEngine(config).panic_signal(report, snapshot), snapshot

    def test_panic_signal(self, strategy_config, snapshot_factory):
        signal, _ = self._signal(strategy_config, snapshot_factory)
        assert signal is not None
        assert signal.extreme_drop_threshold == _d(40)
        assert signal.extreme_rsi_threshold == _d("18.75")
        assert not signal.extreme
        assert signal.suggested_leverage == _d("0.3")

    def test_extreme_vix_capped_at_max(self, strategy_config, snapshot_factory):
        signal, _ = self._signal(strategy_config, snapshot_factory, vix=_d(45))
        assert signal.extreme
        assert signal.suggested_leverage == _d("0.5")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"leveraged_price": _d(61)},
            {"rsi": [_d(30)] * 11 + [_d(20)]},
            {"vix": _d(29)},
            {"vix": None},
        ],
    )
    def test_any_missing_condition_is_no_panic(self, strategy_config, snapshot_factory, overrides):
        signal, _ = self._signal(strategy_config, snapshot_factory, **overrides)
        assert signal is None

    def test_panic_buy_sets_cooldown_anchor(self, strategy_config, make_ledger, snapshot_factory):
        signal, snapshot = self._signal(strategy_config, snapshot_factory)
        ledger = make_ledger(collateral_qty=10000, last_buy_date=date(2024, 8, 1))
        metrics = ledger.metrics(snapshot.collateral_price, snapshot.leveraged_price)
        result = AccumulationEngine(strategy_config).panic_buy(ledger, metrics, signal, snapshot)
        assert result.executed
        assert ledger.state.loan == _d(300000)
        assert ledger.state.last_buy_date == snapshot.date

    def test_panic_buy_can_leave_cooldown_alone(self, strategy_factory, make_ledger, snapshot_factory):
        config = strategy_factory({"trading.panic_buy_resets_cooldown": False})
        signal, snapshot = self._signal(config, snapshot_factory)
        ledger = make_ledger(collateral_qty=10000, last_buy_date=date(2024, 8, 1))
        metrics = ledger.metrics(snapshot.collateral_price, snapshot.leveraged_price)
        AccumulationEngine(config).panic_buy(ledger, metrics, signal, snapshot)
        assert ledger.state.last_buy_date == date(2024, 8, 1)
