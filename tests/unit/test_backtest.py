"""
Unit tests for core/backtest.py.

Tests verify:
- Daily-reset leveraged price synthesis
- Simulation window selection (warmup, start date, too few bars)
- Monthly contributions reach both ledgers and are fully invested
- The report reflects the tracker history of both ledgers
"""

from __future__ import annotations

import dataclasses
from datetime import date, timedelta
from decimal import Decimal

import pytest

from core.backtest import (
    BENCHMARK_LEDGER,
    STRATEGY_LEDGER,
    Backtester,
    synthesize_leveraged_prices,
)
from shared.types import PriceBar

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _d(v) -> Decimal:
    return Decimal(str(v))


def _flat_bars(days: int, start=date(2024, 1, 1), collateral="100", leveraged="20"):
    """Calendar-day bars at constant prices; ``leveraged=None`` leaves it unset."""
    return [
        PriceBar(
            date=start + timedelta(days=i),
            collateral_close=_d(collateral),
            leveraged_close=_d(leveraged) if leveraged is not None else None,
        )
        for i in range(days)
    ]


@pytest.fixture
def backtester(strategy_config, ledger_config, backtest_config):
    bt = Backtester(strategy_config, ledger_config, backtest_config)
    yield bt
    bt.tracker.close()


# ===========================================================================
# synthesize_leveraged_prices
# ===========================================================================


class TestSynthesize:
    def test_empty(self):
        assert synthesize_leveraged_prices([]) == []

    def test_leverage_multiplies_daily_return(self):
        prices = synthesize_leveraged_prices(
            [_d(100), _d(110), _d(99)], annual_expense=_d(0), start_price=_d(10)
        )
        assert prices[0] == _d(10)
        assert prices[1] == _d(12)
        # -10% on the underlying is -20% on the leveraged series
        assert prices[2] == _d("9.6")

    def test_expense_drags_flat_market(self):
        prices = synthesize_leveraged_prices(
            [_d(100), _d(100)], annual_expense=_d("0.25"), trading_days_per_year=250
        )
        assert prices[1] == _d("9.99")


# ===========================================================================
# Backtester
# ===========================================================================


class TestSeriesPreparation:
    def test_leveraged_closes_used_when_present(self, backtester):
        closes = backtester.leveraged_closes(_flat_bars(3, leveraged="42"))
        assert closes == [_d(42)] * 3

    def test_missing_leveraged_closes_synthesized(self, backtester):
        closes = backtester.leveraged_closes(_flat_bars(4, leveraged=None))
        assert len(closes) == 4
        assert closes[0] == _d(10)
        assert all(c < _d(10) for c in closes[1:])

    def test_wiped_out_synthetic_series_raises(self, backtester):
        bars = _flat_bars(3, leveraged=None)
        bars[1] = dataclasses.replace(bars[1], collateral_close=_d(40))
        with pytest.raises(ValueError, match="wiped out"):
            backtester.leveraged_closes(bars)

    def test_synthetic_leverage_defaults_to_strategy_multiplier(
        self, strategy_factory, ledger_config, backtest_config
    ):
        bt = Backtester(strategy_factory({"leverage.target_multiplier": 3}), ledger_config, backtest_config)
        try:
            assert bt.synthetic_leverage == _d(3)
            bars = _flat_bars(2, leveraged=None)
            bars[1] = dataclasses.replace(bars[1], collateral_close=_d(110))
            # +10% underlying at 3x, minus one day of the 1% expense
            assert bt.leveraged_closes(bars)[1] == _d(10) * (_d("1.3") - _d("0.01") / _d(250))
        finally:
            bt.tracker.close()

    def test_backtest_leverage_overrides_strategy(self, strategy_config, ledger_config, backtest_config):
        config = dataclasses.replace(backtest_config, synthetic_leverage=_d("1.5"))
        bt = Backtester(strategy_config, ledger_config, config)
        try:
            assert bt.synthetic_leverage == _d("1.5")
        finally:
            bt.tracker.close()


class TestRunWindow:
    def test_not_enough_bars_raises(self, backtester):
        with pytest.raises(ValueError, match="Not enough bars"):
            backtester.run(_flat_bars(10))

    def test_start_date_after_last_bar_raises(self, backtester):
        with pytest.raises(ValueError):
            backtester.run(_flat_bars(10), start_date=date(2025, 1, 1))

    def test_start_date_selects_first_bar_on_or_after(self, backtester):
        report = backtester.run(_flat_bars(70), start_date=date(2024, 3, 1))
        assert report.start == date(2024, 3, 1)
        assert report.end == date(2024, 3, 10)
        assert report.strategy.days == 10


class TestRun:
    def test_contributions_reach_both_ledgers(self, backtester):
        # Jan 6 .. Mar 10: contributions on Feb 1 and Mar 1
        report = backtester.run(_flat_bars(70), warmup=5)

        for stats in (report.strategy, report.benchmark):
            assert stats.days == 65
            assert stats.total_invested == _d(60000)
        assert report.benchmark_state.collateral_qty == _d(600)
        assert report.benchmark_state.cash == _d(0)

    def test_flat_market_takes_no_leverage(self, backtester):
        report = backtester.run(_flat_bars(70), warmup=5)
        assert report.strategy_state.loan == _d(0)
        assert report.strategy_state.leveraged_qty == _d(0)
        assert report.excess_net_asset == _d(0)
        assert report.strategy.total_return_pct == _d(0)
        assert report.strategy.margin_call_count == 0

    def test_every_day_has_one_action(self, backtester):
        report = backtester.run(_flat_bars(70), warmup=5)
        assert sum(report.action_counts.values()) == 65
        assert "accumulate-tier-1" not in report.action_counts

    def test_initial_capital_invested_on_first_day(self, strategy_config, ledger_config, backtest_config):
        config = dataclasses.replace(backtest_config, initial_capital=_d(100000))
        bt = Backtester(strategy_config, ledger_config, config)
        try:
            report = bt.run(_flat_bars(20), warmup=5)
        finally:
            bt.tracker.close()
        assert report.strategy_state.collateral_qty == _d(1000)
        assert report.benchmark.final_net_asset == _d(100000)

    def test_tracker_holds_both_histories(self, backtester):
        backtester.run(_flat_bars(40), warmup=5)
        strategy_rows = backtester.tracker.get_history(STRATEGY_LEDGER)
        benchmark_rows = backtester.tracker.get_history(BENCHMARK_LEDGER)
        assert len(strategy_rows) == len(benchmark_rows) == 35
        assert all(row["action"] is None for row in benchmark_rows)
        assert all(row["action"] is not None for row in strategy_rows)


class TestReport:
    def test_years(self, backtester):
        report = backtester.run(_flat_bars(70), warmup=5)
        assert report.years == _d(64) / _d(365)
