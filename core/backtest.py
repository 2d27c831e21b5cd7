"""
Daily backtest of the pledge leverage strategy against a collateral-only
benchmark.

Each trading day:
    1. On a checkpoint month's first trading day, the base price resets to the
       highest leveraged close of the previous ``base_price_lookback`` days
       and the day is flagged as a rebalance checkpoint.
    2. On the first trading day of every month the contribution is deposited
       into both ledgers and fully invested in the collateral asset.
    3. The strategy ledger runs one decision cycle (decision, daily interest,
       mark-to-market with forced liquidation); the benchmark is only marked.
    4. Both ledgers are recorded in the PnLTracker.

Indicators are computed once over the whole leveraged series; every day only
sees the values up to and including itself.

Usage:
    backtester = Backtester(strategy_config, ledger_config, backtest_config)
    report = backtester.run(load_price_bars(path))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from bot_logging.logger_manager import setup_module_logger
from config.schema import BacktestConfig, LedgerConfig, StrategyConfig
from core.indicators import Indicators
from core.ledger import PortfolioLedger
from core.pnl_tracker import PnLTracker
from core.strategy import DecisionStateMachine
from shared.types import MarketSnapshot, PerformanceStats, PortfolioState, PriceBar

_ONE = Decimal("1")

_RSI_PERIOD = 14
_MACD_FAST, _MACD_SLOW, _MACD_SIGNAL = 12, 26, 9
_KD_PERIOD, _KD_SIGNAL = 9, 3

# Bar index at which each series produces its first value.
_RSI_FIRST_BAR = _RSI_PERIOD
_MACD_FIRST_BAR = _MACD_SLOW + _MACD_SIGNAL - 2
_KD_FIRST_BAR = _KD_PERIOD + _KD_SIGNAL - 2

STRATEGY_LEDGER = "strategy"
BENCHMARK_LEDGER = "benchmark"


def synthesize_leveraged_prices(
    closes: list[Decimal],
    leverage: Decimal = Decimal("2"),
    annual_expense: Decimal = Decimal("0.01"),
    start_price: Decimal = Decimal("10"),
    trading_days_per_year: int = 250,
) -> list[Decimal]:
    """
    Daily-reset leveraged series: each day returns ``leverage`` times the
    underlying's return minus the daily share of the expense ratio.
    """
    if not closes:
        return []
    daily_expense = annual_expense / Decimal(trading_days_per_year)
    prices = [start_price]
    for prev, cur in zip(closes, closes[1:]):
        ret = (cur - prev) / prev
        prices.append(prices[-1] * (_ONE + ret * leverage - daily_expense))
    return prices


@dataclass(frozen=True)
class BacktestReport:
    start: date
    end: date
    strategy: PerformanceStats
    benchmark: PerformanceStats
    strategy_state: PortfolioState
    benchmark_state: PortfolioState
    action_counts: dict[str, int] = field(default_factory=dict)

    @property
    def years(self) -> Decimal:
        return Decimal((self.end - self.start).days) / Decimal("365")

    @property
    def excess_net_asset(self) -> Decimal:
        return self.strategy.final_net_asset - self.benchmark.final_net_asset


class Backtester:
    """Runs one strategy ledger and one benchmark ledger over a price history."""

    def __init__(
        self,
        strategy_config: StrategyConfig,
        ledger_config: LedgerConfig,
        backtest_config: BacktestConfig,
        tracker: PnLTracker | None = None,
    ) -> None:
        self._strategy_config = strategy_config
        self._ledger_config = ledger_config
        self._config = backtest_config
        self._tracker = tracker if tracker is not None else PnLTracker()
        self._machine = DecisionStateMachine(strategy_config)
        self._window = strategy_config.threshold.lookback_periods + 5
        self._logger = setup_module_logger("backtest", "backtest.log", module_folder="Backtest_Logs")

    @property
    def tracker(self) -> PnLTracker:
        return self._tracker

    @property
    def synthetic_leverage(self) -> Decimal:
        """Backtest override, else the strategy's target multiplier."""
        if self._config.synthetic_leverage is not None:
            return self._config.synthetic_leverage
        return self._strategy_config.target_multiplier

    # ------------------------------------------------------------------
    # Series preparation
    # ------------------------------------------------------------------

    def leveraged_closes(self, bars: list[PriceBar]) -> list[Decimal]:
        """Leveraged closes from the bars, synthesized when any is missing."""
        if all(bar.leveraged_close is not None for bar in bars):
            return [bar.leveraged_close for bar in bars]
        leverage = self.synthetic_leverage
        self._logger.info(
            "Leveraged closes missing, synthesizing %sx series from %d collateral closes",
            leverage, len(bars),
        )
        closes = synthesize_leveraged_prices(
            [bar.collateral_close for bar in bars],
            leverage=leverage,
            annual_expense=self._config.synthetic_annual_expense,
            start_price=self._config.synthetic_start_price,
            trading_days_per_year=self._config.trading_days_per_year,
        )
        for bar, close in zip(bars, closes):
            if close <= 0:
                raise ValueError(
                    f"Synthesized {leverage}x close is {close} on {bar.date}, the leveraged leg is wiped out"
                )
        return closes

    def _slice(self, series: list, first_bar: int, i: int) -> list:
        end = i - first_bar + 1
        if end <= 0:
            return []
        return series[max(0, end - self._window):end]

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(
        self,
        bars: list[PriceBar],
        start_date: date | None = None,
        warmup: int | None = None,
    ) -> BacktestReport:
        """
        Simulate from ``start_date`` (or after ``warmup`` bars, default one
        trading year) to the last bar.

        Raises:
            ValueError: When no bar is left to simulate.
        """
        if warmup is None:
            warmup = self._config.trading_days_per_year
        if start_date is not None:
            start = next((i for i, bar in enumerate(bars) if bar.date >= start_date), len(bars))
        else:
            start = warmup
        if start >= len(bars):
            raise ValueError(f"Not enough bars: {len(bars)} loaded, simulation starts at {start}")

        leveraged = self.leveraged_closes(bars)
        rsi = Indicators.rsi_series(leveraged, _RSI_PERIOD)
        macd = Indicators.macd_series(leveraged, _MACD_FAST, _MACD_SLOW, _MACD_SIGNAL)
        # Daily closes only, so the close stands in for the high and low.
        stochastic = Indicators.stochastic(leveraged, leveraged, leveraged, _KD_PERIOD, _KD_SIGNAL)

        strategy = PortfolioLedger(
            self._ledger_config, PortfolioState(cash=self._config.initial_capital), STRATEGY_LEDGER
        )
        benchmark = PortfolioLedger(
            self._ledger_config, PortfolioState(cash=self._config.initial_capital), BENCHMARK_LEDGER
        )
        invested = {STRATEGY_LEDGER: self._config.initial_capital, BENCHMARK_LEDGER: self._config.initial_capital}
        for ledger in (strategy, benchmark):
            ledger.buy_collateral(bars[start].collateral_close, PortfolioLedger.ALL)

        self._logger.info(
            "Backtest %s .. %s (%d days), contribution %s per month",
            bars[start].date, bars[-1].date, len(bars) - start, self._config.monthly_contribution,
        )

        base_price = Decimal("0")
        last_checkpoint: tuple[int, int] | None = None

        for i in range(start, len(bars)):
            bar = bars[i]
            month_key = (bar.date.year, bar.date.month)

            is_checkpoint = False
            if bar.date.month in self._config.checkpoint_months and month_key != last_checkpoint:
                history = leveraged[max(0, i - self._config.base_price_lookback):i]
                if history:
                    base_price = max(history)
                is_checkpoint = True
                last_checkpoint = month_key
            if base_price == 0:
                base_price = leveraged[i]

            if i > 0 and (bars[i - 1].date.year, bars[i - 1].date.month) != month_key:
                contribution = self._config.monthly_contribution
                for ledger in (strategy, benchmark):
                    if contribution > 0:
                        ledger.deposit(contribution)
                        invested[ledger.name] += contribution
                    ledger.buy_collateral(bar.collateral_close, PortfolioLedger.ALL)

            snapshot = MarketSnapshot(
                date=bar.date,
                collateral_price=bar.collateral_close,
                leveraged_price=leveraged[i],
                base_price=base_price,
                rsi=self._slice(rsi, _RSI_FIRST_BAR, i),
                macd=self._slice(macd, _MACD_FIRST_BAR, i),
                stochastic=self._slice(stochastic, _KD_FIRST_BAR, i),
                bias240=Indicators.bias_percent(leveraged[i], leveraged[:i + 1], 240),
                vix=bar.vix,
                is_rebalance_checkpoint=is_checkpoint,
            )

            decision, update, _ = self._machine.run_cycle(snapshot, strategy)
            benchmark.apply_daily_interest()
            bench_update = benchmark.update(bar.collateral_close, leveraged[i])

            self._tracker.record_day(
                STRATEGY_LEDGER, bar.date, update.metrics, strategy.state,
                invested[STRATEGY_LEDGER], decision.action,
            )
            self._tracker.record_day(
                BENCHMARK_LEDGER, bar.date, bench_update.metrics, benchmark.state,
                invested[BENCHMARK_LEDGER],
            )

        report = BacktestReport(
            start=bars[start].date,
            end=bars[-1].date,
            strategy=self._tracker.get_stats(STRATEGY_LEDGER),
            benchmark=self._tracker.get_stats(BENCHMARK_LEDGER),
            strategy_state=strategy.snapshot(),
            benchmark_state=benchmark.snapshot(),
            action_counts=self._tracker.action_counts(STRATEGY_LEDGER),
        )
        self._logger.info(
            "Backtest done: strategy %s (%.2f%%, %d margin calls) vs benchmark %s (%.2f%%)",
            report.strategy.final_net_asset,
            report.strategy.total_return_pct,
            report.strategy.margin_call_count,
            report.benchmark.final_net_asset,
            report.benchmark.total_return_pct,
        )
        return report
