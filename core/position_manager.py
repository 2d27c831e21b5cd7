"""
Position engines for the pledge leverage engine.

Three engines turn a decision into ledger operations:

    RebalanceEngine:    sells the leveraged leg when the borrow ratio or the
                         exposure ratio breaches its ceiling, or when a
                         scheduled checkpoint finds the borrow ratio drifted
                         above target. Proceeds repay the loan first and the
                         remainder buys collateral.
    TakeProfitEngine:   sells back to the post-sale allocation row after a
                         confirmed rally; proceeds repay the loan first.
    AccumulationEngine: borrows against the collateral and buys the
                         leveraged leg, never beyond the credit line
                         (collateral value x max loan-to-collateral). Also
                         runs the panic-buy variant.

Engines never decide priority; the state machine calls them in order.

Usage:
    engine = AccumulationEngine(strategy_config)
    result = engine.accumulate(ledger, metrics, target_ratio, snapshot)
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from bot_logging.logger_manager import setup_module_logger
from config.schema import StrategyConfig
from core.ledger import floor_shares
from shared.types import (
    ActionResult,
    DecisionAction,
    FundingSource,
    MarketSnapshot,
    PanicSignal,
    PortfolioMetrics,
    RebalancePlan,
    SignalReport,
)

if TYPE_CHECKING:
    from core.ledger import PortfolioLedger

_ZERO = Decimal("0")


def _sell_and_repay(
    ledger: PortfolioLedger,
    sell_amount: Decimal,
    leveraged_price: Decimal,
    collateral_price: Decimal,
    reinvest: bool,
) -> tuple[list, Decimal, Decimal]:
    """
    Sell floor(sell_amount / price) leveraged shares, repay the loan from the
    proceeds, optionally put the remainder into collateral.

    Returns (trades, repaid, remainder).
    """
    trades = []
    sale = ledger.sell_leveraged(leveraged_price, floor_shares(sell_amount / leveraged_price))
    if sale is None:
        return trades, _ZERO, _ZERO
    trades.append(sale)

    proceeds = sale.net
    repaid = _ZERO
    repay = ledger.repay_loan(min(ledger.state.loan, proceeds), FundingSource.CASH)
    if repay is not None:
        trades.append(repay)
        repaid = repay.gross

    remainder = proceeds - repaid
    if reinvest and remainder > 0:
        buy = ledger.buy_collateral(collateral_price, remainder)
        if buy is not None:
            trades.append(buy)
    return trades, repaid, remainder


# ---------------------------------------------------------------------------
# RebalanceEngine
# ---------------------------------------------------------------------------


class RebalanceEngine:
    def __init__(self, config: StrategyConfig) -> None:
        self._rebalance = config.rebalance
        self._threshold = config.threshold
        self._min_action = config.trading.min_action_amount
        self._logger = setup_module_logger(
            "position_manager", "position_manager.log", module_folder="Position_Manager_Logs"
        )

    @property
    def min_action(self) -> Decimal:
        return self._min_action

    def hard_breach(self, metrics: PortfolioMetrics) -> RebalancePlan | None:
        """Borrow-ratio ceiling first, then exposure ceiling."""
        if metrics.borrow_ratio > self._rebalance.hard_borrow_limit:
            target = self._rebalance.fallback_repay_ratio
            return RebalancePlan(
                trigger="borrow_limit",
                target_ratio=target,
                sell_amount=metrics.loan - metrics.net_asset * target,
                hard=True,
            )
        if metrics.exposure_ratio > self._threshold.exposure_ratio_high:
            target = self._threshold.exposure_target_ratio
            return RebalancePlan(
                trigger="exposure",
                target_ratio=target,
                sell_amount=metrics.leveraged_value - metrics.net_asset * target,
                hard=True,
            )
        return None

    def checkpoint_drift(
        self, metrics: PortfolioMetrics, score_target_ratio: Decimal
    ) -> RebalancePlan | None:
        """At a scheduled checkpoint: borrow ratio above max(target, floor) by more than the band."""
        effective = max(score_target_ratio, self._rebalance.min_ratio)
        if metrics.borrow_ratio - effective <= self._rebalance.tolerance:
            return None
        return RebalancePlan(
            trigger="checkpoint",
            target_ratio=effective,
            sell_amount=metrics.loan - metrics.net_asset * effective,
            hard=False,
        )

    def execute(
        self, ledger: PortfolioLedger, plan: RebalancePlan, snapshot: MarketSnapshot
    ) -> ActionResult:
        details = {
            "trigger": plan.trigger,
            "target_ratio": plan.target_ratio,
            "sell_amount": plan.sell_amount,
            "min_action_amount": self._min_action,
        }
        if plan.sell_amount <= self._min_action:
            self._logger.info(
                "Rebalance (%s) sell amount %s below minimum %s, skipped",
                plan.trigger, plan.sell_amount, self._min_action,
            )
            return ActionResult(details=details)

        trades, repaid, remainder = _sell_and_repay(
            ledger,
            plan.sell_amount,
            snapshot.leveraged_price,
            snapshot.collateral_price,
            reinvest=True,
        )
        self._logger.info(
            "Rebalance (%s): sold for %s, repaid %s, remainder %s to collateral",
            plan.trigger, plan.sell_amount, repaid, remainder,
        )
        details.update({"repaid": repaid, "remainder": remainder})
        return ActionResult(trades=tuple(trades), details=details)


# ---------------------------------------------------------------------------
# TakeProfitEngine
# ---------------------------------------------------------------------------


class TakeProfitEngine:
    def __init__(self, config: StrategyConfig) -> None:
        self._config = config
        self._min_action = config.trading.min_action_amount
        self._logger = setup_module_logger(
            "position_manager", "position_manager.log", module_folder="Position_Manager_Logs"
        )

    def should_take_profit(self, report: SignalReport) -> bool:
        sell = self._config.sell
        return (
            report.up_percent >= sell.min_up_percent_to_sell
            and report.sell.signal_count >= sell.min_signal_count_to_sell
        )

    def execute(
        self, ledger: PortfolioLedger, metrics: PortfolioMetrics, snapshot: MarketSnapshot
    ) -> ActionResult:
        post = self._config.post_sale_allocation()
        sell_amount = max(_ZERO, metrics.leveraged_value - metrics.net_asset * post.leverage)
        details = {
            "post_leverage": post.leverage,
            "post_cash": post.cash,
            "sell_amount": sell_amount,
            "reinvest": self._config.sell.reinvest_proceeds,
        }
        if sell_amount <= self._min_action:
            return ActionResult(details=details)

        trades, repaid, remainder = _sell_and_repay(
            ledger,
            sell_amount,
            snapshot.leveraged_price,
            snapshot.collateral_price,
            reinvest=self._config.sell.reinvest_proceeds,
        )
        self._logger.info(
            "Take profit: sold for %s back to %s leverage, repaid %s, remainder %s",
            sell_amount, post.leverage, repaid, remainder,
        )
        details.update({"repaid": repaid, "remainder": remainder})
        return ActionResult(trades=tuple(trades), details=details)


# ---------------------------------------------------------------------------
# AccumulationEngine
# ---------------------------------------------------------------------------


class AccumulationEngine:
    def __init__(self, config: StrategyConfig) -> None:
        self._config = config
        self._trading = config.trading
        self._logger = setup_module_logger(
            "position_manager", "position_manager.log", module_folder="Position_Manager_Logs"
        )

    def target_ratio(self, score: Decimal) -> Decimal:
        return self._config.allocation_for_score(score).leverage

    def tier_for_score(self, score: Decimal) -> DecisionAction:
        th = self._config.threshold
        if score >= th.w_aggressive:
            return DecisionAction.ACCUMULATE_AGGRESSIVE
        if score >= th.w_active:
            return DecisionAction.ACCUMULATE_ACTIVE
        return DecisionAction.ACCUMULATE_BASE

    def available_credit(self, metrics: PortfolioMetrics) -> Decimal:
        return max(
            _ZERO,
            metrics.collateral_value * self._trading.max_loan_to_collateral - metrics.loan,
        )

    def borrow_amount(self, metrics: PortfolioMetrics, target_ratio: Decimal) -> Decimal:
        """min(desired top-up of the leveraged leg, remaining credit line)."""
        desired = metrics.net_asset * target_ratio - metrics.leveraged_value
        return min(desired, self.available_credit(metrics))

    def accumulate(
        self,
        ledger: PortfolioLedger,
        metrics: PortfolioMetrics,
        target_ratio: Decimal,
        snapshot: MarketSnapshot,
        set_cooldown: bool = True,
    ) -> ActionResult:
        """Borrow and buy toward ``target_ratio``; only when it sits above the current borrow ratio."""
        details = {
            "target_ratio": target_ratio,
            "current_borrow_ratio": metrics.borrow_ratio,
            "available_credit": self.available_credit(metrics),
            "min_action_amount": self._trading.min_action_amount,
        }
        if target_ratio <= metrics.borrow_ratio:
            details["borrow"] = _ZERO
            return ActionResult(details=details)

        borrow = self.borrow_amount(metrics, target_ratio)
        details["borrow"] = borrow
        if borrow <= self._trading.min_action_amount:
            return ActionResult(details=details)

        trade = ledger.borrow_and_buy_leveraged(
            snapshot.leveraged_price, borrow, snapshot.date if set_cooldown else None
        )
        if trade is None:
            return ActionResult(details=details)

        self._logger.info(
            "Accumulate on %s: borrowed %s toward ratio %s, bought %s leveraged",
            snapshot.date, borrow, target_ratio, trade.quantity,
        )
        return ActionResult(trades=(trade,), details=details)

    # ------------------------------------------------------------------
    # Panic buy
    # ------------------------------------------------------------------

    def panic_signal(self, report: SignalReport, snapshot: MarketSnapshot) -> PanicSignal | None:
        """Extreme drop, crashed RSI and a fear-level volatility index, all at once."""
        panic = self._config.buy.panic
        if panic is None or snapshot.vix is None or snapshot.vix <= 0 or not snapshot.rsi:
            return None

        drop_threshold = self._config.buy.extreme_drop_threshold()
        rsi_threshold = self._config.buy.rsi_oversold / panic.rsi_divider
        rsi = snapshot.rsi[-1]
        if not (
            report.drop_percent >= drop_threshold
            and rsi < rsi_threshold
            and snapshot.vix >= panic.vix_panic
        ):
            return None

        extreme = snapshot.vix >= panic.vix_extreme
        leverage = panic.suggested_leverage
        if extreme:
            leverage = leverage * panic.extreme_multiplier
        return PanicSignal(
            drop_percent=report.drop_percent,
            extreme_drop_threshold=drop_threshold,
            rsi=rsi,
            extreme_rsi_threshold=rsi_threshold,
            vix=snapshot.vix,
            extreme=extreme,
            suggested_leverage=min(panic.max_leverage, leverage),
        )

    def panic_buy(
        self,
        ledger: PortfolioLedger,
        metrics: PortfolioMetrics,
        signal: PanicSignal,
        snapshot: MarketSnapshot,
    ) -> ActionResult:
        """One-off accumulation at the panic leverage; ignores cooldown, still credit-bounded."""
        return self.accumulate(
            ledger,
            metrics,
            signal.suggested_leverage,
            snapshot,
            set_cooldown=self._trading.panic_buy_resets_cooldown,
        )
