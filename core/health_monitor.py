"""
Maintenance-margin monitoring and defense for the pledge leverage engine.

Derived portfolio metrics are never stored; compute_metrics() rebuilds them
from a PortfolioState and the cycle's prices. Margin tiers:

    SAFE        margin >= defend target (or no loan)
    WATCH       defend trigger <= margin < defend target
    DEFEND      broker floor <= margin < defend trigger
    MARGIN_CALL margin < broker floor (ledger liquidates on update)

MaintenanceDefender restores the margin to the defend target with a fixed
remediation order, re-measuring after every step:

    1. reserve cash buys collateral
    2. free cash buys collateral
    3. reserve cash repays the loan
    4. leveraged shares are sold and the proceeds repay the loan

Usage:
    defender = MaintenanceDefender(strategy_config)
    if defender.should_defend(metrics):
        result = defender.defend(ledger, collateral_price, leveraged_price)
"""

from __future__ import annotations

from decimal import ROUND_CEILING, Decimal
from typing import TYPE_CHECKING

from bot_logging.logger_manager import setup_module_logger
from config.schema import MaintenanceRules, ReserveTier, StrategyConfig
from shared.constants import (
    DEFAULT_RESERVE_RATIO,
    HUNDRED,
    RESERVE_INSUFFICIENT_PCT,
    SENTINEL_UNLIMITED_MARGIN,
)
from shared.types import (
    ActionResult,
    FundingSource,
    MarginTier,
    PortfolioMetrics,
    PortfolioState,
    ReserveStatus,
)

if TYPE_CHECKING:
    from core.ledger import PortfolioLedger

_ZERO = Decimal("0")


def compute_metrics(
    state: PortfolioState, collateral_price: Decimal, leveraged_price: Decimal
) -> PortfolioMetrics:
    """Value the book at the given prices; ratios are 0 when net asset <= 0."""
    collateral_value = state.collateral_qty * collateral_price
    leveraged_value = state.leveraged_qty * leveraged_price
    net_asset = collateral_value + leveraged_value + state.cash - state.loan

    if state.loan > 0:
        margin = collateral_value / state.loan * HUNDRED
    else:
        margin = SENTINEL_UNLIMITED_MARGIN

    if net_asset > 0:
        exposure = leveraged_value / net_asset
        borrow = state.loan / net_asset
    else:
        exposure = _ZERO
        borrow = _ZERO

    return PortfolioMetrics(
        collateral_value=collateral_value,
        leveraged_value=leveraged_value,
        net_asset=net_asset,
        maintenance_margin=margin,
        exposure_ratio=exposure,
        borrow_ratio=borrow,
        loan=state.loan,
    )


def classify_margin(
    margin: Decimal, rules: MaintenanceRules, margin_call_threshold: Decimal
) -> MarginTier:
    if margin < margin_call_threshold:
        return MarginTier.MARGIN_CALL
    if margin < rules.defend_trigger:
        return MarginTier.DEFEND
    if margin < rules.defend_target:
        return MarginTier.WATCH
    return MarginTier.SAFE


def reserve_status(
    net_asset: Decimal, reserve_cash: Decimal, tiers: tuple[ReserveTier, ...]
) -> ReserveStatus:
    """
    Compare reserve cash with the target for this asset size.

    The target ratio comes from the first tier whose max_asset covers
    net_asset (10% when none does); below 80% achievement the reserve is
    reported insufficient.
    """
    ratio = DEFAULT_RESERVE_RATIO
    for tier in tiers:
        if net_asset <= tier.max_asset:
            ratio = tier.ratio
            break
    target = max(_ZERO, net_asset * ratio)
    achievement = reserve_cash / target * HUNDRED if target > 0 else _ZERO
    return ReserveStatus(
        target_reserve=target,
        current_reserve=reserve_cash,
        achievement_pct=achievement,
        is_insufficient=achievement < RESERVE_INSUFFICIENT_PCT,
    )


class MaintenanceDefender:
    """Survival-mode deleveraging when the collateral/loan ratio sinks."""

    def __init__(self, config: StrategyConfig) -> None:
        self._trigger = config.maintenance.defend_trigger
        self._target = config.maintenance.defend_target
        self._reserve_tiers = config.reserve_tiers
        self._logger = setup_module_logger(
            "health_monitor", "health_monitor.log", module_folder="Health_Monitor_Logs"
        )

    @property
    def trigger(self) -> Decimal:
        return self._trigger

    @property
    def target(self) -> Decimal:
        return self._target

    def should_defend(self, metrics: PortfolioMetrics) -> bool:
        return metrics.loan > 0 and metrics.maintenance_margin < self._trigger

    def target_loan(self, collateral_value: Decimal) -> Decimal:
        """Loan balance at which the margin sits exactly on the defend target."""
        return collateral_value / (self._target / HUNDRED)

    def _reached(self, metrics: PortfolioMetrics) -> bool:
        return metrics.loan <= 0 or metrics.maintenance_margin >= self._target

    def defend(
        self,
        ledger: PortfolioLedger,
        collateral_price: Decimal,
        leveraged_price: Decimal,
    ) -> ActionResult:
        before = ledger.metrics(collateral_price, leveraged_price)
        target_ratio = self._target / HUNDRED
        reserve = reserve_status(before.net_asset, ledger.state.reserve_cash, self._reserve_tiers)
        needed_collateral = max(_ZERO, before.loan * target_ratio - before.collateral_value)

        self._logger.warning(
            "Maintenance %.1f%% < trigger %s%%: defending to %s%% (loan=%s, target loan=%s)",
            before.maintenance_margin,
            self._trigger,
            self._target,
            before.loan,
            self.target_loan(before.collateral_value),
        )

        trades = []
        steps: list[str] = []

        # 1-2: raise the collateral side, reserve first
        for funding in (FundingSource.RESERVE, FundingSource.CASH):
            metrics = ledger.metrics(collateral_price, leveraged_price)
            if self._reached(metrics):
                break
            shortfall = metrics.loan * target_ratio - metrics.collateral_value
            qty = (shortfall / collateral_price).to_integral_value(rounding=ROUND_CEILING)
            trade = ledger.buy_collateral_qty(collateral_price, qty, funding)
            if trade is not None:
                trades.append(trade)
                steps.append(f"{funding.value} bought {trade.quantity} collateral")

        # 3: reserve pays down the loan directly
        metrics = ledger.metrics(collateral_price, leveraged_price)
        if not self._reached(metrics):
            excess = metrics.loan - self.target_loan(metrics.collateral_value)
            trade = ledger.repay_loan(excess, FundingSource.RESERVE)
            if trade is not None:
                trades.append(trade)
                steps.append(f"reserve repaid {trade.gross}")

        # 4: last resort, sell the leveraged leg
        metrics = ledger.metrics(collateral_price, leveraged_price)
        if not self._reached(metrics):
            excess = metrics.loan - self.target_loan(metrics.collateral_value)
            sale = ledger.sell_leveraged_for(leveraged_price, excess)
            if sale is not None:
                trades.append(sale)
                repay = ledger.repay_loan(sale.net, FundingSource.CASH)
                steps.append(f"sold {sale.quantity} leveraged")
                if repay is not None:
                    trades.append(repay)
                    steps.append(f"proceeds repaid {repay.gross}")

        after = ledger.metrics(collateral_price, leveraged_price)
        reached = self._reached(after)
        if reached:
            self._logger.info(
                "Defense restored maintenance to %.1f%% via %s", after.maintenance_margin, steps
            )
        else:
            self._logger.error(
                "Defense exhausted options at %.1f%% (target %s%%)",
                after.maintenance_margin,
                self._target,
            )

        return ActionResult(
            trades=tuple(trades),
            details={
                "margin_before": before.maintenance_margin,
                "margin_after": after.maintenance_margin,
                "defend_trigger": self._trigger,
                "defend_target": self._target,
                "target_loan": self.target_loan(before.collateral_value),
                "needed_collateral": needed_collateral,
                "target_reached": reached,
                "steps": steps,
                "reserve_target": reserve.target_reserve,
                "reserve_current": reserve.current_reserve,
                "reserve_achievement_pct": reserve.achievement_pct,
                "reserve_insufficient": reserve.is_insufficient,
            },
        )
