"""
Decision state machine for the pledge leverage engine.

Arbitrates every detector and engine into exactly one action per cycle.
Strict priority, first match wins:

    0. insufficient data            -> INSUFFICIENT_DATA (nothing runs)
    1. maintenance below trigger    -> DEFEND
    2. borrow/exposure ceiling,
       or checkpoint drift          -> REBALANCE
    3. margin below danger level    -> BLOCKED_MARGIN_DANGER
    4. rally + sell events          -> TAKE_PROFIT
    5. drop + RSI crash + VIX fear  -> PANIC_BUY (ignores cooldown)
    6. overheat                     -> BLOCKED_OVERHEAT
    7. reversal count               -> BLOCKED_REVERSAL
    8. entry gate not met           -> HOLD
    9. cooldown without override    -> BLOCKED_COOLDOWN
   10. otherwise                    -> ACCUMULATE_* at the score's tier

run_cycle() then accrues a day of interest and marks the ledger to market;
a forced liquidation there replaces the decision with LIQUIDATE_FORCED.

Usage:
    from core.strategy import EngineContext, evaluate

    ctx = EngineContext()
    decision, delta = ctx.evaluate(snapshot, state)
"""

from __future__ import annotations

import copy
import dataclasses
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from bot_logging.logger_manager import log_decision_trace, setup_module_logger
from config.loader import ConfigLoader
from config.schema import LedgerConfig, StrategyConfig
from core.health_monitor import MaintenanceDefender, classify_margin
from core.ledger import PortfolioLedger
from core.position_manager import AccumulationEngine, RebalanceEngine, TakeProfitEngine
from core.safety import SafetyGates
from core.signal_engine import SignalEngine
from shared.types import (
    ActionResult,
    Decision,
    DecisionAction,
    LedgerTrade,
    LedgerUpdate,
    MarketSnapshot,
    PortfolioMetrics,
    PortfolioState,
    SignalReport,
)

_ZERO = Decimal("0")


@dataclass(frozen=True)
class StateDelta:
    """Before/after view of one cycle's effect on a PortfolioState."""

    before: PortfolioState
    after: PortfolioState
    interest: Decimal = _ZERO
    liquidation: LedgerTrade | None = None
    changes: dict[str, tuple[Any, Any]] = field(default_factory=dict)

    @classmethod
    def between(
        cls,
        before: PortfolioState,
        after: PortfolioState,
        interest: Decimal = _ZERO,
        liquidation: LedgerTrade | None = None,
    ) -> StateDelta:
        changes = {}
        for f in dataclasses.fields(PortfolioState):
            old, new = getattr(before, f.name), getattr(after, f.name)
            if old != new:
                changes[f.name] = (old, new)
        return cls(
            before=copy.deepcopy(before),
            after=copy.deepcopy(after),
            interest=interest,
            liquidation=liquidation,
            changes=changes,
        )

    @property
    def changed(self) -> bool:
        return bool(self.changes)


class DecisionStateMachine:
    """One action per snapshot, applied to the ledger it is handed."""

    def __init__(self, config: StrategyConfig) -> None:
        self._config = config
        self._signals = SignalEngine(config)
        self._gates = SafetyGates(config)
        self._defender = MaintenanceDefender(config)
        self._rebalance = RebalanceEngine(config)
        self._take_profit = TakeProfitEngine(config)
        self._accumulation = AccumulationEngine(config)
        self._logger = setup_module_logger("strategy", "strategy.log", module_folder="Strategy_Logs")

    @property
    def config(self) -> StrategyConfig:
        return self._config

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, snapshot: MarketSnapshot, ledger: PortfolioLedger) -> Decision:
        data_check = self._gates.check_data(snapshot)
        if not data_check.can_proceed:
            return self._decide(
                snapshot,
                DecisionAction.INSUFFICIENT_DATA,
                data_check.reason,
                {"reason": data_check.reason},
            )

        metrics = ledger.metrics(snapshot.collateral_price, snapshot.leveraged_price)
        report = self._signals.analyze(snapshot)
        inputs = self._base_inputs(snapshot, metrics, report, ledger)
        th = self._config.threshold
        score = report.entry.total

        # 1) survival mode
        if self._defender.should_defend(metrics):
            result = self._defender.defend(ledger, snapshot.collateral_price, snapshot.leveraged_price)
            rationale = (
                f"Maintenance {metrics.maintenance_margin:.1f}% below {self._defender.trigger}%: "
                f"defending to {self._defender.target}%"
            )
            if not result.details["target_reached"]:
                rationale += f" (reached {result.details['margin_after']:.1f}%, options exhausted)"
            return self._decide(snapshot, DecisionAction.DEFEND, rationale, inputs, result)

        # 2) hard ceilings, then scheduled checkpoint drift
        score_target = self._accumulation.target_ratio(score)
        inputs["score_target_ratio"] = score_target
        plan = self._rebalance.hard_breach(metrics)
        if plan is not None:
            result = self._rebalance.execute(ledger, plan, snapshot)
            if result.executed:
                rationale = (
                    f"Rebalance ({plan.trigger}): selling about {plan.sell_amount:.0f} "
                    f"toward ratio {plan.target_ratio}"
                )
            else:
                rationale = (
                    f"Rebalance ({plan.trigger}) needed but sell amount {plan.sell_amount:.0f} "
                    f"is below the minimum {self._rebalance.min_action}"
                )
            return self._decide(snapshot, DecisionAction.REBALANCE, rationale, inputs, result)

        if snapshot.is_rebalance_checkpoint:
            plan = self._rebalance.checkpoint_drift(metrics, score_target)
            if plan is not None and plan.sell_amount > self._rebalance.min_action:
                result = self._rebalance.execute(ledger, plan, snapshot)
                rationale = (
                    f"Checkpoint rebalance: borrow ratio {metrics.borrow_ratio:.2f} above "
                    f"target {plan.target_ratio:.2f}"
                )
                return self._decide(snapshot, DecisionAction.REBALANCE, rationale, inputs, result)

        # 3) margin danger vetoes new borrowing
        if metrics.maintenance_margin < th.mm_danger:
            return self._decide(
                snapshot,
                DecisionAction.BLOCKED_MARGIN_DANGER,
                f"Maintenance {metrics.maintenance_margin:.0f}% below danger level {th.mm_danger}%: "
                "no new borrowing",
                inputs,
            )

        # 4) take profit
        if self._take_profit.should_take_profit(report):
            result = self._take_profit.execute(ledger, metrics, snapshot)
            rationale = (
                f"Take profit: up {report.up_percent:.1f}% with "
                f"{report.sell.signal_count} sell signals, back to "
                f"{result.details['post_leverage']} leverage"
            )
            if not result.executed:
                rationale += " (already at or below the post-sale allocation)"
            return self._decide(snapshot, DecisionAction.TAKE_PROFIT, rationale, inputs, result)

        # 5) panic buy
        panic = self._accumulation.panic_signal(report, snapshot)
        if panic is not None:
            result = self._accumulation.panic_buy(ledger, metrics, panic, snapshot)
            inputs["panic"] = dataclasses.asdict(panic)
            level = "extreme panic" if panic.extreme else "panic"
            rationale = (
                f"Panic buy ({level}): drop {panic.drop_percent:.1f}% >= "
                f"{panic.extreme_drop_threshold}%, RSI {panic.rsi:.0f} < "
                f"{panic.extreme_rsi_threshold:.0f}, VIX {panic.vix}; leverage "
                f"{panic.suggested_leverage}"
            )
            if not result.executed:
                rationale += " (no credit or below minimum action)"
            return self._decide(snapshot, DecisionAction.PANIC_BUY, rationale, inputs, result)

        # 6) overheat
        overheat = report.overheat
        if overheat.is_overheat:
            hot = ", ".join(name for name, is_hot in overheat.factors.items() if is_hot)
            return self._decide(
                snapshot,
                DecisionAction.BLOCKED_OVERHEAT,
                f"Overheat ({hot}): new borrowing blocked; cooled "
                f"{overheat.cool_count}/{overheat.factor_count}",
                inputs,
            )

        # 7) weakening
        reversal = report.reversal
        if reversal.triggered_count >= th.reversal_trigger_count:
            return self._decide(
                snapshot,
                DecisionAction.BLOCKED_REVERSAL,
                f"Reversal signals {reversal.triggered_count}/{reversal.total_factor}: "
                "accumulation paused",
                inputs,
            )

        # 8) entry gate
        entry_check = self._gates.check_entry(report)
        if not entry_check.can_proceed:
            rationale = f"Entry not met: {entry_check.reason}"
            if overheat.high_count > 0:
                rationale += (
                    f"; warm, {overheat.high_count}/{overheat.factor_count} overheat factors hot"
                )
            return self._decide(snapshot, DecisionAction.HOLD, rationale, inputs)

        # 9) cooldown
        cooldown = self._gates.cooldown.status(ledger.state.last_buy_date, snapshot.date, score)
        inputs["cooldown_days_left"] = cooldown.days_left
        inputs["cooldown_overridden"] = cooldown.overridden
        if cooldown.in_cooldown:
            return self._decide(
                snapshot,
                DecisionAction.BLOCKED_COOLDOWN,
                f"Cooldown: {cooldown.days_left} days left since {cooldown.last_buy_date} "
                f"(score {score} below override {self._config.trading.cooldown_override_score})",
                inputs,
            )

        # 10) accumulate
        tier = self._accumulation.tier_for_score(score)
        result = self._accumulation.accumulate(ledger, metrics, score_target, snapshot)
        if result.executed:
            rationale = (
                f"Accumulate ({tier.value}, score {score}): borrowed "
                f"{result.details['borrow']:.0f} toward ratio {score_target}"
            )
            return self._decide(snapshot, tier, rationale, inputs, result)

        if score_target <= metrics.borrow_ratio:
            rationale = (
                f"Hold: target ratio {score_target} not above current "
                f"{metrics.borrow_ratio:.2f}"
            )
        else:
            rationale = (
                f"Hold: borrowable {result.details['borrow']:.0f} not above minimum "
                f"{self._config.trading.min_action_amount}"
            )
        return self._decide(snapshot, DecisionAction.HOLD, rationale, inputs, result)

    def run_cycle(
        self, snapshot: MarketSnapshot, ledger: PortfolioLedger
    ) -> tuple[Decision, LedgerUpdate | None, Decimal]:
        """
        Decide, accrue a day of interest, then mark to market (may liquidate).

        Without a usable price for both assets the book cannot be marked:
        interest still accrues and the update is None.
        """
        decision = self.evaluate(snapshot, ledger)
        interest = ledger.apply_daily_interest()
        if snapshot.collateral_price <= 0 or snapshot.leveraged_price <= 0:
            self._logger.warning(
                "%s mark-to-market skipped: collateral %s, leveraged %s",
                snapshot.date, snapshot.collateral_price, snapshot.leveraged_price,
            )
            log_decision_trace(uuid.uuid4().hex, decision, None)
            return decision, None, interest

        update = ledger.update(snapshot.collateral_price, snapshot.leveraged_price)

        if update.liquidation is not None:
            inputs = dict(decision.inputs)
            inputs.update(
                {
                    "overridden_action": decision.action.value,
                    "margin_before_liquidation": update.margin_before,
                    "liquidation_repaid": update.repaid,
                }
            )
            decision = Decision(
                action=DecisionAction.LIQUIDATE_FORCED,
                rationale=(
                    f"Margin call: maintenance {update.margin_before:.1f}% below "
                    f"{ledger.config.margin_call_threshold}%, leveraged leg liquidated "
                    f"(overrode {decision.action.value})"
                ),
                inputs=inputs,
                trades=decision.trades + (update.liquidation,),
                date=snapshot.date,
            )
            self._logger.critical("%s %s", snapshot.date, decision.rationale)

        log_decision_trace(uuid.uuid4().hex, decision, update.metrics)
        return decision, update, interest

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _base_inputs(
        self,
        snapshot: MarketSnapshot,
        metrics: PortfolioMetrics,
        report: SignalReport,
        ledger: PortfolioLedger,
    ) -> dict[str, Any]:
        return {
            "collateral_price": snapshot.collateral_price,
            "leveraged_price": snapshot.leveraged_price,
            "base_price": snapshot.base_price,
            "net_asset": metrics.net_asset,
            "loan": metrics.loan,
            "maintenance_margin": metrics.maintenance_margin,
            "margin_tier": classify_margin(
                metrics.maintenance_margin,
                self._config.maintenance,
                ledger.config.margin_call_threshold,
            ).value,
            "exposure_ratio": metrics.exposure_ratio,
            "borrow_ratio": metrics.borrow_ratio,
            "price_change_percent": report.price_change_percent,
            "drop_percent": report.drop_percent,
            "up_percent": report.up_percent,
            "score": report.entry.total,
            "score_components": [
                {"label": c.label, "value": c.value, "points": c.points}
                for c in report.entry.components
            ],
            "overheat_high_count": report.overheat.high_count,
            "reversal_count": report.reversal.triggered_count,
            "sell_signal_count": report.sell.signal_count,
            "sell_state_count": report.sell.state_count,
        }

    def _decide(
        self,
        snapshot: MarketSnapshot,
        action: DecisionAction,
        rationale: str,
        inputs: dict[str, Any],
        result: ActionResult | None = None,
    ) -> Decision:
        if result is not None:
            inputs = {**inputs, **result.details}
        trades = result.trades if result is not None else ()

        if action in (DecisionAction.DEFEND, DecisionAction.BLOCKED_MARGIN_DANGER):
            self._logger.warning("%s %s: %s", snapshot.date, action.value, rationale)
        elif trades:
            self._logger.info("%s %s: %s", snapshot.date, action.value, rationale)
        else:
            self._logger.debug("%s %s: %s", snapshot.date, action.value, rationale)

        return Decision(
            action=action, rationale=rationale, inputs=inputs, trades=trades, date=snapshot.date
        )


# ---------------------------------------------------------------------------
# Caller-facing entry points
# ---------------------------------------------------------------------------


def evaluate(
    snapshot: MarketSnapshot,
    config: StrategyConfig,
    state: PortfolioState,
    ledger_config: LedgerConfig,
    settle: bool = True,
) -> tuple[Decision, StateDelta]:
    """
    Pure entry point: the caller's state is never mutated.

    With settle (the default) the cycle includes daily interest and the
    margin-call check; without it only the decision is applied.
    """
    return _evaluate_with(DecisionStateMachine(config), snapshot, state, ledger_config, settle)


def _evaluate_with(
    machine: DecisionStateMachine,
    snapshot: MarketSnapshot,
    state: PortfolioState,
    ledger_config: LedgerConfig,
    settle: bool,
) -> tuple[Decision, StateDelta]:
    ledger = PortfolioLedger(ledger_config, copy.deepcopy(state))
    if settle:
        decision, update, interest = machine.run_cycle(snapshot, ledger)
        liquidation = update.liquidation if update is not None else None
        return decision, StateDelta.between(state, ledger.state, interest, liquidation)

    decision = machine.evaluate(snapshot, ledger)
    return decision, StateDelta.between(state, ledger.state)


class EngineContext:
    """
    Owns a ConfigLoader and the state machine built from its current config.

    reload() swaps in new files only when they validate; the machine is
    rebuilt lazily afterwards.
    """

    def __init__(self, loader: ConfigLoader | None = None) -> None:
        self.loader = loader if loader is not None else ConfigLoader()
        self._machine: DecisionStateMachine | None = None

    @property
    def strategy_config(self) -> StrategyConfig:
        return self.loader.get_strategy_config()

    @property
    def ledger_config(self) -> LedgerConfig:
        return self.loader.get_ledger_config()

    @property
    def machine(self) -> DecisionStateMachine:
        if self._machine is None or self._machine.config is not self.strategy_config:
            self._machine = DecisionStateMachine(self.strategy_config)
        return self._machine

    def reload(self) -> bool:
        return self.loader.reload()

    def new_ledger(self, state: PortfolioState | None = None, name: str = "strategy") -> PortfolioLedger:
        return PortfolioLedger(self.ledger_config, state, name=name)

    def evaluate(
        self, snapshot: MarketSnapshot, state: PortfolioState, settle: bool = True
    ) -> tuple[Decision, StateDelta]:
        return _evaluate_with(self.machine, snapshot, state, self.ledger_config, settle)
