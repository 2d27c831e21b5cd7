"""
Typed configuration schema for the pledge leverage engine.

Frozen dataclasses built once by config/validate.py from the raw JSON files.
Nothing downstream reads raw config dicts.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from shared.constants import BASE_ALLOCATION_SCORE

# ---------------------------------------------------------------------------
# Buy side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DropScoreRule:
    min_drop: Decimal
    score: Decimal
    label: str


@dataclass(frozen=True)
class PanicRules:
    vix_panic: Decimal
    vix_extreme: Decimal
    min_drop_rank: int
    rsi_divider: Decimal
    suggested_leverage: Decimal
    extreme_multiplier: Decimal
    max_leverage: Decimal


@dataclass(frozen=True)
class BuyRules:
    min_drop_percent_to_consider: Decimal
    min_weight_score_to_buy: Decimal
    drop_score_rules: tuple[DropScoreRule, ...]  # sorted by min_drop, descending
    rsi_oversold: Decimal
    rsi_score: Decimal
    macd_score: Decimal
    kd_oversold_k: Decimal
    kd_score: Decimal
    panic: PanicRules | None = None

    def extreme_drop_threshold(self) -> Decimal:
        """min_drop of the rule at the configured panic rank (top rule if too few)."""
        rank = self.panic.min_drop_rank if self.panic else 2
        if len(self.drop_score_rules) < rank:
            return self.drop_score_rules[0].min_drop
        return self.drop_score_rules[rank - 1].min_drop


# ---------------------------------------------------------------------------
# Sell side
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SellRules:
    min_up_percent_to_sell: Decimal
    min_signal_count_to_sell: int
    post_allocation_index_from_end: int
    rsi_overbought: Decimal
    kd_overbought_k: Decimal
    require_cross_today: bool = True
    reinvest_proceeds: bool = False


# ---------------------------------------------------------------------------
# Allocation table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AllocationRule:
    min_score: Decimal
    leverage: Decimal  # target borrow ratio
    cash: Decimal
    comment: str = ""

    @property
    def is_base(self) -> bool:
        return self.min_score == BASE_ALLOCATION_SCORE


# ---------------------------------------------------------------------------
# Thresholds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Thresholds:
    mm_danger: Decimal
    overheat_count: int
    rsi_overheat_level: Decimal
    d_overheat_level: Decimal
    bias240_overheat_level: Decimal
    rsi_reversal_level: Decimal
    k_reversal_level: Decimal
    reversal_trigger_count: int
    exposure_ratio_high: Decimal
    exposure_target_ratio: Decimal
    w_active: Decimal
    w_aggressive: Decimal
    lookback_periods: int = 10


@dataclass(frozen=True)
class MaintenanceRules:
    defend_trigger: Decimal
    defend_target: Decimal


@dataclass(frozen=True)
class RebalanceRules:
    hard_borrow_limit: Decimal
    fallback_repay_ratio: Decimal
    min_ratio: Decimal
    tolerance: Decimal


@dataclass(frozen=True)
class TradingRules:
    cooldown_days: int
    cooldown_override_score: Decimal
    max_loan_to_collateral: Decimal
    min_action_amount: Decimal
    min_indicator_periods: int = 2
    panic_buy_resets_cooldown: bool = True


@dataclass(frozen=True)
class ReserveTier:
    max_asset: Decimal
    ratio: Decimal


# ---------------------------------------------------------------------------
# Top-level configs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StrategyConfig:
    version: str
    target_multiplier: Decimal
    buy: BuyRules
    sell: SellRules
    allocation: tuple[AllocationRule, ...]  # file order preserved
    threshold: Thresholds
    maintenance: MaintenanceRules
    rebalance: RebalanceRules
    trading: TradingRules
    reserve_tiers: tuple[ReserveTier, ...] = ()

    @property
    def base_allocation(self) -> AllocationRule:
        for rule in self.allocation:
            if rule.is_base:
                return rule
        raise LookupError("allocation table has no base row")

    def allocation_for_score(self, score: Decimal) -> AllocationRule:
        """Highest tier whose min_score <= score; the base row when none match."""
        tiers = sorted(
            (r for r in self.allocation if not r.is_base),
            key=lambda r: r.min_score,
            reverse=True,
        )
        for rule in tiers:
            if score >= rule.min_score:
                return rule
        return self.base_allocation

    def post_sale_allocation(self) -> AllocationRule:
        return self.allocation[-self.sell.post_allocation_index_from_end]


@dataclass(frozen=True)
class LedgerConfig:
    annual_interest_rate: Decimal
    fee_rate: Decimal
    tax_rate: Decimal
    margin_call_threshold: Decimal
    min_buy_amount: Decimal
    money_quantum: Decimal
    fee_quantum: Decimal
    interest_to_cash: bool = True


@dataclass(frozen=True)
class BacktestConfig:
    initial_capital: Decimal
    monthly_contribution: Decimal
    checkpoint_months: tuple[int, ...]
    base_price_lookback: int
    synthetic_annual_expense: Decimal
    synthetic_start_price: Decimal
    trading_days_per_year: int
    synthetic_leverage: Decimal | None = None  # None: strategy leverage.target_multiplier
