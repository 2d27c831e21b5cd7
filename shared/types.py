"""
Shared data types for the pledge leverage engine.

Centralized dataclasses and enums used across all modules.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class DecisionAction(Enum):
    DEFEND = "defend"
    LIQUIDATE_FORCED = "liquidate-forced"
    REBALANCE = "rebalance"
    BLOCKED_MARGIN_DANGER = "blocked-margin-danger"
    TAKE_PROFIT = "take-profit"
    PANIC_BUY = "panic-buy"
    BLOCKED_OVERHEAT = "blocked-overheat"
    BLOCKED_REVERSAL = "blocked-reversal"
    BLOCKED_COOLDOWN = "blocked-cooldown"
    ACCUMULATE_BASE = "accumulate-tier-1"
    ACCUMULATE_ACTIVE = "accumulate-tier-2"
    ACCUMULATE_AGGRESSIVE = "accumulate-tier-3"
    HOLD = "hold"
    INSUFFICIENT_DATA = "insufficient-data"


class MarginTier(Enum):
    SAFE = "safe"  # margin >= defend target (or no loan)
    WATCH = "watch"  # defend trigger <= margin < defend target
    DEFEND = "defend"  # margin call threshold <= margin < defend trigger
    MARGIN_CALL = "margin_call"  # margin < broker floor


class TradeKind(Enum):
    BUY_COLLATERAL = "buy_collateral"
    BUY_LEVERAGED = "buy_leveraged"
    SELL_LEVERAGED = "sell_leveraged"
    REPAY = "repay"
    DEPOSIT = "deposit"
    LIQUIDATION = "liquidation"


class FundingSource(Enum):
    CASH = "cash"
    RESERVE = "reserve"
    LOAN = "loan"


# ---------------------------------------------------------------------------
# Market Data Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MacdPoint:
    macd: Decimal
    signal: Decimal
    histogram: Decimal


@dataclass(frozen=True)
class StochasticPoint:
    k: Decimal
    d: Decimal


@dataclass(frozen=True)
class MarketSnapshot:
    """One evaluation tick of resolved market data (oldest-first series)."""

    date: date
    collateral_price: Decimal
    leveraged_price: Decimal
    base_price: Decimal  # last rebalance anchor for the leveraged asset
    rsi: list[Decimal]
    macd: list[MacdPoint]
    stochastic: list[StochasticPoint]
    bias240: Decimal | None = None  # long-MA bias, percent
    vix: Decimal | None = None
    is_rebalance_checkpoint: bool = False


# ---------------------------------------------------------------------------
# Portfolio Types
# ---------------------------------------------------------------------------


@dataclass
class PortfolioState:
    cash: Decimal = Decimal("0")
    collateral_qty: Decimal = Decimal("0")
    leveraged_qty: Decimal = Decimal("0")
    loan: Decimal = Decimal("0")
    reserve_cash: Decimal = Decimal("0")
    last_buy_date: date | None = None
    margin_call_count: int = 0
    accrued_interest: Decimal = Decimal("0")


@dataclass(frozen=True)
class PortfolioMetrics:
    collateral_value: Decimal
    leveraged_value: Decimal
    net_asset: Decimal
    maintenance_margin: Decimal  # percent, SENTINEL_UNLIMITED_MARGIN when loan == 0
    exposure_ratio: Decimal
    borrow_ratio: Decimal
    loan: Decimal


@dataclass(frozen=True)
class LedgerTrade:
    kind: TradeKind
    quantity: Decimal
    price: Decimal
    gross: Decimal  # quantity * price, or cash amount for repay/deposit
    fee: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    funding: FundingSource = FundingSource.CASH

    @property
    def net(self) -> Decimal:
        """Cash effect magnitude after costs (proceeds for sells, spend for buys)."""
        if self.kind in (TradeKind.SELL_LEVERAGED, TradeKind.LIQUIDATION):
            return self.gross - self.fee - self.tax
        return self.gross + self.fee + self.tax


@dataclass(frozen=True)
class LedgerUpdate:
    metrics: PortfolioMetrics
    margin_before: Decimal
    liquidation: LedgerTrade | None = None
    repaid: Decimal = Decimal("0")


# ---------------------------------------------------------------------------
# Signal Types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScoreComponent:
    label: str
    value: str
    points: Decimal


@dataclass(frozen=True)
class EntryScore:
    total: Decimal
    components: list[ScoreComponent]
    drop_percent: Decimal
    rsi_rebound: bool
    macd_bull: bool
    kd_bull_low: bool


@dataclass(frozen=True)
class OverheatState:
    is_overheat: bool
    factors: dict[str, bool]
    high_count: int
    factor_count: int
    bias240: Decimal | None

    @property
    def cool_count(self) -> int:
        return self.factor_count - self.high_count


@dataclass(frozen=True)
class ReversalState:
    rsi_drop: bool
    kd_drop: bool
    kd_bear_cross: bool
    macd_bear_cross: bool
    triggered_count: int
    total_factor: int
    should_pause: bool


@dataclass(frozen=True)
class SellSignalState:
    rsi_sell: bool
    macd_sell: bool
    kd_sell: bool
    signal_count: int
    rsi_state_overbought: bool  # still in the zone, independent of the events
    kd_state_overbought: bool

    @property
    def state_count(self) -> int:
        return int(self.rsi_state_overbought) + int(self.kd_state_overbought)


@dataclass(frozen=True)
class SignalReport:
    price_change_percent: Decimal
    up_percent: Decimal
    drop_percent: Decimal
    entry: EntryScore
    overheat: OverheatState
    reversal: ReversalState
    sell: SellSignalState


@dataclass(frozen=True)
class CooldownStatus:
    in_cooldown: bool
    days_left: int
    days_since_last_buy: int | None
    last_buy_date: date | None
    overridden: bool = False


@dataclass(frozen=True)
class ReserveStatus:
    target_reserve: Decimal
    current_reserve: Decimal
    achievement_pct: Decimal
    is_insufficient: bool


@dataclass(frozen=True)
class SafetyCheck:
    can_proceed: bool
    reason: str


@dataclass(frozen=True)
class RebalancePlan:
    trigger: str  # "borrow_limit" | "exposure" | "checkpoint"
    target_ratio: Decimal
    sell_amount: Decimal
    hard: bool  # breach of a ceiling, as opposed to a scheduled checkpoint


@dataclass(frozen=True)
class PanicSignal:
    drop_percent: Decimal
    extreme_drop_threshold: Decimal
    rsi: Decimal
    extreme_rsi_threshold: Decimal
    vix: Decimal
    extreme: bool  # vix at or above the extreme level
    suggested_leverage: Decimal


@dataclass(frozen=True)
class ActionResult:
    """What an engine booked on the ledger, plus the numbers behind it."""

    trades: tuple[LedgerTrade, ...] = ()
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def executed(self) -> bool:
        return len(self.trades) > 0


# ---------------------------------------------------------------------------
# Decision Output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Decision:
    action: DecisionAction
    rationale: str
    inputs: dict[str, Any] = field(default_factory=dict)
    trades: tuple[LedgerTrade, ...] = ()
    date: date | None = None

    @property
    def executed(self) -> bool:
        return len(self.trades) > 0


@dataclass(frozen=True)
class PriceBar:
    """One daily close pair; the leveraged close may be synthesized."""

    date: date
    collateral_close: Decimal
    leveraged_close: Decimal | None = None
    vix: Decimal | None = None


@dataclass(frozen=True)
class PerformanceStats:
    days: int
    total_invested: Decimal
    final_net_asset: Decimal
    total_return_pct: Decimal
    cagr_pct: Decimal
    max_drawdown_pct: Decimal
    current_drawdown_pct: Decimal
    sharpe_ratio: Decimal  # daily, contributions stripped out of returns
    margin_call_count: int
    final_borrow_ratio: Decimal
