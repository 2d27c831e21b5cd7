"""
Portfolio ledger for the pledge leverage engine.

Owns the mutable PortfolioState (cash, collateral and leveraged holdings,
pledge loan, reserve cash, cooldown anchor, margin-call count). Every change
to the state goes through one of the operations below; each returns the
LedgerTrade it booked, or None when the operation was a no-op.

Money and quantities are Decimal. Quantities are whole shares (floored),
brokerage fee and transaction tax are floored to fee_quantum, and interest is
rounded to money_quantum. update() enforces the broker's margin-call floor
regardless of what the decision engine chose that cycle.

Usage:
    from core.ledger import PortfolioLedger

    ledger = PortfolioLedger(loader.get_ledger_config(), state)
    ledger.deposit(Decimal("30000"))
    ledger.buy_collateral(price, PortfolioLedger.ALL)
    ledger.apply_daily_interest()
    result = ledger.update(collateral_price, leveraged_price)
"""

from __future__ import annotations

import copy
from datetime import date
from decimal import ROUND_CEILING, ROUND_DOWN, ROUND_HALF_UP, Decimal

from bot_logging.logger_manager import setup_module_logger
from config.schema import LedgerConfig
from core.health_monitor import compute_metrics
from shared.constants import DAYS_PER_YEAR
from shared.types import (
    FundingSource,
    LedgerTrade,
    LedgerUpdate,
    PortfolioMetrics,
    PortfolioState,
    TradeKind,
)

_ZERO = Decimal("0")
_ONE = Decimal("1")


class LedgerError(Exception):
    """Raised when a caller requests an operation the ledger cannot represent."""

    pass


def floor_shares(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_DOWN)


def ceil_shares(value: Decimal) -> Decimal:
    return value.to_integral_value(rounding=ROUND_CEILING)


class PortfolioLedger:
    """
    Single-owner ledger around one PortfolioState.

    Two ledgers never share a state object; the constructor takes the state
    it is handed and the caller must not mutate it elsewhere.
    """

    ALL = "ALL"

    def __init__(
        self,
        config: LedgerConfig,
        state: PortfolioState | None = None,
        name: str = "strategy",
    ) -> None:
        self._config = config
        self._state = state if state is not None else PortfolioState()
        self._name = name
        self._logger = setup_module_logger("ledger", "ledger.log", module_folder="Ledger_Logs")

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def config(self) -> LedgerConfig:
        return self._config

    @property
    def state(self) -> PortfolioState:
        return self._state

    def snapshot(self) -> PortfolioState:
        """Independent copy of the current state (safe to persist or compare)."""
        return copy.deepcopy(self._state)

    def metrics(self, collateral_price: Decimal, leveraged_price: Decimal) -> PortfolioMetrics:
        return compute_metrics(self._state, collateral_price, leveraged_price)

    # ------------------------------------------------------------------
    # Cost helpers
    # ------------------------------------------------------------------

    def fee_for(self, gross: Decimal) -> Decimal:
        return self._quantize_down(gross * self._config.fee_rate, self._config.fee_quantum)

    def tax_for(self, gross: Decimal) -> Decimal:
        return self._quantize_down(gross * self._config.tax_rate, self._config.fee_quantum)

    @staticmethod
    def _quantize_down(value: Decimal, quantum: Decimal) -> Decimal:
        return (value / quantum).to_integral_value(rounding=ROUND_DOWN) * quantum

    def _available(self, funding: FundingSource) -> Decimal:
        if funding is FundingSource.RESERVE:
            return self._state.reserve_cash
        return self._state.cash

    def _debit(self, funding: FundingSource, amount: Decimal) -> None:
        if funding is FundingSource.RESERVE:
            self._state.reserve_cash -= amount
        else:
            self._state.cash -= amount

    @staticmethod
    def _check_price(price: Decimal, what: str) -> None:
        if price <= 0:
            raise LedgerError(f"{what} price must be positive, got {price}")

    @staticmethod
    def _check_amount(amount: Decimal, what: str) -> None:
        if amount < 0:
            raise LedgerError(f"{what} must not be negative, got {amount}")

    # ------------------------------------------------------------------
    # Collateral purchases
    # ------------------------------------------------------------------

    def buy_collateral(
        self,
        price: Decimal,
        amount: Decimal | str,
        funding: FundingSource = FundingSource.CASH,
    ) -> LedgerTrade | None:
        """
        Spend up to ``amount`` (or everything with ALL) of the funding pool on
        collateral shares. Clamped to what the pool holds; a no-op at or below
        min_buy_amount or when not even one share is affordable.
        """
        self._check_price(price, "collateral")
        available = self._available(funding)
        if amount == self.ALL:
            invest = available
        else:
            self._check_amount(amount, "buy amount")
            invest = min(Decimal(amount), available)

        if available <= 0 or invest <= self._config.min_buy_amount:
            return None

        qty = floor_shares(invest / (_ONE + self._config.fee_rate) / price)
        return self._book_collateral(price, qty, funding)

    def buy_collateral_qty(
        self,
        price: Decimal,
        quantity: Decimal,
        funding: FundingSource = FundingSource.CASH,
    ) -> LedgerTrade | None:
        """Buy an exact share count, shrunk to what the funding pool can pay for."""
        self._check_price(price, "collateral")
        self._check_amount(quantity, "quantity")
        available = self._available(funding)
        qty = floor_shares(quantity)
        if qty * price + self.fee_for(qty * price) > available:
            qty = floor_shares(available / (price * (_ONE + self._config.fee_rate)))
        return self._book_collateral(price, qty, funding)

    def _book_collateral(
        self, price: Decimal, qty: Decimal, funding: FundingSource
    ) -> LedgerTrade | None:
        if qty <= 0:
            return None
        gross = qty * price
        fee = self.fee_for(gross)
        self._state.collateral_qty += qty
        self._debit(funding, gross + fee)
        trade = LedgerTrade(TradeKind.BUY_COLLATERAL, qty, price, gross, fee=fee, funding=funding)
        self._logger.info(
            "[%s] buy collateral qty=%s price=%s gross=%s fee=%s from %s",
            self._name, qty, price, gross, fee, funding.value,
        )
        return trade

    # ------------------------------------------------------------------
    # Leveraged leg
    # ------------------------------------------------------------------

    def borrow_and_buy_leveraged(
        self, price: Decimal, amount: Decimal, on_date: date | None = None
    ) -> LedgerTrade | None:
        """
        Draw ``amount`` on the pledge loan and buy leveraged shares with it.

        The loan grows by exactly ``amount``; shares are sized so that price
        plus fee fits inside it and the unspent remainder lands in cash.
        ``on_date`` becomes the cooldown anchor.
        """
        self._check_price(price, "leveraged")
        self._check_amount(amount, "borrow amount")
        qty = floor_shares(amount / (price * (_ONE + self._config.fee_rate)))
        if qty <= 0:
            return None
        gross = qty * price
        fee = self.fee_for(gross)
        self._state.loan += amount
        self._state.cash += amount - gross - fee
        self._state.leveraged_qty += qty
        if on_date is not None:
            self._state.last_buy_date = on_date
        self._logger.info(
            "[%s] borrow %s, buy leveraged qty=%s price=%s fee=%s loan=%s",
            self._name, amount, qty, price, fee, self._state.loan,
        )
        return LedgerTrade(
            TradeKind.BUY_LEVERAGED, qty, price, gross, fee=fee, funding=FundingSource.LOAN
        )

    def sell_leveraged(self, price: Decimal, quantity: Decimal) -> LedgerTrade | None:
        """Sell leveraged shares (clamped to holdings); net proceeds go to cash."""
        self._check_price(price, "leveraged")
        self._check_amount(quantity, "quantity")
        qty = min(floor_shares(quantity), self._state.leveraged_qty)
        if qty <= 0:
            return None
        gross = qty * price
        tax = self.tax_for(gross)
        fee = self.fee_for(gross)
        self._state.leveraged_qty -= qty
        self._state.cash += gross - tax - fee
        self._logger.info(
            "[%s] sell leveraged qty=%s price=%s gross=%s tax=%s fee=%s",
            self._name, qty, price, gross, tax, fee,
        )
        return LedgerTrade(TradeKind.SELL_LEVERAGED, qty, price, gross, fee=fee, tax=tax)

    def sell_leveraged_for(self, price: Decimal, net_amount: Decimal) -> LedgerTrade | None:
        """Sell enough leveraged shares for ``net_amount`` of proceeds after costs."""
        self._check_price(price, "leveraged")
        if net_amount <= 0:
            return None
        net_per_share = price * (_ONE - self._config.tax_rate - self._config.fee_rate)
        return self.sell_leveraged(price, ceil_shares(net_amount / net_per_share))

    # ------------------------------------------------------------------
    # Loan and cash
    # ------------------------------------------------------------------

    def repay_loan(
        self, amount: Decimal, source: FundingSource = FundingSource.CASH
    ) -> LedgerTrade | None:
        """Repay up to ``amount``, clamped to the loan balance and the source's funds."""
        self._check_amount(amount, "repay amount")
        if source is FundingSource.LOAN:
            raise LedgerError("cannot repay the loan from the loan")
        repay = min(amount, self._state.loan, max(_ZERO, self._available(source)))
        if repay <= 0:
            return None
        self._state.loan -= repay
        self._debit(source, repay)
        self._logger.info(
            "[%s] repay %s from %s, loan=%s", self._name, repay, source.value, self._state.loan
        )
        return LedgerTrade(TradeKind.REPAY, _ZERO, _ZERO, repay, funding=source)

    def deposit(self, amount: Decimal, to_reserve: bool = False) -> LedgerTrade:
        """Add external money (monthly contribution) to cash or to the reserve."""
        self._check_amount(amount, "deposit")
        if to_reserve:
            self._state.reserve_cash += amount
        else:
            self._state.cash += amount
        funding = FundingSource.RESERVE if to_reserve else FundingSource.CASH
        return LedgerTrade(TradeKind.DEPOSIT, _ZERO, _ZERO, amount, funding=funding)

    def apply_daily_interest(self) -> Decimal:
        """
        Accrue one day of interest on the loan.

        Always added to accrued_interest; also charged against cash when
        interest_to_cash is set (cash may go negative, as at a real broker
        the unpaid interest is owed).
        """
        if self._state.loan <= 0:
            return _ZERO
        interest = (
            self._state.loan * self._config.annual_interest_rate / Decimal(DAYS_PER_YEAR)
        ).quantize(self._config.money_quantum, rounding=ROUND_HALF_UP)
        self._state.accrued_interest += interest
        if self._config.interest_to_cash:
            self._state.cash -= interest
        return interest

    # ------------------------------------------------------------------
    # Mark-to-market and forced liquidation
    # ------------------------------------------------------------------

    def update(self, collateral_price: Decimal, leveraged_price: Decimal) -> LedgerUpdate:
        """
        Mark the book to the given prices and enforce the margin-call floor.

        Below margin_call_threshold every leveraged share is sold and the
        proceeds repay the loan (never beyond the balance); margin_call_count
        increments. Without leveraged holdings there is nothing to liquidate.
        """
        self._check_price(collateral_price, "collateral")
        self._check_price(leveraged_price, "leveraged")
        before = self.metrics(collateral_price, leveraged_price)

        if (
            before.maintenance_margin >= self._config.margin_call_threshold
            or self._state.leveraged_qty <= 0
        ):
            return LedgerUpdate(metrics=before, margin_before=before.maintenance_margin)

        self._logger.critical(
            "[%s] MARGIN CALL: maintenance %.1f%% < %s%%, liquidating %s leveraged shares",
            self._name,
            before.maintenance_margin,
            self._config.margin_call_threshold,
            self._state.leveraged_qty,
        )
        qty = self._state.leveraged_qty
        gross = qty * leveraged_price
        tax = self.tax_for(gross)
        fee = self.fee_for(gross)
        proceeds = gross - tax - fee
        self._state.leveraged_qty = _ZERO
        self._state.cash += proceeds
        repaid = min(self._state.loan, max(_ZERO, proceeds))
        self._state.loan -= repaid
        self._state.cash -= repaid
        self._state.margin_call_count += 1

        trade = LedgerTrade(TradeKind.LIQUIDATION, qty, leveraged_price, gross, fee=fee, tax=tax)
        return LedgerUpdate(
            metrics=self.metrics(collateral_price, leveraged_price),
            margin_before=before.maintenance_margin,
            liquidation=trade,
            repaid=repaid,
        )
