"""
Daily performance history for the pledge leverage engine.

Records one row per ledger per day (net asset, invested capital, loan,
margin, the decision taken) in SQLite and derives performance statistics
from it. Defaults to an in-memory database; pass a path to keep history
between runs.

Usage:
    from core.pnl_tracker import PnLTracker

    tracker = PnLTracker()
    tracker.record_day("strategy", day, metrics, ledger.state, invested, decision.action)
    stats = tracker.get_stats("strategy")
"""

from __future__ import annotations

import sqlite3
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

from bot_logging.logger_manager import setup_module_logger
from shared.constants import DAYS_PER_YEAR, HUNDRED
from shared.types import DecisionAction, PerformanceStats, PortfolioMetrics, PortfolioState

_ZERO = Decimal("0")
_ONE = Decimal("1")


class PnLTracker:
    """SQLite-backed daily history, one series per ledger name."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            db_path = ":memory:"
        else:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db_path = db_path
        self._db = sqlite3.connect(db_path)
        self._db.row_factory = sqlite3.Row
        self._create_tables()

        self._logger = setup_module_logger(
            "pnl_tracker", "pnl_tracker.log", module_folder="PnL_Tracker_Logs"
        )

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _create_tables(self) -> None:
        # Money columns are TEXT so Decimal values survive unchanged.
        self._db.executescript("""
            CREATE TABLE IF NOT EXISTS daily_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ledger TEXT NOT NULL,
                day TEXT NOT NULL,
                net_asset TEXT NOT NULL,
                invested TEXT NOT NULL,
                collateral_value TEXT NOT NULL,
                leveraged_value TEXT NOT NULL,
                cash TEXT NOT NULL,
                reserve_cash TEXT NOT NULL,
                loan TEXT NOT NULL,
                maintenance_margin TEXT NOT NULL,
                borrow_ratio TEXT NOT NULL,
                margin_call_count INTEGER NOT NULL,
                action TEXT,
                UNIQUE (ledger, day)
            );
        """)
        self._db.commit()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_day(
        self,
        ledger: str,
        on_date: date,
        metrics: PortfolioMetrics,
        state: PortfolioState,
        invested: Decimal,
        action: DecisionAction | None = None,
    ) -> None:
        """Insert (or replace) the row for ``ledger`` on ``on_date``."""
        self._db.execute(
            """INSERT OR REPLACE INTO daily_history
               (ledger, day, net_asset, invested, collateral_value, leveraged_value,
                cash, reserve_cash, loan, maintenance_margin, borrow_ratio,
                margin_call_count, action)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                ledger,
                on_date.isoformat(),
                str(metrics.net_asset),
                str(invested),
                str(metrics.collateral_value),
                str(metrics.leveraged_value),
                str(state.cash),
                str(state.reserve_cash),
                str(state.loan),
                str(metrics.maintenance_margin),
                str(metrics.borrow_ratio),
                state.margin_call_count,
                action.value if action is not None else None,
            ),
        )
        self._db.commit()
        if action is not None and action is DecisionAction.LIQUIDATE_FORCED:
            self._logger.warning("%s %s: forced liquidation recorded", ledger, on_date)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_history(self, ledger: str, limit: int | None = None) -> list[dict[str, Any]]:
        """Rows oldest first; money fields converted back to Decimal."""
        query = "SELECT * FROM daily_history WHERE ledger = ? ORDER BY day ASC"
        params: tuple[Any, ...] = (ledger,)
        if limit is not None:
            query += " LIMIT ?"
            params = (ledger, limit)
        rows = self._db.execute(query, params).fetchall()
        return [self._row_to_dict(r) for r in rows]

    def action_counts(self, ledger: str) -> dict[str, int]:
        rows = self._db.execute(
            """SELECT action, COUNT(*) AS n FROM daily_history
               WHERE ledger = ? AND action IS NOT NULL
               GROUP BY action""",
            (ledger,),
        ).fetchall()
        return {r["action"]: r["n"] for r in rows}

    def get_stats(self, ledger: str) -> PerformanceStats:
        history = self.get_history(ledger)
        if not history:
            return PerformanceStats(
                days=0,
                total_invested=_ZERO,
                final_net_asset=_ZERO,
                total_return_pct=_ZERO,
                cagr_pct=_ZERO,
                max_drawdown_pct=_ZERO,
                current_drawdown_pct=_ZERO,
                sharpe_ratio=_ZERO,
                margin_call_count=0,
                final_borrow_ratio=_ZERO,
            )

        first, last = history[0], history[-1]
        invested = last["invested"]
        final = last["net_asset"]
        total_return = (final - invested) / invested * HUNDRED if invested > 0 else _ZERO

        years = Decimal((last["day"] - first["day"]).days) / Decimal(DAYS_PER_YEAR)
        cagr = self._compute_cagr(invested, final, years)

        navs = [row["net_asset"] for row in history]
        current_dd, max_dd = self._compute_drawdowns(navs)

        returns = []
        for prev, cur in zip(history, history[1:]):
            if prev["net_asset"] <= 0:
                continue
            contribution = cur["invested"] - prev["invested"]
            returns.append((cur["net_asset"] - prev["net_asset"] - contribution) / prev["net_asset"])

        return PerformanceStats(
            days=len(history),
            total_invested=invested,
            final_net_asset=final,
            total_return_pct=total_return,
            cagr_pct=cagr,
            max_drawdown_pct=max_dd * HUNDRED,
            current_drawdown_pct=current_dd * HUNDRED,
            sharpe_ratio=self._compute_sharpe(returns),
            margin_call_count=last["margin_call_count"],
            final_borrow_ratio=last["borrow_ratio"],
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
        data = dict(row)
        data["day"] = date.fromisoformat(data["day"])
        for key in (
            "net_asset",
            "invested",
            "collateral_value",
            "leveraged_value",
            "cash",
            "reserve_cash",
            "loan",
            "maintenance_margin",
            "borrow_ratio",
        ):
            data[key] = Decimal(data[key])
        return data

    @staticmethod
    def _compute_cagr(invested: Decimal, final: Decimal, years: Decimal) -> Decimal:
        """Compound annual growth in percent; 0 when undefined."""
        if invested <= 0 or final <= 0 or years <= 0:
            return _ZERO
        return ((final / invested) ** (_ONE / years) - _ONE) * HUNDRED

    @staticmethod
    def _compute_sharpe(returns: list[Decimal]) -> Decimal:
        if len(returns) < 2:
            return _ZERO

        mean: Decimal = sum(returns, _ZERO) / Decimal(len(returns))
        variance: Decimal = sum(((r - mean) ** 2 for r in returns), _ZERO) / Decimal(
            len(returns) - 1
        )
        if variance <= 0:
            return _ZERO
        return mean / variance.sqrt()

    @staticmethod
    def _compute_drawdowns(navs: list[Decimal]) -> tuple[Decimal, Decimal]:
        """
        Current and max peak-to-trough drawdown of a net-asset series.

        Returned as fractions (0.15 = 15%).
        """
        peak = _ZERO
        max_drawdown = _ZERO
        for nav in navs:
            if nav > peak:
                peak = nav
            if peak > 0:
                dd = (peak - nav) / peak
                if dd > max_drawdown:
                    max_drawdown = dd

        current_dd = _ZERO
        if peak > 0:
            current_dd = max((peak - navs[-1]) / peak, _ZERO)
        return current_dd, max_drawdown

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the SQLite database connection."""
        if self._db:
            self._db.close()
            self._logger.debug("PnLTracker database closed")
