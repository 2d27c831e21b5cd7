"""
Safety gates for the pledge leverage engine.

Checks consulted by the decision state machine before it lets a cycle reach
the accumulation step:

    - data sufficiency: indicator series long enough to read crossovers,
      a usable base price. Short data yields an INSUFFICIENT_DATA decision,
      never an exception and never a zero-filled reading.
    - entry gate: drop percent and entry score both at their minimums.
    - cooldown: calendar days since the last borrow-and-buy, with a score
      override for exceptionally strong signals.

Usage:
    from core.safety import SafetyGates, CooldownGate

    gates = SafetyGates(strategy_config)
    check = gates.check_data(snapshot)
    if not check.can_proceed:
        print(f"Blocked: {check.reason}")
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from bot_logging.logger_manager import setup_module_logger
from config.schema import StrategyConfig
from shared.types import CooldownStatus, MarketSnapshot, SafetyCheck, SignalReport


class CooldownGate:
    """Minimum spacing between borrow-and-buy actions."""

    def __init__(self, cooldown_days: int, override_score: Decimal) -> None:
        self._cooldown_days = cooldown_days
        self._override_score = override_score

    @property
    def cooldown_days(self) -> int:
        return self._cooldown_days

    def status(
        self, last_buy_date: date | None, today: date, score: Decimal | None = None
    ) -> CooldownStatus:
        """
        Cooldown state on ``today``.

        days_left = max(0, cooldown_days - days since the last buy). When a
        score at or above the override threshold is given, an active
        cooldown is reported as overridden (in_cooldown False).
        """
        if last_buy_date is None:
            return CooldownStatus(
                in_cooldown=False, days_left=0, days_since_last_buy=None, last_buy_date=None
            )

        days_since = (today - last_buy_date).days
        days_left = max(0, self._cooldown_days - days_since)
        active = days_left > 0
        overridden = active and score is not None and score >= self._override_score
        return CooldownStatus(
            in_cooldown=active and not overridden,
            days_left=days_left,
            days_since_last_buy=days_since,
            last_buy_date=last_buy_date,
            overridden=overridden,
        )


class SafetyGates:
    """Data and entry gates evaluated once per cycle."""

    def __init__(self, config: StrategyConfig) -> None:
        self._min_periods = config.trading.min_indicator_periods
        self._min_drop = config.buy.min_drop_percent_to_consider
        self._min_score = config.buy.min_weight_score_to_buy
        self.cooldown = CooldownGate(
            config.trading.cooldown_days, config.trading.cooldown_override_score
        )
        self._logger = setup_module_logger("safety", "safety.log", module_folder="Safety_Logs")

    # ------------------------------------------------------------------
    # Gate checks
    # ------------------------------------------------------------------

    def check_data(self, snapshot: MarketSnapshot) -> SafetyCheck:
        """Reject snapshots whose series are too short or whose prices are unusable."""
        short = [
            f"{name}={len(series)}"
            for name, series in (
                ("rsi", snapshot.rsi),
                ("macd", snapshot.macd),
                ("stochastic", snapshot.stochastic),
            )
            if len(series) < self._min_periods
        ]
        if short:
            reason = f"Indicator series shorter than {self._min_periods}: {', '.join(short)}"
            self._logger.warning("%s on %s", reason, snapshot.date)
            return SafetyCheck(can_proceed=False, reason=reason)

        for name, price in (
            ("base price", snapshot.base_price),
            ("collateral price", snapshot.collateral_price),
            ("leveraged price", snapshot.leveraged_price),
        ):
            if price <= 0:
                reason = f"Unusable {name}: {price}"
                self._logger.warning("%s on %s", reason, snapshot.date)
                return SafetyCheck(can_proceed=False, reason=reason)

        return SafetyCheck(can_proceed=True, reason="Data sufficient")

    def check_entry(self, report: SignalReport) -> SafetyCheck:
        """Both the drop and the entry score must reach their minimums."""
        drop_ok = report.drop_percent >= self._min_drop
        score_ok = report.entry.total >= self._min_score
        reason = (
            f"drop {report.drop_percent:.1f}%/{self._min_drop}% "
            f"{'ok' if drop_ok else 'short'}, "
            f"score {report.entry.total}/{self._min_score} {'ok' if score_ok else 'short'}"
        )
        return SafetyCheck(can_proceed=drop_ok and score_ok, reason=reason)
