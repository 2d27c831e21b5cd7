"""
Signal engine for the pledge leverage engine.

Turns one MarketSnapshot into a SignalReport consumed by the decision state
machine. Four independent readers work off the same oldest-first series:

    EntryScorer:        additive weighted score: drop-rule points plus RSI
                         rebound, MACD bullish cross and low stochastic cross.
    OverheatDetector:   RSI / stochastic %D / long-MA bias above hot levels;
                         overheat when enough of them are hot at once.
    ReversalDetector:   weakening: RSI or min(%K, %D) falling back through
                         reversal levels, bearish KD and MACD crosses.
    SellSignalDetector: take-profit events (overbought then falling) plus
                         "still in the zone" state flags reported separately.

Every component scores independently; none reads another's output. The
lookback window for "was at/above level recently" checks comes from
threshold.lookback_periods.

Usage:
    engine = SignalEngine(strategy_config)
    report = engine.analyze(snapshot)
"""

from __future__ import annotations

from decimal import Decimal

from bot_logging.logger_manager import setup_module_logger
from config.schema import DropScoreRule, StrategyConfig
from core.indicators import Indicators
from shared.constants import HUNDRED
from shared.types import (
    EntryScore,
    MacdPoint,
    MarketSnapshot,
    OverheatState,
    ReversalState,
    ScoreComponent,
    SellSignalState,
    SignalReport,
    StochasticPoint,
)

_ZERO = Decimal("0")


def price_change_percent(current_price: Decimal, base_price: Decimal) -> Decimal:
    """Signed percent move of the leveraged asset from its rebalance anchor."""
    if base_price <= 0:
        return _ZERO
    return (current_price - base_price) / base_price * HUNDRED


# ---------------------------------------------------------------------------
# EntryScorer
# ---------------------------------------------------------------------------


class EntryScorer:
    """Additive entry score from drop magnitude and bullish reversal events."""

    def __init__(self, config: StrategyConfig) -> None:
        self._buy = config.buy
        self._lookback = config.threshold.lookback_periods

    def select_drop_rule(self, drop_percent: Decimal) -> DropScoreRule | None:
        """Rule with the greatest min_drop not above drop_percent (rules sorted descending)."""
        for rule in self._buy.drop_score_rules:
            if drop_percent >= rule.min_drop:
                return rule
        return None

    def score(
        self,
        drop_percent: Decimal,
        rsi: list[Decimal],
        macd: list[MacdPoint],
        stochastic: list[StochasticPoint],
    ) -> EntryScore:
        buy = self._buy
        rule = self.select_drop_rule(drop_percent)

        rsi_rebound = Indicators.rose_above_after_below(
            rsi, buy.rsi_oversold, self._lookback, require_cross_today=False
        )
        macd_bull = Indicators.macd_cross_up(macd)
        kd_bull_low = Indicators.kd_cross_up(stochastic) and Indicators.was_below_level(
            [p.k for p in stochastic], buy.kd_oversold_k, self._lookback
        )

        components = [
            ScoreComponent(
                label="drop",
                value=rule.label if rule else f"drop {drop_percent:.2f}%",
                points=rule.score if rule else _ZERO,
            ),
            ScoreComponent(
                label="rsi",
                value=f"rebound above {buy.rsi_oversold}" if rsi_rebound else "no rebound",
                points=buy.rsi_score if rsi_rebound else _ZERO,
            ),
            ScoreComponent(
                label="macd",
                value="bullish cross" if macd_bull else "no cross",
                points=buy.macd_score if macd_bull else _ZERO,
            ),
            ScoreComponent(
                label="kd",
                value=f"low cross (<{buy.kd_oversold_k})" if kd_bull_low else "no cross",
                points=buy.kd_score if kd_bull_low else _ZERO,
            ),
        ]
        return EntryScore(
            total=sum((c.points for c in components), _ZERO),
            components=components,
            drop_percent=drop_percent,
            rsi_rebound=rsi_rebound,
            macd_bull=macd_bull,
            kd_bull_low=kd_bull_low,
        )


# ---------------------------------------------------------------------------
# OverheatDetector
# ---------------------------------------------------------------------------


class OverheatDetector:
    def __init__(self, config: StrategyConfig) -> None:
        self._th = config.threshold

    def evaluate(
        self,
        rsi: list[Decimal],
        stochastic: list[StochasticPoint],
        bias240: Decimal | None,
    ) -> OverheatState:
        th = self._th
        last_rsi = rsi[-1] if rsi else None
        last_d = stochastic[-1].d if stochastic else None

        factors = {
            "rsi_high": last_rsi is not None and last_rsi > th.rsi_overheat_level,
            "kd_high": last_d is not None and last_d > th.d_overheat_level,
            "bias_high": bias240 is not None and bias240 > th.bias240_overheat_level,
        }
        high_count = sum(1 for hot in factors.values() if hot)
        return OverheatState(
            is_overheat=high_count >= th.overheat_count,
            factors=factors,
            high_count=high_count,
            factor_count=len(factors),
            bias240=bias240,
        )


# ---------------------------------------------------------------------------
# ReversalDetector
# ---------------------------------------------------------------------------


class ReversalDetector:
    def __init__(self, config: StrategyConfig) -> None:
        self._th = config.threshold

    def evaluate(
        self,
        rsi: list[Decimal],
        macd: list[MacdPoint],
        stochastic: list[StochasticPoint],
    ) -> ReversalState:
        th = self._th
        lookback = th.lookback_periods

        rsi_drop = Indicators.fell_below_after_above(rsi, th.rsi_reversal_level, lookback)
        # conservative stochastic reading: the lower of %K and %D
        min_kd = [min(p.k, p.d) for p in stochastic]
        kd_drop = Indicators.fell_below_after_above(min_kd, th.k_reversal_level, lookback)
        kd_bear_cross = Indicators.kd_cross_down(stochastic)
        macd_bear_cross = Indicators.macd_cross_down(macd)

        flags = (rsi_drop, kd_drop, kd_bear_cross, macd_bear_cross)
        triggered = sum(1 for f in flags if f)
        return ReversalState(
            rsi_drop=rsi_drop,
            kd_drop=kd_drop,
            kd_bear_cross=kd_bear_cross,
            macd_bear_cross=macd_bear_cross,
            triggered_count=triggered,
            total_factor=len(flags),
            should_pause=triggered >= th.reversal_trigger_count,
        )


# ---------------------------------------------------------------------------
# SellSignalDetector
# ---------------------------------------------------------------------------


class SellSignalDetector:
    def __init__(self, config: StrategyConfig) -> None:
        self._sell = config.sell
        self._lookback = config.threshold.lookback_periods

    def evaluate(
        self,
        rsi: list[Decimal],
        macd: list[MacdPoint],
        stochastic: list[StochasticPoint],
    ) -> SellSignalState:
        sell = self._sell
        cross_today = sell.require_cross_today
        last_rsi = rsi[-1] if rsi else None
        last_kd = stochastic[-1] if stochastic else None

        rsi_sell = Indicators.fell_below_after_above(
            rsi, sell.rsi_overbought, self._lookback, require_cross_today=cross_today
        )
        macd_sell = Indicators.macd_diff_turned_negative(macd)

        in_zone_now = last_kd is not None and min(last_kd.k, last_kd.d) >= sell.kd_overbought_k
        d_fell_back = Indicators.fell_below_after_above(
            [p.d for p in stochastic],
            sell.kd_overbought_k,
            self._lookback,
            require_cross_today=cross_today,
        )
        kd_sell = (Indicators.kd_cross_down(stochastic) and in_zone_now) or d_fell_back

        return SellSignalState(
            rsi_sell=rsi_sell,
            macd_sell=macd_sell,
            kd_sell=kd_sell,
            signal_count=sum(1 for f in (rsi_sell, macd_sell, kd_sell) if f),
            rsi_state_overbought=last_rsi is not None and last_rsi >= sell.rsi_overbought,
            kd_state_overbought=last_kd is not None and last_kd.d >= sell.kd_overbought_k,
        )


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------


class SignalEngine:
    """Runs every reader over one snapshot and bundles the results."""

    def __init__(self, config: StrategyConfig) -> None:
        self._scorer = EntryScorer(config)
        self._overheat = OverheatDetector(config)
        self._reversal = ReversalDetector(config)
        self._sell = SellSignalDetector(config)
        self._logger = setup_module_logger(
            "signal_engine", "signal_engine.log", module_folder="Signal_Engine_Logs"
        )

    @property
    def scorer(self) -> EntryScorer:
        return self._scorer

    def analyze(self, snapshot: MarketSnapshot) -> SignalReport:
        change = price_change_percent(snapshot.leveraged_price, snapshot.base_price)
        up = max(_ZERO, change)
        drop = max(_ZERO, -change)

        entry = self._scorer.score(drop, snapshot.rsi, snapshot.macd, snapshot.stochastic)
        overheat = self._overheat.evaluate(snapshot.rsi, snapshot.stochastic, snapshot.bias240)
        reversal = self._reversal.evaluate(snapshot.rsi, snapshot.macd, snapshot.stochastic)
        sell = self._sell.evaluate(snapshot.rsi, snapshot.macd, snapshot.stochastic)

        self._logger.debug(
            "%s change=%.2f%% score=%s overheat=%d/%d reversal=%d/%d sell=%d",
            snapshot.date,
            change,
            entry.total,
            overheat.high_count,
            overheat.factor_count,
            reversal.triggered_count,
            reversal.total_factor,
            sell.signal_count,
        )
        return SignalReport(
            price_change_percent=change,
            up_percent=up,
            drop_percent=drop,
            entry=entry,
            overheat=overheat,
            reversal=reversal,
            sell=sell,
        )
