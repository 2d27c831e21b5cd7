"""
Technical indicator computation and event detection for the pledge leverage engine.

Pure computation, no I/O. Series are oldest-first lists of Decimal. Two groups:

- Series builders (EMA, SMA, RSI, MACD, stochastic %K/%D, MA bias) used by the
  backtest and by callers that only have closing prices.
- Event detectors (level crossings within a lookback window, MACD and KD
  crosses) consumed by the signal engine.

References:
    Wilder (1978), "New Concepts in Technical Trading Systems".
    Appel (1979), "The Moving Average Convergence-Divergence Method".
    Lane (1984), "Lane's Stochastics", Technical Analysis of Stocks & Commodities.

Usage:
    from core.indicators import Indicators

    rsi = Indicators.rsi_series(closes, period=14)
    rebound = Indicators.rose_above_after_below(rsi, Decimal("30"), lookback=10)
"""

from __future__ import annotations

from decimal import Decimal

from shared.types import MacdPoint, StochasticPoint

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


class Indicators:
    """Static methods for indicator series and crossover events."""

    # ------------------------------------------------------------------
    # Series builders
    # ------------------------------------------------------------------

    @staticmethod
    def ema(prices: list[Decimal], period: int) -> list[Decimal]:
        """
        Exponential Moving Average.

        Uses standard multiplier k = 2 / (period + 1). First value is
        initialized with SMA of the first `period` prices.

        Returns:
            List of EMA values, len(prices) - period + 1 long.
            Returns empty list if insufficient data.
        """
        if len(prices) < period or period <= 0:
            return []

        k = Decimal("2") / Decimal(str(period + 1))
        one_minus_k = Decimal("1") - k

        sma = sum(prices[:period]) / Decimal(str(period))
        result = [sma]
        for price in prices[period:]:
            result.append(price * k + result[-1] * one_minus_k)
        return result

    @staticmethod
    def sma(values: list[Decimal], period: int) -> list[Decimal]:
        """Simple moving average, one value per full window."""
        if len(values) < period or period <= 0:
            return []
        divisor = Decimal(str(period))
        window_sum = sum(values[:period])
        result = [window_sum / divisor]
        for i in range(period, len(values)):
            window_sum += values[i] - values[i - period]
            result.append(window_sum / divisor)
        return result

    @staticmethod
    def rsi_series(prices: list[Decimal], period: int = 14) -> list[Decimal]:
        """
        Relative Strength Index series using Wilder's smoothing method.

        Wilder (1978): exponential average of gains and losses with smoothing
        factor 1/period. The first value covers prices[0..period].

        Returns:
            RSI values between 0 and 100, len(prices) - period long.
            Empty list if insufficient data.
        """
        if len(prices) < period + 1 or period <= 0:
            return []

        p = Decimal(str(period))
        changes = [prices[i] - prices[i - 1] for i in range(1, len(prices))]
        avg_gain = sum(max(c, _ZERO) for c in changes[:period]) / p
        avg_loss = sum(max(-c, _ZERO) for c in changes[:period]) / p

        def _value(gain: Decimal, loss: Decimal) -> Decimal:
            if loss == 0:
                return _HUNDRED
            return _HUNDRED - _HUNDRED / (Decimal("1") + gain / loss)

        result = [_value(avg_gain, avg_loss)]
        for c in changes[period:]:
            avg_gain = (avg_gain * (p - 1) + max(c, _ZERO)) / p
            avg_loss = (avg_loss * (p - 1) + max(-c, _ZERO)) / p
            result.append(_value(avg_gain, avg_loss))
        return result

    @staticmethod
    def macd_series(
        prices: list[Decimal],
        fast: int = 12,
        slow: int = 26,
        signal: int = 9,
    ) -> list[MacdPoint]:
        """
        Moving Average Convergence Divergence series.

        Returns one MacdPoint per bar once the signal line exists
        (len(prices) - slow - signal + 2 points). Empty if insufficient data.
        """
        if len(prices) < slow + signal - 1 or fast >= slow:
            return []

        fast_ema = Indicators.ema(prices, fast)
        slow_ema = Indicators.ema(prices, slow)

        # fast EMA starts at index (fast-1), slow at (slow-1)
        offset = slow - fast
        macd_values = [fast_ema[i + offset] - slow_ema[i] for i in range(len(slow_ema))]
        signal_ema = Indicators.ema(macd_values, signal)
        if not signal_ema:
            return []

        aligned = macd_values[signal - 1:]
        return [
            MacdPoint(macd=m, signal=s, histogram=m - s)
            for m, s in zip(aligned, signal_ema)
        ]

    @staticmethod
    def stochastic(
        highs: list[Decimal],
        lows: list[Decimal],
        closes: list[Decimal],
        period: int = 9,
        signal_period: int = 3,
    ) -> list[StochasticPoint]:
        """
        Stochastic oscillator: %K over `period` bars, %D = SMA(%K, signal_period).

        A flat window (high == low) yields %K = 50.
        """
        n = min(len(highs), len(lows), len(closes))
        if n < period + signal_period - 1 or period <= 0:
            return []

        k_values: list[Decimal] = []
        for i in range(period - 1, n):
            hi = max(highs[i - period + 1:i + 1])
            lo = min(lows[i - period + 1:i + 1])
            if hi == lo:
                k_values.append(Decimal("50"))
            else:
                k_values.append((closes[i] - lo) / (hi - lo) * _HUNDRED)

        d_values = Indicators.sma(k_values, signal_period)
        k_aligned = k_values[signal_period - 1:]
        return [StochasticPoint(k=k, d=d) for k, d in zip(k_aligned, d_values)]

    @staticmethod
    def bias_percent(price: Decimal, closes: list[Decimal], window: int = 240) -> Decimal | None:
        """Percent distance of `price` from the `window`-bar simple average, None if short."""
        if len(closes) < window or window <= 0:
            return None
        average = sum(closes[-window:]) / Decimal(str(window))
        if average == 0:
            return None
        return (price - average) / average * _HUNDRED

    # ------------------------------------------------------------------
    # Level crossings
    # ------------------------------------------------------------------

    @staticmethod
    def rose_above_after_below(
        series: list[Decimal],
        level: Decimal,
        lookback: int = 10,
        require_cross_today: bool = False,
    ) -> bool:
        """
        True if the series sat at or below `level` within the previous
        `lookback` values and the current value is strictly above it.

        With require_cross_today the crossing must happen on the last bar
        (previous <= level < current).
        """
        if len(series) < 2:
            return False
        current = series[-1]
        if current <= level:
            return False
        if require_cross_today:
            return series[-2] <= level
        window = series[-(lookback + 1):-1]
        return any(v <= level for v in window)

    @staticmethod
    def fell_below_after_above(
        series: list[Decimal],
        level: Decimal,
        lookback: int = 10,
        require_cross_today: bool = False,
    ) -> bool:
        """Mirror of rose_above_after_below: was >= level, now strictly below."""
        if len(series) < 2:
            return False
        current = series[-1]
        if current >= level:
            return False
        if require_cross_today:
            return series[-2] >= level
        window = series[-(lookback + 1):-1]
        return any(v >= level for v in window)

    @staticmethod
    def was_below_level(series: list[Decimal], level: Decimal, lookback: int = 10) -> bool:
        """Any of the last `lookback` values strictly below `level`."""
        return any(v < level for v in series[-lookback:])

    # ------------------------------------------------------------------
    # Line crosses
    # ------------------------------------------------------------------

    @staticmethod
    def macd_cross_up(points: list[MacdPoint]) -> bool:
        if len(points) < 2:
            return False
        prev, cur = points[-2], points[-1]
        return prev.macd <= prev.signal and cur.macd > cur.signal and cur.histogram > 0

    @staticmethod
    def macd_cross_down(points: list[MacdPoint]) -> bool:
        if len(points) < 2:
            return False
        prev, cur = points[-2], points[-1]
        return prev.macd >= prev.signal and cur.macd < cur.signal

    @staticmethod
    def macd_diff_turned_negative(points: list[MacdPoint]) -> bool:
        """MACD minus signal went from positive to zero or below on the last bar."""
        if len(points) < 2:
            return False
        prev, cur = points[-2], points[-1]
        return (prev.macd - prev.signal) > 0 and (cur.macd - cur.signal) <= 0

    @staticmethod
    def kd_cross_up(points: list[StochasticPoint]) -> bool:
        if len(points) < 2:
            return False
        prev, cur = points[-2], points[-1]
        return prev.k <= prev.d and cur.k > cur.d

    @staticmethod
    def kd_cross_down(points: list[StochasticPoint]) -> bool:
        if len(points) < 2:
            return False
        prev, cur = points[-2], points[-1]
        return prev.k >= prev.d and cur.k < cur.d
