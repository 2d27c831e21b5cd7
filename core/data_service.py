"""
Market data adapter for the pledge leverage engine.

The engine never fetches anything itself; callers hand it an IndicatorFeed
payload (one evaluation tick) or a daily price history (backtests). This
module normalizes both into the typed structures in shared/types.py:

    IndicatorFeed payload -> MarketSnapshot
        {
          "date": "2024-08-05",                      (optional)
          "prices": {"collateral": .., "leveraged": .., "basePrice": ..},
          "rsi": [..],
          "macd": [{"MACD": .., "signal": .., "histogram": ..}, ..],
          "stochastic": [{"k": .., "d": ..}, ..],
          "bias240": .. | null,
          "vix": .. | null,
          "isRebalanceCheckpoint": false              (optional)
        }

    Price history rows -> list[PriceBar]
        [{"date": "2024-01-02", "collateral": .., "leveraged": .., "vix": ..}, ..]

All numbers become Decimal via str() so JSON floats do not carry binary
noise into the ledger. Malformed payloads raise FeedPayloadError.

Usage:
    snapshot = parse_feed_payload(payload)
    bars = load_price_bars(Path("history.json"))
"""

from __future__ import annotations

import json
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from bot_logging.logger_manager import setup_module_logger
from core.indicators import Indicators
from shared.types import MacdPoint, MarketSnapshot, PriceBar, StochasticPoint


def _get_logger():
    return setup_module_logger("data_service", "data_service.log", module_folder="Data_Service_Logs")


class FeedPayloadError(ValueError):
    """Raised when an IndicatorFeed payload or price history is malformed."""


# ---------------------------------------------------------------------------
# Field coercion
# ---------------------------------------------------------------------------


def _decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise FeedPayloadError(f"{name}: expected a number, got {value!r}")
    try:
        result = Decimal(str(value))
    except InvalidOperation as e:
        raise FeedPayloadError(f"{name}: expected a number, got {value!r}") from e
    if not result.is_finite():
        raise FeedPayloadError(f"{name}: expected a finite number, got {value!r}")
    return result


def _optional_decimal(value: Any, name: str) -> Decimal | None:
    if value is None:
        return None
    return _decimal(value, name)


def _date(value: Any, name: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise FeedPayloadError(f"{name}: expected an ISO date, got {value!r}") from e


def _list(payload: dict[str, Any], key: str) -> list[Any]:
    value = payload.get(key, [])
    if value is None:
        return []
    if not isinstance(value, list):
        raise FeedPayloadError(f"{key}: expected a list, got {type(value).__name__}")
    return value


def _field(entry: Any, key: str, where: str) -> Any:
    if not isinstance(entry, dict) or key not in entry:
        raise FeedPayloadError(f"{where}: missing '{key}'")
    return entry[key]


# ---------------------------------------------------------------------------
# IndicatorFeed payload
# ---------------------------------------------------------------------------


def parse_feed_payload(
    payload: dict[str, Any],
    on_date: date | None = None,
    closes: list[Decimal] | None = None,
    is_rebalance_checkpoint: bool | None = None,
) -> MarketSnapshot:
    """
    Convert one IndicatorFeed payload into a MarketSnapshot.

    Args:
        payload: Decoded feed JSON.
        on_date: Evaluation date; defaults to payload["date"].
        closes: Leveraged closes (oldest first) used to compute bias240 when
            the payload does not carry one.
        is_rebalance_checkpoint: Overrides payload["isRebalanceCheckpoint"].

    Raises:
        FeedPayloadError: On missing prices, non-numeric values or no date.
    """
    if not isinstance(payload, dict):
        raise FeedPayloadError(f"payload: expected an object, got {type(payload).__name__}")

    if on_date is None:
        if "date" not in payload:
            raise FeedPayloadError("date: not given and not in payload")
        on_date = _date(payload["date"], "date")

    prices = payload.get("prices")
    if not isinstance(prices, dict):
        raise FeedPayloadError("prices: missing or not an object")
    collateral = _decimal(_field(prices, "collateral", "prices"), "prices.collateral")
    leveraged = _decimal(_field(prices, "leveraged", "prices"), "prices.leveraged")
    base_price = _decimal(_field(prices, "basePrice", "prices"), "prices.basePrice")

    rsi = [_decimal(v, f"rsi[{i}]") for i, v in enumerate(_list(payload, "rsi"))]
    macd = [
        MacdPoint(
            macd=_decimal(_field(p, "MACD", f"macd[{i}]"), f"macd[{i}].MACD"),
            signal=_decimal(_field(p, "signal", f"macd[{i}]"), f"macd[{i}].signal"),
            histogram=_decimal(_field(p, "histogram", f"macd[{i}]"), f"macd[{i}].histogram"),
        )
        for i, p in enumerate(_list(payload, "macd"))
    ]
    stochastic = [
        StochasticPoint(
            k=_decimal(_field(p, "k", f"stochastic[{i}]"), f"stochastic[{i}].k"),
            d=_decimal(_field(p, "d", f"stochastic[{i}]"), f"stochastic[{i}].d"),
        )
        for i, p in enumerate(_list(payload, "stochastic"))
    ]

    bias240 = _optional_decimal(payload.get("bias240"), "bias240")
    if bias240 is None and closes:
        bias240 = bias_percent(leveraged, closes)

    if is_rebalance_checkpoint is None:
        is_rebalance_checkpoint = bool(payload.get("isRebalanceCheckpoint", False))

    snapshot = MarketSnapshot(
        date=on_date,
        collateral_price=collateral,
        leveraged_price=leveraged,
        base_price=base_price,
        rsi=rsi,
        macd=macd,
        stochastic=stochastic,
        bias240=bias240,
        vix=_optional_decimal(payload.get("vix"), "vix"),
        is_rebalance_checkpoint=is_rebalance_checkpoint,
    )
    _get_logger().debug(
        "Parsed feed for %s: collateral=%s leveraged=%s base=%s rsi=%d macd=%d kd=%d",
        on_date, collateral, leveraged, base_price, len(rsi), len(macd), len(stochastic),
    )
    return snapshot


def bias_percent(price: Decimal, closes: list[Decimal], window: int = 240) -> Decimal | None:
    """Long-MA bias in percent; None until ``window`` closes exist."""
    return Indicators.bias_percent(price, closes, window)


# ---------------------------------------------------------------------------
# Price history
# ---------------------------------------------------------------------------


def parse_price_bars(rows: list[dict[str, Any]]) -> list[PriceBar]:
    """Rows sorted oldest first; duplicate dates are rejected."""
    if not isinstance(rows, list):
        raise FeedPayloadError(f"price history: expected a list, got {type(rows).__name__}")

    bars = []
    for i, row in enumerate(rows):
        where = f"bars[{i}]"
        bars.append(
            PriceBar(
                date=_date(_field(row, "date", where), f"{where}.date"),
                collateral_close=_decimal(_field(row, "collateral", where), f"{where}.collateral"),
                leveraged_close=_optional_decimal(row.get("leveraged"), f"{where}.leveraged"),
                vix=_optional_decimal(row.get("vix"), f"{where}.vix"),
            )
        )

    bars.sort(key=lambda b: b.date)
    for prev, cur in zip(bars, bars[1:]):
        if prev.date == cur.date:
            raise FeedPayloadError(f"price history: duplicate date {cur.date}")
    for bar in bars:
        if bar.collateral_close <= 0 or (bar.leveraged_close is not None and bar.leveraged_close <= 0):
            raise FeedPayloadError(f"price history: non-positive close on {bar.date}")
    return bars


def load_json_file(path: Path) -> Any:
    """Read a JSON document, turning decode failures into FeedPayloadError."""
    try:
        with open(path) as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise FeedPayloadError(f"{path}: invalid JSON ({e})") from e


def load_price_bars(path: Path) -> list[PriceBar]:
    bars = parse_price_bars(load_json_file(path))
    _get_logger().info("Loaded %d price bars from %s", len(bars), path)
    return bars
