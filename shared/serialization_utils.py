"""
Serialization utilities for the pledge leverage engine.

Provides JSON encoding for Decimal, dates, enums and dataclasses, plus the
persisted PortfolioState layout the caller stores between runs.

Usage:
    from shared.serialization_utils import DecimalEncoder, state_to_json, state_from_json
    json.dumps(data, cls=DecimalEncoder)
"""

import dataclasses
import json
from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from json import JSONEncoder
from typing import Any

from shared.types import PortfolioState

_STATE_DECIMAL_FIELDS = (
    "cash",
    "collateral_qty",
    "leveraged_qty",
    "loan",
    "reserve_cash",
    "accrued_interest",
)


class DecimalEncoder(JSONEncoder):
    """
    Custom JSON encoder handling Decimal, date, Enum and dataclass instances.

    Decimals are written as strings so a reload reproduces the exact value.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, date):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
        return super().default(obj)


def _to_decimal(value: Any, name: str) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"{name}: expected a number, got bool")
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{name}: not a number ({value!r})") from exc


def state_to_dict(state: PortfolioState) -> dict[str, Any]:
    """Flatten a PortfolioState into JSON-safe primitives."""
    data: dict[str, Any] = {name: str(getattr(state, name)) for name in _STATE_DECIMAL_FIELDS}
    data["last_buy_date"] = state.last_buy_date.isoformat() if state.last_buy_date else None
    data["margin_call_count"] = state.margin_call_count
    return data


def state_from_dict(data: dict[str, Any]) -> PortfolioState:
    """
    Rebuild a PortfolioState from its persisted layout.

    Missing numeric fields default to zero so a fresh store can be
    bootstrapped from a partial record.
    """
    kwargs: dict[str, Any] = {
        name: _to_decimal(data.get(name, "0"), name) for name in _STATE_DECIMAL_FIELDS
    }
    raw_date = data.get("last_buy_date")
    kwargs["last_buy_date"] = date.fromisoformat(raw_date) if raw_date else None
    kwargs["margin_call_count"] = int(data.get("margin_call_count", 0))
    return PortfolioState(**kwargs)


def state_to_json(state: PortfolioState) -> str:
    return json.dumps(state_to_dict(state), indent=2)


def state_from_json(text: str) -> PortfolioState:
    return state_from_dict(json.loads(text))
