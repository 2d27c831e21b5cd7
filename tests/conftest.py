"""
Shared pytest configuration and fixtures for the pledge leverage engine tests.

Points ENGINE_LOG_DIR at a temporary directory before any project module
creates its file loggers, and provides the standard configs, a snapshot
builder and a ledger factory used across the unit suites.
"""

from __future__ import annotations

import copy
import os
import tempfile
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

os.environ.setdefault("ENGINE_LOG_DIR", tempfile.mkdtemp(prefix="engine-test-logs-"))

import pytest  # noqa: E402

from config.validate import (  # noqa: E402
    parse_backtest_config,
    parse_ledger_config,
    parse_strategy_config,
)
from core.ledger import PortfolioLedger  # noqa: E402
from shared.types import (  # noqa: E402
    MacdPoint,
    MarketSnapshot,
    PortfolioState,
    StochasticPoint,
)

# ---------------------------------------------------------------------------
# Decimal helper
# ---------------------------------------------------------------------------


def _d(v) -> Decimal:
    """Shorthand Decimal factory."""
    return Decimal(str(v))


# ---------------------------------------------------------------------------
# Standard configs (mirror the shipped config/*.json)
# ---------------------------------------------------------------------------

STANDARD_STRATEGY_CONFIG = {
    "version": "test",
    "leverage": {"target_multiplier": 2},
    "buy": {
        "min_drop_percent_to_consider": 10,
        "min_weight_score_to_buy": 3,
        "drop_score_rules": [
            {"min_drop": 50, "score": 6, "label": "crash"},
            {"min_drop": 40, "score": 5, "label": "bear market"},
            {"min_drop": 30, "score": 4, "label": "deep correction"},
            {"min_drop": 20, "score": 2, "label": "correction"},
            {"min_drop": 10, "score": 1, "label": "pullback"},
        ],
        "rsi": {"oversold": 30, "score": 2},
        "macd": {"score": 1},
        "kd": {"oversold_k": 20, "score": 1},
        "panic": {
            "min_drop_rank": 2,
            "rsi_divider": 1.6,
            "suggested_leverage": 0.3,
            "extreme_multiplier": 1.67,
            "max_leverage": 0.5,
            "vix_panic": 30,
            "vix_extreme": 40,
        },
    },
    "sell": {
        "min_up_percent_to_sell": 50,
        "min_signal_count_to_sell": 2,
        "post_allocation_index_from_end": 2,
        "rsi": {"overbought": 70},
        "kd": {"overbought_k": 80},
        "require_cross_today": True,
        "reinvest_proceeds": False,
    },
    "allocation": [
        {"min_score": 9, "leverage": 0.8, "cash": 0.2, "comment": "all in"},
        {"min_score": 6, "leverage": 0.6, "cash": 0.4, "comment": "aggressive"},
        {"min_score": 4, "leverage": 0.4, "cash": 0.6, "comment": "active"},
        {"min_score": 3, "leverage": 0.3, "cash": 0.7, "comment": "light"},
        {"min_score": -99, "leverage": 0.2, "cash": 0.8, "comment": "base"},
    ],
    "threshold": {
        "mm_danger": 165,
        "overheat_count": 2,
        "rsi_overheat_level": 80,
        "d_overheat_level": 85,
        "bias240_overheat_level": 25,
        "rsi_reversal_level": 60,
        "k_reversal_level": 70,
        "reversal_trigger_count": 2,
        "exposure_ratio_high": 0.65,
        "exposure_target_ratio": 0.5,
        "w_active": 4,
        "w_aggressive": 6,
        "lookback_periods": 10,
    },
    "maintenance": {"defend_trigger": 160, "defend_target": 180},
    "rebalance": {
        "hard_borrow_limit": 1.0,
        "fallback_repay_ratio": 0.9,
        "min_ratio": 0.2,
        "tolerance": 0.1,
    },
    "trading": {
        "cooldown_days": 20,
        "cooldown_override_score": 9,
        "max_loan_to_collateral": 0.6,
        "min_action_amount": 10000,
        "min_indicator_periods": 2,
        "panic_buy_resets_cooldown": True,
    },
    "reserve": {
        "tiers": [
            {"max_asset": 1000000, "ratio": 0.05},
            {"max_asset": 5000000, "ratio": 0.1},
        ]
    },
}

# Costs zeroed so share counts and cash flows are easy to reason about;
# tests that exercise fees and tax use STANDARD_LEDGER_CONFIG.
FRICTIONLESS_LEDGER_CONFIG = {
    "annual_interest_rate": 0.025,
    "fee_rate": 0,
    "tax_rate": 0,
    "margin_call_threshold": 135,
    "min_buy_amount": 1000,
    "money_quantum": 0.01,
    "fee_quantum": 1,
    "interest_to_cash": True,
}

STANDARD_LEDGER_CONFIG = {
    **FRICTIONLESS_LEDGER_CONFIG,
    "fee_rate": 0.000855,
    "tax_rate": 0.003,
}

STANDARD_BACKTEST_CONFIG = {
    "initial_capital": 0,
    "monthly_contribution": 30000,
    "checkpoint_months": [1, 7],
    "base_price_lookback": 120,
    "synthetic_annual_expense": 0.01,
    "synthetic_start_price": 10,
    "trading_days_per_year": 250,
}

TODAY = date(2024, 8, 5)


def with_overrides(base: dict, overrides: dict) -> dict:
    """Deep copy ``base`` and set dotted keys, e.g. {"maintenance.defend_trigger": 170}."""
    result = copy.deepcopy(base)
    for dotted, value in overrides.items():
        node = result
        *parents, leaf = dotted.split(".")
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
    return result


def make_strategy_config(overrides: dict | None = None):
    return parse_strategy_config(with_overrides(STANDARD_STRATEGY_CONFIG, overrides or {}))


def make_ledger_config(overrides: dict | None = None, frictionless: bool = True):
    base = FRICTIONLESS_LEDGER_CONFIG if frictionless else STANDARD_LEDGER_CONFIG
    return parse_ledger_config(with_overrides(base, overrides or {}))


# ---------------------------------------------------------------------------
# Indicator series builders
# ---------------------------------------------------------------------------

NEUTRAL_RSI = [_d(50)] * 12
NEUTRAL_MACD = [MacdPoint(_d(0), _d(0), _d(0))] * 12
NEUTRAL_KD = [StochasticPoint(_d(50), _d(50))] * 12

# RSI back above oversold (30) after sitting below it: +2
RSI_REBOUND = [_d(50)] * 6 + [_d(25)] * 5 + [_d(35)]
# MACD line crosses above signal with a positive histogram: +1
MACD_BULL_CROSS = [MacdPoint(_d(0), _d(0), _d(0))] * 10 + [
    MacdPoint(_d(-1), _d(0), _d(-1)),
    MacdPoint(_d(1), _d(0), _d(1)),
]
# %K crosses above %D after dipping below 20: +1
KD_LOW_CROSS = [StochasticPoint(_d(50), _d(50))] * 9 + [
    StochasticPoint(_d(15), _d(25)),
    StochasticPoint(_d(18), _d(22)),
    StochasticPoint(_d(26), _d(22)),
]
# RSI 85 and %D 90: two of three overheat factors
RSI_HOT = [_d(75)] * 11 + [_d(85)]
KD_HOT = [StochasticPoint(_d(88), _d(86))] * 11 + [StochasticPoint(_d(92), _d(90))]


def make_snapshot(**overrides) -> MarketSnapshot:
    """
    Neutral snapshot: no crosses, no overheat, leveraged price at its base.

    Defaults: collateral 100, leveraged 100, base 100 on TODAY.
    """
    fields = {
        "date": TODAY,
        "collateral_price": _d(100),
        "leveraged_price": _d(100),
        "base_price": _d(100),
        "rsi": list(NEUTRAL_RSI),
        "macd": list(NEUTRAL_MACD),
        "stochastic": list(NEUTRAL_KD),
        "bias240": None,
        "vix": None,
        "is_rebalance_checkpoint": False,
    }
    fields.update(overrides)
    return MarketSnapshot(**fields)


def make_state(**overrides) -> PortfolioState:
    values = {k: _d(v) if isinstance(v, (int, float, str)) and k != "margin_call_count" else v
              for k, v in overrides.items()}
    return PortfolioState(**values)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def strategy_config():
    return make_strategy_config()


@pytest.fixture
def ledger_config():
    return make_ledger_config()


@pytest.fixture
def standard_ledger_config():
    return make_ledger_config(frictionless=False)


@pytest.fixture
def backtest_config():
    return parse_backtest_config(copy.deepcopy(STANDARD_BACKTEST_CONFIG))


@pytest.fixture
def snapshot_factory():
    """Factory: snapshot_factory(leveraged_price=_d(68), rsi=series.rsi_rebound, ...)."""
    return make_snapshot


@pytest.fixture
def strategy_factory():
    """Factory: strategy_factory({"maintenance.defend_trigger": 170})."""
    return make_strategy_config


@pytest.fixture
def ledger_config_factory():
    return make_ledger_config


@pytest.fixture
def series():
    """Named indicator series: neutral_*, rsi_rebound, macd_bull_cross, kd_low_cross, rsi_hot, kd_hot."""
    return SimpleNamespace(
        neutral_rsi=list(NEUTRAL_RSI),
        neutral_macd=list(NEUTRAL_MACD),
        neutral_kd=list(NEUTRAL_KD),
        rsi_rebound=list(RSI_REBOUND),
        macd_bull_cross=list(MACD_BULL_CROSS),
        kd_low_cross=list(KD_LOW_CROSS),
        rsi_hot=list(RSI_HOT),
        kd_hot=list(KD_HOT),
    )


@pytest.fixture
def make_ledger(ledger_config):
    """Factory: make_ledger(collateral_qty=10000, loan=600000, ...)."""

    def _factory(config=None, name="strategy", **state_fields):
        return PortfolioLedger(config or ledger_config, make_state(**state_fields), name=name)

    return _factory
