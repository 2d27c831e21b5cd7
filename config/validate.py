"""
Configuration schema validation for the pledge leverage engine.

Validates that all required config files exist, contain required keys and
carry sane values, then builds the frozen schema objects from config/schema.py.
Run at startup to fail fast on misconfiguration: no evaluation happens on a
config that did not pass here.
"""

import math
from decimal import Decimal
from typing import Any

from config.schema import (
    AllocationRule,
    BacktestConfig,
    BuyRules,
    DropScoreRule,
    LedgerConfig,
    MaintenanceRules,
    PanicRules,
    RebalanceRules,
    ReserveTier,
    SellRules,
    StrategyConfig,
    Thresholds,
    TradingRules,
)
from shared.constants import (
    BASE_ALLOCATION_SCORE,
    DEFAULT_FALLBACK_REPAY_RATIO,
    DEFAULT_HARD_BORROW_LIMIT,
    DEFAULT_LOOKBACK_PERIODS,
    DEFAULT_MIN_INDICATOR_PERIODS,
    DEFAULT_MIN_REBALANCE_RATIO,
    DEFAULT_PANIC_EXTREME_MULTIPLIER,
    DEFAULT_PANIC_MAX_LEVERAGE,
    DEFAULT_PANIC_MIN_DROP_RANK,
    DEFAULT_PANIC_RSI_DIVIDER,
    DEFAULT_PANIC_SUGGESTED_LEVERAGE,
    DEFAULT_REBALANCE_TOLERANCE,
)


class ConfigValidationError(ValueError):
    """Raised when a required config key is missing or invalid."""

    pass


STRATEGY_REQUIRED_KEYS = [
    "leverage.target_multiplier",
    "buy.min_drop_percent_to_consider",
    "buy.min_weight_score_to_buy",
    "buy.drop_score_rules",
    "buy.rsi.oversold",
    "buy.rsi.score",
    "buy.macd.score",
    "buy.kd.oversold_k",
    "buy.kd.score",
    "sell.min_up_percent_to_sell",
    "sell.min_signal_count_to_sell",
    "sell.post_allocation_index_from_end",
    "sell.rsi.overbought",
    "sell.kd.overbought_k",
    "allocation",
    "threshold.mm_danger",
    "threshold.overheat_count",
    "threshold.rsi_overheat_level",
    "threshold.d_overheat_level",
    "threshold.bias240_overheat_level",
    "threshold.rsi_reversal_level",
    "threshold.k_reversal_level",
    "threshold.reversal_trigger_count",
    "threshold.exposure_ratio_high",
    "threshold.exposure_target_ratio",
    "threshold.w_active",
    "threshold.w_aggressive",
    "maintenance.defend_trigger",
    "maintenance.defend_target",
    "trading.cooldown_days",
    "trading.cooldown_override_score",
    "trading.max_loan_to_collateral",
    "trading.min_action_amount",
]

STRATEGY_INTEGER_KEYS = [
    "sell.min_signal_count_to_sell",
    "sell.post_allocation_index_from_end",
    "threshold.overheat_count",
    "threshold.reversal_trigger_count",
    "threshold.lookback_periods",
    "trading.cooldown_days",
    "trading.min_indicator_periods",
    "buy.panic.min_drop_rank",
]

STRATEGY_OPTIONAL_NUMBER_KEYS = [
    "rebalance.hard_borrow_limit",
    "rebalance.fallback_repay_ratio",
    "rebalance.min_ratio",
    "rebalance.tolerance",
    "buy.panic.rsi_divider",
    "buy.panic.suggested_leverage",
    "buy.panic.extreme_multiplier",
    "buy.panic.max_leverage",
]

STRATEGY_BOOLEAN_KEYS = [
    "sell.require_cross_today",
    "sell.reinvest_proceeds",
    "trading.panic_buy_resets_cooldown",
]

STRATEGY_PERCENT_LEVEL_KEYS = [
    "buy.rsi.oversold",
    "buy.kd.oversold_k",
    "sell.rsi.overbought",
    "sell.kd.overbought_k",
    "threshold.rsi_overheat_level",
    "threshold.d_overheat_level",
    "threshold.rsi_reversal_level",
    "threshold.k_reversal_level",
]

LEDGER_REQUIRED_KEYS = [
    "annual_interest_rate",
    "fee_rate",
    "tax_rate",
    "margin_call_threshold",
    "min_buy_amount",
    "money_quantum",
    "fee_quantum",
]

BACKTEST_REQUIRED_KEYS = [
    "initial_capital",
    "monthly_contribution",
    "checkpoint_months",
    "base_price_lookback",
    "synthetic_annual_expense",
    "synthetic_start_price",
    "trading_days_per_year",
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_MISSING = object()


def _get(config: dict[str, Any], dotted_key: str, default: Any = _MISSING) -> Any:
    """Resolve a dotted key path; returns ``default`` when any part is absent."""
    current: Any = config
    for part in dotted_key.split("."):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def _is_number(value: Any) -> bool:
    # json.load accepts NaN and Infinity
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _dec(value: Any) -> Decimal:
    return Decimal(str(value))


def _check_keys(config: dict[str, Any], required_keys: list[str], config_name: str) -> list[str]:
    """Check that all required keys exist in a config dict. Returns list of missing keys."""
    missing = []
    for key in required_keys:
        if _get(config, key) is _MISSING:
            missing.append(f"missing: {key}")
    return missing


def _check_numbers(config: dict[str, Any], keys: list[str]) -> list[str]:
    """Present keys must hold real numbers (bool and str are rejected)."""
    errors = []
    for key in keys:
        value = _get(config, key)
        if value is not _MISSING and not _is_number(value):
            errors.append(f"{key}: must be a number, got {value!r}")
    return errors


def _check_integers(config: dict[str, Any], keys: list[str]) -> list[str]:
    errors = []
    for key in keys:
        value = _get(config, key)
        if value is _MISSING:
            continue
        if not isinstance(value, int) or isinstance(value, bool):
            errors.append(f"{key}: must be an integer, got {value!r}")
        elif value < 0:
            errors.append(f"{key}: must be >= 0")
    return errors


def _check_booleans(config: dict[str, Any], keys: list[str]) -> list[str]:
    errors = []
    for key in keys:
        value = _get(config, key)
        if value is not _MISSING and not isinstance(value, bool):
            errors.append(f"{key}: must be true or false, got {value!r}")
    return errors


def _check_range(
    config: dict[str, Any], key: str, low: Decimal, high: Decimal
) -> list[str]:
    value = _get(config, key)
    if not _is_number(value):
        return []
    if not low <= _dec(value) <= high:
        return [f"{key}: must be within {low}..{high}, got {value}"]
    return []


def _check_order(
    config: dict[str, Any], greater_key: str, lesser_key: str, strict: bool = False
) -> list[str]:
    """``greater_key`` must be >= (or > when strict) ``lesser_key`` when both are numbers."""
    greater = _get(config, greater_key)
    lesser = _get(config, lesser_key)
    if not (_is_number(greater) and _is_number(lesser)):
        return []
    ok = _dec(greater) > _dec(lesser) if strict else _dec(greater) >= _dec(lesser)
    if not ok:
        op = ">" if strict else ">="
        return [f"{greater_key} ({greater}) must be {op} {lesser_key} ({lesser})"]
    return []


def format_errors(all_errors: dict[str, list[str]]) -> str:
    lines = ["Configuration validation failed:"]
    for config_name, errors in all_errors.items():
        lines.append(f"\n  {config_name}:")
        for error in errors:
            lines.append(f"    - {error}")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Validators (return a list of problems, never raise)
# ---------------------------------------------------------------------------


def _validate_drop_rules(rules: Any) -> list[str]:
    if not isinstance(rules, list) or len(rules) == 0:
        return ["buy.drop_score_rules: must be a non-empty list"]
    errors = []
    previous: Decimal | None = None
    for i, rule in enumerate(rules):
        if not isinstance(rule, dict):
            errors.append(f"buy.drop_score_rules[{i}]: must be an object")
            continue
        for key in ("min_drop", "score"):
            if not _is_number(rule.get(key)):
                errors.append(f"buy.drop_score_rules[{i}].{key}: must be a number")
        if not isinstance(rule.get("label"), str) or not rule.get("label"):
            errors.append(f"buy.drop_score_rules[{i}].label: must be a non-empty string")
        if _is_number(rule.get("min_drop")):
            current = _dec(rule["min_drop"])
            if previous is not None and current >= previous:
                errors.append(
                    "buy.drop_score_rules: must be sorted descending by min_drop "
                    f"(rule {i} has {current} after {previous})"
                )
            previous = current
    return errors


def _validate_allocation(rows: Any) -> list[str]:
    if not isinstance(rows, list) or len(rows) == 0:
        return ["allocation: must be a non-empty list"]
    errors = []
    base_rows = 0
    for i, row in enumerate(rows):
        if not isinstance(row, dict):
            errors.append(f"allocation[{i}]: must be an object")
            continue
        numeric = True
        for key in ("min_score", "leverage", "cash"):
            if not _is_number(row.get(key)):
                errors.append(f"allocation[{i}].{key}: must be a number")
                numeric = False
        if not numeric:
            continue
        leverage, cash = _dec(row["leverage"]), _dec(row["cash"])
        if not Decimal("0") <= leverage <= Decimal("1"):
            errors.append(f"allocation[{i}].leverage: must be within 0..1")
        if not Decimal("0") <= cash <= Decimal("1"):
            errors.append(f"allocation[{i}].cash: must be within 0..1")
        if leverage + cash != Decimal("1"):
            errors.append(f"allocation[{i}]: leverage + cash must equal 1 (got {leverage + cash})")
        if _dec(row["min_score"]) == BASE_ALLOCATION_SCORE:
            base_rows += 1
    if base_rows != 1:
        errors.append(
            f"allocation: exactly one base row with min_score {BASE_ALLOCATION_SCORE} "
            f"is required (found {base_rows})"
        )
    return errors


def _validate_reserve(config: dict[str, Any]) -> list[str]:
    tiers = _get(config, "reserve.tiers", None)
    if tiers is None:
        return []
    if not isinstance(tiers, list):
        return ["reserve.tiers: must be a list"]
    errors = []
    for i, tier in enumerate(tiers):
        if not isinstance(tier, dict) or not all(
            _is_number(tier.get(k)) for k in ("max_asset", "ratio")
        ):
            errors.append(f"reserve.tiers[{i}]: max_asset and ratio must be numbers")
        elif not Decimal("0") <= _dec(tier["ratio"]) <= Decimal("1"):
            errors.append(f"reserve.tiers[{i}].ratio: must be within 0..1")
    return errors


def validate_strategy_config(config: dict[str, Any]) -> list[str]:
    """Validate strategy.json: structure, types, ranges and internal ordering."""
    if not isinstance(config, dict):
        return ["root: must be an object"]
    errors = _check_keys(config, STRATEGY_REQUIRED_KEYS, "strategy.json")
    scalar_keys = [
        k for k in STRATEGY_REQUIRED_KEYS
        if k not in ("buy.drop_score_rules", "allocation")
    ]
    errors += _check_numbers(config, scalar_keys + STRATEGY_OPTIONAL_NUMBER_KEYS)
    errors += _check_integers(config, STRATEGY_INTEGER_KEYS)
    errors += _check_booleans(config, STRATEGY_BOOLEAN_KEYS)
    multiplier = _get(config, "leverage.target_multiplier", None)
    if _is_number(multiplier) and multiplier <= 0:
        errors.append("leverage.target_multiplier: must be > 0")

    panic = _get(config, "buy.panic", None)
    if panic is not None:
        if not isinstance(panic, dict):
            errors.append("buy.panic: must be an object")
        else:
            for key in ("vix_panic", "vix_extreme"):
                if key not in panic:
                    errors.append(f"missing: buy.panic.{key}")
            errors += _check_numbers(config, ["buy.panic.vix_panic", "buy.panic.vix_extreme"])
            errors += _check_order(config, "buy.panic.vix_extreme", "buy.panic.vix_panic")
            rank = panic.get("min_drop_rank", DEFAULT_PANIC_MIN_DROP_RANK)
            if isinstance(rank, int) and not isinstance(rank, bool) and rank < 1:
                errors.append("buy.panic.min_drop_rank: must be >= 1")
            divider = panic.get("rsi_divider")
            if _is_number(divider) and divider <= 0:
                errors.append("buy.panic.rsi_divider: must be > 0")

    for key in STRATEGY_PERCENT_LEVEL_KEYS:
        errors += _check_range(config, key, Decimal("0"), Decimal("100"))
    errors += _check_order(config, "threshold.rsi_overheat_level", "threshold.rsi_reversal_level")
    errors += _check_order(config, "threshold.d_overheat_level", "threshold.k_reversal_level")
    errors += _check_order(config, "threshold.w_aggressive", "threshold.w_active")
    errors += _check_order(
        config, "maintenance.defend_target", "maintenance.defend_trigger", strict=True
    )
    errors += _check_range(config, "trading.max_loan_to_collateral", Decimal("0"), Decimal("1"))
    errors += _check_range(config, "threshold.exposure_target_ratio", Decimal("0"), Decimal("1"))
    errors += _check_order(
        config, "threshold.exposure_ratio_high", "threshold.exposure_target_ratio"
    )

    rules = _get(config, "buy.drop_score_rules", None)
    if rules is not None:
        errors += _validate_drop_rules(rules)
    allocation = _get(config, "allocation", None)
    if allocation is not None:
        errors += _validate_allocation(allocation)
        # post-sale row is counted from the end of the table
        index = _get(config, "sell.post_allocation_index_from_end", None)
        if (
            isinstance(allocation, list)
            and isinstance(index, int)
            and not isinstance(index, bool)
            and not 1 <= index <= len(allocation)
        ):
            errors.append(
                f"sell.post_allocation_index_from_end: {index} does not index an "
                f"allocation row (table has {len(allocation)})"
            )
    errors += _validate_reserve(config)
    return errors


def validate_ledger_config(config: dict[str, Any]) -> list[str]:
    """Validate ledger.json has required fields and sane rates."""
    if not isinstance(config, dict):
        return ["root: must be an object"]
    errors = _check_keys(config, LEDGER_REQUIRED_KEYS, "ledger.json")
    errors += _check_numbers(config, LEDGER_REQUIRED_KEYS)
    errors += _check_booleans(config, ["interest_to_cash"])
    errors += _check_range(config, "annual_interest_rate", Decimal("0"), Decimal("1"))
    errors += _check_range(config, "fee_rate", Decimal("0"), Decimal("0.1"))
    errors += _check_range(config, "tax_rate", Decimal("0"), Decimal("0.1"))
    for key in ("margin_call_threshold", "money_quantum", "fee_quantum"):
        value = config.get(key)
        if _is_number(value) and value <= 0:
            errors.append(f"{key}: must be > 0")
    return errors


def validate_backtest_config(config: dict[str, Any]) -> list[str]:
    """Validate backtest.json has required fields."""
    if not isinstance(config, dict):
        return ["root: must be an object"]
    errors = _check_keys(config, BACKTEST_REQUIRED_KEYS, "backtest.json")
    errors += _check_numbers(
        config, [k for k in BACKTEST_REQUIRED_KEYS if k != "checkpoint_months"]
    )
    errors += _check_numbers(config, ["synthetic_leverage"])
    if _is_number(config.get("synthetic_leverage")) and config["synthetic_leverage"] <= 0:
        errors.append("synthetic_leverage: must be > 0")
    errors += _check_integers(config, ["base_price_lookback", "trading_days_per_year"])
    months = config.get("checkpoint_months")
    if months is not None and (
        not isinstance(months, list)
        or not all(isinstance(m, int) and not isinstance(m, bool) and 1 <= m <= 12 for m in months)
    ):
        errors.append("checkpoint_months: must be a list of month numbers 1..12")
    return errors


def validate_cross_config(strategy: dict[str, Any], ledger: dict[str, Any]) -> list[str]:
    """Relations spanning files: the broker floor must sit below the defend trigger."""
    if not isinstance(strategy, dict) or not isinstance(ledger, dict):
        return []
    floor = ledger.get("margin_call_threshold")
    trigger = _get(strategy, "maintenance.defend_trigger", None)
    if _is_number(floor) and _is_number(trigger) and _dec(floor) >= _dec(trigger):
        return [
            f"ledger.margin_call_threshold ({floor}) must be < "
            f"maintenance.defend_trigger ({trigger})"
        ]
    return []


# ---------------------------------------------------------------------------
# Builders (raise ConfigValidationError, return frozen schema objects)
# ---------------------------------------------------------------------------


def parse_strategy_config(config: dict[str, Any]) -> StrategyConfig:
    """Validate a raw strategy dict and build the frozen StrategyConfig."""
    if not config:
        raise ConfigValidationError(format_errors({"strategy.json": ["Config file is empty or not found"]}))
    errors = validate_strategy_config(config)
    if errors:
        raise ConfigValidationError(format_errors({"strategy.json": errors}))

    buy, sell, th = config["buy"], config["sell"], config["threshold"]
    rebalance = config.get("rebalance", {})
    trading = config["trading"]

    panic = None
    if buy.get("panic"):
        p = buy["panic"]
        panic = PanicRules(
            vix_panic=_dec(p["vix_panic"]),
            vix_extreme=_dec(p["vix_extreme"]),
            min_drop_rank=int(p.get("min_drop_rank", DEFAULT_PANIC_MIN_DROP_RANK)),
            rsi_divider=_dec(p.get("rsi_divider", DEFAULT_PANIC_RSI_DIVIDER)),
            suggested_leverage=_dec(p.get("suggested_leverage", DEFAULT_PANIC_SUGGESTED_LEVERAGE)),
            extreme_multiplier=_dec(p.get("extreme_multiplier", DEFAULT_PANIC_EXTREME_MULTIPLIER)),
            max_leverage=_dec(p.get("max_leverage", DEFAULT_PANIC_MAX_LEVERAGE)),
        )

    return StrategyConfig(
        version=str(config.get("version", "unversioned")),
        target_multiplier=_dec(config["leverage"]["target_multiplier"]),
        buy=BuyRules(
            min_drop_percent_to_consider=_dec(buy["min_drop_percent_to_consider"]),
            min_weight_score_to_buy=_dec(buy["min_weight_score_to_buy"]),
            drop_score_rules=tuple(
                DropScoreRule(_dec(r["min_drop"]), _dec(r["score"]), r["label"])
                for r in buy["drop_score_rules"]
            ),
            rsi_oversold=_dec(buy["rsi"]["oversold"]),
            rsi_score=_dec(buy["rsi"]["score"]),
            macd_score=_dec(buy["macd"]["score"]),
            kd_oversold_k=_dec(buy["kd"]["oversold_k"]),
            kd_score=_dec(buy["kd"]["score"]),
            panic=panic,
        ),
        sell=SellRules(
            min_up_percent_to_sell=_dec(sell["min_up_percent_to_sell"]),
            min_signal_count_to_sell=int(sell["min_signal_count_to_sell"]),
            post_allocation_index_from_end=int(sell["post_allocation_index_from_end"]),
            rsi_overbought=_dec(sell["rsi"]["overbought"]),
            kd_overbought_k=_dec(sell["kd"]["overbought_k"]),
            require_cross_today=sell.get("require_cross_today", True),
            reinvest_proceeds=sell.get("reinvest_proceeds", False),
        ),
        allocation=tuple(
            AllocationRule(
                min_score=_dec(r["min_score"]),
                leverage=_dec(r["leverage"]),
                cash=_dec(r["cash"]),
                comment=str(r.get("comment", "")),
            )
            for r in config["allocation"]
        ),
        threshold=Thresholds(
            mm_danger=_dec(th["mm_danger"]),
            overheat_count=int(th["overheat_count"]),
            rsi_overheat_level=_dec(th["rsi_overheat_level"]),
            d_overheat_level=_dec(th["d_overheat_level"]),
            bias240_overheat_level=_dec(th["bias240_overheat_level"]),
            rsi_reversal_level=_dec(th["rsi_reversal_level"]),
            k_reversal_level=_dec(th["k_reversal_level"]),
            reversal_trigger_count=int(th["reversal_trigger_count"]),
            exposure_ratio_high=_dec(th["exposure_ratio_high"]),
            exposure_target_ratio=_dec(th["exposure_target_ratio"]),
            w_active=_dec(th["w_active"]),
            w_aggressive=_dec(th["w_aggressive"]),
            lookback_periods=int(th.get("lookback_periods", DEFAULT_LOOKBACK_PERIODS)),
        ),
        maintenance=MaintenanceRules(
            defend_trigger=_dec(config["maintenance"]["defend_trigger"]),
            defend_target=_dec(config["maintenance"]["defend_target"]),
        ),
        rebalance=RebalanceRules(
            hard_borrow_limit=_dec(rebalance.get("hard_borrow_limit", DEFAULT_HARD_BORROW_LIMIT)),
            fallback_repay_ratio=_dec(
                rebalance.get("fallback_repay_ratio", DEFAULT_FALLBACK_REPAY_RATIO)
            ),
            min_ratio=_dec(rebalance.get("min_ratio", DEFAULT_MIN_REBALANCE_RATIO)),
            tolerance=_dec(rebalance.get("tolerance", DEFAULT_REBALANCE_TOLERANCE)),
        ),
        trading=TradingRules(
            cooldown_days=int(trading["cooldown_days"]),
            cooldown_override_score=_dec(trading["cooldown_override_score"]),
            max_loan_to_collateral=_dec(trading["max_loan_to_collateral"]),
            min_action_amount=_dec(trading["min_action_amount"]),
            min_indicator_periods=int(
                trading.get("min_indicator_periods", DEFAULT_MIN_INDICATOR_PERIODS)
            ),
            panic_buy_resets_cooldown=trading.get("panic_buy_resets_cooldown", True),
        ),
        reserve_tiers=tuple(
            ReserveTier(_dec(t["max_asset"]), _dec(t["ratio"]))
            for t in _get(config, "reserve.tiers", None) or []
        ),
    )


def parse_ledger_config(config: dict[str, Any]) -> LedgerConfig:
    if not config:
        raise ConfigValidationError(format_errors({"ledger.json": ["Config file is empty or not found"]}))
    errors = validate_ledger_config(config)
    if errors:
        raise ConfigValidationError(format_errors({"ledger.json": errors}))
    return LedgerConfig(
        annual_interest_rate=_dec(config["annual_interest_rate"]),
        fee_rate=_dec(config["fee_rate"]),
        tax_rate=_dec(config["tax_rate"]),
        margin_call_threshold=_dec(config["margin_call_threshold"]),
        min_buy_amount=_dec(config["min_buy_amount"]),
        money_quantum=_dec(config["money_quantum"]),
        fee_quantum=_dec(config["fee_quantum"]),
        interest_to_cash=config.get("interest_to_cash", True),
    )


def parse_backtest_config(config: dict[str, Any]) -> BacktestConfig:
    if not config:
        raise ConfigValidationError(format_errors({"backtest.json": ["Config file is empty or not found"]}))
    errors = validate_backtest_config(config)
    if errors:
        raise ConfigValidationError(format_errors({"backtest.json": errors}))
    return BacktestConfig(
        initial_capital=_dec(config["initial_capital"]),
        monthly_contribution=_dec(config["monthly_contribution"]),
        checkpoint_months=tuple(config["checkpoint_months"]),
        base_price_lookback=int(config["base_price_lookback"]),
        synthetic_annual_expense=_dec(config["synthetic_annual_expense"]),
        synthetic_start_price=_dec(config["synthetic_start_price"]),
        trading_days_per_year=int(config["trading_days_per_year"]),
        synthetic_leverage=(
            _dec(config["synthetic_leverage"]) if "synthetic_leverage" in config else None
        ),
    )


def validate_all_configs(loader) -> None:
    """
    Validate all config files. Raises ConfigValidationError with details
    if any required keys are missing or any value is out of range.
    """
    all_errors: dict[str, list[str]] = {}

    validators = {
        "strategy.json": (loader.get_raw_strategy, validate_strategy_config),
        "ledger.json": (loader.get_raw_ledger, validate_ledger_config),
        "backtest.json": (loader.get_raw_backtest, validate_backtest_config),
    }

    raw: dict[str, dict[str, Any]] = {}
    for config_name, (loader_fn, validator_fn) in validators.items():
        config = loader_fn()
        raw[config_name] = config
        if not config:
            all_errors[config_name] = ["Config file is empty or not found"]
            continue
        errors = validator_fn(config)
        if errors:
            all_errors[config_name] = errors

    cross = validate_cross_config(raw["strategy.json"], raw["ledger.json"])
    if cross:
        all_errors.setdefault("cross-file", []).extend(cross)

    if all_errors:
        raise ConfigValidationError(format_errors(all_errors))
