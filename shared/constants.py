"""
Shared constants for the pledge leverage engine.

Numeric constants and default values used across all modules.
"""

from decimal import Decimal

# ---------------------------------------------------------------------------
# Numeric Constants
# ---------------------------------------------------------------------------

SENTINEL_UNLIMITED_MARGIN = Decimal("999")  # maintenance margin when loan == 0
HUNDRED = Decimal("100")
DAYS_PER_YEAR = 365
BASE_ALLOCATION_SCORE = Decimal("-99")  # allocation row used when no tier matches

# ---------------------------------------------------------------------------
# Ledger Defaults (Taiwan brokerage conventions)
# ---------------------------------------------------------------------------

DEFAULT_ANNUAL_INTEREST_RATE = Decimal("0.025")  # pledge loan rate
DEFAULT_FEE_RATE = Decimal("0.000855")  # 0.1425% brokerage fee at 40% discount
DEFAULT_TAX_RATE = Decimal("0.003")  # securities transaction tax (sell side)
DEFAULT_MARGIN_CALL_THRESHOLD = Decimal("135")  # broker hard floor, percent
DEFAULT_MIN_BUY_AMOUNT = Decimal("1000")
DEFAULT_MONEY_QUANTUM = Decimal("0.01")
DEFAULT_FEE_QUANTUM = Decimal("1")

# ---------------------------------------------------------------------------
# Strategy Defaults
# ---------------------------------------------------------------------------

DEFAULT_LOOKBACK_PERIODS = 10
DEFAULT_MIN_INDICATOR_PERIODS = 2
DEFAULT_COOLDOWN_DAYS = 20
DEFAULT_COOLDOWN_OVERRIDE_SCORE = Decimal("9")
DEFAULT_MAX_LOAN_TO_COLLATERAL = Decimal("0.6")
DEFAULT_MIN_ACTION_AMOUNT = Decimal("10000")

DEFAULT_DEFEND_TRIGGER = Decimal("160")
DEFAULT_DEFEND_TARGET = Decimal("180")

DEFAULT_HARD_BORROW_LIMIT = Decimal("1.0")
DEFAULT_FALLBACK_REPAY_RATIO = Decimal("0.9")
DEFAULT_MIN_REBALANCE_RATIO = Decimal("0.2")
DEFAULT_REBALANCE_TOLERANCE = Decimal("0.1")

DEFAULT_RESERVE_RATIO = Decimal("0.1")
RESERVE_INSUFFICIENT_PCT = Decimal("80")

DEFAULT_PANIC_MIN_DROP_RANK = 2
DEFAULT_PANIC_RSI_DIVIDER = Decimal("1.6")
DEFAULT_PANIC_SUGGESTED_LEVERAGE = Decimal("0.3")
DEFAULT_PANIC_EXTREME_MULTIPLIER = Decimal("1.67")
DEFAULT_PANIC_MAX_LEVERAGE = Decimal("0.5")
