"""
Pledge Leverage Engine: command line entrypoint.

Three subcommands, all driven by the JSON configs under config/:

    validate   check strategy.json, ledger.json and backtest.json (and their
               cross-file relations); exit 1 on any problem
    evaluate   run one decision cycle on an IndicatorFeed payload against a
               persisted portfolio state, print the decision as JSON
    backtest   replay a daily price history, strategy vs. collateral-only
               benchmark

The engine itself never touches the network or the state store; this runner
reads and writes the files it is pointed at.

Usage:
    python main.py validate
    python main.py evaluate --snapshot feed.json --state state.json --write-state
    python main.py backtest --bars history.json --start 2019-01-02
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from bot_logging.logger_manager import configure_logging, setup_module_logger
from config.loader import ConfigLoader
from config.validate import ConfigValidationError
from core.backtest import Backtester, BacktestReport
from core.data_service import load_json_file, load_price_bars, parse_feed_payload
from core.pnl_tracker import PnLTracker
from core.strategy import EngineContext
from shared.serialization_utils import DecimalEncoder, state_from_dict, state_to_json
from shared.types import PerformanceStats, PortfolioState


def _get_logger() -> logging.Logger:
    return setup_module_logger("main", "main.log", module_folder="Main_Logs")


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def _cmd_validate(ctx: EngineContext, args: argparse.Namespace) -> int:
    strategy = ctx.strategy_config
    print(f"Configuration OK (strategy version {strategy.version}, config dir {ctx.loader.config_dir})")
    return 0


def _load_state(path: Path) -> PortfolioState:
    if not path.exists():
        _get_logger().warning("State file %s not found, starting from an empty portfolio", path)
        return PortfolioState()
    return state_from_dict(load_json_file(path))


def _cmd_evaluate(ctx: EngineContext, args: argparse.Namespace) -> int:
    payload = load_json_file(args.snapshot)
    on_date = date.fromisoformat(args.date) if args.date else None
    snapshot = parse_feed_payload(payload, on_date=on_date)
    state = _load_state(args.state)

    decision, delta = ctx.evaluate(snapshot, state, settle=not args.no_settle)

    output: dict[str, Any] = {
        "decision": decision,
        "executed": decision.executed,
        "interest": delta.interest,
        "changes": {name: {"before": old, "after": new} for name, (old, new) in delta.changes.items()},
        "state": delta.after,
    }
    print(json.dumps(output, cls=DecimalEncoder, indent=2))

    if args.write_state:
        args.state.write_text(state_to_json(delta.after))
        _get_logger().info("State written to %s (%s)", args.state, decision.action.value)
    return 0


def _format_stats(title: str, stats: PerformanceStats) -> list[str]:
    return [
        f"[{title}]",
        f"  final net asset   : {stats.final_net_asset:,.0f}",
        f"  total return      : {stats.total_return_pct:.2f}%",
        f"  CAGR              : {stats.cagr_pct:.2f}%",
        f"  max drawdown      : -{stats.max_drawdown_pct:.2f}%",
        f"  margin calls      : {stats.margin_call_count}",
        f"  final borrow ratio: {stats.final_borrow_ratio:.2f}x",
    ]


def _print_report(report: BacktestReport) -> None:
    lines = [
        "=" * 60,
        f"Backtest {report.start} .. {report.end} ({report.years:.1f} years)",
        f"Total invested: {report.strategy.total_invested:,.0f}",
        "-" * 60,
        *_format_stats("Strategy", report.strategy),
        "-" * 60,
        *_format_stats("Benchmark (collateral only)", report.benchmark),
        "-" * 60,
        f"Strategy minus benchmark: {report.excess_net_asset:,.0f}",
        "Actions: " + ", ".join(f"{k}={v}" for k, v in sorted(report.action_counts.items())),
        "=" * 60,
    ]
    print("\n".join(lines))


def _cmd_backtest(ctx: EngineContext, args: argparse.Namespace) -> int:
    bars = load_price_bars(args.bars)
    tracker = PnLTracker(str(args.db) if args.db else None)
    try:
        backtester = Backtester(
            ctx.strategy_config,
            ctx.ledger_config,
            ctx.loader.get_backtest_config(),
            tracker=tracker,
        )
        start = date.fromisoformat(args.start) if args.start else None
        report = backtester.run(bars, start_date=start, warmup=args.warmup)
    finally:
        tracker.close()
    _print_report(report)
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pledge-engine", description=__doc__.split("\n")[1])
    parser.add_argument("--config-dir", type=Path, default=None, help="directory holding the JSON configs")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("validate", help="validate the configuration files")

    evaluate = sub.add_parser("evaluate", help="run one decision cycle")
    evaluate.add_argument("--snapshot", type=Path, required=True, help="IndicatorFeed payload (JSON)")
    evaluate.add_argument("--state", type=Path, required=True, help="persisted portfolio state (JSON)")
    evaluate.add_argument("--date", default=None, help="evaluation date, ISO format")
    evaluate.add_argument("--write-state", action="store_true", help="write the new state back")
    evaluate.add_argument(
        "--no-settle", action="store_true", help="skip daily interest and the margin-call check"
    )

    backtest = sub.add_parser("backtest", help="replay a daily price history")
    backtest.add_argument("--bars", type=Path, required=True, help="price history (JSON list)")
    backtest.add_argument("--start", default=None, help="first simulated date, ISO format")
    backtest.add_argument("--warmup", type=int, default=None, help="bars reserved for indicator warmup")
    backtest.add_argument("--db", type=Path, default=None, help="SQLite file for the daily history")
    return parser


_COMMANDS = {
    "validate": _cmd_validate,
    "evaluate": _cmd_evaluate,
    "backtest": _cmd_backtest,
}


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    loader = ConfigLoader(args.config_dir)
    configure_logging(loader.get_app_config())
    logger = _get_logger()

    try:
        ctx = EngineContext(loader)
        ctx.loader.validate()
        return _COMMANDS[args.command](ctx, args)
    except ConfigValidationError as exc:
        logger.critical("Config validation failed:\n%s", exc)
        print(str(exc), file=sys.stderr)
        return 1
    except ValueError as exc:  # FeedPayloadError, bad dates, short histories
        logger.error("%s failed: %s", args.command, exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
