"""
Centralized logging for the pledge leverage engine.

Provides standardized logging with JSON and human-readable formatters,
per-module log files, and a JSON decision-audit trail (one line per
evaluation cycle).

Usage:
    from bot_logging.logger_manager import setup_module_logger, configure_logging

    configure_logging(loader.get_app_config())
    logger = setup_module_logger('my_logger', 'my_module.log', module_folder='Health_Monitor_Logs')
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from shared.serialization_utils import DecimalEncoder

# Resolve project root
_PROJECT_ROOT = Path(__file__).parent.parent

_configured_log_dir: str | None = None
_MODULE_FOLDERS: dict[str, str] = {
    "strategy": "Strategy_Logs",
    "ledger": "Ledger_Logs",
    "signal_engine": "Signal_Engine_Logs",
    "health_monitor": "Health_Monitor_Logs",
    "position_manager": "Position_Manager_Logs",
    "safety": "Safety_Logs",
    "backtest": "Backtest_Logs",
    "config": "Config_Logs",
    "data_service": "Data_Service_Logs",
    "pnl_tracker": "PnL_Tracker_Logs",
    "main": "Main_Logs",
    "decision_audit": "Decision_Audit_Logs",
}


def configure_logging(app_config: dict[str, Any]) -> None:
    """Apply the ``logging`` section of app.json (log_dir, module_folders)."""
    global _configured_log_dir
    section = app_config.get("logging", {}) if app_config else {}
    log_dir = section.get("log_dir")
    if log_dir:
        _configured_log_dir = str(_PROJECT_ROOT / log_dir)
    _MODULE_FOLDERS.update(section.get("module_folders", {}))


def get_log_dir() -> str:
    """ENGINE_LOG_DIR wins, then app.json, then <project>/logs."""
    env_dir = os.getenv("ENGINE_LOG_DIR")
    if env_dir:
        return env_dir
    return _configured_log_dir or str(_PROJECT_ROOT / "logs")


# ============================================================================
# FORMATTERS
# ============================================================================


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter with trace ID support."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for key in ("trace_id", "action", "cycle_date", "error"):
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Pretty-printed log formatter for console and human-readable files."""

    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self.FORMAT, datefmt=self.DATE_FORMAT)


class RawMessageFormatter(logging.Formatter):
    """Pass-through formatter for pre-formatted messages (audit lines)."""

    def format(self, record: logging.LogRecord) -> str:
        return record.getMessage()


# ============================================================================
# LOGGER FACTORY
# ============================================================================

_logger_cache: dict[str, logging.Logger] = {}


def setup_module_logger(
    name: str,
    log_file: str,
    level: int = logging.INFO,
    module_folder: str | None = None,
    use_json_formatter: bool = False,
    use_raw_formatter: bool = False,
) -> logging.Logger:
    """
    Create a module-specific logger with a file handler.

    Args:
        name: Logger name (should be unique per module/component).
        log_file: Log filename (placed inside module_folder if specified).
        level: Logging level (default INFO).
        module_folder: Subfolder within the log directory (e.g., 'Ledger_Logs').
        use_json_formatter: Use structured JSON format (default False = human-readable).
        use_raw_formatter: Use raw pass-through format (for pre-built JSON lines).

    Returns:
        Configured logging.Logger instance.
    """
    cache_key = f"{name}:{module_folder}:{log_file}"
    if cache_key in _logger_cache:
        return _logger_cache[cache_key]

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        _logger_cache[cache_key] = logger
        return logger

    log_dir = get_log_dir()
    if module_folder:
        log_path = os.path.join(log_dir, module_folder, log_file)
    else:
        log_path = os.path.join(log_dir, log_file)
    os.makedirs(os.path.dirname(log_path), exist_ok=True)

    formatter: logging.Formatter
    if use_raw_formatter:
        formatter = RawMessageFormatter()
    elif use_json_formatter:
        formatter = JSONFormatter()
    else:
        formatter = HumanReadableFormatter()

    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    # Prevent propagation to root logger
    logger.propagate = False

    _logger_cache[cache_key] = logger
    return logger


_audit_logger: logging.Logger | None = None


def get_audit_logger() -> logging.Logger:
    """Get or create the decision-audit logger (lazy singleton)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = setup_module_logger(
            "decision_audit",
            "decision_audit.log",
            module_folder=_MODULE_FOLDERS["decision_audit"],
            use_raw_formatter=True,
        )
    return _audit_logger


# ============================================================================
# STRUCTURED LOGGING HELPERS (decision audit)
# ============================================================================


def log_decision_trace(trace_id: str, decision: Any, metrics: Any) -> None:
    """Write one JSON line describing an evaluation: action, rationale, inputs, trades."""
    logger = get_audit_logger()
    logger.info(
        json.dumps(
            {
                "event": "DECISION",
                "trace_id": trace_id,
                "date": getattr(decision, "date", None),
                "action": decision.action,
                "rationale": decision.rationale,
                "inputs": decision.inputs,
                "trades": list(decision.trades),
                "metrics": metrics,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            cls=DecimalEncoder,
        )
    )
