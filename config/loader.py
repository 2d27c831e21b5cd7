"""
Configuration loader for the pledge leverage engine.

Provides configuration management for the JSON files in config/ with .env
overrides. Raw files are read once and cached; the typed StrategyConfig /
LedgerConfig / BacktestConfig objects are validated before they are handed
out, and a failed reload keeps serving the last configuration that passed.

Usage:
    from config.loader import ConfigLoader

    loader = ConfigLoader()
    strategy = loader.get_strategy_config()
    ledger_cfg = loader.get_ledger_config()
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from bot_logging.logger_manager import setup_module_logger
from config.schema import BacktestConfig, LedgerConfig, StrategyConfig
from config.validate import (
    ConfigValidationError,
    parse_backtest_config,
    parse_ledger_config,
    parse_strategy_config,
    validate_all_configs,
)

load_dotenv()

# Resolve config directory relative to this file
_CONFIG_DIR = Path(__file__).parent
_PROJECT_ROOT = _CONFIG_DIR.parent


def _load_json(filepath: Path) -> Dict[str, Any]:
    """Load a JSON config file. Returns empty dict if file doesn't exist."""
    try:
        with open(filepath, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"[CONFIG_WARN] Config file not found: {filepath}")
        return {}
    except json.JSONDecodeError as e:
        print(f"[CONFIG_ERROR] Invalid JSON in {filepath}: {e}")
        return {}


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """Get environment variable with type conversion and fallback."""
    value = os.getenv(var_name, None)
    if value is None:
        return default_value
    try:
        if var_type == bool:
            return value.lower() in ("true", "1", "yes")
        return var_type(value)
    except (ValueError, TypeError):
        return default_value


class ConfigLoader:
    """
    Configuration manager for one engine instance.

    Each caller owns its loader; there is no process-wide instance, so two
    engines with different config directories can run side by side.
    """

    def __init__(self, config_dir: Optional[Path] = None):
        self._config_dir = Path(config_dir) if config_dir else _CONFIG_DIR
        self._project_root = _PROJECT_ROOT
        self._strategy: Optional[StrategyConfig] = None
        self._ledger: Optional[LedgerConfig] = None
        self._backtest: Optional[BacktestConfig] = None
        self._logger = setup_module_logger("config", "config.log", module_folder="Config_Logs")

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    def _resolve(self, env_var: str, default_name: str) -> Path:
        """File named by ``env_var`` (absolute, or relative to the config dir)."""
        path = Path(get_env_var(env_var, default_name, str))
        return path if path.is_absolute() else self._config_dir / path

    # ------------------------------------------------------------------
    # Raw config file loaders (cached)
    # ------------------------------------------------------------------

    @lru_cache(maxsize=1)
    def get_raw_strategy(self) -> Dict[str, Any]:
        """Load strategy.json (thresholds, scoring rules, allocation table)."""
        return _load_json(self._resolve("STRATEGY_CONFIG_FILE", "strategy.json"))

    @lru_cache(maxsize=1)
    def get_raw_ledger(self) -> Dict[str, Any]:
        """Load ledger.json (interest, fees, tax, broker margin floor)."""
        return _load_json(self._resolve("LEDGER_CONFIG_FILE", "ledger.json"))

    @lru_cache(maxsize=1)
    def get_raw_backtest(self) -> Dict[str, Any]:
        """Load backtest.json (contributions, checkpoints, synthetic series)."""
        return _load_json(self._resolve("BACKTEST_CONFIG_FILE", "backtest.json"))

    @lru_cache(maxsize=1)
    def get_app_config(self) -> Dict[str, Any]:
        """Load general application settings."""
        return _load_json(self._config_dir / "app.json")

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    def get_strategy_config(self) -> StrategyConfig:
        if self._strategy is None:
            self._strategy = parse_strategy_config(self.get_raw_strategy())
            self._logger.info("Strategy config loaded: version=%s", self._strategy.version)
        return self._strategy

    def get_ledger_config(self) -> LedgerConfig:
        if self._ledger is None:
            self._ledger = parse_ledger_config(self.get_raw_ledger())
        return self._ledger

    def get_backtest_config(self) -> BacktestConfig:
        if self._backtest is None:
            self._backtest = parse_backtest_config(self.get_raw_backtest())
        return self._backtest

    def validate(self) -> None:
        """Validate every config file, cross-file relations included."""
        validate_all_configs(self)

    def reload(self) -> bool:
        """
        Re-read and re-validate all config files.

        Returns True when the new files were accepted. On a validation
        failure the previously loaded configuration stays in effect and
        False is returned; with nothing loaded before, the error propagates.
        """
        self.clear_cache()
        try:
            validate_all_configs(self)
            strategy = parse_strategy_config(self.get_raw_strategy())
            ledger = parse_ledger_config(self.get_raw_ledger())
            backtest = parse_backtest_config(self.get_raw_backtest())
        except ConfigValidationError as exc:
            if self._strategy is None or self._ledger is None:
                raise
            self._logger.error(
                "Config reload rejected, keeping strategy version %s: %s",
                self._strategy.version,
                exc,
            )
            return False

        self._strategy, self._ledger, self._backtest = strategy, ledger, backtest
        self._logger.info("Config reloaded: strategy version=%s", strategy.version)
        return True

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        """Clear the raw file caches (parsed configs are kept until reload)."""
        for method_name in ("get_raw_strategy", "get_raw_ledger", "get_raw_backtest", "get_app_config"):
            getattr(self, method_name).cache_clear()
