"""
Configuration Management for addp

Holds the options that used to live in a process-wide theme store: p-value
formatting, default tests per table kind, survival-test behaviour, logging
and performance settings.

There is no global instance. Every entry point accepts ``config=`` and
builds a fresh default ``ConfigManager`` when it is omitted.

Usage:
    from addp.config import ConfigManager, theme_journal

    config = ConfigManager()
    config.get('pvalue.digits')            # 1
    config.update('pvalue.digits', 2)

    jama = theme_journal("jama")           # new manager with JAMA defaults
    add_p(tbl, config=jama)
"""

from __future__ import annotations

import copy
import json
import os
import warnings
from typing import Any, Dict, Optional

from addp.exceptions import ConfigurationError


class ConfigManager:
    """
    Configuration with hierarchical dot-notation key access.

    Supports:
    - Nested dictionary access with dot notation
    - Default values and fallbacks
    - Environment variable overrides (``ADDP_<SECTION>_<KEY>``)
    - Config validation
    - Runtime updates
    """

    def __init__(self, config_dict: Optional[Dict] = None, load_env: bool = True):
        """
        Create a ConfigManager populated with the given configuration or the module defaults.

        Parameters:
            config_dict (dict | None): Optional initial configuration used instead of the built-in defaults. It is deep-copied so the caller's dict is never mutated.
            load_env (bool): Apply ``ADDP_`` environment variable overrides.
        """
        self._config = copy.deepcopy(config_dict) if config_dict else self._get_default_config()
        self._env_prefix = "ADDP_"
        if load_env:
            self._load_env_overrides()

    @staticmethod
    def _get_default_config() -> Dict[str, Any]:
        """
        Provide the default nested configuration.

        Returns:
            Dict[str, Any]: Sections 'pvalue', 'tests', 'survival', 'logging'
            and 'performance' with their default settings.
        """
        return {

            # ========== P-VALUE DISPLAY ==========
            "pvalue": {
                "digits": 1,  # 1, 2 (JAMA) or 3
                "header": "**p-value**",
                "footnote_prefix": "Statistical tests performed",
            },

            # ========== TEST SELECTION ==========
            "tests": {
                # None means the data-driven default rule
                "summary": None,
                "survey": None,
                "cross": None,
                "survival": "logrank",
                "cross_source_note": False,
                "expected_count_min": 5,
                "fisher_simulate_b": 2000,  # Monte Carlo draws for r x c exact tests
                "random_seed": 20210101,
            },

            # ========== SURVIVAL TESTS ==========
            "survival": {
                "quiet": False,
                "ties": "efron",
            },

            # ========== LOGGING SETTINGS ==========
            "logging": {
                "enabled": True,
                "level": "INFO",
                "format": "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
                "date_format": "%Y-%m-%d %H:%M:%S",

                # File Logging
                "file_enabled": False,
                "log_dir": "logs",
                "log_file": "addp.log",
                "max_log_size": 10485760,  # 10MB in bytes
                "backup_count": 5,

                # Console Logging
                "console_enabled": True,
                "console_level": "INFO",

                # What to Log
                "log_analysis_operations": False,  # True logs state transitions at INFO
                "log_performance": True,
            },

            # ========== PERFORMANCE SETTINGS ==========
            "performance": {
                "num_threads": 4,
                "timing_history": 100,  # timings kept per operation
            },
        }

    def _load_env_overrides(self) -> None:
        """
        Apply overrides from environment variables that start with ``ADDP_``.

        ``ADDP_PVALUE_DIGITS=2`` maps to ``pvalue.digits``. The first segment after the prefix is the section; the rest are joined with underscores to form the key. Values are parsed as JSON when possible (so ``2`` becomes an int and ``true`` a bool) and kept as strings otherwise. Overrides for unknown keys are skipped with a warning.
        """
        for key, value in os.environ.items():
            if key.startswith(self._env_prefix):
                parts = key[len(self._env_prefix):].lower().split('_')

                if len(parts) < 2:
                    continue

                section = parts[0]
                key_name = '_'.join(parts[1:])

                try:
                    parsed = json.loads(value)
                except ValueError:
                    parsed = value

                try:
                    self.update(f"{section}.{key_name}", parsed)
                except (KeyError, ValueError, TypeError) as e:
                    warnings.warn(f"Failed to set env override {key}={value}: {e}", stacklevel=2)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Retrieve a configuration value using a dot-separated key path.

        Returns:
            The value at the given path, or `default` if the path is not found.
        """
        keys = key.split('.')
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def update(self, key: str, value: Any) -> None:
        """
        Set an existing configuration value identified by a dot-separated path.

        Raises:
            KeyError: If any path segment or the final key does not exist.
        """
        keys = key.split('.')
        config = self._config

        for k in keys[:-1]:
            if not isinstance(config, dict) or k not in config:
                raise KeyError(f"Config path '{'.'.join(keys[:-1])}' does not exist")
            config = config[k]

        final_key = keys[-1]
        if final_key not in config:
            raise KeyError(f"Config key '{key}' does not exist")

        config[final_key] = value

    def get_section(self, section: str) -> Dict[str, Any]:
        """Return a deep copy of a top-level configuration section."""
        result = self.get(section, {})
        return copy.deepcopy(result) if isinstance(result, dict) else result

    def to_dict(self) -> Dict[str, Any]:
        """Get a deep copy of the entire configuration dictionary."""
        return copy.deepcopy(self._config)

    def copy(self) -> "ConfigManager":
        """Return an independent manager with the same settings."""
        return ConfigManager(self._config, load_env=False)

    def validate(self) -> tuple[bool, list[str]]:
        """
        Validate key configuration constraints and collect any violations.

        Checks:
        - `pvalue.digits` is one of 1, 2, 3.
        - `tests.expected_count_min` is positive.
        - `logging.level` is a standard level name.
        - `performance.num_threads` is a positive integer.

        Returns:
            tuple: (is_valid, errors).
        """
        errors = []

        if self.get('pvalue.digits') not in (1, 2, 3):
            errors.append("pvalue.digits must be one of 1, 2, 3")

        min_expected = self.get('tests.expected_count_min')
        if min_expected is None or min_expected <= 0:
            errors.append("tests.expected_count_min must be > 0")

        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if str(self.get('logging.level')).upper() not in valid_levels:
            errors.append(f"logging.level must be one of {valid_levels}")

        threads = self.get('performance.num_threads')
        if not isinstance(threads, int) or isinstance(threads, bool) or threads < 1:
            errors.append("performance.num_threads must be a positive integer")

        return len(errors) == 0, errors

    def __repr__(self) -> str:
        return f"ConfigManager({len(self._config)} sections)"


def theme_journal(journal: str = "jama", base: Optional[ConfigManager] = None) -> ConfigManager:
    """
    Return a new ConfigManager following a journal's reporting guidelines.

    Parameters:
        journal (str): Currently only ``"jama"`` (large p-values rounded to two decimal places).
        base (ConfigManager | None): Settings to start from; defaults are used when omitted.

    Raises:
        ValueError: If the journal is not supported.
    """
    journal = journal.lower()
    if journal != "jama":
        raise ValueError(f"Unsupported journal theme '{journal}'; use 'jama'")

    config = base.copy() if base is not None else ConfigManager()
    config.update("pvalue.digits", 2)
    return config


def resolve_config(config: Optional[ConfigManager]) -> ConfigManager:
    """
    Return `config`, or a default manager when it is None.

    Raises:
        ConfigurationError: If the settings fail `ConfigManager.validate`.
    """
    if config is None:
        config = ConfigManager()
    if not isinstance(config, ConfigManager):
        raise TypeError(f"config must be a ConfigManager, got {type(config).__name__}")

    valid, errors = config.validate()
    if not valid:
        raise ConfigurationError("; ".join(errors), argument="config")
    return config
