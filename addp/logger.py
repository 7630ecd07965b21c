"""
Logging Framework for addp

Wraps the standard ``logging`` module with:
- Console and rotating-file output for the ``addp`` package logger
- Configurable log levels and formats (from a ConfigManager)
- Performance tracking
- Operation logging for augmentation state transitions

Usage:
    from addp.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Calculating p-values")

    with logger.track_time("add_p"):
        ...
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
import threading
import time
from collections import deque
from contextlib import contextmanager
from pathlib import Path
from typing import Any, ClassVar, Dict, Optional

from addp.config import ConfigManager

PACKAGE_LOGGER = "addp"


class PerformanceLogger:
    """
    Track and log performance metrics.
    """

    def __init__(self, logger: logging.Logger, enabled: bool = True, history: int = 100):
        self.logger = logger
        self.enabled = enabled
        self.history = history
        self.timings: Dict[str, deque] = {}
        self._lock = threading.Lock()

    @contextmanager
    def track_time(self, operation: str, log_level: str = "DEBUG"):
        """
        Context manager that measures and logs the elapsed time of a named operation.

        When tracking is disabled the context yields without measuring. Otherwise the elapsed time is appended to ``self.timings[operation]``, which keeps the last `history` entries, and logged at the requested level.
        """
        if not self.enabled:
            yield
            return

        start_time = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start_time

            with self._lock:
                self.timings.setdefault(operation, deque(maxlen=self.history)).append(elapsed)

            log_method = getattr(self.logger, log_level.lower(), self.logger.debug)
            log_method(f"{operation} completed in {elapsed:.3f}s")

    def get_timings(self, operation: Optional[str] = None) -> Dict[str, list]:
        """
        Return copies of the recorded timings, optionally only for `operation`.
        """
        with self._lock:
            if operation:
                return {operation: list(self.timings.get(operation, ()))}
            return {name: list(values) for name, values in self.timings.items()}


class LoggerFactory:
    """
    Factory for creating and managing loggers.
    """

    _loggers: ClassVar[Dict[str, 'Logger']] = {}
    _perf_logger: ClassVar[Optional[PerformanceLogger]] = None
    _configured: ClassVar[bool] = False
    _config: ClassVar[Optional[ConfigManager]] = None
    _lock: ClassVar[threading.RLock] = threading.RLock()

    @classmethod
    def configure(cls, config: Optional[ConfigManager] = None, force: bool = False) -> None:
        """
        Configure the ``addp`` package logger from `config` (defaults when omitted).

        Idempotent unless `force` is True. Only the package logger is touched; the root logger and other libraries' handlers are left alone.
        """
        with cls._lock:
            if cls._configured and not force:
                return

            config = config or ConfigManager()
            cls._config = config
            package_logger = logging.getLogger(PACKAGE_LOGGER)

            for handler in list(package_logger.handlers):
                package_logger.removeHandler(handler)
                handler.close()

            if not config.get('logging.enabled'):
                package_logger.addHandler(logging.NullHandler())
                package_logger.propagate = False
                package_logger.setLevel(logging.CRITICAL + 1)
                cls._perf_logger = PerformanceLogger(package_logger, enabled=False)
                cls._configured = True
                return

            log_level = str(config.get('logging.level', 'INFO')).upper()
            numeric_level = getattr(logging, log_level, None)
            if not isinstance(numeric_level, int):
                print(f"[WARNING] Invalid log level '{log_level}', defaulting to INFO", file=sys.stderr)
                numeric_level = logging.INFO
            package_logger.setLevel(numeric_level)
            package_logger.propagate = False

            formatter = logging.Formatter(
                config.get('logging.format'), datefmt=config.get('logging.date_format')
            )

            if config.get('logging.file_enabled'):
                cls._setup_file_logging(package_logger, formatter, config)

            if config.get('logging.console_enabled'):
                cls._setup_console_logging(package_logger, formatter, config)

            cls._perf_logger = PerformanceLogger(
                logging.getLogger(f"{PACKAGE_LOGGER}.performance"),
                enabled=bool(config.get('logging.log_performance')),
                history=int(config.get('performance.timing_history', 100)),
            )
            cls._configured = True

    @staticmethod
    def _setup_file_logging(
        package_logger: logging.Logger, formatter: logging.Formatter, config: ConfigManager
    ) -> None:
        """
        Attach a RotatingFileHandler configured from the 'logging' section.
        """
        try:
            log_dir = Path(config.get('logging.log_dir', 'logs'))
            log_dir.mkdir(exist_ok=True, parents=True)

            handler = logging.handlers.RotatingFileHandler(
                log_dir / config.get('logging.log_file', 'addp.log'),
                maxBytes=config.get('logging.max_log_size', 10485760),
                backupCount=config.get('logging.backup_count', 5),
            )
            handler.setFormatter(formatter)
            package_logger.addHandler(handler)
        except OSError as e:
            print(f"[WARNING] Failed to setup file logging: {e}", file=sys.stderr)

    @staticmethod
    def _setup_console_logging(
        package_logger: logging.Logger, formatter: logging.Formatter, config: ConfigManager
    ) -> None:
        """
        Attach a stderr StreamHandler at 'logging.console_level'.
        """
        console_handler = logging.StreamHandler(sys.stderr)
        console_level = str(config.get('logging.console_level', 'INFO')).upper()
        console_handler.setLevel(getattr(logging, console_level, logging.INFO))
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    @classmethod
    def get_logger(cls, name: str) -> 'Logger':
        """
        Retrieve a cached Logger by name, configuring logging on first use.
        """
        if not cls._configured:
            cls.configure()

        with cls._lock:
            if name not in cls._loggers:
                cls._loggers[name] = Logger(logging.getLogger(name))
            return cls._loggers[name]

    @classmethod
    def get_performance_logger(cls) -> PerformanceLogger:
        """Return the shared PerformanceLogger."""
        if not cls._configured:
            cls.configure()
        return cls._perf_logger

    @classmethod
    def analysis_logging_enabled(cls) -> bool:
        return bool(cls._config and cls._config.get('logging.log_analysis_operations'))


class Logger:
    """
    Wrapper around standard logger with additional features.
    """

    def __init__(self, standard_logger: logging.Logger):
        self._logger = standard_logger

    @property
    def name(self) -> str:
        return self._logger.name

    def debug(self, msg: str, *args, **kwargs) -> None:
        """Log debug message."""
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        """Log an informational message via the wrapped logger."""
        self._logger.info(msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs) -> None:
        self._logger.error(msg, *args, **kwargs)

    def log_operation(self, operation: str, status: str = "started", **details: Any) -> None:
        """
        Log an operation event with optional details.

        Builds a single-line message ``[operation] STATUS | k=v | ...``. Uses ERROR for a "failed" status, INFO when analysis logging is enabled and DEBUG otherwise.
        """
        msg_parts = [f"[{operation}] {status.upper()}" if status else f"[{operation}]"]
        msg_parts.extend(f"{k}={v}" for k, v in details.items())
        msg = " | ".join(msg_parts)

        if status and status.lower() == "failed":
            self.error(msg)
        elif LoggerFactory.analysis_logging_enabled():
            self.info(msg)
        else:
            self.debug(msg)

    @contextmanager
    def track_time(self, operation: str, log_level: str = "DEBUG"):
        """
        Record elapsed time for the named operation and log the duration at `log_level`.
        """
        with LoggerFactory.get_performance_logger().track_time(operation, log_level):
            yield

    def get_timings(self) -> Dict[str, list]:
        return LoggerFactory.get_performance_logger().get_timings()


def get_logger(name: str) -> Logger:
    """
    Obtain a configured logger for the given name, typically ``__name__``.
    """
    return LoggerFactory.get_logger(name)
