"""
Logging Framework for publication tables

This module provides the logging infrastructure used by the table builders:
- Console and rotating file output targets
- Configurable log levels and formats
- Performance tracking
- Operation and table summaries

Usage:
    from logger import get_logger

    logger = get_logger(__name__)
    logger.info("Building regression table")

    # Performance tracking
    with logger.track_time("regression_table"):
        table = regression_table(fit)
"""

import logging
import logging.handlers
import sys
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import ClassVar, Dict, Optional

from config import CONFIG

PACKAGE_LOGGER = "pubtable"


class PerformanceLogger:
    """
    Track and log performance metrics.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.timings: Dict[str, list] = {}
        self._lock = threading.Lock()

    @contextmanager
    def track_time(self, operation: str, log_level: str = "DEBUG"):
        """
        Context manager that measures and logs the elapsed time of a named operation.

        Does nothing when CONFIG['logging.log_performance'] is falsy. Otherwise the
        elapsed time is appended to self.timings[operation] and logged at `log_level`.
        """
        if not CONFIG.get('logging.log_performance'):
            yield
            return

        start_time = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start_time

            with self._lock:
                self.timings.setdefault(operation, []).append(elapsed)

            log_method = getattr(self.logger, log_level.lower(), self.logger.debug)
            log_method(f"{operation} completed in {elapsed:.3f}s")

    def get_timings(self, operation: Optional[str] = None) -> Dict[str, list]:
        """
        Return recorded timings, optionally restricted to one operation.
        """
        if operation:
            return {operation: self.timings.get(operation, [])}
        return self.timings


class LoggerFactory:
    """
    Factory for creating and managing loggers.
    """

    _loggers: ClassVar[Dict[str, 'Logger']] = {}
    _perf_logger: Optional[PerformanceLogger] = None
    _configured = False
    _lock: ClassVar[threading.Lock] = threading.Lock()

    @classmethod
    def configure(cls) -> None:
        """
        Perform one-time configuration of the package logger using values from CONFIG.

        Handlers are attached to the 'pubtable' logger rather than the root
        logger so that applications embedding the package keep their own
        logging setup. The method is idempotent. On error it prints a warning
        to stderr and marks configuration as complete to avoid repeated attempts.
        """
        if cls._configured:
            return

        try:
            package_logger = logging.getLogger(PACKAGE_LOGGER)

            if not CONFIG.get('logging.enabled'):
                package_logger.disabled = True
                cls._configured = True
                return

            log_level = CONFIG.get('logging.level', 'INFO')
            formatter = logging.Formatter(
                CONFIG.get('logging.format'), datefmt=CONFIG.get('logging.date_format')
            )

            numeric_level = getattr(logging, str(log_level).upper(), None)
            if not isinstance(numeric_level, int):
                print(f"[WARNING] Invalid log level '{log_level}', defaulting to INFO", file=sys.stderr)
                numeric_level = logging.INFO
            package_logger.setLevel(numeric_level)

            if package_logger.handlers:
                package_logger.handlers.clear()

            if CONFIG.get('logging.file_enabled'):
                cls._setup_file_logging(package_logger, formatter)

            if CONFIG.get('logging.console_enabled'):
                cls._setup_console_logging(package_logger, formatter)

            cls._configured = True

        except (OSError, ValueError, TypeError) as e:
            print(f"[WARNING] Logging configuration failed: {e}", file=sys.stderr)
            cls._configured = True

    @classmethod
    def _setup_file_logging(cls, target: logging.Logger, formatter: logging.Formatter) -> None:
        """
        Attach a RotatingFileHandler configured from CONFIG['logging.*'] to `target`.

        Creates the log directory if missing. Setup errors are reported on
        stderr and do not raise.
        """
        try:
            log_dir = Path(CONFIG.get('logging.log_dir', 'logs'))
            log_dir.mkdir(exist_ok=True, parents=True)

            handler = logging.handlers.RotatingFileHandler(
                log_dir / CONFIG.get('logging.log_file', 'pubtable.log'),
                maxBytes=CONFIG.get('logging.max_log_size', 10485760),
                backupCount=CONFIG.get('logging.backup_count', 5),
            )
            handler.setFormatter(formatter)
            target.addHandler(handler)

        except OSError as e:
            print(f"[WARNING] Failed to setup file logging: {e}", file=sys.stderr)

    @classmethod
    def _setup_console_logging(cls, target: logging.Logger, formatter: logging.Formatter) -> None:
        """
        Attach a stderr StreamHandler at CONFIG['logging.console_level'] to `target`.

        Standard output is reserved for printed tables.
        """
        console_handler = logging.StreamHandler(sys.stderr)
        console_level = CONFIG.get('logging.console_level', 'WARNING')
        console_handler.setLevel(getattr(logging, str(console_level).upper(), logging.WARNING))
        console_handler.setFormatter(formatter)
        target.addHandler(console_handler)

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
        """
        Return the shared PerformanceLogger, creating it on first access.
        """
        if cls._perf_logger is None:
            cls._perf_logger = PerformanceLogger(logging.getLogger(f"{PACKAGE_LOGGER}.performance"))
        return cls._perf_logger


class Logger:
    """
    Wrapper around standard logger with additional features.
    """

    def __init__(self, standard_logger: logging.Logger):
        self._logger = standard_logger
        self._perf_logger = LoggerFactory.get_performance_logger()

    def debug(self, msg: str, *args, **kwargs) -> None:
        """Log debug message."""
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        """Log info message."""
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        """Log warning message."""
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs) -> None:
        """Log error message."""
        self._logger.error(msg, *args, **kwargs)

    def log_operation(self, operation: str, status: str = "started", **details) -> None:
        """
        Log an operation event with optional details.

        The message reads "[operation] STATUS k=v | k=v". A "failed" status is
        logged at ERROR level, everything else at INFO. Suppressed when
        CONFIG['logging.log_table_operations'] is falsy, except for failures.
        """
        failed = status.lower() == "failed"
        if not failed and not CONFIG.get('logging.log_table_operations'):
            return

        msg_parts = [f"[{operation}]"]
        if status:
            msg_parts.append(status.upper())
        if details:
            msg_parts.append(" | ".join(f"{k}={v}" for k, v in details.items()))

        msg = " ".join(msg_parts)
        if failed:
            self.error(msg)
        else:
            self.info(msg)

    def log_table(self, table_type: str, n_rows: int, n_terms: int, **details) -> None:
        """
        Log a one-line summary of a finished table.

        Parameters:
            table_type (str): e.g. "Logistic regression" or "univariate".
            n_rows (int): Number of rows in the structured table.
            n_terms (int): Number of variables or model terms it covers.
        """
        if CONFIG.get('logging.log_table_operations'):
            extra = "".join(f", {k}={v}" for k, v in details.items())
            self.info(f"{table_type}: rows={n_rows}, terms={n_terms}{extra}")

    @contextmanager
    def track_time(self, operation: str, log_level: str = "DEBUG"):
        """Record and log the elapsed time of the wrapped block."""
        with self._perf_logger.track_time(operation, log_level):
            yield

    def get_timings(self) -> Dict[str, list]:
        return self._perf_logger.get_timings()


def get_logger(name: str) -> Logger:
    """
    Obtain a configured logger for the given name (typically `__name__`).
    """
    return LoggerFactory.get_logger(name)
