"""
Logging configuration for LeaseKeeper.

Console logging for interactive use, plus optional rotating file logs for
servers embedding the lease engine.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = "leasekeeper"


class StructuredFormatter(logging.Formatter):
    """Pipe-separated formatter for easier log parsing."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, 'function_name'):
            record.function_name = record.funcName
        return super().format(record)


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    log_dir: str | None = None,
    max_bytes: int = 10485760,  # 10MB
    backup_count: int = 5,
    enable_console: bool = True,
    enable_file: bool = False,
) -> logging.Logger:
    """
    Set up logging for LeaseKeeper.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Custom log file path (overrides log_dir)
        log_dir: Directory for log files (defaults to ~/.leasekeeper/logs)
        max_bytes: Maximum log file size before rotation
        backup_count: Number of backup log files to keep
        enable_console: Enable console logging
        enable_file: Enable file logging

    Returns:
        Configured package logger
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Unknown log level: {level}")

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(logging.Formatter(
            fmt='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(console_handler)

    if enable_file:
        if log_file:
            log_path = Path(log_file)
        elif log_dir:
            log_path = Path(log_dir) / "leasekeeper.log"
        else:
            log_path = Path.home() / ".leasekeeper" / "logs" / "leasekeeper.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(StructuredFormatter(
            fmt='%(asctime)s | %(levelname)-8s | %(name)-28s | %(function_name)-28s | '
                '%(lineno)-4d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a module, e.g. 'leasekeeper.dhcp.repository'."""
    return logging.getLogger(name)


def configure_logging(debug: bool = False, log_file: str | None = None, level: str = "INFO") -> None:
    """
    Quick logging configuration for the command line.

    Args:
        debug: Enable debug logging, overriding level
        log_file: Also write logs to this file
        level: Level used when debug is off
    """
    setup_logging(
        level="DEBUG" if debug else level,
        log_file=log_file,
        enable_console=True,
        enable_file=log_file is not None,
    )
