"""
Logging utilities for Mobile Crash Analyzer.

Provides centralized logging configuration. Diagnostics go to stderr so
that stdout stays clean for rendered reports and JSON output.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Union


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[str] = None,
    max_bytes: int = 5 * 1024 * 1024,  # 5MB
    backup_count: int = 3
) -> logging.Logger:
    """
    Setup centralized logging configuration.

    Args:
        level: Logging level, as a number or a name such as "DEBUG"
        log_file: Optional path of a rotating log file
        max_bytes: Maximum log file size in bytes
        backup_count: Number of backup log files to keep

    Returns:
        The package logger
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger('mobile_crash_analyzer')
    logger.setLevel(level)
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding='utf-8'
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            # Console logging still works
            logger.warning(f"Failed to setup file logging: {e}")

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (usually ``get_logger(__name__)``)."""
    return logging.getLogger(name)
