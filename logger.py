#!/usr/bin/env python3
"""
Logging utilities for TV Library Updater
Provides colored console logging, file logging and per-task correlation ids.
"""

import logging
from pathlib import Path
from typing import Optional


LOGGER_NAME = 'TVLibrary'


# ANSI color codes for terminal output
class Colors:
    RESET = '\033[0m'
    BOLD = '\033[1m'
    RED = '\033[91m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'


class ColoredFormatter(logging.Formatter):
    """Custom formatter that adds colors to log levels"""
    COLORS = {
        'DEBUG': Colors.BLUE,
        'INFO': Colors.GREEN,
        'WARNING': Colors.YELLOW,
        'ERROR': Colors.RED,
        'CRITICAL': Colors.RED + Colors.BOLD
    }

    def format(self, record):
        # Work on a copy so the file handler still sees the plain level name
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, Colors.RESET)
        record.levelname = f"{color}{record.levelname}{Colors.RESET}"
        return super().format(record)


class TaskLoggerAdapter(logging.LoggerAdapter):
    """Prefixes messages with the task id and, inside a worker, the show"""

    def process(self, msg, kwargs):
        task_id = self.extra.get('task_id', '-')
        show = self.extra.get('show')
        prefix = f"[{task_id}/{show}]" if show else f"[{task_id}]"
        return f"{prefix} {msg}", kwargs


def get_task_logger(logger: logging.Logger, task_id: str, show: Optional[str] = None) -> TaskLoggerAdapter:
    """
    Logger carrying a correlation id

    Args:
        logger: Underlying logger (or adapter, whose logger is reused)
        task_id: Id of the running update task
        show: Show folder name when logging from a per-show worker
    """
    if isinstance(logger, logging.LoggerAdapter):
        logger = logger.logger
    return TaskLoggerAdapter(logger, {'task_id': task_id, 'show': show})


def setup_logging(log_file: Optional[Path] = None, verbose: bool = False) -> logging.Logger:
    """
    Setup colored logging with file handler

    Args:
        log_file: Path to the log file (None for console only)
        verbose: If True, enable DEBUG level logging

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Clear existing handlers
    logger.handlers.clear()

    # Console handler with colored output
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(ColoredFormatter('%(levelname)s: %(message)s'))
    logger.addHandler(console_handler)

    if log_file is not None:
        # File handler with detailed formatting (no ANSI colors)
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(file_handler)
        logger.setLevel(logging.DEBUG)

    return logger
