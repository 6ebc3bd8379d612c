#!/usr/bin/env python3
"""
Centralized logging setup for the service and its API thread

Modules only ever call logging.getLogger(__name__); handlers are attached
once, by setup_logging, when the service starts.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s"

# Client libraries that log every request at INFO/DEBUG
QUIET_LOGGERS = ("urllib3", "botocore", "boto3", "kubernetes", "uvicorn.access")

RESET = "\033[0m"


class ColoredFormatter(logging.Formatter):
    """Console formatter that tints the level name"""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }

    def format(self, record):
        # Copy so other handlers still see the plain level name
        tinted = logging.makeLogRecord(record.__dict__)
        color = self.LEVEL_COLORS.get(record.levelno)
        if color:
            tinted.levelname = f"{color}{record.levelname}{RESET}"
        return super().format(tinted)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None, enable_colors: bool = True) -> None:
    """
    Replace root handlers with a console handler and an optional file handler

    Args:
        level: Level name; unknown names fall back to INFO
        log_file: Path of a log file, parent directories are created
        enable_colors: Tint level names on the console
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(ColoredFormatter(CONSOLE_FORMAT) if enable_colors else logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        root.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging at {logging.getLevelName(numeric_level)}" + (f", writing to {log_file}" if log_file else "")
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_separator(logger: logging.Logger, title: str, width: int = 60) -> None:
    """Banner marking the start of a tick or interruption"""
    logger.info("=" * width)
    logger.info(title.center(width))
    logger.info("=" * width)


def log_section(logger: logging.Logger, title: str) -> None:
    """Header for a phase inside a tick"""
    logger.info(f"--- {title} ---")
