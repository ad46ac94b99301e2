#!/usr/bin/env python3
"""
Shared logger setup helpers for the idle scaler.
"""

import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _level(level_name: str) -> int:
    level = logging.getLevelName(level_name.upper())
    return level if isinstance(level, int) else logging.INFO


def add_file_handler(logger: logging.Logger, log_file: str, level: int) -> bool:
    """Append-mode file handler; console logging stays if the file cannot be opened."""
    try:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a")
    except OSError as e:
        logger.warning(f"Could not open log file {log_file}: {e}")
        return False
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(file_handler)
    return True


def get_app_logger(
    name: str,
    level: int = logging.INFO,
    log_file: Optional[str] = None,
) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(level)
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        add_file_handler(logger, log_file, level)

    return logger


def configure_logging(level_name: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Attach handlers to the root logger so every module logger reports through them."""
    return get_app_logger("", level=_level(level_name), log_file=log_file)


def apply_logging_config(level_name: str, log_file: Optional[str] = None):
    """Re-level the root logger after config load and add the configured log file."""
    root = logging.getLogger()
    level = _level(level_name)
    root.setLevel(level)
    for handler in root.handlers:
        handler.setLevel(level)
    if log_file:
        already = any(
            isinstance(h, logging.FileHandler) and h.baseFilename == os.path.abspath(log_file)
            for h in root.handlers
        )
        if not already:
            add_file_handler(root, log_file, level)
