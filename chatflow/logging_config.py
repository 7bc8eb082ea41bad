"""Unified logging configuration for the conversation runtime."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .config import LOG_DIR as _LOG_DIR_ENV

# Log directory, defaults to ./logs next to the package
LOG_DIR = Path(_LOG_DIR_ENV or str(Path(__file__).parent.parent / "logs"))

# Prevent duplicate handlers
_configured_loggers: set[str] = set()


def setup_logger(name: str, filename: Optional[str] = None) -> logging.Logger:
    """Setup a logger with console and (optionally) file handlers.

    Args:
        name: Logger name (e.g., 'chatflow.runtime')
        filename: Log file name under LOG_DIR (e.g., 'runtime.log'); console only if None

    Returns:
        Configured logger instance
    """
    if name in _configured_loggers:
        return logging.getLogger(name)

    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.propagate = False  # Prevent duplicate logs

    if filename:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(LOG_DIR / filename, encoding="utf-8")
        fh.setLevel(logging.INFO)
        fh.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] [%(levelname)s] %(message)s"
        ))
        logger.addHandler(fh)

    sh = logging.StreamHandler()
    sh.setLevel(logging.INFO)
    sh.setFormatter(logging.Formatter(
        "%(asctime)s [%(name)s] %(message)s"
    ))
    logger.addHandler(sh)

    _configured_loggers.add(name)
    return logger


# Pre-configured loggers
def get_runtime_logger(to_file: bool = True) -> logging.Logger:
    """Logger for executor events (node start/complete/errors)."""
    return setup_logger("chatflow.runtime", "runtime.log" if to_file else None)
