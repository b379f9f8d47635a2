"""Unified logging configuration for the blueprint backend."""
from __future__ import annotations

import logging

from config import LOG_DIR, LOG_TO_FILE

# Prevent duplicate handlers
_configured_loggers: set[str] = set()


def setup_logger(name: str, filename: str) -> logging.Logger:
    """Setup a logger with file and console handlers.

    Args:
        name: Logger name (e.g., 'api', 'pipeline')
        filename: Log file name (e.g., 'api.log')

    Returns:
        Configured logger instance
    """
    if name in _configured_loggers:
        return logging.getLogger(name)

    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.propagate = False  # Prevent duplicate logs

    if LOG_TO_FILE:
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


def get_api_logger() -> logging.Logger:
    """Logger for API requests."""
    return setup_logger("api", "api.log")


def get_pipeline_logger() -> logging.Logger:
    """Logger for extraction, tree building and verification stages."""
    return setup_logger("pipeline", "pipeline.log")
