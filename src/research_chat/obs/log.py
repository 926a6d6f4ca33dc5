"""Structured JSON logging setup."""

from __future__ import annotations

import logging
import sys

from pythonjsonlogger import json as jsonlogger

LOGGER_NAME = "research_chat"


def setup_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach a JSON console handler to the package logger.

    Calling this more than once replaces the handler instead of stacking
    duplicates, so application reloads do not double every record.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    logger.handlers = []

    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    return logger
