from __future__ import annotations

import logging

from pythonjsonlogger.json import JsonFormatter

LOGGER_NAME = "shop"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single JSON stream handler to the ``shop`` logger tree.

    Safe to call more than once (app factory in tests); the handler is
    only added the first time.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        h = logging.StreamHandler()
        h.setFormatter(JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        logger.addHandler(h)
    logger.setLevel(level.upper())
    return logger


def get_logger(area: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_NAME}.{area}")
