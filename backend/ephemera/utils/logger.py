# ephemera/utils/logger.py

import logging
import os
import sys

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(threadName)s] %(name)s: %(message)s"


def setup_logger(level: str = LOG_LEVEL) -> logging.Logger:
    """Attach a stream handler to the ephemera logger (once)"""
    logger = logging.getLogger("ephemera")
    logger.setLevel(level)

    if not any(getattr(h, "_ephemera", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._ephemera = True
        logger.addHandler(handler)

    return logger
