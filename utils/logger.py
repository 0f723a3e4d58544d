"""
Shared application logger.

Every module logs through the same named logger:

    from utils.logger import logger
    logger.info("Loaded subscription for user-123")
"""

import logging
import sys

from config import settings

LOGGER_NAME = "pocket_protector"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def setup_logger(name: str = LOGGER_NAME, level: str = None) -> logging.Logger:
    """Configure and return the application logger (idempotent)"""
    log = logging.getLogger(name)

    if not log.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log.addHandler(handler)

    log.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    return log


logger = setup_logger()
