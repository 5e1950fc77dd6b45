import logging
import os
import sys
from typing import Optional


def setup_logger(level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger("logiaudit")
    if level:
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if logger.handlers:
        return logger
    if not level:
        level = os.environ.get("LOG_LEVEL", "INFO")
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(message)s",
        datefmt="%H:%M:%S",
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return logger
