# coldfleet/log.py
# ------------------------------------------------------------
# loguru setup shared by the app entrypoint and scripts.
# ------------------------------------------------------------

import sys

from loguru import logger


def configure_logging(level: str = "INFO") -> None:
    """
    Replace loguru's default stderr handler with a stdout sink
    at the configured level.
    """
    logger.remove()
    logger.add(sys.stdout, level=level.upper())
