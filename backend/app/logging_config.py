"""Logging configuration for the promoter payout ledger."""
import logging
import sys
from typing import Optional

# Third-party loggers that are noisy at INFO during every payout cycle.
QUIET_LOGGERS = ("sqlalchemy", "apscheduler", "httpx", "stripe")


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure logging for the API and the payout scheduler.

    Args:
        level: Level name from LOG_LEVEL (DEBUG, INFO, WARNING, ...).
               Unknown or missing values fall back to INFO.
    """
    log_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(log_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
