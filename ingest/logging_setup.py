import logging
import os
import sys
from typing import Optional

LOGGER_NAME = "media-ingest"

# Request-level chatter from the HTTP and browser clients during a crawl
_QUIET_LOGGERS = ("urllib3", "asyncio")


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Send pipeline logs to stdout. ``LOG_LEVEL`` applies when no level is given.

    Lines carry the thread name so runs streamed from the admin API can be
    told apart from each other.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel((level or os.getenv("LOG_LEVEL", "INFO")).upper())

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # uvicorn --reload and repeated CLI calls in one process land here again
    if not any(getattr(h, "stream", None) is sys.stdout for h in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)s %(name)s [%(threadName)s]: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(handler)
    return logger
