# coderoom/core/logging.py

import logging
import os
import sys


DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Third-party loggers that would otherwise log every engine call and every
# Redis round trip made while fanning out room events
NOISY_LOGGERS = ("httpx", "httpcore", "redis")


def setup_logging() -> None:
    """
    Configure logging for the broker process.

    What ends up where:
        INFO   connection open/close, room create/join/leave/destroy,
               executions started, bus selection at startup
        DEBUG  per-broadcast routing ("codeUpdate to room abc: 2 clients")
               and events dropped because the sender is not a member
        WARNING/ERROR  missed heartbeats, send failures, engine errors

    LOG_LEVEL picks the root level (default INFO). Set it to DEBUG to trace
    how a single edit travels through a room.
    """
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, log_level_name, logging.INFO)

    # Uvicorn may have installed its handlers already
    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.setLevel(level)
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))

    root_logger.setLevel(level)
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # One access line per WebSocket upgrade is enough
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> logging.Logger:
    """
    Logger for a coderoom module.

    Usage:
        from coderoom.core.logging import get_logger

        logger = get_logger(__name__)
        logger.info("→ %s joined '%s'", name, room_id)
    """
    return logging.getLogger(name)
