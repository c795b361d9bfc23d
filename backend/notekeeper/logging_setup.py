"""
NoteKeeper Backend — Logging Configuration
============================================

What:  One logging setup shared by the API process and the queue worker.
How:   Root logger to stdout, level from settings.log_level, every record
       stamped with the current request ID (or "-").

Format: %(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s
"""

import logging
import sys

from notekeeper.config import Settings
from notekeeper.middleware.request_id import RequestIDLogFilter

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(request_id)s]: %(message)s"

# These log every operation at INFO/DEBUG
NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "httpcore", "httpx")


def setup_logging(settings: Settings) -> None:
    """Configure the root logger. Safe to call more than once."""
    handler = logging.StreamHandler(sys.stdout)  # Docker captures stdout
    handler.addFilter(RequestIDLogFilter())

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[handler],
        force=True,  # Override any existing logging config
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
