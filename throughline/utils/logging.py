"""Logging for analysis runs.

Every module logs through a named logger:

    from throughline.utils.logging import get_logger
    logger = get_logger(__name__)

Records go to stdout; app.py also tees the whole run into a log file so a
long lineage trace can be audited next to its decision tree. HTTP and SDK
libraries log every request at INFO, which buries the lineage decisions, so
they are held at WARNING.
"""
import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

QUIET_LOGGERS = ("httpx", "httpcore", "google_genai")

_configured = False


def _formatter() -> logging.Formatter:
    return logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once per process.

    Args:
        level: DEBUG/INFO/WARNING/ERROR; defaults to settings.log_level
    """
    global _configured
    if _configured:
        return

    if level is None:
        try:
            from throughline.utils.config import settings
            level = settings.log_level
        except (ImportError, ValueError):
            # an invalid .env must not stop the error itself from being logged
            level = "INFO"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(_formatter())
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True


def add_file_handler(log_file: str, level: int = logging.DEBUG) -> logging.Handler:
    """Copy the run log into log_file (UTF-8, paper titles are not ASCII)."""
    setup_logging()
    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(_formatter())
    logging.getLogger().addHandler(handler)
    return handler


def get_logger(name: str) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)


setup_logging()
