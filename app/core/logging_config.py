"""
Logging setup for the bulk import console and services.

Modules log through ``logging.getLogger(__name__)``. ``configure_logging``
installs one stderr handler on the root logger and tunes the noisy
third-party loggers the import pipeline pulls in.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Optional

from app.core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(threadName)s | %(name)s | %(message)s"

# Third-party loggers that are only useful when debugging the pipeline itself
QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "openpyxl")

_configured_level: Optional[str] = None


def configure_logging(level: Optional[str] = None, force: bool = False) -> None:
    """
    Configure the root logger once per process.

    Args:
        level: Log level name; defaults to ``settings.log_level``.
        force: Re-apply even if logging was already configured, e.g. when the
            console switches to ``--verbose``.
    """
    global _configured_level

    if _configured_level is not None and not force:
        return

    log_level = (level or settings.log_level or "INFO").upper()
    third_party_level = "DEBUG" if log_level == "DEBUG" else "WARNING"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "pipeline": {"format": LOG_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
            },
            "handlers": {
                "stderr": {
                    "class": "logging.StreamHandler",
                    "formatter": "pipeline",
                    "stream": "ext://sys.stderr",
                },
            },
            "loggers": {
                "app": {"level": log_level},
                **{name: {"level": third_party_level} for name in QUIET_LOGGERS},
            },
            "root": {"handlers": ["stderr"], "level": log_level},
        }
    )

    _configured_level = log_level
    logging.getLogger(__name__).debug("Logging configured at %s", log_level)
