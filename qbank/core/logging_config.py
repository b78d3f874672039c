"""
Logging setup shared by the API process and the import workers.

Every module logs through ``logging.getLogger(__name__)``; this module only
installs the console handler once and pins the level of the ``qbank``
namespace so background import threads emit the same lines as request
handlers.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty third-party loggers that drown out import progress lines.
_NOISY_LOGGERS = ("sqlalchemy.engine", "uvicorn.access", "multipart")

_is_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """
    Install the console handler if it is not installed yet.

    Args:
        level: Optional log level override (e.g., "DEBUG", "INFO").
    """
    global _is_configured

    if _is_configured:
        return

    log_level = (level or "INFO").upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {"format": LOG_FORMAT, "datefmt": LOG_DATE_FORMAT},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": log_level,
                }
            },
            "loggers": {
                "qbank": {"level": log_level, "propagate": True},
            },
            "root": {"handlers": ["console"], "level": log_level},
        }
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _is_configured = True
