"""Logging for the telemetry ingestion service.

Everything goes to stdout through one formatter: request handling (uvicorn),
reconciliation decisions (``ingestion``, per-entity insert/update/skip at
DEBUG) and SQL statements (``sqlalchemy.engine``). ``LOG_LEVEL`` sets the
service-wide level; ``INGEST_LOG_LEVEL`` and ``SQL_LOG_LEVEL`` tune the
reconciliation trace and statement logging independently.
"""

from __future__ import annotations

import logging.config
import os
from typing import Optional


_CONFIGURED = False

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

UVICORN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _routed(level_name: str) -> dict:
    return {"level": level_name, "handlers": ["stdout"], "propagate": False}


def build_logging_config(level_name: str) -> dict:
    """Return the ``dictConfig`` mapping for the given service-wide level."""
    loggers = {name: _routed(level_name) for name in UVICORN_LOGGERS}
    loggers["ingestion"] = _routed(os.getenv("INGEST_LOG_LEVEL", level_name).upper())
    loggers["sqlalchemy.engine"] = _routed(os.getenv("SQL_LOG_LEVEL", "WARNING").upper())

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"standard": {"format": LOG_FORMAT, "datefmt": LOG_DATE_FORMAT}},
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "stream": "ext://sys.stdout",
            }
        },
        "root": {"level": level_name, "handlers": ["stdout"]},
        "loggers": loggers,
    }


def configure_logging(default_level: Optional[str] = None) -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return

    level_name = (default_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.config.dictConfig(build_logging_config(level_name))

    _CONFIGURED = True
