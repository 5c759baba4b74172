"""
Structured JSON logging configuration for optlock.

All log records under the ``optlock`` namespace are emitted as single-line
JSON objects to stderr and, when ``OPTLOCK_LOG_FILE`` is set, to that file.

Usage::

    from optlock.utils.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("version conflict", extra={"table": "users", "version": 4})

For code working on one table::

    from optlock.utils.logging_config import get_logger, TableAdapter

    logger = TableAdapter(get_logger("optlock.db"), table="users")
    logger.debug("update executed", extra={"rows_affected": 1})
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, MutableMapping, Optional

from optlock.config import get_settings


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

class JSONFormatter(logging.Formatter):
    """Emits each record as a single-line JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in ("table", "operation", "rows_affected", "version",
                    "duration_ms", "sql"):
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


# ---------------------------------------------------------------------------
# TableAdapter: attaches the table name to every log call
# ---------------------------------------------------------------------------

class TableAdapter(logging.LoggerAdapter):
    """Logger adapter that injects ``table`` into every record."""

    def __init__(self, logger: logging.Logger, table: str):
        super().__init__(logger, {"table": table})

    def process(
        self,
        msg: str,
        kwargs: MutableMapping[str, Any],
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = kwargs.setdefault("extra", {})
        extra.update(self.extra)
        return msg, kwargs


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_CONFIGURED = False


def setup_logging(log_file: Optional[str] = None, level: Optional[str] = None) -> None:
    """Configure the ``optlock`` logger with JSON handlers.

    Only the first call has effect.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return
    _CONFIGURED = True

    settings = get_settings()
    root = logging.getLogger("optlock")
    root.setLevel((level or settings.log_level).upper())
    root.propagate = False

    formatter = JSONFormatter()

    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(formatter)
    sh.setLevel(logging.WARNING)
    root.addHandler(sh)

    log_file = log_file or settings.log_file
    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(formatter)
        root.addHandler(fh)


def get_logger(name: str = "optlock") -> logging.Logger:
    """Return a child logger under the ``optlock`` namespace.

    Automatically calls :func:`setup_logging` on first use.
    """
    setup_logging()
    if name.startswith("optlock"):
        return logging.getLogger(name)
    return logging.getLogger(f"optlock.{name}")
