"""
Logging setup for toolpilot.

Tool invocations log with structured fields passed through ``extra``
(see ``invocation_fields``). The JSON formatter emits them as top-level
keys; the text formatter appends them as ``key=value`` pairs so a
single grep for ``tool=paragon.google_calendar_list_events`` finds every
call across the catalog and the selector.
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone

# Record attributes carried from ``extra`` into the output, in display order
INVOCATION_FIELDS = ("user_id", "tool", "connector_id", "outcome", "duration_ms", "calls")

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def invocation_fields(**fields) -> dict:
    """``extra`` dict for a tool-related log call; None values are dropped."""
    return {key: value for key, value in fields.items() if value is not None}


def _record_fields(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in INVOCATION_FIELDS
        if getattr(record, key, None) is not None
    }


class JsonFormatter(logging.Formatter):
    """One JSON object per line, invocation fields included at top level."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log.update(_record_fields(record))
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, default=str)


class InvocationTextFormatter(logging.Formatter):
    """Plain text lines with `` | tool=... connector_id=...`` appended when present."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        fields = _record_fields(record)
        if not fields:
            return text
        suffix = " ".join(f"{key}={value}" for key, value in fields.items())
        first, newline, rest = text.partition("\n")
        return f"{first} | {suffix}{newline}{rest}"


def setup_logging(log_level: str, logs_dir: str, json_logs: bool = False) -> None:
    """Console (JSON or text) plus a rotating text file under ``logs_dir``."""
    os.makedirs(logs_dir, exist_ok=True)
    level = getattr(logging, log_level.upper(), logging.INFO)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(
        JsonFormatter() if json_logs else InvocationTextFormatter(_TEXT_FORMAT, datefmt="%H:%M:%S")
    )

    # 10MB per file, keep 5 backups
    file_handler = logging.handlers.RotatingFileHandler(
        os.path.join(logs_dir, "toolpilot.log"),
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(InvocationTextFormatter(_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    for handler in (console, file_handler):
        handler.setLevel(level)
    logging.basicConfig(level=level, handlers=[console, file_handler], force=True)

    for noisy in ("httpx", "httpcore", "anthropic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
