"""Structured JSON logging with async-safe correlation IDs.

Every log line is a single JSON object carrying the correlation_id of the
request that produced it, so one ingestion or chat turn can be followed
across the database and LLM calls it awaits.
"""

import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone

SERVICE_NAME = "policy-whisperer"

# Set per request by CorrelationIDMiddleware; copied into each task by asyncio
correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

# Record attributes that identify the document, conversation or bill a line is about
CONTEXT_FIELDS = (
    "document_id",
    "conversation_id",
    "legislation_id",
    "state_code",
    "step",
    "duration_ms",
)


def get_correlation_id() -> str:
    return correlation_id.get()


class JSONFormatter(logging.Formatter):
    """One JSON object per line.

    Warnings and errors also carry ``location`` (module:line) so they can be
    traced without a stack.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.levelno >= logging.WARNING:
            entry["location"] = f"{record.module}:{record.lineno}"

        request_id = get_correlation_id()
        if request_id:
            entry["correlation_id"] = request_id

        entry.update(
            (name, getattr(record, name))
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        )

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(json_format: bool = True, level: str = "INFO") -> None:
    """Configure root logger with JSON or text format.

    Args:
        json_format: True for JSON (production), False for text (local dev).
        level: Log level string (DEBUG, INFO, WARNING, ERROR).
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Remove existing handlers to avoid duplicates
    root.handlers.clear()

    handler = logging.StreamHandler()
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    root.addHandler(handler)

    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
