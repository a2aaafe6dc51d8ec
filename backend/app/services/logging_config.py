"""
Logging for the PLS service.

Both formats carry the request/project context that callers pass through
`extra=` (see CONTEXT_FIELDS): JSON lines for production, and a single text
line with `key=value` suffixes when LOG_FORMAT=text.
"""
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

SERVICE_NAME = "pls-tracker"

# LogRecord attributes copied into the output when a caller passes them in `extra`
CONTEXT_FIELDS = ("request_id", "project_id", "user_id", "http_method", "http_path", "http_status", "duration_ms")

QUIET_LOGGERS = ("uvicorn.access", "httpcore", "httpx", "LiteLLM", "sqlalchemy.engine")


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    return {field: getattr(record, field) for field in CONTEXT_FIELDS if hasattr(record, field)}


class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        log_entry.update(record_context(record))
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ContextTextFormatter(logging.Formatter):
    """`2026-01-10 12:00:00 [pls-api] INFO: Project created project_id=... user_id=...`"""

    def __init__(self):
        super().__init__("%(asctime)s [%(name)s] %(levelname)s: %(message)s")

    def format(self, record):
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        head, sep, tail = line.partition("\n")
        suffix = " ".join(f"{k}={v}" for k, v in context.items())
        return f"{head} {suffix}{sep}{tail}"


def setup_logging(level: str = "INFO", json_output: bool = True):
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_output else ContextTextFormatter())
    root.handlers = [handler]

    # litellm logs every call at INFO
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
