"""
JSON formatter for structured logging.
"""
import json
import logging
from datetime import datetime, timezone

# Fields passed through ``extra={...}`` that end up in the JSON line.
EXTRA_FIELDS = (
    "request_id",
    "user_id",
    "operation",
    "status",
    "idempotency_key",
    "order_id",
    "product_ref",
    "from_status",
    "to_status",
    "event_kind",
    "attempt",
    "sequence_number",
    "payload",
    "error",
)


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record):
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)
