"""
Structured logging for the order coordinator
"""
import json
import logging
from datetime import datetime, timezone


# Context fields callers attach through ``extra={...}``
CONTEXT_FIELDS = (
    "request_id",
    "order_id",
    "payment_id",
    "promo_code",
    "rider_id",
    "actor_role",
    "actor_id",
    "duration_ms",
)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_entry[field] = getattr(record, field)

        # Add exception info if present
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)

