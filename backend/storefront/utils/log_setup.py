"""
Logging setup for the service.

Plain text by default; set LOG_JSON=true to emit one JSON object per line.
"""
import json
import logging
import sys
from datetime import datetime, timezone

# extra= keys copied into JSON output when present on the record
_EXTRA_FIELDS = ("order_id", "customer_id", "payment_id", "operation", "status", "error")


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False, default=str)


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    root = logging.getLogger("storefront")
    root.setLevel(level.upper())
    if root.handlers:
        return
    h = logging.StreamHandler(sys.stdout)
    if json_output:
        h.setFormatter(JsonFormatter())
    else:
        h.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
    root.addHandler(h)
