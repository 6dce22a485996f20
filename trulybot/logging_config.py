import logging
import json
import re
import sys
from datetime import datetime, timezone

SECRET_RE = re.compile(
    r"(authorization|api[_-]?key|password|token|secret|signature)[\"':= ]+([^,\s]+)", re.I
)

EXTRA_FIELDS = (
    "request_id",
    "path",
    "method",
    "status",
    "latency_ms",
    "event",
    "user_id",
    "details",
)


def redact_secrets(msg):
    return SECRET_RE.sub(r"\1=***", msg)


def truncate(value, length=10):
    """Prefix of a token that is safe to log."""
    if not value:
        return None
    value = str(value)
    return value[:length] + "..." if len(value) > length else value


class JsonLogFormatter(logging.Formatter):
    def format(self, record):
        log = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": redact_secrets(str(record.getMessage())),
        }
        for field in EXTRA_FIELDS:
            if hasattr(record, field):
                log[field] = getattr(record, field)
        if record.exc_info:
            log["exc"] = self.formatException(record.exc_info)
        return json.dumps(log, default=str)


def setup_logging(level=logging.INFO):
    root = logging.getLogger()
    root.setLevel(level)
    # idempotent: create_app may run more than once per process
    if any(isinstance(h.formatter, JsonLogFormatter) for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonLogFormatter())
    root.addHandler(handler)


def get_logger(name="trulybot"):
    return logging.getLogger(name)
