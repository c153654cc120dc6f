"""
Structured JSON logger for the storage gateway.
"""
import logging
import json
from datetime import datetime, timezone

from storage_gateway.config import settings

_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()) | {"message", "asctime"}

def get_request_context():
    # Import lazily to avoid import cycles
    from storage_gateway.monitoring.context import get_request_context as _g
    return _g()

class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "component": getattr(record, "component", None) or record.module,
            "request_id": getattr(record, "request_id", None),
            "provider": getattr(record, "provider", None),
            "operation": getattr(record, "operation", None),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and key not in log_record:
                log_record[key] = value
        return json.dumps(log_record, default=str)

logger = logging.getLogger("storage_gateway")
logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
handler = logging.StreamHandler()
handler.setFormatter(JsonFormatter())
logger.handlers = [handler]
logger.propagate = False

# Helper to log with context
def log(level: str, message: str, component: str = None, request_id: str = None, provider: str = None, operation: str = None, **kwargs):
    # Map legacy 'module' kwarg to 'component' to avoid LogRecord collision
    if "module" in kwargs and not component:
        component = kwargs.pop("module")
    kwargs.pop("module", None)
    # Fill missing fields from contextvars
    ctx = get_request_context()
    if request_id is None:
        request_id = ctx.get("request_id")
    if provider is None:
        provider = ctx.get("provider")
    if operation is None:
        operation = ctx.get("operation")

    extra = {
        "request_id": request_id,
        "provider": provider,
        "operation": operation,
        "component": component,
        **{k: v for k, v in kwargs.items() if k not in _RESERVED},
    }
    logger.log(getattr(logging, level.upper(), logging.INFO), message, extra=extra)
