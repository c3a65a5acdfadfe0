import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

# Correlation id of the current request, set by CorrelationIdMiddleware
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
# Acting employee of the current request, set by get_current_actor
actor_id_var: ContextVar[Optional[int]] = ContextVar("actor_id", default=None)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)

        req_id = request_id_var.get()
        if req_id:
            log_record["request_id"] = req_id
        actor_id = actor_id_var.get()
        if actor_id is not None:
            log_record["actor_id"] = actor_id

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = (log_record.get("level") or record.levelname).upper()


def setup_logging(level: int = logging.INFO):
    root = logging.getLogger()
    # The app module may be imported more than once under test
    if any(isinstance(h.formatter, CustomJsonFormatter) for h in root.handlers):
        return
    log_handler = logging.StreamHandler()
    log_handler.setFormatter(CustomJsonFormatter("%(timestamp) %(level) %(name) %(message)"))
    root.addHandler(log_handler)
    root.setLevel(level)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
