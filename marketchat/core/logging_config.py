"""
Structured JSON logging.

Every record carries `timestamp`, `level`, `service`, `request_id` and the
emitting module/function/line. Request ids are set by `RequestIDMiddleware`
through `request_id_var`.

Usage:
    logger = logging.getLogger(__name__)
    logger.info("Conversation created", extra={"conversation_id": "..."})
"""
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger.json import JsonFormatter


request_id_var: ContextVar[str] = ContextVar("request_id", default="no-request")


class CustomJsonFormatter(JsonFormatter):
    """JSON formatter that stamps the mandatory observability fields."""

    def __init__(self, service_name: str = "marketchat", *args, **kwargs):
        self.service_name = service_name
        super().__init__(*args, **kwargs)

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = self.service_name
        log_record["message"] = record.getMessage()
        log_record["request_id"] = getattr(record, "request_id", "no-request")

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        log_record["module"] = record.module
        log_record["function"] = record.funcName
        log_record["line"] = record.lineno


class RequestContextFilter(logging.Filter):
    """Copies the current request id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()
        return True


def configure_logging(
    service_name: str = "marketchat",
    level: str = "INFO",
    enable_json: bool = True
) -> None:
    """
    Configure the root logger once for the process.

    Args:
        service_name: Value of the `service` field on every record
        level: Log level name (DEBUG, INFO, WARNING, ...)
        enable_json: JSON output for production, plain text for local runs
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.addFilter(RequestContextFilter())

    if enable_json:
        formatter = CustomJsonFormatter(
            service_name=service_name,
            fmt="%(timestamp)s %(level)s %(service)s %(request_id)s %(message)s"
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Driver internals are noisy at INFO
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("motor").setLevel(logging.WARNING)
