"""Logging setup: text or JSON output, with per-request correlation ids."""
from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional


TEXT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Fields lifted out of extra_data onto the top level of JSON records
ENTITY_FIELDS = ("conversation_id", "contract_id", "referral_id", "lead_id", "listing_id")

_REQUEST_ID: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


# =============================================================================
# Request context
# =============================================================================


def start_request_context(request_id: str) -> Token:
    """Bind a correlation id to the current request; returns the reset token."""
    return _REQUEST_ID.set(request_id)


def reset_request_context(token: Token) -> None:
    """Restore whatever request id was bound before start_request_context."""
    _REQUEST_ID.reset(token)


def current_request_id() -> Optional[str]:
    return _REQUEST_ID.get()


class RequestContextFilter(logging.Filter):
    """Stamps every record with the bound request id ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = _REQUEST_ID.get() or "-"
        return True


# =============================================================================
# Formatting
# =============================================================================


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line, for log shippers.

    extra_data is kept under "extra"; entity ids found in it are also
    copied to the top level so a single contract or lead can be traced
    across components.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = getattr(record, "request_id", None)
        if request_id and request_id != "-":
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra = getattr(record, "extra_data", None)
        if isinstance(extra, dict):
            log_data["extra"] = extra
            for field_name in ENTITY_FIELDS:
                if field_name in extra:
                    log_data[field_name] = extra[field_name]

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = False,
) -> None:
    """
    Configure root logging for the API and CLI.

    Args:
        level: Logging level name.
        log_file: Optional file to log to as well as stderr.
        json_format: Emit JSON lines instead of text.
    """
    formatter: logging.Formatter = (
        JSONFormatter() if json_format else logging.Formatter(TEXT_LOG_FORMAT, DATE_FORMAT)
    )
    context_filter = RequestContextFilter()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(context_filter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    for noisy in ("botocore", "boto3", "urllib3", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Return the named module logger."""
    return logging.getLogger(name)


def log_external_call(
    logger: logging.Logger,
    service: str,
    operation: str,
    success: bool,
    duration_ms: float,
    **extra: Any,
) -> None:
    """
    Log a call to an outside collaborator with standard fields.

    Args:
        logger: Logger instance to use.
        service: Collaborator name ("ses", "s3").
        operation: Operation performed ("send_email", "put_object").
        success: Whether the call succeeded.
        duration_ms: Wall time of the call.
        **extra: Additional context to log.
    """
    log_data = {
        "service": service,
        "operation": operation,
        "success": success,
        "duration_ms": round(duration_ms, 2),
        **extra,
    }
    verb = "completed in" if success else "failed after"
    logger.log(
        logging.INFO if success else logging.WARNING,
        f"External call: {service}.{operation} {verb} {duration_ms:.2f}ms",
        extra={"extra_data": log_data},
    )


__all__ = [
    "setup_logging",
    "get_logger",
    "log_external_call",
    "start_request_context",
    "reset_request_context",
    "current_request_id",
    "RequestContextFilter",
    "JSONFormatter",
]
