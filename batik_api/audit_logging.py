"""Structured audit trail for the catalog.

Everything written to the `audit` logger is emitted as one JSON object
per line. `init_audit_logging` adds request hooks that log every request
(`http_request`) with the resolved caller and the batik or comment id
taken from the URL; responses with status 401, 403 or 500 are repeated as
`security_alert` with `alert: true` so log pipelines can alarm on them.
"""
import json
import logging
import time
import uuid
from typing import Any

from flask import g, request

AUDIT_LOGGER = "audit"

# emitted first, in this order, when present
LEADING_FIELDS = (
    "request_id",
    "client_ip",
    "user_id",
    "batik_id",
    "comment_id",
    "operation",
    "duration_ms",
    "alert",
)
ALERT_STATUSES = frozenset({401, 403, 500})

_RESERVED = frozenset(logging.LogRecord("", 0, "", 0, None, (), None).__dict__) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        extras = {k: v for k, v in record.__dict__.items() if k not in _RESERVED}
        payload: dict[str, Any] = {
            "ts": int(record.created * 1000),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in LEADING_FIELDS:
            if key in extras:
                payload[key] = extras.pop(key)
        for key, value in extras.items():
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = str(value)
            payload[key] = value
        return json.dumps(payload)


def _audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER)


def _configure_audit_logger() -> logging.Logger:
    logger = _audit_logger()
    logger.setLevel(logging.INFO)
    if not any(isinstance(h.formatter, JSONFormatter) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
        logger.propagate = False
    return logger


def _request_event(response) -> dict[str, Any]:
    started = getattr(g, "audit_started", None) or time.time()
    view_args = request.view_args or {}
    event = {
        "type": "http_request",
        "request_id": getattr(g, "request_id", None),
        "method": request.method,
        "path": request.path,
        "endpoint": request.endpoint,
        "status_code": response.status_code,
        "duration_ms": int((time.time() - started) * 1000),
        "client_ip": request.headers.get("X-Forwarded-For", "").split(",")[0].strip() or request.remote_addr,
        "token_present": bool(request.headers.get("Authorization") or request.headers.get("X-Authorization")),
        "user_id": getattr(g, "caller_id", None),
    }
    for key in ("batik_id", "comment_id"):
        if key in view_args:
            event[key] = view_args[key]
    return event


def init_audit_logging(app) -> None:
    logger = _configure_audit_logger()

    @app.before_request
    def _start_audit():
        g.audit_started = time.time()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

    @app.after_request
    def _finish_audit(response):
        event = _request_event(response)
        logger.info("http_request", extra=event)
        if response.status_code in ALERT_STATUSES:
            logger.warning("security_alert", extra={**event, "alert": True, "alert_type": "security"})
        response.headers.setdefault("X-Request-ID", event["request_id"] or "")
        return response


def audit_event(message: str, **fields: Any) -> None:
    _audit_logger().info(message, extra=fields)


def security_alert(message: str, **fields: Any) -> None:
    _audit_logger().warning(message, extra={**fields, "alert": True, "alert_type": "security"})


def db_audit(operation: str, **fields: Any) -> None:
    _audit_logger().info("db_operation", extra={"operation": operation, **fields})
