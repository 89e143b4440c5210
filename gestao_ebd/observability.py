from __future__ import annotations

import contextvars
import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from flask import g, has_request_context, request


logger = logging.getLogger("gestao_ebd")

_REQUEST_ID: contextvars.ContextVar[str] = contextvars.ContextVar("gestao_ebd_request_id", default="")

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

_SLOW_REQUEST_MS = 1500.0


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line, carrying the request id and any ``extra`` field."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_request_fields(record))

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRIBUTES or key.startswith("_") or key in payload:
                continue
            if callable(value):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def _request_fields(record: logging.LogRecord) -> Dict[str, Any]:
    if not has_request_context():
        explicit = str(getattr(record, "request_id", "") or "").strip()
        return {"request_id": explicit or _REQUEST_ID.get() or "n/a"}

    fields: Dict[str, Any] = {
        "request_id": current_request_id(default="n/a"),
        "path": request.path,
        "method": request.method,
    }
    if request.url_rule is not None:
        fields["route"] = request.url_rule.rule
    role = request.headers.get("X-User-Role")
    if role:
        fields["caller_role"] = role.strip().lower()
    return fields


def configure_json_logging(app) -> None:
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).strip().upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    if not bool(app.config.get("LOG_JSON", True)):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(logger.level)
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if not request_id:
        request_id = str(request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
        g.request_id = request_id
    _REQUEST_ID.set(request_id)
    return request_id


def current_request_id(default: str | None = None) -> str:
    if has_request_context():
        request_id = str(getattr(g, "request_id", "") or "").strip()
        if request_id:
            return request_id
    return _REQUEST_ID.get() or (default or "n/a")


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = getattr(g, "_request_started_at", None)
    elapsed_ms = (time.perf_counter() - started) * 1000.0 if started else 0.0
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"

    log_method = logger.warning if elapsed_ms >= _SLOW_REQUEST_MS else logger.debug
    log_method(
        "request_completed",
        extra={"http_status": response.status_code, "elapsed_ms": round(elapsed_ms, 2)},
    )
    return response
