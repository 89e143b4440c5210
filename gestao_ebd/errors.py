from __future__ import annotations

import json
import re
from typing import Any, Dict

from gestao_ebd.messages import error_message


class AppError(Exception):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or code or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "Nao foi possivel concluir a operacao.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.user_message(),
            "request_id": request_id,
        }
        if self.payload:
            payload.update(self.payload)
        return payload


class UserActionError(AppError):
    default_code = "action_invalid"
    default_message_key = "action_invalid"
    default_http_status = 400
    default_critical = False


class ValidationError(UserActionError):
    default_code = "validation_error"
    default_message_key = "validation_error"
    default_http_status = 400
    default_critical = False


class PermissionError(UserActionError):
    default_code = "permission_denied"
    default_message_key = "permission_denied"
    default_http_status = 403
    default_critical = False


class NotFoundError(UserActionError):
    default_code = "not_found"
    default_message_key = "unexpected_error"
    default_http_status = 404
    default_critical = False


class InvalidTransitionError(UserActionError):
    default_code = "action_not_allowed_for_status"
    default_message_key = "action_not_allowed_for_status"
    default_http_status = 409
    default_critical = False


class PreconditionError(UserActionError):
    default_code = "precondition_failed"
    default_message_key = "action_invalid"
    default_http_status = 422
    default_critical = False


class AlreadySettledError(UserActionError):
    default_code = "commission_already_approved"
    default_message_key = "commission_already_approved"
    default_http_status = 409
    default_critical = False


class IntegrationError(AppError):
    default_code = "integration_error"
    default_message_key = "remote_unavailable"
    default_http_status = 502
    default_critical = False

    def user_message(self) -> str:
        # Remote messages are shown verbatim when available.
        if self.details:
            return self.details
        return super().user_message()


class SystemError(AppError):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True


_EMBEDDED_JSON_PATTERN = re.compile(r"\{.*\}", re.DOTALL)
_REMOTE_HTTP_CODE_PATTERN = re.compile(r"http\s+(\d{3})", re.IGNORECASE)


def extract_remote_error_message(raw: str | None) -> str:
    """Best-effort extraction of the human message from a remote error.

    Edge functions often answer ``{"error": "..."}`` and the transport
    wraps it in a generic text such as ``Edge Function returned a non-2xx
    status code: {"error": "..."}``. The innermost ``error``/``message``
    wins; otherwise the raw text is returned unchanged.
    """
    message = str(raw or "").strip()
    if not message:
        return error_message("remote_unavailable")
    match = _EMBEDDED_JSON_PATTERN.search(message)
    if not match:
        return message
    try:
        parsed = json.loads(match.group(0))
    except (TypeError, ValueError):
        return message
    if isinstance(parsed, dict):
        extracted = parsed.get("error") or parsed.get("message")
        if isinstance(extracted, dict):
            extracted = extracted.get("message") or extracted.get("description")
        if extracted:
            return str(extracted).strip()
    return message


def classify_remote_failure(details: str | None) -> tuple[str, int]:
    normalized = (details or "").strip().lower()
    code_match = _REMOTE_HTTP_CODE_PATTERN.search(normalized)
    if code_match:
        http_code = int(code_match.group(1))
        if 400 <= http_code < 500 and http_code not in {408, 429}:
            return ("external_order_rejected", 422)

    rejection_markers = ("recusou", "rejeitou", "invalid", "invalido", "sem sku", "rejected")
    if any(marker in normalized for marker in rejection_markers):
        return ("external_order_rejected", 422)

    return ("remote_unavailable", 502)
