from __future__ import annotations

from typing import Dict, FrozenSet, Set

from flask import has_request_context, request, session

from gestao_ebd.errors import PermissionError as AppPermissionError


VALID_ROLES: Set[str] = {"admin", "gerente_ebd", "financeiro", "vendedor", "representante", "client"}


CAPABILITIES: Dict[str, FrozenSet[str]] = {
    "manual_shipping": frozenset({"vendedor", "representante", "gerente_ebd", "admin"}),
    "approve_invoicing": frozenset({"financeiro", "admin"}),
    "reject_invoicing": frozenset({"financeiro", "admin"}),
    "delete_proposal": frozenset({"gerente_ebd", "admin"}),
    "approve_commission": frozenset({"financeiro", "gerente_ebd", "admin"}),
}


def normalize_role(role: str | None, default: str = "client") -> str:
    normalized = str(role or "").strip().lower()
    if normalized in VALID_ROLES:
        return normalized
    return default if default in VALID_ROLES else ""


def current_role() -> str:
    if not has_request_context():
        return "client"
    session_role = session.get("user_role")
    if session_role:
        return normalize_role(session_role)
    return normalize_role(request.headers.get("X-User-Role"))


def has_capability(role: str | None, capability: str) -> bool:
    allowed = CAPABILITIES.get(capability)
    if allowed is None:
        return False
    return normalize_role(role) in allowed


def require_capability(capability: str, role: str | None = None) -> str:
    normalized_role = normalize_role(role) if role is not None else current_role()
    if has_capability(normalized_role, capability):
        return normalized_role
    raise AppPermissionError(
        code="permission_denied",
        message_key="permission_denied",
        http_status=403,
        critical=False,
        payload={"capability": capability},
    )
