from __future__ import annotations

from gestao_ebd.integrations.gateway import RemoteProcedureError, RemoteProcedures
from gestao_ebd.integrations.http_client import HttpRemoteProcedures
from gestao_ebd.integrations.mock import MockRemoteProcedures


def build_remote_procedures(config) -> RemoteProcedures:
    mode = str(config.get("REMOTE_MODE") or "mock").strip().lower()
    if mode == "mock":
        return MockRemoteProcedures()
    if mode != "http":
        raise RemoteProcedureError(f"REMOTE_MODE invalido: {mode}")
    return HttpRemoteProcedures.from_config(config)


__all__ = [
    "HttpRemoteProcedures",
    "MockRemoteProcedures",
    "RemoteProcedureError",
    "RemoteProcedures",
    "build_remote_procedures",
]
