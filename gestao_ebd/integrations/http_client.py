from __future__ import annotations

import json
import logging
import ssl
import urllib.error
import urllib.request
from typing import Any, Dict, List

from gestao_ebd.integrations.gateway import (
    PAYMENT_MODE_INVOICE,
    CarrierRate,
    ExternalOrderRequest,
    ExternalOrderResult,
    RemoteProcedureError,
    RemoteProcedures,
    parse_carrier_rates,
)


logger = logging.getLogger("gestao_ebd")


def parse_function_paths(value: object) -> dict[str, str]:
    if not value:
        return {}
    if isinstance(value, dict):
        return {str(k): str(v) for k, v in value.items()}
    if isinstance(value, str):
        mapping: dict[str, str] = {}
        pairs = [pair.strip() for pair in value.split(",") if pair.strip()]
        for pair in pairs:
            if "=" not in pair:
                continue
            key, mapped = pair.split("=", 1)
            mapping[key.strip()] = mapped.strip()
        return mapping
    return {}


class HttpRemoteProcedures(RemoteProcedures):
    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        api_key: str | None = None,
        function_paths: dict[str, str] | None = None,
        timeout_seconds: int = 20,
        verify_ssl: bool = True,
    ) -> None:
        if not base_url:
            raise RemoteProcedureError("REMOTE_BASE_URL nao configurado.")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.api_key = api_key
        self.function_paths = dict(function_paths or {})
        self.timeout_seconds = int(timeout_seconds)
        self.verify_ssl = bool(verify_ssl)

    @classmethod
    def from_config(cls, config) -> "HttpRemoteProcedures":
        return cls(
            config.get("REMOTE_BASE_URL") or "",
            token=config.get("REMOTE_TOKEN"),
            api_key=config.get("REMOTE_API_KEY"),
            function_paths=parse_function_paths(config.get("REMOTE_FUNCTION_PATHS")),
            timeout_seconds=config.get("REMOTE_TIMEOUT_SECONDS", 20),
            verify_ssl=config.get("REMOTE_VERIFY_SSL", True),
        )

    def create_external_order(self, request: ExternalOrderRequest) -> ExternalOrderResult:
        function = "create_order" if request.payment_mode == PAYMENT_MODE_INVOICE else "payment_order"
        response = self._invoke(function, request.to_payload())
        return ExternalOrderResult.from_response(response)

    def quote_shipping(self, postal_code: str, items: List[Dict[str, Any]]) -> Dict[str, CarrierRate]:
        payload = {
            "cep": postal_code,
            "items": [{"quantity": int(item.get("quantity") or 0)} for item in items],
        }
        return parse_carrier_rates(self._invoke("quote_shipping", payload))

    def send_message(self, phone: str, text: str) -> None:
        try:
            self._invoke("send_message", {"telefone": phone, "mensagem": text})
        except RemoteProcedureError:
            logger.warning("remote_message_failed", extra={"phone_suffix": str(phone)[-4:]})

    def _function_url(self, function: str) -> str:
        path = self.function_paths.get(function, function)
        return f"{self.base_url}/{path.lstrip('/')}"

    def _invoke(self, function: str, payload: dict) -> object:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.api_key:
            headers["apikey"] = self.api_key

        data = json.dumps(payload, separators=(",", ":"), ensure_ascii=True).encode("utf-8")
        request = urllib.request.Request(self._function_url(function), data=data, headers=headers, method="POST")

        context = None
        if not self.verify_ssl:
            context = ssl._create_unverified_context()

        try:
            with urllib.request.urlopen(request, timeout=self.timeout_seconds, context=context) as response:
                body = response.read().decode("utf-8")
                if not body:
                    return {}
                return json.loads(body)
        except urllib.error.HTTPError as exc:  # noqa: PERF203
            error_body = exc.read().decode("utf-8") if exc.fp else ""
            raise RemoteProcedureError(
                f"Edge Function returned a non-2xx status code (HTTP {exc.code}): {error_body[:500]}"
            ) from exc
        except urllib.error.URLError as exc:
            raise RemoteProcedureError(f"Erro de conexao com {function}: {exc.reason}") from exc
        except json.JSONDecodeError as exc:
            raise RemoteProcedureError(f"{function} retornou JSON invalido.") from exc
