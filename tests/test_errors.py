import unittest

from gestao_ebd.errors import (
    AppError,
    IntegrationError,
    InvalidTransitionError,
    PermissionError as AppPermissionError,
    PreconditionError,
    classify_remote_failure,
    extract_remote_error_message,
)
from gestao_ebd.messages import error_message
from gestao_ebd.policies import has_capability, normalize_role, require_capability


class RemoteErrorMessageTest(unittest.TestCase):
    def test_wrapped_json_error(self) -> None:
        raw = 'Edge Function returned a non-2xx status code: {"error": "Cliente sem CPF/CNPJ cadastrado"}'
        self.assertEqual(extract_remote_error_message(raw), "Cliente sem CPF/CNPJ cadastrado")

    def test_nested_error_object(self) -> None:
        raw = '{"error": {"message": "Token expirado", "type": "auth"}}'
        self.assertEqual(extract_remote_error_message(raw), "Token expirado")

    def test_plain_and_empty(self) -> None:
        self.assertEqual(extract_remote_error_message("Servico fora do ar"), "Servico fora do ar")
        self.assertEqual(extract_remote_error_message("falha {sem json}"), "falha {sem json}")
        self.assertEqual(extract_remote_error_message(""), error_message("remote_unavailable"))

    def test_classification(self) -> None:
        self.assertEqual(classify_remote_failure("HTTP 400: dados"), ("external_order_rejected", 422))
        self.assertEqual(classify_remote_failure("HTTP 429: limite"), ("remote_unavailable", 502))
        self.assertEqual(classify_remote_failure("ERP recusou o pedido"), ("external_order_rejected", 422))
        self.assertEqual(classify_remote_failure("timeout"), ("remote_unavailable", 502))
        self.assertEqual(classify_remote_failure(None), ("remote_unavailable", 502))


class AppErrorPayloadTest(unittest.TestCase):
    def test_payload_carries_code_message_and_extra(self) -> None:
        error = PreconditionError(code="order_not_payable", message_key="order_not_payable", payload={"order_id": 4})
        payload = error.to_response_payload("req-1")
        self.assertEqual(payload["error"], "order_not_payable")
        self.assertEqual(payload["message"], error_message("order_not_payable"))
        self.assertEqual(payload["request_id"], "req-1")
        self.assertEqual(payload["order_id"], 4)
        self.assertEqual(error.http_status, 422)
        self.assertFalse(error.critical)

    def test_defaults(self) -> None:
        error = AppError()
        self.assertEqual(error.http_status, 500)
        self.assertTrue(error.critical)
        self.assertEqual(InvalidTransitionError().http_status, 409)

    def test_integration_error_prefers_remote_text(self) -> None:
        self.assertEqual(IntegrationError(details="Estoque insuficiente").user_message(), "Estoque insuficiente")
        self.assertEqual(IntegrationError().user_message(), error_message("remote_unavailable"))


class CapabilityTest(unittest.TestCase):
    def test_roles(self) -> None:
        self.assertEqual(normalize_role(" Financeiro "), "financeiro")
        self.assertEqual(normalize_role("hacker"), "client")
        self.assertTrue(has_capability("admin", "delete_proposal"))
        self.assertFalse(has_capability("vendedor", "approve_invoicing"))
        self.assertFalse(has_capability("admin", "unknown_capability"))

    def test_require_capability(self) -> None:
        self.assertEqual(require_capability("manual_shipping", "representante"), "representante")
        with self.assertRaises(AppPermissionError) as ctx:
            require_capability("approve_commission", "vendedor")
        self.assertEqual(ctx.exception.http_status, 403)
        # Outside a request the caller is treated as a client.
        with self.assertRaises(AppPermissionError):
            require_capability("manual_shipping")


if __name__ == "__main__":
    unittest.main()
