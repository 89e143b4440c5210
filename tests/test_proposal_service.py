import itertools
import unittest
from datetime import date, datetime, timezone
from unittest import mock

from gestao_ebd.domain.proposal_status import ProposalStatus
from gestao_ebd.errors import (
    IntegrationError,
    InvalidTransitionError,
    NotFoundError,
    PermissionError as AppPermissionError,
    PreconditionError,
    ValidationError,
)
from gestao_ebd.integrations.gateway import PAYMENT_MODE_IMMEDIATE, PAYMENT_MODE_INVOICE
from tests.helpers.fakes import FakeRemote, build_test_services, sample_items, seed_church, seed_seller
from tests.helpers.temp_db import TempDbSandbox


MANUAL_FREIGHT = {"tipo": "manual", "transportadora": "Transportadora Rapida", "valor": 20, "prazo": "5 dias"}
REMOTE_FAILURE = 'Edge Function returned a non-2xx status code: {"error": "Cliente sem CPF/CNPJ cadastrado"}'


class ProposalServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="proposals")
        self.db = self._temp_db.open_database()
        self.remote = FakeRemote()
        self.registry = build_test_services(self.remote, today=date(2026, 10, 19))
        self.service = self.registry.proposals
        tokens = itertools.count(1)
        self.service.token_factory = lambda: f"tok-{next(tokens)}"
        self.service.now_fn = lambda: datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
        self.seller = seed_seller(self.db, self.registry)
        self.church = seed_church(self.db, self.registry, vendedor_id=self.seller["id"], pode_faturar=True)

    def tearDown(self) -> None:
        self._temp_db.cleanup()

    def _create(self, *, church=None, items=None, discount=10, freight=MANUAL_FREIGHT, role="vendedor"):
        payload = {
            "cliente_id": (church or self.church)["id"],
            "itens": items or sample_items(),
            "desconto_percentual": discount,
        }
        if freight is not None:
            payload["frete"] = dict(freight)
        return self.service.create(self.db, payload, role=role)

    def _awaiting_financial(self, **kwargs):
        proposal = self._create(**kwargs)
        self.service.accept(self.db, proposal["token"], invoicing_term="60_90")
        self.service.generate_payment(self.db, proposal["id"])
        return proposal

    def test_create_reference_totals(self) -> None:
        with self.assertLogs("gestao_ebd", level="INFO") as logs:
            proposal = self._create()

        self.assertEqual(proposal["status"], ProposalStatus.PENDENTE.value)
        self.assertEqual(proposal["valor_subtotal"], 250.0)
        self.assertEqual(proposal["valor_produtos"], 225.0)
        self.assertEqual(proposal["valor_frete"], 20.0)
        self.assertEqual(proposal["valor_total"], 245.0)
        self.assertEqual(proposal["frete_tipo"], "manual")
        self.assertEqual(proposal["frete_transportadora"], "Transportadora Rapida")
        self.assertEqual(proposal["cliente_nome"], "Igreja Batista Central")
        self.assertEqual(proposal["vendedor_nome"], "Ana Vendedora")
        self.assertEqual(proposal["cliente_endereco"]["cep"], "20040-020")
        self.assertEqual(proposal["link"], "https://gestaoebd.test/proposta/tok-1")
        self.assertIsNone(proposal["shipping_quote"])
        self.assertEqual(proposal["flow"]["primary_action"], "edit")
        self.assertTrue(any("proposal_created" in line for line in logs.output))

    def test_client_cannot_set_manual_freight(self) -> None:
        with self.assertRaises(AppPermissionError):
            self._create(role="client")
        self.assertEqual(self.service.list(self.db), [])

    def test_automatic_shipping_prefers_free(self) -> None:
        proposal = self._create(freight=None)
        self.assertEqual(proposal["metodo_frete"], "free")
        self.assertEqual(proposal["valor_frete"], 0.0)
        self.assertEqual(proposal["valor_total"], 225.0)
        self.assertIsNotNone(proposal["shipping_quote"])
        self.assertEqual(len(self.remote.shipping_calls), 1)

    def test_unknown_church(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            self.service.create(self.db, {"cliente_id": 999, "itens": sample_items()})
        self.assertEqual(ctx.exception.code, "church_not_found")

    def test_edit_rotates_token(self) -> None:
        proposal = self._create()
        edited = self.service.edit(self.db, proposal["id"], {"desconto_percentual": 0}, role="vendedor")

        self.assertEqual(edited["token"], "tok-2")
        self.assertEqual(edited["link"], "https://gestaoebd.test/proposta/tok-2")
        self.assertEqual(edited["valor_produtos"], 250.0)
        self.assertEqual(edited["valor_total"], 270.0)
        self.assertEqual(edited["frete_tipo"], "manual")
        with self.assertRaises(NotFoundError):
            self.service.get_by_token(self.db, "tok-1")
        self.assertEqual(self.service.get_by_token(self.db, "tok-2")["id"], proposal["id"])

    def test_edit_is_rejected_after_acceptance(self) -> None:
        proposal = self._create()
        self.service.accept(self.db, proposal["token"])
        with self.assertRaises(InvalidTransitionError):
            self.service.edit(self.db, proposal["id"], {"desconto_percentual": 5}, role="vendedor")

    def test_accept_reprices_new_shipping_method(self) -> None:
        proposal = self._create(discount=50, freight=None)
        self.assertEqual(proposal["metodo_frete"], "pac")
        self.assertEqual(proposal["valor_total"], 147.5)

        accepted = self.service.accept(self.db, proposal["token"], shipping_method="SEDEX")

        self.assertEqual(accepted["status"], ProposalStatus.ACEITA.value)
        self.assertEqual(accepted["metodo_frete"], "sedex")
        self.assertEqual(accepted["valor_frete"], 41.0)
        self.assertEqual(accepted["valor_total"], 166.0)
        self.assertTrue(accepted["confirmado_em"].startswith("2026-10-19 12:00:00"))

    def test_invoicing_term_requires_permission(self) -> None:
        church = seed_church(self.db, self.registry, nome_igreja="Igreja Sem Faturamento")
        proposal = self._create(church=church)
        with self.assertRaises(ValidationError) as ctx:
            self.service.accept(self.db, proposal["token"], invoicing_term="30")
        self.assertEqual(ctx.exception.code, "invoicing_not_allowed")
        self.assertEqual(self.service.get(self.db, proposal["id"])["status"], ProposalStatus.PENDENTE.value)

    def test_payment_link_then_confirmation(self) -> None:
        church = seed_church(self.db, self.registry, nome_igreja="Igreja Online", vendedor_id=self.seller["id"])
        proposal = self._create(church=church)
        self.service.accept(self.db, proposal["token"])

        waiting = self.service.generate_payment(self.db, proposal["id"])

        self.assertEqual(waiting["status"], ProposalStatus.AGUARDANDO_PAGAMENTO.value)
        self.assertEqual(waiting["payment_url"], "https://pagamento.test/501")
        self.assertEqual(waiting["external_order_id"], "DRAFT-501")
        request = self.remote.order_requests[0]
        self.assertEqual(request.payment_mode, PAYMENT_MODE_IMMEDIATE)
        self.assertIsNone(request.invoicing_term)
        self.assertEqual(request.total_value, 245.0)

        paid = self.service.confirm_payment(self.db, proposal["id"], status_pagamento="Pago")
        self.assertEqual(paid["status"], ProposalStatus.PAGO.value)
        order = self.registry.commissions.orders.get_by_proposal(self.db, proposal["id"])
        self.assertEqual(order["origem"], "online")
        self.assertEqual(order["valor_total"], 245.0)
        self.assertFalse(order["comissao_aprovada"])

        parcela = self.registry.commissions.approve(self.db, order["id"])
        self.assertEqual(parcela.valor_comissao, 12.25)

    def test_confirm_payment_rejects_unpaid_status(self) -> None:
        church = seed_church(self.db, self.registry, nome_igreja="Igreja Online")
        proposal = self._create(church=church)
        self.service.accept(self.db, proposal["token"])
        self.service.generate_payment(self.db, proposal["id"])

        with self.assertRaises(PreconditionError) as ctx:
            self.service.confirm_payment(self.db, proposal["id"], status_pagamento="pending")
        self.assertEqual(ctx.exception.code, "order_not_payable")
        self.assertEqual(
            self.service.get(self.db, proposal["id"])["status"],
            ProposalStatus.AGUARDANDO_PAGAMENTO.value,
        )

    def test_financial_approval_invoices_and_schedules_commission(self) -> None:
        proposal = self._awaiting_financial()
        waiting = self.service.get(self.db, proposal["id"])
        self.assertEqual(waiting["status"], ProposalStatus.AGUARDANDO_APROVACAO_FINANCEIRA.value)
        self.assertEqual(self.remote.order_requests, [])

        with self.assertRaises(AppPermissionError):
            self.service.approve_invoicing(self.db, proposal["id"], role="vendedor")

        outcome = self.service.approve_invoicing(self.db, proposal["id"], role="financeiro")

        self.assertEqual(outcome.proposal["status"], ProposalStatus.FATURADO.value)
        self.assertEqual(outcome.proposal["external_order_id"], "ERP-501")
        self.assertIsNone(outcome.warning)
        self.assertEqual(outcome.order["order_number"], "ERP-501")
        self.assertEqual(outcome.order["origem"], "faturado")
        self.assertEqual(outcome.order["status_pagamento"], "Faturado")
        self.assertTrue(outcome.order["comissao_aprovada"])

        request = self.remote.order_requests[0]
        self.assertEqual(request.payment_mode, PAYMENT_MODE_INVOICE)
        self.assertEqual(request.invoicing_term, "60_90")
        self.assertEqual(request.shipping_method, "manual")
        self.assertEqual([line["unit_price"] for line in request.items], [90.0, 45.0])
        self.assertEqual(request.total_value, 245.0)

        self.assertEqual([parcela.valor for parcela in outcome.parcelas], [122.5, 122.5])
        self.assertEqual([parcela.valor_comissao for parcela in outcome.parcelas], [1.84, 1.84])
        self.assertEqual(
            [parcela.data_vencimento for parcela in outcome.parcelas],
            ["2026-12-18", "2027-01-17"],
        )

    def test_remote_failure_reverts_approval(self) -> None:
        proposal = self._awaiting_financial()
        self.service.remote = FakeRemote(order_error=REMOTE_FAILURE)

        with self.assertLogs("gestao_ebd", level="WARNING") as logs:
            with self.assertRaises(IntegrationError) as ctx:
                self.service.approve_invoicing(self.db, proposal["id"], role="financeiro")

        self.assertEqual(ctx.exception.user_message(), "Cliente sem CPF/CNPJ cadastrado")
        self.assertEqual(
            self.service.get(self.db, proposal["id"])["status"],
            ProposalStatus.AGUARDANDO_APROVACAO_FINANCEIRA.value,
        )
        self.assertIsNone(self.registry.commissions.orders.get_by_proposal(self.db, proposal["id"]))
        self.assertEqual(self.registry.commissions.parcelas.list_by_proposal(self.db, proposal["id"]), [])
        self.assertTrue(any("invoicing_reverted" in line for line in logs.output))

    def test_payment_link_failure_keeps_proposal_accepted(self) -> None:
        church = seed_church(self.db, self.registry, nome_igreja="Igreja Online")
        proposal = self._create(church=church)
        self.service.accept(self.db, proposal["token"])
        self.service.remote = FakeRemote(order_error=REMOTE_FAILURE)

        with self.assertRaises(IntegrationError) as ctx:
            self.service.generate_payment(self.db, proposal["id"])

        self.assertEqual(ctx.exception.user_message(), "Cliente sem CPF/CNPJ cadastrado")
        stored = self.service.get(self.db, proposal["id"])
        self.assertEqual(stored["status"], ProposalStatus.ACEITA.value)
        self.assertIsNone(stored["payment_url"])
        self.assertIsNone(stored["external_order_id"])

    def test_failed_local_invoice_write_is_not_announced(self) -> None:
        proposal = self._awaiting_financial()
        events = []
        self.registry.change_feed.on_change("vendedor_propostas", None, events.append)

        with mock.patch.object(self.service.orders, "insert", side_effect=RuntimeError("disk full")):
            with self.assertLogs("gestao_ebd", level="ERROR"):
                with self.assertRaises(RuntimeError):
                    self.service.approve_invoicing(self.db, proposal["id"], role="financeiro")

        stored = self.service.get(self.db, proposal["id"])
        self.assertEqual(stored["status"], ProposalStatus.APROVADA_FATURAMENTO.value)
        statuses = [event.record["status"] for event in events]
        self.assertNotIn(ProposalStatus.FATURADO.value, statuses)
        self.assertEqual(statuses[-1], ProposalStatus.APROVADA_FATURAMENTO.value)

    def test_invoice_retry_reuses_the_placed_erp_order(self) -> None:
        proposal = self._awaiting_financial()
        with mock.patch.object(self.service.orders, "insert", side_effect=RuntimeError("disk full")):
            with self.assertLogs("gestao_ebd", level="ERROR") as logs:
                with self.assertRaises(RuntimeError):
                    self.service.approve_invoicing(self.db, proposal["id"], role="financeiro")
        self.assertTrue(any("nao reenviar" in getattr(record, "hint", "") for record in logs.records))

        stored = self.service.get(self.db, proposal["id"])
        self.assertEqual(stored["status"], ProposalStatus.APROVADA_FATURAMENTO.value)
        self.assertEqual(stored["external_order_id"], "ERP-501")
        self.assertEqual(len(self.remote.order_requests), 1)

        outcome = self.service.invoice(self.db, proposal["id"], role="financeiro")

        self.assertEqual(len(self.remote.order_requests), 1)
        self.assertEqual(outcome.proposal["status"], ProposalStatus.FATURADO.value)
        self.assertEqual(outcome.proposal["external_order_id"], "ERP-501")
        self.assertEqual(outcome.order["order_number"], "ERP-501")
        self.assertEqual([parcela.valor for parcela in outcome.parcelas], [122.5, 122.5])

    def test_items_without_sku_block_invoicing(self) -> None:
        proposal = self._awaiting_financial(items=sample_items(with_sku=False))

        with self.assertRaises(PreconditionError) as ctx:
            self.service.approve_invoicing(self.db, proposal["id"], role="financeiro")

        self.assertEqual(ctx.exception.code, "items_without_sku")
        self.assertIn("Revista EBD Adultos", ctx.exception.details)
        self.assertEqual(self.remote.order_requests, [])
        self.assertEqual(
            self.service.get(self.db, proposal["id"])["status"],
            ProposalStatus.AGUARDANDO_APROVACAO_FINANCEIRA.value,
        )

    def test_representative_uses_category_discounts(self) -> None:
        representative = seed_seller(self.db, self.registry, nome="Rui Representante", tipo="representante")
        church = seed_church(
            self.db,
            self.registry,
            nome_igreja="Igreja do Representante",
            vendedor_id=representative["id"],
            pode_faturar=True,
        )
        self.registry.category_discounts.upsert(self.db, cliente_id=church["id"], categoria="revistas", percentual_desconto=30)
        self.db.commit()

        proposal = self._awaiting_financial(church=church)
        self.assertEqual(self.service.get(self.db, proposal["id"])["valor_total"], 245.0)
        outcome = self.service.approve_invoicing(self.db, proposal["id"], role="financeiro")

        request = self.remote.order_requests[0]
        self.assertEqual([line["unit_price"] for line in request.items], [70.0, 50.0])
        self.assertEqual(request.products_value, 190.0)
        self.assertEqual(request.total_value, 210.0)
        self.assertEqual(outcome.order["valor_total"], 210.0)

    def test_reject_invoicing_is_terminal(self) -> None:
        proposal = self._awaiting_financial()
        rejected = self.service.reject_invoicing(self.db, proposal["id"], role="financeiro")
        self.assertEqual(rejected["status"], ProposalStatus.REPROVADA_FINANCEIRO.value)
        self.assertTrue(rejected["flow"]["terminal"])
        with self.assertRaises(InvalidTransitionError):
            self.service.return_to_pending(self.db, proposal["id"])

    def test_return_to_pending_and_cancel(self) -> None:
        proposal = self._create()
        self.service.accept(self.db, proposal["token"])
        pending = self.service.return_to_pending(self.db, proposal["id"])
        self.assertEqual(pending["status"], ProposalStatus.PENDENTE.value)
        cancelled = self.service.cancel(self.db, proposal["id"])
        self.assertEqual(cancelled["status"], ProposalStatus.CANCELADO.value)
        with self.assertRaises(InvalidTransitionError):
            self.service.expire(self.db, proposal["id"])

    def test_delete_rules(self) -> None:
        proposal = self._create()
        with self.assertRaises(AppPermissionError):
            self.service.delete(self.db, proposal["id"], role="vendedor")
        self.service.delete(self.db, proposal["id"], role="gerente_ebd")
        with self.assertRaises(NotFoundError):
            self.service.get(self.db, proposal["id"])

        invoiced = self._awaiting_financial()
        self.service.approve_invoicing(self.db, invoiced["id"], role="financeiro")
        with self.assertRaises(PreconditionError) as ctx:
            self.service.delete(self.db, invoiced["id"], role="admin")
        self.assertEqual(ctx.exception.code, "proposal_invoiced_readonly")
        self.assertEqual(ctx.exception.http_status, 409)

    def test_stale_snapshot_loses_the_status_race(self) -> None:
        proposal = self._create()
        stale = self.service.get_by_token(self.db, proposal["token"])
        self.service.accept(self.db, proposal["token"])

        with mock.patch.object(self.service, "get_by_token", return_value=stale):
            with self.assertRaises(InvalidTransitionError) as ctx:
                self.service.accept(self.db, proposal["token"])
        self.assertEqual(ctx.exception.code, "status_changed_concurrently")

    def test_list_filters_by_status(self) -> None:
        first = self._create()
        self._create()
        self.service.accept(self.db, first["token"])
        accepted = self.service.list(self.db, status="proposta_aceita")
        self.assertEqual([proposal["id"] for proposal in accepted], [first["id"]])


if __name__ == "__main__":
    unittest.main()
