import unittest
from datetime import date

from gestao_ebd.domain.commission import CommissionStatus, ParcelaOrigin
from gestao_ebd.errors import AlreadySettledError, NotFoundError, PreconditionError
from tests.helpers.fakes import build_test_services, seed_church, seed_seller
from tests.helpers.temp_db import TempDbSandbox


class CommissionServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="commission")
        self.db = self._temp_db.open_database()
        self.registry = build_test_services(today=date(2026, 10, 1))
        self.service = self.registry.commissions
        self.seller = seed_seller(self.db, self.registry, percent=5.0)
        self.church = seed_church(self.db, self.registry, vendedor_id=self.seller["id"])

    def tearDown(self) -> None:
        self._temp_db.cleanup()

    def _order(self, *, status="aprovado", vendedor_id="seller", cliente_id=None, valor=400.0):
        order = self.service.orders.insert(
            self.db,
            cliente_id=cliente_id,
            vendedor_id=self.seller["id"] if vendedor_id == "seller" else vendedor_id,
            valor_total=valor,
            order_date="2026-09-20 14:00:00.000000",
            status_pagamento=status,
            order_number="#1042",
        )
        self.db.commit()
        return order

    def test_approve_paid_order_creates_single_parcela(self) -> None:
        order = self._order()
        with self.assertLogs("gestao_ebd", level="INFO") as logs:
            parcela = self.service.approve(self.db, order["id"])

        self.assertEqual(parcela.valor_comissao, 20.0)
        self.assertEqual(parcela.numero_parcela, 1)
        self.assertEqual(parcela.total_parcelas, 1)
        self.assertEqual(parcela.origem, ParcelaOrigin.ONLINE)
        self.assertEqual(parcela.comissao_status, CommissionStatus.LIBERADA)
        self.assertEqual(parcela.data_vencimento, "2026-09-20")
        self.assertTrue(self.service.orders.get_by_id(self.db, order["id"])["comissao_aprovada"])
        self.assertTrue(any("commission_approved" in line for line in logs.output))

        with self.assertRaises(AlreadySettledError):
            self.service.approve(self.db, order["id"])
        self.assertEqual(len(self.service.parcelas.list_by_order(self.db, order["id"])), 1)

    def test_conditional_insert_guards_a_racing_approval(self) -> None:
        order = self._order()
        self.service.approve(self.db, order["id"])
        # Another operator read the order before the flag was set.
        self.db.execute("UPDATE ebd_pedidos SET comissao_aprovada = ? WHERE id = ?", (False, order["id"]))
        self.db.commit()

        with self.assertRaises(AlreadySettledError):
            self.service.approve(self.db, order["id"])
        self.assertEqual(len(self.service.parcelas.list_by_order(self.db, order["id"])), 1)

    def test_unpaid_order_is_not_approvable(self) -> None:
        order = self._order(status="pending")
        with self.assertRaises(PreconditionError) as ctx:
            self.service.approve(self.db, order["id"])
        self.assertEqual(ctx.exception.code, "order_not_payable")
        self.assertEqual(self.service.parcelas.list_by_order(self.db, order["id"]), [])

    def test_seller_falls_back_to_church(self) -> None:
        order = self._order(vendedor_id=None, cliente_id=self.church["id"])
        parcela = self.service.approve(self.db, order["id"])
        self.assertEqual(parcela.vendedor_id, self.seller["id"])

    def test_order_without_seller(self) -> None:
        orphan_church = seed_church(self.db, self.registry, nome_igreja="Igreja Sem Vendedor")
        order = self._order(vendedor_id=None, cliente_id=orphan_church["id"])
        with self.assertRaises(PreconditionError) as ctx:
            self.service.approve(self.db, order["id"])
        self.assertEqual(ctx.exception.code, "order_without_seller")

    def test_default_percent_when_seller_has_none(self) -> None:
        seller = seed_seller(self.db, self.registry, nome="Sem Percentual", percent=None)
        order = self._order(vendedor_id=seller["id"], valor=200.0)
        parcela = self.service.approve(self.db, order["id"])
        self.assertEqual(parcela.valor_comissao, 10.0)

    def test_missing_order(self) -> None:
        with self.assertRaises(NotFoundError):
            self.service.approve(self.db, 999)

    def test_batch_skips_settled_and_reports_failures(self) -> None:
        paid = self._order()
        settled = self._order()
        unpaid = self._order(status="unpaid")
        self.service.approve(self.db, settled["id"])

        result = self.service.approve_batch(self.db, [paid["id"], settled["id"], unpaid["id"], 4242])

        self.assertEqual([parcela.pedido_id for parcela in result.approved], [paid["id"]])
        self.assertEqual(result.skipped, [settled["id"]])
        self.assertEqual(set(result.failed), {unpaid["id"], 4242})
        self.assertEqual(result.to_dict()["approved"], [paid["id"]])

    def test_pending_orders_flag_approvable(self) -> None:
        self._order(status="Pago")
        self._order(status="faturado")
        pending = self.service.pending_orders(self.db, vendedor_id=self.seller["id"])
        flags = sorted((order["payment_status"], order["approvable"]) for order in pending)
        self.assertEqual(flags, [("invoiced", False), ("paid", True)])

    def test_invoiced_schedule_is_idempotent(self) -> None:
        proposal = {"id": 77, "vendedor_id": self.seller["id"], "cliente_id": self.church["id"]}
        self.db.execute(
            "INSERT INTO vendedor_propostas (id, token, cliente_nome, status) VALUES (?, ?, ?, ?)",
            (77, "tok-77", "Igreja", "FATURADO"),
        )
        first = self.service.schedule_invoiced(self.db, proposal, term="60_90", total_value=300.0, external_order_id="E1")
        second = self.service.schedule_invoiced(self.db, proposal, term="60_90", total_value=300.0)
        self.db.commit()

        self.assertEqual(len(first), 2)
        self.assertEqual(len(second), 2)
        self.assertEqual([parcela.data_vencimento for parcela in first], ["2026-11-30", "2026-12-30"])
        self.assertEqual({parcela.comissao_status for parcela in first}, {CommissionStatus.PENDENTE})
        self.assertEqual({parcela.origem for parcela in first}, {ParcelaOrigin.FATURADO})
        # Seller percent (5%) wins over the invoiced default.
        self.assertEqual([parcela.valor_comissao for parcela in first], [7.5, 7.5])

    def test_schedule_without_seller_is_skipped(self) -> None:
        self.assertEqual(
            self.service.schedule_invoiced(self.db, {"id": 1, "vendedor_id": None}, term="30", total_value=100.0),
            [],
        )


if __name__ == "__main__":
    unittest.main()
