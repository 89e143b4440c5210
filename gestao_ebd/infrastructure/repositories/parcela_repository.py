from __future__ import annotations

from typing import Any, Dict

from gestao_ebd.infrastructure.repositories.base import BaseRepository


_INSERT_COLUMNS = (
    "vendedor_id",
    "cliente_id",
    "pedido_id",
    "proposta_id",
    "origem",
    "numero_parcela",
    "total_parcelas",
    "valor",
    "valor_comissao",
    "data_vencimento",
    "status",
    "comissao_status",
    "metodo_pagamento",
    "external_order_id",
    "external_order_number",
)


class ParcelaRepository(BaseRepository):
    table = "vendedor_propostas_parcelas"

    def insert_if_absent(self, db, parcela: Dict[str, Any]) -> Dict[str, Any] | None:
        """Conditional insert keyed by ``(pedido_id|proposta_id, numero_parcela)``.

        Returns the new row, or None when an equivalent parcela already exists.
        """
        values = tuple(parcela.get(column) for column in _INSERT_COLUMNS)
        placeholders = ", ".join("?" for _ in _INSERT_COLUMNS)
        row = db.execute(
            f"""
            INSERT INTO vendedor_propostas_parcelas ({", ".join(_INSERT_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT DO NOTHING
            RETURNING id
            """,
            values,
        ).fetchone()
        if not row:
            return None
        record = self.get_by_id(db, self.returned_id(row))
        self.publish(db, "insert", record)
        return record

    def get_by_id(self, db, parcela_id: int) -> Dict[str, Any] | None:
        row = db.execute(
            "SELECT * FROM vendedor_propostas_parcelas WHERE id = ? LIMIT 1",
            (parcela_id,),
        ).fetchone()
        return self.row_to_dict(row)

    def list_by_order(self, db, pedido_id: int) -> list[Dict[str, Any]]:
        rows = db.execute(
            "SELECT * FROM vendedor_propostas_parcelas WHERE pedido_id = ? ORDER BY numero_parcela",
            (pedido_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_by_proposal(self, db, proposta_id: int) -> list[Dict[str, Any]]:
        rows = db.execute(
            "SELECT * FROM vendedor_propostas_parcelas WHERE proposta_id = ? ORDER BY numero_parcela",
            (proposta_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list(
        self,
        db,
        *,
        vendedor_id: int | None = None,
        comissao_status: str | None = None,
    ) -> list[Dict[str, Any]]:
        clauses = []
        params: list[Any] = []
        if vendedor_id is not None:
            clauses.append("vendedor_id = ?")
            params.append(vendedor_id)
        if comissao_status:
            clauses.append("comissao_status = ?")
            params.append(comissao_status)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = db.execute(
            f"""
            SELECT *
            FROM vendedor_propostas_parcelas
            {where}
            ORDER BY data_vencimento ASC, id ASC
            """,
            tuple(params),
        ).fetchall()
        return self.rows_to_dicts(rows)
