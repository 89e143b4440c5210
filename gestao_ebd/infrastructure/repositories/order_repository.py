from __future__ import annotations

from typing import Any, Dict

from gestao_ebd.infrastructure.repositories.base import BaseRepository


def _decode(row: Dict[str, Any] | None) -> Dict[str, Any] | None:
    if row is None:
        return None
    row["comissao_aprovada"] = bool(row.get("comissao_aprovada"))
    return row


class OrderRepository(BaseRepository):
    table = "ebd_pedidos"

    def insert(
        self,
        db,
        *,
        cliente_id: int | None,
        vendedor_id: int | None,
        valor_total: float,
        order_date: str,
        status_pagamento: str | None,
        proposta_id: int | None = None,
        order_number: str | None = None,
        valor_frete: float = 0.0,
        origem: str = "online",
        comissao_aprovada: bool = False,
    ) -> Dict[str, Any]:
        cursor = db.execute(
            """
            INSERT INTO ebd_pedidos (
                cliente_id, vendedor_id, proposta_id, order_number, valor_total,
                valor_frete, status_pagamento, order_date, comissao_aprovada, origem
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                cliente_id,
                vendedor_id,
                proposta_id,
                order_number,
                valor_total,
                valor_frete,
                status_pagamento,
                order_date,
                bool(comissao_aprovada),
                origem,
            ),
        )
        record = self.get_by_id(db, self.returned_id(cursor.fetchone()))
        self.publish(db, "insert", record)
        return record

    def get_by_id(self, db, order_id: int) -> Dict[str, Any] | None:
        row = db.execute("SELECT * FROM ebd_pedidos WHERE id = ? LIMIT 1", (order_id,)).fetchone()
        return _decode(self.row_to_dict(row))

    def get_by_proposal(self, db, proposta_id: int) -> Dict[str, Any] | None:
        row = db.execute(
            "SELECT * FROM ebd_pedidos WHERE proposta_id = ? ORDER BY id DESC LIMIT 1",
            (proposta_id,),
        ).fetchone()
        return _decode(self.row_to_dict(row))

    def list_pending_commission(self, db, *, vendedor_id: int | None = None) -> list[Dict[str, Any]]:
        params: list[Any] = [False]
        seller_clause = ""
        if vendedor_id is not None:
            seller_clause = "AND vendedor_id = ?"
            params.append(vendedor_id)
        rows = db.execute(
            f"""
            SELECT *
            FROM ebd_pedidos
            WHERE comissao_aprovada = ? {seller_clause}
            ORDER BY order_date DESC, id DESC
            """,
            tuple(params),
        ).fetchall()
        return [_decode(row) for row in self.rows_to_dicts(rows)]

    def latest_order_value(self, db, cliente_id: int) -> float | None:
        row = db.execute(
            """
            SELECT valor_total
            FROM ebd_pedidos
            WHERE cliente_id = ?
            ORDER BY order_date DESC, id DESC
            LIMIT 1
            """,
            (cliente_id,),
        ).fetchone()
        if not row:
            return None
        value = row["valor_total"] if isinstance(row, dict) else row[0]
        return float(value) if value is not None else None

    def mark_commission_approved(self, db, order_id: int) -> bool:
        cursor = db.execute(
            "UPDATE ebd_pedidos SET comissao_aprovada = ? WHERE id = ? AND comissao_aprovada = ?",
            (True, order_id, False),
        )
        changed = cursor.rowcount == 1
        if changed:
            self.publish(db, "update", self.get_by_id(db, order_id))
        return changed

    def update_payment_status(self, db, order_id: int, status_pagamento: str) -> None:
        db.execute(
            "UPDATE ebd_pedidos SET status_pagamento = ? WHERE id = ?",
            (status_pagamento, order_id),
        )
        self.publish(db, "update", self.get_by_id(db, order_id))
